"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: S3-compatible object storage (boto3)
- snowflake: Storage configuration persistence
- http: Remote URL fetching for offline downloads (httpx)

These wrappers translate between external formats and our domain models.
"""
