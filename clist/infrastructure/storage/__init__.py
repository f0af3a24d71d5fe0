"""
Object storage integration.

Supports S3, R2, OSS, COS and MinIO via the S3-compatible API.
Includes mock mode for local development without credentials.
"""
