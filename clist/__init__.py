"""
CList - an aggregated browser for S3-compatible object storage.

This package contains the complete application:
- core: Framework-agnostic file browsing logic and file type lookups
- infrastructure: S3 clients, storage configuration persistence, remote fetch
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
