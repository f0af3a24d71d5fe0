"""
File browsing logic.

Contains the browser service, domain models, path handling and
file type lookups.
"""

from .browser import FileBrowser, StorageClient, UrlFetcher
from .filetypes import FileType, FileTypeInfo, describe, get_file_type, is_previewable
from .models import (
    FetchResult,
    ObjectContent,
    ObjectMetadata,
    StorageConfig,
    StorageObject,
)
from .paths import InvalidPathError

__all__ = [
    "FileBrowser",
    "StorageClient",
    "UrlFetcher",
    "FileType",
    "FileTypeInfo",
    "describe",
    "get_file_type",
    "is_previewable",
    "FetchResult",
    "ObjectContent",
    "ObjectMetadata",
    "StorageConfig",
    "StorageObject",
    "InvalidPathError",
]
