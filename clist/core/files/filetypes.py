"""
File type detection by extension.

The UI decides how to preview a file (video player, image, syntax
highlighted text...) purely from its name. These lookups are static
tables; the content of the object is never inspected.
"""

from dataclasses import dataclass
from enum import Enum


class FileType(Enum):
    """Preview category of a file."""
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    TEXT = "text"
    CODE = "code"
    PDF = "pdf"
    UNKNOWN = "unknown"


VIDEO_EXTENSIONS = frozenset({
    "mp4", "webm", "ogg", "mov", "avi", "mkv", "m4v", "flv", "wmv", "3gp",
})
AUDIO_EXTENSIONS = frozenset({
    "mp3", "wav", "ogg", "flac", "aac", "m4a", "wma", "opus", "webm",
})
IMAGE_EXTENSIONS = frozenset({
    "jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "ico", "avif",
})
TEXT_EXTENSIONS = frozenset({
    "txt", "log", "md", "markdown", "rst", "csv", "ini", "cfg", "conf",
})
CODE_EXTENSIONS = frozenset({
    "js", "ts", "jsx", "tsx", "json", "html", "css", "scss", "less",
    "py", "java", "c", "cpp", "h", "hpp", "cs", "go", "rs", "rb",
    "php", "sql", "sh", "bash", "zsh", "ps1", "bat", "cmd",
    "xml", "yaml", "yml", "toml", "vue", "svelte", "astro",
    "swift", "kt", "scala", "r", "lua", "pl", "ex", "exs",
    "dockerfile", "makefile", "cmake", "gradle", "env",
})
PDF_EXTENSIONS = frozenset({"pdf"})

# Checked in this order, so "ogg" and "webm" are treated as video.
_TYPE_ORDER = (
    (FileType.VIDEO, VIDEO_EXTENSIONS),
    (FileType.AUDIO, AUDIO_EXTENSIONS),
    (FileType.IMAGE, IMAGE_EXTENSIONS),
    (FileType.PDF, PDF_EXTENSIONS),
    (FileType.CODE, CODE_EXTENSIONS),
    (FileType.TEXT, TEXT_EXTENSIONS),
)

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES = {
    # Video
    "mp4": "video/mp4",
    "webm": "video/webm",
    "ogg": "video/ogg",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "m4v": "video/x-m4v",
    # Audio
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "aac": "audio/aac",
    "m4a": "audio/mp4",
    "opus": "audio/opus",
    # Image
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
    "avif": "image/avif",
    # Text
    "txt": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    # Code
    "js": "text/javascript",
    "ts": "text/typescript",
    "json": "application/json",
    "html": "text/html",
    "css": "text/css",
    "xml": "text/xml",
    # PDF
    "pdf": "application/pdf",
}

CODE_LANGUAGES = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "rb": "ruby",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "h": "c",
    "hpp": "cpp",
    "cs": "csharp",
    "go": "go",
    "rs": "rust",
    "php": "php",
    "sql": "sql",
    "sh": "bash",
    "bash": "bash",
    "zsh": "bash",
    "ps1": "powershell",
    "bat": "batch",
    "cmd": "batch",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "less": "less",
    "json": "json",
    "xml": "xml",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "md": "markdown",
    "markdown": "markdown",
    "vue": "vue",
    "svelte": "svelte",
    "swift": "swift",
    "kt": "kotlin",
    "scala": "scala",
    "r": "r",
    "lua": "lua",
    "pl": "perl",
    "ex": "elixir",
    "exs": "elixir",
}

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


@dataclass(frozen=True)
class FileTypeInfo:
    """Everything the UI needs to pick a previewer for a file."""
    file_type: FileType
    mime_type: str
    language: str
    previewable: bool


def get_file_extension(filename: str) -> str:
    """Lower-cased text after the last dot, or "" when there is none."""
    parts = filename.lower().split(".")
    return parts[-1] if len(parts) > 1 else ""


def get_file_type(filename: str) -> FileType:
    ext = get_file_extension(filename)
    for file_type, extensions in _TYPE_ORDER:
        if ext in extensions:
            return file_type
    return FileType.UNKNOWN


def is_previewable(filename: str) -> bool:
    return get_file_type(filename) is not FileType.UNKNOWN


def get_mime_type(filename: str) -> str:
    return MIME_TYPES.get(get_file_extension(filename), DEFAULT_MIME_TYPE)


def get_code_language(filename: str) -> str:
    """Language label for the syntax highlighter ("plaintext" if unknown)."""
    return CODE_LANGUAGES.get(get_file_extension(filename), "plaintext")


def describe(filename: str) -> FileTypeInfo:
    file_type = get_file_type(filename)
    return FileTypeInfo(
        file_type=file_type,
        mime_type=get_mime_type(filename),
        language=get_code_language(filename),
        previewable=file_type is not FileType.UNKNOWN,
    )


def format_duration(seconds: float) -> str:
    """
    Format a media duration for the player controls.

    H:MM:SS when the duration reaches an hour, M:SS otherwise.
    Fractional seconds are truncated.
    """
    total = int(max(seconds, 0))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def format_bytes(size: int) -> str:
    """
    Human-readable size with 1024-based units.

    Zero renders as "-" because directories and empty markers have no
    meaningful size in the listing.
    """
    if size <= 0:
        return "-"
    i = 0
    while size >= 1024 ** (i + 1) and i < len(_SIZE_UNITS) - 1:
        i += 1
    value = round(size / (1024 ** i), 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[i]}"
