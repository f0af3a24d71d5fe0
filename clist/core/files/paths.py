"""
Object key and path handling.

Users navigate a storage with slash-separated paths relative to the
storage's base path. The bucket only knows flat keys, so every request
goes through these helpers to map between the two.

Paths are always stored without leading or trailing slashes; the empty
string is the storage root.
"""


class InvalidPathError(ValueError):
    """Raised when a path or name cannot be mapped to a safe key."""
    pass


def normalize_path(path: str) -> str:
    """
    Canonical form of a user-supplied path.

    Leading/trailing slashes and empty segments are dropped. Relative
    segments are rejected so a path can never climb out of the base path.
    """
    if not path:
        return ""

    segments = [segment for segment in path.replace("\\", "/").split("/") if segment]
    for segment in segments:
        if segment in (".", ".."):
            raise InvalidPathError(f"Relative path segment not allowed: {path!r}")
    return "/".join(segments)


def join_key(base_path: str, path: str) -> str:
    """Bucket key for a user-visible path inside a storage."""
    parts = [p for p in (normalize_path(base_path), normalize_path(path)) if p]
    return "/".join(parts)


def strip_base(base_path: str, key: str) -> str:
    """User-visible path for a bucket key (inverse of join_key)."""
    base = normalize_path(base_path)
    key = key.strip("/")
    if not base:
        return key
    if key == base:
        return ""
    if key.startswith(base + "/"):
        return key[len(base) + 1:]
    raise InvalidPathError(f"Key {key!r} is outside base path {base!r}")


def as_prefix(key: str) -> str:
    """Listing prefix for a directory key ("" stays "")."""
    key = key.strip("/")
    return f"{key}/" if key else ""


def parent_path(path: str) -> str:
    segments = normalize_path(path).split("/")
    return "/".join(segments[:-1])


def basename(path: str) -> str:
    return normalize_path(path).rsplit("/", 1)[-1]


def child_path(path: str, name: str) -> str:
    """
    Append a single name to a directory path.

    Used for new folders, uploaded filenames and fetched filenames, all
    of which must be exactly one segment.
    """
    name = name.strip()
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise InvalidPathError(f"Invalid name: {name!r}")
    return join_key(path, name)


def breadcrumbs(path: str) -> list[tuple[str, str]]:
    """
    (name, path) pairs for every ancestor of a path, root excluded.

    "a/b/c" -> [("a", "a"), ("b", "a/b"), ("c", "a/b/c")]
    """
    crumbs = []
    current = []
    for segment in normalize_path(path).split("/"):
        if not segment:
            continue
        current.append(segment)
        crumbs.append((segment, "/".join(current)))
    return crumbs
