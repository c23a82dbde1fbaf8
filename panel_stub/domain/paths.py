from __future__ import annotations

import re

__all__ = [
    "normalize_upload_name",
    "split_extension",
    "DEFAULT_EXTENSION",
]

# Allow printable ASCII only (conservative).
_VALID_NAME_RE = re.compile(r"^[ -~]+$")
DEFAULT_EXTENSION = ".zip"


def normalize_upload_name(filename: str) -> str:
    """Deterministically normalize an uploaded file name.

    Rules:
    - Strip surrounding whitespace, convert backslashes to forward slashes.
    - Keep only the last path segment (no directories, no traversal).
    - Lowercase only the file extension; keep the base name's original case.

    Raises:
        ValueError: if the name is empty or contains invalid characters.
    """
    if not isinstance(filename, str) or not filename.strip():
        raise ValueError("filename must be a non-empty string")

    name = filename.strip().replace("\\", "/").rstrip("/").rpartition("/")[2]
    if name in ("", ".", ".."):
        raise ValueError("filename resolves to empty after normalization")
    if not _VALID_NAME_RE.match(name):
        raise ValueError("filename contains invalid characters")

    head, dot, ext = name.rpartition(".")
    if dot and head:
        name = f"{head}.{ext.lower()}"
    return name


def split_extension(filename: str) -> tuple[str, str]:
    """Return (base, extension-with-dot); archives without one are assumed zipped."""
    name = normalize_upload_name(filename)
    head, dot, ext = name.rpartition(".")
    if dot and head and ext:
        return head, f".{ext}"
    return name, DEFAULT_EXTENSION
