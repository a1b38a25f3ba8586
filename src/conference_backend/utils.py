"""
Utility functions for time handling, filename sanitisation and form parsing.

This module provides helper functions for:
- Producing timezone-aware UTC timestamps (the default clock)
- Sanitising user-provided filenames for safe object-storage keys
- Validating and parsing file extensions
- Parsing loosely formatted list fields submitted through multipart forms
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

# Pattern to match characters that are not safe for object keys
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

Clock = Callable[[], datetime]

PAPER_EXTENSIONS = (".pdf", ".docx", ".tex", ".latex")
SUPPLEMENTARY_EXTENSIONS = (".pdf", ".docx", ".zip", ".rar")
SOURCE_CODE_EXTENSIONS = (".zip", ".rar", ".py", ".java", ".cpp", ".c", ".js", ".html", ".css")
CV_EXTENSIONS = (".pdf", ".docx")
RECEIPT_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png")
KEYNOTE_CV_EXTENSIONS = (".pdf", ".docx", ".tex", ".latex")
PHOTO_EXTENSIONS = (".jpg", ".jpeg", ".png")
PRESENTATION_EXTENSIONS = (".pdf", ".ppt", ".pptx")


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to aware UTC.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; those are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sanitize_filename(filename: str, fallback: str = "document") -> str:
    """
    Generate a storage-safe filename from user input.

    Args:
        filename: The original filename (may include a path)
        fallback: Stem to use if sanitisation leaves nothing

    Returns:
        A lowercase, storage-safe filename that keeps the original extension

    Example:
        >>> sanitize_filename("My Paper (final).PDF")
        "my-paper-final.pdf"
        >>> sanitize_filename("@#$.pdf")
        "document.pdf"
    """
    stem, suffix = split_extension(filename)
    cleaned = SANITIZE_PATTERN.sub("-", stem.strip()).strip("-_.").lower()
    return f"{cleaned or fallback}{suffix.lower()}"


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("/path/to/file.tar.gz")
        ("file.tar", ".gz")
    """
    path = Path(filename)
    return path.stem, path.suffix


def has_allowed_extension(filename: str, allowed: Iterable[str]) -> bool:
    _, suffix = split_extension(filename)
    return suffix.lower() in set(allowed)


def parse_smart_list(value: Any) -> List[str]:
    """
    Coerce a loosely formatted list field into a list of strings.

    Accepts a real list, a JSON array string, a comma-separated string or a
    single scalar. Blank entries are dropped.

    Example:
        >>> parse_smart_list('["NLP", "Vision"]')
        ["NLP", "Vision"]
        >>> parse_smart_list("NLP, Vision")
        ["NLP", "Vision"]
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("[") and text.endswith("]"):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [part.strip() for part in text.split(",") if part.strip()]
    return [str(value).strip()] if str(value).strip() else []


def join_expertise(value: Any) -> str:
    """Flatten a list-like expertise field into the directory's comma-joined form."""
    if isinstance(value, dict):
        return ", ".join(str(item) for item in value.values() if item)
    return ", ".join(parse_smart_list(value))
