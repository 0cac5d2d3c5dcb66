"""Filename sanitization for storage keys."""

import os
import re
from typing import Tuple

_UNSAFE_RUN_RE = re.compile(r"[^A-Za-z0-9.-]+")
_UNDERSCORE_RUN_RE = re.compile(r"_+")


def sanitize_filename(text: str) -> str:
    """Replace every run of characters other than ASCII letters, digits, dot and hyphen with one underscore.

    Case is preserved so keys stay traceable to the original filename.

    Args:
        text: Raw filename or filename stem (e.g. "My Photo (1)").

    Returns:
        Sanitized text (e.g. "My_Photo_1_").
    """
    text = _UNSAFE_RUN_RE.sub("_", text)
    return _UNDERSCORE_RUN_RE.sub("_", text)


def split_extension(filename: str, default_ext: str = "jpg") -> Tuple[str, str]:
    """Split a filename into (stem, lowercase extension without dot).

    Falls back to ``default_ext`` when the name has no extension.
    """
    stem, ext = os.path.splitext(filename)
    ext = ext.lstrip(".").lower()
    return stem, ext or default_ext
