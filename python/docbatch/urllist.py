"""
URL Lists - Parsing and classification of URL-list text files.

Format: one entry per line, `URL [output-name]` separated by whitespace.
Lines starting with `#` are comments. Malformed URLs are skipped with a
warning. A text file counts as a URL list when every non-comment,
non-blank line starts with an http/https URL.
"""

import logging
import re
import time
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

from .models import UrlEntry


logger = logging.getLogger(__name__)

CONTENT_EXTENSION = ".html"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def is_http_url(candidate: str) -> bool:
    """True if `candidate` parses as an absolute http(s) URL with a host."""
    try:
        parsed = urlsplit(candidate)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _content_lines(text: str) -> List[str]:
    lines = (line.strip() for line in text.splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def parse_url_lines(text: str, source: str = "<string>") -> List[UrlEntry]:
    """Parse URL-list text into entries, skipping malformed URLs."""
    entries: List[UrlEntry] = []

    for line in _content_lines(text):
        parts = line.split()
        candidate = parts[0]
        filename = parts[1] if len(parts) > 1 else None

        if not is_http_url(candidate):
            logger.warning(f"Skipping malformed URL in {source}: {candidate}")
            continue

        entries.append(UrlEntry(url=candidate, filename=filename))

    return entries


def parse_url_file(path: Path) -> List[UrlEntry]:
    """Read and parse a URL-list file. Unreadable files yield no entries."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Failed to read URL list {path}: {e}")
        return []
    return parse_url_lines(text, source=path.name)


def is_url_list_text(text: str) -> bool:
    lines = _content_lines(text)
    if not lines:
        return False
    return all(is_http_url(line.split()[0]) for line in lines)


def is_url_list_file(path: Path) -> bool:
    """
    Auto-classify a `.txt` file as a URL list.

    Only plain text files are considered; reading errors count as "no".
    """
    if path.suffix.lower() != ".txt":
        return False
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False
    return is_url_list_text(text)


def _safe_custom_name(custom_name: str) -> str:
    # Last path component only, without leading dots
    base = Path(custom_name.replace("\\", "/")).name
    return base.lstrip(".")


def url_to_filename(url: str, custom_name: Optional[str] = None) -> str:
    """
    Derive the cache filename for a fetched URL.

    A caller-supplied name is reduced to its last path component (so it
    always lands inside the cache directory) and gets the content
    extension appended.
    Otherwise the URL path is flattened (separators and anything not
    alphanumeric become `_`), falling back to the hostname, and to a
    timestamp name if the URL cannot be parsed at all.
    """
    name = _safe_custom_name(custom_name) if custom_name else ""
    if name:
        if name.endswith(CONTENT_EXTENSION):
            return name
        return f"{name}{CONTENT_EXTENSION}"

    try:
        parsed = urlsplit(url)
        if not parsed.netloc:
            raise ValueError(f"no host in {url!r}")
        hostname = parsed.hostname or ""
    except ValueError:
        return f"page_{int(time.time() * 1000)}{CONTENT_EXTENSION}"

    name = parsed.path
    if name.startswith("/"):
        name = name[1:]
    if name.endswith("/"):
        name = name[:-1]
    name = _UNSAFE_CHARS.sub("_", name.replace("/", "_"))

    if not name or name == "_":
        name = hostname.replace(".", "_")

    return f"{name}{CONTENT_EXTENSION}"
