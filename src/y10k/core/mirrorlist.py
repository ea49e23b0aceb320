from __future__ import annotations

"""
Mirror list handling.

Repositories may name a mirror list instead of (or in addition to) a base
URL. A mirror list is either a plain text file with one URL per line or a
metalink document; both are reduced to an ordered list of base URLs.
"""

import logging
import re
import xml.etree.ElementTree as ET
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

VALID_SCHEMES = ("http", "https", "ftp", "file")
METALINK_NS = "{http://www.metalinker.org/}"
REPOMD_SUFFIX = "repodata/repomd.xml"


def substitute_variables(url: str, architecture: str | None) -> str:
    """Replace yum's ``$basearch``/``$arch`` variables."""
    if architecture:
        url = url.replace("$ARCH", "$basearch")
        url = re.sub(r"\$(basearch|arch)\b", architecture, url)
    return url


def parse_mirrorlist(content: str | bytes, architecture: str | None = None) -> list[str]:
    """Parse mirror list content into base URLs, preserving order.

    Args:
        content: Plain mirror list or metalink document
        architecture: Value for ``$basearch``/``$arch`` substitution

    Returns:
        Base URLs, each ending with '/'
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")

    if "<metalink" in content:
        candidates = _parse_metalink(content)
    else:
        candidates = [
            line.strip()
            for line in content.splitlines()
            if re.match(r"\w+://\S+\s*$", line.strip())
        ]

    mirrors: list[str] = []
    for url in candidates:
        url = substitute_variables(url, architecture)
        if urlparse(url).scheme not in VALID_SCHEMES:
            logger.warning(f"Ignoring mirror with unsupported scheme: {url}")
            continue
        if url.endswith(REPOMD_SUFFIX):
            url = url[: -len(REPOMD_SUFFIX)]
        if not url.endswith("/"):
            url += "/"
        if url not in mirrors:
            mirrors.append(url)

    return mirrors


def _parse_metalink(content: str) -> list[str]:
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        logger.warning(f"Failed to parse metalink: {e}")
        return []

    urls = list(root.iter(f"{METALINK_NS}url")) or list(root.iter("url"))

    ranked = []
    for elem in urls:
        if not elem.text:
            continue
        try:
            preference = int(elem.get("preference") or 0)
        except ValueError:
            logger.warning(f"Ignoring metalink entry with invalid preference: {elem.text.strip()}")
            continue
        ranked.append((preference, elem.text.strip()))

    # Highest preference first; sort is stable for equal preference
    ranked.sort(key=lambda item: -item[0])
    return [url for _, url in ranked]
