"""
RPM version comparison.

Pure Python implementation of rpm's rpmvercmp() and EVR ordering, used by
the newest-only filter. Versions are split into alternating numeric and
alphabetic segments; everything else is a separator:

- numeric segments compare by value and always beat alphabetic ones
- alphabetic segments compare lexically (ASCII)
- '~' sorts before anything, even the end of the string (1.0~rc1 < 1.0)
- '^' sorts after the end of the string but before any other segment
  (1.0 < 1.0^git1 < 1.0.1)
- if all segments are equal, the version with segments left over is newer
"""

import functools
from typing import Optional, Tuple

from y10k.plugins.rpm.models import PackageEntry

_DIGITS = frozenset("0123456789")
_ALNUM = _DIGITS | frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ")

EVR = Tuple[Optional[str], str, str]


def _take(s: str, start: int, charset: frozenset) -> int:
    end = start
    while end < len(s) and s[end] in charset:
        end += 1
    return end


def rpmvercmp(a: str, b: str) -> int:
    """Compare two version (or release) strings the way rpm does.

    Returns:
        1 if a is newer than b, 0 if equal, -1 if a is older than b
    """
    if a == b:
        return 0

    i = j = 0
    while i < len(a) or j < len(b):
        # Skip separators
        while i < len(a) and a[i] not in _ALNUM and a[i] not in "~^":
            i += 1
        while j < len(b) and b[j] not in _ALNUM and b[j] not in "~^":
            j += 1

        a_ch = a[i] if i < len(a) else ""
        b_ch = b[j] if j < len(b) else ""

        # Tilde sorts before everything else
        if a_ch == "~" or b_ch == "~":
            if a_ch != "~":
                return 1
            if b_ch != "~":
                return -1
            i += 1
            j += 1
            continue

        # Caret sorts after the end of the string, before everything else
        if a_ch == "^" or b_ch == "^":
            if not a_ch:
                return -1
            if not b_ch:
                return 1
            if a_ch != "^":
                return 1
            if b_ch != "^":
                return -1
            i += 1
            j += 1
            continue

        if not a_ch or not b_ch:
            break

        # Grab the next segment of the same type from both strings
        isnum = a_ch in _DIGITS
        charset = _DIGITS if isnum else _ALNUM - _DIGITS
        a_end = _take(a, i, charset)
        b_end = _take(b, j, charset)
        a_seg, b_seg = a[i:a_end], b[j:b_end]
        i, j = a_end, b_end

        # Segments of different types: numeric is newer
        if not b_seg:
            return 1 if isnum else -1

        if isnum:
            a_seg = a_seg.lstrip("0")
            b_seg = b_seg.lstrip("0")
            if len(a_seg) != len(b_seg):
                return 1 if len(a_seg) > len(b_seg) else -1

        if a_seg != b_seg:
            return 1 if a_seg > b_seg else -1

    if i >= len(a) and j >= len(b):
        return 0
    return -1 if i >= len(a) else 1


def _epoch(epoch: Optional[str]) -> int:
    try:
        return int(epoch or 0)
    except ValueError:
        return 0


def compare_evr(a: EVR, b: EVR) -> int:
    """Compare (epoch, version, release) triples.

    Returns:
        1 if a is newer than b, 0 if equal, -1 if a is older than b
    """
    a_epoch, b_epoch = _epoch(a[0]), _epoch(b[0])
    if a_epoch != b_epoch:
        return 1 if a_epoch > b_epoch else -1

    result = rpmvercmp(a[1] or "", b[1] or "")
    if result != 0:
        return result
    return rpmvercmp(a[2] or "", b[2] or "")


def compare_packages(a: PackageEntry, b: PackageEntry) -> int:
    """Compare two packages by EVR."""
    return compare_evr((a.epoch, a.version, a.release), (b.epoch, b.version, b.release))


# Sort key for PackageEntry (oldest first)
evr_key = functools.cmp_to_key(compare_packages)
