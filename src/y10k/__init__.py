from __future__ import annotations

"""
y10k - Verified RPM Repository Mirroring

A CLI tool that keeps local mirrors of yum/dnf repositories in sync with
their upstream, downloading only what is missing and rejecting packages that
fail checksum or signature verification.
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Make version accessible
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _version

try:
    __version__ = _version("y10k")
except PackageNotFoundError:
    # Package not installed yet
    pass
