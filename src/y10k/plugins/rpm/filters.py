from __future__ import annotations

"""
RPM package filtering logic.

This module selects the subset of upstream packages that should exist in a
local mirror, based on the filter rules of a repository. Everything here is
pure: no network or disk access, and the same inputs always give the same
output.
"""

import logging
import re
from datetime import datetime, timezone

from y10k.core.config import RepositoryConfig
from y10k.plugins.rpm.models import PackageEntry
from y10k.plugins.rpm.vercmp import compare_packages

logger = logging.getLogger(__name__)


def filter_packages(repo: RepositoryConfig, packages: list[PackageEntry]) -> list[PackageEntry]:
    """Apply a repository's filter rules to a package list.

    Rules are applied in order: architecture, source inclusion, date bounds,
    name patterns, newest-only. Survivors keep their input order.

    Args:
        repo: Repository configuration carrying the filter rules
        packages: Full upstream package list

    Returns:
        Filtered list of packages
    """
    include = [re.compile(p) for p in repo.include_packages or []]
    exclude = [re.compile(p) for p in repo.exclude_packages or []]

    filtered_packages = []
    for pkg in packages:
        if not check_architecture(pkg, repo.architecture):
            continue

        if pkg.is_source and not repo.include_sources:
            continue

        if not check_date_bounds(pkg, repo.min_date, repo.max_date):
            continue

        if not check_patterns(pkg, include, exclude):
            continue

        filtered_packages.append(pkg)

    if repo.newest_only:
        filtered_packages = keep_only_latest_versions(filtered_packages)

    logger.debug(f"Filtered {len(packages)} packages down to {len(filtered_packages)} for {repo.id}")
    return filtered_packages


def check_architecture(pkg: PackageEntry, architecture: str | None) -> bool:
    """Check if package matches the repository architecture.

    noarch packages always match. Source packages are left to the
    source-inclusion rule.
    """
    if not architecture or pkg.is_noarch or pkg.is_source:
        return True
    return pkg.arch == architecture


def check_date_bounds(
    pkg: PackageEntry,
    min_date: datetime | None,
    max_date: datetime | None,
) -> bool:
    """Check if package build time lies within [min_date, max_date].

    Both bounds are optional and inclusive. A package without a build time
    cannot be placed and fails as soon as any bound is set. Bounds coming from
    RepositoryConfig are already UTC; naive bounds passed by other callers are
    taken as UTC.
    """
    if min_date is None and max_date is None:
        return True
    if pkg.build_time is None:
        return False

    build_dt = datetime.fromtimestamp(pkg.build_time, tz=timezone.utc)
    if min_date is not None and build_dt < _as_utc(min_date):
        return False
    if max_date is not None and build_dt > _as_utc(max_date):
        return False
    return True


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def check_patterns(
    pkg: PackageEntry,
    include: list[re.Pattern],
    exclude: list[re.Pattern],
) -> bool:
    """Check if package passes include/exclude patterns.

    Patterns are searched in both the package name and its NEVRA. At least
    one include pattern must match (if any are given) and no exclude
    pattern may match.
    """
    candidates = (pkg.name, pkg.nevra)

    if include and not any(p.search(c) for p in include for c in candidates):
        return False

    if any(p.search(c) for p in exclude for c in candidates):
        return False

    return True


def keep_only_latest_versions(packages: list[PackageEntry]) -> list[PackageEntry]:
    """Keep only the newest version of each package (by name and arch).

    Versions are ordered by RPM EVR rules. When two entries compare equal the
    first one wins. Input order of the survivors is preserved.

    Args:
        packages: List of packages

    Returns:
        Filtered list with one package per (name, arch)
    """
    newest: dict[tuple[str, str], PackageEntry] = {}
    for pkg in packages:
        key = (pkg.name, pkg.arch)
        current = newest.get(key)
        if current is None or compare_packages(pkg, current) > 0:
            newest[key] = pkg

    keep = {id(pkg) for pkg in newest.values()}
    return [pkg for pkg in packages if id(pkg) in keep]
