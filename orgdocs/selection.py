"""Inclusion filter turning the catalog into the desired repository set."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, List, Optional, Tuple

from .models import DesiredSet, IgnoreRules, RepositoryDescriptor


def exclusion_reason(descriptor: RepositoryDescriptor, rules: IgnoreRules) -> Optional[str]:
    """Return the first ignore rule excluding ``descriptor``, or ``None`` if it is in scope."""
    if descriptor.name in rules.explicit_names:
        return "explicitly ignored"
    for pattern in rules.patterns:
        if fnmatchcase(descriptor.name, pattern):
            return f"matches pattern '{pattern}'"
    if descriptor.is_fork and rules.exclude_forks:
        return "fork"
    if descriptor.is_archived and rules.exclude_archived:
        return "archived"
    if descriptor.is_private and rules.exclude_private:
        return "private"
    # An unknown result (probe failed) is not treated as absent.
    if rules.require_docs_directory and descriptor.has_docs_directory is False:
        return "no docs directory"
    return None


def filter_catalog(catalog: Iterable[RepositoryDescriptor], rules: IgnoreRules) -> DesiredSet:
    """Return the in-scope repositories, unique by name, in catalog order."""
    desired: List[RepositoryDescriptor] = []
    seen: set[str] = set()
    for descriptor in catalog:
        if descriptor.name in seen:
            continue
        seen.add(descriptor.name)
        if exclusion_reason(descriptor, rules) is None:
            desired.append(descriptor)
    return tuple(desired)


def partition_catalog(
    catalog: Iterable[RepositoryDescriptor], rules: IgnoreRules
) -> Tuple[DesiredSet, List[Tuple[RepositoryDescriptor, str]]]:
    """Split the catalog into the desired set and excluded entries with their reasons."""
    entries = list(catalog)
    desired = filter_catalog(entries, rules)
    desired_names = {descriptor.name for descriptor in desired}
    excluded: List[Tuple[RepositoryDescriptor, str]] = []
    seen: set[str] = set()
    for descriptor in entries:
        if descriptor.name in desired_names or descriptor.name in seen:
            continue
        seen.add(descriptor.name)
        excluded.append((descriptor, exclusion_reason(descriptor, rules) or "duplicate"))
    return desired, excluded


__all__ = ["exclusion_reason", "filter_catalog", "partition_catalog"]
