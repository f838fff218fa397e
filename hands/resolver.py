from __future__ import annotations

from typing import Iterable, Mapping

from .models import Descriptor, DescriptorId


Catalog = Mapping[DescriptorId, Descriptor]


def expand_selection(selected: Iterable[DescriptorId], catalog: Catalog) -> frozenset[DescriptorId]:
    """Transitive closure of `selected` over skill dependencies.

    Only skills declare dependencies. A dependency missing from the catalog is
    skipped; a selected id missing from the catalog is kept so the caller can
    report it. Each id is visited once, so dependency cycles terminate.
    """

    result: set[DescriptorId] = set()
    worklist: list[DescriptorId] = list(selected)
    while worklist:
        ident = worklist.pop()
        if ident in result:
            continue
        result.add(ident)
        desc = catalog.get(ident)
        if desc is None or desc.category != "skill":
            continue
        for dep in sorted(desc.dependencies):
            if dep in result or dep not in catalog:
                continue
            worklist.append(dep)
    return frozenset(result)


def compute_orphans(
    previously_expanded: Iterable[DescriptorId],
    newly_expanded: Iterable[DescriptorId],
    directly_selected: Iterable[DescriptorId],
    *,
    previously_selected: Iterable[DescriptorId] = (),
) -> frozenset[DescriptorId]:
    """Dependency-only members of the previous closure that the new closure no longer reaches.

    Former direct selections are excluded: dropping those is a deselection,
    not an orphan.
    """

    new = frozenset(newly_expanded)
    direct = frozenset(directly_selected)
    prev_direct = frozenset(previously_selected)
    return frozenset(
        i for i in previously_expanded if i not in new and i not in direct and i not in prev_direct
    )


def missing_dependencies(catalog: Catalog) -> dict[DescriptorId, tuple[DescriptorId, ...]]:
    out: dict[DescriptorId, tuple[DescriptorId, ...]] = {}
    for ident in sorted(catalog):
        desc = catalog[ident]
        missing = tuple(sorted(d for d in desc.dependencies if d not in catalog))
        if missing:
            out[ident] = missing
    return out


def dependents_of(target: DescriptorId, catalog: Catalog) -> tuple[DescriptorId, ...]:
    """Skills whose closure includes `target` (excluding `target` itself)."""

    out: list[DescriptorId] = []
    for ident in sorted(catalog):
        if ident == target or catalog[ident].category != "skill":
            continue
        if target in expand_selection([ident], catalog):
            out.append(ident)
    return tuple(out)
