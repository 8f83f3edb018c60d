from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .model import PRIMARY_INDEX, EntityModel, Facet


@dataclass(frozen=True)
class IndexMatch:
    index: str
    keys: tuple[Facet, ...]
    should_scan: bool


@dataclass(frozen=True)
class _Candidate:
    index: str
    keys: tuple[Facet, ...]
    has_sk: bool
    all_keys: bool

    @property
    def count(self) -> int:
        return len(self.keys)


def _walk(model: EntityModel, index: str, attributes: Mapping[str, Any]) -> _Candidate:
    facets = model.facets(index)
    matched: list[Facet] = []
    has_sk = False
    all_keys = False
    for position, facet in enumerate(facets):
        if attributes.get(facet.name) is None:
            break
        following = facets[position + 1] if position + 1 < len(facets) else None
        if following is None:
            all_keys = True
        elif following.key_type == "sk":
            has_sk = True
        matched.append(facet)
    return _Candidate(index=index, keys=tuple(matched), has_sk=has_sk, all_keys=all_keys)


def _rank(candidate: _Candidate, best_count: int) -> int | None:
    primary = candidate.index == PRIMARY_INDEX
    if primary and candidate.all_keys:
        return 0
    if primary and candidate.count == best_count:
        return 1
    if candidate.all_keys:
        return 2
    if candidate.count == best_count:
        return 3
    return None


def find_best_index(model: EntityModel, attributes: Mapping[str, Any]) -> IndexMatch:
    candidates = [_walk(model, index, attributes) for index in model.indexes]
    candidates = [c for c in candidates if c.has_sk or c.all_keys]
    if not candidates:
        return IndexMatch(index=PRIMARY_INDEX, keys=(), should_scan=True)

    best_count = max(c.count for c in candidates)
    ranked: list[tuple[int, int, str, _Candidate]] = []
    for candidate in candidates:
        rank = _rank(candidate, best_count)
        if rank is not None:
            ranked.append((rank, -candidate.count, candidate.index, candidate))

    # Ties within a rank break on match count, then index name.
    ranked.sort(key=lambda entry: entry[:3])
    best = ranked[0][3]
    return IndexMatch(index=best.index, keys=best.keys, should_scan=False)
