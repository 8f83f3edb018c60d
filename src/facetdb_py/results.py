from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ItemResult:
    data: Any


@dataclass(frozen=True)
class QueryResult:
    data: Any
    cursor: Any = None


@dataclass(frozen=True)
class BatchGetResult:
    data: list[Any] = field(default_factory=list)
    unprocessed: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class BatchWriteResult:
    unprocessed: list[Any] = field(default_factory=list)
