"""
Player identity resolution across feeds.

Feeds disagree on naming ("Scheffler, Scottie" vs "Scottie Scheffler") and
not every recommendation carries the feed's player id. Matching runs an
ordered list of strategies; the first that finds anything wins and reports
how it matched.
"""
from __future__ import annotations

import abc
import re
from dataclasses import dataclass, field
from typing import Generic, Optional, Protocol, Sequence, TypeVar

from shared.models.enums import MatchMethod

_WS = re.compile(r"\s+")


class Identifiable(Protocol):
    player_id: Optional[str]
    player_name: Optional[str]


T = TypeVar("T", bound=Identifiable)


@dataclass(frozen=True)
class PlayerKey:
    """What we know about the player we are looking for."""
    player_id: Optional[str]
    name: Optional[str]


@dataclass
class IdentityMatch(Generic[T]):
    items: list[T] = field(default_factory=list)
    method: Optional[MatchMethod] = None

    @property
    def found(self) -> bool:
        return bool(self.items)

    @property
    def first(self) -> Optional[T]:
        return self.items[0] if self.items else None

    @property
    def low_confidence(self) -> bool:
        return self.method is not None and not self.method.is_canonical


def normalize_name(name: Optional[str]) -> str:
    return _WS.sub(" ", (name or "").strip().lower())


def surname(name: Optional[str]) -> str:
    """'Scheffler, Scottie' -> 'scheffler'; 'Scottie Scheffler' -> 'scheffler'."""
    normalized = normalize_name(name)
    if not normalized:
        return ""
    if "," in normalized:
        return normalized.split(",", 1)[0].strip()
    return normalized.rsplit(" ", 1)[-1]


class MatchStrategy(abc.ABC):
    method: MatchMethod

    @abc.abstractmethod
    def match(self, key: PlayerKey, candidates: Sequence[T]) -> list[T]:
        ...


class ExactIdStrategy(MatchStrategy):
    method = MatchMethod.EXACT_ID

    def match(self, key: PlayerKey, candidates: Sequence[T]) -> list[T]:
        if not key.player_id:
            return []
        return [c for c in candidates if c.player_id is not None and str(c.player_id) == key.player_id]


class FullNameStrategy(MatchStrategy):
    method = MatchMethod.FULL_NAME

    def match(self, key: PlayerKey, candidates: Sequence[T]) -> list[T]:
        target = normalize_name(key.name)
        if not target:
            return []
        return [c for c in candidates if normalize_name(c.player_name) == target]


class LastNameStrategy(MatchStrategy):
    method = MatchMethod.LAST_NAME

    def __init__(self, min_length: int = 3) -> None:
        self._min_length = min_length

    def match(self, key: PlayerKey, candidates: Sequence[T]) -> list[T]:
        target = surname(key.name)
        if len(target) < self._min_length:
            return []
        return [c for c in candidates if c.player_name and surname(c.player_name) == target]


def default_strategies(min_surname_length: int = 3) -> list[MatchStrategy]:
    return [ExactIdStrategy(), FullNameStrategy(), LastNameStrategy(min_surname_length)]


class IdentityResolver:
    """Runs strategies in order; the first non-empty result wins."""

    def __init__(self, strategies: Sequence[MatchStrategy] | None = None) -> None:
        self._strategies = list(strategies) if strategies is not None else default_strategies()

    def resolve_all(self, key: PlayerKey, candidates: Sequence[T]) -> IdentityMatch[T]:
        """Every candidate matched by the strongest strategy that matches anything."""
        if not candidates:
            return IdentityMatch()
        for strategy in self._strategies:
            found = strategy.match(key, candidates)
            if found:
                return IdentityMatch(items=found, method=strategy.method)
        return IdentityMatch()

    def resolve_one(self, key: PlayerKey, candidates: Sequence[T]) -> IdentityMatch[T]:
        result = self.resolve_all(key, candidates)
        if len(result.items) > 1:
            result.items = result.items[:1]
        return result
