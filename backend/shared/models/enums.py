"""Domain enumerations for the live tournament tracker."""
from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCode(str, Enum):
    """Step codes attached to data-quality issues."""

    # error
    BASELINE_MISSING = "BASELINE_MISSING"
    # warning
    ODDS_MISSING = "ODDS_MISSING"
    ODDS_BOOK_NOT_ALLOWED = "ODDS_BOOK_NOT_ALLOWED"
    MAPPING_LOW_CONFIDENCE = "MAPPING_LOW_CONFIDENCE"
    STATS_MISSING = "STATS_MISSING"
    TOUR_NOT_SUPPORTED = "TOUR_NOT_SUPPORTED"
    MARKET_NOT_SUPPORTED = "MARKET_NOT_SUPPORTED"
    LIVE_FEED_SHAPE_UNKNOWN = "LIVE_FEED_SHAPE_UNKNOWN"
    EVENT_MISMATCH = "EVENT_MISMATCH"
    # info
    EVENT_NOT_IN_PLAY = "EVENT_NOT_IN_PLAY"
    PLAYER_NOT_FOUND_IN_LIVE_FEED = "PLAYER_NOT_FOUND_IN_LIVE_FEED"
    ODDS_CROSS_BOOK = "ODDS_CROSS_BOOK"
    BOOK_NOT_AVAILABLE_FROM_PROVIDER = "BOOK_NOT_AVAILABLE_FROM_PROVIDER"
    BASELINE_FALLBACK_CREATED = "BASELINE_FALLBACK_CREATED"


class Outcome(str, Enum):
    WON = "won"
    LOST = "lost"
    PUSH = "push"
    PENDING = "pending"


class PlayerStatus(str, Enum):
    MISSED_CUT = "MC"
    WITHDRAWN = "WD"
    DISQUALIFIED = "DQ"


class EventStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    IN_PROGRESS_NO_DATA = "in_progress_no_data"
    COMPLETED = "completed"
    NOT_FOUND = "not_found"


class MovementDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"


class MatchMethod(str, Enum):
    """How a recommendation was joined to a feed row, strongest first."""

    EXACT_ID = "exact_id"
    FULL_NAME = "full_name"
    LAST_NAME = "last_name"

    @property
    def is_canonical(self) -> bool:
        return self == MatchMethod.EXACT_ID


class FeedCategory(str, Enum):
    PREDS = "preds"
    ODDS = "odds"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class OverrideStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
