"""Leaderboards: validation, lifecycle and ranking use cases."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class LeaderboardError(Exception):
    """Base class for leaderboard errors."""

    default_message = "leaderboard error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class InvalidNameError(LeaderboardError):
    default_message = "invalid name"


class InvalidGameIDError(LeaderboardError):
    default_message = "invalid game id"


class InvalidStartDateError(LeaderboardError):
    default_message = "invalid start date"


class InvalidAggregationModeError(LeaderboardError):
    default_message = "invalid aggregation mode"


class InvalidOrderingError(LeaderboardError):
    default_message = "invalid ordering"


class EndDateBeforeStartDateError(LeaderboardError):
    default_message = "end date must be after the start date"


class InvalidLeaderboardIDError(LeaderboardError):
    default_message = "invalid leaderboard id"


class LeaderboardNotFoundError(LeaderboardError):
    default_message = "leaderboard not found"


class LeaderboardClosedError(LeaderboardError):
    default_message = "leaderboard closed"


class InvalidPageNumberError(LeaderboardError):
    default_message = "invalid page number"


class InvalidLimitNumberError(LeaderboardError):
    default_message = "invalid limit number"


class ValidationError(LeaderboardError):
    """Raised when new leaderboard data fails validation; holds every problem found."""

    default_message = "validation error"

    def __init__(self, errors: list[LeaderboardError] | tuple[LeaderboardError, ...]) -> None:
        self.errors = tuple(errors)
        details = "; ".join(str(err) for err in self.errors)
        super().__init__(f"{self.default_message}: {details}" if details else None)


class AggregationMode(StrEnum):
    INC = "INC"
    MAX = "MAX"
    MIN = "MIN"


class Ordering(StrEnum):
    ASC = "ASC"
    DESC = "DESC"


MAX_LIMIT_NUMBER = 500
MIN_LIMIT_NUMBER = 1
MIN_PAGE_NUMBER = 0

_AGGREGATION_MODES = frozenset(mode.value for mode in AggregationMode)
_ORDERINGS = frozenset(order.value for order in Ordering)


def _now_like(reference: datetime | None) -> datetime:
    """Current time, naive or aware to match the reference datetime."""
    return datetime.now(reference.tzinfo if reference is not None else None)


@dataclass
class NewLeaderboardData:
    game_id: str = ""
    name: str = ""
    description: str = ""
    start_at: datetime | None = None
    end_at: datetime | None = None
    aggregation_mode: str = ""
    ordering: str = ""

    def validate(self) -> None:
        """Raise ValidationError listing every invalid field."""
        problems: list[LeaderboardError] = []

        if not self.name:
            problems.append(InvalidNameError())
        if not self.game_id:
            problems.append(InvalidGameIDError())
        if self.start_at is None:
            problems.append(InvalidStartDateError())
        if self.aggregation_mode not in _AGGREGATION_MODES:
            problems.append(InvalidAggregationModeError())
        if self.ordering not in _ORDERINGS:
            problems.append(InvalidOrderingError())
        if (
            self.end_at is not None
            and self.start_at is not None
            and self.end_at < self.start_at
        ):
            problems.append(EndDateBeforeStartDateError())

        if problems:
            raise ValidationError(problems)


@dataclass
class Leaderboard:
    id: str = ""
    game_id: str = ""
    name: str = ""
    description: str = ""
    start_at: datetime | None = None
    end_at: datetime | None = None
    aggregation_mode: str = ""
    ordering: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    def closed(self) -> bool:
        """Whether the leaderboard rejects new rank updates right now."""
        if self.deleted_at is not None:
            return True
        now = _now_like(self.start_at or self.end_at)
        if self.start_at is not None and now < self.start_at:
            return True
        return self.end_at is not None and now > self.end_at


@dataclass
class Rank:
    leaderboard_id: str
    player_id: str
    position: int
    value: float


StorageCreateLeaderboard = Callable[[NewLeaderboardData], Leaderboard]
StorageGetLeaderboardByIDAndGameID = Callable[[str, str], Leaderboard]
StorageSoftDeleteLeaderboard = Callable[[str, str], None]
StorageUpsertPlayerRankValue = Callable[[Leaderboard, str, float], None]
StorageGetRanking = Callable[[str, str, int, int], list[Rank]]

CreateFunc = Callable[[NewLeaderboardData], Leaderboard]
GetByIDAndGameIDFunc = Callable[[str, str], Leaderboard]
SoftDeleteFunc = Callable[[str, str], None]
UpsertPlayerRankFunc = Callable[[Leaderboard, str, float], None]
RankingFunc = Callable[[Leaderboard, int, int], list[Rank]]


def build_create_func(storage_create: StorageCreateLeaderboard) -> CreateFunc:
    """Create a leaderboard after validating its data."""

    def create(data: NewLeaderboardData) -> Leaderboard:
        data.validate()
        return storage_create(data)

    return create


def build_get_by_id_and_game_id_func(
    storage_get: StorageGetLeaderboardByIDAndGameID,
) -> GetByIDAndGameIDFunc:
    """Fetch a leaderboard by its id and the owning game's id."""

    def get(leaderboard_id: str, game_id: str) -> Leaderboard:
        return storage_get(leaderboard_id, game_id)

    return get


def build_soft_delete_func(storage_soft_delete: StorageSoftDeleteLeaderboard) -> SoftDeleteFunc:
    """Soft delete a leaderboard."""

    def soft_delete(leaderboard_id: str, game_id: str) -> None:
        storage_soft_delete(leaderboard_id, game_id)

    return soft_delete


def build_upsert_player_rank_func(
    storage_upsert: StorageUpsertPlayerRankValue,
) -> UpsertPlayerRankFunc:
    """Set or update a player's rank unless the leaderboard is closed."""

    def upsert(leaderboard: Leaderboard, player_id: str, value: float) -> None:
        if leaderboard.closed():
            raise LeaderboardClosedError()
        storage_upsert(leaderboard, player_id, value)

    return upsert


def build_ranking_func(storage_get_ranking: StorageGetRanking) -> RankingFunc:
    """Return one page of a leaderboard's ranking."""

    def ranking(leaderboard: Leaderboard, page: int, limit: int) -> list[Rank]:
        if page < MIN_PAGE_NUMBER:
            raise InvalidPageNumberError()
        if limit < MIN_LIMIT_NUMBER or limit > MAX_LIMIT_NUMBER:
            raise InvalidLimitNumberError()
        return storage_get_ranking(leaderboard.id, leaderboard.ordering, page, limit)

    return ranking