"""Statistics: validation and player progression use cases."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class StatisticError(Exception):
    """Base class for statistic errors."""

    default_message = "statistic error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class InvalidStatisticIDError(StatisticError):
    default_message = "invalid id"


class InvalidNameError(StatisticError):
    default_message = "invalid name"


class MissingGameIDError(StatisticError):
    default_message = "missing game id"


class InvalidAggregationModeError(StatisticError):
    default_message = "invalid aggregation mode"


class StatisticNotFoundError(StatisticError):
    default_message = "statistic not found"


class PlayerStatisticNotFoundError(StatisticError):
    default_message = "player statistic not found"


class StatisticValidationError(StatisticError):
    """Raised when new statistic data fails validation; holds every problem found."""

    default_message = "invalid statistic"

    def __init__(self, errors: Sequence[StatisticError]) -> None:
        self.errors = tuple(errors)
        details = "; ".join(str(err) for err in self.errors)
        super().__init__(f"{self.default_message}: {details}" if details else None)


class AggregationMode(StrEnum):
    SUM = "SUM"
    SUB = "SUB"
    MAX = "MAX"
    MIN = "MIN"


_AGGREGATION_MODES = frozenset(mode.value for mode in AggregationMode)


@dataclass
class NewStatisticData:
    game_id: str = ""
    name: str = ""
    description: str = ""
    aggregation_mode: str = ""
    initial_value: float | None = None
    goal: float | None = None
    landmarks: list[float] = field(default_factory=list)

    def validate(self) -> None:
        """Raise StatisticValidationError listing every invalid field."""
        problems: list[StatisticError] = []

        if not self.game_id:
            problems.append(MissingGameIDError())
        if not self.name:
            problems.append(InvalidNameError())
        if self.aggregation_mode not in _AGGREGATION_MODES:
            problems.append(InvalidAggregationModeError())

        if problems:
            raise StatisticValidationError(problems)


@dataclass
class Statistic:
    id: str = ""
    game_id: str = ""
    name: str = ""
    description: str = ""
    aggregation_mode: str = ""
    initial_value: float | None = None
    goal: float | None = None
    landmarks: list[float] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass
class PlayerProgressionUpdatesLandmark:
    value: float
    completed_at: datetime | None = None


@dataclass
class PlayerProgressionUpdates:
    goal_just_completed: bool = False
    goal_completed_at: datetime | None = None
    landmarks_just_completed: list[PlayerProgressionUpdatesLandmark] = field(default_factory=list)


@dataclass
class PlayerProgressionLandmark:
    value: float
    completed: bool = False
    completed_at: datetime | None = None


@dataclass
class PlayerProgression:
    player_id: str = ""
    statistic_id: str = ""
    current_value: float | None = None
    goal_value: float | None = None
    goal_completed: bool | None = None
    goal_completed_at: datetime | None = None
    landmarks: list[PlayerProgressionLandmark] = field(default_factory=list)
    started_at: datetime | None = None
    updated_at: datetime | None = None


NotifierPlayerProgressionUpdates = Callable[
    [Statistic, PlayerProgression, PlayerProgressionUpdates], None
]

StorageCreateStatistic = Callable[[NewStatisticData], Statistic]
StorageGetStatisticByIDAndGameID = Callable[[str, str], Statistic]
StorageSoftDeleteStatistic = Callable[[str, str], None]
StorageUpdatePlayerProgression = Callable[
    [Statistic, str, float], tuple[PlayerProgression, PlayerProgressionUpdates]
]
StorageGetPlayerProgression = Callable[[str, str], PlayerProgression]

CreateFunc = Callable[[NewStatisticData], Statistic]
GetByIDAndGameIDFunc = Callable[[str, str], Statistic]
SoftDeleteByIDAndGameIDFunc = Callable[[str, str], None]
UpsertPlayerProgressionFunc = Callable[[Statistic, str, float], None]
GetPlayerProgressionFunc = Callable[[str, str], PlayerProgression]


def build_create_statistic_func(storage_create: StorageCreateStatistic) -> CreateFunc:
    """Create a statistic after validating its data."""

    def create(data: NewStatisticData) -> Statistic:
        data.validate()
        return storage_create(data)

    return create


def build_get_statistic_by_id_and_game_id_func(
    storage_get: StorageGetStatisticByIDAndGameID,
) -> GetByIDAndGameIDFunc:
    """Fetch a statistic by its id and the owning game's id."""

    def get(statistic_id: str, game_id: str) -> Statistic:
        return storage_get(statistic_id, game_id)

    return get


def build_soft_delete_statistic_func(
    storage_soft_delete: StorageSoftDeleteStatistic,
) -> SoftDeleteByIDAndGameIDFunc:
    """Soft delete a statistic."""

    def soft_delete(statistic_id: str, game_id: str) -> None:
        storage_soft_delete(statistic_id, game_id)

    return soft_delete


def build_upsert_player_progression_func(
    notifier: NotifierPlayerProgressionUpdates,
    storage_update: StorageUpdatePlayerProgression,
) -> UpsertPlayerProgressionFunc:
    """Update a player's progression, notifying when a goal or landmark is reached."""

    def upsert(statistic: Statistic, player_id: str, value: float) -> None:
        progression, updates = storage_update(statistic, player_id, value)
        if updates.landmarks_just_completed or updates.goal_just_completed:
            notifier(statistic, progression, updates)

    return upsert


def build_get_player_progression_func(
    storage_get: StorageGetPlayerProgression,
) -> GetPlayerProgressionFunc:
    """Fetch a player's progression on a statistic."""

    def get(statistic_id: str, player_id: str) -> PlayerProgression:
        return storage_get(statistic_id, player_id)

    return get