"""MongoDB-backed storage for statistics and player statistic progressions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import pymongo
from bson import ObjectId
from pymongo import ASCENDING, IndexModel, ReturnDocument
from pymongo.errors import DuplicateKeyError
from pymongo.read_preferences import ReadPreference

from gameblitz.statistic import (
    AggregationMode,
    InvalidAggregationModeError,
    InvalidStatisticIDError,
    NewStatisticData,
    PlayerProgression,
    PlayerProgressionLandmark,
    PlayerProgressionUpdates,
    PlayerProgressionUpdatesLandmark,
    PlayerStatisticNotFoundError,
    Statistic,
    StatisticNotFoundError,
)

STATISTIC_COLLECTION = "statistics"
PLAYER_STATISTIC_COLLECTION = "playersStatistics"
PLAYER_STATISTIC_INDEX_NAME = "playerId_1_statisticId_1"


class PlayerStatisticProgressionAlreadyCreatedError(Exception):
    """Raised when a player's progression on a statistic already exists."""

    def __init__(self, message: str = "player progression already created") -> None:
        super().__init__(message)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _object_id(raw_id: str) -> ObjectId:
    if not isinstance(raw_id, str) or not ObjectId.is_valid(raw_id):
        raise InvalidStatisticIDError()
    return ObjectId(raw_id)


def _statistic_from_document(document: dict[str, Any]) -> Statistic:
    oid = document.get("_id")
    return Statistic(
        id=str(oid) if oid is not None else "",
        game_id=document.get("gameId", ""),
        name=document.get("name", ""),
        description=document.get("description", ""),
        aggregation_mode=document.get("aggregationMode", ""),
        initial_value=document.get("initialValue"),
        goal=document.get("goal"),
        landmarks=list(document.get("landmarks") or []),
        created_at=document.get("createdAt"),
        updated_at=document.get("updatedAt"),
        deleted_at=document.get("deletedAt"),
    )


def _statistic_document(data: NewStatisticData) -> dict[str, Any]:
    now = _utcnow()
    fields: dict[str, Any] = {
        "createdAt": now,
        "updatedAt": now,
        "gameId": data.game_id,
        "name": data.name,
        "description": data.description,
        "aggregationMode": str(data.aggregation_mode),
        "initialValue": data.initial_value,
        "goal": data.goal,
        "landmarks": list(data.landmarks or []),
    }
    return {key: value for key, value in fields.items() if value not in (None, "", [])}


@dataclass
class PlayerStatisticProgressionLandmark:
    value: float
    completed: bool = False
    completed_at: datetime | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> PlayerStatisticProgressionLandmark:
        return cls(
            value=document.get("value", 0.0),
            completed=bool(document.get("completed", False)),
            completed_at=document.get("completedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {"value": self.value, "completed": self.completed}
        if self.completed_at is not None:
            document["completedAt"] = self.completed_at
        return document


@dataclass
class PlayerStatisticProgression:
    player_id: str = ""
    statistic_id: str = ""
    statistic_aggregation_mode: str = ""
    current_value: float | None = None
    goal_value: float | None = None
    goal_completed: bool | None = None
    goal_completed_at: datetime | None = None
    landmarks: list[PlayerStatisticProgressionLandmark] | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None
    previous_data: PlayerStatisticProgression | None = field(default=None, repr=False)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> PlayerStatisticProgression:
        """Decode a stored progression, including its previous state if present."""
        raw_landmarks = document.get("landmarks")
        previous = document.get("_previousData")
        return cls(
            player_id=document.get("playerId", ""),
            statistic_id=document.get("statisticId", ""),
            statistic_aggregation_mode=document.get("statisticAggregationMode", ""),
            current_value=document.get("currentValue"),
            goal_value=document.get("goalValue"),
            goal_completed=document.get("goalCompleted"),
            goal_completed_at=document.get("goalCompletedAt"),
            landmarks=(
                None
                if raw_landmarks is None
                else [PlayerStatisticProgressionLandmark.from_document(lm) for lm in raw_landmarks]
            ),
            started_at=document.get("startedAt"),
            updated_at=document.get("updatedAt"),
            previous_data=cls.from_document(previous) if previous else None,
        )

    def _to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "playerId": self.player_id,
            "statisticId": self.statistic_id,
            "statisticAggregationMode": self.statistic_aggregation_mode,
            "currentValue": self.current_value,
        }
        if self.started_at is not None:
            document["startedAt"] = self.started_at
        if self.updated_at is not None:
            document["updatedAt"] = self.updated_at
        if self.goal_value is not None:
            document["goalValue"] = self.goal_value
        if self.goal_completed is not None:
            document["goalCompleted"] = self.goal_completed
        if self.goal_completed_at is not None:
            document["goalCompletedAt"] = self.goal_completed_at
        if self.landmarks:
            document["landmarks"] = [lm.to_document() for lm in self.landmarks]
        return document

    def goal_just_completed(self) -> bool:
        """Whether the goal flipped from not completed to completed in the last update."""
        if self.previous_data is None:
            return False
        previous, current = self.previous_data.goal_completed, self.goal_completed
        if previous is None or current is None:
            return False
        return not previous and current

    def landmarks_just_completed(self) -> list[PlayerStatisticProgressionLandmark]:
        """Landmarks that became completed in the last update."""
        if self.previous_data is None:
            return []
        previous, current = self.previous_data.landmarks, self.landmarks
        if previous is None or current is None:
            return []
        return [
            curr
            for curr in current
            if any(
                curr.value == prev.value and not prev.completed and curr.completed
                for prev in previous
            )
        ]

    def to_domain(self) -> PlayerProgression:
        return PlayerProgression(
            player_id=self.player_id,
            statistic_id=self.statistic_id,
            current_value=self.current_value,
            goal_value=self.goal_value,
            goal_completed=self.goal_completed,
            goal_completed_at=self.goal_completed_at,
            landmarks=[
                PlayerProgressionLandmark(
                    value=lm.value, completed=lm.completed, completed_at=lm.completed_at
                )
                for lm in self.landmarks or []
            ],
            started_at=self.started_at,
            updated_at=self.updated_at,
        )

    def to_domain_updates(self) -> PlayerProgressionUpdates:
        return PlayerProgressionUpdates(
            goal_just_completed=self.goal_just_completed(),
            goal_completed_at=self.goal_completed_at,
            landmarks_just_completed=[
                PlayerProgressionUpdatesLandmark(value=lm.value, completed_at=lm.completed_at)
                for lm in self.landmarks_just_completed()
            ],
        )


_AGGREGATION_OPERATORS: dict[str, tuple[str, str, bool]] = {
    AggregationMode.SUM: ("$gte", "$add", True),
    AggregationMode.MAX: ("$gte", "$max", False),
    AggregationMode.SUB: ("$lte", "$subtract", True),
    AggregationMode.MIN: ("$lte", "$min", False),
}


def _if_null_is(field_path: str) -> dict[str, Any]:
    return {"$eq": [{"$ifNull": [field_path, "NULL"]}, "NULL"]}


def _progression_pipeline(aggregation_mode: str, value: float) -> list[dict[str, Any]]:
    try:
        comparison, aggregation, zero_default = _AGGREGATION_OPERATORS[aggregation_mode]
    except KeyError:
        raise InvalidAggregationModeError() from None

    default_current = 0 if zero_default else value
    current_value = {aggregation: [{"$ifNull": ["$currentValue", default_current]}, value]}
    now = _utcnow()
    goal_reached = {
        "$and": [
            {"$eq": ["$goalCompleted", False]},
            {comparison: [current_value, "$goalValue"]},
        ]
    }

    return [
        {"$set": {"_previousData": "$$ROOT"}},
        {
            "$set": {
                "updatedAt": now,
                "startedAt": {
                    "$cond": {"if": _if_null_is("$startedAt"), "then": now, "else": "$startedAt"}
                },
                "currentValue": current_value,
                "landmarks": {
                    "$map": {
                        "input": "$landmarks",
                        "as": "landmark",
                        "in": {
                            "$cond": {
                                "if": {
                                    "$and": [
                                        {"$eq": ["$$landmark.completed", False]},
                                        {comparison: [current_value, "$$landmark.value"]},
                                    ]
                                },
                                "then": {
                                    "$mergeObjects": [
                                        "$$landmark",
                                        {"completed": True, "completedAt": now},
                                    ]
                                },
                                "else": "$$landmark",
                            }
                        },
                    }
                },
                "goalCompleted": {
                    "$cond": {
                        "if": _if_null_is("$goalCompleted"),
                        "then": None,
                        "else": {
                            "$cond": {"if": goal_reached, "then": True, "else": "$goalCompleted"}
                        },
                    }
                },
                "goalCompletedAt": {
                    "$cond": {
                        "if": _if_null_is("$goalCompleted"),
                        "then": None,
                        "else": {
                            "$cond": {"if": goal_reached, "then": now, "else": "$goalCompletedAt"}
                        },
                    }
                },
            }
        },
    ]


class MongoStorage:
    """Statistics and player progressions kept in a MongoDB database."""

    def __init__(self, client: Any, db: str) -> None:
        self.client = client
        self.db = db

    def _collection(self, name: str) -> Any:
        return self.client[self.db][name]

    @property
    def _statistics(self) -> Any:
        return self._collection(STATISTIC_COLLECTION)

    @property
    def _player_statistics(self) -> Any:
        return self._collection(PLAYER_STATISTIC_COLLECTION)

    def close(self) -> None:
        self.client.close()

    def ensure_indexes(self) -> None:
        """Make player progressions unique per player and statistic."""
        self._player_statistics.create_indexes(
            [
                IndexModel(
                    [("playerId", ASCENDING), ("statisticId", ASCENDING)],
                    name=PLAYER_STATISTIC_INDEX_NAME,
                    unique=True,
                )
            ]
        )

    def create_statistic(self, data: NewStatisticData) -> Statistic:
        document = _statistic_document(data)
        result = self._statistics.insert_one(document)
        document["_id"] = result.inserted_id
        return _statistic_from_document(document)

    def get_statistic_by_id_and_game_id(self, statistic_id: str, game_id: str) -> Statistic:
        oid = _object_id(statistic_id)
        document = self._statistics.find_one(
            {"_id": {"$eq": oid}, "gameId": {"$eq": game_id}, "deletedAt": None}
        )
        if document is None:
            raise StatisticNotFoundError()
        return _statistic_from_document(document)

    def soft_delete_statistic(self, statistic_id: str, game_id: str) -> None:
        oid = _object_id(statistic_id)
        result = self._statistics.update_one(
            {"_id": {"$eq": oid}, "gameId": {"$eq": game_id}, "deletedAt": None},
            {"$currentDate": {"deletedAt": True}},
        )
        if result.matched_count == 0:
            raise StatisticNotFoundError()

    def _create_player_progression(self, statistic: Statistic, player_id: str) -> None:
        progression = PlayerStatisticProgression(
            player_id=player_id,
            statistic_id=statistic.id,
            statistic_aggregation_mode=str(statistic.aggregation_mode),
            current_value=statistic.initial_value,
            goal_value=statistic.goal,
            goal_completed=False if statistic.goal is not None else None,
            landmarks=[PlayerStatisticProgressionLandmark(value=lm) for lm in statistic.landmarks],
        )
        try:
            self._player_statistics.insert_one(progression._to_document())
        except DuplicateKeyError as exc:
            raise PlayerStatisticProgressionAlreadyCreatedError() from exc

    def _get_player_progression(self, statistic_id: str, player_id: str) -> PlayerStatisticProgression:
        document = self._player_statistics.find_one(
            {"statisticId": {"$eq": statistic_id}, "playerId": {"$eq": player_id}}
        )
        if document is None:
            raise PlayerStatisticNotFoundError()
        return PlayerStatisticProgression.from_document(document)

    def _update_player_progression(
        self, statistic_id: str, player_id: str, value: float
    ) -> PlayerStatisticProgression:
        current = self._get_player_progression(statistic_id, player_id)
        pipeline = _progression_pipeline(current.statistic_aggregation_mode, value)
        document = self._player_statistics.find_one_and_update(
            {"playerId": {"$eq": player_id}, "statisticId": {"$eq": statistic_id}},
            pipeline,
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            raise PlayerStatisticNotFoundError()
        return PlayerStatisticProgression.from_document(document)

    def _upsert_player_progression(
        self, statistic: Statistic, player_id: str, value: float
    ) -> PlayerStatisticProgression:
        try:
            return self._update_player_progression(statistic.id, player_id, value)
        except PlayerStatisticNotFoundError:
            try:
                self._create_player_progression(statistic, player_id)
            except PlayerStatisticProgressionAlreadyCreatedError:
                pass
            return self._update_player_progression(statistic.id, player_id, value)

    def update_player_statistic_progression(
        self, statistic: Statistic, player_id: str, value: float
    ) -> tuple[PlayerProgression, PlayerProgressionUpdates]:
        """Apply a value to a player's progression, creating it on first use."""
        progression = self._upsert_player_progression(statistic, player_id, value)
        return progression.to_domain(), progression.to_domain_updates()

    def get_player_progression(self, statistic_id: str, player_id: str) -> PlayerProgression:
        return self._get_player_progression(statistic_id, player_id).to_domain()


def connect(conn_str: str, db: str) -> MongoStorage:
    """Connect to MongoDB, check the server answers and ensure indexes exist."""
    client = pymongo.MongoClient(conn_str)
    client.admin.command("ping", read_preference=ReadPreference.PRIMARY_PREFERRED)
    storage = MongoStorage(client, db)
    storage.ensure_indexes()
    return storage