from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, OperationFailure

from gameblitz.mongo_storage import (
    PLAYER_STATISTIC_COLLECTION,
    STATISTIC_COLLECTION,
    MongoStorage,
    PlayerStatisticProgression,
    PlayerStatisticProgressionAlreadyCreatedError,
)
from gameblitz.statistic import (
    InvalidAggregationModeError,
    InvalidStatisticIDError,
    NewStatisticData,
    PlayerStatisticNotFoundError,
    Statistic,
    StatisticNotFoundError,
)


def _matches(document, query):
    for key, condition in query.items():
        if condition is None:
            if document.get(key) is not None:
                return False
        elif isinstance(condition, dict) and "$eq" in condition:
            if document.get(key) != condition["$eq"]:
                return False
        elif document.get(key) != condition:
            return False
    return True


class FakeCollection:
    def __init__(self):
        self.docs = []
        self.indexes = []
        self.updates = []
        self.after = None
        self.duplicate = False
        self.index_failure = False

    def insert_one(self, document):
        if self.duplicate:
            raise DuplicateKeyError("duplicate")
        document = dict(document)
        document.setdefault("_id", ObjectId())
        self.docs.append(document)
        return SimpleNamespace(inserted_id=document["_id"])

    def find_one(self, query):
        return next((doc for doc in self.docs if _matches(doc, query)), None)

    def update_one(self, query, update):
        doc = self.find_one(query)
        if doc is None:
            return SimpleNamespace(matched_count=0)
        for key in update.get("$currentDate", {}):
            doc[key] = datetime.now(timezone.utc)
        return SimpleNamespace(matched_count=1)

    def find_one_and_update(self, query, update, return_document=None):
        self.updates.append((query, update))
        return self.after

    def create_indexes(self, models):
        if self.index_failure:
            raise OperationFailure("index build failed")
        self.indexes.extend(model.document for model in models)
        return [model.document["name"] for model in models]


@pytest.fixture
def collections():
    return {STATISTIC_COLLECTION: FakeCollection(), PLAYER_STATISTIC_COLLECTION: FakeCollection()}


@pytest.fixture
def storage(collections):
    return MongoStorage({"games": collections}, "games")


def _progression_doc(**overrides):
    doc = {
        "playerId": "player-1",
        "statisticId": "stat-1",
        "statisticAggregationMode": "SUM",
        "currentValue": 5.0,
    }
    doc.update(overrides)
    return doc


def test_from_document_round_trip_to_domain():
    completed_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    doc = _progression_doc(
        goalValue=10.0,
        goalCompleted=False,
        landmarks=[{"value": 1.0, "completed": True, "completedAt": completed_at}],
    )
    domain = PlayerStatisticProgression.from_document(doc).to_domain()
    assert domain.player_id == "player-1"
    assert domain.statistic_id == "stat-1"
    assert domain.current_value == 5.0
    assert domain.goal_value == 10.0
    assert domain.goal_completed is False
    assert [(lm.value, lm.completed, lm.completed_at) for lm in domain.landmarks] == [
        (1.0, True, completed_at)
    ]


def test_goal_just_completed_requires_transition():
    prev = _progression_doc(goalCompleted=False)
    progression = PlayerStatisticProgression.from_document(
        _progression_doc(goalCompleted=True, _previousData=prev)
    )
    assert progression.goal_just_completed() is True

    already = PlayerStatisticProgression.from_document(
        _progression_doc(goalCompleted=True, _previousData=_progression_doc(goalCompleted=True))
    )
    assert already.goal_just_completed() is False

    no_previous = PlayerStatisticProgression.from_document(_progression_doc(goalCompleted=True))
    assert no_previous.goal_just_completed() is False

    no_goal = PlayerStatisticProgression.from_document(
        _progression_doc(_previousData=_progression_doc())
    )
    assert no_goal.goal_just_completed() is False


def test_landmarks_just_completed_and_updates():
    completed_at = datetime(2024, 2, 2, tzinfo=timezone.utc)
    prev = _progression_doc(
        landmarks=[
            {"value": 1.0, "completed": True},
            {"value": 2.0, "completed": False},
            {"value": 3.0, "completed": False},
        ]
    )
    doc = _progression_doc(
        landmarks=[
            {"value": 1.0, "completed": True},
            {"value": 2.0, "completed": True, "completedAt": completed_at},
            {"value": 3.0, "completed": False},
        ],
        _previousData=prev,
    )
    progression = PlayerStatisticProgression.from_document(doc)
    assert [lm.value for lm in progression.landmarks_just_completed()] == [2.0]

    updates = progression.to_domain_updates()
    assert updates.goal_just_completed is False
    assert [(lm.value, lm.completed_at) for lm in updates.landmarks_just_completed] == [
        (2.0, completed_at)
    ]


def test_landmarks_just_completed_without_previous_is_empty():
    progression = PlayerStatisticProgression.from_document(
        _progression_doc(landmarks=[{"value": 1.0, "completed": True}])
    )
    assert progression.landmarks_just_completed() == []


def test_create_and_get_statistic(storage, collections):
    data = NewStatisticData(
        game_id="game-1", name="Kills", aggregation_mode="SUM", landmarks=[10.0, 50.0]
    )
    created = storage.create_statistic(data)
    assert ObjectId.is_valid(created.id)
    assert created.name == "Kills"

    stored = collections[STATISTIC_COLLECTION].docs[0]
    assert "goal" not in stored
    assert "description" not in stored

    fetched = storage.get_statistic_by_id_and_game_id(created.id, "game-1")
    assert fetched.id == created.id
    assert fetched.landmarks == [10.0, 50.0]
    assert fetched.aggregation_mode == "SUM"


def test_get_statistic_invalid_id(storage):
    with pytest.raises(InvalidStatisticIDError):
        storage.get_statistic_by_id_and_game_id("invalid-id", "game-1")


def test_get_statistic_wrong_game_not_found(storage):
    created = storage.create_statistic(
        NewStatisticData(game_id="game-1", name="Kills", aggregation_mode="MAX")
    )
    with pytest.raises(StatisticNotFoundError):
        storage.get_statistic_by_id_and_game_id(created.id, "game-2")


def test_soft_delete_statistic(storage):
    created = storage.create_statistic(
        NewStatisticData(game_id="game-1", name="Kills", aggregation_mode="MIN")
    )
    storage.soft_delete_statistic(created.id, "game-1")
    with pytest.raises(StatisticNotFoundError):
        storage.get_statistic_by_id_and_game_id(created.id, "game-1")
    with pytest.raises(StatisticNotFoundError):
        storage.soft_delete_statistic(created.id, "game-1")


def test_soft_delete_invalid_id(storage):
    with pytest.raises(InvalidStatisticIDError):
        storage.soft_delete_statistic("invalid-id", "game-1")


def test_ensure_indexes(storage, collections):
    players = collections[PLAYER_STATISTIC_COLLECTION]
    storage.ensure_indexes()
    index = players.indexes[0]
    assert index["name"] == "playerId_1_statisticId_1"
    assert index["unique"] is True
    assert list(index["key"].items()) == [("playerId", 1), ("statisticId", 1)]

    players.index_failure = True
    with pytest.raises(OperationFailure):
        storage.ensure_indexes()


def test_update_creates_progression_when_missing(storage, collections):
    players = collections[PLAYER_STATISTIC_COLLECTION]
    prev = _progression_doc(goalValue=10.0, goalCompleted=False, currentValue=None)
    players.after = _progression_doc(
        goalValue=10.0, goalCompleted=True, currentValue=12.0, _previousData=prev
    )
    statistic = Statistic(
        id="stat-1", game_id="game-1", aggregation_mode="SUM", goal=10.0, landmarks=[5.0]
    )

    progression, updates = storage.update_player_statistic_progression(statistic, "player-1", 12.0)

    inserted = players.docs[0]
    assert inserted["goalCompleted"] is False
    assert inserted["landmarks"] == [{"value": 5.0, "completed": False}]
    assert inserted["currentValue"] is None
    assert progression.current_value == 12.0
    assert updates.goal_just_completed is True

    query, pipeline = players.updates[0]
    assert query == {"playerId": {"$eq": "player-1"}, "statisticId": {"$eq": "stat-1"}}
    assert pipeline[0] == {"$set": {"_previousData": "$$ROOT"}}
    assert "$add" in pipeline[1]["$set"]["currentValue"]


def test_update_ignores_duplicate_creation(storage, collections):
    players = collections[PLAYER_STATISTIC_COLLECTION]
    players.duplicate = True
    statistic = Statistic(id="stat-1", aggregation_mode="MAX")
    with pytest.raises(PlayerStatisticNotFoundError):
        storage.update_player_statistic_progression(statistic, "player-1", 1.0)
    assert players.docs == []


def test_create_duplicate_raises_already_created(storage, collections):
    collections[PLAYER_STATISTIC_COLLECTION].duplicate = True
    with pytest.raises(PlayerStatisticProgressionAlreadyCreatedError):
        storage._create_player_progression(Statistic(id="stat-1", aggregation_mode="SUM"), "p")


def test_update_invalid_aggregation_mode(storage, collections):
    collections[PLAYER_STATISTIC_COLLECTION].docs.append(
        _progression_doc(statisticAggregationMode="INVALID")
    )
    with pytest.raises(InvalidAggregationModeError):
        storage.update_player_statistic_progression(
            Statistic(id="stat-1", aggregation_mode="INVALID"), "player-1", 1.0
        )


def test_get_player_progression(storage, collections):
    with pytest.raises(PlayerStatisticNotFoundError):
        storage.get_player_progression("stat-1", "player-1")

    collections[PLAYER_STATISTIC_COLLECTION].docs.append(_progression_doc())
    progression = storage.get_player_progression("stat-1", "player-1")
    assert progression.player_id == "player-1"
    assert progression.current_value == 5.0
    assert progression.landmarks == []