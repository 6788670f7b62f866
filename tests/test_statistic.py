import random
import uuid
from datetime import datetime

import pytest

from gameblitz.statistic import (
    AggregationMode,
    InvalidAggregationModeError,
    InvalidNameError,
    InvalidStatisticIDError,
    MissingGameIDError,
    NewStatisticData,
    PlayerProgression,
    PlayerProgressionUpdates,
    PlayerProgressionUpdatesLandmark,
    PlayerStatisticNotFoundError,
    Statistic,
    StatisticNotFoundError,
    StatisticValidationError,
    build_create_statistic_func,
    build_get_player_progression_func,
    build_get_statistic_by_id_and_game_id_func,
    build_soft_delete_statistic_func,
    build_upsert_player_progression_func,
)


def _valid_data(mode=AggregationMode.MAX):
    return NewStatisticData(
        game_id=str(uuid.uuid4()),
        name="Test Create Statistic",
        description="Test build create statistic unit test",
        aggregation_mode=mode,
        goal=None,
        landmarks=[10, 50, 100],
    )


def test_validate_ok():
    data = NewStatisticData(
        game_id=str(uuid.uuid4()),
        name="Test Validate Statistic",
        description="Test validate statistic unit test",
        aggregation_mode=AggregationMode.SUM,
        goal=None,
        landmarks=[50, 100, 200],
    )
    assert data.validate() is None
    assert data.landmarks == [50, 100, 200]


def test_validate_error():
    with pytest.raises(StatisticValidationError) as info:
        NewStatisticData().validate()
    kinds = [type(err) for err in info.value.errors]
    assert kinds == [MissingGameIDError, InvalidNameError, InvalidAggregationModeError]


def test_create_ok():
    statistic_id = str(uuid.uuid4())

    def storage(data):
        return Statistic(
            id=statistic_id,
            game_id=data.game_id,
            name=data.name,
            description=data.description,
            aggregation_mode=data.aggregation_mode,
            goal=data.goal,
            landmarks=data.landmarks,
        )

    data = _valid_data()
    statistic = build_create_statistic_func(storage)(data)

    assert statistic.id == statistic_id
    assert statistic.game_id == data.game_id
    assert statistic.name == data.name
    assert statistic.description == data.description
    assert statistic.aggregation_mode == data.aggregation_mode
    assert statistic.goal == data.goal
    assert statistic.landmarks == data.landmarks


def test_create_validation_error():
    create = build_create_statistic_func(None)
    with pytest.raises(StatisticValidationError):
        create(NewStatisticData())


def test_create_random_error():
    def storage(data):
        raise RuntimeError("any error")

    with pytest.raises(RuntimeError, match="any error"):
        build_create_statistic_func(storage)(_valid_data())


def test_get_by_id_and_game_id_passes_through():
    def storage(statistic_id, game_id):
        return Statistic(id=statistic_id, game_id=game_id)

    statistic = build_get_statistic_by_id_and_game_id_func(storage)("s1", "g1")
    assert (statistic.id, statistic.game_id) == ("s1", "g1")


@pytest.mark.parametrize("error", [InvalidStatisticIDError, StatisticNotFoundError])
def test_get_by_id_and_game_id_errors(error):
    def storage(statistic_id, game_id):
        raise error()

    with pytest.raises(error):
        build_get_statistic_by_id_and_game_id_func(storage)("s1", "g1")


def test_soft_delete_calls_storage():
    calls = []
    build_soft_delete_statistic_func(lambda i, g: calls.append((i, g)))("s1", "g1")
    assert calls == [("s1", "g1")]


def test_soft_delete_not_found():
    def storage(statistic_id, game_id):
        raise StatisticNotFoundError()

    with pytest.raises(StatisticNotFoundError):
        build_soft_delete_statistic_func(storage)("s1", "g1")


@pytest.mark.parametrize("mode", list(AggregationMode))
def test_upsert_without_goals_or_landmarks(mode):
    calls = []

    def storage(statistic, player_id, value):
        calls.append((statistic.aggregation_mode, player_id, value))
        return PlayerProgression(), PlayerProgressionUpdates()

    player_id = str(uuid.uuid4())
    value = random.random()
    upsert = build_upsert_player_progression_func(None, storage)
    upsert(Statistic(aggregation_mode=mode), player_id, value)
    assert calls == [(mode, player_id, value)]


def test_upsert_with_empty_updates_does_not_notify():
    notified = []
    upsert = build_upsert_player_progression_func(
        lambda *args: notified.append(args),
        lambda s, p, v: (PlayerProgression(), PlayerProgressionUpdates()),
    )
    upsert(Statistic(aggregation_mode=AggregationMode.SUM), "p1", 1.0)
    assert notified == []


def test_upsert_notifies_when_goal_completed():
    notified = []
    progression = PlayerProgression(player_id="p1")
    updates = PlayerProgressionUpdates(goal_just_completed=True, goal_completed_at=datetime.now())
    upsert = build_upsert_player_progression_func(
        lambda *args: notified.append(args),
        lambda s, p, v: (progression, updates),
    )
    statistic = Statistic(id="s1", aggregation_mode=AggregationMode.SUM)
    upsert(statistic, "p1", 5.0)
    assert notified == [(statistic, progression, updates)]


def test_upsert_notifies_when_landmark_completed():
    notified = []
    updates = PlayerProgressionUpdates(
        landmarks_just_completed=[PlayerProgressionUpdatesLandmark(value=10)]
    )
    upsert = build_upsert_player_progression_func(
        lambda *args: notified.append(args),
        lambda s, p, v: (PlayerProgression(), updates),
    )
    upsert(Statistic(aggregation_mode=AggregationMode.MAX), "p1", 12.0)
    assert len(notified) == 1
    assert notified[0][2].landmarks_just_completed[0].value == 10


def test_upsert_invalid_aggregation_mode():
    def storage(statistic, player_id, value):
        raise InvalidAggregationModeError()

    upsert = build_upsert_player_progression_func(None, storage)
    with pytest.raises(InvalidAggregationModeError):
        upsert(Statistic(aggregation_mode="INVALID"), "p1", random.random())


def test_notifier_error_propagates():
    def notifier(statistic, progression, updates):
        raise RuntimeError("any error")

    upsert = build_upsert_player_progression_func(
        notifier,
        lambda s, p, v: (PlayerProgression(), PlayerProgressionUpdates(goal_just_completed=True)),
    )
    with pytest.raises(RuntimeError):
        upsert(Statistic(aggregation_mode=AggregationMode.SUM), "p1", 1.0)


def test_get_player_progression():
    def storage(statistic_id, player_id):
        return PlayerProgression(statistic_id=statistic_id, player_id=player_id)

    progression = build_get_player_progression_func(storage)("s1", "p1")
    assert (progression.statistic_id, progression.player_id) == ("s1", "p1")


def test_get_player_progression_not_found():
    def storage(statistic_id, player_id):
        raise PlayerStatisticNotFoundError()

    with pytest.raises(PlayerStatisticNotFoundError):
        build_get_player_progression_func(storage)("s1", "p1")