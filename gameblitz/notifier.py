"""Publishing of player progression updates to RabbitMQ topic exchanges."""

from __future__ import annotations

import json
from contextlib import suppress
from datetime import datetime
from typing import Any

import pika
from pika.exceptions import AMQPError

from gameblitz.quest import PlayerQuestProgression, Task
from gameblitz.statistic import PlayerProgression, PlayerProgressionUpdates, Statistic

QUEST_EXCHANGE = "gameblitz.quest"
STATISTIC_EXCHANGE = "gameblitz.statistic"
CONTENT_TYPE = "application/json"

_ZERO_TIME = "0001-01-01T00:00:00Z"


def _format_time(value: datetime) -> str:
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _required_time(value: datetime | None) -> str:
    """A timestamp that is always present; an unset one is the zero time."""
    return _ZERO_TIME if value is None else _format_time(value)


def _optional_time(value: datetime | None) -> str | None:
    return None if value is None else _format_time(value)


def quest_routing_key(game_id: str, quest_id: str) -> str:
    """Routing key for a quest's progression updates."""
    return f"game.{game_id}.quest.{quest_id}"


def statistic_routing_key(game_id: str, statistic_id: str) -> str:
    """Routing key for a statistic's progression updates."""
    return f"game.{game_id}.statistic.{statistic_id}"


def _task_message(task: Task) -> dict[str, Any]:
    return {
        "createdAt": _required_time(task.created_at),
        "updatedAt": _required_time(task.updated_at),
        "deletedAt": _optional_time(task.deleted_at),
        "id": task.id,
        "name": task.name,
        "description": task.description,
        "dependsOn": list(task.depends_on),
        "requiredForCompletion": task.required_for_completion,
    }


def quest_progression_message(progression: PlayerQuestProgression) -> dict[str, Any]:
    """The JSON-ready message describing a player's quest progression."""
    quest = progression.quest
    return {
        "startedAt": _required_time(progression.started_at),
        "updatedAt": _required_time(progression.updated_at),
        "playerId": progression.player_id,
        "quest": {
            "createdAt": _required_time(quest.created_at),
            "updatedAt": _required_time(quest.updated_at),
            "deletedAt": _optional_time(quest.deleted_at),
            "id": quest.id,
            "gameId": quest.game_id,
            "name": quest.name,
            "description": quest.description,
            "tasks": [_task_message(task) for task in quest.tasks],
        },
        "completedAt": _optional_time(progression.completed_at),
        "tasksProgression": [
            {
                "startedAt": _required_time(tp.started_at),
                "updatedAt": _required_time(tp.updated_at),
                "task": _task_message(tp.task),
                "completedAt": _optional_time(tp.completed_at),
            }
            for tp in progression.tasks_progression
        ],
    }


def statistic_progression_message(
    progression: PlayerProgression, updates: PlayerProgressionUpdates
) -> dict[str, Any]:
    """The JSON-ready message describing a player's statistic progression and its last update."""
    return {
        "startedAt": _required_time(progression.started_at),
        "updatedAt": _required_time(progression.updated_at),
        "playerId": progression.player_id,
        "statisticId": progression.statistic_id,
        "currentValue": progression.current_value,
        "goalValue": progression.goal_value,
        "goalCompleted": progression.goal_completed,
        "goalCompletedAt": _optional_time(progression.goal_completed_at),
        "landmarks": [
            {
                "value": landmark.value,
                "completed": landmark.completed,
                "completedAt": _optional_time(landmark.completed_at),
            }
            for landmark in progression.landmarks
        ],
        "lastUpdate": {
            "goalJustCompleted": updates.goal_just_completed,
            "goalCompletedAt": _optional_time(updates.goal_completed_at),
            "landmarksJustCompleted": [
                {"value": landmark.value, "completedAt": _required_time(landmark.completed_at)}
                for landmark in updates.landmarks_just_completed
            ],
        },
    }


class Producer:
    """Publishes progression updates over an AMQP connection."""

    def __init__(self, connection: Any, channel: Any = None) -> None:
        self.connection = connection
        self.channel = channel

    def _get_channel(self) -> Any:
        if self.channel is not None:
            if self.channel.is_open:
                return self.channel
            with suppress(AMQPError):
                self.channel.close()
        self.channel = self.connection.channel()
        return self.channel

    def _declare_exchange(self, name: str) -> None:
        self._get_channel().exchange_declare(
            exchange=name,
            exchange_type="topic",
            durable=True,
            auto_delete=False,
            internal=False,
            arguments=None,
        )

    def ensure_exchanges(self) -> None:
        """Declare the durable topic exchanges updates are published to."""
        for name, label in ((STATISTIC_EXCHANGE, "Statistic Exchange"), (QUEST_EXCHANGE, "Quest Exchange")):
            try:
                self._declare_exchange(name)
            except AMQPError as exc:
                exc.add_note(label)
                raise

    def _publish(self, exchange: str, routing_key: str, message: dict[str, Any]) -> None:
        body = json.dumps(message).encode()
        self._get_channel().basic_publish(
            exchange=exchange,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(content_type=CONTENT_TYPE),
            mandatory=False,
        )

    def player_quest_progression_updates(self, progression: PlayerQuestProgression) -> None:
        """Publish a player's quest progression."""
        routing_key = quest_routing_key(progression.quest.game_id, progression.quest.id)
        self._publish(QUEST_EXCHANGE, routing_key, quest_progression_message(progression))

    def player_statistic_progression_updates(
        self,
        statistic: Statistic,
        progression: PlayerProgression,
        updates: PlayerProgressionUpdates,
    ) -> None:
        """Publish a player's statistic progression along with what just changed."""
        routing_key = statistic_routing_key(statistic.game_id, statistic.id)
        self._publish(STATISTIC_EXCHANGE, routing_key, statistic_progression_message(progression, updates))

    def close(self) -> None:
        """Close the channel, then the connection."""
        try:
            if self.channel is not None and self.channel.is_open:
                self.channel.close()
        finally:
            if self.connection.is_open:
                self.connection.close()


def connect(uri: str) -> Producer:
    """Connect to the broker at the AMQP URI and make sure the exchanges exist."""
    connection = pika.BlockingConnection(pika.URLParameters(uri))
    try:
        channel = connection.channel()
    except AMQPError:
        connection.close()
        raise

    producer = Producer(connection, channel)
    try:
        producer.ensure_exchanges()
    except AMQPError:
        producer.close()
        raise
    return producer