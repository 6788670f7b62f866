"""Redis-backed storage for leaderboards and their rankings."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import redis

from gameblitz.leaderboard import (
    AggregationMode,
    InvalidAggregationModeError,
    InvalidOrderingError,
    Leaderboard,
    LeaderboardNotFoundError,
    NewLeaderboardData,
    Ordering,
    Rank,
)


def _leaderboard_key(leaderboard_id: str) -> str:
    return f"leaderboard:{leaderboard_id}"


def _ranking_key(leaderboard_id: str) -> str:
    return f"leaderboard:{leaderboard_id}:ranking"


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _format_time(value: datetime) -> str:
    return value.isoformat()


def _parse_time(value: Any) -> datetime | None:
    if value is None:
        return None
    text = _text(value)
    return datetime.fromisoformat(text) if text else None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedisStorage:
    """Leaderboards as hashes and rankings as sorted sets."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def close(self) -> None:
        self.client.close()

    def create_leaderboard(self, data: NewLeaderboardData) -> Leaderboard:
        now = _utcnow()
        leaderboard = Leaderboard(
            id=str(uuid.uuid4()),
            game_id=data.game_id,
            name=data.name,
            description=data.description,
            start_at=data.start_at,
            end_at=data.end_at,
            aggregation_mode=data.aggregation_mode,
            ordering=data.ordering,
            created_at=now,
            updated_at=now,
        )
        fields = {
            "createdAt": _format_time(now),
            "updatedAt": _format_time(now),
            "id": leaderboard.id,
            "gameId": leaderboard.game_id,
            "name": leaderboard.name,
            "description": leaderboard.description,
            "startAt": _format_time(leaderboard.start_at) if leaderboard.start_at else "",
            "endAt": _format_time(leaderboard.end_at) if leaderboard.end_at else "",
            "aggregationMode": str(leaderboard.aggregation_mode),
            "ordering": str(leaderboard.ordering),
        }
        mapping = {key: value for key, value in fields.items() if value != ""}
        self.client.hset(_leaderboard_key(leaderboard.id), mapping=mapping)
        return leaderboard

    def get_leaderboard_by_id_and_game_id(self, leaderboard_id: str, game_id: str) -> Leaderboard:
        try:
            raw = self.client.hgetall(_leaderboard_key(leaderboard_id))
        except redis.RedisError:
            return Leaderboard()

        fields = {_text(key): _text(value) for key, value in raw.items()}
        if not fields.get("id") or "deletedAt" in fields or fields.get("gameId") != game_id:
            raise LeaderboardNotFoundError()

        return Leaderboard(
            id=fields["id"],
            game_id=fields.get("gameId", ""),
            name=fields.get("name", ""),
            description=fields.get("description", ""),
            start_at=_parse_time(fields.get("startAt")),
            end_at=_parse_time(fields.get("endAt")),
            aggregation_mode=fields.get("aggregationMode", ""),
            ordering=fields.get("ordering", ""),
            created_at=_parse_time(fields.get("createdAt")),
            updated_at=_parse_time(fields.get("updatedAt")),
        )

    def soft_delete_leaderboard(self, leaderboard_id: str, game_id: str) -> None:
        self.get_leaderboard_by_id_and_game_id(leaderboard_id, game_id)
        self.client.hsetnx(_leaderboard_key(leaderboard_id), "deletedAt", _format_time(_utcnow()))

    def upsert_player_rank_value(self, leaderboard: Leaderboard, player_id: str, value: float) -> None:
        key = _ranking_key(leaderboard.id)
        match leaderboard.aggregation_mode:
            case AggregationMode.INC:
                self.client.zincrby(key, value, player_id)
            case AggregationMode.MAX:
                self.client.zadd(key, {player_id: value}, gt=True)
            case AggregationMode.MIN:
                self.client.zadd(key, {player_id: value}, lt=True)
            case _:
                raise InvalidAggregationModeError()

    def get_ranking(self, leaderboard_id: str, ordering: str, page: int, limit: int) -> list[Rank]:
        key = _ranking_key(leaderboard_id)
        start, stop = page * limit, limit - 1
        match ordering:
            case Ordering.ASC:
                entries = self.client.zrange(key, start, stop, withscores=True)
            case Ordering.DESC:
                entries = self.client.zrevrange(key, start, stop, withscores=True)
            case _:
                raise InvalidOrderingError()

        return [
            Rank(
                leaderboard_id=leaderboard_id,
                player_id=_text(member),
                position=position,
                value=float(score),
            )
            for position, (member, score) in enumerate(entries)
        ]


def connect(addr: str, username: str, password: str, db: int) -> RedisStorage:
    """Open a storage on the Redis server at "host:port"."""
    host, _, port = addr.rpartition(":")
    client = redis.Redis(
        host=host or "localhost",
        port=int(port) if port else 6379,
        username=username or None,
        password=password or None,
        db=db,
        decode_responses=True,
    )
    return RedisStorage(client)