"""Leaderboards, quests and player statistics for game back ends, with Redis, MongoDB and RabbitMQ adapters."""

__version__ = "0.1.0"