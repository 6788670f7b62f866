[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gameblitz"
version = "0.1.0"
description = "Leaderboards, quests and player statistics for game back ends, with Redis, MongoDB and RabbitMQ adapters"
requires-python = ">=3.11"
keywords = ["games", "leaderboard", "quest", "statistics", "ranking", "jsonlogic"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Games/Entertainment",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "redis",
    "pymongo",
    "pika",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["gameblitz"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"
