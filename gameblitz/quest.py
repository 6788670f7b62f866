"""Quests and tasks: validation, dependency checks and player progression use cases."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from gameblitz.rule import RuleError, rule_apply, rule_is_valid


class QuestError(Exception):
    """Base class for quest and task errors."""

    default_message = "quest error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class InvalidQuestNameError(QuestError):
    default_message = "invalid quest name"


class QuestMissingGameIDError(QuestError):
    default_message = "missing game id"


class QuestTaskRuleSuccessDataIncompleteError(QuestError):
    default_message = "missing success data for some tasks"


class InvalidQuestIDError(QuestError):
    default_message = "invalid quest id"


class QuestNotFoundError(QuestError):
    default_message = "quest not found"


class QuestWithoutTasksError(QuestError):
    default_message = "a quest task list must not be empty"


class InvalidTaskIDError(QuestError):
    default_message = "invalid task id"


class InvalidTaskNameError(QuestError):
    default_message = "invalid task name"


class InvalidTaskRuleError(QuestError):
    default_message = "invalid task rule"


class InvalidSuccessRuleDataExampleError(QuestError):
    default_message = "success example task rule data returned false"


class InvalidTaskDependencyIndexError(QuestError):
    default_message = "invalid task dependency array index"


class TaskDependencyCycleError(QuestError):
    default_message = "task dependency cycle detected"


class PlayerAlreadyStartedTheQuestError(QuestError):
    default_message = "player already started the quest"


class PlayerNotStartedTheQuestError(QuestError):
    default_message = "player not started the quest"


class PlayerQuestAlreadyCompletedError(QuestError):
    default_message = "player already concluded the quest"


def _describe(errors: Sequence[Exception]) -> str:
    return "; ".join(str(err) for err in errors)


class TaskValidationError(QuestError):
    """Raised when new task data fails validation; holds every problem found."""

    default_message = "task validation error"

    def __init__(self, errors: Sequence[Exception], index: int | None = None) -> None:
        self.errors = tuple(errors)
        self.index = index
        message = self.default_message
        if index is not None:
            message = f"Task #{index}: {message}"
        details = _describe(self.errors)
        super().__init__(f"{message}: {details}" if details else message)


class QuestValidationError(QuestError):
    """Raised when new quest data fails validation; holds every problem found."""

    default_message = "invalid quest"

    def __init__(self, errors: Sequence[Exception]) -> None:
        self.errors = tuple(errors)
        details = _describe(self.errors)
        super().__init__(f"{self.default_message}: {details}" if details else None)


@dataclass
class NewTaskData:
    name: str = ""
    description: str = ""
    depends_on: list[int] = field(default_factory=list)
    required_for_completion: bool = False
    rule: str = ""

    def validate(self, success_example_data: str) -> None:
        """Raise TaskValidationError unless the task is well formed and the example passes."""
        problems: list[Exception] = []

        if not self.name:
            problems.append(InvalidTaskNameError())
        if not rule_is_valid(self.rule):
            problems.append(InvalidTaskRuleError())

        passed = False
        try:
            passed = rule_apply(self.rule, success_example_data)
        except RuleError as exc:
            problems.append(exc)
        if not passed:
            problems.append(InvalidSuccessRuleDataExampleError())

        if problems:
            raise TaskValidationError(problems)


@dataclass
class Task:
    id: str = ""
    name: str = ""
    description: str = ""
    depends_on: list[str] = field(default_factory=list)
    required_for_completion: bool = False
    rule: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


def task_dependency_is_cyclic(tasks: Sequence[NewTaskData]) -> bool:
    """Whether the tasks' dependency indexes form a cycle."""
    visited: set[int] = set()
    on_path: set[int] = set()

    def has_cycle(index: int) -> bool:
        visited.add(index)
        on_path.add(index)
        for dependency in tasks[index].depends_on:
            if dependency not in visited:
                if has_cycle(dependency):
                    return True
            elif dependency in on_path:
                return True
        on_path.discard(index)
        return False

    for index in range(len(tasks)):
        if index not in visited and has_cycle(index):
            return True
    return False


@dataclass
class NewQuestData:
    game_id: str = ""
    name: str = ""
    description: str = ""
    tasks: list[NewTaskData] = field(default_factory=list)
    tasks_validators: list[str] = field(default_factory=list)

    def validate(self) -> None:
        """Raise QuestValidationError listing every problem with the quest and its tasks."""
        problems: list[Exception] = []

        if not self.name:
            problems.append(InvalidQuestNameError())
        if not self.game_id:
            problems.append(QuestMissingGameIDError())

        if not self.tasks:
            problems.append(QuestWithoutTasksError())
        elif len(self.tasks) != len(self.tasks_validators):
            problems.append(QuestTaskRuleSuccessDataIncompleteError())
        else:
            dependencies_valid = True
            for index, (task, example) in enumerate(zip(self.tasks, self.tasks_validators)):
                try:
                    task.validate(example)
                except TaskValidationError as exc:
                    problems.append(TaskValidationError(exc.errors, index=index))

                for dependency in task.depends_on:
                    if not 0 <= dependency < len(self.tasks):
                        dependencies_valid = False
                        problems.append(InvalidTaskDependencyIndexError())

            if dependencies_valid and task_dependency_is_cyclic(self.tasks):
                problems.insert(0, TaskDependencyCycleError())

        if problems:
            raise QuestValidationError(problems)


@dataclass
class Quest:
    id: str = ""
    game_id: str = ""
    name: str = ""
    description: str = ""
    tasks: list[Task] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass
class PlayerTaskProgression:
    task: Task = field(default_factory=Task)
    started_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class PlayerQuestProgression:
    player_id: str = ""
    quest: Quest = field(default_factory=Quest)
    tasks_progression: list[PlayerTaskProgression] = field(default_factory=list)
    started_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    def apply_rule_to_active_tasks(self, data: str) -> list[str]:
        """Ids of the still-open tasks whose rule passes for the given data."""
        return [
            progression.task.id
            for progression in self.tasks_progression
            if progression.completed_at is None and rule_apply(progression.task.rule, data)
        ]


NotifierPlayerProgressionUpdates = Callable[[PlayerQuestProgression], None]

StorageCreateQuest = Callable[[NewQuestData], Quest]
StorageGetQuest = Callable[[str, str], Quest]
StorageSoftDeleteQuest = Callable[[str, str], None]
StorageStartQuestForPlayer = Callable[[Quest, str], PlayerQuestProgression]
StorageGetPlayerQuestProgression = Callable[[Quest, str], PlayerQuestProgression]
StorageUpdatePlayerQuestProgression = Callable[[Quest, list[str], str], PlayerQuestProgression]

CreateQuestFunc = Callable[[NewQuestData], Quest]
GetQuestByIDAndGameIDFunc = Callable[[str, str], Quest]
SoftDeleteQuestFunc = Callable[[str, str], None]
StartQuestForPlayerFunc = Callable[[Quest, str], PlayerQuestProgression]
GetPlayerQuestProgressionFunc = Callable[[Quest, str], PlayerQuestProgression]
UpdatePlayerQuestProgressionFunc = Callable[[Quest, str, str], PlayerQuestProgression]


def build_create_quest_func(storage_create: StorageCreateQuest) -> CreateQuestFunc:
    """Create a quest and its tasks after validating them."""

    def create(data: NewQuestData) -> Quest:
        data.validate()
        return storage_create(data)

    return create


def build_get_quest_by_id_and_game_id_func(storage_get: StorageGetQuest) -> GetQuestByIDAndGameIDFunc:
    """Fetch a quest by its id and the owning game's id."""

    def get(quest_id: str, game_id: str) -> Quest:
        return storage_get(quest_id, game_id)

    return get


def build_soft_delete_quest_func(storage_soft_delete: StorageSoftDeleteQuest) -> SoftDeleteQuestFunc:
    """Soft delete a quest and its tasks."""

    def soft_delete(quest_id: str, game_id: str) -> None:
        storage_soft_delete(quest_id, game_id)

    return soft_delete


def build_start_quest_for_player_func(storage_start: StorageStartQuestForPlayer) -> StartQuestForPlayerFunc:
    """Start a quest for a player."""

    def start(quest: Quest, player_id: str) -> PlayerQuestProgression:
        return storage_start(quest, player_id)

    return start


def build_get_player_quest_progression_func(
    storage_get: StorageGetPlayerQuestProgression,
) -> GetPlayerQuestProgressionFunc:
    """Fetch a player's progression on a quest."""

    def get(quest: Quest, player_id: str) -> PlayerQuestProgression:
        return storage_get(quest, player_id)

    return get


def build_update_player_quest_progression_func(
    notifier: NotifierPlayerProgressionUpdates,
    storage_get: StorageGetPlayerQuestProgression,
    storage_update: StorageUpdatePlayerQuestProgression,
) -> UpdatePlayerQuestProgressionFunc:
    """Check data against a player's open tasks, completing those it satisfies."""

    def update(quest: Quest, player_id: str, task_data_to_check: str) -> PlayerQuestProgression:
        previous = storage_get(quest, player_id)
        if previous.completed_at is not None:
            raise PlayerQuestAlreadyCompletedError()

        tasks_completed = previous.apply_rule_to_active_tasks(task_data_to_check)
        if not tasks_completed:
            return previous

        progression = storage_update(quest, tasks_completed, player_id)
        notifier(progression)
        return progression

    return update