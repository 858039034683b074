"""
Entities shared by the engines.

Rows come back from the storage port as plain dicts; these dataclasses are
the typed view the engines work with. Each one round-trips through
to_dict()/from_dict() using the column names of its storage table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class Category(StrEnum):
    """Fixed task categories; each has its own step template."""

    LEARNING = "learning"
    WORK = "work"
    HEALTH = "health"
    PERSONAL = "personal"
    INFO = "info"
    CREATIVE = "creative"


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"


class DecompositionSource(StrEnum):
    TEMPLATE = "template"
    USER_CUSTOM = "user_custom"


class Granularity(StrEnum):
    """How dense the user wants their subtask list."""

    FEWER_STEPS = "fewer_steps"
    BALANCED = "balanced"
    MORE_DETAIL = "more_detail"


class EditAction(StrEnum):
    DELETED = "deleted"
    RENAMED = "renamed"
    MERGED = "merged"
    REORDERED = "reordered"


class NudgeType(StrEnum):
    PATTERN = "pattern"
    MOMENTUM = "momentum"
    CONTENT_CAPTURE = "content_capture"


class NudgeStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    ACTED = "acted"
    DISMISSED = "dismissed"


class EventType(StrEnum):
    """Activity log event types."""

    TASK_CREATED = "task_created"
    TASK_COMPLETED = "task_completed"
    TASK_MISSED = "task_missed"
    TASK_RESCHEDULED = "task_rescheduled"
    TASK_DECOMPOSED = "task_decomposed"
    # Written by older clients; read as a reschedule.
    RESCHEDULED = "rescheduled"


def parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, StrEnum) else value


@dataclass
class Task:
    id: str
    user_id: str
    title: str
    category: Category = Category.WORK
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_at: datetime | None = None
    estimated_minutes: int | None = None
    actual_minutes: int | None = None
    reschedule_count: int = 0
    parent_task_id: str | None = None
    is_subtask: bool = False
    subtask_order: int | None = None
    is_blocking: bool = False
    decomposition_source: DecompositionSource | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "category": _enum_value(self.category),
            "priority": _enum_value(self.priority),
            "status": _enum_value(self.status),
            "due_at": self.due_at,
            "estimated_minutes": self.estimated_minutes,
            "actual_minutes": self.actual_minutes,
            "reschedule_count": self.reschedule_count,
            "parent_task_id": self.parent_task_id,
            "is_subtask": self.is_subtask,
            "subtask_order": self.subtask_order,
            "is_blocking": self.is_blocking,
            "decomposition_source": _enum_value(self.decomposition_source),
            "completed_at": self.completed_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        source = data.get("decomposition_source")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data["title"],
            category=Category(data.get("category") or Category.WORK),
            priority=Priority(data.get("priority") or Priority.MEDIUM),
            status=TaskStatus(data.get("status") or TaskStatus.PENDING),
            due_at=parse_datetime(data.get("due_at")),
            estimated_minutes=data.get("estimated_minutes"),
            actual_minutes=data.get("actual_minutes"),
            reschedule_count=data.get("reschedule_count") or 0,
            parent_task_id=data.get("parent_task_id"),
            is_subtask=bool(data.get("is_subtask", False)),
            subtask_order=data.get("subtask_order"),
            is_blocking=bool(data.get("is_blocking", False)),
            decomposition_source=DecompositionSource(source) if source else None,
            completed_at=parse_datetime(data.get("completed_at")),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class SubtaskDraft:
    """A generated step before it is written as a task row."""

    title: str
    estimated_minutes: int
    order: int
    is_blocking: bool
    category: Category
    # Set when the user keeps deleting steps like this one.
    split_suggestion: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "estimated_minutes": self.estimated_minutes,
            "order": self.order,
            "is_blocking": self.is_blocking,
            "category": _enum_value(self.category),
            "split_suggestion": self.split_suggestion,
        }


@dataclass
class TemplateStep:
    title: str
    estimated_minutes: int
    is_blocking: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "estimated_minutes": self.estimated_minutes,
            "is_blocking": self.is_blocking,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateStep:
        return cls(
            title=data["title"],
            estimated_minutes=int(data.get("estimated_minutes") or 0),
            is_blocking=bool(data.get("is_blocking", False)),
        )


@dataclass
class DecompositionTemplate:
    id: str
    category: Category
    steps: list[TemplateStep]
    user_id: str | None = None
    sub_type: str | None = None
    is_system: bool = False
    usage_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "category": _enum_value(self.category),
            "sub_type": self.sub_type,
            "steps": [s.to_dict() for s in self.steps],
            "is_system": self.is_system,
            "usage_count": self.usage_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecompositionTemplate:
        return cls(
            id=data["id"],
            user_id=data.get("user_id"),
            category=Category(data["category"]),
            sub_type=data.get("sub_type"),
            steps=[TemplateStep.from_dict(s) for s in data.get("steps") or []],
            is_system=bool(data.get("is_system", False)),
            usage_count=data.get("usage_count") or 0,
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class UserEdit:
    """
    One edit the user made to a generated decomposition.

    Fields used per action:
        deleted:   step_title
        renamed:   from_title -> to_title
        merged:    steps (titles, first one keeps its position) -> into
        reordered: step_title, to_order (1-based)
    """

    action: EditAction
    step_title: str | None = None
    from_title: str | None = None
    to_title: str | None = None
    steps: list[str] = field(default_factory=list)
    into: str | None = None
    to_order: int | None = None

    def pattern_key(self) -> str:
        return f"{_enum_value(self.action)}::{self.step_title or self.from_title or ''}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": _enum_value(self.action)}
        if self.step_title is not None:
            data["step_title"] = self.step_title
        if self.from_title is not None:
            data["from"] = self.from_title
        if self.to_title is not None:
            data["to"] = self.to_title
        if self.steps:
            data["steps"] = list(self.steps)
        if self.into is not None:
            data["into"] = self.into
        if self.to_order is not None:
            data["to_order"] = self.to_order
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserEdit:
        return cls(
            action=EditAction(data["action"]),
            step_title=data.get("step_title"),
            from_title=data.get("from"),
            to_title=data.get("to"),
            steps=list(data.get("steps") or []),
            into=data.get("into"),
            to_order=data.get("to_order"),
        )


@dataclass
class DecompositionLog:
    id: str
    user_id: str
    parent_task_id: str
    template_id: str | None = None
    original_estimated_minutes: int | None = None
    subtasks_generated: int = 0
    user_edits: list[UserEdit] = field(default_factory=list)
    clarifying_answers: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecompositionLog:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            parent_task_id=data["parent_task_id"],
            template_id=data.get("template_id"),
            original_estimated_minutes=data.get("original_estimated_minutes"),
            subtasks_generated=data.get("subtasks_generated") or 0,
            user_edits=[UserEdit.from_dict(e) for e in data.get("user_edits") or []],
            clarifying_answers=data.get("clarifying_answers") or {},
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class Nudge:
    id: str
    user_id: str
    type: NudgeType
    title: str
    message: str
    impact_score: float
    status: NudgeStatus = NudgeStatus.ACTIVE
    triggered_at: datetime | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": _enum_value(self.type),
            "title": self.title,
            "message": self.message,
            "impact_score": self.impact_score,
            "status": _enum_value(self.status),
            "triggered_at": self.triggered_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Nudge:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            type=NudgeType(data["type"]),
            title=data["title"],
            message=data["message"],
            impact_score=float(data.get("impact_score") or 0.0),
            status=NudgeStatus(data.get("status") or NudgeStatus.ACTIVE),
            triggered_at=parse_datetime(data.get("triggered_at")),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class ActivityLogEntry:
    id: str
    user_id: str
    task_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityLogEntry:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            task_id=data["task_id"],
            event_type=data["event_type"],
            payload=data.get("payload") or {},
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class MentalNote:
    id: str
    user_id: str
    content: str
    category: Category | None = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MentalNote:
        category = data.get("category")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            content=data.get("content") or "",
            category=Category(category) if category else None,
            tags=list(data.get("tags") or []),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class DecompositionPreferences:
    """Per-user knobs for generate_subtasks."""

    preferred_chunk_minutes: int | None = None
    granularity: Granularity = Granularity.BALANCED

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DecompositionPreferences:
        if not data:
            return cls()
        granularity = data.get("granularity_preference") or Granularity.BALANCED
        return cls(
            preferred_chunk_minutes=data.get("preferred_chunk_minutes"),
            granularity=Granularity(granularity),
        )


@dataclass
class SoftFailure:
    """
    A best-effort step that failed without failing the caller.

    Engines return these next to their result so the caller can log or
    report them without mistaking them for hard failures.
    """

    operation: str
    error: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"operation": self.operation, "error": self.error, "context": self.context}


__all__ = [
    "ActivityLogEntry",
    "Category",
    "DecompositionLog",
    "DecompositionPreferences",
    "DecompositionSource",
    "DecompositionTemplate",
    "EditAction",
    "EventType",
    "Granularity",
    "MentalNote",
    "Nudge",
    "NudgeStatus",
    "NudgeType",
    "Priority",
    "SoftFailure",
    "SubtaskDraft",
    "Task",
    "TaskStatus",
    "TemplateStep",
    "UserEdit",
    "parse_datetime",
]
