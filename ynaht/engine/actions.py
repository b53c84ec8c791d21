"""Actions accepted by the session reducer."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional, Union

from .models import Activity, AppState, Goal


# Day session lifecycle


@dataclass(frozen=True)
class StartNewDay:
    wake_time: datetime
    planned_sleep_time: datetime


@dataclass(frozen=True)
class UpdateSleepTime:
    planned_sleep_time: datetime


@dataclass(frozen=True)
class CompleteMorningSetup:
    pass


@dataclass(frozen=True)
class EndDay:
    pass


# Activities


@dataclass(frozen=True)
class AddActivity:
    name: str
    planned_minutes: int
    category_id: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class UpdateActivity:
    activity: Activity


@dataclass(frozen=True)
class DeleteActivity:
    activity_id: str


@dataclass(frozen=True)
class CompleteActivity:
    activity_id: str
    actual_minutes: Optional[int] = None


@dataclass(frozen=True)
class MoveToBacklog:
    activity_id: str


@dataclass(frozen=True)
class ReorderActivities:
    """Replace the current session's activity list; caller supplies dense order."""
    activities: list[Activity]


@dataclass(frozen=True)
class MoveActivity:
    """Swap an activity with its neighbor in the given direction."""
    activity_id: str
    direction: Literal["up", "down"]


# Timer


@dataclass(frozen=True)
class StartTimer:
    activity_id: str


@dataclass(frozen=True)
class PauseTimer:
    activity_id: str


@dataclass(frozen=True)
class ResumeTimer:
    activity_id: str


@dataclass(frozen=True)
class StopTimer:
    activity_id: str
    actual_minutes: int


# Goals


@dataclass(frozen=True)
class AddGoal:
    name: str
    target_value: int
    activity_pattern: str
    target_type: Literal["count", "duration"] = "count"
    frequency: Literal["daily", "weekly", "monthly"] = "weekly"
    category_id: Optional[str] = None


@dataclass(frozen=True)
class UpdateGoal:
    goal: Goal


@dataclass(frozen=True)
class DeleteGoal:
    goal_id: str


# Backlog


@dataclass(frozen=True)
class AddFromBacklog:
    backlog_id: str


@dataclass(frozen=True)
class RemoveFromBacklog:
    backlog_id: str


# Whole-state


@dataclass(frozen=True)
class UpdateSettings:
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LoadState:
    state: AppState


Action = Union[
    StartNewDay,
    UpdateSleepTime,
    CompleteMorningSetup,
    EndDay,
    AddActivity,
    UpdateActivity,
    DeleteActivity,
    CompleteActivity,
    MoveToBacklog,
    ReorderActivities,
    MoveActivity,
    StartTimer,
    PauseTimer,
    ResumeTimer,
    StopTimer,
    AddGoal,
    UpdateGoal,
    DeleteGoal,
    AddFromBacklog,
    RemoveFromBacklog,
    UpdateSettings,
    LoadState,
]
