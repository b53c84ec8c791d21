"""Domain models for day sessions, activities, goals and the backlog."""

import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .timeutil import ensure_aware, now_local, round_half_up

logger = logging.getLogger(__name__)

Timestamp = Annotated[datetime, AfterValidator(ensure_aware)]

GoalStatus = Literal["behind", "on-track", "ahead", "complete"]


class _Model(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RunningTimer(_Model):
    """Timer currently counting."""

    state: Literal["running"] = "running"
    started_at: Timestamp
    accumulated_seconds: int = 0


class PausedTimer(_Model):
    """Timer stopped with banked time, waiting to be resumed."""

    state: Literal["paused"] = "paused"
    accumulated_seconds: int = 0
    paused_at: Optional[Timestamp] = None


# An activity without a timer carries None
TimerState = Annotated[Union[RunningTimer, PausedTimer], Field(discriminator="state")]


def _legacy_timer(timer: dict) -> dict:
    """Convert an {isRunning, startedAt, accumulatedSeconds, pausedAt} timer."""
    accumulated = timer.get("accumulatedSeconds", 0)
    if timer.get("isRunning") and timer.get("startedAt") is not None:
        return {
            "state": "running",
            "startedAt": timer["startedAt"],
            "accumulatedSeconds": accumulated,
        }
    return {
        "state": "paused",
        "accumulatedSeconds": accumulated,
        "pausedAt": timer.get("pausedAt"),
    }


class Activity(_Model):
    """A planned or completed unit of time within a day session."""

    id: str
    name: str
    planned_minutes: int
    actual_minutes: Optional[int] = None
    category_id: str
    day_session_id: Optional[str] = None
    order: int = 0
    notes: Optional[str] = None
    completed: bool = False
    timer: Optional[TimerState] = None

    # Backlog provenance
    postponed_count: Optional[int] = None
    original_day_session_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        timer = data.get("timer")
        if isinstance(timer, dict) and "state" not in timer and "isRunning" in timer:
            data = {**data, "timer": _legacy_timer(timer)}

        # completed implies actual minutes and no timer
        if data.get("completed"):
            actual = data.get("actualMinutes", data.get("actual_minutes"))
            if actual is None:
                actual = data.get("plannedMinutes", data.get("planned_minutes"))
            data = {k: v for k, v in data.items() if k != "actual_minutes"}
            data.update(actualMinutes=actual, timer=None)
        return data


class DaySession(_Model):
    """One wake-to-sleep period."""

    id: str
    wake_time: Timestamp
    planned_sleep_time: Timestamp
    actual_sleep_time: Optional[Timestamp] = None
    is_active: bool = True
    is_setup_complete: bool = False
    is_reconciled: bool = False
    activities: list[Activity] = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=now_local)

    @property
    def incomplete_activities(self) -> list[Activity]:
        """Activities not yet marked completed, in display order."""
        return [a for a in self.activities if not a.completed]

    def find_activity(self, activity_id: str) -> Optional[Activity]:
        """Get activity by id."""
        for activity in self.activities:
            if activity.id == activity_id:
                return activity
        return None


class Goal(_Model):
    """A recurring target matched against activity names."""

    id: str
    name: str
    category_id: Optional[str] = None
    target_type: Literal["count", "duration"] = "count"
    target_value: int  # occurrences, or minutes for duration goals
    frequency: Literal["daily", "weekly", "monthly"] = "weekly"
    activity_pattern: str
    created_at: Timestamp = Field(default_factory=now_local)
    is_active: bool = True


class BacklogItem(_Model):
    """A postponed activity awaiting reinsertion."""

    id: str
    activity_name: str
    category_id: str
    planned_minutes: int
    postponed_count: int = 1
    original_day_session_id: str
    added_to_backlog_at: Timestamp
    week_of: str  # ISO date of the week start


class UserSettings(_Model):
    """User preferences stored with the app state."""

    default_wake_time: str = "07:00"
    default_sleep_time: str = "23:00"
    week_starts_on: Literal[0, 1] = 1  # Sunday or Monday
    productivity_buffer: int = 15  # percent
    last_exported_at: Optional[Timestamp] = None
    has_completed_onboarding: bool = False


class AppState(_Model):
    """Aggregate root; the only unit persisted and synced."""

    day_sessions: dict[str, DaySession] = Field(default_factory=dict)
    current_session_id: Optional[str] = None
    goals: list[Goal] = Field(default_factory=list)
    backlog: list[BacklogItem] = Field(default_factory=list)
    settings: UserSettings = Field(default_factory=UserSettings)

    @property
    def current_session(self) -> Optional[DaySession]:
        """The active day session, if any."""
        if self.current_session_id is None:
            return None
        return self.day_sessions.get(self.current_session_id)

    def to_blob(self) -> dict:
        """Serialize to the camelCase JSON structure used for storage and sync."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_blob(cls, blob: Optional[dict]) -> Optional["AppState"]:
        """
        Parse a stored or fetched blob.

        Returns:
            AppState, or None if the blob is missing or invalid
        """
        if not blob:
            return None
        try:
            return cls.model_validate(blob)
        except ValidationError as e:
            logger.error(f"Discarding invalid app state: {e}")
            return None


def hours_to_minutes(hours: float) -> int:
    """Convert an hour input to the minutes stored on duration goals."""
    return round_half_up(hours * 60)
