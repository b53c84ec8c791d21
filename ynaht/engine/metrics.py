"""Derived metrics: time budget, history, goal progress, nudges and triage."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .categories import FALLBACK_CATEGORY_ID, category_name
from .models import (
    Activity,
    AppState,
    BacklogItem,
    DaySession,
    Goal,
    GoalStatus,
    RunningTimer,
    TimerState,
)
from .timeutil import (
    DAY_NAMES,
    is_within,
    js_day_of_week,
    minutes_between,
    now_local,
    period_window,
    round_half_up,
    week_of,
    week_window,
)

logger = logging.getLogger(__name__)

# Status bands around expected progress, in percentage points
BEHIND_MARGIN = 10
AHEAD_MARGIN = 20

TRIAGE_THRESHOLD_MINUTES = 30
EVENING_NUDGE_MIN_FREE_MINUTES = 60
DEFAULT_SUGGESTED_MINUTES = 30


@dataclass
class TimeBudget:
    """Time accounting for the current day session."""
    total_available_minutes: int = 0
    allocated_minutes: int = 0
    remaining_minutes: int = 0
    free_minutes: int = 0  # negative when over budget

    @property
    def is_over_budget(self) -> bool:
        return self.free_minutes < 0


@dataclass
class HistoricalActivity:
    """Aggregate of all past activities sharing a name."""
    name: str
    average_minutes: int
    occurrences: int
    category_id: str
    last_used: datetime
    average_variance: Optional[int] = None  # avg(actual - planned)

    @property
    def insight(self) -> Optional[str]:
        """Short text describing how this activity usually compares to plan."""
        if not self.average_variance:
            return None
        if self.average_variance > 0:
            return f"usually takes {self.average_variance}m longer"
        return f"usually takes {-self.average_variance}m less"


@dataclass
class GoalProgress:
    """Progress against one goal for its current period."""
    goal: Goal
    current_value: int
    target_value: int
    percentage: float
    status: GoalStatus
    remaining: int
    average_duration: Optional[int] = None


@dataclass
class SuggestedActivity:
    """An activity proposed by a nudge."""
    name: str
    category_id: str
    suggested_minutes: int
    reason: str
    goal_id: Optional[str] = None
    backlog_item_id: Optional[str] = None


@dataclass
class MorningNudge:
    goal_progress: list[GoalProgress]
    suggestions: list[SuggestedActivity]
    day_of_week: str
    type: str = "goal-status"


@dataclass
class EveningNudge:
    type: str  # "on-track" or "behind-schedule"
    remaining_minutes: int
    behind_goals: list[GoalProgress]
    suggested_activities: list[SuggestedActivity]
    message: str


@dataclass
class TriageState:
    """Crisis signal: little time left and activities still incomplete."""
    current_time: datetime
    planned_sleep_time: datetime
    remaining_minutes: int
    incomplete_activities: list[Activity]
    total_incomplete_minutes: int
    is_active: bool = True


@dataclass
class WeeklySummary:
    total_planned: int = 0
    total_actual: int = 0
    daily_totals: dict[str, int] = field(default_factory=dict)
    category_minutes: dict[str, int] = field(default_factory=dict)

    @property
    def total_tracked(self) -> int:
        return sum(self.daily_totals.values())

    @property
    def days_active(self) -> int:
        return len(self.daily_totals)

    @property
    def top_categories(self) -> list[tuple[str, int]]:
        """Up to five (category name, minutes) pairs, largest first."""
        ranked = sorted(
            self.category_minutes.items(), key=lambda item: item[1], reverse=True
        )[:5]
        return [(category_name(category_id), minutes) for category_id, minutes in ranked]


@dataclass
class DerivedState:
    """Everything a UI renders from one state snapshot."""
    needs_morning_setup: bool
    time_budget: TimeBudget
    historical_activities: list[HistoricalActivity]
    goal_progress: list[GoalProgress]
    morning_nudge: Optional[MorningNudge]
    evening_nudge: Optional[EveningNudge]
    triage_state: Optional[TriageState]
    this_weeks_backlog: list[BacklogItem]


def needs_morning_setup(state: AppState) -> bool:
    session = state.current_session
    return session is None or not session.is_setup_complete


def calculate_time_budget(state: AppState, now: datetime) -> TimeBudget:
    """
    Calculate time budget for the current session.

    free_minutes compares the incomplete activity load against the time left
    before planned sleep, so completed activities stop counting against it.
    """
    session = state.current_session
    if session is None:
        return TimeBudget()

    remaining = max(0, minutes_between(now, session.planned_sleep_time))
    incomplete_load = sum(a.planned_minutes for a in session.incomplete_activities)

    return TimeBudget(
        total_available_minutes=minutes_between(
            session.wake_time, session.planned_sleep_time
        ),
        allocated_minutes=sum(a.planned_minutes for a in session.activities),
        remaining_minutes=remaining,
        free_minutes=remaining - incomplete_load,
    )


def elapsed_seconds(timer: Optional[TimerState], now: datetime) -> int:
    """
    Effective elapsed seconds of a timer, recomputed from wall-clock time.

    Returns:
        Banked seconds plus the running interval; 0 when there is no timer
    """
    if timer is None:
        return 0
    if isinstance(timer, RunningTimer):
        running = max(0, math.floor((now - timer.started_at).total_seconds()))
        return timer.accumulated_seconds + running
    return timer.accumulated_seconds


def timer_minutes(seconds: int) -> int:
    """Minutes recorded when a timer is stopped; never less than one."""
    return max(1, round_half_up(seconds / 60))


class _LastStateCache:
    """Remembers the result for the most recent state object."""

    def __init__(self):
        self._state: Optional[AppState] = None
        self._value = None

    def get(self, state: AppState, compute):
        if state is not self._state:
            self._value = compute(state)
            self._state = state
        return self._value


_history_cache = _LastStateCache()


def calculate_historical_activities(state: AppState) -> list[HistoricalActivity]:
    """
    Group every activity across sessions by case-insensitive name.

    Results are cached for the most recent state object.
    """
    return _history_cache.get(state, _aggregate_history)


def _aggregate_history(state: AppState) -> list[HistoricalActivity]:
    groups: dict[str, dict] = {}

    for session in state.day_sessions.values():
        for activity in session.activities:
            key = activity.name.lower()
            group = groups.setdefault(
                key,
                {
                    "name": activity.name,
                    "minutes": [],
                    "variances": [],
                    "category_id": activity.category_id,
                    "last_used": session.created_at,
                },
            )
            group["minutes"].append(
                activity.actual_minutes
                if activity.actual_minutes is not None
                else activity.planned_minutes
            )
            if activity.actual_minutes is not None:
                group["variances"].append(
                    activity.actual_minutes - activity.planned_minutes
                )
            if session.created_at >= group["last_used"]:
                group["name"] = activity.name
                group["category_id"] = activity.category_id
                group["last_used"] = session.created_at

    return [
        HistoricalActivity(
            name=group["name"],
            average_minutes=round_half_up(
                sum(group["minutes"]) / len(group["minutes"])
            ),
            occurrences=len(group["minutes"]),
            category_id=group["category_id"],
            last_used=group["last_used"],
            average_variance=round_half_up(
                sum(group["variances"]) / len(group["variances"])
            )
            if group["variances"]
            else None,
        )
        for group in groups.values()
    ]


def suggestion_for(
    history: list[HistoricalActivity], name: str
) -> Optional[HistoricalActivity]:
    """Exact case-insensitive history lookup, used for autocomplete."""
    if not name:
        return None
    key = name.lower()
    return next((h for h in history if h.name.lower() == key), None)


def matches_goal(activity: Activity, goal: Goal) -> bool:
    """Case-insensitive substring match of the goal pattern in the activity name."""
    return goal.activity_pattern.lower() in activity.name.lower()


def classify_status(percentage: float, expected_progress: float) -> GoalStatus:
    """
    Classify progress against where the period says we should be.

    Args:
        percentage: Progress toward target (0-100)
        expected_progress: Expected percentage by the end of today

    Returns:
        "complete", "behind", "ahead" or "on-track"
    """
    if percentage >= 100:
        return "complete"
    if percentage < expected_progress - BEHIND_MARGIN:
        return "behind"
    if percentage >= expected_progress + AHEAD_MARGIN:
        return "ahead"
    return "on-track"


def _counts_toward_goal(activity: Activity) -> bool:
    return activity.completed or activity.actual_minutes is not None


def calculate_goal_progress(
    state: AppState,
    now: datetime,
    history: Optional[list[HistoricalActivity]] = None,
) -> list[GoalProgress]:
    """Calculate progress for every active goal in its current period."""
    if history is None:
        history = calculate_historical_activities(state)
    week_starts_on = state.settings.week_starts_on

    results = []
    for goal in state.goals:
        if not goal.is_active:
            continue

        start, end, days_elapsed, period_length = period_window(
            goal.frequency, now, week_starts_on
        )

        current_value = 0
        for session in state.day_sessions.values():
            if not is_within(session.wake_time, start, end):
                continue
            for activity in session.activities:
                if not matches_goal(activity, goal) or not _counts_toward_goal(activity):
                    continue
                if goal.target_type == "count":
                    current_value += 1
                else:
                    current_value += (
                        activity.actual_minutes
                        if activity.actual_minutes is not None
                        else activity.planned_minutes
                    )

        if goal.target_value > 0:
            percentage = min(100.0, current_value / goal.target_value * 100)
        else:
            percentage = 100.0
        expected_progress = (days_elapsed + 1) / period_length * 100

        pattern = goal.activity_pattern.lower()
        historical = next((h for h in history if pattern in h.name.lower()), None)

        progress = GoalProgress(
            goal=goal,
            current_value=current_value,
            target_value=goal.target_value,
            percentage=percentage,
            status=classify_status(percentage, expected_progress),
            remaining=max(0, goal.target_value - current_value),
            average_duration=historical.average_minutes if historical else None,
        )
        logger.debug(
            f"{goal.name}: {current_value}/{goal.target_value} "
            f"(expected {expected_progress:.0f}%, status: {progress.status})"
        )
        results.append(progress)

    return results


def _unit(goal: Goal) -> str:
    return "times" if goal.target_type == "count" else "min"


def _suggested_minutes(progress: GoalProgress) -> int:
    return progress.average_duration or DEFAULT_SUGGESTED_MINUTES


def build_morning_nudge(
    state: AppState, goal_progress: list[GoalProgress], now: datetime
) -> Optional[MorningNudge]:
    """Suggest an activity for each goal that is behind, before the day is planned."""
    if not needs_morning_setup(state):
        return None

    suggestions = [
        SuggestedActivity(
            name=gp.goal.activity_pattern,
            category_id=gp.goal.category_id or FALLBACK_CATEGORY_ID,
            suggested_minutes=_suggested_minutes(gp),
            reason=f"Weekly goal: {gp.current_value}/{gp.target_value} {_unit(gp.goal)}",
            goal_id=gp.goal.id,
        )
        for gp in goal_progress
        if gp.status == "behind"
    ]

    return MorningNudge(
        goal_progress=goal_progress,
        suggestions=suggestions,
        day_of_week=DAY_NAMES[js_day_of_week(now.date())],
    )


def build_evening_nudge(
    state: AppState, goal_progress: list[GoalProgress], free_minutes: int
) -> Optional[EveningNudge]:
    """Offer free time to goals that are behind once the day is under way."""
    session = state.current_session
    if session is None or not session.is_setup_complete:
        return None
    if free_minutes < EVENING_NUDGE_MIN_FREE_MINUTES:
        return None

    behind_goals = [gp for gp in goal_progress if gp.status == "behind"]
    if not behind_goals:
        return EveningNudge(
            type="on-track",
            remaining_minutes=free_minutes,
            behind_goals=[],
            suggested_activities=[],
            message="You're crushing it this week! All weekly goals on track.",
        )

    suggestions = [
        SuggestedActivity(
            name=gp.goal.activity_pattern,
            category_id=gp.goal.category_id or FALLBACK_CATEGORY_ID,
            suggested_minutes=min(_suggested_minutes(gp), free_minutes),
            reason=f"Need {gp.remaining} more {_unit(gp.goal)} this week",
            goal_id=gp.goal.id,
        )
        for gp in behind_goals
        if _suggested_minutes(gp) <= free_minutes
    ]

    hours = round(free_minutes / 60, 1)
    return EveningNudge(
        type="behind-schedule",
        remaining_minutes=free_minutes,
        behind_goals=behind_goals,
        suggested_activities=suggestions,
        message=(
            f"You have {hours:g} hours of free time and "
            f"{len(behind_goals)} goal(s) behind schedule."
        ),
    )


def detect_triage(
    state: AppState, remaining_minutes: int, now: datetime
) -> Optional[TriageState]:
    """Detect the end-of-day crunch: incomplete work and 30 minutes or less left."""
    session = state.current_session
    if session is None or not session.is_setup_complete:
        return None

    incomplete = session.incomplete_activities
    if remaining_minutes > TRIAGE_THRESHOLD_MINUTES or not incomplete:
        return None

    return TriageState(
        current_time=now,
        planned_sleep_time=session.planned_sleep_time,
        remaining_minutes=remaining_minutes,
        incomplete_activities=incomplete,
        total_incomplete_minutes=sum(a.planned_minutes for a in incomplete),
    )


def this_weeks_backlog(state: AppState, now: datetime) -> list[BacklogItem]:
    """Backlog items bucketed into the current week."""
    week = week_of(now, state.settings.week_starts_on)
    return [item for item in state.backlog if item.week_of == week]


def _sessions_this_week(state: AppState, now: datetime) -> list[DaySession]:
    start, end = week_window(now, state.settings.week_starts_on)
    return [s for s in state.day_sessions.values() if is_within(s.wake_time, start, end)]


def calculate_weekly_summary(state: AppState, now: datetime) -> WeeklySummary:
    """Planned, actual and tracked minutes for sessions in the current week."""
    summary = WeeklySummary()

    for session in _sessions_this_week(state, now):
        day = session.wake_time.date().isoformat()
        day_total = 0
        for activity in session.activities:
            tracked = (
                activity.actual_minutes
                if activity.actual_minutes is not None
                else activity.planned_minutes
            )
            summary.total_planned += activity.planned_minutes
            summary.total_actual += activity.actual_minutes or 0
            day_total += tracked
            summary.category_minutes[activity.category_id] = (
                summary.category_minutes.get(activity.category_id, 0) + tracked
            )
        summary.daily_totals[day] = summary.daily_totals.get(day, 0) + day_total

    return summary


def derive(state: AppState, now: Optional[datetime] = None) -> DerivedState:
    """Recompute every derived view from a state snapshot."""
    now = now or now_local()

    budget = calculate_time_budget(state, now)
    history = calculate_historical_activities(state)
    goal_progress = calculate_goal_progress(state, now, history)

    return DerivedState(
        needs_morning_setup=needs_morning_setup(state),
        time_budget=budget,
        historical_activities=history,
        goal_progress=goal_progress,
        morning_nudge=build_morning_nudge(state, goal_progress, now),
        evening_nudge=build_evening_nudge(state, goal_progress, budget.free_minutes),
        triage_state=detect_triage(state, budget.remaining_minutes, now),
        this_weeks_backlog=this_weeks_backlog(state, now),
    )
