"""Session reducer: pure state transitions over AppState."""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from . import actions as a
from .models import (
    Activity,
    AppState,
    BacklogItem,
    DaySession,
    Goal,
    PausedTimer,
    RunningTimer,
    UserSettings,
)
from .timeutil import ensure_aware, generate_id, normalize_sleep_time, now_local, week_of

logger = logging.getLogger(__name__)

Handler = Callable[[AppState, Any, datetime], AppState]


def reduce(state: AppState, action: a.Action, now: Optional[datetime] = None) -> AppState:
    """
    Apply an action to the state.

    Never mutates the input and never raises: actions that cannot apply
    (no current session, unknown ids, malformed input) return the state
    unchanged.

    Args:
        state: Current app state
        action: One of the variants of actions.Action
        now: Wall-clock time for timestamps (defaults to the local time)

    Returns:
        Next app state
    """
    handler = _HANDLERS.get(type(action))
    if handler is None:
        logger.warning(f"Ignoring unknown action: {action!r}")
        return state
    return handler(state, action, now or now_local())


# Helpers


def _with_session(state: AppState, session: DaySession) -> AppState:
    return state.model_copy(
        update={"day_sessions": {**state.day_sessions, session.id: session}}
    )


def _update_current(
    state: AppState, action: Any, update: Callable[[DaySession], DaySession]
) -> AppState:
    session = state.current_session
    if session is None:
        logger.debug(f"No current session, ignoring {type(action).__name__}")
        return state
    return _with_session(state, update(session))


def _reindexed(activities: list[Activity]) -> list[Activity]:
    """Recompute dense 0..n-1 order, keeping relative order."""
    return [
        activity if activity.order == i else activity.model_copy(update={"order": i})
        for i, activity in enumerate(activities)
    ]


def _map_activity(
    session: DaySession, activity_id: str, update: Callable[[Activity], Activity]
) -> DaySession:
    activities = [
        update(activity) if activity.id == activity_id else activity
        for activity in session.activities
    ]
    return session.model_copy(update={"activities": activities})


def _is_minutes(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _without_activity(session: DaySession, activity_id: str) -> DaySession:
    remaining = [x for x in session.activities if x.id != activity_id]
    return session.model_copy(update={"activities": _reindexed(remaining)})


# Day session lifecycle


def _start_new_day(state: AppState, action: a.StartNewDay, now: datetime) -> AppState:
    if not isinstance(action.wake_time, datetime) or not isinstance(
        action.planned_sleep_time, datetime
    ):
        logger.debug("Malformed StartNewDay times, ignoring")
        return state

    wake = ensure_aware(action.wake_time)
    sleep = normalize_sleep_time(wake, ensure_aware(action.planned_sleep_time))
    if sleep <= wake:
        logger.debug("Sleep time before wake time, ignoring StartNewDay")
        return state

    sessions = {
        session_id: session.model_copy(update={"is_active": False})
        if session.is_active
        else session
        for session_id, session in state.day_sessions.items()
    }

    new_session = DaySession(
        id=generate_id(),
        wake_time=wake,
        planned_sleep_time=sleep,
        is_active=True,
        is_setup_complete=False,
        is_reconciled=False,
        activities=[],
        created_at=now,
    )
    sessions[new_session.id] = new_session

    logger.info(f"Started day session {new_session.id}: {wake} to {sleep}")
    return state.model_copy(
        update={"day_sessions": sessions, "current_session_id": new_session.id}
    )


def _update_sleep_time(
    state: AppState, action: a.UpdateSleepTime, now: datetime
) -> AppState:
    if not isinstance(action.planned_sleep_time, datetime):
        return state

    def update(session: DaySession) -> DaySession:
        sleep = normalize_sleep_time(
            session.wake_time, ensure_aware(action.planned_sleep_time)
        )
        if sleep <= session.wake_time:
            return session
        return session.model_copy(update={"planned_sleep_time": sleep})

    return _update_current(state, action, update)


def _complete_morning_setup(
    state: AppState, action: a.CompleteMorningSetup, now: datetime
) -> AppState:
    return _update_current(
        state, action, lambda s: s.model_copy(update={"is_setup_complete": True})
    )


def _end_day(state: AppState, action: a.EndDay, now: datetime) -> AppState:
    session = state.current_session
    if session is None:
        return state

    ended = session.model_copy(
        update={"is_active": False, "is_reconciled": True, "actual_sleep_time": now}
    )
    logger.info(f"Ended day session {session.id}")
    return _with_session(state, ended).model_copy(update={"current_session_id": None})


# Activities


def _add_activity(state: AppState, action: a.AddActivity, now: datetime) -> AppState:
    if not _is_minutes(action.planned_minutes) or action.planned_minutes == 0:
        logger.debug(f"Invalid planned minutes: {action.planned_minutes!r}")
        return state

    session = state.current_session
    if session is None:
        logger.debug("No current session, ignoring AddActivity")
        return state

    try:
        activity = Activity(
            id=generate_id(),
            name=action.name,
            planned_minutes=action.planned_minutes,
            category_id=action.category_id,
            day_session_id=session.id,
            order=len(session.activities),
            notes=action.notes,
        )
    except ValidationError as e:
        logger.debug(f"Ignoring invalid activity: {e}")
        return state

    session = session.model_copy(update={"activities": [*session.activities, activity]})
    return _with_session(state, session)


def _update_activity(
    state: AppState, action: a.UpdateActivity, now: datetime
) -> AppState:
    if not isinstance(action.activity, Activity):
        logger.debug(f"Ignoring UpdateActivity with {action.activity!r}")
        return state
    return _update_current(
        state,
        action,
        lambda s: _map_activity(s, action.activity.id, lambda _: action.activity),
    )


def _delete_activity(
    state: AppState, action: a.DeleteActivity, now: datetime
) -> AppState:
    return _update_current(
        state, action, lambda s: _without_activity(s, action.activity_id)
    )


def _complete_activity(
    state: AppState, action: a.CompleteActivity, now: datetime
) -> AppState:
    if action.actual_minutes is not None and not _is_minutes(action.actual_minutes):
        logger.debug(f"Invalid actual minutes: {action.actual_minutes!r}")
        return state

    def complete(activity: Activity) -> Activity:
        actual = (
            action.actual_minutes
            if action.actual_minutes is not None
            else activity.planned_minutes
        )
        return activity.model_copy(
            update={"completed": True, "actual_minutes": actual, "timer": None}
        )

    return _update_current(
        state, action, lambda s: _map_activity(s, action.activity_id, complete)
    )


def _move_to_backlog(
    state: AppState, action: a.MoveToBacklog, now: datetime
) -> AppState:
    session = state.current_session
    if session is None:
        return state
    activity = session.find_activity(action.activity_id)
    if activity is None:
        return state

    week = week_of(now, state.settings.week_starts_on)
    key = activity.name.lower()
    existing = next(
        (
            item
            for item in state.backlog
            if item.activity_name.lower() == key and item.week_of == week
        ),
        None,
    )

    if existing:
        backlog = [
            item.model_copy(update={"postponed_count": item.postponed_count + 1})
            if item.id == existing.id
            else item
            for item in state.backlog
        ]
        logger.info(
            f"Postponed '{activity.name}' again "
            f"({existing.postponed_count + 1}x this week)"
        )
    else:
        backlog = [
            *state.backlog,
            BacklogItem(
                id=generate_id(),
                activity_name=activity.name,
                category_id=activity.category_id,
                planned_minutes=activity.planned_minutes,
                postponed_count=1,
                original_day_session_id=session.id,
                added_to_backlog_at=now,
                week_of=week,
            ),
        ]
        logger.info(f"Moved '{activity.name}' to backlog for week of {week}")

    state = _with_session(state, _without_activity(session, activity.id))
    return state.model_copy(update={"backlog": backlog})


def _reorder_activities(
    state: AppState, action: a.ReorderActivities, now: datetime
) -> AppState:
    activities = action.activities
    if not isinstance(activities, (list, tuple)) or not all(
        isinstance(x, Activity) for x in activities
    ):
        logger.debug("Ignoring ReorderActivities with non-activity items")
        return state
    return _update_current(
        state,
        action,
        lambda s: s.model_copy(update={"activities": list(activities)}),
    )


def _move_activity(state: AppState, action: a.MoveActivity, now: datetime) -> AppState:
    session = state.current_session
    if session is None:
        return state

    activities = list(session.activities)
    index = next(
        (i for i, x in enumerate(activities) if x.id == action.activity_id), -1
    )
    if index == -1:
        return state

    new_index = index - 1 if action.direction == "up" else index + 1
    if new_index < 0 or new_index >= len(activities):
        return state

    activities[index], activities[new_index] = activities[new_index], activities[index]
    return reduce(state, a.ReorderActivities(_reindexed(activities)), now)


# Timer


def _start_timer(state: AppState, action: a.StartTimer, now: datetime) -> AppState:
    def start(activity: Activity) -> Activity:
        # Restarting a running timer would drop the in-flight interval
        if activity.completed or isinstance(activity.timer, RunningTimer):
            return activity
        accumulated = activity.timer.accumulated_seconds if activity.timer else 0
        return activity.model_copy(
            update={
                "timer": RunningTimer(started_at=now, accumulated_seconds=accumulated)
            }
        )

    return _update_current(
        state, action, lambda s: _map_activity(s, action.activity_id, start)
    )


def _pause_timer(state: AppState, action: a.PauseTimer, now: datetime) -> AppState:
    def pause(activity: Activity) -> Activity:
        timer = activity.timer
        if not isinstance(timer, RunningTimer):
            return activity
        elapsed = max(0, math.floor((now - timer.started_at).total_seconds()))
        return activity.model_copy(
            update={
                "timer": PausedTimer(
                    accumulated_seconds=timer.accumulated_seconds + elapsed,
                    paused_at=now,
                )
            }
        )

    return _update_current(
        state, action, lambda s: _map_activity(s, action.activity_id, pause)
    )


def _resume_timer(state: AppState, action: a.ResumeTimer, now: datetime) -> AppState:
    def resume(activity: Activity) -> Activity:
        timer = activity.timer
        if not isinstance(timer, PausedTimer):
            return activity
        return activity.model_copy(
            update={
                "timer": RunningTimer(
                    started_at=now, accumulated_seconds=timer.accumulated_seconds
                )
            }
        )

    return _update_current(
        state, action, lambda s: _map_activity(s, action.activity_id, resume)
    )


def _stop_timer(state: AppState, action: a.StopTimer, now: datetime) -> AppState:
    if not _is_minutes(action.actual_minutes):
        logger.debug(f"Invalid actual minutes: {action.actual_minutes!r}")
        return state

    def stop(activity: Activity) -> Activity:
        return activity.model_copy(
            update={
                "actual_minutes": action.actual_minutes,
                "completed": True,
                "timer": None,
            }
        )

    return _update_current(
        state, action, lambda s: _map_activity(s, action.activity_id, stop)
    )


# Goals


def _add_goal(state: AppState, action: a.AddGoal, now: datetime) -> AppState:
    try:
        goal = Goal(
            id=generate_id(),
            name=action.name,
            category_id=action.category_id,
            target_type=action.target_type,
            target_value=action.target_value,
            frequency=action.frequency,
            activity_pattern=action.activity_pattern,
            created_at=now,
            is_active=True,
        )
    except ValidationError as e:
        logger.debug(f"Ignoring invalid goal: {e}")
        return state
    return state.model_copy(update={"goals": [*state.goals, goal]})


def _update_goal(state: AppState, action: a.UpdateGoal, now: datetime) -> AppState:
    if not isinstance(action.goal, Goal):
        logger.debug(f"Ignoring UpdateGoal with {action.goal!r}")
        return state
    goals = [action.goal if g.id == action.goal.id else g for g in state.goals]
    return state.model_copy(update={"goals": goals})


def _delete_goal(state: AppState, action: a.DeleteGoal, now: datetime) -> AppState:
    goals = [g for g in state.goals if g.id != action.goal_id]
    return state.model_copy(update={"goals": goals})


# Backlog


def _add_from_backlog(
    state: AppState, action: a.AddFromBacklog, now: datetime
) -> AppState:
    session = state.current_session
    if session is None:
        return state
    item = next((b for b in state.backlog if b.id == action.backlog_id), None)
    if item is None:
        return state

    activity = Activity(
        id=generate_id(),
        name=item.activity_name,
        category_id=item.category_id,
        planned_minutes=item.planned_minutes,
        day_session_id=session.id,
        order=len(session.activities),
        postponed_count=item.postponed_count,
        original_day_session_id=item.original_day_session_id,
    )
    session = session.model_copy(update={"activities": [*session.activities, activity]})
    backlog = [b for b in state.backlog if b.id != item.id]
    return _with_session(state, session).model_copy(update={"backlog": backlog})


def _remove_from_backlog(
    state: AppState, action: a.RemoveFromBacklog, now: datetime
) -> AppState:
    backlog = [b for b in state.backlog if b.id != action.backlog_id]
    return state.model_copy(update={"backlog": backlog})


# Whole-state


def _update_settings(
    state: AppState, action: a.UpdateSettings, now: datetime
) -> AppState:
    if not isinstance(action.changes, dict):
        return state

    # Accept field names and their camelCase aliases; drop anything else
    names = {}
    for name in UserSettings.model_fields:
        names[name] = name
        names[to_camel(name)] = name
    changes = {names[k]: v for k, v in action.changes.items() if k in names}

    try:
        settings = UserSettings.model_validate({**dict(state.settings), **changes})
    except ValidationError as e:
        logger.warning(f"Ignoring invalid settings update: {e}")
        return state
    return state.model_copy(update={"settings": settings})


def _load_state(state: AppState, action: a.LoadState, now: datetime) -> AppState:
    if not isinstance(action.state, AppState):
        return state
    return action.state


_HANDLERS: dict[type, Handler] = {
    a.StartNewDay: _start_new_day,
    a.UpdateSleepTime: _update_sleep_time,
    a.CompleteMorningSetup: _complete_morning_setup,
    a.EndDay: _end_day,
    a.AddActivity: _add_activity,
    a.UpdateActivity: _update_activity,
    a.DeleteActivity: _delete_activity,
    a.CompleteActivity: _complete_activity,
    a.MoveToBacklog: _move_to_backlog,
    a.ReorderActivities: _reorder_activities,
    a.MoveActivity: _move_activity,
    a.StartTimer: _start_timer,
    a.PauseTimer: _pause_timer,
    a.ResumeTimer: _resume_timer,
    a.StopTimer: _stop_timer,
    a.AddGoal: _add_goal,
    a.UpdateGoal: _update_goal,
    a.DeleteGoal: _delete_goal,
    a.AddFromBacklog: _add_from_backlog,
    a.RemoveFromBacklog: _remove_from_backlog,
    a.UpdateSettings: _update_settings,
    a.LoadState: _load_state,
}
