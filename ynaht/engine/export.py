"""JSON, CSV and plain-text exports of sessions and goals."""

import csv
import io
import json
import logging
from datetime import datetime
from typing import Optional

from .models import AppState, DaySession
from .timeutil import minutes_to_hours_minutes

logger = logging.getLogger(__name__)

ALL_SESSIONS_HEADERS = [
    "Date",
    "Wake Time",
    "Sleep Time",
    "Activity",
    "Category",
    "Planned (min)",
    "Actual (min)",
    "Variance",
]

SESSION_HEADERS = [
    "Activity",
    "Category",
    "Planned (min)",
    "Actual (min)",
    "Variance",
    "Notes",
]


def export_data(state: AppState) -> dict:
    """The exported structure: sessions by id and goals, camelCase keys."""
    blob = state.to_blob()
    return {"daySessions": blob["daySessions"], "goals": blob["goals"]}


def export_to_json(state: AppState) -> str:
    """Pretty-printed JSON of sessions and goals."""
    return json.dumps(export_data(state), indent=2)


def _write_rows(rows: list[list[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def _variance(planned: int, actual: Optional[int]) -> str:
    return "" if actual is None else str(actual - planned)


def _optional(value: Optional[int]) -> str:
    return "" if value is None else str(value)


def export_session_to_csv(session: DaySession) -> str:
    """One row per activity of a single session, with notes."""
    rows = [SESSION_HEADERS]
    for activity in session.activities:
        rows.append(
            [
                activity.name,
                activity.category_id,
                str(activity.planned_minutes),
                _optional(activity.actual_minutes),
                _variance(activity.planned_minutes, activity.actual_minutes),
                activity.notes or "",
            ]
        )
    return _write_rows(rows)


def export_all_sessions_to_csv(state: AppState) -> str:
    """One row per activity across all sessions, sessions in wake-time order."""
    rows = [ALL_SESSIONS_HEADERS]

    sessions = sorted(state.day_sessions.values(), key=lambda s: s.wake_time)
    for session in sessions:
        wake_time = session.wake_time.astimezone()
        date = wake_time.strftime("%Y-%m-%d")
        wake = wake_time.strftime("%H:%M")
        sleep = session.planned_sleep_time.astimezone().strftime("%H:%M")

        for activity in session.activities:
            rows.append(
                [
                    date,
                    wake,
                    sleep,
                    activity.name,
                    activity.category_id,
                    str(activity.planned_minutes),
                    _optional(activity.actual_minutes),
                    _variance(activity.planned_minutes, activity.actual_minutes),
                ]
            )

    logger.info(f"Exported {len(rows) - 1} activities from {len(sessions)} sessions")
    return _write_rows(rows)


def _clock_12h(dt: datetime) -> str:
    return dt.astimezone().strftime("%I:%M %p").lstrip("0")


def generate_session_summary(session: DaySession) -> str:
    """Plain-text daily summary."""
    total_planned = sum(a.planned_minutes for a in session.activities)
    total_actual = sum(a.actual_minutes or 0 for a in session.activities)

    wake_time = session.wake_time.astimezone()
    display_date = f"{wake_time.strftime('%A, %B')} {wake_time.day}, {wake_time.year}"
    lines = [
        f"Daily Summary - {display_date}",
        "=" * 50,
        "",
        f"Day: {_clock_12h(session.wake_time)} - {_clock_12h(session.planned_sleep_time)}",
        f"Total Planned: {minutes_to_hours_minutes(total_planned)}",
    ]

    if session.is_reconciled:
        lines.append(f"Total Actual: {minutes_to_hours_minutes(total_actual)}")
        lines.append(
            f"Variance: {minutes_to_hours_minutes(total_actual - total_planned)}"
        )

    lines += ["", "Activities:", "-" * 30]
    for activity in session.activities:
        line = (
            f"- {activity.name} [{activity.category_id}]: "
            f"{minutes_to_hours_minutes(activity.planned_minutes)}"
        )
        if activity.actual_minutes is not None:
            line += f" (actual: {minutes_to_hours_minutes(activity.actual_minutes)})"
        lines.append(line)

    return "\n".join(lines) + "\n"


def export_filename(extension: str, now: datetime) -> str:
    return f"ynaht-export-{now.date().isoformat()}.{extension}"
