from datetime import timedelta
from typing import get_args

import pytest

from ynaht.engine import actions as a
from ynaht.engine.metrics import timer_minutes
from ynaht.engine.models import AppState, PausedTimer, RunningTimer
from ynaht.engine.reducer import _HANDLERS, reduce


def _session(state):
    return state.current_session


def _add(state, now, name="Gym", minutes=60, category="health"):
    return reduce(state, a.AddActivity(name, minutes, category), now)


def _ids(state):
    return [x.id for x in _session(state).activities]


def _orders(state):
    return [x.order for x in _session(state).activities]


def test_every_action_has_a_handler():
    assert set(_HANDLERS) == set(get_args(a.Action))


def test_unknown_action_is_ignored(started_state, now):
    assert reduce(started_state, object(), now) is started_state


class TestDaySession:
    def test_start_new_day(self, now, at):
        state = reduce(AppState(), a.StartNewDay(at(hour=7), at(hour=23)), now)
        session = _session(state)
        assert session.is_active
        assert not session.is_setup_complete
        assert session.activities == []
        assert session.created_at == now

    def test_start_new_day_deactivates_previous(self, started_state, now, at):
        previous_id = started_state.current_session_id
        state = reduce(
            started_state, a.StartNewDay(at(day=14, hour=7), at(day=14, hour=23)), now
        )
        assert state.current_session_id != previous_id
        assert len(state.day_sessions) == 2
        assert not state.day_sessions[previous_id].is_active
        assert sum(s.is_active for s in state.day_sessions.values()) == 1

    def test_sleep_before_wake_spans_next_day(self, now, at):
        state = reduce(AppState(), a.StartNewDay(at(hour=7), at(hour=1)), now)
        session = _session(state)
        assert session.planned_sleep_time == at(hour=1) + timedelta(days=1)

    def test_malformed_times_are_ignored(self, now):
        state = AppState()
        assert reduce(state, a.StartNewDay("07:00", "23:00"), now) is state

    def test_sleep_more_than_a_day_before_wake_is_ignored(self, now, at):
        state = AppState()
        action = a.StartNewDay(at(day=14, hour=7), at(day=12, hour=7))
        assert reduce(state, action, now) is state

    def test_complete_morning_setup_without_session(self, now):
        state = AppState()
        assert reduce(state, a.CompleteMorningSetup(), now) is state

    def test_update_sleep_time(self, started_state, now, at):
        state = reduce(started_state, a.UpdateSleepTime(at(hour=23, minute=30)), now)
        assert _session(state).planned_sleep_time == at(hour=23, minute=30)

    def test_end_day(self, started_state, now):
        session_id = started_state.current_session_id
        state = reduce(started_state, a.EndDay(), now)
        ended = state.day_sessions[session_id]
        assert state.current_session_id is None
        assert not ended.is_active
        assert ended.is_reconciled
        assert ended.actual_sleep_time == now

    def test_input_is_not_mutated(self, started_state, now):
        before = started_state.model_dump()
        _add(started_state, now)
        reduce(started_state, a.EndDay(), now)
        assert started_state.model_dump() == before


class TestActivities:
    def test_add_appends_with_next_order(self, started_state, now):
        state = _add(started_state, now, "Gym")
        state = _add(state, now, "Read", 30, "learning")
        activities = _session(state).activities
        assert [x.name for x in activities] == ["Gym", "Read"]
        assert _orders(state) == [0, 1]
        assert activities[0].day_session_id == state.current_session_id

    def test_add_without_session_is_noop(self, now):
        state = AppState()
        assert _add(state, now) is state

    def test_add_with_invalid_minutes_is_noop(self, started_state, now):
        assert _add(started_state, now, minutes=0) is started_state

    @pytest.mark.parametrize(
        "action",
        [
            a.AddActivity(None, 30, "work"),
            a.AddActivity("Gym", "60", "health"),
            a.AddActivity("Gym", True, "health"),
            a.UpdateActivity(None),
            a.CompleteActivity("missing", "lots"),
            a.ReorderActivities(None),
            a.ReorderActivities([None]),
        ],
    )
    def test_malformed_actions_are_noops(self, started_state, now, action):
        assert reduce(started_state, action, now) is started_state

    def test_delete_recompacts_order(self, started_state, now):
        state = started_state
        for name in ["A", "B", "C", "D"]:
            state = _add(state, now, name)
        b_id = _ids(state)[1]
        state = reduce(state, a.DeleteActivity(b_id), now)
        assert [x.name for x in _session(state).activities] == ["A", "C", "D"]
        assert _orders(state) == [0, 1, 2]

    def test_update_replaces_in_place(self, started_state, now):
        state = _add(_add(started_state, now, "A"), now, "B")
        first = _session(state).activities[0]
        state = reduce(
            state, a.UpdateActivity(first.model_copy(update={"notes": "early"})), now
        )
        activities = _session(state).activities
        assert activities[0].notes == "early"
        assert _orders(state) == [0, 1]

    def test_complete_defaults_to_planned(self, started_state, now):
        state = _add(started_state, now, minutes=45)
        activity_id = _ids(state)[0]
        state = reduce(state, a.CompleteActivity(activity_id), now)
        activity = _session(state).activities[0]
        assert activity.completed
        assert activity.actual_minutes == 45

    def test_complete_is_idempotent_and_overwrites(self, started_state, now):
        state = _add(started_state, now)
        activity_id = _ids(state)[0]
        state = reduce(state, a.CompleteActivity(activity_id, 50), now)
        state = reduce(state, a.CompleteActivity(activity_id, 70), now)
        assert _session(state).activities[0].actual_minutes == 70

    def test_complete_clears_timer(self, started_state, now):
        state = _add(started_state, now)
        activity_id = _ids(state)[0]
        state = reduce(state, a.StartTimer(activity_id), now)
        state = reduce(state, a.CompleteActivity(activity_id), now)
        assert _session(state).activities[0].timer is None

    def test_move_up_and_down(self, started_state, now):
        state = started_state
        for name in ["A", "B", "C"]:
            state = _add(state, now, name)
        c_id = _ids(state)[2]

        state = reduce(state, a.MoveActivity(c_id, "up"), now)
        assert [x.name for x in _session(state).activities] == ["A", "C", "B"]
        assert _orders(state) == [0, 1, 2]

        state = reduce(state, a.MoveActivity(c_id, "down"), now)
        assert [x.name for x in _session(state).activities] == ["A", "B", "C"]

    def test_move_past_bounds_is_noop(self, started_state, now):
        state = _add(_add(started_state, now, "A"), now, "B")
        first, last = _ids(state)
        assert reduce(state, a.MoveActivity(first, "up"), now) is state
        assert reduce(state, a.MoveActivity(last, "down"), now) is state

    def test_reorder_replaces_list(self, started_state, now):
        state = _add(_add(started_state, now, "A"), now, "B")
        first, second = _session(state).activities
        reordered = [
            second.model_copy(update={"order": 0}),
            first.model_copy(update={"order": 1}),
        ]
        state = reduce(state, a.ReorderActivities(reordered), now)
        assert [x.name for x in _session(state).activities] == ["B", "A"]

    def test_order_stays_dense_after_mixed_operations(self, started_state, now):
        state = started_state
        for name in ["A", "B", "C", "D", "E"]:
            state = _add(state, now, name)
        ids = _ids(state)
        state = reduce(state, a.DeleteActivity(ids[0]), now)
        state = reduce(state, a.MoveActivity(ids[3], "up"), now)
        state = reduce(state, a.MoveToBacklog(ids[2]), now)
        state = _add(state, now, "F")
        state = reduce(state, a.MoveActivity(ids[4], "down"), now)
        orders = _orders(state)
        assert sorted(orders) == list(range(len(orders)))


class TestBacklog:
    def test_move_to_backlog_creates_item(self, started_state, now):
        state = _add(started_state, now, "Taxes", 90, "personal")
        activity_id = _ids(state)[0]
        state = reduce(state, a.MoveToBacklog(activity_id), now)

        assert _session(state).activities == []
        item = state.backlog[0]
        assert item.activity_name == "Taxes"
        assert item.planned_minutes == 90
        assert item.postponed_count == 1
        assert item.week_of == "2024-06-10"
        assert item.original_day_session_id == state.current_session_id

    def test_same_week_same_name_merges(self, started_state, now):
        state = _add(_add(started_state, now, "Taxes"), now, "taxes")
        first, second = _ids(state)
        state = reduce(state, a.MoveToBacklog(first), now)
        state = reduce(state, a.MoveToBacklog(second), now)
        assert len(state.backlog) == 1
        assert state.backlog[0].postponed_count == 2

    def test_different_weeks_do_not_merge(self, started_state, now):
        state = _add(_add(started_state, now, "Taxes"), now, "Taxes")
        first, second = _ids(state)
        state = reduce(state, a.MoveToBacklog(first), now)
        state = reduce(state, a.MoveToBacklog(second), now + timedelta(days=7))
        assert len(state.backlog) == 2
        assert {b.week_of for b in state.backlog} == {"2024-06-10", "2024-06-17"}

    def test_add_from_backlog_carries_provenance(self, started_state, now, at):
        state = _add(started_state, now, "Taxes", 90)
        original_session = state.current_session_id
        state = reduce(state, a.MoveToBacklog(_ids(state)[0]), now)
        item_id = state.backlog[0].id

        state = reduce(state, a.StartNewDay(at(day=14, hour=7), at(day=14, hour=23)), now)
        state = reduce(state, a.AddFromBacklog(item_id), now)

        activity = _session(state).activities[0]
        assert state.backlog == []
        assert activity.name == "Taxes"
        assert activity.planned_minutes == 90
        assert activity.postponed_count == 1
        assert activity.original_day_session_id == original_session
        assert activity.order == 0

    def test_add_from_backlog_requires_session(self, started_state, now):
        state = _add(started_state, now)
        state = reduce(state, a.MoveToBacklog(_ids(state)[0]), now)
        state = reduce(state, a.EndDay(), now)
        assert reduce(state, a.AddFromBacklog(state.backlog[0].id), now) is state

    def test_remove_from_backlog(self, started_state, now):
        state = _add(started_state, now)
        state = reduce(state, a.MoveToBacklog(_ids(state)[0]), now)
        state = reduce(state, a.RemoveFromBacklog(state.backlog[0].id), now)
        assert state.backlog == []


class TestTimer:
    @pytest.fixture
    def timed(self, started_state, now):
        state = _add(started_state, now)
        return state, _ids(state)[0]

    def _timer(self, state):
        return _session(state).activities[0].timer

    def test_start(self, timed, now):
        state, activity_id = timed
        state = reduce(state, a.StartTimer(activity_id), now)
        timer = self._timer(state)
        assert isinstance(timer, RunningTimer)
        assert timer.started_at == now
        assert timer.accumulated_seconds == 0

    def test_start_on_running_timer_is_noop(self, timed, now):
        state, activity_id = timed
        state = reduce(state, a.StartTimer(activity_id), now)
        restarted = reduce(state, a.StartTimer(activity_id), now + timedelta(minutes=5))
        assert self._timer(restarted).started_at == now

    def test_pause_banks_elapsed_seconds(self, timed, now):
        state, activity_id = timed
        state = reduce(state, a.StartTimer(activity_id), now)
        state = reduce(state, a.PauseTimer(activity_id), now + timedelta(seconds=90.7))
        timer = self._timer(state)
        assert isinstance(timer, PausedTimer)
        assert timer.accumulated_seconds == 90
        assert timer.paused_at == now + timedelta(seconds=90.7)

    def test_pause_when_not_running_is_noop(self, timed, now):
        state, activity_id = timed
        paused = reduce(state, a.PauseTimer(activity_id), now)
        assert self._timer(paused) is None

    def test_accumulation_ignores_paused_gaps(self, timed, now):
        state, activity_id = timed
        t = now
        intervals = [30, 45, 120]
        banked = 0
        state = reduce(state, a.StartTimer(activity_id), t)
        for i, seconds in enumerate(intervals):
            t += timedelta(seconds=seconds)
            state = reduce(state, a.PauseTimer(activity_id), t)
            banked += seconds
            assert self._timer(state).accumulated_seconds == banked
            # Long gap while paused does not count
            t += timedelta(hours=2)
            if i < len(intervals) - 1:
                state = reduce(state, a.ResumeTimer(activity_id), t)

    def test_resume_keeps_accumulated(self, timed, now):
        state, activity_id = timed
        state = reduce(state, a.StartTimer(activity_id), now)
        state = reduce(state, a.PauseTimer(activity_id), now + timedelta(seconds=60))
        later = now + timedelta(minutes=10)
        state = reduce(state, a.ResumeTimer(activity_id), later)
        timer = self._timer(state)
        assert isinstance(timer, RunningTimer)
        assert timer.started_at == later
        assert timer.accumulated_seconds == 60

    def test_resume_without_timer_is_noop(self, timed, now):
        state, activity_id = timed
        assert self._timer(reduce(state, a.ResumeTimer(activity_id), now)) is None

    def test_stop_completes_and_clears(self, timed, now):
        state, activity_id = timed
        state = reduce(state, a.StartTimer(activity_id), now)
        state = reduce(state, a.StopTimer(activity_id, timer_minutes(125)), now)
        activity = _session(state).activities[0]
        assert activity.completed
        assert activity.actual_minutes == 2
        assert activity.timer is None

    def test_stop_with_invalid_minutes_is_noop(self, timed, now):
        state, activity_id = timed
        state = reduce(state, a.StartTimer(activity_id), now)
        assert reduce(state, a.StopTimer(activity_id, None), now) is state
        assert reduce(state, a.StopTimer(activity_id, -1), now) is state

    def test_start_on_completed_activity_is_noop(self, timed, now):
        state, activity_id = timed
        state = reduce(state, a.CompleteActivity(activity_id), now)
        assert self._timer(reduce(state, a.StartTimer(activity_id), now)) is None

    def test_completion_invariant_across_operations(self, timed, now):
        state, activity_id = timed
        state = _add(state, now, "Read")
        for action in [
            a.StartTimer(activity_id),
            a.PauseTimer(activity_id),
            a.ResumeTimer(activity_id),
            a.StopTimer(activity_id, 3),
            a.CompleteActivity(_ids(state)[1]),
        ]:
            state = reduce(state, action, now)
            for activity in _session(state).activities:
                if activity.completed:
                    assert activity.actual_minutes is not None
                    assert activity.timer is None


class TestGoalsAndSettings:
    def test_goal_crud(self, now):
        state = reduce(AppState(), a.AddGoal("Exercise", 3, "gym"), now)
        goal = state.goals[0]
        assert goal.is_active
        assert goal.created_at == now
        assert goal.frequency == "weekly"

        state = reduce(
            state, a.UpdateGoal(goal.model_copy(update={"target_value": 4})), now
        )
        assert state.goals[0].target_value == 4

        state = reduce(state, a.DeleteGoal(goal.id), now)
        assert state.goals == []

    @pytest.mark.parametrize(
        "action",
        [
            a.AddGoal("Exercise", "lots", "gym"),
            a.AddGoal("Exercise", 3, "gym", frequency="yearly"),
            a.AddGoal("Exercise", 3, "gym", target_type="streak"),
            a.UpdateGoal(None),
        ],
    )
    def test_malformed_goal_actions_are_noops(self, now, action):
        state = reduce(AppState(), a.AddGoal("Reading", 2, "read"), now)
        assert reduce(state, action, now) is state

    def test_update_settings_merges(self, now):
        state = reduce(AppState(), a.UpdateSettings({"week_starts_on": 0}), now)
        assert state.settings.week_starts_on == 0
        assert state.settings.default_sleep_time == "23:00"

    def test_update_settings_ignores_invalid(self, now):
        state = AppState()
        assert reduce(state, a.UpdateSettings({"week_starts_on": 5}), now) is state

    def test_update_settings_ignores_unknown_keys(self, now):
        state = reduce(AppState(), a.UpdateSettings({"theme": "dark"}), now)
        assert state.settings == AppState().settings

    def test_update_settings_accepts_camel_case_keys(self, now):
        state = reduce(
            AppState(),
            a.UpdateSettings({"weekStartsOn": 0, "defaultSleepTime": "22:30"}),
            now,
        )
        assert state.settings.week_starts_on == 0
        assert state.settings.default_sleep_time == "22:30"

    def test_update_settings_ignores_non_dict(self, now):
        state = AppState()
        assert reduce(state, a.UpdateSettings(None), now) is state

    def test_load_state_replaces(self, started_state, now):
        assert reduce(AppState(), a.LoadState(started_state), now) is started_state
