"""State holder with dispatch/subscribe, owned by whoever needs the engine."""

import logging
from datetime import datetime
from typing import Callable, Optional

from . import actions as a
from .metrics import DerivedState, derive, elapsed_seconds, timer_minutes
from .models import Activity, AppState
from .reducer import reduce
from .timeutil import now_local

logger = logging.getLogger(__name__)

Listener = Callable[[AppState], None]
Clock = Callable[[], datetime]


class SessionStore:
    """Holds the current AppState and applies actions in dispatch order."""

    def __init__(
        self,
        initial_state: Optional[AppState] = None,
        clock: Clock = now_local,
    ):
        """
        Initialize store.

        Args:
            initial_state: Starting state (a fresh AppState if omitted)
            clock: Source of wall-clock time, injectable for tests
        """
        self._state = initial_state or AppState()
        self._clock = clock
        self._listeners: list[Listener] = []

    def get_state(self) -> AppState:
        return self._state

    def dispatch(self, action: a.Action) -> AppState:
        """Apply an action and notify subscribers if the state changed."""
        next_state = reduce(self._state, action, self._clock())
        if next_state is self._state:
            return next_state

        self._state = next_state
        for listener in list(self._listeners):
            try:
                listener(next_state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")
        return next_state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with every new state.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def derived(self) -> DerivedState:
        """Derived views for the current state at the current time."""
        return derive(self._state, self._clock())

    def find_activity(self, activity_id: str) -> Optional[Activity]:
        session = self._state.current_session
        return session.find_activity(activity_id) if session else None

    # Convenience wrappers used by UI collaborators

    def move_activity(self, activity_id: str, direction: str) -> AppState:
        return self.dispatch(a.MoveActivity(activity_id, direction))

    def start_timer(self, activity_id: str) -> AppState:
        return self.dispatch(a.StartTimer(activity_id))

    def pause_timer(self, activity_id: str) -> AppState:
        return self.dispatch(a.PauseTimer(activity_id))

    def resume_timer(self, activity_id: str) -> AppState:
        return self.dispatch(a.ResumeTimer(activity_id))

    def elapsed_seconds(self, activity_id: str) -> int:
        """Elapsed timer seconds for display refresh ticks."""
        activity = self.find_activity(activity_id)
        if activity is None:
            return 0
        return elapsed_seconds(activity.timer, self._clock())

    def stop_timer(self, activity_id: str) -> AppState:
        """Stop the timer, recording elapsed time as rounded minutes."""
        minutes = timer_minutes(self.elapsed_seconds(activity_id))
        return self.dispatch(a.StopTimer(activity_id, minutes))

    def can_end_day(self) -> bool:
        """True when every activity in the current session has actual minutes."""
        session = self._state.current_session
        return session is not None and all(
            activity.actual_minutes is not None for activity in session.activities
        )
