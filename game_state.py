# -*- coding: utf-8 -*-
########################
# game_state.py
########################
# Purpose:
# - Authoritative session state machine: Idle, Loading, Playing, Paused, Ended.
#
# Design notes:
# - Transitions come from a fixed table. Anything not in the table is a no-op that returns False,
#   so a stray UI action never raises.
# - CANCEL is internal: it lets a new session request abandon whatever is in flight.
# - Listeners are called synchronously after each real transition.
#
########################
# Interfaces:
# Public enums:
# - SessionState: IDLE, LOADING, PLAYING, PAUSED, ENDED
# - SessionAction: START, READY, PAUSE, RESUME, PLAYBACK_ENDED, RETURN_TO_MENU, CANCEL
#
# Public classes:
# - class GameStateMachine
#   - state() -> SessionState
#   - dispatch(action: SessionAction) -> bool
#   - add_listener(callback: Callable[[SessionState, SessionState], None]) -> None
#
########################

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, List, Tuple


logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


class SessionAction(str, Enum):
    START = "START"
    READY = "READY"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    PLAYBACK_ENDED = "PLAYBACK_ENDED"
    RETURN_TO_MENU = "RETURN_TO_MENU"
    CANCEL = "CANCEL"


_TRANSITIONS: Dict[Tuple[SessionState, SessionAction], SessionState] = {
    (SessionState.IDLE, SessionAction.START): SessionState.LOADING,
    (SessionState.LOADING, SessionAction.READY): SessionState.PLAYING,
    (SessionState.PLAYING, SessionAction.PAUSE): SessionState.PAUSED,
    (SessionState.PAUSED, SessionAction.RESUME): SessionState.PLAYING,
    (SessionState.PLAYING, SessionAction.PLAYBACK_ENDED): SessionState.ENDED,
    (SessionState.ENDED, SessionAction.RETURN_TO_MENU): SessionState.IDLE,
    (SessionState.PAUSED, SessionAction.RETURN_TO_MENU): SessionState.IDLE,
    (SessionState.LOADING, SessionAction.CANCEL): SessionState.IDLE,
    (SessionState.PLAYING, SessionAction.CANCEL): SessionState.IDLE,
    (SessionState.PAUSED, SessionAction.CANCEL): SessionState.IDLE,
    (SessionState.ENDED, SessionAction.CANCEL): SessionState.IDLE,
}

StateListener = Callable[[SessionState, SessionState], None]


class GameStateMachine:
    def __init__(self) -> None:
        self._state = SessionState.IDLE
        self._listeners: List[StateListener] = []

    def state(self) -> SessionState:
        return self._state

    def add_listener(self, callback: StateListener) -> None:
        self._listeners.append(callback)

    def dispatch(self, action: SessionAction) -> bool:
        next_state = _TRANSITIONS.get((self._state, action))
        if next_state is None:
            logger.debug("Ignoring %s in state %s", action.value, self._state.value)
            return False

        previous_state = self._state
        self._state = next_state
        logger.debug("Session state %s -> %s (%s)", previous_state.value, next_state.value, action.value)
        for callback in list(self._listeners):
            callback(previous_state, next_state)
        return True


def _run_unit_tests() -> None:
    machine = GameStateMachine()
    seen: List[Tuple[SessionState, SessionState]] = []
    machine.add_listener(lambda old, new: seen.append((old, new)))

    assert not machine.dispatch(SessionAction.PAUSE)
    assert machine.state() is SessionState.IDLE

    assert machine.dispatch(SessionAction.START)
    assert machine.dispatch(SessionAction.READY)
    assert machine.dispatch(SessionAction.PAUSE)
    assert not machine.dispatch(SessionAction.PLAYBACK_ENDED)
    assert machine.dispatch(SessionAction.RESUME)
    assert machine.dispatch(SessionAction.PLAYBACK_ENDED)
    assert not machine.dispatch(SessionAction.RESUME)
    assert machine.dispatch(SessionAction.RETURN_TO_MENU)
    assert machine.state() is SessionState.IDLE
    assert len(seen) == 6


if __name__ == "__main__":
    _run_unit_tests()
    print("game_state.py: ok")
