# -*- coding: utf-8 -*-
########################
# session_clock.py
########################
# Purpose:
# - Single source of truth for song time during a session.
# - Accumulates host frame deltas into a monotonically advancing clock.
#
# Design notes:
# - Gameplay code must use SessionClock.time_seconds.
# - No rendering or audio dependencies. Keep this module pure and deterministic.
# - Frozen while paused. The first delta after a resume is discarded so the
#   wall time spent paused never leaks into song time.
# - Negative deltas are clamped to zero; the clock never runs backwards.
#
########################
# Interfaces:
# Public dataclasses:
# - ClockSnapshot(time_seconds: float, is_paused: bool, tick_count: int)
#
# Public classes:
# - class SessionClock
#   - time_seconds() -> float
#   - is_paused() -> bool
#   - tick_count() -> int
#   - advance(delta_seconds: float) -> float
#   - pause() -> None
#   - resume() -> None
#   - reset() -> None
#   - snapshot() -> ClockSnapshot
#
# Inputs:
# - delta_seconds from the host per-frame callback.
#
# Outputs:
# - time_seconds used by NoteScheduler, HitJudge and Session.
#
########################

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ClockSnapshot:
    time_seconds: float
    is_paused: bool
    tick_count: int


class SessionClock:
    def __init__(self) -> None:
        self._time_seconds = 0.0
        self._is_paused = False
        self._discard_next_delta = False
        self._tick_count = 0

    def time_seconds(self) -> float:
        return float(self._time_seconds)

    def is_paused(self) -> bool:
        return bool(self._is_paused)

    def tick_count(self) -> int:
        return int(self._tick_count)

    def advance(self, delta_seconds: float) -> float:
        """Apply one host delta and return the amount actually added to the clock."""
        if self._is_paused:
            return 0.0

        value = float(delta_seconds)
        if value < 0.0:
            value = 0.0
        if self._discard_next_delta:
            # The delta spanning the pause belongs to wall time, not song time.
            self._discard_next_delta = False
            value = 0.0

        self._time_seconds += value
        self._tick_count += 1
        return value

    def pause(self) -> None:
        self._is_paused = True

    def resume(self) -> None:
        if not self._is_paused:
            return
        self._is_paused = False
        self._discard_next_delta = True

    def reset(self) -> None:
        self._time_seconds = 0.0
        self._is_paused = False
        self._discard_next_delta = False
        self._tick_count = 0

    def snapshot(self) -> ClockSnapshot:
        return ClockSnapshot(
            time_seconds=self.time_seconds(),
            is_paused=self.is_paused(),
            tick_count=self.tick_count(),
        )


def _run_unit_tests() -> None:
    clock = SessionClock()
    clock.advance(0.5)
    clock.advance(-3.0)
    assert abs(clock.time_seconds() - 0.5) < 1e-9

    clock.pause()
    assert clock.advance(10.0) == 0.0
    clock.resume()
    assert clock.advance(7.0) == 0.0
    assert abs(clock.time_seconds() - 0.5) < 1e-9

    clock.advance(0.25)
    assert abs(clock.time_seconds() - 0.75) < 1e-9

    clock.reset()
    snap = clock.snapshot()
    assert snap.time_seconds == 0.0
    assert snap.tick_count == 0
    assert not snap.is_paused


if __name__ == "__main__":
    _run_unit_tests()
    print("session_clock.py: ok")
