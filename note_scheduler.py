# -*- coding: utf-8 -*-
########################
# note_scheduler.py
########################
# Purpose:
# - Drive note lifecycles from an immutable Beatmap and the session clock.
# - Spawns notes travel_time ahead of their beat, keeps their timing offsets current,
#   and drops notes that pass the hit zone unjudged.
#
# Design notes:
# - No rendering usage. Pure gameplay logic.
# - The beatmap is consumed through a single cursor in strictly increasing index order,
#   so no beat event is ever spawned twice.
# - Offsets are in seconds (clock - expected hit time). Rendering position is derived from them,
#   never the other way round.
# - This module owns the live note list; HitJudge consumes notes through consume().
#
########################
# Interfaces:
# Public classes:
# - class NoteScheduler
#   - __init__(beatmap: Beatmap, *, travel_time_seconds: float, expire_after_seconds: float)
#   - beatmap() -> Beatmap
#   - travel_time_seconds() -> float
#   - cursor() -> int
#   - is_exhausted() -> bool
#   - expired_count() -> int
#   - reset() -> None
#   - update(clock_time_seconds: float) -> list[GameplayEvent]
#   - live_notes() -> list[Note]
#   - live_notes_in_lane(lane: int) -> list[Note]
#   - consume(note: Note) -> bool
#   - note_views() -> list[NoteView]
#
# Inputs:
# - Beatmap and clock time.
#
# Outputs:
# - NoteSpawned / NoteMissed(expired=True) events and the live note set for rendering and HitJudge.
#
########################

from __future__ import annotations

from typing import List

import gameplay_models
from gameplay_models import Beatmap, GameplayEvent, Note, NoteMissed, NoteSpawned, NoteView


class NoteScheduler:
    def __init__(self, beatmap: Beatmap, *, travel_time_seconds: float, expire_after_seconds: float) -> None:
        if float(travel_time_seconds) <= 0.0:
            raise ValueError("travel_time_seconds must be positive")
        if float(expire_after_seconds) < 0.0:
            raise ValueError("expire_after_seconds must be non-negative")
        self._beatmap = beatmap
        self._travel_time_seconds = float(travel_time_seconds)
        self._expire_after_seconds = float(expire_after_seconds)
        self._cursor = 0
        self._live_notes: List[Note] = []
        self._expired_count = 0

    def beatmap(self) -> Beatmap:
        return self._beatmap

    def travel_time_seconds(self) -> float:
        return self._travel_time_seconds

    def cursor(self) -> int:
        return self._cursor

    def is_exhausted(self) -> bool:
        return self._cursor >= len(self._beatmap) and not self._live_notes

    def expired_count(self) -> int:
        return self._expired_count

    def reset(self) -> None:
        for note in self._live_notes:
            note.alive = False
        self._live_notes = []
        self._cursor = 0
        self._expired_count = 0

    def update(self, clock_time_seconds: float) -> List[GameplayEvent]:
        now = float(clock_time_seconds)
        events: List[GameplayEvent] = []

        while self._cursor < len(self._beatmap):
            beat_event = self._beatmap[self._cursor]
            expected_hit_time = float(beat_event.time_seconds)
            if now < expected_hit_time - self._travel_time_seconds:
                break
            note = Note(
                beat_index=self._cursor,
                lane=int(beat_event.lane),
                spawn_time_seconds=expected_hit_time - self._travel_time_seconds,
                expected_hit_time_seconds=expected_hit_time,
            )
            self._live_notes.append(note)
            events.append(NoteSpawned(time_seconds=now, lane=note.lane, beat_index=note.beat_index))
            self._cursor += 1

        still_live: List[Note] = []
        for note in self._live_notes:
            note.current_offset_seconds = now - note.expected_hit_time_seconds
            if note.current_offset_seconds > self._expire_after_seconds:
                note.alive = False
                self._expired_count += 1
                events.append(NoteMissed(time_seconds=now, lane=note.lane, beat_index=note.beat_index, expired=True))
                continue
            still_live.append(note)
        self._live_notes = still_live

        return events

    def live_notes(self) -> List[Note]:
        return list(self._live_notes)

    def live_notes_in_lane(self, lane: int) -> List[Note]:
        lane_key = int(lane)
        return [note for note in self._live_notes if note.lane == lane_key]

    def consume(self, note: Note) -> bool:
        if not note.alive:
            return False
        note.alive = False
        self._live_notes = [item for item in self._live_notes if item is not note]
        return True

    def note_views(self) -> List[NoteView]:
        return [
            NoteView(
                lane=note.lane,
                normalized_position=1.0 + note.current_offset_seconds / self._travel_time_seconds,
                offset_seconds=note.current_offset_seconds,
            )
            for note in self._live_notes
        ]


def _run_unit_tests() -> None:
    beatmap = gameplay_models.Beatmap(
        events=(
            gameplay_models.BeatEvent(time_seconds=2.0, lane=1),
            gameplay_models.BeatEvent(time_seconds=2.0, lane=0),
            gameplay_models.BeatEvent(time_seconds=3.5, lane=2),
        ),
        lane_count=4,
    )
    scheduler = NoteScheduler(beatmap, travel_time_seconds=1.0, expire_after_seconds=0.2)

    assert scheduler.update(0.5) == []
    spawned = scheduler.update(1.0)
    assert [event.beat_index for event in spawned] == [0, 1]
    assert [note.lane for note in scheduler.live_notes()] == [1, 0]
    assert all(abs(view.normalized_position) < 1e-9 for view in scheduler.note_views())

    scheduler.update(2.0)
    assert all(abs(view.normalized_position - 1.0) < 1e-9 for view in scheduler.note_views())

    events = scheduler.update(2.5)
    dropped = [(event.beat_index, event.expired) for event in events if isinstance(event, NoteMissed)]
    assert dropped == [(0, True), (1, True)]
    assert scheduler.expired_count() == 2

    live = scheduler.live_notes()
    assert [note.beat_index for note in live] == [2]
    note = scheduler.live_notes_in_lane(2)[0]
    assert scheduler.consume(note)
    assert not scheduler.consume(note)
    assert scheduler.cursor() == 3
    assert scheduler.is_exhausted()

    scheduler.reset()
    assert scheduler.cursor() == 0
    assert scheduler.live_notes() == []


if __name__ == "__main__":
    _run_unit_tests()
    print("note_scheduler.py: ok")
