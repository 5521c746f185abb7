# -*- coding: utf-8 -*-
########################
# judge.py
########################
# Purpose:
# - Hit judgement and scoring engine.
# - Resolves a lane input against the live notes in that lane and classifies the timing error into a tier.
# - Generates NoteHit for hits and NoteMissed for inputs that match nothing.
#
# Design notes:
# - No rendering usage. Pure gameplay logic.
# - Timing error is |clock - expected hit time| in seconds, not a geometric overlap.
# - A note is a candidate only while inside the hit zone (|offset| <= hit_zone_half_width_seconds).
# - Candidates are scanned newest first. The first one whose error falls in a tier is consumed.
# - An input that matches nothing is a Miss. Early, late and empty-lane presses are not distinguished.
# - Scheduler owns the live notes; HitJudge consumes them via NoteScheduler.consume, which
#   refuses an already consumed note, so no note is judged twice.
#
########################
# Interfaces:
# Public dataclasses:
# - HitWindows(perfect_seconds, good_seconds, okay_seconds, perfect_points, good_points, okay_points)
#   - classify_error(error_seconds: float) -> Optional[HitTier]
#   - points_for(tier: HitTier) -> int
# - ScoreState(total_score, note_count, perfect_count, good_count, okay_count, miss_count)
#   - apply_hit(tier: HitTier, points: int) -> None
#   - apply_miss() -> None
#
# Public classes:
# - class HitJudge
#   - __init__(note_scheduler: NoteScheduler, hit_windows: HitWindows, *, hit_zone_half_width_seconds: float)
#   - score_state() -> ScoreState
#   - reset(note_count: int = 0) -> None
#   - judge(lane: int, clock_time_seconds: float) -> NoteHit | NoteMissed
#
########################

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import gameplay_models
import note_scheduler
from gameplay_models import HitTier, NoteHit, NoteMissed


@dataclass(frozen=True)
class HitWindows:
    perfect_seconds: float
    good_seconds: float
    okay_seconds: float
    perfect_points: int = 300
    good_points: int = 100
    okay_points: int = 50

    def __post_init__(self) -> None:
        if not 0.0 < float(self.perfect_seconds) <= float(self.good_seconds) <= float(self.okay_seconds):
            raise ValueError("hit windows must satisfy 0 < perfect_seconds <= good_seconds <= okay_seconds")
        if min(int(self.perfect_points), int(self.good_points), int(self.okay_points)) < 0:
            raise ValueError("tier points must be non-negative")

    @classmethod
    def from_config(cls, judge_config) -> "HitWindows":
        return cls(
            perfect_seconds=float(judge_config.perfect_seconds),
            good_seconds=float(judge_config.good_seconds),
            okay_seconds=float(judge_config.okay_seconds),
            perfect_points=int(judge_config.perfect_points),
            good_points=int(judge_config.good_points),
            okay_points=int(judge_config.okay_points),
        )

    def classify_error(self, error_seconds: float) -> Optional[HitTier]:
        abs_error = abs(float(error_seconds))
        if abs_error <= float(self.perfect_seconds):
            return HitTier.PERFECT
        if abs_error <= float(self.good_seconds):
            return HitTier.GOOD
        if abs_error <= float(self.okay_seconds):
            return HitTier.OKAY
        return None

    def points_for(self, tier: HitTier) -> int:
        if tier is HitTier.PERFECT:
            return int(self.perfect_points)
        if tier is HitTier.GOOD:
            return int(self.good_points)
        return int(self.okay_points)


@dataclass
class ScoreState:
    total_score: int = 0
    note_count: int = 0
    perfect_count: int = 0
    good_count: int = 0
    okay_count: int = 0
    miss_count: int = 0

    def apply_hit(self, tier: HitTier, points: int) -> None:
        if tier is HitTier.PERFECT:
            self.perfect_count += 1
        elif tier is HitTier.GOOD:
            self.good_count += 1
        else:
            self.okay_count += 1
        self.total_score += int(points)

    def apply_miss(self) -> None:
        self.miss_count += 1

    def hit_count(self) -> int:
        return self.perfect_count + self.good_count + self.okay_count


Judgement = Union[NoteHit, NoteMissed]


class HitJudge:
    def __init__(
        self,
        note_scheduler_obj: note_scheduler.NoteScheduler,
        hit_windows: HitWindows,
        *,
        hit_zone_half_width_seconds: float,
    ) -> None:
        if float(hit_zone_half_width_seconds) <= 0.0:
            raise ValueError("hit_zone_half_width_seconds must be positive")
        self._note_scheduler = note_scheduler_obj
        self._hit_windows = hit_windows
        self._hit_zone_half_width_seconds = float(hit_zone_half_width_seconds)
        self._score_state = ScoreState(note_count=len(note_scheduler_obj.beatmap()))

    def score_state(self) -> ScoreState:
        return self._score_state

    def reset(self, note_count: int = 0) -> None:
        self._score_state = ScoreState(note_count=max(0, int(note_count)))

    def judge(self, lane: int, clock_time_seconds: float) -> Judgement:
        lane_key = int(lane)
        now = float(clock_time_seconds)

        candidates = self._note_scheduler.live_notes_in_lane(lane_key)
        for note in reversed(candidates):
            offset = float(note.current_offset_seconds)
            if abs(offset) > self._hit_zone_half_width_seconds:
                continue
            tier = self._hit_windows.classify_error(offset)
            if tier is None:
                continue
            if not self._note_scheduler.consume(note):
                continue

            points = self._hit_windows.points_for(tier)
            self._score_state.apply_hit(tier, points)
            return NoteHit(
                time_seconds=now,
                lane=lane_key,
                beat_index=note.beat_index,
                tier=tier,
                error_seconds=abs(offset),
                points=points,
            )

        self._score_state.apply_miss()
        return NoteMissed(time_seconds=now, lane=lane_key, beat_index=None, expired=False)


def _run_unit_tests() -> None:
    beatmap = gameplay_models.Beatmap(
        events=(
            gameplay_models.BeatEvent(time_seconds=1.0, lane=0),
            gameplay_models.BeatEvent(time_seconds=2.0, lane=1),
        ),
        lane_count=4,
    )
    scheduler = note_scheduler.NoteScheduler(beatmap, travel_time_seconds=0.5, expire_after_seconds=0.2)
    windows = HitWindows(perfect_seconds=0.03, good_seconds=0.07, okay_seconds=0.1)
    engine = HitJudge(scheduler, windows, hit_zone_half_width_seconds=0.1)
    assert engine.score_state().note_count == 2

    scheduler.update(1.0)
    hit = engine.judge(0, 1.0)
    assert isinstance(hit, NoteHit)
    assert hit.tier is HitTier.PERFECT
    assert engine.score_state().total_score == 300

    # Same lane again: the note is gone, so this is a miss.
    stray = engine.judge(0, 1.0)
    assert isinstance(stray, NoteMissed)
    assert not stray.expired
    assert engine.score_state().miss_count == 1

    scheduler.update(1.95)
    late_enough = engine.judge(1, 1.95)
    assert isinstance(late_enough, NoteHit)
    assert late_enough.tier is HitTier.GOOD

    assert windows.classify_error(0.2) is None
    assert isinstance(engine.judge(9, 2.0), NoteMissed)

    engine.reset(note_count=2)
    assert engine.score_state() == ScoreState(note_count=2)


if __name__ == "__main__":
    _run_unit_tests()
    print("judge.py: ok")
