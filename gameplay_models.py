# -*- coding: utf-8 -*-
########################
# gameplay_models.py
########################
# Purpose:
# - Core data models for the runtime gameplay pipeline.
# - Defines the beat event and beatmap representation, the live Note entity,
#   and the presentation events emitted by NoteScheduler and HitJudge.
#
# Design notes:
# - Keep these models stable. Prefer extending with new optional fields rather than breaking changes.
# - Beatmap validates its invariants once at construction and is immutable afterwards.
# - No rendering dependencies. These are plain dataclasses.
#
########################
# Interfaces:
# Public enums:
# - HitTier: PERFECT | GOOD | OKAY
#
# Public dataclasses:
# - BeatEvent(time_seconds: float, lane: int)
# - Beatmap(events: tuple[BeatEvent, ...], lane_count: int, duration_seconds: float,
#           sample_rate: int, frame_size: int)
#   - start_delay_seconds(travel_time_seconds: float) -> float
# - Note(beat_index, lane, spawn_time_seconds, expected_hit_time_seconds, current_offset_seconds, alive)
# - NoteView(lane: int, normalized_position: float, offset_seconds: float)
# - NoteSpawned(time_seconds, lane, beat_index)
# - NoteHit(time_seconds, lane, beat_index, tier, error_seconds, points)
# - NoteMissed(time_seconds, lane, beat_index: Optional[int], expired: bool)
#
# Inputs/Outputs:
# - These types are exchanged between BeatmapBuilder, NoteScheduler, HitJudge, Session and the presentation layer.
#
########################

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union


class HitTier(str, enum.Enum):
    PERFECT = "perfect"
    GOOD = "good"
    OKAY = "okay"


@dataclass(frozen=True)
class BeatEvent:
    time_seconds: float
    lane: int


@dataclass(frozen=True)
class Beatmap:
    events: Tuple[BeatEvent, ...]
    lane_count: int
    duration_seconds: float = 0.0
    sample_rate: int = 0
    frame_size: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "events", tuple(self.events))
        if int(self.lane_count) < 1:
            raise ValueError("lane_count must be at least 1")
        previous_time = 0.0
        for index, event in enumerate(self.events):
            time_seconds = float(event.time_seconds)
            if not math.isfinite(time_seconds) or time_seconds < 0.0:
                raise ValueError(f"event {index} has invalid time {time_seconds}")
            if time_seconds < previous_time:
                raise ValueError(f"event {index} at {time_seconds} is earlier than its predecessor at {previous_time}")
            if not 0 <= int(event.lane) < int(self.lane_count):
                raise ValueError(f"event {index} lane {event.lane} is outside [0, {self.lane_count})")
            previous_time = time_seconds

    def __len__(self) -> int:
        return len(self.events)

    def __getitem__(self, index: int) -> BeatEvent:
        return self.events[index]

    def __iter__(self) -> Iterator[BeatEvent]:
        return iter(self.events)

    def start_delay_seconds(self, travel_time_seconds: float) -> float:
        if not self.events:
            return 0.0
        return float(self.events[0].time_seconds) + float(travel_time_seconds)


@dataclass
class Note:
    beat_index: int
    lane: int
    spawn_time_seconds: float
    expected_hit_time_seconds: float
    current_offset_seconds: float = 0.0
    alive: bool = True


@dataclass(frozen=True)
class NoteView:
    lane: int
    normalized_position: float
    offset_seconds: float


@dataclass(frozen=True)
class NoteSpawned:
    time_seconds: float
    lane: int
    beat_index: int


@dataclass(frozen=True)
class NoteHit:
    time_seconds: float
    lane: int
    beat_index: int
    tier: HitTier
    error_seconds: float
    points: int


@dataclass(frozen=True)
class NoteMissed:
    time_seconds: float
    lane: int
    beat_index: Optional[int]
    expired: bool


GameplayEvent = Union[NoteSpawned, NoteHit, NoteMissed]
