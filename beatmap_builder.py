# -*- coding: utf-8 -*-
########################
# beatmap_builder.py
########################
# Purpose:
# - Offline beatmap generation from audio.
# - Runs decode -> SpectralAnalyzer -> OnsetDetector and converts peak indices into timed lane events.
#
# Key Logic:
# - Peak flux index i maps to time = i / (sample_rate / frame_size), i.e. analysis frames per second.
# - Lanes are drawn independently per event from a pluggable LaneSource.
#   Every build draws from a fresh fork of the configured source, so one build never shifts the lanes of the next.
#   Lane choice is not correlated with the onset's spectral content.
# - A beatmap with zero events is a first class failure (EmptyBeatmap): a session cannot start without events.
#
########################
# Interfaces:
# Public exceptions:
# - class EmptyBeatmap(Exception)
# - DecodeFailure is re-exported from audio_decoder for callers of build_from_source.
#
# Public protocols:
# - LaneSource.next_lane(lane_count: int) -> int
# - LaneSource.fork() -> LaneSource
#
# Public classes:
# - class RandomLaneSource(seed: Optional[int] = None)
# - class SequenceLaneSource(lanes: Sequence[int])
# - class BeatmapBuilder
#   - __init__(*, sample_rate, frame_size, flux_threshold, lane_count, lane_source=None, window="boxcar",
#              decoder=None, deterministic_lanes=False)
#   - from_config(app_config, *, lane_source=None, decoder=None) -> BeatmapBuilder
#   - build_from_peaks(peaks, *, duration_seconds) -> Beatmap
#   - build_from_samples(samples, sample_rate) -> Beatmap
#   - build_from_source(source) -> Beatmap
#
# Public functions:
# - seed_for_samples(samples) -> int
#
########################

from __future__ import annotations

import hashlib
import logging
import random
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

import audio_decoder
from audio_decoder import DecodeFailure
from gameplay_models import BeatEvent, Beatmap
from onset_detector import OnsetDetector
from spectral_analyzer import SpectralAnalyzer


logger = logging.getLogger(__name__)

__all__ = [
    "BeatmapBuilder",
    "DecodeFailure",
    "EmptyBeatmap",
    "LaneSource",
    "RandomLaneSource",
    "SequenceLaneSource",
    "seed_for_samples",
]


class EmptyBeatmap(Exception):
    """Raised when onset detection finds no peaks, so no playable beatmap exists."""


@runtime_checkable
class LaneSource(Protocol):
    def next_lane(self, lane_count: int) -> int:
        ...

    def fork(self) -> "LaneSource":
        """Return an independent source positioned where this one was constructed."""
        ...


class RandomLaneSource:
    def __init__(self, seed: Optional[int] = None) -> None:
        self._seed = seed
        self._random = random.Random(seed)

    def next_lane(self, lane_count: int) -> int:
        return self._random.randrange(int(lane_count))

    def fork(self) -> "RandomLaneSource":
        return RandomLaneSource(self._seed)


class SequenceLaneSource:
    """Cycles through a fixed lane sequence. Lanes wrap modulo lane_count."""

    def __init__(self, lanes: Sequence[int]) -> None:
        if not lanes:
            raise ValueError("lanes must be a non-empty sequence")
        self._lanes = [int(lane) for lane in lanes]
        self._index = 0

    def next_lane(self, lane_count: int) -> int:
        lane = self._lanes[self._index % len(self._lanes)]
        self._index += 1
        return lane % int(lane_count)

    def fork(self) -> "SequenceLaneSource":
        return SequenceLaneSource(self._lanes)


def seed_for_samples(samples: np.ndarray) -> int:
    payload = np.ascontiguousarray(samples, dtype=np.float64).tobytes()
    digest = hashlib.sha256(payload).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=False)


class BeatmapBuilder:
    def __init__(
        self,
        *,
        sample_rate: int,
        frame_size: int,
        flux_threshold: float,
        lane_count: int,
        lane_source: Optional[LaneSource] = None,
        window: str = "boxcar",
        decoder: Optional[audio_decoder.AudioDecoder] = None,
        deterministic_lanes: bool = False,
    ) -> None:
        if int(lane_count) < 1:
            raise ValueError("lane_count must be at least 1")
        self._analyzer = SpectralAnalyzer(sample_rate=sample_rate, frame_size=frame_size, window=window)
        self._detector = OnsetDetector(threshold=flux_threshold)
        self._lane_count = int(lane_count)
        self._lane_source = lane_source
        self._deterministic_lanes = bool(deterministic_lanes)
        self._decoder = decoder if decoder is not None else audio_decoder.WavAudioDecoder(target_sample_rate=int(sample_rate))

    @classmethod
    def from_config(
        cls,
        app_config,
        *,
        lane_source: Optional[LaneSource] = None,
        decoder: Optional[audio_decoder.AudioDecoder] = None,
    ) -> "BeatmapBuilder":
        analysis = app_config.analysis
        beatmap = app_config.beatmap
        if lane_source is None and beatmap.lane_seed is not None:
            lane_source = RandomLaneSource(beatmap.lane_seed)
        return cls(
            sample_rate=analysis.sample_rate,
            frame_size=analysis.frame_size,
            flux_threshold=analysis.flux_threshold,
            lane_count=beatmap.lane_count,
            lane_source=lane_source,
            window=analysis.window,
            decoder=decoder,
            deterministic_lanes=beatmap.deterministic_lanes,
        )

    @property
    def analyzer(self) -> SpectralAnalyzer:
        return self._analyzer

    @property
    def detector(self) -> OnsetDetector:
        return self._detector

    @property
    def lane_count(self) -> int:
        return self._lane_count

    def build_from_peaks(
        self,
        peaks: Sequence[int],
        *,
        duration_seconds: float,
        lane_source: Optional[LaneSource] = None,
    ) -> Beatmap:
        if not peaks:
            raise EmptyBeatmap("Onset detection found no peaks above the flux threshold")

        template = lane_source if lane_source is not None else (self._lane_source or RandomLaneSource())
        source = template.fork()
        frames_per_second = self._analyzer.frames_per_second

        events: List[BeatEvent] = []
        for peak_index in sorted(int(index) for index in peaks):
            time_seconds = float(peak_index) / frames_per_second
            events.append(BeatEvent(time_seconds=time_seconds, lane=int(source.next_lane(self._lane_count))))

        return Beatmap(
            events=tuple(events),
            lane_count=self._lane_count,
            duration_seconds=float(duration_seconds),
            sample_rate=self._analyzer.sample_rate,
            frame_size=self._analyzer.frame_size,
        )

    def build_from_samples(self, samples: np.ndarray, sample_rate: int) -> Beatmap:
        if int(sample_rate) != self._analyzer.sample_rate:
            raise ValueError(
                f"samples are at {sample_rate} Hz but the analyzer expects {self._analyzer.sample_rate} Hz"
            )
        buffer = np.asarray(samples, dtype=np.float64).ravel()
        result = self._detector.detect(self._analyzer.iter_spectra(buffer))
        logger.info(
            "Onset analysis: %d frames, %d flux values, %d peaks",
            self._analyzer.frame_count(buffer.size),
            len(result.flux),
            len(result.peaks),
        )

        lane_source = self._lane_source
        if lane_source is None and self._deterministic_lanes:
            lane_source = RandomLaneSource(seed_for_samples(buffer))

        duration_seconds = float(buffer.size) / float(self._analyzer.sample_rate)
        return self.build_from_peaks(result.peaks, duration_seconds=duration_seconds, lane_source=lane_source)

    def build_from_source(self, source: audio_decoder.AudioSource) -> Beatmap:
        decoded = self._decoder.decode(source)
        return self.build_from_samples(decoded.samples, decoded.sample_rate)


def _run_unit_tests() -> None:
    frame_size = 256
    sample_rate = 8000
    samples = np.zeros(frame_size * 10)
    samples[frame_size * 4] = 1.0
    samples[frame_size * 7] = 1.0

    builder = BeatmapBuilder(
        sample_rate=sample_rate,
        frame_size=frame_size,
        flux_threshold=10.0,
        lane_count=4,
        lane_source=SequenceLaneSource([2, 5]),
    )
    beatmap = builder.build_from_samples(samples, sample_rate)
    frames_per_second = sample_rate / frame_size
    assert [event.time_seconds for event in beatmap] == [3 / frames_per_second, 6 / frames_per_second]
    assert [event.lane for event in beatmap] == [2, 1]
    assert abs(beatmap.duration_seconds - len(samples) / sample_rate) < 1e-12
    assert [event.lane for event in builder.build_from_samples(samples, sample_rate)] == [2, 1]

    try:
        builder.build_from_samples(np.zeros(frame_size * 10), sample_rate)
    except EmptyBeatmap:
        pass
    else:
        raise AssertionError("Expected EmptyBeatmap for silence")

    deterministic = BeatmapBuilder(
        sample_rate=sample_rate,
        frame_size=frame_size,
        flux_threshold=10.0,
        lane_count=4,
        deterministic_lanes=True,
    )
    first = [event.lane for event in deterministic.build_from_samples(samples, sample_rate)]
    second = [event.lane for event in deterministic.build_from_samples(samples, sample_rate)]
    assert first == second


if __name__ == "__main__":
    _run_unit_tests()
    print("beatmap_builder.py: ok")
