# -*- coding: utf-8 -*-
########################
# onset_detector.py
########################
# Purpose:
# - Spectral flux onset detection.
# - Turns an in-order stream of magnitude spectra into flux values and picks peak indices.
#
# Design notes:
# - Flux is half-wave rectified: only energy increases count, decay is ignored.
# - Flux index i is the transition from frame i to frame i + 1, so a stream of N spectra gives N - 1 values.
# - Peak rule: flux[i] > threshold and flux[i] > flux[i - 1], for i >= 1.
#   The successor is never consulted, so a rising plateau can yield consecutive peaks.
# - Threshold is a fixed constant, never derived from the signal.
#
########################
# Interfaces:
# Public dataclasses:
# - OnsetResult(flux: list[float], peaks: list[int])
#
# Public classes:
# - class OnsetDetector
#   - __init__(*, threshold: float)
#   - threshold -> float
#   - reset() -> None
#   - push(spectrum) -> Optional[float]
#   - flux(spectra) -> Iterator[float]
#   - pick_peaks(flux_values) -> list[int]
#   - detect(spectra) -> OnsetResult
#
########################

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class OnsetResult:
    flux: List[float]
    peaks: List[int]


class OnsetDetector:
    def __init__(self, *, threshold: float) -> None:
        threshold_value = float(threshold)
        if not np.isfinite(threshold_value) or threshold_value <= 0.0:
            raise ValueError("threshold must be a positive finite number")
        self._threshold = threshold_value
        self._previous_spectrum: Optional[np.ndarray] = None

    @property
    def threshold(self) -> float:
        return self._threshold

    def reset(self) -> None:
        self._previous_spectrum = None

    def push(self, spectrum: np.ndarray) -> Optional[float]:
        """Feed the next spectrum. Returns the flux against the previous one, or None for the first."""
        current = np.asarray(spectrum, dtype=np.float64)
        previous = self._previous_spectrum
        self._previous_spectrum = current
        if previous is None:
            return None
        if previous.shape != current.shape:
            raise ValueError("spectra must all have the same length")
        return float(np.sum(np.maximum(current - previous, 0.0)))

    def flux(self, spectra: Iterable[np.ndarray]) -> Iterator[float]:
        self.reset()
        for spectrum in spectra:
            value = self.push(spectrum)
            if value is not None:
                yield value

    def pick_peaks(self, flux_values: Sequence[float]) -> List[int]:
        peaks: List[int] = []
        for index in range(1, len(flux_values)):
            value = float(flux_values[index])
            if value > self._threshold and value > float(flux_values[index - 1]):
                peaks.append(index)
        return peaks

    def detect(self, spectra: Iterable[np.ndarray]) -> OnsetResult:
        flux_values = list(self.flux(spectra))
        return OnsetResult(flux=flux_values, peaks=self.pick_peaks(flux_values))


def _run_unit_tests() -> None:
    detector = OnsetDetector(threshold=1.0)

    silent = [np.zeros(5) for _ in range(6)]
    result = detector.detect(silent)
    assert result.flux == [0.0] * 5
    assert result.peaks == []

    rising = [np.full(3, level) for level in (0.0, 0.0, 2.0, 2.0, 0.0, 5.0)]
    result = detector.detect(rising)
    assert result.flux == [0.0, 6.0, 0.0, 0.0, 15.0]
    assert result.peaks == [1, 4]

    # Strict rise only: a rising staircase flags every step.
    assert detector.pick_peaks([0.0, 2.0, 3.0, 4.0, 1.0]) == [1, 2, 3]
    # Index 0 never qualifies.
    assert detector.pick_peaks([10.0, 0.0]) == []

    for bad_threshold in (0.0, -1.0, float("nan")):
        try:
            OnsetDetector(threshold=bad_threshold)
        except ValueError:
            pass
        else:
            raise AssertionError(f"Expected ValueError for threshold={bad_threshold}")


if __name__ == "__main__":
    _run_unit_tests()
    print("onset_detector.py: ok")
