# -*- coding: utf-8 -*-
########################
# spectral_analyzer.py
########################
# Purpose:
# - Slice mono PCM into fixed-size, non-overlapping frames.
# - Compute one magnitude spectrum per complete frame.
#
# Design notes:
# - Pure numpy. Deterministic: identical buffers produce identical spectra.
# - The trailing incomplete frame is dropped silently.
# - Spectra are produced lazily so only the current frame's spectrum is held here.
#
########################
# Interfaces:
# Public classes:
# - class SpectralAnalyzer
#   - __init__(*, sample_rate: int, frame_size: int = 2048, window: str = "boxcar")
#   - sample_rate -> int
#   - frame_size -> int
#   - bin_count -> int
#   - frames_per_second -> float
#   - frame_count(sample_count: int) -> int
#   - iter_frames(samples) -> Iterator[numpy.ndarray]
#   - spectrum(frame) -> numpy.ndarray
#   - iter_spectra(samples) -> Iterator[numpy.ndarray]
#
# Inputs:
# - Mono float samples at sample_rate.
#
# Outputs:
# - Magnitude spectra of length frame_size // 2 + 1, consumed by OnsetDetector.
#
########################

from __future__ import annotations

from typing import Iterator

import numpy as np
from scipy.signal import get_window


class SpectralAnalyzer:
    def __init__(self, *, sample_rate: int, frame_size: int = 2048, window: str = "boxcar") -> None:
        if int(sample_rate) <= 0:
            raise ValueError("sample_rate must be positive")
        frame_size_value = int(frame_size)
        if frame_size_value <= 0 or (frame_size_value & (frame_size_value - 1)) != 0:
            raise ValueError("frame_size must be a positive power of two")

        self._sample_rate = int(sample_rate)
        self._frame_size = frame_size_value
        self._window_name = str(window)
        try:
            self._window = np.asarray(get_window(self._window_name, self._frame_size, fftbins=True), dtype=np.float64)
        except ValueError as exc:
            raise ValueError(f"Unknown analysis window: {self._window_name!r}") from exc

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def bin_count(self) -> int:
        return self._frame_size // 2 + 1

    @property
    def frames_per_second(self) -> float:
        return float(self._sample_rate) / float(self._frame_size)

    def frame_count(self, sample_count: int) -> int:
        return max(0, int(sample_count)) // self._frame_size

    def iter_frames(self, samples: np.ndarray) -> Iterator[np.ndarray]:
        buffer = np.asarray(samples, dtype=np.float64).ravel()
        for frame_index in range(self.frame_count(buffer.size)):
            start = frame_index * self._frame_size
            yield buffer[start:start + self._frame_size]

    def spectrum(self, frame: np.ndarray) -> np.ndarray:
        frame_array = np.asarray(frame, dtype=np.float64)
        if frame_array.shape != (self._frame_size,):
            raise ValueError(f"frame must hold exactly {self._frame_size} samples")
        return np.abs(np.fft.rfft(frame_array * self._window))

    def iter_spectra(self, samples: np.ndarray) -> Iterator[np.ndarray]:
        for frame in self.iter_frames(samples):
            yield self.spectrum(frame)


def _run_unit_tests() -> None:
    analyzer = SpectralAnalyzer(sample_rate=8000, frame_size=256)
    samples = np.random.default_rng(7).standard_normal(256 * 3 + 100)

    assert analyzer.frame_count(len(samples)) == 3
    spectra = list(analyzer.iter_spectra(samples))
    assert len(spectra) == 3
    assert all(s.shape == (analyzer.bin_count,) for s in spectra)
    assert all(float(s.min()) >= 0.0 for s in spectra)

    again = list(analyzer.iter_spectra(samples))
    assert all(np.array_equal(a, b) for a, b in zip(spectra, again))

    assert list(analyzer.iter_spectra(np.zeros(100))) == []
    assert abs(analyzer.frames_per_second - 8000.0 / 256.0) < 1e-12

    for bad_size in (0, -2048, 1000):
        try:
            SpectralAnalyzer(sample_rate=8000, frame_size=bad_size)
        except ValueError:
            pass
        else:
            raise AssertionError(f"Expected ValueError for frame_size={bad_size}")


if __name__ == "__main__":
    _run_unit_tests()
    print("spectral_analyzer.py: ok")
