# -*- coding: utf-8 -*-
########################
# audio_decoder.py
########################
# Purpose:
# - Boundary to the audio decoding collaborator.
# - Turns an audio source (path, URL or encoded bytes) into mono PCM at a known sample rate.
#
# Design notes:
# - The analysis pipeline only depends on DecodedAudio. Any decoder that satisfies
#   AudioDecoder can be plugged into BeatmapBuilder.
# - WavAudioDecoder is the default. It handles WAV only; other containers need an external decoder.
# - Every failure is reported as DecodeFailure so callers handle one error type.
#
########################
# Interfaces:
# Public exceptions:
# - class DecodeFailure(Exception)
#
# Public dataclasses:
# - DecodedAudio(samples: numpy.ndarray, sample_rate: int)
#   - duration_seconds() -> float
#
# Public protocols:
# - AudioDecoder.decode(source: AudioSource) -> DecodedAudio
#
# Public classes:
# - class WavAudioDecoder
#   - __init__(*, target_sample_rate: Optional[int] = None, timeout_seconds: float = 15.0)
#   - decode(source: AudioSource) -> DecodedAudio
#
# Public functions:
# - to_mono_float(data: numpy.ndarray) -> numpy.ndarray
# - resample(samples: numpy.ndarray, *, source_rate: int, target_rate: int) -> numpy.ndarray
#
########################

from __future__ import annotations

import io
import logging
import math
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

import numpy as np
from scipy.io import wavfile
from scipy.signal import resample_poly


logger = logging.getLogger(__name__)

AudioSource = Union[str, Path, bytes, bytearray, memoryview]

_URL_PREFIXES = ("http://", "https://", "file://")


class DecodeFailure(Exception):
    """Raised when an audio source cannot be fetched or decoded into PCM samples."""


@dataclass(frozen=True)
class DecodedAudio:
    samples: np.ndarray
    sample_rate: int

    def duration_seconds(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return float(len(self.samples)) / float(self.sample_rate)


@runtime_checkable
class AudioDecoder(Protocol):
    def decode(self, source: AudioSource) -> DecodedAudio:
        ...


def to_mono_float(data: np.ndarray) -> np.ndarray:
    """Scale PCM to [-1, 1] floats and average channels down to one."""
    array = np.asarray(data)
    if array.dtype == np.uint8:
        array = (array.astype(np.float64) - 128.0) / 128.0
    elif array.dtype == np.int16:
        array = array.astype(np.float64) / 32768.0
    elif array.dtype == np.int32:
        array = array.astype(np.float64) / 2147483648.0
    else:
        array = array.astype(np.float64)

    if array.ndim > 1:
        array = array.mean(axis=1)
    return np.ascontiguousarray(array, dtype=np.float64)


def resample(samples: np.ndarray, *, source_rate: int, target_rate: int) -> np.ndarray:
    if int(source_rate) == int(target_rate):
        return samples
    divisor = math.gcd(int(source_rate), int(target_rate))
    up = int(target_rate) // divisor
    down = int(source_rate) // divisor
    return np.asarray(resample_poly(samples, up, down), dtype=np.float64)


class WavAudioDecoder:
    def __init__(self, *, target_sample_rate: Optional[int] = None, timeout_seconds: float = 15.0) -> None:
        if target_sample_rate is not None and int(target_sample_rate) <= 0:
            raise ValueError("target_sample_rate must be positive")
        self._target_sample_rate = int(target_sample_rate) if target_sample_rate is not None else None
        self._timeout_seconds = float(timeout_seconds)

    def decode(self, source: AudioSource) -> DecodedAudio:
        payload = self._read_source(source)
        try:
            sample_rate, data = wavfile.read(io.BytesIO(payload))
        except (ValueError, EOFError, OSError) as exc:
            raise DecodeFailure(f"Audio is not a readable WAV stream: {exc}") from exc

        samples = to_mono_float(data)
        if samples.size == 0:
            raise DecodeFailure("Audio stream contains no samples")
        if not np.all(np.isfinite(samples)):
            raise DecodeFailure("Audio stream contains non-finite samples")

        rate = int(sample_rate)
        if self._target_sample_rate is not None and rate != self._target_sample_rate:
            samples = resample(samples, source_rate=rate, target_rate=self._target_sample_rate)
            rate = self._target_sample_rate

        logger.debug("Decoded %d samples at %d Hz", samples.size, rate)
        return DecodedAudio(samples=samples, sample_rate=rate)

    def _read_source(self, source: AudioSource) -> bytes:
        if isinstance(source, (bytes, bytearray, memoryview)):
            payload = bytes(source)
            if not payload:
                raise DecodeFailure("Audio buffer is empty")
            return payload

        if isinstance(source, str) and source.strip().lower().startswith(_URL_PREFIXES):
            return self._fetch_url(source.strip())

        path = Path(source)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise DecodeFailure(f"Failed to read audio file {path}: {exc}") from exc

    def _fetch_url(self, url: str) -> bytes:
        try:
            with urllib.request.urlopen(url, timeout=self._timeout_seconds) as response:
                return response.read()
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise DecodeFailure(f"Failed to fetch audio from {url}: {exc}") from exc


def _run_unit_tests() -> None:
    import tempfile

    rate = 16000
    tone = (0.5 * np.sin(2.0 * np.pi * 440.0 * np.arange(rate) / rate) * 32767).astype(np.int16)
    stereo = np.stack([tone, tone], axis=1)
    buffer = io.BytesIO()
    wavfile.write(buffer, rate, stereo)

    decoded = WavAudioDecoder().decode(buffer.getvalue())
    assert decoded.sample_rate == rate
    assert decoded.samples.ndim == 1
    assert abs(decoded.duration_seconds() - 1.0) < 1e-9
    assert float(np.max(np.abs(decoded.samples))) <= 1.0

    downsampled = WavAudioDecoder(target_sample_rate=8000).decode(buffer.getvalue())
    assert downsampled.sample_rate == 8000
    assert len(downsampled.samples) == 8000

    with tempfile.TemporaryDirectory() as temp_dir:
        wav_path = Path(temp_dir) / "tone.wav"
        wav_path.write_bytes(buffer.getvalue())
        assert len(WavAudioDecoder().decode(wav_path).samples) == rate
        assert len(WavAudioDecoder().decode(wav_path.as_uri()).samples) == rate

    for bad_source in (b"", b"not a wav file", Path("/nonexistent/track.wav")):
        try:
            WavAudioDecoder().decode(bad_source)
        except DecodeFailure:
            pass
        else:
            raise AssertionError(f"Expected DecodeFailure for {bad_source!r}")


if __name__ == "__main__":
    _run_unit_tests()
    print("audio_decoder.py: ok")
