import io

import numpy as np
import pytest
from scipy.io import wavfile

import audio_decoder
import beatmap_builder
import onset_detector
import spectral_analyzer
from audio_decoder import DecodeFailure, WavAudioDecoder
from beatmap_builder import BeatmapBuilder, EmptyBeatmap, RandomLaneSource, SequenceLaneSource
from onset_detector import OnsetDetector
from spectral_analyzer import SpectralAnalyzer


SAMPLE_RATE = 8000
FRAME_SIZE = 256


def _click_track(frame_indices, *, frame_count=12, frame_size=FRAME_SIZE, amplitude=1.0):
    samples = np.zeros(frame_size * frame_count)
    for frame_index in frame_indices:
        samples[frame_index * frame_size] = amplitude
    return samples


def _wav_bytes(samples, sample_rate=SAMPLE_RATE):
    buffer = io.BytesIO()
    wavfile.write(buffer, sample_rate, (np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16))
    return buffer.getvalue()


def _builder(**overrides):
    options = dict(
        sample_rate=SAMPLE_RATE,
        frame_size=FRAME_SIZE,
        flux_threshold=10.0,
        lane_count=4,
        lane_source=SequenceLaneSource([0, 1, 2, 3]),
    )
    options.update(overrides)
    return BeatmapBuilder(**options)


def test_module_smoke_tests():
    audio_decoder._run_unit_tests()
    spectral_analyzer._run_unit_tests()
    onset_detector._run_unit_tests()
    beatmap_builder._run_unit_tests()


def test_silence_has_no_peaks():
    analyzer = SpectralAnalyzer(sample_rate=SAMPLE_RATE, frame_size=FRAME_SIZE)
    detector = OnsetDetector(threshold=1.0)

    result = detector.detect(analyzer.iter_spectra(np.zeros(FRAME_SIZE * 20)))

    assert len(result.flux) == 19
    assert result.peaks == []


def test_silence_is_an_empty_beatmap():
    with pytest.raises(EmptyBeatmap):
        _builder().build_from_samples(np.zeros(FRAME_SIZE * 20), SAMPLE_RATE)


def test_trailing_partial_frame_is_dropped():
    analyzer = SpectralAnalyzer(sample_rate=SAMPLE_RATE, frame_size=FRAME_SIZE)
    samples = np.zeros(FRAME_SIZE * 4 + FRAME_SIZE - 1)
    samples[-1] = 1.0

    spectra = list(analyzer.iter_spectra(samples))

    assert len(spectra) == 4
    assert all(float(spectrum.max()) == 0.0 for spectrum in spectra)


def test_flux_is_half_wave_rectified():
    detector = OnsetDetector(threshold=1.0)
    spectra = [np.array([0.0, 4.0]), np.array([3.0, 1.0])]

    assert list(detector.flux(spectra)) == [3.0]


def test_single_impulse_peaks_at_transition_into_its_frame():
    k = 5
    analyzer = SpectralAnalyzer(sample_rate=SAMPLE_RATE, frame_size=FRAME_SIZE)
    detector = OnsetDetector(threshold=10.0)

    result = detector.detect(analyzer.iter_spectra(_click_track([k])))

    assert int(np.argmax(result.flux)) == k - 1
    assert result.flux[k - 1] == pytest.approx(FRAME_SIZE // 2 + 1)
    assert result.peaks == [k - 1]


def test_impulse_below_threshold_is_ignored():
    analyzer = SpectralAnalyzer(sample_rate=SAMPLE_RATE, frame_size=FRAME_SIZE)
    detector = OnsetDetector(threshold=1000.0)

    result = detector.detect(analyzer.iter_spectra(_click_track([5])))

    assert result.peaks == []


def test_peak_index_converts_through_analysis_frame_rate():
    beatmap = _builder().build_from_samples(_click_track([3, 8]), SAMPLE_RATE)

    frames_per_second = SAMPLE_RATE / FRAME_SIZE
    assert [event.time_seconds for event in beatmap] == pytest.approx([2 / frames_per_second, 7 / frames_per_second])
    assert [event.lane for event in beatmap] == [0, 1]
    assert beatmap.frame_size == FRAME_SIZE
    assert beatmap.sample_rate == SAMPLE_RATE


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_beatmap_times_are_non_decreasing(seed):
    rng = np.random.default_rng(seed)
    samples = rng.standard_normal(FRAME_SIZE * 64) * rng.uniform(0.0, 1.0, size=FRAME_SIZE * 64)
    builder = _builder(flux_threshold=1.0, lane_source=RandomLaneSource(seed))

    try:
        beatmap = builder.build_from_samples(samples, SAMPLE_RATE)
    except EmptyBeatmap:
        return

    times = [event.time_seconds for event in beatmap]
    assert times == sorted(times)
    assert all(0 <= event.lane < 4 for event in beatmap)


def test_seeded_lanes_are_reproducible():
    samples = _click_track([2, 4, 6, 8, 10])

    first = _builder(lane_source=RandomLaneSource(42)).build_from_samples(samples, SAMPLE_RATE)
    second = _builder(lane_source=RandomLaneSource(42)).build_from_samples(samples, SAMPLE_RATE)

    assert [event.lane for event in first] == [event.lane for event in second]


def test_build_from_wav_bytes():
    builder = _builder(decoder=WavAudioDecoder(target_sample_rate=SAMPLE_RATE))

    beatmap = builder.build_from_source(_wav_bytes(_click_track([4])))

    assert len(beatmap) == 1
    assert beatmap.duration_seconds == pytest.approx(FRAME_SIZE * 12 / SAMPLE_RATE)


def test_undecodable_source_raises_decode_failure():
    with pytest.raises(DecodeFailure):
        _builder().build_from_source(b"definitely not audio")


def test_sample_rate_mismatch_is_rejected():
    with pytest.raises(ValueError):
        _builder().build_from_samples(np.zeros(FRAME_SIZE * 4), 44100)


@pytest.mark.parametrize("frame_size", [0, -256, 100])
def test_bad_frame_size_is_rejected(frame_size):
    with pytest.raises(ValueError):
        SpectralAnalyzer(sample_rate=SAMPLE_RATE, frame_size=frame_size)


@pytest.mark.parametrize("threshold", [0.0, -5.0])
def test_bad_threshold_is_rejected(threshold):
    with pytest.raises(ValueError):
        OnsetDetector(threshold=threshold)


def test_bad_lane_count_is_rejected():
    with pytest.raises(ValueError):
        _builder(lane_count=0)
