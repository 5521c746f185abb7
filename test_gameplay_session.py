import io
import threading
import time

import numpy as np
import pytest
from scipy.io import wavfile

import game_state
import judge
import note_scheduler
import session_clock
from audio_decoder import DecodedAudio, DecodeFailure
from beatmap_builder import EmptyBeatmap, SequenceLaneSource
from config import AppConfig, SessionConfig
from game_state import SessionState
from gameplay_models import BeatEvent, Beatmap, HitTier, NoteHit, NoteMissed, NoteSpawned
from judge import HitJudge, HitWindows
from note_scheduler import NoteScheduler
from session import Session


def _beatmap(*pairs, duration_seconds=0.0):
    return Beatmap(
        events=tuple(BeatEvent(time_seconds=t, lane=lane) for t, lane in pairs),
        lane_count=4,
        duration_seconds=duration_seconds,
    )


def _click_wav(frame_indices, *, frame_size=2048, frame_count=10, sample_rate=8000):
    samples = np.zeros(frame_size * frame_count, dtype=np.int16)
    for frame_index in frame_indices:
        samples[frame_index * frame_size] = 32767
    buffer = io.BytesIO()
    wavfile.write(buffer, sample_rate, samples)
    return buffer.getvalue()


def _start_playing(session, beatmap):
    session.load_beatmap(beatmap)
    assert session.state() is SessionState.LOADING
    while session.state() is SessionState.LOADING:
        session.tick(0.1)
    assert session.state() is SessionState.PLAYING
    assert session.clock().time_seconds() == 0.0


def _tick_to(session, target_seconds):
    return session.tick(target_seconds - session.clock().time_seconds())


class _GatedDecoder:
    def __init__(self, samples, sample_rate):
        self.gate = threading.Event()
        self._decoded = DecodedAudio(samples=samples, sample_rate=sample_rate)

    def decode(self, source):
        self.gate.wait(timeout=5.0)
        return self._decoded


def test_module_smoke_tests():
    session_clock._run_unit_tests()
    note_scheduler._run_unit_tests()
    judge._run_unit_tests()
    game_state._run_unit_tests()


def test_beatmap_rejects_unordered_or_invalid_events():
    with pytest.raises(ValueError):
        _beatmap((2.0, 0), (1.0, 1))
    with pytest.raises(ValueError):
        _beatmap((1.0, 4))
    with pytest.raises(ValueError):
        _beatmap((-0.5, 0))
    assert len(_beatmap((1.0, 0), (1.0, 1))) == 2


@pytest.mark.parametrize("bad_time", [float("nan"), float("inf")])
def test_beatmap_rejects_non_finite_times(bad_time):
    with pytest.raises(ValueError):
        _beatmap((1.0, 0), (bad_time, 1))
    with pytest.raises(ValueError):
        _beatmap((bad_time, 0))


def test_note_arrives_at_hit_zone_center_on_its_beat():
    beatmap = _beatmap((2.0, 0), (3.0, 3), (3.0, 1), (4.5, 2))
    scheduler = NoteScheduler(beatmap, travel_time_seconds=1.5, expire_after_seconds=0.2)

    for beat_index, event in enumerate(beatmap):
        scheduler.update(event.time_seconds)
        matches = [note for note in scheduler.live_notes() if note.beat_index == beat_index]
        assert len(matches) == 1
        note = matches[0]
        assert note.lane == event.lane
        assert note.current_offset_seconds == pytest.approx(0.0, abs=1e-12)
        assert note.spawn_time_seconds == pytest.approx(event.time_seconds - 1.5)


def test_scheduler_spawns_each_event_once():
    beatmap = _beatmap((1.0, 0), (1.0, 1), (2.0, 2))
    scheduler = NoteScheduler(beatmap, travel_time_seconds=1.0, expire_after_seconds=5.0)

    spawned = []
    for now in (0.0, 0.0, 0.5, 1.0, 1.0, 3.0):
        spawned.extend(event.beat_index for event in scheduler.update(now) if isinstance(event, NoteSpawned))

    assert spawned == [0, 1, 2]
    assert scheduler.cursor() == 3


@pytest.mark.parametrize(
    "error, expected",
    [(0.2, HitTier.PERFECT), (0.6, HitTier.GOOD), (0.95, HitTier.OKAY), (1.2, None)],
)
def test_hit_window_tiers(error, expected):
    windows = HitWindows(perfect_seconds=0.4, good_seconds=0.9, okay_seconds=1.0)
    assert windows.classify_error(error) is expected
    assert windows.classify_error(-error) is expected


def test_note_in_zone_beyond_every_tier_is_a_miss():
    scheduler = NoteScheduler(_beatmap((5.0, 1)), travel_time_seconds=3.0, expire_after_seconds=2.0)
    windows = HitWindows(perfect_seconds=0.4, good_seconds=0.9, okay_seconds=1.0)
    hit_judge = HitJudge(scheduler, windows, hit_zone_half_width_seconds=2.0)

    scheduler.update(3.8)
    result = hit_judge.judge(1, 3.8)

    assert isinstance(result, NoteMissed)
    assert hit_judge.score_state().miss_count == 1
    assert len(scheduler.live_notes()) == 1

    scheduler.update(4.8)
    result = hit_judge.judge(1, 4.8)
    assert isinstance(result, NoteHit)
    assert result.tier is HitTier.PERFECT


def test_default_okay_window_covers_hit_zone_edge():
    session = Session()
    _start_playing(session, _beatmap((1.0, 0)))
    zone_half_width = AppConfig().highway.hit_zone_half_width_seconds

    _tick_to(session, 1.0 + zone_half_width - 1e-4)
    result = session.handle_input(0)

    assert isinstance(result, NoteHit)
    assert result.tier is HitTier.OKAY


def test_invalid_hit_windows_are_rejected():
    with pytest.raises(ValueError):
        HitWindows(perfect_seconds=0.5, good_seconds=0.4, okay_seconds=1.0)
    with pytest.raises(ValueError):
        HitWindows(perfect_seconds=0.0, good_seconds=0.4, okay_seconds=1.0)


def test_full_play_through_scores_every_note_perfect():
    session = Session()
    beatmap = _beatmap((0.5, 0), (1.0, 2), (1.5, 3))
    _start_playing(session, beatmap)

    for event in beatmap:
        _tick_to(session, event.time_seconds)
        result = session.handle_input(event.lane)
        assert isinstance(result, NoteHit)
        assert result.error_seconds == pytest.approx(0.0, abs=1e-9)

    score = session.score_state()
    assert score.total_score == 3 * AppConfig().judge.perfect_points
    assert score.perfect_count == 3
    assert score.miss_count == 0
    assert score.note_count == 3
    assert session.live_notes() == []


def test_input_on_empty_lane_is_a_miss_not_an_error():
    session = Session()
    _start_playing(session, _beatmap((2.0, 0)))

    result = session.handle_input(3)

    assert isinstance(result, NoteMissed)
    assert result.beat_index is None
    assert session.score_state().miss_count == 1
    assert session.score_state().total_score == 0


def test_note_is_not_judged_twice():
    session = Session()
    _start_playing(session, _beatmap((1.0, 2)))
    _tick_to(session, 1.0)

    first = session.handle_input(2)
    second = session.handle_input(2)

    assert isinstance(first, NoteHit)
    assert isinstance(second, NoteMissed)
    assert session.score_state().perfect_count == 1


def test_expired_note_is_dropped_without_score_change():
    session = Session()
    _start_playing(session, _beatmap((1.0, 1)))
    _tick_to(session, 1.0)
    assert len(session.live_notes()) == 1

    events = _tick_to(session, 1.5)

    assert [(type(event), event.expired) for event in events if isinstance(event, NoteMissed)] == [(NoteMissed, True)]
    assert session.live_notes() == []
    assert session.handle_input(1).beat_index is None
    assert session.score_state().miss_count == 1
    assert session.score_state().hit_count() == 0


def test_pause_then_resume_does_not_advance_state():
    session = Session()
    _start_playing(session, _beatmap((1.0, 0), (2.0, 1), (2.5, 2)))
    _tick_to(session, 1.2)
    before = session.snapshot()
    notes_before = session.live_notes()

    assert session.pause()
    for _ in range(10):
        session.tick(1.0)
    assert session.resume()
    session.tick(4.0)

    after = session.snapshot()
    assert after.clock_seconds == before.clock_seconds
    assert after.score == before.score
    assert session.live_notes() == notes_before

    session.tick(0.1)
    assert session.clock().time_seconds() == pytest.approx(1.3)


def test_actions_from_invalid_states_are_no_ops():
    session = Session()
    assert not session.pause()
    assert not session.resume()
    assert not session.return_to_menu()
    assert not session.notify_playback_ended()
    assert session.handle_input(0) is None
    assert session.tick(1.0) == []
    assert session.state() is SessionState.IDLE

    _start_playing(session, _beatmap((1.0, 0)))
    assert not session.resume()
    assert not session.return_to_menu()
    assert session.focus_lost()
    assert session.state() is SessionState.PAUSED
    assert session.handle_input(0) is None
    assert not session.pause()


def test_start_delay_is_first_beat_plus_travel_time():
    session = Session()
    session.load_beatmap(_beatmap((0.5, 0)))
    travel = AppConfig().highway.travel_time_seconds

    assert session.start_delay_remaining_seconds() == pytest.approx(0.5 + travel)
    session.tick(0.5)
    assert session.state() is SessionState.LOADING
    session.tick(travel)
    assert session.state() is SessionState.PLAYING


def test_session_end_and_return_to_menu():
    session = Session()
    ended = []
    session.on_session_ended(ended.append)
    _start_playing(session, _beatmap((0.5, 0), duration_seconds=2.0))
    _tick_to(session, 0.5)
    session.handle_input(0)

    _tick_to(session, 2.0)

    assert session.state() is SessionState.ENDED
    assert len(ended) == 1
    assert ended[0].perfect_count == 1

    assert session.return_to_menu()
    assert session.state() is SessionState.IDLE
    assert session.score_state() == judge.ScoreState()
    assert session.live_notes() == []
    assert session.beatmap() is None


def test_explicit_playback_end_signal():
    session = Session()
    _start_playing(session, _beatmap((3.0, 0)))
    assert session.notify_playback_ended()
    assert session.state() is SessionState.ENDED
    assert session.tick(1.0) == []


def test_load_session_from_wav_bytes():
    session = Session(lane_source=SequenceLaneSource([3]))
    beatmap = session.load_session(_click_wav([3, 6]))

    assert [event.lane for event in beatmap] == [3, 3]
    assert session.state() is SessionState.LOADING
    assert session.beatmap() is beatmap


def test_decode_failure_returns_to_idle():
    session = Session()
    failures = []
    session.on_load_failed(failures.append)

    with pytest.raises(DecodeFailure):
        session.load_session(b"garbage bytes")

    assert session.state() is SessionState.IDLE
    assert session.last_error()
    assert len(failures) == 1


def test_silent_track_is_an_empty_beatmap_load_failure():
    session = Session()

    with pytest.raises(EmptyBeatmap):
        session.load_session(_click_wav([]))

    assert session.state() is SessionState.IDLE
    with pytest.raises(EmptyBeatmap):
        session.load_beatmap(_beatmap())
    assert session.state() is SessionState.IDLE


def test_new_session_invalidates_in_flight_load():
    session = Session()
    first = session.begin_load("first")
    second = session.begin_load("second")

    assert not session.complete_load(first, _beatmap((1.0, 0)))
    assert session.beatmap() is None
    assert session.complete_load(second, _beatmap((2.0, 1)))
    assert session.beatmap()[0].lane == 1


def test_new_session_while_playing_resets_state():
    session = Session()
    _start_playing(session, _beatmap((0.5, 0), (5.0, 1)))
    _tick_to(session, 0.5)
    session.handle_input(0)

    session.load_beatmap(_beatmap((1.0, 2)))

    assert session.state() is SessionState.LOADING
    assert session.clock().time_seconds() == 0.0
    assert session.score_state().total_score == 0
    assert session.score_state().note_count == 1


def test_background_load_completes_on_tick():
    session = Session()
    session.load_session_in_background(_click_wav([4]))

    deadline = time.monotonic() + 10.0
    while session.beatmap() is None and time.monotonic() < deadline:
        session.tick(0.0)
        time.sleep(0.01)

    assert session.beatmap() is not None
    assert len(session.beatmap()) == 1
    assert session.state() is SessionState.LOADING


def test_stale_background_load_is_discarded():
    samples = np.zeros(2048 * 10)
    samples[2048 * 5] = 1.0
    decoder = _GatedDecoder(samples, 8000)
    session = Session(decoder=decoder)

    session.load_session_in_background("slow.wav")
    replacement = _beatmap((2.0, 3))
    session.load_beatmap(replacement)
    decoder.gate.set()

    deadline = time.monotonic() + 2.0
    while time.monotonic() < deadline:
        session.tick(0.0)
        time.sleep(0.01)

    assert session.beatmap() is replacement
    assert session.state() is SessionState.LOADING


def test_discarded_load_does_not_shift_next_session_lanes():
    samples = np.zeros(2048 * 10)
    samples[2048 * 5] = 1.0
    decoder = _GatedDecoder(samples, 8000)
    session = Session(lane_source=SequenceLaneSource([0, 1, 2, 3]), decoder=decoder)

    session.load_session_in_background("stale.wav")
    session.begin_load("replacement")
    decoder.gate.set()
    for worker in threading.enumerate():
        if worker.name.startswith("beatlane-load-"):
            worker.join(timeout=5.0)
    session.tick(0.0)

    fresh = session.load_session("fresh.wav")

    assert [event.lane for event in fresh] == [0]


def test_recent_events_keep_only_the_latest():
    session = Session(app_config=AppConfig(session=SessionConfig(recent_event_limit=8)))
    seen = []
    session.add_event_listener(seen.append)
    _start_playing(session, _beatmap((2.0, 0)))

    for _ in range(1000):
        session.handle_input(3)

    assert len(seen) == 1000
    assert len(session.recent_events()) == 8
    assert session.recent_events() == seen[-8:]
    assert session.score_state().miss_count == 1000


def test_events_reach_listeners_in_order():
    session = Session()
    seen = []
    session.add_event_listener(seen.append)
    _start_playing(session, _beatmap((0.5, 0)))

    _tick_to(session, 0.5)
    session.handle_input(0)

    assert [type(event) for event in seen] == [NoteSpawned, NoteHit]
    assert session.recent_events() == seen
    session.clear_recent_events()
    assert session.recent_events() == []


def test_state_listener_sees_transitions():
    session = Session()
    transitions = []
    session.add_state_listener(lambda old, new: transitions.append((old, new)))

    _start_playing(session, _beatmap((0.5, 0)))
    session.pause()

    assert transitions == [
        (SessionState.IDLE, SessionState.LOADING),
        (SessionState.LOADING, SessionState.PLAYING),
        (SessionState.PLAYING, SessionState.PAUSED),
    ]
