# -*- coding: utf-8 -*-
########################
# session.py
########################
# Purpose:
# - The Session aggregate: owns the state machine, clock, beatmap, live notes and score for one player.
# - This is the whole control surface the presentation layer may call.
#
# Design notes:
# - Single writer. tick() and handle_input() run on the host's thread, never concurrently.
#   Within one tick, spawning and expiry finish before any input is judged against that tick.
# - Loading is the only suspending step. A load gets a generation ticket; starting another session
#   invalidates it, and a stale completion is discarded.
# - Background loads run decode + analysis on a worker thread and post the result to a queue.
#   The queue is drained at the start of tick(), so session state is only mutated on the host thread.
# - Loading -> Playing waits out the start delay (first beat time + travel time), counted in ticks.
# - Actions issued from the wrong state are no-ops.
#
########################
# Interfaces:
# Public dataclasses:
# - LoadTicket(generation: int, source_description: str)
# - SessionSnapshot(state, clock_seconds, score, live_note_count, beat_count, last_error)
#
# Public classes:
# - class Session
#   - __init__(*, app_config=None, lane_source=None, decoder=None, builder_factory=None)
#   - state() -> SessionState
#   - clock() -> SessionClock
#   - beatmap() -> Optional[Beatmap]
#   - score_state() -> ScoreState
#   - live_notes() -> list[NoteView]
#   - last_error() -> str
#   - start_delay_remaining_seconds() -> float
#   - snapshot() -> SessionSnapshot
#   - recent_events() / clear_recent_events()  (last session.recent_event_limit events)
#   - add_event_listener(callback) / add_state_listener(callback)
#   - on_session_ended(callback) / on_load_failed(callback)
#   - begin_load(source_description) -> LoadTicket
#   - complete_load(ticket, beatmap) -> bool
#   - fail_load(ticket, error) -> bool
#   - load_session(audio_source) -> Beatmap
#   - load_beatmap(beatmap) -> Beatmap
#   - load_session_in_background(audio_source) -> LoadTicket
#   - tick(delta_seconds) -> list[GameplayEvent]
#   - handle_input(lane) -> Optional[NoteHit | NoteMissed]
#   - pause() / focus_lost() / resume() / notify_playback_ended() / return_to_menu() -> bool
#
########################

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional, Tuple

import audio_decoder
import beatmap_builder
import config as config_module
import game_state
import judge
import note_scheduler
import session_clock
from gameplay_models import Beatmap, GameplayEvent, NoteView
from game_state import SessionAction, SessionState


logger = logging.getLogger(__name__)

EventListener = Callable[[GameplayEvent], None]
SessionEndedCallback = Callable[[judge.ScoreState], None]
LoadFailedCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class LoadTicket:
    generation: int
    source_description: str


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    clock_seconds: float
    score: judge.ScoreState
    live_note_count: int
    beat_count: int
    last_error: str


def _describe_source(audio_source: Any) -> str:
    if isinstance(audio_source, (bytes, bytearray, memoryview)):
        return f"<{len(audio_source)} bytes>"
    return str(audio_source)


class Session:
    def __init__(
        self,
        *,
        app_config: Optional[config_module.AppConfig] = None,
        lane_source: Optional[beatmap_builder.LaneSource] = None,
        decoder: Optional[audio_decoder.AudioDecoder] = None,
        builder_factory: Optional[Callable[[], beatmap_builder.BeatmapBuilder]] = None,
    ) -> None:
        self._config = app_config if app_config is not None else config_module.AppConfig()

        def default_builder_factory() -> beatmap_builder.BeatmapBuilder:
            return beatmap_builder.BeatmapBuilder.from_config(self._config, lane_source=lane_source, decoder=decoder)

        self._builder_factory = builder_factory if builder_factory is not None else default_builder_factory

        self._hit_windows = judge.HitWindows.from_config(self._config.judge)
        self._travel_time_seconds = float(self._config.highway.travel_time_seconds)
        self._expire_after_seconds = float(self._config.highway.expire_after_seconds)
        self._hit_zone_half_width_seconds = float(self._config.highway.hit_zone_half_width_seconds)

        self._machine = game_state.GameStateMachine()
        self._clock = session_clock.SessionClock()

        self._generation = 0
        self._active_ticket: Optional[LoadTicket] = None
        self._completed_loads: queue.SimpleQueue[Tuple[LoadTicket, Optional[Beatmap], Optional[Exception]]] = queue.SimpleQueue()

        self._beatmap: Optional[Beatmap] = None
        self._scheduler: Optional[note_scheduler.NoteScheduler] = None
        self._judge: Optional[judge.HitJudge] = None
        self._start_delay_seconds = 0.0
        self._loading_elapsed_seconds = 0.0

        self._last_error = ""
        self._recent_events: Deque[GameplayEvent] = deque(maxlen=int(self._config.session.recent_event_limit))
        self._event_listeners: List[EventListener] = []
        self._ended_callbacks: List[SessionEndedCallback] = []
        self._load_failed_callbacks: List[LoadFailedCallback] = []

    # -----------------
    # Queries
    # -----------------

    def state(self) -> SessionState:
        return self._machine.state()

    def clock(self) -> session_clock.SessionClock:
        return self._clock

    def beatmap(self) -> Optional[Beatmap]:
        return self._beatmap

    def score_state(self) -> judge.ScoreState:
        if self._judge is None:
            return judge.ScoreState()
        return self._judge.score_state()

    def live_notes(self) -> List[NoteView]:
        if self._scheduler is None:
            return []
        return self._scheduler.note_views()

    def last_error(self) -> str:
        return self._last_error

    def start_delay_remaining_seconds(self) -> float:
        if self.state() is not SessionState.LOADING or self._beatmap is None:
            return 0.0
        return max(0.0, self._start_delay_seconds - self._loading_elapsed_seconds)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state(),
            clock_seconds=self._clock.time_seconds(),
            score=dataclasses.replace(self.score_state()),
            live_note_count=len(self.live_notes()),
            beat_count=len(self._beatmap) if self._beatmap is not None else 0,
            last_error=self._last_error,
        )

    def recent_events(self) -> List[GameplayEvent]:
        return list(self._recent_events)

    def clear_recent_events(self) -> None:
        self._recent_events.clear()

    # -----------------
    # Callbacks
    # -----------------

    def add_event_listener(self, callback: EventListener) -> None:
        self._event_listeners.append(callback)

    def add_state_listener(self, callback: game_state.StateListener) -> None:
        self._machine.add_listener(callback)

    def on_session_ended(self, callback: SessionEndedCallback) -> None:
        self._ended_callbacks.append(callback)

    def on_load_failed(self, callback: LoadFailedCallback) -> None:
        self._load_failed_callbacks.append(callback)

    # -----------------
    # Loading
    # -----------------

    def begin_load(self, source_description: str) -> LoadTicket:
        if self.state() is not SessionState.IDLE:
            logger.info("Abandoning %s session for a new load", self.state().value)
            self._machine.dispatch(SessionAction.CANCEL)
        self._reset_runtime()

        self._generation += 1
        ticket = LoadTicket(generation=self._generation, source_description=str(source_description))
        self._active_ticket = ticket
        self._last_error = ""
        self._machine.dispatch(SessionAction.START)
        logger.info("Loading session %d from %s", ticket.generation, ticket.source_description)
        return ticket

    def _is_current(self, ticket: LoadTicket) -> bool:
        return (
            self._active_ticket is not None
            and ticket.generation == self._active_ticket.generation
            and self.state() is SessionState.LOADING
            and self._beatmap is None
        )

    def complete_load(self, ticket: LoadTicket, beatmap: Beatmap) -> bool:
        if not self._is_current(ticket):
            logger.info("Discarding stale load result for session %d", ticket.generation)
            return False
        if len(beatmap) == 0:
            return self.fail_load(ticket, beatmap_builder.EmptyBeatmap("Beatmap has no events"))

        self._beatmap = beatmap
        self._scheduler = note_scheduler.NoteScheduler(
            beatmap,
            travel_time_seconds=self._travel_time_seconds,
            expire_after_seconds=self._expire_after_seconds,
        )
        self._judge = judge.HitJudge(
            self._scheduler,
            self._hit_windows,
            hit_zone_half_width_seconds=self._hit_zone_half_width_seconds,
        )
        self._start_delay_seconds = beatmap.start_delay_seconds(self._travel_time_seconds)
        self._loading_elapsed_seconds = 0.0
        logger.info(
            "Session %d ready: %d beats, start delay %.3fs",
            ticket.generation,
            len(beatmap),
            self._start_delay_seconds,
        )
        return True

    def fail_load(self, ticket: LoadTicket, error: Exception) -> bool:
        if not self._is_current(ticket):
            logger.info("Discarding stale load failure for session %d: %s", ticket.generation, error)
            return False
        self._active_ticket = None
        self._machine.dispatch(SessionAction.CANCEL)
        self._reset_runtime()
        self._last_error = str(error)
        logger.warning("Session %d failed to load: %s", ticket.generation, error)
        for callback in list(self._load_failed_callbacks):
            callback(error)
        return True

    def load_session(self, audio_source: audio_decoder.AudioSource) -> Beatmap:
        """Decode and analyze synchronously. Raises DecodeFailure or EmptyBeatmap; state is Idle afterwards."""
        ticket = self.begin_load(_describe_source(audio_source))
        try:
            beatmap = self._builder_factory().build_from_source(audio_source)
        except Exception as exc:
            self.fail_load(ticket, exc)
            raise
        self.complete_load(ticket, beatmap)
        return beatmap

    def load_beatmap(self, beatmap: Beatmap) -> Beatmap:
        ticket = self.begin_load("<beatmap>")
        if len(beatmap) == 0:
            error = beatmap_builder.EmptyBeatmap("Beatmap has no events")
            self.fail_load(ticket, error)
            raise error
        self.complete_load(ticket, beatmap)
        return beatmap

    def load_session_in_background(self, audio_source: audio_decoder.AudioSource) -> LoadTicket:
        ticket = self.begin_load(_describe_source(audio_source))
        builder_factory = self._builder_factory
        results = self._completed_loads

        def run() -> None:
            try:
                beatmap = builder_factory().build_from_source(audio_source)
            except Exception as exc:
                results.put((ticket, None, exc))
                return
            results.put((ticket, beatmap, None))

        worker = threading.Thread(target=run, name=f"beatlane-load-{ticket.generation}", daemon=True)
        worker.start()
        return ticket

    def _drain_completed_loads(self) -> None:
        while True:
            try:
                ticket, beatmap, error = self._completed_loads.get_nowait()
            except queue.Empty:
                return
            if error is not None:
                self.fail_load(ticket, error)
            elif beatmap is not None:
                self.complete_load(ticket, beatmap)

    # -----------------
    # Per-frame and input
    # -----------------

    def tick(self, delta_seconds: float) -> List[GameplayEvent]:
        self._drain_completed_loads()

        current_state = self.state()
        if current_state is SessionState.LOADING:
            if self._beatmap is not None:
                self._loading_elapsed_seconds += max(0.0, float(delta_seconds))
                if self._loading_elapsed_seconds >= self._start_delay_seconds:
                    self._clock.reset()
                    self._machine.dispatch(SessionAction.READY)
            return []

        if current_state is not SessionState.PLAYING or self._scheduler is None:
            return []

        self._clock.advance(delta_seconds)
        now = self._clock.time_seconds()
        events = self._scheduler.update(now)
        self._publish(events)

        if self._config.session.end_on_audio_duration and self._beatmap is not None:
            duration_seconds = float(self._beatmap.duration_seconds)
            if duration_seconds > 0.0 and now >= duration_seconds:
                self.notify_playback_ended()
        return events

    def handle_input(self, lane: int) -> Optional[judge.Judgement]:
        if self.state() is not SessionState.PLAYING or self._judge is None:
            return None
        judgement = self._judge.judge(int(lane), self._clock.time_seconds())
        self._publish([judgement])
        return judgement

    def _publish(self, events: List[GameplayEvent]) -> None:
        for event in events:
            self._recent_events.append(event)
            for callback in list(self._event_listeners):
                callback(event)

    # -----------------
    # Control actions
    # -----------------

    def pause(self) -> bool:
        if not self._machine.dispatch(SessionAction.PAUSE):
            return False
        self._clock.pause()
        return True

    def focus_lost(self) -> bool:
        return self.pause()

    def resume(self) -> bool:
        if not self._machine.dispatch(SessionAction.RESUME):
            return False
        self._clock.resume()
        return True

    def notify_playback_ended(self) -> bool:
        if not self._machine.dispatch(SessionAction.PLAYBACK_ENDED):
            return False
        final_score = self.score_state()
        logger.info(
            "Session ended: score=%d perfect=%d good=%d okay=%d miss=%d",
            final_score.total_score,
            final_score.perfect_count,
            final_score.good_count,
            final_score.okay_count,
            final_score.miss_count,
        )
        for callback in list(self._ended_callbacks):
            callback(final_score)
        return True

    def return_to_menu(self) -> bool:
        if not self._machine.dispatch(SessionAction.RETURN_TO_MENU):
            return False
        self._active_ticket = None
        self._reset_runtime()
        return True

    def _reset_runtime(self) -> None:
        if self._scheduler is not None:
            self._scheduler.reset()
        self._beatmap = None
        self._scheduler = None
        self._judge = None
        self._start_delay_seconds = 0.0
        self._loading_elapsed_seconds = 0.0
        self._clock.reset()
        self._recent_events.clear()
