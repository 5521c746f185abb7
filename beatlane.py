"""
beatlane.py

Command line entrypoint for offline beatmap generation and headless play-through.

Commands
- analyze <audio>   Decode, detect onsets and print the beatmap as JSON.
- simulate <audio>  Build the beatmap, run a headless session at the configured tick rate,
                    press every note at its beat time and print the final score as JSON.
- config            Print the resolved configuration.

Output is a single JSON object. Failures print {"ok": false, "error": ...} and exit with code 2.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import beatmap_builder
import config as config_module
from audio_decoder import DecodeFailure
from beatmap_builder import EmptyBeatmap
from game_state import SessionState
from gameplay_models import Beatmap
from session import Session


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _beatmap_payload(beatmap: Beatmap) -> Dict[str, Any]:
    return {
        "lane_count": beatmap.lane_count,
        "duration_seconds": beatmap.duration_seconds,
        "sample_rate": beatmap.sample_rate,
        "frame_size": beatmap.frame_size,
        "events": [{"time": event.time_seconds, "lane": event.lane} for event in beatmap],
    }


def _load_app_config(config_path: Optional[str]) -> config_module.AppConfig:
    if config_path:
        app_config, _resolved = config_module.load_config(Path(config_path))
    else:
        app_config, _resolved = config_module.get_config()
    return app_config


def run_analyze(app_config: config_module.AppConfig, audio_path: str, *, seed: Optional[int]) -> Dict[str, Any]:
    lane_source = beatmap_builder.RandomLaneSource(seed) if seed is not None else None
    builder = beatmap_builder.BeatmapBuilder.from_config(app_config, lane_source=lane_source)
    beatmap = builder.build_from_source(audio_path)
    return {"ok": True, "beatmap": _beatmap_payload(beatmap)}


def run_simulate(
    app_config: config_module.AppConfig,
    audio_path: str,
    *,
    seed: Optional[int],
    max_seconds: float,
) -> Dict[str, Any]:
    lane_source = beatmap_builder.RandomLaneSource(seed) if seed is not None else None
    session = Session(app_config=app_config, lane_source=lane_source)
    beatmap = session.load_session(audio_path)

    tick_seconds = 1.0 / float(app_config.highway.ticks_per_second)
    half_tick = tick_seconds * 0.5
    final_scores: List[Any] = []
    session.on_session_ended(lambda score: final_scores.append(dataclasses.replace(score)))

    elapsed = 0.0
    limit = float(max_seconds) if max_seconds > 0.0 else beatmap.duration_seconds + 60.0
    while session.state() in (SessionState.LOADING, SessionState.PLAYING) and elapsed < limit:
        session.tick(tick_seconds)
        elapsed += tick_seconds
        for view in session.live_notes():
            if abs(view.offset_seconds) <= half_tick:
                session.handle_input(view.lane)

    if session.state() is SessionState.PLAYING:
        session.notify_playback_ended()

    score = final_scores[-1] if final_scores else session.score_state()
    return {
        "ok": True,
        "beat_count": len(beatmap),
        "score": dataclasses.asdict(score),
    }


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="beatlane", description="Onset beatmaps and headless rhythm sessions.")
    parser.add_argument("--config", default="", help="Path to a beatlane_config.json file.")
    parser.add_argument("--verbose", action="store_true", help="Log pipeline and session progress to stderr.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Print the beatmap for an audio file.")
    analyze_parser.add_argument("audio", help="Path or URL of a WAV file.")
    analyze_parser.add_argument("--seed", type=int, default=None, help="Lane assignment seed.")

    simulate_parser = subparsers.add_parser("simulate", help="Play the beatmap headlessly with perfect input.")
    simulate_parser.add_argument("audio", help="Path or URL of a WAV file.")
    simulate_parser.add_argument("--seed", type=int, default=None, help="Lane assignment seed.")
    simulate_parser.add_argument("--max-seconds", type=float, default=0.0, help="Stop after this much simulated time.")

    subparsers.add_parser("config", help="Print the resolved configuration.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parsed_args = _build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if parsed_args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        app_config = _load_app_config(parsed_args.config or None)
        if parsed_args.command == "analyze":
            payload = run_analyze(app_config, parsed_args.audio, seed=parsed_args.seed)
        elif parsed_args.command == "simulate":
            payload = run_simulate(
                app_config,
                parsed_args.audio,
                seed=parsed_args.seed,
                max_seconds=float(parsed_args.max_seconds),
            )
        else:
            payload = {"ok": True, "config": json.loads(config_module.to_json(app_config))}
    except (DecodeFailure, EmptyBeatmap, ValueError, OSError) as exception:
        _print_json({"ok": False, "error": str(exception)})
        return 2

    _print_json(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
