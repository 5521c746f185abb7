"""
config.py

Typed configuration loading and validation for Beatlane.

Design goals
- Load at most one UTF-8 JSON config file
- Validate with pydantic (defaults included)
- Support environment variable overrides
- No other I/O beyond reading the config file (no directory creation)

Config file location
- If BEATLANE_CONFIG_PATH is set, that file is used.
- Otherwise Beatlane searches these paths in order and uses the first one that exists:
  1) ./beatlane_config.json (current working directory)
  2) <user config dir>/Beatlane/Beatlane/beatlane_config.json
- When no file exists the defaults are used.

Example config file (beatlane_config.json)
{
  "analysis": {
    "sample_rate": 8000,
    "frame_size": 2048,
    "flux_threshold": 500.0
  },
  "beatmap": {
    "lane_count": 4,
    "deterministic_lanes": true
  },
  "judge": {
    "perfect_seconds": 0.035,
    "good_seconds": 0.07,
    "okay_seconds": 0.105
  }
}
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from platformdirs import user_config_dir
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class AnalysisConfig(BaseModel):
    sample_rate: int = Field(default=8000, gt=0, description="Analysis sample rate in Hz. Decoded audio is resampled to it.")
    frame_size: int = Field(default=2048, description="FFT frame size in samples. Must be a power of two.")
    flux_threshold: float = Field(default=500.0, gt=0.0, description="Spectral flux a peak must exceed.")
    window: str = Field(default="boxcar", description="scipy.signal window name applied to each frame.")

    @field_validator("frame_size")
    @classmethod
    def validate_frame_size(cls, value: int) -> int:
        if value <= 0 or (value & (value - 1)) != 0:
            raise ValueError("frame_size must be a positive power of two")
        return value

    @field_validator("window")
    @classmethod
    def normalize_window(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if not normalized:
            raise ValueError("window must be a non-empty scipy window name")
        return normalized


class BeatmapConfig(BaseModel):
    lane_count: int = Field(default=4, ge=1, description="Number of parallel input lanes.")
    lane_seed: Optional[int] = Field(default=None, description="Fixed seed for lane assignment.")
    deterministic_lanes: bool = Field(default=False, description="Derive the lane seed from the audio content.")


class HighwayConfig(BaseModel):
    """Note highway geometry. Only used to derive timing constants."""

    spawn_z: float = Field(default=-25.0, description="Depth where notes appear.")
    hit_zone_z: float = Field(default=-5.0, description="Depth of the hit-zone center.")
    hit_zone_half_depth: float = Field(default=1.0, gt=0.0)
    note_half_depth: float = Field(default=0.25, ge=0.0)
    despawn_z: float = Field(default=-3.0, description="Depth past which an unjudged note is dropped.")
    note_speed_per_tick: float = Field(default=0.2, gt=0.0, description="Distance a note moves per tick.")
    ticks_per_second: float = Field(default=60.0, gt=0.0, description="Nominal host frame rate.")

    @model_validator(mode="after")
    def validate_layout(self) -> "HighwayConfig":
        if not self.spawn_z < self.hit_zone_z < self.despawn_z:
            raise ValueError("highway must satisfy spawn_z < hit_zone_z < despawn_z")
        return self

    @property
    def units_per_second(self) -> float:
        return float(self.note_speed_per_tick) * float(self.ticks_per_second)

    @property
    def travel_time_seconds(self) -> float:
        return (float(self.hit_zone_z) - float(self.spawn_z)) / self.units_per_second

    @property
    def hit_zone_half_width_seconds(self) -> float:
        return (float(self.hit_zone_half_depth) + float(self.note_half_depth)) / self.units_per_second

    @property
    def expire_after_seconds(self) -> float:
        return (float(self.despawn_z) - float(self.hit_zone_z)) / self.units_per_second


class JudgeConfig(BaseModel):
    perfect_seconds: float = Field(default=0.035, gt=0.0)
    good_seconds: float = Field(default=0.07, gt=0.0)
    okay_seconds: float = Field(default=0.105, gt=0.0, description="Covers the whole hit zone (1.25 / 12 s) so an in-zone press always scores.")
    perfect_points: int = Field(default=300, ge=0)
    good_points: int = Field(default=100, ge=0)
    okay_points: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def validate_ordering(self) -> "JudgeConfig":
        if not self.perfect_seconds <= self.good_seconds <= self.okay_seconds:
            raise ValueError("judge windows must satisfy perfect_seconds <= good_seconds <= okay_seconds")
        return self


class SessionConfig(BaseModel):
    end_on_audio_duration: bool = Field(default=True, description="End the session once the clock passes the track length.")
    recent_event_limit: int = Field(default=256, ge=1, description="Gameplay events kept for recent_events(); older ones are dropped.")


class AppConfig(BaseModel):
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    beatmap: BeatmapConfig = Field(default_factory=BeatmapConfig)
    highway: HighwayConfig = Field(default_factory=HighwayConfig)
    judge: JudgeConfig = Field(default_factory=JudgeConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)


def _default_config_candidates() -> List[Path]:
    config_directory = Path(user_config_dir("Beatlane", "Beatlane"))
    return [
        Path.cwd() / "beatlane_config.json",
        config_directory / "beatlane_config.json",
    ]


def _resolve_config_path() -> Optional[Path]:
    explicit_path_text = os.environ.get("BEATLANE_CONFIG_PATH", "").strip()
    if explicit_path_text:
        return Path(explicit_path_text)

    for candidate_path in _default_config_candidates():
        if candidate_path.exists():
            return candidate_path
    return None


def _read_json_file_utf8(config_path: Path) -> Dict[str, Any]:
    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except OSError as exception:
        raise OSError(f"Failed to read config file: {config_path}. Error: {exception}") from exception

    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError as exception:
        raise ValueError(f"Config file is not valid JSON: {config_path}. Error: {exception}") from exception

    if not isinstance(parsed, dict):
        raise ValueError(f"Config file root must be a JSON object: {config_path}")

    return parsed


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Environment overrides are optional. The config file is the primary source of truth.

    Override variables:
    - BEATLANE_SAMPLE_RATE
    - BEATLANE_FRAME_SIZE
    - BEATLANE_FLUX_THRESHOLD
    - BEATLANE_LANE_COUNT
    - BEATLANE_LANE_SEED
    - BEATLANE_DETERMINISTIC_LANES

    Unparseable numbers are passed through as text so validation reports them.
    """
    def ensure_nested(config_root: Dict[str, Any], section_name: str) -> Dict[str, Any]:
        section = config_root.get(section_name)
        if isinstance(section, dict):
            return section
        section = {}
        config_root[section_name] = section
        return section

    updated_config = dict(config_dict)

    analysis_section = ensure_nested(updated_config, "analysis")
    beatmap_section = ensure_nested(updated_config, "beatmap")

    def override_number(env_name: str, target_dict: Dict[str, Any], key_name: str) -> None:
        value_text = os.environ.get(env_name, "").strip()
        if value_text:
            target_dict[key_name] = value_text

    def override_bool(env_name: str, target_dict: Dict[str, Any], key_name: str) -> None:
        value_text = os.environ.get(env_name, "").strip().lower()
        if not value_text:
            return
        truthy = {"1", "true", "yes", "on"}
        falsy = {"0", "false", "no", "off"}
        if value_text in truthy:
            target_dict[key_name] = True
        elif value_text in falsy:
            target_dict[key_name] = False

    override_number("BEATLANE_SAMPLE_RATE", analysis_section, "sample_rate")
    override_number("BEATLANE_FRAME_SIZE", analysis_section, "frame_size")
    override_number("BEATLANE_FLUX_THRESHOLD", analysis_section, "flux_threshold")

    override_number("BEATLANE_LANE_COUNT", beatmap_section, "lane_count")
    override_number("BEATLANE_LANE_SEED", beatmap_section, "lane_seed")
    override_bool("BEATLANE_DETERMINISTIC_LANES", beatmap_section, "deterministic_lanes")

    return updated_config


def validate_config(config_dict: Dict[str, Any], *, source: str = "<dict>") -> AppConfig:
    try:
        return AppConfig.model_validate(config_dict)
    except ValidationError as exception:
        raise ValueError(f"Config validation failed for {source}:\n{exception}") from exception


def load_config(config_path: Optional[Path] = None) -> Tuple[AppConfig, Optional[Path]]:
    resolved_path = config_path if config_path is not None else _resolve_config_path()
    json_dict: Dict[str, Any] = {}
    if resolved_path is not None:
        json_dict = _read_json_file_utf8(resolved_path)
    json_dict = _apply_environment_overrides(json_dict)

    config = validate_config(json_dict, source=str(resolved_path) if resolved_path is not None else "<defaults>")
    return config, resolved_path


@lru_cache(maxsize=1)
def get_config() -> Tuple[AppConfig, Optional[Path]]:
    return load_config()


def to_json(config: AppConfig) -> str:
    config_dict = config.model_dump()
    highway_section = config_dict.get("highway")
    if isinstance(highway_section, dict):
        highway_section["derived"] = {
            "travel_time_seconds": config.highway.travel_time_seconds,
            "hit_zone_half_width_seconds": config.highway.hit_zone_half_width_seconds,
            "expire_after_seconds": config.highway.expire_after_seconds,
        }
    return json.dumps(config_dict, ensure_ascii=False, indent=2)


def main() -> int:
    try:
        config, resolved_path = load_config()
    except Exception as exception:
        error_payload = {"ok": False, "error": str(exception)}
        print(json.dumps(error_payload, ensure_ascii=False, indent=2))
        return 2

    output_payload = {
        "ok": True,
        "config_path": str(resolved_path) if resolved_path is not None else None,
        "config": json.loads(to_json(config)),
    }
    print(json.dumps(output_payload, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
