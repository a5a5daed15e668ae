"""YAML configuration loader with dataclass mapping."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ClassificationConfig:
    min_score: float = 0.25
    unusual_score: float = 0.3
    high_score: float = 0.7
    high_area: float = 0.01
    medium_score: float = 0.5
    medium_area: float = 0.005
    fallback_score: float = 0.3
    fallback_limit: int = 5
    fallback_medium_score: float = 0.8
    fallback_high_score: float = 0.85
    fallback_high_area: float = 0.01
    anomaly_keywords: list[str] = field(default_factory=lambda: [
        "pothole", "hole", "crack", "damage", "bump", "construction",
        "barrier", "cone", "manhole", "cover",
    ])
    surface_keywords: list[str] = field(default_factory=lambda: [
        "surface", "ground", "road", "pavement", "asphalt",
    ])
    common_objects: list[str] = field(default_factory=lambda: [
        "person", "people", "man", "woman", "car", "truck", "bus",
        "motorcycle", "bicycle", "traffic light", "stop sign", "tree",
        "building", "sky", "cloud",
    ])
    fallback_excluded: list[str] = field(default_factory=lambda: [
        "person", "people", "man", "woman", "face",
    ])


@dataclass
class BackendsConfig:
    model_type: str = "huggingface"     # roboflow | huggingface | custom | mock
    model_endpoint: str = ""            # per-request override of the endpoint below
    api_key: str = ""
    roboflow_api_key: str = ""
    roboflow_endpoint: str = ""
    roboflow_base_url: str = "https://detect.roboflow.com"
    huggingface_api_key: str = ""
    huggingface_endpoint: str = "https://api-inference.huggingface.co/models/facebook/detr-resnet-50"
    custom_api_key: str = ""
    custom_endpoint: str = ""
    request_timeout: float = 30.0


@dataclass
class CaptureConfig:
    source: str = "0"                   # camera index, RTSP URL or video file
    reconnect_delay: float = 5.0
    grab_timeout: float = 10.0
    jpeg_quality: int = 80


@dataclass
class LiveConfig:
    enabled: bool = False
    cadence_ms: int = 200
    history_size: int = 10
    fade_size: int = 5
    report_confidence: float = 0.6
    vehicle_id: str = "DASHCAM-001"
    latitude: float = 28.6129
    longitude: float = 77.2295


@dataclass
class StoreConfig:
    db_path: str = "data/db/potholes.db"
    notification_limit: int = 50


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LoggingConfig:
    log_dir: str = "data/logs"
    file_name: str = "potholewatch.log"
    level: str = "INFO"
    # Third-party loggers that are too chatty at INFO
    quiet_loggers: list[str] = field(default_factory=lambda: ["urllib3", "multipart"])


@dataclass
class AppConfig:
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    backends: BackendsConfig = field(default_factory=BackendsConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    live: LiveConfig = field(default_factory=LiveConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Environment variable -> (section, attribute)
ENV_OVERRIDES = {
    "ROBOFLOW_API_KEY": ("backends", "roboflow_api_key"),
    "ROBOFLOW_MODEL_ENDPOINT": ("backends", "roboflow_endpoint"),
    "HUGGINGFACE_API_KEY": ("backends", "huggingface_api_key"),
    "HUGGINGFACE_MODEL_ENDPOINT": ("backends", "huggingface_endpoint"),
    "CUSTOM_MODEL_API_KEY": ("backends", "custom_api_key"),
    "CUSTOM_MODEL_ENDPOINT": ("backends", "custom_endpoint"),
    "CAMERA_SOURCE": ("capture", "source"),
    "WEB_HOST": ("web", "host"),
}


def _apply_dict(dc: object, data: dict) -> None:
    """Apply dictionary values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if hasattr(dc, key):
            setattr(dc, key, value)


def _apply_env(config: AppConfig) -> None:
    for env_name, (section, attr) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            setattr(getattr(config, section), attr, value)

    env_port = os.environ.get("WEB_PORT")
    if env_port:
        config.web.port = int(env_port)


def default_config_path() -> Path:
    return Path(os.environ.get("CONFIG_PATH", "config/default.yaml"))


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from a YAML file, falling back to defaults.

    Every top-level YAML section maps onto the AppConfig field of the same
    name; unknown sections and keys are ignored. Environment variables
    (see ENV_OVERRIDES, plus WEB_PORT) win over the file.
    """
    config = AppConfig()

    path = Path(path) if path is not None else default_config_path()
    if path.exists():
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
        for section in fields(config):
            values = raw.get(section.name)
            if isinstance(values, dict):
                _apply_dict(getattr(config, section.name), values)

    _apply_env(config)
    return config


def _format_value(value: object) -> tuple[str, str]:
    """Return (pattern for the current YAML value, replacement text)."""
    if isinstance(value, bool):
        return r"(?:true|false)", "true" if value else "false"
    if isinstance(value, str):
        return r'"[^"]*"', f'"{value}"'
    return r"[\d.]+", str(value)


def save_config_values(data: dict, path: str | Path | None = None) -> None:
    """Update key/value pairs in the YAML config file, preserving all comments."""
    path = Path(path) if path is not None else default_config_path()
    if not path.exists():
        return
    text = path.read_text()
    for key, value in data.items():
        current, replacement = _format_value(value)
        text = re.sub(rf"(\b{re.escape(key)}:\s*){current}",
                      lambda m: m.group(1) + replacement, text)
    path.write_text(text)
