"""
Configuration management for RackUp OBS.
"""

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/rackup/config.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "rackup" / "config.yaml"


@dataclass
class ObsConfig:
    """OBS WebSocket connection settings."""
    device: str = "obs"  # obs or simulation
    host: str = "localhost"
    port: int = 4455
    password: str = ""
    timeout_sec: int = 5
    reconnect_initial_delay_sec: float = 1.0
    reconnect_max_delay_sec: float = 30.0
    overlay_text_source: str = "RackUp Overlay"
    scorebug_source: str = "RackUp Scorebug"
    auto_setup: bool = True
    screenshot_width: int = 640
    screenshot_quality: int = 60


@dataclass
class RecordingConfig:
    """Recording output settings."""
    base_dir: str = str(Path.home() / "rackup" / "recordings")
    container: str = "mkv"
    finalize_delay_sec: float = 1.5
    lock_timeout_sec: float = 5.0


@dataclass
class OverlayConfig:
    """Live overlay stream settings."""
    heartbeat_interval_sec: float = 15.0
    subscriber_queue_size: int = 256


@dataclass
class ServerConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 4010
    api_base_path: str = "/api"


# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    "OBS_HOST": ("obs", "host", str),
    "OBS_PORT": ("obs", "port", int),
    "OBS_PASSWORD": ("obs", "password", str),
    "RECORDINGS_BASE_DIR": ("recording", "base_dir", str),
    "SERVER_PORT": ("server", "port", int),
}


@dataclass
class Config:
    """Main configuration class."""
    obs: ObsConfig = field(default_factory=ObsConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    overlay: OverlayConfig = field(default_factory=OverlayConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    production_mode: bool = True

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """Load configuration from file, then apply environment overrides."""
        paths_to_try = []

        if config_path:
            paths_to_try.append(Path(config_path))

        paths_to_try.extend([
            Path(DEFAULT_CONFIG_PATH),
            USER_CONFIG_PATH,
            Path("config/config.yaml"),
        ])

        config = None
        for path in paths_to_try:
            if path.exists():
                logger.info(f"Loading config from {path}")
                config = cls._load_from_file(path)
                break

        if config is None:
            logger.warning("No config file found, using defaults")
            config = cls()

        config.apply_env(os.environ)
        return config

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load configuration from a YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        if "obs" in data:
            config.obs = cls._load_dataclass(ObsConfig, data["obs"])
        if "recording" in data:
            config.recording = cls._load_dataclass(RecordingConfig, data["recording"])
        if "overlay" in data:
            config.overlay = cls._load_dataclass(OverlayConfig, data["overlay"])
        if "server" in data:
            config.server = cls._load_dataclass(ServerConfig, data["server"])
        if "production_mode" in data:
            config.production_mode = data["production_mode"]

        return config

    @staticmethod
    def _load_dataclass(cls, data: Dict[str, Any]):
        """Load a dataclass from a dictionary."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered_data = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered_data)

    def apply_env(self, environ) -> None:
        """Apply the OBS_*/RECORDINGS_BASE_DIR/SERVER_PORT environment overrides."""
        for name, (section, key, cast) in ENV_OVERRIDES.items():
            raw = environ.get(name)
            if raw is None or raw == "":
                continue
            try:
                setattr(getattr(self, section), key, cast(raw))
            except ValueError:
                logger.warning(f"Ignoring invalid {name}={raw!r}")

    def save(self, path: Optional[str] = None) -> None:
        """Save configuration to file."""
        save_path = Path(path) if path else USER_CONFIG_PATH
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

        logger.info(f"Configuration saved to {save_path}")

    @staticmethod
    def _dataclass_to_dict(obj) -> Dict[str, Any]:
        """Convert a dataclass to a dictionary."""
        return {k: v for k, v in obj.__dict__.items()}

    def to_dict(self) -> Dict[str, Any]:
        """Convert entire config to dictionary."""
        return {
            "obs": self._dataclass_to_dict(self.obs),
            "recording": self._dataclass_to_dict(self.recording),
            "overlay": self._dataclass_to_dict(self.overlay),
            "server": self._dataclass_to_dict(self.server),
            "production_mode": self.production_mode,
        }

    def update_from_dict(self, data: Dict[str, Any]) -> None:
        """Update configuration from a dictionary."""
        for section in ("obs", "recording", "overlay", "server"):
            if section in data:
                target = getattr(self, section)
                for k, v in data[section].items():
                    if hasattr(target, k):
                        setattr(target, k, v)
        if "production_mode" in data:
            self.production_mode = data["production_mode"]
