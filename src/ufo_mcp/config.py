"""
Configuration - where the UFO lives and how the server runs.

Sources, lowest to highest precedence:
- dataclass defaults
- YAML (or JSON) config file
- environment (UFO_IP, UFO_EFFECTS_FILE, UFO_LOG_LEVEL)
- command line flags (applied by server.main)
"""

import json
import logging
import os
import yaml
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Tuple, Optional, Dict, Any

from .query import CLEAR_QUERY

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class DeviceConfig:
    """How to reach the UFO."""
    host: str = "ufo"               # Hostname or IP, no scheme
    timeout: float = 10.0           # seconds per request
    retry_attempts: int = 3
    retry_delay: float = 0.2        # seconds, doubled per retry

    @property
    def base_url(self) -> str:
        return f"http://{self.host}"


@dataclass
class ServerConfig:
    """MCP server settings."""
    host: str = "0.0.0.0"
    port: int = 8080
    effects_file: str = "/data/effects.json"
    log_level: str = "INFO"


@dataclass
class StateConfig:
    """Shadow state tuning."""
    stack_warn_depth: int = 32      # Log when the effect stack grows past this
    clear_query: str = CLEAR_QUERY  # Sent when there is nothing left to restore
    base_state: str = ""            # Restored when the stack empties; "" clears instead


@dataclass
class UfoConfig:
    """Complete configuration for ufo-mcp."""
    device: DeviceConfig = field(default_factory=DeviceConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    state: StateConfig = field(default_factory=StateConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": asdict(self.device),
            "server": asdict(self.server),
            "state": asdict(self.state),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UfoConfig":
        data = data or {}
        return cls(
            device=DeviceConfig(**(data.get("device") or {})),
            server=ServerConfig(**(data.get("server") or {})),
            state=StateConfig(**(data.get("state") or {})),
        )

    def validate(self) -> Tuple[bool, Optional[str]]:
        """Validate entire configuration."""
        if not self.device.host:
            return False, "device.host must not be empty"

        if "://" in self.device.host:
            return False, "device.host must be a bare host, without a scheme"

        if self.device.timeout <= 0:
            return False, "device.timeout must be positive"

        if self.device.retry_attempts < 1:
            return False, "device.retry_attempts must be at least 1"

        if not (0 < self.server.port < 65536):
            return False, "server.port must be 1-65535"

        if self.server.log_level.upper() not in LOG_LEVELS:
            return False, f"server.log_level must be one of {', '.join(LOG_LEVELS)}"

        if self.state.stack_warn_depth < 0:
            return False, "state.stack_warn_depth must be non-negative"

        return True, None


class ConfigManager:
    """Loads configuration from file and environment."""

    def __init__(self, config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        """
        Args:
            config_path: Path to config file (default: ufo_config.yaml in current dir)
            environ: Environment mapping (default: os.environ)
        """
        if config_path is None:
            config_path = Path("ufo_config.yaml")
        self.config_path = Path(config_path)
        self._environ = os.environ if environ is None else environ
        self._config: Optional[UfoConfig] = None

    def load(self, force_reload: bool = False) -> UfoConfig:
        """Load configuration from file or return defaults, then apply env overrides."""
        if self._config is not None and not force_reload:
            return self._config

        config = UfoConfig()
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    if self.config_path.suffix in (".yaml", ".yml"):
                        data = yaml.safe_load(f)
                    else:
                        data = json.load(f)

                config = UfoConfig.from_dict(data)

                valid, error = config.validate()
                if not valid:
                    logger.warning("[Config] Invalid config, using defaults: %s", error)
                    config = UfoConfig()
            except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
                logger.warning("[Config] Error loading config, using defaults: %s", e)
                config = UfoConfig()

        self._apply_env(config)
        self._config = config
        return self._config

    def _apply_env(self, config: UfoConfig):
        env = self._environ
        if env.get("UFO_IP"):
            config.device.host = env["UFO_IP"]
        if env.get("UFO_EFFECTS_FILE"):
            config.server.effects_file = env["UFO_EFFECTS_FILE"]
        level = env.get("UFO_LOG_LEVEL", "").upper()
        if level in LOG_LEVELS:
            config.server.log_level = level

    def save(self, config: Optional[UfoConfig] = None) -> bool:
        """Write configuration back to file. Returns True on success."""
        if config is None:
            config = self._config or self.load()

        valid, error = config.validate()
        if not valid:
            logger.error("[Config] Cannot save invalid config: %s", error)
            return False

        try:
            data = config.to_dict()
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as f:
                if self.config_path.suffix in (".yaml", ".yml"):
                    yaml.dump(data, f, default_flow_style=False, sort_keys=False)
                else:
                    json.dump(data, f, indent=2)
            self._config = config
            return True
        except OSError as e:
            logger.error("[Config] Error saving config: %s", e)
            return False

    def reload(self) -> UfoConfig:
        """Force reload configuration from file."""
        self._config = None
        return self.load()


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[Path] = None) -> ConfigManager:
    """Get global config manager instance."""
    global _config_manager
    if _config_manager is None or (config_path is not None and Path(config_path) != _config_manager.config_path):
        _config_manager = ConfigManager(config_path)
    return _config_manager
