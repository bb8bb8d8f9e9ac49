"""
Configuration Management System for RakshaSetu

Merges built-in defaults, config/default.yaml, config/config.yaml and
RAKSHA_* environment variables, then validates the SOS settings.
"""

import os
import json
import yaml
import logging
from typing import Any, Callable, Dict, List
from pathlib import Path
from dataclasses import dataclass


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


class ConfigurationManager:
    """
    Layered configuration with validation and typed accessors for the
    SOS and live location settings.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "RakshaSetu",
                "version": "1.0.0",
                "log_level": "INFO"
            },
            "user": {
                "id": "local-user",
                "auto_activate": True
            },
            "database": {
                "path": "data/rakshasetu.db",
                "max_connections": 10
            },
            "sos": {
                "countdown_seconds": 10,
                "tick_interval": 1.0,
                "vibration_ms": 500,
                "battery_timeout": 2.0,
                "header": "SOS Alert",
                "emergency_message": "I am in an emergency and need help. Please reach me as soon as possible.",
                "fallback_contacts": [
                    {"id": "1", "name": "Fallback Friend", "phone": "+9112345678910"},
                    {"id": "2", "name": "Police", "phone": "100"}
                ]
            },
            "live_location": {
                "duration_seconds": 3600,
                "update_interval": 5.0,
                "distance_interval": 1.0,
                "share_base_url": "https://rakshasetu-c9e0b.web.app/live"
            },
            "imagery": {
                "api_key": "",
                "size": "400x400",
                "fov": 90,
                "pitch": 10
            },
            "shake": {
                "threshold": 4.0,
                "debounce_seconds": 2.0
            },
            "sms": {
                "gateway_url": "",
                "api_token": "",
                "timeout_seconds": 10
            },
            "logging": {
                "level": "INFO",
                "file": "logs/rakshasetu.log",
                "max_size": "10MB",
                "backup_count": 5
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path)
        ))

        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path)
        ))

        # Built-in defaults (lowest priority)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config = {}

        # Lowest priority first so later sources override
        for source in sorted(self.sources, key=lambda x: x.priority):
            try:
                source_config = source.loader()
                if source_config:
                    merged_config = self._deep_merge(merged_config, source_config)
                    self.logger.debug(f"Loaded configuration from {source.name}")
            except Exception as e:
                self.logger.warning(f"Failed to load config from {source.name}: {e}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        env_mappings = {
            "RAKSHA_LOG_LEVEL": "app.log_level",
            "RAKSHA_DB_PATH": "database.path",
            "RAKSHA_USER_ID": "user.id",
            "RAKSHA_AUTO_ACTIVATE": "user.auto_activate",
            "RAKSHA_SOS_COUNTDOWN": "sos.countdown_seconds",
            "RAKSHA_SHARE_DURATION": "live_location.duration_seconds",
            "RAKSHA_SHARE_BASE_URL": "live_location.share_base_url",
            "RAKSHA_IMAGERY_API_KEY": "imagery.api_key",
            "RAKSHA_SMS_GATEWAY_URL": "sms.gateway_url",
            "RAKSHA_SMS_API_TOKEN": "sms.api_token",
            "RAKSHA_FALLBACK_CONTACTS": "sos.fallback_contacts"
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit():
                    value = int(value)
                elif config_key == "sos.fallback_contacts":
                    try:
                        value = json.loads(value)
                    except json.JSONDecodeError:
                        self.logger.warning(f"Invalid JSON in {env_var}: {value}")
                        continue

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except Exception as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        required_sections = ['app', 'database', 'sos', 'live_location']
        for section in required_sections:
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        countdown = self.get('sos.countdown_seconds')
        if not isinstance(countdown, int) or isinstance(countdown, bool) or countdown < 1:
            errors.append(f"Invalid SOS countdown: {countdown}")

        tick_interval = self.get('sos.tick_interval')
        if not isinstance(tick_interval, (int, float)) or tick_interval <= 0:
            errors.append(f"Invalid SOS tick interval: {tick_interval}")

        duration = self.get('live_location.duration_seconds')
        if not isinstance(duration, (int, float)) or duration <= 0:
            errors.append(f"Invalid live location duration: {duration}")

        fallback = self.get('sos.fallback_contacts')
        if not isinstance(fallback, list) or not any(
            isinstance(c, dict) and str(c.get('phone') or '').strip() for c in fallback
        ):
            errors.append("sos.fallback_contacts must contain at least one contact with a phone number")

        log_level = self.get('app.log_level', 'INFO')
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(log_level).upper() not in valid_levels:
            errors.append(f"Invalid log level: {log_level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})

    def get_countdown_seconds(self) -> int:
        """Get the SOS countdown length"""
        return self.get('sos.countdown_seconds', 10)

    def get_tick_interval(self) -> float:
        """Get seconds between countdown ticks"""
        return float(self.get('sos.tick_interval', 1.0))

    def get_share_duration_seconds(self) -> float:
        """Get the live location share duration used by SOS triggers"""
        return self.get('live_location.duration_seconds', 3600)

    def get_fallback_contacts(self) -> List[Dict[str, Any]]:
        """Get the contacts used when the user has no close friends"""
        return self.get('sos.fallback_contacts', [])

    def is_auto_activate_enabled(self) -> bool:
        """Check if shake / navigation auto-activation is enabled"""
        return bool(self.get('user.auto_activate', True))

