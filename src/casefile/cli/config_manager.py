"""Configuration manager for Casefile CLI settings."""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from casefile.core.config import DEFAULT_DATABASE_URL, DEFAULT_MODEL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "database_url": DEFAULT_DATABASE_URL,
    "llm_api_key": "",
    "llm_base_url": "",
    "llm_model": DEFAULT_MODEL,
    "log_level": "INFO",
    "json_logs": False,
    "monthly_cap_cents": 500,
    "batch_size": 10,
    "extracted_dir": "./data/extracted",
    "ai_output_dir": "./data/ai-analyzed",
}

SECRET_KEYS = ("llm_api_key",)


def _coerce(value: Any, default: Any) -> Any:
    """Convert CLI string input to the type of the default value."""
    if not isinstance(value, str):
        return value
    if isinstance(default, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(value)
    return value


class CasefileConfigManager:
    """Manage Casefile configuration settings with persistence."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "casefile_cli.json"
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file."""
        config = dict(DEFAULT_CONFIG)

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    config.update(json.load(f))
                    logger.info("Configuration loaded from file")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config file: {e}, using defaults")
        else:
            logger.info("No config file found, using defaults")

        return config

    def _save_config(self):
        """Save configuration to file."""
        with open(self.config_file, 'w') as f:
            json.dump(self.config, f, indent=2)
        logger.info("Configuration saved to file")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True):
        """Set configuration value and export it to the environment."""
        if key not in DEFAULT_CONFIG:
            raise KeyError(f"Unknown configuration key: {key}")

        value = _coerce(value, DEFAULT_CONFIG[key])
        self.config[key] = value

        env_key = key.upper()
        if isinstance(value, bool):
            os.environ[env_key] = str(value).lower()
        else:
            os.environ[env_key] = str(value)

        if persist:
            self._save_config()

        logger.info(f"Set {key}")

    def reset(self, key: str, persist: bool = True):
        """Reset configuration value to default."""
        if key in DEFAULT_CONFIG:
            self.set(key, DEFAULT_CONFIG[key], persist)
            logger.info(f"Reset {key} to default")
        else:
            logger.warning(f"No default value for {key}")

    def get_all(self, mask_secrets: bool = False) -> Dict[str, Any]:
        """Get all configuration values."""
        config = self.config.copy()
        if mask_secrets:
            for key in SECRET_KEYS:
                config[key] = "***" if config.get(key) else "Not set"
        return config

    def apply_to_environment(self):
        """Export persisted settings as env vars without overriding ones already set."""
        for key, value in self.config.items():
            if value in ("", None):
                continue
            env_value = str(value).lower() if isinstance(value, bool) else str(value)
            os.environ.setdefault(key.upper(), env_value)

    def validate(self) -> Dict[str, Any]:
        """Validate current configuration."""
        validation = {
            "valid": True,
            "issues": [],
            "warnings": []
        }

        if not self.get("database_url"):
            validation["issues"].append("DATABASE_URL not set")
            validation["valid"] = False

        if not self.get("llm_api_key") and not os.getenv("LLM_API_KEY") and not os.getenv("OPENAI_API_KEY"):
            validation["warnings"].append("LLM_API_KEY not set (Tier 1 analysis disabled)")

        extracted_dir = Path(self.get("extracted_dir", ""))
        if not extracted_dir.exists():
            validation["warnings"].append(f"Extracted text directory not found: {extracted_dir}")

        for key in ("batch_size", "monthly_cap_cents"):
            value = self.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                validation["issues"].append(f"{key} must be a positive integer")
                validation["valid"] = False

        return validation

    def export(self, format: str = "json", output_path: Optional[str] = None) -> str:
        """Export configuration in various formats."""
        if not output_path:
            output_path = self.config_dir / f"casefile_config_export.{format}"

        if format.lower() == "json":
            with open(output_path, 'w') as f:
                json.dump(self.config, f, indent=2)
        elif format.lower() == "env":
            with open(output_path, 'w') as f:
                for key, value in self.config.items():
                    if isinstance(value, bool):
                        f.write(f"{key.upper()}={str(value).lower()}\n")
                    else:
                        f.write(f"{key.upper()}={value}\n")
        else:
            raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Configuration exported to {output_path}")
        return str(output_path)


def get_config_manager() -> CasefileConfigManager:
    """Get the configuration manager for the current config directory."""
    config_dir = os.getenv("CASEFILE_CONFIG_DIR", "./config")
    return CasefileConfigManager(config_dir)
