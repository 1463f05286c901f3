"""
Configuration Manager for ABM Email Local
Handles generation defaults and prompt overrides stored as JSON
"""

import json
from typing import Dict, Any
from pathlib import Path

from ..utils.logger import get_logger


DEFAULT_GENERATION_SETTINGS: Dict[str, Any] = {
    "model": "gpt-4.1-mini",
    "temperature": 0.7,
    "max_output_tokens": 4000,
    "min_words": 150,
    "max_words": 200,
    "include_klas_evidence": True,
    "require_warmth_phrase": True,
}


class ConfigManager:
    """
    Manages file-based configuration for ABM Email Local.

    Files live in ``<data_dir>/config/``:

    - ``generation.json``: defaults for the model call and rulebook flags
    - ``prompts.json``: prompt overrides consumed by ``PromptManager``
    """

    def __init__(self, data_dir: str = "./abm_email_data"):
        """
        Initialize configuration manager.

        Args:
            data_dir: Directory containing configuration files
        """
        self.data_dir = Path(data_dir)
        self.config_dir = self.data_dir / "config"
        self.logger = get_logger("config")

        self._cache: Dict[str, Dict[str, Any]] = {}

    def get_generation_settings(self) -> Dict[str, Any]:
        """
        Generation defaults overlaid with ``generation.json``.

        Unknown keys in the file are ignored with a warning.
        """
        if "generation" not in self._cache:
            overrides = self._load_json_config("generation.json")
            unknown = sorted(set(overrides) - set(DEFAULT_GENERATION_SETTINGS))
            if unknown:
                self.logger.warning(f"Ignoring unknown generation settings: {', '.join(unknown)}")
            self._cache["generation"] = {
                **DEFAULT_GENERATION_SETTINGS,
                **{k: v for k, v in overrides.items() if k in DEFAULT_GENERATION_SETTINGS},
            }
        return self._cache["generation"]

    def get_prompts(self) -> Dict[str, Any]:
        """Prompt overrides from ``prompts.json`` (empty when absent)."""
        if "prompts" not in self._cache:
            self._cache["prompts"] = self._load_json_config("prompts.json")
        return self._cache["prompts"]

    def _load_json_config(self, filename: str) -> Dict[str, Any]:
        # A missing, unreadable or non-object file counts as empty
        config_file = self.config_dir / filename
        if not config_file.exists():
            return {}

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Failed to load {filename}: {str(e)}")
            return {}

        if not isinstance(data, dict):
            self.logger.warning(f"Ignoring {filename}: expected a JSON object")
            return {}
        return data

    def save_config(self, config_type: str, config_data: Dict[str, Any]) -> None:
        """
        Write ``<config_type>.json`` and invalidate its cached copy.

        Args:
            config_type: "generation" or "prompts"
            config_data: JSON-serialisable settings

        Raises:
            ValueError: For any other config type
            OSError: If the file cannot be written
        """
        if config_type not in ("generation", "prompts"):
            raise ValueError(f"Unknown config type: {config_type}")

        config_file = self.config_dir / f"{config_type}.json"
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config_data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            self.logger.error(f"Failed to save {config_type} config: {str(e)}")
            raise

        self._cache.pop(config_type, None)
        self.logger.info(f"Saved configuration: {config_file.name}")
