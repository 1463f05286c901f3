"""
Input validation utilities for ABM Email Local
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .logger import get_logger
from .storage import STORAGE_BACKENDS


# Mirrors the GenerationConfig field limits
MIN_WORDS_RANGE = (100, 250)
MAX_WORDS_RANGE = (150, 300)


class InputValidator:
    """
    Validates configuration and CLI/HTTP inputs before a batch runs.
    Content rules for generated emails live in ``email_rules``.
    """

    def __init__(self):
        """Initialize validator with regex patterns."""
        self.logger = get_logger("validator")

        self.api_key_pattern = re.compile(
            r'^sk-[a-zA-Z0-9\-_]{3,}$'
        )
        self.contact_id_pattern = re.compile(r'^[A-Za-z0-9_\-.]+$')

    def validate_api_key(self, api_key: str) -> bool:
        """
        Validate OpenAI API key format.

        Args:
            api_key: API key to validate

        Returns:
            True if API key format is valid, False otherwise
        """
        if not api_key or not isinstance(api_key, str):
            return False

        return bool(self.api_key_pattern.match(api_key.strip()))

    def validate_account_index(self, value: Any) -> Optional[int]:
        """
        Parse a positive account index.

        Returns:
            The index as int, or None if it is not a positive integer
        """
        if isinstance(value, bool):
            return None
        try:
            index = int(str(value).strip())
        except (TypeError, ValueError):
            return None
        return index if index >= 1 else None

    def validate_contact_id(self, contact_id: str) -> bool:
        if not contact_id or not isinstance(contact_id, str):
            return False
        return bool(self.contact_id_pattern.match(contact_id.strip()))

    def validate_data_dir(self, data_dir: Optional[str]) -> List[str]:
        """Check that the data directory exists (or can be created) and is writable."""
        errors = []
        if not data_dir:
            return ["Data directory is not configured"]

        path = Path(data_dir)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create data directory {data_dir}: {e}")
            return errors

        if not os.access(path, os.W_OK):
            errors.append(f"Data directory is not writable: {data_dir}")
        return errors

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate generation configuration.

        Args:
            config: Configuration dictionary

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not config.get('dry_run'):
            api_key = config.get('openai_api_key')
            if not api_key:
                errors.append("Missing required configuration: OpenAI API key")
            elif not self.validate_api_key(api_key):
                errors.append("Invalid OpenAI API key format")

        if 'temperature' in config:
            temp = config['temperature']
            if isinstance(temp, bool) or not isinstance(temp, (int, float)) or not (0.0 <= temp <= 1.0):
                errors.append("Temperature must be a number between 0.0 and 1.0")

        min_words = config.get('min_words')
        max_words = config.get('max_words')
        if min_words is not None:
            if not isinstance(min_words, int) or not (MIN_WORDS_RANGE[0] <= min_words <= MIN_WORDS_RANGE[1]):
                errors.append(f"min_words must be an integer between {MIN_WORDS_RANGE[0]} and {MIN_WORDS_RANGE[1]}")
        if max_words is not None:
            if not isinstance(max_words, int) or not (MAX_WORDS_RANGE[0] <= max_words <= MAX_WORDS_RANGE[1]):
                errors.append(f"max_words must be an integer between {MAX_WORDS_RANGE[0]} and {MAX_WORDS_RANGE[1]}")
        if isinstance(min_words, int) and isinstance(max_words, int) and min_words > max_words:
            errors.append("min_words cannot exceed max_words")

        if 'max_output_tokens' in config:
            tokens = config['max_output_tokens']
            if not isinstance(tokens, int) or tokens <= 0:
                errors.append("max_output_tokens must be a positive integer")

        backend = config.get('storage_backend')
        if backend is not None and backend not in STORAGE_BACKENDS:
            errors.append(f"Unknown storage backend '{backend}'. Expected one of: {', '.join(STORAGE_BACKENDS)}")

        if 'data_dir' in config:
            errors.extend(self.validate_data_dir(config.get('data_dir')))

        return errors
