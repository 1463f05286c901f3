"""
Recover the email array from raw model output.

Models often wrap the JSON in markdown fences or surround it with prose, so
the accumulated text is tried against four strategies in order and the first
one that parses wins:

1. the whole text
2. the first fenced code block
3. the first ``[ { ... } ]`` array-of-objects pattern
4. the span from the first ``[`` to the last ``]``

Extraction must only ever run on fully drained output.
"""

import json
import re
from typing import Any, Callable, List, Optional, Tuple

from .logger import get_logger

logger = get_logger("json_extraction")

CODE_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
ARRAY_OF_OBJECTS_PATTERN = re.compile(r"\[\s*\{[\s\S]*?\}\s*\]")


class SequenceParseError(ValueError):
    """Raised when no strategy yields parseable JSON."""

    def __init__(self, message: str = "Failed to parse email sequence from response", raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


def _whole_text(text: str) -> Optional[str]:
    return text


def _fenced_block(text: str) -> Optional[str]:
    match = CODE_BLOCK_PATTERN.search(text)
    return match.group(1).strip() if match else None


def _array_pattern(text: str) -> Optional[str]:
    match = ARRAY_OF_OBJECTS_PATTERN.search(text)
    return match.group(0) if match else None


def _bracket_span(text: str) -> Optional[str]:
    first = text.find('[')
    last = text.rfind(']')
    if first == -1 or last <= first:
        return None
    return text[first:last + 1]


STRATEGIES: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ('whole_text', _whole_text),
    ('code_block', _fenced_block),
    ('array_pattern', _array_pattern),
    ('bracket_span', _bracket_span),
]


def extract_json_with_strategy(text: str) -> Tuple[Any, str]:
    """
    Parse model output, returning the decoded value and the winning strategy.

    Raises:
        SequenceParseError: If all strategies fail
    """
    for name, candidate_of in STRATEGIES:
        candidate = candidate_of(text)
        if candidate is None:
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            logger.debug(f"Extraction strategy {name} failed, trying next")
            continue
        return value, name

    logger.error(f"Failed to parse response: {text[:500]}")
    raise SequenceParseError(raw_text=text)


def extract_json_array(text: str) -> Any:
    """Parse model output with the ordered fallback strategies."""
    value, _strategy = extract_json_with_strategy(text)
    return value
