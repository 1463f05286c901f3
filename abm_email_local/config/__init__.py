"""
ABM Email Configuration - Settings and prompt building
"""

from .settings import ConfigManager
from .prompts import (
    PromptManager,
    build_system_prompt,
    build_user_prompt,
    build_timing_context,
    build_persona_guidance,
)

__all__ = [
    'ConfigManager',
    'PromptManager',
    'build_system_prompt',
    'build_user_prompt',
    'build_timing_context',
    'build_persona_guidance',
]
