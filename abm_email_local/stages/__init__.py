"""
ABM Email Stages - Per-contact generation units
"""

from .base_stage import BaseStage
from .sequence_generation import SequenceGenerationStage

__all__ = [
    'BaseStage',
    'SequenceGenerationStage',
]
