"""
ABM Email Local - personalised account-based outreach sequences generated on your machine.

This package exposes a programmatic API so batches can be run from
notebooks and other Python runtimes without launching the CLI or server.
"""

__version__ = "1.0.0"
__author__ = "ABM Email Team"
__description__ = "Generate, validate, store and export three-email ABM outreach sequences with an LLM."

from .api import (
    ConfigValidationError,
    build_config,
    configure_logging,
    execute_generation,
    generate_batch_id,
    prepare_data_directory,
    run_batch,
    validate_config,
    validate_emails,
)
from .cli import ABMEmailCLI, main as cli_main
from .pipeline import BatchResult, GenerationOrchestrator

__all__ = [
    "ABMEmailCLI",
    "BatchResult",
    "ConfigValidationError",
    "GenerationOrchestrator",
    "build_config",
    "cli_main",
    "configure_logging",
    "execute_generation",
    "generate_batch_id",
    "prepare_data_directory",
    "run_batch",
    "validate_config",
    "validate_emails",
]
