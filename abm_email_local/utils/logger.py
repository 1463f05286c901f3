"""
Logging configuration for ABM Email Local

Every component logs under the ``abm_email`` namespace
(``abm_email.pipeline``, ``abm_email.llm_client`` ...). ``setup_logging``
installs the root handlers once per process: stdout always, plus a UTF-8
log file when one is configured.
"""

import logging
import sys
from typing import Any, Mapping, Optional
from pathlib import Path

ROOT_LOGGER_NAME = "abm_email"

PLAIN_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
VERBOSE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'

_logging_configured = False


def _add_handler(root: logging.Logger, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    verbose: bool = False,
    force_reconfigure: bool = False
) -> logging.Logger:
    """
    Install console and optional file logging.

    Later calls are no-ops unless ``force_reconfigure`` is set, so the CLI
    and the library entry points can both call this safely.

    Args:
        level: DEBUG, INFO, WARNING or ERROR (unknown names mean INFO)
        log_file: Optional log file path; parent directories are created
        verbose: Include logger name and source location in each line
        force_reconfigure: Replace handlers even if already configured

    Returns:
        The ``abm_email`` logger
    """
    global _logging_configured

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if _logging_configured and not force_reconfigure:
        logger.debug("Logging already configured, skipping setup")
        return logger

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(VERBOSE_FORMAT if verbose else PLAIN_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    _add_handler(root_logger, logging.StreamHandler(sys.stdout), numeric_level, formatter)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            _add_handler(root_logger, logging.FileHandler(log_file, encoding='utf-8'), numeric_level, formatter)
        except OSError as e:
            print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)
            log_file = None

    logger.info(f"Logging initialized at {level} level" + (f", writing to {log_file}" if log_file else ""))

    _logging_configured = True
    return logger


def reset_logging() -> None:
    """Forget the previous setup so the next ``setup_logging`` call reinstalls handlers."""
    global _logging_configured
    _logging_configured = False


def get_logger(name: str) -> logging.Logger:
    """Logger for one component, named ``abm_email.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class LoggerMixin:
    """Gives a class a ``logger`` property named after the class."""

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.__class__.__name__.lower())


def log_batch_start(batch_id: str, account: Mapping[str, Any], contact_count: int) -> None:
    get_logger("batch").info(
        f"Starting batch {batch_id}: {account.get('company_name')} (#{account.get('index')}), "
        f"{contact_count} contacts"
    )


def log_batch_complete(batch_id: str, succeeded: int, failed: int, duration: float) -> None:
    get_logger("batch").info(
        f"Batch {batch_id} finished in {duration:.2f} seconds: {succeeded} succeeded, {failed} failed"
    )


def log_contact_status(contact_id: str, status: str, error: Optional[str] = None) -> None:
    """
    Log a per-contact status transition.

    Transitions into ``error`` are logged as warnings with the message;
    the batch itself carries on.
    """
    logger = get_logger("status")
    if error:
        logger.warning(f"Contact {contact_id} -> {status}: {error}")
    else:
        logger.info(f"Contact {contact_id} -> {status}")


def log_api_call(service: str, endpoint: str, status_code: int, duration: float) -> None:
    get_logger("api").debug(f"{service} API call to {endpoint}: {status_code} in {duration:.3f}s")


def log_error(component: str, error: Exception, context: Optional[Mapping[str, Any]] = None) -> None:
    """
    Log an unexpected exception with optional context.

    The traceback is only emitted at DEBUG level.
    """
    logger = get_logger("error")
    message = f"Error in {component}: {type(error).__name__}: {str(error)}"
    if context:
        message += f" | context={dict(context)}"
    logger.error(message)
    logger.debug("Exception details:", exc_info=error)
