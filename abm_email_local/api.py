"""
Public library interface for ABM Email Local.

This module exposes helpers that embed sequence generation in external
Python runtimes without going through the CLI or HTTP wrappers.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Sequence, Tuple, Union

from .config.prompts import PromptManager
from .config.settings import ConfigManager
from .pipeline import BatchResult, GenerationOrchestrator, build_account_input, build_contact_input
from .schemas import (
    GenerationConfig,
    SchemaValidationError,
    safe_validate_save_request,
    safe_validate_sequence,
)
from .utils.data_manager import CampaignDataManager
from .utils.email_rules import validate_sequence
from .utils.export import export_filename, write_email_document
from .utils.llm_client import LLMClient, normalize_llm_base_url
from .utils.logger import get_logger, setup_logging as _setup_logging
from .utils.storage import EmailStore, create_email_store
from .utils.validators import InputValidator


class ConfigValidationError(ValueError):
    """Raised when generation configuration fails validation."""


OptionsType = Union[Mapping[str, Any], object]

GENERATION_KEYS = {
    # config key -> generation.json key
    "llm_model": "model",
    "temperature": "temperature",
    "max_output_tokens": "max_output_tokens",
    "min_words": "min_words",
    "max_words": "max_words",
    "include_klas_evidence": "include_klas_evidence",
    "require_warmth_phrase": "require_warmth_phrase",
}

logger = get_logger("api")


def generate_batch_id(prefix: str = "abm") -> str:
    """
    Generate a unique batch identifier.

    Args:
        prefix: Optional prefix for the identifier (default ``"abm"``).

    Returns:
        Batch ID string.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    unique_id = uuid.uuid4().hex[:8]
    return f"{prefix}_{timestamp}_{unique_id}"


def _load_generation_file(data_dir: str) -> Dict[str, Any]:
    if not (Path(data_dir).expanduser() / "config" / "generation.json").exists():
        return {}
    return ConfigManager(data_dir).get_generation_settings()


def build_config(options: OptionsType) -> Dict[str, Any]:
    """
    Build a configuration dictionary from a mapping or namespace.

    Generation settings not given explicitly are taken from
    ``<data_dir>/config/generation.json`` when present, else the defaults.

    Args:
        options: Mapping, dataclass, or argparse namespace containing options.

    Returns:
        Normalised configuration dictionary.
    """

    def _get(name: str, default: Any = None) -> Any:
        if isinstance(options, Mapping):
            value = options.get(name, default)
        else:
            value = getattr(options, name, default)
        return default if value is None else value

    def _coerce_bool(value: Any, default: bool = False) -> bool:
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}
        return bool(value)

    data_dir = _get("data_dir", "./abm_email_data")
    file_settings = _load_generation_file(data_dir)

    def _generation(name: str, default: Any) -> Any:
        explicit = _get(name)
        if explicit is not None:
            return explicit
        return file_settings.get(GENERATION_KEYS[name], default)

    data_path = Path(data_dir)

    config: Dict[str, Any] = {
        # API and LLM settings
        "openai_api_key": _get("openai_api_key"),
        "llm_model": _generation("llm_model", "gpt-4.1-mini"),
        "llm_base_url": _get("llm_base_url"),
        "temperature": float(_generation("temperature", 0.7)),
        "max_output_tokens": int(_generation("max_output_tokens", 4000)),

        # Rulebook settings
        "min_words": int(_generation("min_words", 150)),
        "max_words": int(_generation("max_words", 200)),
        "include_klas_evidence": _coerce_bool(_generation("include_klas_evidence", True), True),
        "require_warmth_phrase": _coerce_bool(_generation("require_warmth_phrase", True), True),

        # Data and storage settings
        "data_dir": data_dir,
        "campaign_data_dir": _get("campaign_data_dir", str(data_path / "campaign-data")),
        "storage_backend": (_get("storage_backend") or "file").lower(),
        "storage_file": _get("storage_file", str(data_path / "saved_emails.json")),
        "storage_db": _get("storage_db", str(data_path / "abm_email.db")),
        "exports_dir": _get("exports_dir", str(data_path / "exports")),

        # Output settings
        "output_format": (_get("output_format") or "json").lower(),
        "batch_id": _get("batch_id") or generate_batch_id(),

        # Logging and diagnostics
        "log_level": (_get("log_level") or "INFO").upper(),
        "log_file": _get("log_file"),
        "verbose": _coerce_bool(_get("verbose")),
        "dry_run": _coerce_bool(_get("dry_run")),
    }

    config["llm_base_url"] = normalize_llm_base_url(config.get("llm_base_url"))

    return config


def prepare_data_directory(
    config: MutableMapping[str, Any],
    *,
    assign_default_log: bool = True,
    on_create: Optional[Callable[[Path], None]] = None,
) -> Path:
    """
    Ensure the data directory structure exists for the given configuration.

    Args:
        config: Configuration dictionary (mutated in-place when log_file is assigned).
        assign_default_log: When True, write a default log file path if none provided.
        on_create: Optional callback invoked with the created ``Path``.

    Returns:
        Path to the resolved data directory.
    """
    data_dir = Path(config.get("data_dir") or "./abm_email_data").expanduser()
    directories = [
        data_dir,
        data_dir / "config",
        data_dir / "logs",
        Path(config.get("exports_dir") or data_dir / "exports").expanduser(),
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)

    if assign_default_log and not config.get("log_file"):
        log_filename = f"abm_email_{config['batch_id']}.log"
        config["log_file"] = str((data_dir / "logs" / log_filename).resolve())

    if on_create:
        on_create(data_dir)

    return data_dir


def configure_logging(config: Mapping[str, Any]) -> logging.Logger:
    """
    Configure logging for a run.

    Args:
        config: Configuration dictionary.

    Returns:
        Configured logger instance.
    """
    return _setup_logging(
        level=config.get("log_level", "INFO"),
        log_file=config.get("log_file"),
        verbose=bool(config.get("verbose", False)),
    )


def validate_config(config: Mapping[str, Any]) -> Tuple[bool, list]:
    """
    Validate configuration for common issues.

    Args:
        config: Configuration dictionary to validate.

    Returns:
        Tuple of ``(is_valid, errors)``.
    """
    errors: list = []
    validator = InputValidator()
    errors.extend(validator.validate_config(dict(config)))

    data_dir_valid, data_errors = validate_data_directory(config.get("data_dir"))
    if not data_dir_valid:
        errors.extend(data_errors)

    return len(errors) == 0, errors


def validate_data_directory(data_dir: Optional[str]) -> Tuple[bool, list]:
    """
    Validate that the configured data directory is writable.

    Args:
        data_dir: Directory path supplied in configuration.

    Returns:
        Tuple of ``(is_valid, errors)``.
    """
    errors: list = []

    if not data_dir:
        return False, ["Data directory is not configured"]

    path = Path(data_dir).expanduser()
    test_file = path / ".__abm_email_write_test__"
    try:
        path.mkdir(parents=True, exist_ok=True)
        test_file.write_text("test")
        test_file.unlink()
    except OSError as exc:
        errors.append(f"Failed to prepare data directory '{data_dir}': {exc}")

    return len(errors) == 0, errors


def generation_config_from(config: Mapping[str, Any]) -> GenerationConfig:
    """Per-request generation overrides derived from a run configuration."""
    return GenerationConfig(
        model=config.get("llm_model", "gpt-4.1-mini"),
        temperature=config.get("temperature", 0.7),
        min_words=config.get("min_words", 150),
        max_words=config.get("max_words", 200),
        include_klas_evidence=config.get("include_klas_evidence", True),
        require_warmth_phrase=config.get("require_warmth_phrase", True),
    )


def create_data_manager(config: Mapping[str, Any]) -> CampaignDataManager:
    return CampaignDataManager(config.get("campaign_data_dir") or "./abm_email_data/campaign-data")


def create_orchestrator(
    config: Mapping[str, Any],
    llm_client: Optional[LLMClient] = None,
    data_manager: Optional[CampaignDataManager] = None,
) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        dict(config),
        llm_client=llm_client,
        data_manager=data_manager or create_data_manager(config),
    )


def run_batch(
    config: Mapping[str, Any],
    account_index: int,
    contact_ids: Optional[Sequence[str]] = None,
    *,
    all_eligible: bool = False,
    on_status: Optional[Callable[[Dict[str, Any]], None]] = None,
    llm_client: Optional[LLMClient] = None,
) -> BatchResult:
    """
    Generate sequences for one account with a prepared configuration.

    Args:
        config: Validated configuration dictionary.
        account_index: Account to generate for.
        contact_ids: Explicit contacts; auto-selection when omitted.
        all_eligible: Use every non-excluded contact instead of auto-selection.
        on_status: Called with each status event.
        llm_client: Optional injected model client.

    Returns:
        BatchResult for the run.
    """
    orchestrator = create_orchestrator(config, llm_client=llm_client)
    return orchestrator.generate_for_account(
        account_index,
        contact_ids=contact_ids,
        all_eligible=all_eligible,
        generation_config=generation_config_from(config),
        on_status=on_status,
    )


def preview_prompts(
    config: Mapping[str, Any],
    account_index: int,
    contact_ids: Optional[Sequence[str]] = None,
    *,
    all_eligible: bool = False,
) -> List[Dict[str, Any]]:
    """
    Render the prompts a batch would send, without calling the model.

    Returns:
        One ``{contact_id, system_prompt, user_prompt}`` entry per contact.
    """
    data_manager = create_data_manager(config)
    account = data_manager.load_account(account_index)
    if account is None:
        raise ValueError(f"Account {account_index} not found")

    orchestrator = create_orchestrator(config, data_manager=data_manager)
    contacts = orchestrator.select_contacts(account_index, contact_ids, all_eligible)

    prompt_manager = PromptManager(ConfigManager(config.get("data_dir") or "./abm_email_data"))
    generation = generation_config_from(config)
    account_input = build_account_input(account)

    previews = []
    for contact in contacts:
        contact_input = build_contact_input(contact)
        previews.append({
            "contact_id": contact_input["contact_id"],
            "system_prompt": prompt_manager.get_system_prompt(),
            "user_prompt": prompt_manager.get_user_prompt(account_input, contact_input, generation),
        })
    return previews


def execute_generation(
    options: OptionsType,
    account_index: int,
    contact_ids: Optional[Sequence[str]] = None,
    *,
    all_eligible: bool = False,
    on_status: Optional[Callable[[Dict[str, Any]], None]] = None,
    llm_client: Optional[LLMClient] = None,
    auto_prepare: bool = True,
    auto_configure_logging: bool = True,
    auto_validate: bool = True,
) -> Dict[str, Any]:
    """
    High-level helper that builds configuration from options and runs a batch.

    Args:
        options: Mapping or namespace of options.
        account_index: Account to generate for.
        contact_ids: Explicit contacts; auto-selection when omitted.
        all_eligible: Use every non-excluded contact.
        on_status: Called with each status event.
        llm_client: Optional injected model client.
        auto_prepare: When True, prepare the data directory structure automatically.
        auto_configure_logging: When True, configure logging before execution.
        auto_validate: When True, validate configuration and raise ``ConfigValidationError`` on failure.

    Returns:
        Batch result dictionary, or the prompt preview for dry runs.
    """
    config = build_config(options)

    if auto_prepare:
        prepare_data_directory(config)

    if auto_configure_logging:
        configure_logging(config)

    if auto_validate:
        valid, errors = validate_config(config)
        if not valid:
            raise ConfigValidationError("; ".join(errors))

    if config.get("dry_run"):
        return {
            "status": "dry_run",
            "batch_id": config["batch_id"],
            "prompts": preview_prompts(config, account_index, contact_ids, all_eligible=all_eligible),
        }

    batch = run_batch(
        config,
        account_index,
        contact_ids,
        all_eligible=all_eligible,
        on_status=on_status,
        llm_client=llm_client,
    )
    return batch.to_dict()


def validate_emails(emails: Any, config: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Run the advisory rulebook and the strict schema over a candidate sequence.

    Returns:
        ``{"validation": <ValidationResult dict>, "schema": {"valid", "errors"}}``
    """
    config = config or {}
    if not isinstance(emails, list) or not all(isinstance(email, Mapping) for email in emails):
        raise SchemaValidationError({"form_errors": ["emails must be a list of email objects"], "field_errors": {}})

    validation = validate_sequence(
        emails,
        min_words=config.get("min_words", 150),
        max_words=config.get("max_words", 200),
        require_warmth_phrase=config.get("require_warmth_phrase", True),
    )
    schema = safe_validate_sequence(emails)
    return {
        "validation": validation.to_dict(),
        "schema": {"valid": schema.success, "errors": schema.errors},
    }


def save_sequence(store: EmailStore, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate a save request and persist it.

    Raises:
        SchemaValidationError: If the payload fails the save schema
    """
    result = safe_validate_save_request(dict(payload))
    if not result.success:
        raise SchemaValidationError(result.errors)
    return store.save(result.data.to_store_payload())


def _contact_lookup(contacts: Sequence[Mapping[str, Any]]) -> Dict[str, Mapping[str, Any]]:
    return {c.get("contact_id"): c for c in contacts}


def save_batch_results(
    store: EmailStore,
    account: Mapping[str, Any],
    contacts: Sequence[Mapping[str, Any]],
    batch: BatchResult,
) -> Tuple[List[Dict[str, Any]], Dict[str, Dict[str, Any]]]:
    """
    Persist every generated sequence in a batch.

    Sequences failing the save schema are skipped and reported.

    Returns:
        Tuple of ``(saved_records, rejected)`` where rejected maps contact id
        to its schema error report.
    """
    lookup = _contact_lookup(contacts)
    saved: List[Dict[str, Any]] = []
    rejected: Dict[str, Dict[str, Any]] = {}

    for contact_id, emails in batch.sequences.items():
        contact = lookup.get(contact_id, {})
        payload = {
            "accountIndex": account.get("index"),
            "accountName": account.get("company_name"),
            "contactId": contact_id,
            "contactName": contact.get("full_name") or contact_id,
            "contactTitle": contact.get("title") or "",
            "emails": emails,
        }
        try:
            saved.append(save_sequence(store, payload))
        except SchemaValidationError as e:
            logger.warning(f"Not saving sequence for {contact_id}: {e}")
            rejected[contact_id] = e.errors

    return saved, rejected


def export_batch_results(
    config: Mapping[str, Any],
    account: Mapping[str, Any],
    contacts: Sequence[Mapping[str, Any]],
    batch: BatchResult,
) -> Tuple[List[Path], Dict[str, Dict[str, Any]]]:
    """
    Write one ``.docx`` per generated sequence into ``exports_dir``.

    Only sequences that passed the schema are exported. Contacts sharing a
    full name get their contact id folded into the filename.

    Returns:
        Tuple of ``(paths, skipped)`` where skipped maps contact id to its
        schema error report.
    """
    lookup = _contact_lookup(contacts)
    exports_dir = config.get("exports_dir") or str(Path(config.get("data_dir") or "./abm_email_data") / "exports")

    skipped: Dict[str, Dict[str, Any]] = {}
    exportable = []
    for contact_id, emails in batch.sequences.items():
        report = batch.schema_reports.get(contact_id, {})
        if not report.get("valid"):
            logger.warning(f"Not exporting sequence for {contact_id}: failed schema validation")
            skipped[contact_id] = report.get("errors") or {}
            continue
        contact = lookup.get(contact_id, {})
        exportable.append((contact_id, contact, contact.get("full_name") or contact_id, emails))

    name_counts = Counter(export_filename(name) for _, _, name, _ in exportable)

    paths = []
    for contact_id, contact, name, emails in exportable:
        filename = None
        if name_counts[export_filename(name)] > 1:
            filename = export_filename(f"{name} {contact_id}")
        paths.append(write_email_document(
            exports_dir,
            name,
            contact.get("title") or "",
            account.get("company_name") or "",
            emails,
            filename=filename,
        ))
    return paths, skipped


def create_store(config: Mapping[str, Any]) -> EmailStore:
    return create_email_store(dict(config))
