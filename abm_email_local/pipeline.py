"""
ABM Email Generation Orchestrator
Runs sequence generation for the selected contacts of one account, one at a time
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence
import time
from datetime import datetime
import uuid

from .schemas import GenerationConfig
from .stages import SequenceGenerationStage
from .utils.contact_ranking import ContactSelection, eligible_contacts
from .utils.data_manager import CampaignDataManager
from .utils.llm_client import LLMClient
from .utils.logger import (
    get_logger,
    log_batch_complete,
    log_batch_start,
    log_contact_status,
    log_error,
)


STATUS_PENDING = 'pending'
STATUS_GENERATING = 'generating'
STATUS_COMPLETE = 'complete'
STATUS_ERROR = 'error'

ACCOUNT_INPUT_FIELDS = [
    'index', 'company_name', 'tier', 'ehr_system', 'employee_count',
    'timing_signals', 'ehr_go_live_date', 'key_timing_signals', 'structured_timing',
    'qualification_summary', 'evidence_summary', 'news_summary',
]


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return value.model_dump()


def build_account_input(account: Any) -> Dict[str, Any]:
    """
    Project an account record (full or list item) onto the generation input.

    Empty strings become None so optional prompt sections are omitted.
    """
    record = _as_dict(account)
    projected = {}
    for key in ACCOUNT_INPUT_FIELDS:
        value = record.get(key)
        if value == '':
            value = None
        if value is not None:
            projected[key] = value
    return projected


def build_contact_input(contact: Any) -> Dict[str, Any]:
    """
    Project a contact record onto the generation input.

    ``first_name`` falls back to the first token of ``full_name``; missing
    email and persona default to empty strings.
    """
    record = _as_dict(contact)
    full_name = (record.get('full_name') or '').strip()
    if not full_name:
        full_name = ' '.join(
            part for part in (record.get('first_name'), record.get('last_name')) if part
        ).strip()
    first_name = (record.get('first_name') or '').strip()
    if not first_name and full_name:
        first_name = full_name.split()[0]

    projected = {
        'contact_id': record.get('contact_id') or '',
        'full_name': full_name,
        'first_name': first_name,
        'title': record.get('title') or '',
        'email': record.get('email') or '',
        'persona_match': record.get('persona_match') or '',
    }
    for key in ('department', 'relevance_notes'):
        if record.get(key):
            projected[key] = record[key]
    return projected


@dataclass
class ContactStatus:
    """Finite-state record for one contact in a batch."""

    contact_id: str
    name: str
    status: str = STATUS_PENDING
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'contact_id': self.contact_id,
            'name': self.name,
            'status': self.status,
        }
        if self.error is not None:
            data['error'] = self.error
            data['error_type'] = self.error_type
        return data


@dataclass
class BatchResult:
    """Outcome of one batch. Failed contacts are absent from ``sequences``."""

    batch_id: str
    account_index: Optional[int]
    sequences: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    statuses: List[ContactStatus] = field(default_factory=list)
    validations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    schema_reports: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    duration: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for s in self.statuses if s.status == STATUS_COMPLETE)

    @property
    def failed(self) -> int:
        return sum(1 for s in self.statuses if s.status == STATUS_ERROR)

    @property
    def summary(self) -> str:
        return f"{self.succeeded} succeeded, {self.failed} failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'batch_id': self.batch_id,
            'account_index': self.account_index,
            'sequences': self.sequences,
            'statuses': [s.to_dict() for s in self.statuses],
            'validations': self.validations,
            'schema_reports': self.schema_reports,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'summary': self.summary,
            'duration_seconds': self.duration,
        }


class GenerationOrchestrator:
    """
    Batch loop over selected contacts.

    Contacts are processed strictly in order with exactly one generation in
    flight. Every status transition is emitted as an event the moment it
    happens; a failing contact is recorded and the loop moves on.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        llm_client: Optional[LLMClient] = None,
        data_manager: Optional[CampaignDataManager] = None,
        stage: Optional[SequenceGenerationStage] = None,
    ):
        """
        Initialize orchestrator with configuration.

        Args:
            config: Configuration dictionary
            llm_client: Optional injected model client
            data_manager: Optional shared campaign data manager
            stage: Optional pre-built generation stage
        """
        self.config = config
        self.batch_id = config.get('batch_id') or self._generate_batch_id()
        self.logger = get_logger("pipeline")

        self.data_manager = data_manager or CampaignDataManager(
            config.get('campaign_data_dir', './abm_email_data/campaign-data')
        )
        self.stage = stage or SequenceGenerationStage(config, llm_client=llm_client)

    def _generate_batch_id(self) -> str:
        return f"abm_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{str(uuid.uuid4())[:8]}"

    def _status_event(self, status: ContactStatus) -> Dict[str, Any]:
        log_contact_status(status.contact_id, status.status, status.error)
        return {'type': 'status', 'batch_id': self.batch_id, **status.to_dict()}

    def iter_generate(
        self,
        account: Any,
        contacts: Sequence[Any],
        generation_config: Optional[GenerationConfig] = None,
        result: Optional[BatchResult] = None,
    ) -> Iterator[Dict[str, Any]]:
        """
        Generate sequences, yielding events as they happen.

        Yields ``status`` events (all contacts pending first, then
        generating and complete/error per contact) and a final ``summary``
        event carrying the batch result.

        Args:
            account: Account record or AccountInput
            contacts: Selected contact records in processing order
            generation_config: Optional per-batch overrides
            result: Optional BatchResult to fill in place
        """
        account_input = build_account_input(account)
        contact_inputs = [build_contact_input(c) for c in contacts]
        config_payload = generation_config.model_dump() if generation_config is not None else None

        batch = result if result is not None else BatchResult(batch_id=self.batch_id, account_index=None)
        batch.account_index = account_input.get('index')
        batch.statuses = [ContactStatus(c['contact_id'], c['full_name']) for c in contact_inputs]

        start_time = time.time()
        log_batch_start(self.batch_id, account_input, len(contact_inputs))

        for status in batch.statuses:
            yield self._status_event(status)

        for contact_input, status in zip(contact_inputs, batch.statuses):
            status.status = STATUS_GENERATING
            yield self._status_event(status)

            context = {
                'execution_id': f"{self.batch_id}:{status.contact_id}",
                'input_data': {
                    'account': account_input,
                    'contact': contact_input,
                    'config': config_payload,
                },
            }

            try:
                stage_result = self.stage.execute_with_timing(context)
            except Exception as e:
                log_error("pipeline", e, {'contact_id': status.contact_id})
                stage_result = self.stage.create_error_result(e, context)

            if stage_result.get('status') == 'success':
                data = stage_result['data']
                batch.sequences[status.contact_id] = data['emails']
                batch.validations[status.contact_id] = data['validation']
                batch.schema_reports[status.contact_id] = {
                    'valid': data['schema_valid'],
                    'errors': data['schema_errors'],
                }
                status.status = STATUS_COMPLETE
            else:
                status.status = STATUS_ERROR
                status.error = stage_result.get('error_message') or 'Generation failed'
                status.error_type = stage_result.get('error_type')

            yield self._status_event(status)

        batch.duration = time.time() - start_time
        log_batch_complete(self.batch_id, batch.succeeded, batch.failed, batch.duration)

        yield {'type': 'summary', 'batch_id': self.batch_id, 'message': batch.summary, 'result': batch.to_dict()}

    def generate(
        self,
        account: Any,
        contacts: Sequence[Any],
        generation_config: Optional[GenerationConfig] = None,
        on_status: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> BatchResult:
        """
        Run a batch to completion.

        Args:
            account: Account record or AccountInput
            contacts: Selected contact records in processing order
            generation_config: Optional per-batch overrides
            on_status: Called with each status event as it happens

        Returns:
            BatchResult with sequences for the contacts that succeeded
        """
        batch = BatchResult(batch_id=self.batch_id, account_index=None)
        for event in self.iter_generate(account, contacts, generation_config, result=batch):
            if event['type'] == 'status' and on_status is not None:
                on_status(event)
        return batch

    def select_contacts(
        self,
        account_index: int,
        contact_ids: Optional[Sequence[str]] = None,
        all_eligible: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Resolve which contacts of an account a batch should cover.

        Explicit ids win (in the given order); otherwise every eligible
        contact when ``all_eligible``; otherwise the auto-selected set.

        Raises:
            ValueError: If an explicit id is unknown for the account
        """
        contacts = self.data_manager.load_contacts_for_account(account_index)

        if contact_ids:
            by_id = {c.get('contact_id'): c for c in contacts}
            unknown = [cid for cid in contact_ids if cid not in by_id]
            if unknown:
                raise ValueError(f"Unknown contact id(s) for account {account_index}: {', '.join(unknown)}")
            return [by_id[cid] for cid in contact_ids]

        selection = ContactSelection(contacts)
        if all_eligible:
            selection.select_all()
        selected = selection.selected_contacts()
        self.logger.info(
            f"Selected {len(selected)} of {len(contacts)} contacts for account {account_index} "
            f"({'all eligible' if all_eligible else 'auto-selected'}, {len(eligible_contacts(contacts))} eligible)"
        )
        return selected

    def generate_for_account(
        self,
        account_index: int,
        contact_ids: Optional[Sequence[str]] = None,
        all_eligible: bool = False,
        generation_config: Optional[GenerationConfig] = None,
        on_status: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> BatchResult:
        """
        Load an account and its contacts, then run a batch.

        Raises:
            ValueError: If the account is unknown
        """
        account = self.data_manager.load_account(account_index)
        if account is None:
            raise ValueError(f"Account {account_index} not found")

        contacts = self.select_contacts(account_index, contact_ids, all_eligible)
        return self.generate(account, contacts, generation_config, on_status)
