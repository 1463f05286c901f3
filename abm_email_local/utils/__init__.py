"""
ABM Email Utilities - Rulebook, ranking, storage and I/O helpers
"""

from .data_manager import CampaignDataManager
from .llm_client import LLMClient, UpstreamServiceError, normalize_llm_base_url
from .validators import InputValidator
from .logger import setup_logging, get_logger
from .json_extraction import SequenceParseError, extract_json_array, extract_json_with_strategy
from .contact_ranking import ContactSelection, get_auto_selected_ids, rank_contacts, sort_contacts
from .email_rules import ValidationResult, validate_email, validate_sequence
from .storage import EmailStore, FileEmailStore, InMemoryEmailStore, SQLiteEmailStore, create_email_store
from .export import create_email_document, document_to_bytes, write_email_document

__all__ = [
    'CampaignDataManager',
    'LLMClient',
    'UpstreamServiceError',
    'normalize_llm_base_url',
    'InputValidator',
    'setup_logging',
    'get_logger',
    'SequenceParseError',
    'extract_json_array',
    'extract_json_with_strategy',
    'ContactSelection',
    'get_auto_selected_ids',
    'rank_contacts',
    'sort_contacts',
    'ValidationResult',
    'validate_email',
    'validate_sequence',
    'EmailStore',
    'FileEmailStore',
    'InMemoryEmailStore',
    'SQLiteEmailStore',
    'create_email_store',
    'create_email_document',
    'document_to_bytes',
    'write_email_document',
]
