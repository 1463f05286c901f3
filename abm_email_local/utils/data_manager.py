"""
Campaign Data Manager for ABM Email Local
Read-only access to the account, contact and sender JSON exports
"""

import json
from typing import Dict, Any, List, Optional
from pathlib import Path

from .logger import get_logger


ACCOUNT_LIST_FIELDS = ['index', 'company_name', 'tier', 'ehr_system', 'employee_count']
CONTACT_LIST_FIELDS = ['contact_id', 'full_name', 'title', 'email', 'persona_match', 'outreach_priority']


class CampaignDataManager:
    """
    Loads campaign data from a directory laid out as::

        <campaign_data_dir>/accounts/accounts.json
        <campaign_data_dir>/contacts/account-001.json
        <campaign_data_dir>/config/senders.json

    Missing or unreadable files degrade to empty results; the data is owned
    by an external export process and is never written here.
    """

    def __init__(self, campaign_data_dir: str = "./abm_email_data/campaign-data"):
        """
        Initialize data manager with the campaign data directory.

        Args:
            campaign_data_dir: Root of the exported campaign data
        """
        self.data_dir = Path(campaign_data_dir)
        self.accounts_file = self.data_dir / "accounts" / "accounts.json"
        self.contacts_dir = self.data_dir / "contacts"
        self.senders_file = self.data_dir / "config" / "senders.json"

        self.logger = get_logger("data_manager")

    def _read_json(self, path: Path) -> Optional[Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            self.logger.debug(f"Data file not found: {path}")
            return None
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load {path}: {e}")
            return None

    # ============ Accounts ============

    def load_all_accounts(self) -> List[Dict[str, Any]]:
        """
        Load every account from accounts.json.

        Returns:
            List of account dicts (empty if the file is missing or invalid)
        """
        data = self._read_json(self.accounts_file)
        if not isinstance(data, dict):
            return []
        accounts = data.get('accounts') or []
        self.logger.debug(f"Loaded {len(accounts)} accounts")
        return accounts

    def load_account(self, index: int) -> Optional[Dict[str, Any]]:
        """Account with the given index, or None."""
        for account in self.load_all_accounts():
            if account.get('index') == index:
                return account
        return None

    def get_account_list_items(self) -> List[Dict[str, Any]]:
        """Lightweight projections for account pickers."""
        return [
            {field: account.get(field) for field in ACCOUNT_LIST_FIELDS}
            for account in self.load_all_accounts()
        ]

    # ============ Contacts ============

    def contacts_file_for(self, account_index: int) -> Path:
        # index 1 -> account-001.json
        return self.contacts_dir / f"account-{account_index:03d}.json"

    def load_contacts_for_account(self, account_index: int) -> List[Dict[str, Any]]:
        """
        Load contacts for an account, sorted by outreach_priority ascending.

        Args:
            account_index: Numeric account index

        Returns:
            List of contact dicts (empty if no contact file exists)
        """
        data = self._read_json(self.contacts_file_for(account_index))
        if not isinstance(data, dict):
            return []
        contacts = data.get('contacts') or []
        return sorted(contacts, key=lambda c: c.get('outreach_priority') or 0)

    def load_contact(self, account_index: int, contact_id: str) -> Optional[Dict[str, Any]]:
        for contact in self.load_contacts_for_account(account_index):
            if contact.get('contact_id') == contact_id:
                return contact
        return None

    def get_contact_list_items(self, account_index: int) -> List[Dict[str, Any]]:
        """Lightweight projections for contact pickers."""
        return [
            {field: contact.get(field) for field in CONTACT_LIST_FIELDS}
            for contact in self.load_contacts_for_account(account_index)
        ]

    def has_contacts(self, account_index: int) -> bool:
        return len(self.load_contacts_for_account(account_index)) > 0

    # ============ Config ============

    def load_senders_config(self) -> Optional[Dict[str, Any]]:
        """Sender profiles and variant matrix, or None if absent."""
        data = self._read_json(self.senders_file)
        return data if isinstance(data, dict) else None
