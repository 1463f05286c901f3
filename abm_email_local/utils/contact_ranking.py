"""
Contact ranking and selection for a batch.

Contacts are ranked into five priority tiers by title keywords, with a hard
exclusion list for roles that should never receive the sequence. Matching is
case-insensitive substring matching; exclusion and auto-selection look at the
title and persona together, tier assignment looks at the title only.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from .logger import LoggerMixin

EXCLUDED_KEYWORDS = [
    'CEO', 'Chief Executive',
    'CMO', 'Chief Medical Officer',
    'CFO', 'Chief Financial',
    'COO', 'Chief Operating',
    'CMIO', 'Chief Medical Information',
    'CNO', 'Chief Nursing',
    'Epic Trainer', 'Credentialed Trainer', 'Training Specialist', 'EHR Trainer',
]

# Checked in order, first match wins
PRIORITY_TIERS = [
    (1, ['CLO', 'Chief Learning', 'VP Learning', 'VP L&D']),
    (2, ['CIO', 'Chief Information Officer', 'Chief Digital']),
    (3, ['CHRO', 'Chief Human Resources', 'Chief People', 'CPO']),
    (4, [
        'Director of Learning', 'Director of Training', 'Director of L&D',
        'Director of Education', 'Director of Clinical Education',
        'VP Education', 'VP Training', 'Director of Workforce',
    ]),
]
DEFAULT_TIER = 5

ALL_PRIORITY_KEYWORDS = [kw for _tier, keywords in PRIORITY_TIERS for kw in keywords]

TIER_LABELS = {
    1: 'CLO',
    2: 'CIO',
    3: 'CHRO',
    4: 'L&D Dir',
    5: 'Other',
}


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(kw.lower() in lowered for kw in keywords)


def _combined(contact: Dict[str, Any]) -> str:
    return f"{contact.get('title') or ''} {contact.get('persona_match') or ''}"


def is_excluded(contact: Dict[str, Any]) -> bool:
    """True when the title or persona names an excluded role."""
    return _contains_any(_combined(contact), EXCLUDED_KEYWORDS)


def get_priority_tier(contact: Dict[str, Any]) -> Optional[int]:
    """
    Return the contact's priority tier (1 is highest), or None if excluded.

    Args:
        contact: Contact list item

    Returns:
        Tier 1-5, or None for excluded contacts
    """
    if is_excluded(contact):
        return None

    title = contact.get('title') or ''
    for tier, keywords in PRIORITY_TIERS:
        if _contains_any(title, keywords):
            return tier
    return DEFAULT_TIER


def should_auto_select(contact: Dict[str, Any]) -> bool:
    if is_excluded(contact):
        return False
    return _contains_any(_combined(contact), ALL_PRIORITY_KEYWORDS)


def get_auto_selected_ids(contacts: Sequence[Dict[str, Any]]) -> List[str]:
    """Ids of contacts that are pre-selected, in input order."""
    return [c['contact_id'] for c in contacts if should_auto_select(c)]


def eligible_contacts(contacts: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """All non-excluded contacts, in input order."""
    return [c for c in contacts if not is_excluded(c)]


def _sort_key(contact: Dict[str, Any]):
    tier = get_priority_tier(contact)
    if tier is None:
        # Excluded contacts keep their relative order at the bottom
        return (1, 0, 0)
    return (0, tier, contact.get('outreach_priority') or 0)


def sort_contacts(contacts: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Display order: excluded last, then by tier, then by outreach priority.

    The sort is stable, so ties keep their input order.
    """
    return sorted(contacts, key=_sort_key)


def get_tier_label(tier: Optional[int]) -> str:
    if tier is None:
        return 'Excluded'
    return TIER_LABELS.get(tier, 'Other')


def rank_contacts(contacts: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Sorted contacts annotated with tier, label, exclusion and auto-selection.

    Returns:
        New dicts; the inputs are not modified
    """
    ranked = []
    for contact in sort_contacts(contacts):
        tier = get_priority_tier(contact)
        ranked.append({
            **contact,
            'priority_tier': tier,
            'tier_label': get_tier_label(tier),
            'excluded': tier is None,
            'auto_selected': should_auto_select(contact),
        })
    return ranked


class ContactSelection(LoggerMixin):
    """
    Tracks the selected contact ids for the current account.

    Auto-selection is recomputed only when the ordered list of contact ids
    changes, so manual toggles survive repeated updates with the same list.
    """

    def __init__(self, contacts: Optional[Sequence[Dict[str, Any]]] = None):
        self._contacts: List[Dict[str, Any]] = []
        self._contacts_key: Optional[str] = None
        self.selected_ids: List[str] = []
        if contacts is not None:
            self.update_contacts(contacts)

    @staticmethod
    def _key_for(contacts: Sequence[Dict[str, Any]]) -> str:
        return ','.join(c['contact_id'] for c in contacts)

    def update_contacts(self, contacts: Sequence[Dict[str, Any]]) -> bool:
        """
        Replace the contact list, re-running auto-selection if it changed.

        Returns:
            True if the selection was recomputed
        """
        key = self._key_for(contacts)
        self._contacts = list(contacts)
        if key == self._contacts_key:
            return False

        self._contacts_key = key
        self.selected_ids = get_auto_selected_ids(self._contacts) if self._contacts else []
        self.logger.debug(f"Auto-selected {len(self.selected_ids)} of {len(self._contacts)} contacts")
        return True

    def toggle(self, contact_id: str) -> List[str]:
        if contact_id in self.selected_ids:
            self.selected_ids = [cid for cid in self.selected_ids if cid != contact_id]
        else:
            self.selected_ids = self.selected_ids + [contact_id]
        return self.selected_ids

    def select_all(self) -> List[str]:
        """Select every non-excluded contact."""
        self.selected_ids = [c['contact_id'] for c in eligible_contacts(self._contacts)]
        return self.selected_ids

    def clear_all(self) -> List[str]:
        self.selected_ids = []
        return self.selected_ids

    def selected_contacts(self) -> List[Dict[str, Any]]:
        """Selected contacts in display order."""
        chosen = set(self.selected_ids)
        return [c for c in sort_contacts(self._contacts) if c['contact_id'] in chosen]
