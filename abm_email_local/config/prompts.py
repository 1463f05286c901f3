"""
Prompt Builder for ABM Email Local
Renders the fixed SDR rulebook prompt and the per-contact user prompt
"""

import re
from typing import Any, Dict, List, Optional, Union

from ..schemas import AccountInput, ContactInput, GenerationConfig
from ..utils.email_rules import first_match
from ..utils.logger import get_logger
from .settings import ConfigManager


SYSTEM_PROMPT = """You are an expert SDR email writer for Class Technologies, a virtual classroom platform built for Zoom and Microsoft Teams.

## YOUR ROLE
Generate 3-email sequences for healthcare accounts with EHR training needs. Each email uses a different angle while maintaining curiosity, insight, and a soft ask.

## CRITICAL RULES (Non-Negotiable)

### Word Count
- Target: 150-200 words per email
- Never go below 150 or above 200

### KLAS Research Introduction (MANDATORY)
First mention of KLAS in ANY email MUST include full context:
- CORRECT: "KLAS Research—which surveyed 500,000+ clinicians across 300 healthcare organizations—found that..."
- WRONG: "KLAS data shows..." or "the KLAS study..."
Subsequent mentions in same email can be shorter: "The same KLAS research shows..."

### "We" Timing Rule
"We" refers to Class. NEVER use "we" until Class has been introduced by name.
- WRONG: "The challenge we hear from health systems..."
- CORRECT: "That's why I'm reaching out about Class—a virtual classroom platform. The challenge we hear..."
Order: 1) Identify their challenge (use "you"), 2) Introduce Class by name, 3) THEN use "we"

### Verified Features ONLY
Safe claims:
- "Class is built for Zoom or Microsoft Teams"
- "Real-time engagement tracking during sessions"
- "Enhanced breakout rooms where instructors can see all groups at once"
- "Embedded assessments and quizzes to check understanding"
- "HIPAA-certified platform"
- "Integrates with major LMS platforms"

BANNED claims:
- "Competency verification" (use "embedded assessments" instead)
- "Hands-on EHR practice environment" (Class is NOT an EHR simulator)
- "Single dashboard across your entire network" (overstated)
- "No new infrastructure to learn" (users need Class training)

### CTA Patterns (No "20 Minutes")
CORRECT CTAs:
- "Is it worth a quick conversation to see how teams are using Class for [use case]? Let me know when works best for you."
- "Would it help to see how this works in practice? Happy to walk through a demo whenever timing makes sense."
- "Let me know when works best, or feel free to connect with our solutions team anytime."

BANNED CTAs:
- "Does Tuesday work for 20 minutes?"
- "Would a 20-minute demo be useful?"
- Any specific day/time in cold outreach
- "I genuinely don't know if Class is right" (self-deprecating)

### Timing References
Use "2026" or "over the next few months"—NOT immediate dates like "January sessions"

### Warmth Phrase (Required in Email 3)
Include before final CTA:
- "Even if the timing isn't right over the next few months, I hope these findings are useful context for your planning."
- "Even if Class isn't the right solution right now, the KLAS research might be useful for your team's evaluation."

## SDR VOICE (Dalton Mullins)
- Signature: "Dalton" (first name only)
- Tone: Conversational, warm, uses contractions aggressively
- Use: I'm, you're, that's, it's, can't, won't, don't
- Include 2-3 questions per email
- Start sentences with "And" or "But" for rhythm
- NEVER: "I am curious" (say "I'm curious" or just ask)

## 3-EMAIL SEQUENCE STRUCTURE

### Email 1: Timing Signal Angle
- Lead with their current initiative/go-live/timing
- Opening question tied to timing signal
- Introduce Class by name before using "we"
- Curiosity-based CTA

### Email 2: Challenge/Tension Angle
- "Following up..." transition
- Challenge statement (competing pressure they face)
- KLAS quote/evidence WITH proper introduction
- Solution bridge showing how Class addresses tension
- "Compare notes?" CTA

### Email 3: Outcome/Proof Angle
- "Wanted to share specific results..." opener
- KLAS proof point WITH proper introduction
- Clinician quote (clearly attributed to KLAS)
- REQUIRED warmth phrase
- Direct CTA with solutions team option

## OUTPUT FORMAT
Return a valid JSON array with exactly 3 email objects:
[
  {
    "variant_id": "{accountIndex}-{contactId}-E1",
    "email_number": 1,
    "subject_line": "Subject here (5-60 chars, no Re:)",
    "body": "Full email body...",
    "word_count": 175,
    "angle": "timing"
  },
  {
    "variant_id": "{accountIndex}-{contactId}-E2",
    "email_number": 2,
    "subject_line": "Subject here",
    "body": "Full email body...",
    "word_count": 165,
    "angle": "challenge"
  },
  {
    "variant_id": "{accountIndex}-{contactId}-E3",
    "email_number": 3,
    "subject_line": "Subject here",
    "body": "Full email body with warmth phrase...",
    "word_count": 185,
    "angle": "outcome"
  }
]

## QUALITY CHECKLIST (Every Email)
- [ ] Word count 150-200
- [ ] KLAS properly introduced on first mention
- [ ] "We" only used AFTER Class introduced
- [ ] 2-3 questions present
- [ ] Contractions used throughout
- [ ] Solution bridge with verified features only
- [ ] CTA is conversational (no "20 minutes")
- [ ] Signed "Dalton"
- [ ] Email 3 has warmth phrase"""


PERSONA_GUIDANCE = {
    'it': """### Persona Guidance: IT/Digital Leader
- Focus on: infrastructure, deployment, integration, ROI, scale, velocity
- Pain points: integration complexity, trainer bandwidth, deployment speed
- Language: system-level, vendor evaluation, budget, timelines""",
    'clinical': """### Persona Guidance: Clinical/Education Leader
- Focus on: floor time, proficiency, hands-on practice, patient care, clinical burden
- Pain points: time away from patients, training verification, adoption rates
- Language: staff time, training quality, clinician satisfaction""",
    'general': """### Persona Guidance: General Healthcare Leader
- Balance operational and clinical concerns
- Focus on scalability and quality of training
- Emphasize time savings and engagement benefits""",
}


def _keyword_table(*entries):
    return [(re.compile(re.escape(keyword), re.IGNORECASE), category) for keyword, category in entries]


# Plain substring match, first category wins
PERSONA_KEYWORDS = _keyword_table(
    ('it', 'it'),
    ('digital', 'it'),
    ('informatics', 'it'),
    ('clinical', 'clinical'),
    ('education', 'clinical'),
    ('nursing', 'clinical'),
)

AccountLike = Union[AccountInput, Dict[str, Any]]
ContactLike = Union[ContactInput, Dict[str, Any]]
ConfigLike = Union[GenerationConfig, Dict[str, Any], None]


def _coerce_account(account: AccountLike) -> AccountInput:
    return account if isinstance(account, AccountInput) else AccountInput.model_validate(account)


def _coerce_contact(contact: ContactLike) -> ContactInput:
    return contact if isinstance(contact, ContactInput) else ContactInput.model_validate(contact)


def _coerce_config(config: ConfigLike) -> GenerationConfig:
    if config is None:
        return GenerationConfig()
    if isinstance(config, GenerationConfig):
        return config
    return GenerationConfig.model_validate(config)


def _format_employee_count(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,}"


def build_system_prompt() -> str:
    """Return the constant rulebook prompt."""
    return SYSTEM_PROMPT


def persona_category(persona_match: Optional[str]) -> str:
    """Classify a persona string as 'it', 'clinical' or 'general'."""
    found = first_match(PERSONA_KEYWORDS, persona_match or "")
    return found[1] if found else 'general'


def build_persona_guidance(persona_match: Optional[str]) -> str:
    return PERSONA_GUIDANCE[persona_category(persona_match)]


def build_timing_context(account: AccountLike) -> str:
    """
    Render the timing block for an account.

    A structured timing triple wins over the raw signal text. Supporting
    summaries are appended when present.
    """
    account = _coerce_account(account)
    sections: List[str] = []

    if account.structured_timing:
        st = account.structured_timing
        sections.append("### EHR Training Initiative")
        sections.append(f"**Initiative:** {st.initiative}")
        sections.append(f"**Timing:** {st.timing}")
        if st.why_class_fits:
            sections.append(f"**Why Class Fits:** {st.why_class_fits}")
    else:
        sections.append("### Timing Signals")
        if account.key_timing_signals:
            sections.append(f"**Key Signals:** {account.key_timing_signals}")
        if account.timing_signals:
            sections.append(f"**Raw Signals:** {account.timing_signals}")

    if account.qualification_summary:
        sections.append("\n### Qualification Summary")
        sections.append(account.qualification_summary)

    if account.evidence_summary:
        sections.append("\n### Evidence Summary")
        sections.append(account.evidence_summary)

    if account.news_summary:
        sections.append("\n### Recent News")
        sections.append(account.news_summary)

    return "\n".join(sections)


def variant_id_prefix(account_index: int, contact_id: str) -> str:
    """``"007-A"`` for account 7 and contact id ``"JOHN-A"``."""
    suffix = contact_id.split('-')[-1] or 'A'
    return f"{account_index:03d}-{suffix}"


def build_user_prompt(account: AccountLike, contact: ContactLike, config: ConfigLike = None) -> str:
    """
    Render the per-contact prompt.

    Args:
        account: Account context (model or dict)
        contact: Contact context (model or dict)
        config: Optional generation overrides; word bounds and the KLAS and
            warmth flags change the output requirements

    Returns:
        Prompt text
    """
    account = _coerce_account(account)
    contact = _coerce_contact(contact)
    config = _coerce_config(config)

    account_lines = [
        "### Account Context",
        f"**Company:** {account.company_name}",
        f"**Tier:** {account.tier}",
        f"**EHR System:** {account.ehr_system}",
    ]
    if account.employee_count:
        account_lines.append(f"**Employees:** {_format_employee_count(account.employee_count)}")
    if account.ehr_go_live_date:
        account_lines.append(f"**EHR Timeline:** {account.ehr_go_live_date}")

    contact_lines = [
        "### Contact Context",
        f"**Name:** {contact.full_name} (First name: {contact.first_name})",
        f"**Title:** {contact.title}",
        f"**Email:** {contact.email}",
        f"**Persona:** {contact.persona_match}",
    ]
    if contact.department:
        contact_lines.append(f"**Department:** {contact.department}")
    if contact.relevance_notes:
        contact_lines.append(f"**Notes:** {contact.relevance_notes}")

    requirements = [
        "### Output Requirements",
        f'- variant_id format: "{variant_id_prefix(account.index, contact.contact_id)}-E{{1|2|3}}"',
        f'- Address recipient as "{contact.first_name}" (first name)',
        '- Sign all emails as "Dalton"',
        "- Follow angle sequence: timing -> challenge -> outcome",
        f"- Each email: {config.min_words}-{config.max_words} words",
    ]
    if config.require_warmth_phrase:
        requirements.append("- Include warmth phrase in Email 3")
    if not config.include_klas_evidence:
        requirements.append("- Do not cite KLAS research in this sequence")

    blocks = [
        "## GENERATE 3-EMAIL SDR SEQUENCE",
        "\n".join(account_lines),
        build_timing_context(account),
        "\n".join(contact_lines),
        build_persona_guidance(contact.persona_match),
        "\n".join(requirements),
        "Generate the 3-email JSON sequence now.",
    ]
    return "\n\n".join(blocks)


class PromptManager:
    """
    Serves prompts with optional overrides from ``prompts.json``.

    Supported keys: ``system_prompt`` replaces the rulebook prompt and
    ``user_prompt_suffix`` is appended to every user prompt.
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize prompt manager.

        Args:
            config_manager: Configuration manager instance
        """
        self.config_manager = config_manager
        self.logger = get_logger("prompts")

    def _overrides(self) -> Dict[str, Any]:
        if self.config_manager is None:
            return {}
        return self.config_manager.get_prompts()

    def get_system_prompt(self) -> str:
        override = self._overrides().get('system_prompt')
        if override:
            self.logger.debug("Using system prompt override from prompts.json")
            return override
        return build_system_prompt()

    def get_user_prompt(self, account: AccountLike, contact: ContactLike, config: ConfigLike = None) -> str:
        prompt = build_user_prompt(account, contact, config)
        suffix = self._overrides().get('user_prompt_suffix')
        if suffix:
            prompt = f"{prompt}\n\n{suffix}"
        return prompt
