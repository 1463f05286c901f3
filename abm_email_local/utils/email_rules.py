"""
Rulebook checks for generated outreach emails.

Every rule is a declarative table of compiled patterns consulted through
``first_match``/``all_matches``; the check functions only decide what a match
means. Results are advisory: nothing here raises for well-formed input and
nothing regenerates a failing email.

Checks per email:
- word count inside the configured bounds (150-200 by default)
- contractions instead of uncontracted phrases ("I am", "do not", ...)
- first KLAS mention carries the full research introduction
- "we"/"our" only after Class has been introduced by name
- no banned call-to-action patterns
- warmth phrase in the final email
- no banned phrases
- signed with the sender's first name only
- subject line does not look like a reply
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from ..schemas import EXPECTED_ANGLES, MAX_WORDS, MIN_WORDS, SEQUENCE_LENGTH

SIGNER_FIRST_NAME = "Dalton"
COMPANY_NAME = "Class"

RuleTable = Sequence[Tuple[Pattern[str], str]]


def _table(*entries: Tuple[str, str]) -> List[Tuple[Pattern[str], str]]:
    return [(re.compile(pattern, re.IGNORECASE), label) for pattern, label in entries]


# =============================================================================
# Rule tables
# =============================================================================

UNCONTRACTED_PHRASES: RuleTable = _table(
    (r"\bI am\b", "I'm"),
    (r"\bI have\b", "I've"),
    (r"\bYou are\b", "you're"),
    (r"\bWe are\b", "we're"),
    (r"\bThey are\b", "they're"),
    (r"\bIt is\b", "it's"),
    (r"\bThat is\b", "that's"),
    (r"\bWhat is\b", "what's"),
    (r"\bThere is\b", "there's"),
    (r"\bHere is\b", "here's"),
    (r"\bDo not\b", "don't"),
    (r"\bCan not\b", "can't"),
    (r"\bWill not\b", "won't"),
    (r"\bWould not\b", "wouldn't"),
    (r"\bCould not\b", "couldn't"),
    (r"\bShould not\b", "shouldn't"),
)

KLAS_QUALIFIED_INTROS: RuleTable = _table(
    (r"klas\s+research[—–-]which\s+surveyed\s+500,?000\+?\s+clinicians", "dash aside"),
    (r"klas\s+research,?\s+which\s+surveyed\s+500,?000\+?\s+clinicians", "comma aside"),
    (r"according\s+to\s+klas\s+research[—–-]the\s+healthcare", "according to"),
    (r"surveyed\s+by\s+klas\s+research\s*\(500,?000\+?\s+clinicians", "surveyed by"),
    (r"from\s+klas\s+research\s*\(500,?000\+?\s+clinicians", "from, parenthetical"),
    (r"from\s+klas\s+research\.\s+according\s+to\s+their\s+study\s+of\s+500,?000\+?\s+clinicians", "from, follow-up sentence"),
)

KLAS_SHORTHAND_FORMS: RuleTable = _table(
    (r"klas\s+data\s+shows", "KLAS data shows"),
    (r"the\s+klas\s+study", "the KLAS study"),
    (r"klas\s+shows", "KLAS shows"),
    (r"klas\s+research\s+shows", "KLAS research shows"),
)

COMPANY_INTRODUCTIONS: RuleTable = _table(
    (r"\babout class[—–\-,.\s]", "about Class"),
    (r"\bclass[—–\-\s]+a\s+virtual", "Class, a virtual ..."),
    (r"\bclass\s+is\s+built", "Class is built"),
    (r"\busing class\b", "using Class"),
    (r"\bclass\s+helps\b", "Class helps"),
    (r"\bclass\s+provides\b", "Class provides"),
    (r"\bclass\s+gives\b", "Class gives"),
    (r"\bclass\s+lets\b", "Class lets"),
    (r"\bclass\s+turns\b", "Class turns"),
    (r"\bclass\s+adds\b", "Class adds"),
    (r"\bwith class\b", "with Class"),
)

KLAS_MENTION = re.compile(r"klas", re.IGNORECASE)

PLURAL_PRONOUN = re.compile(r"\b(we|we're|we've|we'll|our)\b", re.IGNORECASE)

BANNED_CTAS: RuleTable = _table(
    (r"20\s*minutes?", "20-minute ask"),
    (r"15\s*minutes?", "15-minute ask"),
    (r"does\s+(monday|tuesday|wednesday|thursday|friday)\s+work", "specific weekday"),
    (r"would\s+(monday|tuesday|wednesday|thursday|friday)\s+work", "specific weekday"),
    (r"can\s+we\s+schedule", "scheduling ask"),
    (r"i\s+genuinely\s+don't\s+know\s+if\s+class\s+is\s+right", "self-deprecating"),
    (r"happy\s+to\s+share\s+over\s+email\s+if\s+easier", "self-deprecating"),
    (r"no\s+meeting\s+required", "self-deprecating"),
)

WARMTH_PHRASES: RuleTable = _table(
    (r"even\s+if\s+(the\s+)?timing\s+isn't\s+right", "timing isn't right"),
    (r"even\s+if\s+class\s+isn't\s+the\s+right\s+solution", "not the right solution"),
    (r"even\s+if\s+now\s+isn't\s+the\s+right\s+time", "not the right time"),
    (r"i\s+hope\s+this\s+data\s+is\s+useful", "data is useful"),
    (r"i\s+hope\s+these\s+findings\s+are\s+useful", "findings are useful"),
    (r"the\s+klas\s+research\s+might\s+be\s+useful", "research might be useful"),
    (r"this\s+research\s+might\s+be\s+useful", "research might be useful"),
    (r"i\s+appreciate\s+you're\s+managing\s+a\s+lot", "managing a lot"),
    (r"these\s+findings\s+will\s+still\s+be\s+relevant", "still relevant"),
)

BANNED_PHRASES: RuleTable = _table(
    (r"competency\s+verification", 'Use "embedded assessments" instead of "competency verification"'),
    (r"hands-?on\s+ehr\s+practice\s+environment", "Class is not an EHR simulator"),
    (r"single\s+dashboard\s+across\s+your\s+entire\s+network", "Overstated feature claim"),
    (r"no\s+new\s+infrastructure\s+to\s+learn", "Users need Class training"),
    (r"deployment\s+layer", "Confusing terminology"),
    (r"overwhelming\s+the\s+education\s+infrastructure", "Vague wording"),
    (r"one\s+more\s+thought", "Feels pestering"),
    (r"i\s+keep\s+wondering", "Forced personalization"),
    (r"january\s+sessions?", "Too immediate timing reference"),
    (r"runs?\s+on\s+your\s+existing\s+zoom", 'Use "built for Zoom" instead'),
)


def first_match(table: RuleTable, text: str) -> Optional[Tuple[re.Match, str]]:
    """Return the first (match, label) in table order, or None."""
    for pattern, label in table:
        match = pattern.search(text)
        if match:
            return match, label
    return None


def all_matches(table: RuleTable, text: str) -> List[str]:
    """Return the label of every table entry that matches, in table order."""
    return [label for pattern, label in table if pattern.search(text)]


# =============================================================================
# Results
# =============================================================================

@dataclass
class ValidationResult:
    """Advisory outcome of a rulebook check."""

    passed: bool
    checks: Dict[str, bool] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'passed': self.passed,
            'checks': dict(self.checks),
            'failures': list(self.failures),
            'suggestions': list(self.suggestions),
        }


# =============================================================================
# Individual checks
# =============================================================================

def count_words(text: str) -> int:
    """Count whitespace-separated tokens, ignoring empty ones."""
    return len(text.split())


def has_contraction_issues(text: str) -> bool:
    """True when any uncontracted phrase appears (bad)."""
    return first_match(UNCONTRACTED_PHRASES, text) is not None


def _sentence_around(text: str, index: int) -> str:
    start = text.rfind('.', 0, index) + 1
    end = text.find('.', index)
    return text[start:] if end == -1 else text[start:end + 1]


def has_valid_klas_intro(text: str) -> bool:
    """
    True when KLAS is absent or its first mention is properly introduced.

    Only the first mention is constrained. It passes when a qualified
    introduction covers it; it fails when its sentence uses a known shorthand
    form instead. A first mention that is neither is let through.
    """
    mention = KLAS_MENTION.search(text)
    if not mention:
        return True
    first = mention.start()

    for pattern, _label in KLAS_QUALIFIED_INTROS:
        for match in pattern.finditer(text):
            if match.start() <= first < match.end():
                return True

    sentence = _sentence_around(text, first)
    return first_match(KLAS_SHORTHAND_FORMS, sentence) is None


def company_introduction_offset(text: str) -> int:
    """Earliest offset at which Class is introduced by name, or -1."""
    earliest = -1
    for pattern, _label in COMPANY_INTRODUCTIONS:
        match = pattern.search(text)
        if match and (earliest == -1 or match.start() < earliest):
            earliest = match.start()
    return earliest


def has_valid_we_timing(text: str) -> bool:
    """
    True unless "we"/"our" appears before Class is introduced.

    When no introduction pattern matches at all the email passes, so emails
    that refer to the company implicitly are not rejected.
    """
    intro_offset = company_introduction_offset(text)
    if intro_offset == -1:
        return True

    for match in PLURAL_PRONOUN.finditer(text):
        if match.start() < intro_offset:
            return False
    return True


def has_valid_cta(text: str) -> bool:
    """True when no banned call-to-action pattern appears."""
    return first_match(BANNED_CTAS, text) is None


def has_warmth_phrase(text: str, email_number: int) -> bool:
    """True when a warmth phrase is present, or the email is not the last one."""
    if email_number != SEQUENCE_LENGTH:
        return True
    return first_match(WARMTH_PHRASES, text) is not None


def has_banned_phrases(text: str) -> List[str]:
    """Explanations for every banned phrase found."""
    return all_matches(BANNED_PHRASES, text)


def has_valid_signature(text: str, signer: str = SIGNER_FIRST_NAME) -> bool:
    """True when the last non-empty line is exactly the signer's first name."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return False
    return lines[-1].lower() == signer.lower()


def has_valid_subject(subject: str) -> bool:
    return not subject.lower().startswith('re:')


# =============================================================================
# Validators
# =============================================================================

def _as_mapping(email: Any) -> Mapping[str, Any]:
    if isinstance(email, Mapping):
        return email
    if hasattr(email, 'model_dump'):
        return email.model_dump()
    raise TypeError(f"Unsupported email object: {type(email).__name__}")


def validate_email(
    email: Any,
    min_words: int = MIN_WORDS,
    max_words: int = MAX_WORDS,
    require_warmth_phrase: bool = True,
) -> ValidationResult:
    """
    Validate one email against the rulebook.

    Args:
        email: EmailVariant model or mapping with ``body``, ``subject_line``
            and ``email_number``
        min_words: Inclusive lower word bound
        max_words: Inclusive upper word bound
        require_warmth_phrase: Enforce the final-email warmth phrase

    Returns:
        ValidationResult with one entry per check
    """
    data = _as_mapping(email)
    body = str(data.get('body') or '')
    subject = str(data.get('subject_line') or '')
    email_number = data.get('email_number')

    checks: Dict[str, bool] = {}
    failures: List[str] = []
    suggestions: List[str] = []

    # 1. Word count
    word_count = count_words(body)
    checks['word_count_valid'] = min_words <= word_count <= max_words
    if not checks['word_count_valid']:
        if word_count < min_words:
            shortfall = min_words - word_count
            failures.append(f"Word count {word_count} outside range {min_words}-{max_words} ({shortfall} words short)")
            suggestions.append(f"Add {shortfall} more words to meet minimum")
        else:
            excess = word_count - max_words
            failures.append(f"Word count {word_count} outside range {min_words}-{max_words} ({excess} words over)")
            suggestions.append(f"Remove {excess} words to meet maximum")

    # 2. Contractions
    checks['contractions_used'] = not has_contraction_issues(body)
    if not checks['contractions_used']:
        failures.append('Uncontracted phrases detected (e.g., "I am" instead of "I\'m")')
        suggestions.append("Use contractions: I'm, you're, that's, it's, can't, won't, don't")

    # 3. KLAS introduction
    checks['klas_intro_valid'] = has_valid_klas_intro(body)
    if not checks['klas_intro_valid']:
        failures.append('KLAS mentioned without proper introduction')
        suggestions.append(
            'First KLAS mention must include: "KLAS Research—which surveyed 500,000+ clinicians '
            'across 300 healthcare organizations—found that..."'
        )

    # 4. "We" timing
    checks['we_timing_valid'] = has_valid_we_timing(body)
    if not checks['we_timing_valid']:
        failures.append(f'"We" used before {COMPANY_NAME} was introduced')
        suggestions.append(
            'Introduce Class by name before using "we": "That\'s why I\'m reaching out about '
            'Class—a virtual classroom platform. The challenge we hear..."'
        )

    # 5. CTA
    checks['cta_valid'] = has_valid_cta(body)
    if not checks['cta_valid']:
        failures.append('CTA contains banned patterns (e.g., "20 minutes", specific day/time)')
        suggestions.append(
            'Use conversational CTAs: "Is it worth a quick conversation? Let me know when works best for you."'
        )

    # 6. Warmth phrase
    if require_warmth_phrase:
        checks['warmth_phrase_valid'] = has_warmth_phrase(body, email_number)
    else:
        checks['warmth_phrase_valid'] = True
    if not checks['warmth_phrase_valid']:
        failures.append(f'Email {SEQUENCE_LENGTH} missing warmth phrase')
        suggestions.append(
            'Add warmth phrase: "Even if the timing isn\'t right over the next few months, '
            'I hope these findings are useful context for your planning."'
        )

    # 7. Banned phrases
    banned_found = has_banned_phrases(body)
    checks['no_banned_phrases'] = not banned_found
    if banned_found:
        failures.append(f"Banned phrases found: {len(banned_found)}")
        suggestions.extend(banned_found)

    # 8. Signature
    checks['signature_valid'] = has_valid_signature(body)
    if not checks['signature_valid']:
        failures.append(f'Email not signed "{SIGNER_FIRST_NAME}" on last line')
        suggestions.append(f'End email with just "{SIGNER_FIRST_NAME}" (first name only)')

    # 9. Subject
    checks['subject_valid'] = has_valid_subject(subject)
    if not checks['subject_valid']:
        failures.append('Subject line starts with "Re:"')
        suggestions.append('Each email needs a unique subject line, no "Re:" prefix')

    return ValidationResult(
        passed=not failures,
        checks=checks,
        failures=failures,
        suggestions=suggestions,
    )


def validate_sequence(
    emails: Sequence[Any],
    min_words: int = MIN_WORDS,
    max_words: int = MAX_WORDS,
    require_warmth_phrase: bool = True,
) -> ValidationResult:
    """
    Validate a full sequence: length, angle order, then every email.

    Per-email checks are namespaced as ``E{n}_{check}``; per-email failures
    and suggestions are prefixed with the email number.
    """
    all_checks: Dict[str, bool] = {}
    all_failures: List[str] = []
    all_suggestions: List[str] = []

    mappings = [_as_mapping(email) for email in emails]

    all_checks['sequence_length_valid'] = len(mappings) == SEQUENCE_LENGTH
    if not all_checks['sequence_length_valid']:
        all_failures.append(f"Sequence has {len(mappings)} emails, expected {SEQUENCE_LENGTH}")
        all_suggestions.append(f"Generate exactly {SEQUENCE_LENGTH} emails per sequence")

    actual_angles = [str(getattr(email.get('angle'), 'value', email.get('angle'))) for email in mappings]
    all_checks['angle_order_valid'] = actual_angles == EXPECTED_ANGLES
    if not all_checks['angle_order_valid']:
        all_failures.append(
            f"Angle order incorrect: expected {'->'.join(EXPECTED_ANGLES)}, got {'->'.join(actual_angles)}"
        )
        all_suggestions.append('Emails must follow angle order: E1=timing, E2=challenge, E3=outcome')

    for position, email in enumerate(mappings, start=1):
        number = email.get('email_number') or position
        result = validate_email(
            email,
            min_words=min_words,
            max_words=max_words,
            require_warmth_phrase=require_warmth_phrase,
        )
        for key, value in result.checks.items():
            all_checks[f"E{number}_{key}"] = value
        if not result.passed:
            all_failures.append(f"Email {number}: {'; '.join(result.failures)}")
            all_suggestions.extend(f"E{number}: {suggestion}" for suggestion in result.suggestions)

    return ValidationResult(
        passed=not all_failures,
        checks=all_checks,
        failures=all_failures,
        suggestions=all_suggestions,
    )
