from abm_email_local.config.prompts import (
    PromptManager,
    build_system_prompt,
    build_timing_context,
    build_user_prompt,
    persona_category,
    variant_id_prefix,
)
from abm_email_local.config.settings import ConfigManager
from abm_email_local.schemas import GenerationConfig


ACCOUNT = {
    "index": 7,
    "company_name": "Riverside Health",
    "tier": "Tier 1",
    "ehr_system": "Epic",
    "employee_count": 12000,
    "key_timing_signals": "Epic migration underway",
    "timing_signals": "Epic go-live planned for Q3",
}

CONTACT = {
    "contact_id": "RIV-A",
    "full_name": "Jane Park",
    "first_name": "Jane",
    "title": "Chief Learning Officer",
    "email": "jane.park@riverside.example",
    "persona_match": "Clinical Education",
}


def test_system_prompt_is_the_rulebook():
    prompt = build_system_prompt()

    assert "Class Technologies" in prompt
    assert "KLAS Research" in prompt
    assert "Dalton" in prompt


def test_persona_category():
    assert persona_category("IT Leader") == "it"
    assert persona_category("Digital Transformation") == "it"
    assert persona_category("Nursing Leadership") == "clinical"
    assert persona_category("HR Leader") == "general"
    assert persona_category(None) == "general"


def test_persona_category_uses_plain_substring_match():
    # "it" inside "Quality" wins before any clinical keyword
    assert persona_category("Quality and Clinical Outcomes") == "it"


def test_variant_id_prefix():
    assert variant_id_prefix(7, "RIV-A") == "007-A"
    assert variant_id_prefix(123, "JOHN-BC") == "123-BC"


def test_user_prompt_contains_account_and_contact_context():
    prompt = build_user_prompt(ACCOUNT, CONTACT)

    assert prompt.startswith("## GENERATE 3-EMAIL SDR SEQUENCE")
    assert "**Company:** Riverside Health" in prompt
    assert "**Employees:** 12,000" in prompt
    assert "**Name:** Jane Park (First name: Jane)" in prompt
    assert '- variant_id format: "007-A-E{1|2|3}"' in prompt
    assert "- Each email: 150-200 words" in prompt
    assert "- Include warmth phrase in Email 3" in prompt
    assert "Persona Guidance: Clinical/Education Leader" in prompt
    assert prompt.endswith("Generate the 3-email JSON sequence now.")


def test_user_prompt_omits_absent_optional_fields():
    prompt = build_user_prompt(ACCOUNT, CONTACT)

    assert "**EHR Timeline:**" not in prompt
    assert "**Department:**" not in prompt
    assert "### Recent News" not in prompt


def test_user_prompt_follows_generation_config():
    config = GenerationConfig(min_words=120, max_words=180, include_klas_evidence=False, require_warmth_phrase=False)

    prompt = build_user_prompt(ACCOUNT, CONTACT, config)

    assert "- Each email: 120-180 words" in prompt
    assert "- Do not cite KLAS research in this sequence" in prompt
    assert "Include warmth phrase" not in prompt


def test_structured_timing_replaces_raw_signals():
    account = dict(ACCOUNT, structured_timing={
        "initiative": "Epic Optimization",
        "timing": "Q3 2026",
        "why_class_fits": "Virtual sessions for 4,000 nurses",
    })

    context = build_timing_context(account)

    assert "### EHR Training Initiative" in context
    assert "**Why Class Fits:** Virtual sessions for 4,000 nurses" in context
    assert "### Timing Signals" not in context


def test_raw_timing_signals():
    context = build_timing_context(ACCOUNT)

    assert context.startswith("### Timing Signals")
    assert "**Key Signals:** Epic migration underway" in context
    assert "**Raw Signals:** Epic go-live planned for Q3" in context


def test_prompt_manager_overrides(tmp_path):
    config_manager = ConfigManager(str(tmp_path))
    config_manager.save_config("prompts", {
        "system_prompt": "Custom rulebook",
        "user_prompt_suffix": "Keep it brief.",
    })
    manager = PromptManager(config_manager)

    assert manager.get_system_prompt() == "Custom rulebook"
    assert manager.get_user_prompt(ACCOUNT, CONTACT).endswith("\n\nKeep it brief.")


def test_prompt_manager_defaults_without_config():
    manager = PromptManager()

    assert manager.get_system_prompt() == build_system_prompt()
