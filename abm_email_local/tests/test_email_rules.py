import pytest

from abm_email_local.utils.email_rules import (
    has_banned_phrases,
    has_valid_cta,
    has_valid_klas_intro,
    has_valid_signature,
    has_valid_we_timing,
    has_warmth_phrase,
    validate_email,
    validate_sequence,
)

from conftest import make_body, make_email, make_sequence


class TestValidateEmail:
    def test_well_formed_email_passes_every_check(self):
        result = validate_email(make_email(1))

        assert result.passed
        assert result.failures == []
        assert all(result.checks.values())
        assert set(result.checks) == {
            "word_count_valid", "contractions_used", "klas_intro_valid", "we_timing_valid",
            "cta_valid", "warmth_phrase_valid", "no_banned_phrases", "signature_valid", "subject_valid",
        }

    def test_short_email_reports_shortfall(self):
        email = make_email(1, body=make_body(140))

        result = validate_email(email)

        assert not result.checks["word_count_valid"]
        assert "10 words short" in result.failures[0]
        assert "Add 10 more words to meet minimum" in result.suggestions

    def test_long_email_reports_excess(self):
        result = validate_email(make_email(1, body=make_body(205)))

        assert not result.checks["word_count_valid"]
        assert "Remove 5 words to meet maximum" in result.suggestions

    def test_custom_word_bounds(self):
        email = make_email(1, body=make_body(120))

        assert validate_email(email, min_words=100, max_words=150).checks["word_count_valid"]
        assert not validate_email(email).checks["word_count_valid"]

    def test_uncontracted_phrase_fails(self):
        body = make_body(170).replace("Hi Jane,", "Hi Jane, I am")
        result = validate_email(make_email(1, body=body))

        assert not result.checks["contractions_used"]

    def test_missing_warmth_phrase_only_matters_for_final_email(self):
        email = make_email(3, body=make_body(170))

        assert not validate_email(email).checks["warmth_phrase_valid"]
        assert validate_email(email, require_warmth_phrase=False).checks["warmth_phrase_valid"]
        assert validate_email(make_email(2)).checks["warmth_phrase_valid"]

    def test_reply_subject_fails(self):
        result = validate_email(make_email(1, subject_line="Re: training plan"))

        assert not result.checks["subject_valid"]
        assert 'Subject line starts with "Re:"' in result.failures

    def test_banned_phrase_explanations_become_suggestions(self):
        body = make_body(170).replace("Hi Jane,", "Hi Jane, one more thought:")
        result = validate_email(make_email(1, body=body))

        assert not result.checks["no_banned_phrases"]
        assert "Feels pestering" in result.suggestions

    def test_rejects_non_mapping_input(self):
        with pytest.raises(TypeError):
            validate_email(42)


class TestIndividualChecks:
    def test_klas_absent_is_valid(self):
        assert has_valid_klas_intro("Training gaps are common after go-live.")

    def test_klas_shorthand_first_mention_is_invalid(self):
        assert not has_valid_klas_intro("Recent KLAS data shows training gaps.")

    def test_klas_full_introduction_is_valid(self):
        text = (
            "KLAS Research—which surveyed 500,000+ clinicians across 300 healthcare "
            "organizations—found that training matters. KLAS data shows more."
        )
        assert has_valid_klas_intro(text)

    def test_klas_unrecognised_first_mention_is_let_through(self):
        assert has_valid_klas_intro("KLAS has published findings on onboarding.")

    def test_we_before_company_introduction(self):
        assert not has_valid_we_timing("We see this often. That's why I'm reaching out about Class, a platform.")
        assert has_valid_we_timing("I'm reaching out about Class, a platform. We see this often.")

    def test_we_without_any_introduction_passes(self):
        assert has_valid_we_timing("We see this often across health systems.")

    def test_your_is_not_a_plural_pronoun(self):
        assert has_valid_we_timing("Your team is busy. I'm reaching out about Class, a platform.")

    def test_banned_cta(self):
        assert not has_valid_cta("Does Tuesday work for 20 minutes?")
        assert has_valid_cta("Is it worth a quick conversation? Let me know when works best for you.")

    def test_warmth_phrase_variants(self):
        assert has_warmth_phrase("Even if now isn't the right time, this may help.", 3)
        assert not has_warmth_phrase("Let me know what you think.", 3)
        assert has_warmth_phrase("Let me know what you think.", 1)

    def test_banned_phrases_listed_in_table_order(self):
        found = has_banned_phrases("A deployment layer with competency verification.")
        assert found == [
            'Use "embedded assessments" instead of "competency verification"',
            "Confusing terminology",
        ]

    def test_signature(self):
        assert has_valid_signature("Hi Jane,\n\nBody text.\n\nDalton\n")
        assert not has_valid_signature("Hi Jane,\n\nBody text.\n\nDalton Smith")
        assert not has_valid_signature("   \n  ")


class TestValidateSequence:
    def test_valid_sequence_passes(self):
        result = validate_sequence(make_sequence())

        assert result.passed
        assert result.checks["sequence_length_valid"]
        assert result.checks["angle_order_valid"]
        assert result.checks["E3_warmth_phrase_valid"]

    def test_wrong_length(self):
        result = validate_sequence(make_sequence()[:2])

        assert not result.passed
        assert "Sequence has 2 emails, expected 3" in result.failures

    def test_wrong_angle_order(self):
        emails = make_sequence()
        emails[0]["angle"], emails[1]["angle"] = "challenge", "timing"

        result = validate_sequence(emails)

        assert not result.checks["angle_order_valid"]
        assert any(f.startswith("Angle order incorrect") for f in result.failures)

    def test_per_email_failures_are_prefixed(self):
        emails = make_sequence()
        emails[1]["subject_line"] = "Re: following up"

        result = validate_sequence(emails)

        assert not result.checks["E2_subject_valid"]
        assert any(f.startswith("Email 2:") for f in result.failures)
        assert any(s.startswith("E2:") for s in result.suggestions)

    def test_to_dict_is_plain_data(self):
        data = validate_sequence(make_sequence()).to_dict()

        assert data["passed"] is True
        assert isinstance(data["checks"], dict)
        assert data["failures"] == []
