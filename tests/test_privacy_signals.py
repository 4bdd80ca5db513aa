"""Tests for the Privacy Signal Detector."""

from smart_router.core.privacy_signals import (
    PrivacyDomain,
    detect_privacy_signals,
    fold_diacritics,
)


class TestIdentifierPatterns:
    """Hard identifiers force privacy on their own."""

    def test_ssn_detected(self):
        """SSN-shaped numbers are flagged and require privacy."""
        signals = detect_privacy_signals("My SSN is 123-45-6789, can you help?")
        assert signals.patterns["ssn"] is True
        assert signals.requires_privacy is True
        assert PrivacyDomain.PERSONAL in signals.domains

    def test_email_detected(self):
        signals = detect_privacy_signals("Reach me at jane.doe@example.com tomorrow")
        assert signals.patterns["email"] is True
        assert signals.requires_privacy is True
        assert PrivacyDomain.PERSONAL in signals.domains

    def test_phone_detected(self):
        signals = detect_privacy_signals("Call (555) 123-4567 after lunch")
        assert signals.patterns["phone"] is True
        assert signals.requires_privacy is True

    def test_credit_card_detected(self):
        """Card numbers mark the request financial."""
        signals = detect_privacy_signals("Charge 4111 1111 1111 1111 for the order")
        assert signals.patterns["cc"] is True
        assert PrivacyDomain.FINANCIAL in signals.domains
        assert signals.requires_privacy is True

    def test_iban_detected_in_upper_case(self):
        signals = detect_privacy_signals("Wire it to GB82WEST12345698765432 please")
        assert signals.patterns["iban"] is True
        assert PrivacyDomain.FINANCIAL in signals.domains

    def test_medical_record_number_detected(self):
        signals = detect_privacy_signals("Pull up MRN: 00482913 for review")
        assert signals.patterns["mrn"] is True
        assert PrivacyDomain.MEDICAL in signals.domains
        assert signals.requires_privacy is True

    def test_routing_number_needs_context(self):
        """A bare nine-digit number is not a routing number."""
        plain = detect_privacy_signals("Order 123456789 shipped yesterday")
        assert plain.patterns["routing9"] is False
        assert plain.requires_privacy is False

        banked = detect_privacy_signals("The routing number is 021000021")
        assert banked.patterns["routing9"] is True
        assert banked.requires_privacy is True


class TestDomainKeywords:
    """Keywords mark domains but do not force privacy."""

    def test_medical_keywords(self):
        signals = detect_privacy_signals("Summarize the patient diagnosis notes")
        assert signals.domains == (PrivacyDomain.MEDICAL,)
        assert signals.keywords["medical"] is True
        assert signals.requires_privacy is False

    def test_financial_keywords(self):
        signals = detect_privacy_signals("How do I read my bank statement?")
        assert PrivacyDomain.FINANCIAL in signals.domains
        assert signals.requires_privacy is False

    def test_keywords_respect_word_boundaries(self):
        """'pinned' and 'shipping' do not match 'pin' and 'phi'."""
        signals = detect_privacy_signals("The pinned issue covers shipping delays")
        assert signals.domains == ()
        assert signals.has_signals is False

    def test_diacritics_are_folded(self):
        signals = detect_privacy_signals("Pátient diagnósis follow-up")
        assert PrivacyDomain.MEDICAL in signals.domains

    def test_clean_text_has_no_signals(self):
        signals = detect_privacy_signals("What is the capital of France?")
        assert signals.requires_privacy is False
        assert signals.domains == ()
        assert not any(signals.patterns.values())
        assert not any(signals.keywords.values())


class TestContentFreeOutput:
    def test_to_dict_carries_flags_only(self):
        """Matched text never appears in the serialized signals."""
        text = "SSN 123-45-6789 and email jane@example.com"
        data = detect_privacy_signals(text).to_dict()

        assert set(data) == {"requires_privacy", "domains", "patterns", "keywords"}
        flattened = repr(data)
        assert "123-45-6789" not in flattened
        assert "jane@example.com" not in flattened
        assert all(isinstance(v, bool) for v in data["patterns"].values())

    def test_fold_diacritics(self):
        assert fold_diacritics("Crème Brûlée") == "creme brulee"
        assert fold_diacritics("Crème", lower=False) == "Creme"
