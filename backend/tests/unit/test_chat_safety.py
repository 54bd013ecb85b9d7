from __future__ import annotations

import pytest

from safechat.domain.chat.safety import ContentSafetyScanner


@pytest.fixture
def scanner() -> ContentSafetyScanner:
    return ContentSafetyScanner(allowed_link_domains=("safechat.app",))


@pytest.mark.parametrize("text", ["call me on 9876543210", "98765 43210", "+91 98765-43210"])
def test_phone_numbers_flagged(scanner: ContentSafetyScanner, text: str) -> None:
    flags = scanner.scan(text)
    assert flags.contains_phone
    assert flags.hits() == ["contains_phone"]


def test_short_digit_runs_are_not_phones(scanner: ContentSafetyScanner) -> None:
    assert not scanner.scan("meet at 10am, order 3 items for 450").any


@pytest.mark.parametrize(
    "text",
    ["see you 2024-01-15 10:30", "slot booked for 15/01/2024 09:45:00", "delivered 01.15.24 at 18:05"],
)
def test_dates_and_times_are_not_phones(scanner: ContentSafetyScanner, text: str) -> None:
    assert not scanner.scan(text).contains_phone


def test_phone_next_to_date_still_flagged(scanner: ContentSafetyScanner) -> None:
    assert scanner.scan("call 98765 43210 after 2024-01-15 10:30").contains_phone


def test_email_is_not_upi(scanner: ContentSafetyScanner) -> None:
    flags = scanner.scan("reach me at priya@example.com")
    assert flags.contains_email
    assert not flags.contains_upi


def test_upi_is_not_email(scanner: ContentSafetyScanner) -> None:
    flags = scanner.scan("pay the deposit to rahul@ybl today")
    assert flags.contains_upi
    assert not flags.contains_email


def test_unknown_upi_handle_ignored(scanner: ContentSafetyScanner) -> None:
    assert not scanner.scan("ping rahul@nobank").contains_upi


def test_links_to_allowed_domains_pass(scanner: ContentSafetyScanner) -> None:
    assert not scanner.scan("see https://safechat.app/help").contains_external_link
    assert not scanner.scan("see https://docs.safechat.app/rules.").contains_external_link


def test_external_links_flagged(scanner: ContentSafetyScanner) -> None:
    assert scanner.scan("details at www.example.com").contains_external_link
    assert scanner.scan("go to https://safechat.app.evil.io/login").contains_external_link


def test_keywords_match_case_insensitively_on_word_boundaries(scanner: ContentSafetyScanner) -> None:
    assert scanner.scan("Message me on WhatsApp").contains_suspicious_keywords
    assert scanner.scan("please Send   Money first").contains_suspicious_keywords
    assert not scanner.scan("whatsapping all day").contains_suspicious_keywords


def test_multiple_detectors_reported_together(scanner: ContentSafetyScanner) -> None:
    flags = scanner.scan("whatsapp 9876543210 or priya@example.com")
    assert flags.hits() == ["contains_phone", "contains_email", "contains_suspicious_keywords"]


def test_empty_text_is_clean(scanner: ContentSafetyScanner) -> None:
    assert not scanner.scan("").any


def test_phone_min_digits_validated() -> None:
    with pytest.raises(ValueError):
        ContentSafetyScanner(phone_min_digits=1)
