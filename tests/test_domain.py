import datetime
from decimal import Decimal

import pytest

from budget_reconciler.domain.periods import (
    advance_date,
    is_indefinite,
    match_window_days,
    monthly_equivalent,
)
from budget_reconciler.domain.text import (
    common_tokens,
    guess_name,
    loose_key,
    normalize_description,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("  NETFLIX.COM   4829 ", "netflix.com"),
        ("Amazon Prime #5521", "amazon prime"),
        ("Gym Membership *0042", "gym membership"),
        ("Insurance ref 77-12", "insurance"),
        ("Spotify AB*4411", "spotify ab*4411"),
        ("12345", "12345"),
    ],
)
def test_normalize_description(raw: str, expected: str) -> None:
    assert normalize_description(raw) == expected


def test_loose_key_drops_noise_and_digits() -> None:
    assert loose_key("VISA Spotify AB*4411") == loose_key("Spotify AB*9902") == "ab spotify"


def test_common_tokens_keeps_shared_words_in_order() -> None:
    tokens = common_tokens(["Adobe Creative Cloud 12", "ADOBE CREATIVE CLOUD PLAN", "adobe cloud creative"])
    assert tokens == ["adobe", "creative", "cloud"]


def test_guess_name_strips_card_and_company_noise() -> None:
    assert guess_name("NETFLIX.COM 4829") == "Netflix"
    assert guess_name("VISA Spotify AS") == "Spotify"
    assert guess_name("dropbox inc.") == "Dropbox"


def test_advance_date_clamps_month_end() -> None:
    assert advance_date(datetime.date(2024, 1, 31), "monthly") == datetime.date(2024, 2, 29)
    assert advance_date(datetime.date(2024, 1, 15), "quarterly") == datetime.date(2024, 4, 15)
    assert advance_date(datetime.date(2024, 2, 29), "annually") == datetime.date(2025, 2, 28)
    assert advance_date(datetime.date(2024, 1, 1), "custom", 14) == datetime.date(2024, 1, 15)


def test_monthly_equivalent() -> None:
    assert monthly_equivalent(Decimal("30"), "quarterly") == Decimal("10")
    assert monthly_equivalent(Decimal("120"), "annually") == Decimal("10")
    assert monthly_equivalent(Decimal("10"), "custom", 14).quantize(Decimal("0.01")) == Decimal("21.74")


def test_match_window_scales_with_period() -> None:
    assert match_window_days("monthly") == 7
    assert match_window_days("quarterly") == 21
    assert match_window_days("annually") == 84
    assert match_window_days("custom", 3) == 2


def test_is_indefinite() -> None:
    assert is_indefinite(datetime.date(9999, 12, 31))
    assert is_indefinite(None)
    assert not is_indefinite(datetime.date(2025, 1, 1))
