"""Tests for phone normalization."""

import pytest

from utils.phone_utils import mask_phone, normalize_phone, strip_channel_prefix


@pytest.mark.parametrize("raw,expected", [
    ("+13035550100", "+13035550100"),
    ("whatsapp:+13035550100", "+13035550100"),
    ("sms:+1 (303) 555-0100", "+13035550100"),
    ("303-555-0100", "+13035550100"),
    ("13035550100", "+13035550100"),
    ("+447700900123", "+447700900123"),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "555-0100", "whatsapp:", "+1234567890123456"])
def test_normalize_phone_rejects(raw):
    assert normalize_phone(raw) is None


def test_strip_channel_prefix_is_case_insensitive():
    assert strip_channel_prefix("WhatsApp:+13035550100") == "+13035550100"


def test_mask_phone():
    assert mask_phone("+13035550100") == "***0100"
    assert mask_phone(None) == "unknown"
