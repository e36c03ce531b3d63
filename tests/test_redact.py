from __future__ import annotations

import pytest

from pycourier._redact import REDACTED, mask_phone, redact_for_log


def test_secrets_are_dropped() -> None:
    payload = {
        "orderId": "a",
        "deliveryToken": "4821",
        "authorization": "Bearer abc",
        "items": [{"accessToken": "xyz", "note": "ok"}],
        "account-number": "0123456789",
    }

    redacted = redact_for_log(payload)
    assert redacted["orderId"] == "a"
    assert redacted["deliveryToken"] == REDACTED
    assert redacted["authorization"] == REDACTED
    assert redacted["items"][0] == {"accessToken": REDACTED, "note": "ok"}
    assert redacted["account-number"] == REDACTED


def test_phone_numbers_keep_last_four_digits() -> None:
    redacted = redact_for_log(
        {"contactPerson": {"name": "Tunde", "phone": "+234 803 000 1234", "alternate_phone": "0700", "email": None}}
    )
    contact = redacted["contactPerson"]
    assert contact["name"] == "Tunde"
    assert contact["phone"] == "***1234"
    assert contact["alternate_phone"] == REDACTED
    assert contact["email"] is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("08030001234", "***1234"), (8030001234, "***1234"), ("12", REDACTED), ("", REDACTED)],
)
def test_mask_phone(raw: object, expected: str) -> None:
    assert mask_phone(raw) == expected


def test_coordinates_are_coarsened() -> None:
    redacted = redact_for_log({"locationDetails": {"lat": 6.524412, "lng": 3.379218, "accuracy": 8.5}})
    assert redacted["locationDetails"] == {"lat": 6.524, "lng": 3.379, "accuracy": 8.5}


def test_long_strings_and_bytes_are_summarised() -> None:
    redacted = redact_for_log({"notes": "x" * 600, "photo": b"\x00" * 32}, max_string=10)
    assert redacted["notes"] == "x" * 10 + "…<truncated 590 chars>"
    assert redacted["photo"] == "<bytes:32b>"


def test_original_is_left_untouched() -> None:
    payload = {"token": "secret", "pickup": {"lat": 6.524412}}
    redact_for_log(payload)
    assert payload == {"token": "secret", "pickup": {"lat": 6.524412}}
