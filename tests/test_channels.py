"""Tests for channel addressing."""

from __future__ import annotations

import pytest

from guardianlink.core.channels import (
    SEPARATOR,
    alert_channel,
    alert_id_from_channel,
    channel_path,
    derive_channel,
    is_pair_member,
    is_valid_channel,
    make_alert_id,
    pair_participants,
    sanitize_segment,
)

ILLEGAL = set(".@#$/[]")

PAIRS = [
    ("alice@example.com", "bob@example.com"),
    ("Alice@Example.COM", "bob@example.com"),
    ("  carol@mail.org ", "dave.smith@mail.org"),
    ("a#b$c@x.y", "[weird]/name@z.io"),
    ("same@example.com", "same@example.com"),
    ("colon:user@example.com", "tilde~user@example.com"),
]


@pytest.mark.parametrize("a,b", PAIRS)
def test_derive_channel_is_symmetric(a, b):
    assert derive_channel(a, b) == derive_channel(b, a)


@pytest.mark.parametrize("a,b", PAIRS)
def test_derive_channel_has_no_illegal_characters(a, b):
    key = derive_channel(a, b)
    assert not ILLEGAL & set(key)
    assert ":" not in key
    assert key.count(SEPARATOR) == 1


def test_derive_channel_ignores_case_and_whitespace():
    assert derive_channel("ALICE@example.com ", "bob@example.com") == \
        derive_channel("alice@example.com", "BOB@EXAMPLE.COM")


def test_derive_channel_format():
    assert derive_channel("bob@example.com", "alice@example.com") == \
        "alice_example_com~bob_example_com"


def test_separator_cannot_be_forged():
    # Without sanitising the separator these two pairs would share a key.
    assert derive_channel("a~b", "c") != derive_channel("a", "b~c")


def test_alert_channel_namespace_is_disjoint():
    key = alert_channel("alert_alice_example_com_1700000000000")
    assert key.startswith("alert:")
    assert alert_id_from_channel(key) == "alert_alice_example_com_1700000000000"
    assert pair_participants(key) is None
    # A pairwise key can never start with the alert prefix.
    assert not derive_channel("alert:x", "y").startswith("alert:")


def test_alert_id_from_pair_channel_is_none():
    assert alert_id_from_channel(derive_channel("a@x.com", "b@x.com")) is None


def test_pair_membership():
    key = derive_channel("alice@example.com", "bob@example.com")
    assert is_pair_member(key, "Alice@Example.com")
    assert is_pair_member(key, "bob@example.com")
    assert not is_pair_member(key, "mallory@example.com")


def test_is_valid_channel():
    assert is_valid_channel(derive_channel("a@x.com", "b@x.com"))
    assert is_valid_channel(alert_channel("alert_a_1"))
    assert not is_valid_channel("alert:")
    assert not is_valid_channel("no-separator")
    assert not is_valid_channel("a.b~c")
    assert not is_valid_channel("a~b~c")


def test_sanitize_segment():
    assert sanitize_segment("a.b@c#d$e/f[g]h i") == "a_b_c_d_e_f_g_h_i"


def test_make_alert_id_is_deterministic():
    assert make_alert_id("Alice@Example.com", 42) == make_alert_id("alice@example.com", 42)
    assert make_alert_id("alice@example.com", 42) == "alert_alice_example_com_42"


def test_channel_path():
    assert channel_path("a~b") == "channels/a~b/updates"
