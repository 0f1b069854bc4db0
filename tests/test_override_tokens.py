"""Tests for the signed override token format."""
import base64
import json
from datetime import timedelta

import pytest

from kennel.services.override_tokens import PAYLOAD_FIELDS, OverrideTokenCodec

from conftest import TEST_SECRET


def issue(codec, clock, minutes=15, **overrides):
    kwargs = dict(
        issued_by="admin1",
        issued_to="staff1",
        scope="POLICY_BYPASS",
        entity_type="booking",
        entity_id="b1",
        expires_at=clock.now + timedelta(minutes=minutes),
    )
    kwargs.update(overrides)
    return codec.issue(**kwargs)


def decode(token):
    return json.loads(base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)))


class TestIssueAndVerify:
    """A freshly issued token verifies and carries its payload."""

    def test_round_trip(self, codec, clock):
        token, nonce = issue(codec, clock)

        verification = codec.verify(token)

        assert verification.valid is True
        assert verification.payload["nonce"] == nonce
        assert verification.payload["scope"] == "POLICY_BYPASS"
        assert verification.payload["entityType"] == "booking"
        assert verification.payload["entityId"] == "b1"
        assert verification.payload["issuedTo"] == "staff1"
        assert verification.payload["issuedBy"] == "admin1"
        assert set(verification.payload) == set(PAYLOAD_FIELDS)

    def test_token_is_base64url_without_padding(self, codec, clock):
        token, _ = issue(codec, clock)

        assert "=" not in token
        assert "+" not in token and "/" not in token
        assert "signature" in decode(token)

    def test_nonces_are_unique(self, codec, clock):
        nonces = {issue(codec, clock)[1] for _ in range(50)}

        assert len(nonces) == 50
        assert all(len(n) == 32 for n in nonces)

    def test_enum_values_are_accepted_for_scope(self, codec, clock):
        from kennel.models.enums import OverrideScope

        token, _ = issue(codec, clock, scope=OverrideScope.REFUND)

        assert codec.verify(token).payload["scope"] == "REFUND"

    def test_empty_secret_is_rejected(self):
        with pytest.raises(ValueError):
            OverrideTokenCodec("")


class TestTamperResistance:
    """Any change to a token makes it invalid."""

    def test_every_single_character_change_is_rejected(self, codec, clock):
        token, _ = issue(codec, clock)

        for position in range(len(token)):
            replacement = "A" if token[position] != "A" else "B"
            tampered = token[:position] + replacement + token[position + 1:]
            assert codec.verify(tampered).valid is False, position

    def test_other_secret_is_rejected(self, codec, clock):
        token, _ = issue(codec, clock)
        other = OverrideTokenCodec(TEST_SECRET + "-rotated", clock=clock)

        assert other.verify(token).valid is False

    def test_resigned_payload_with_changed_field_is_rejected(self, codec, clock):
        token, _ = issue(codec, clock)
        body = decode(token)
        body["entityId"] = "b2"
        forged = base64.urlsafe_b64encode(
            json.dumps(body, separators=(",", ":")).encode()
        ).rstrip(b"=").decode()

        assert codec.verify(forged).valid is False

    def test_extra_field_is_rejected(self, codec, clock):
        token, _ = issue(codec, clock)
        body = decode(token)
        body["role"] = "OWNER"
        forged = base64.urlsafe_b64encode(
            json.dumps(body, separators=(",", ":")).encode()
        ).rstrip(b"=").decode()

        assert codec.verify(forged).valid is False

    def test_padded_token_is_rejected(self, codec, clock):
        token, _ = issue(codec, clock)

        assert codec.verify(token + "==").valid is False

    @pytest.mark.parametrize("garbage", [
        "",
        "not-a-token",
        "!!!!",
        "e30",  # {}
        "W10",  # []
        "bnVsbA",  # null
        "éééé",
        None,
        12345,
        b"bytes",
    ])
    def test_malformed_input_never_raises(self, codec, garbage):
        assert codec.verify(garbage).valid is False


class TestExpiry:
    """Tokens stop verifying at their expiry instant."""

    def test_valid_just_before_expiry(self, codec, clock):
        token, _ = issue(codec, clock, minutes=1)
        clock.advance(seconds=59)

        assert codec.verify(token).valid is True

    def test_invalid_at_expiry(self, codec, clock):
        token, _ = issue(codec, clock, minutes=1)
        clock.advance(minutes=1)

        assert codec.verify(token).valid is False

    def test_invalid_after_expiry(self, codec, clock):
        token, _ = issue(codec, clock, minutes=15)
        clock.advance(hours=1)

        assert codec.verify(token).valid is False


class TestHash:
    """Only the keyed hash of a token is ever stored."""

    def test_hash_is_deterministic_hex(self, codec, clock):
        token, _ = issue(codec, clock)

        assert codec.hash(token) == codec.hash(token)
        assert len(codec.hash(token)) == 64
        int(codec.hash(token), 16)

    def test_hash_differs_per_token_and_secret(self, codec, clock):
        first, _ = issue(codec, clock)
        second, _ = issue(codec, clock)
        other = OverrideTokenCodec(TEST_SECRET + "-rotated", clock=clock)

        assert codec.hash(first) != codec.hash(second)
        assert codec.hash(first) != other.hash(first)
