"""Unit tests for credential_models module.

These tests verify:
- Control-prefix stripping of stored token values
- Credential validation (both tokens required)
- Immutability (frozen dataclass)
- Cache record conversion and masking
"""

from dataclasses import FrozenInstanceError

import pytest

from dslsync.credential_models import Credential, strip_control_prefix


class TestStripControlPrefix:
    """Test strip_control_prefix()."""

    def test_strips_leading_control_bytes(self):
        """Test framing bytes before the payload are removed."""
        assert strip_control_prefix("\x01\x00token") == "token"

    def test_keeps_inner_control_bytes(self):
        """Test only the prefix is stripped."""
        assert strip_control_prefix("to\x01ken") == "to\x01ken"

    def test_plain_value_unchanged(self):
        """Test values without a prefix pass through."""
        assert strip_control_prefix("eyJhbGci") == "eyJhbGci"


class TestCredential:
    """Test Credential dataclass."""

    def test_valid_credential(self):
        """Test construction with two tokens."""
        credential = Credential(session_token="sess", refresh_token="ref")

        assert credential.session_token == "sess"
        assert credential.refresh_token == "ref"

    def test_control_prefix_stripped_on_construction(self):
        """Test raw store values are normalized."""
        credential = Credential(session_token="\x01sess", refresh_token="\x01ref")

        assert credential.session_token == "sess"
        assert credential.refresh_token == "ref"

    @pytest.mark.parametrize(
        "session_token,refresh_token",
        [("", "ref"), ("sess", ""), ("\x01", "ref"), (None, "ref")],
    )
    def test_both_tokens_required(self, session_token, refresh_token):
        """Test a credential cannot be half present."""
        with pytest.raises(ValueError):
            Credential(session_token=session_token, refresh_token=refresh_token)

    def test_immutable(self):
        """Test credentials are frozen."""
        credential = Credential(session_token="sess", refresh_token="ref")

        with pytest.raises(FrozenInstanceError):
            credential.session_token = "other"  # type: ignore[misc]

    def test_fingerprint_depends_on_session_token(self):
        """Test equal session tokens share a fingerprint."""
        a = Credential(session_token="sess", refresh_token="ref-1")
        b = Credential(session_token="sess", refresh_token="ref-2")
        c = Credential(session_token="other", refresh_token="ref-1")

        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint() != c.fingerprint()
        assert "sess" not in a.fingerprint()

    def test_to_dict_and_back(self):
        """Test the cache record format."""
        credential = Credential(session_token="sess", refresh_token="ref")

        record = credential.to_dict()

        assert record == {"sessionToken": "sess", "refreshToken": "ref"}
        assert Credential.from_dict(record) == credential

    def test_from_dict_rejects_incomplete_record(self):
        """Test a record missing a token is invalid."""
        with pytest.raises(ValueError):
            Credential.from_dict({"sessionToken": "sess"})

    def test_from_dict_rejects_non_mapping(self):
        """Test a record that is not an object is invalid."""
        with pytest.raises(ValueError):
            Credential.from_dict(["sess", "ref"])  # type: ignore[arg-type]

    def test_masked(self):
        """Test masked output never contains the full tokens."""
        credential = Credential(
            session_token="eyJhbGciOiJIUzI1NiJ9.payload", refresh_token="short"
        )

        masked = credential.to_dict_masked()

        assert masked == {"sessionToken": "eyJhbG****", "refreshToken": "****"}
