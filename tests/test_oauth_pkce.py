"""Tests for PKCE (Proof Key for Code Exchange) implementation."""

import base64
import hashlib
import re

import pytest

from authtool.oauth.pkce import (
    DEFAULT_VERIFIER_LENGTH,
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    PKCEPair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce_pair,
    generate_state,
)


class TestGenerateCodeVerifier:
    """Tests for code verifier generation."""

    def test_default_is_128_hex_characters(self):
        """Test that the default verifier is 64 random bytes as hex."""
        verifier = generate_code_verifier()
        assert len(verifier) == DEFAULT_VERIFIER_LENGTH == 128
        assert re.fullmatch(r"[0-9a-f]{128}", verifier)

    def test_custom_even_length(self):
        """Test generating verifier with a custom even length."""
        assert len(generate_code_verifier(length=64)) == 64

    def test_minimum_length_is_accepted_when_even(self):
        """43 is the RFC minimum; the first even length above it works."""
        assert len(generate_code_verifier(length=MIN_VERIFIER_LENGTH + 1)) == 44

    def test_odd_length_raises_error(self):
        """Hex output always has an even length."""
        with pytest.raises(ValueError, match="even"):
            generate_code_verifier(length=MIN_VERIFIER_LENGTH)

    def test_too_short_raises_error(self):
        with pytest.raises(ValueError, match="must be between"):
            generate_code_verifier(length=MIN_VERIFIER_LENGTH - 1)

    def test_too_long_raises_error(self):
        with pytest.raises(ValueError, match="must be between"):
            generate_code_verifier(length=MAX_VERIFIER_LENGTH + 2)

    def test_randomness(self):
        """Test that verifiers are random (not deterministic)."""
        verifiers = [generate_code_verifier() for _ in range(10)]
        assert len(set(verifiers)) == 10


class TestGenerateCodeChallenge:
    """Tests for S256 code challenge generation."""

    def test_matches_rfc7636_appendix_b(self):
        """Test the worked example from RFC 7636 Appendix B."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_is_unpadded_base64url_of_sha256(self):
        verifier = generate_code_verifier()
        challenge = generate_code_challenge(verifier)

        digest = hashlib.sha256(verifier.encode("utf-8")).digest()
        expected = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        assert challenge == expected

    def test_contains_no_padding_or_standard_base64_characters(self):
        for _ in range(20):
            challenge = generate_code_challenge(generate_code_verifier())
            assert len(challenge) == 43
            assert "=" not in challenge
            assert "+" not in challenge
            assert "/" not in challenge

    def test_deterministic(self):
        verifier = generate_code_verifier()
        assert generate_code_challenge(verifier) == generate_code_challenge(verifier)


class TestGeneratePKCEPair:
    """Tests for generating complete PKCE pairs."""

    def test_generates_valid_pair(self):
        pair = generate_pkce_pair()

        assert isinstance(pair, PKCEPair)
        assert len(pair.verifier) == 128
        assert pair.challenge == generate_code_challenge(pair.verifier)
        assert pair.method == "S256"

    def test_pairs_are_unique(self):
        pairs = {generate_pkce_pair().verifier for _ in range(5)}
        assert len(pairs) == 5


class TestGenerateState:
    """Tests for state parameter generation."""

    def test_generates_hex_string(self):
        state = generate_state()
        assert len(state) == 32
        assert re.match(r"^[0-9a-f]+$", state)

    def test_randomness(self):
        states = [generate_state() for _ in range(10)]
        assert len(set(states)) == 10
