"""
Unit tests for the PKCE helpers.
"""

import re

import pytest

from oidc_access.app.pkce import get_code_challenge, get_code_verifier


class TestPKCE:
    """Test cases for code verifier and challenge generation."""

    def test_code_verifier_format(self):
        """Test verifiers are 43-128 unreserved characters."""
        verifier = get_code_verifier()

        assert 43 <= len(verifier) <= 128
        assert re.fullmatch(r"[A-Za-z0-9\-._~]+", verifier)

    def test_code_verifier_random(self):
        assert get_code_verifier() != get_code_verifier()

    def test_s256_challenge(self):
        """Test the S256 challenge against the RFC 7636 appendix B vector."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

        assert get_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_plain_challenge(self):
        assert get_code_challenge("VERIFIER", "plain") == "VERIFIER"

    def test_unsupported_method(self):
        with pytest.raises(ValueError):
            get_code_challenge("VERIFIER", "S512")
