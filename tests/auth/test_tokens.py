"""Tests for TokenService - identifiers, codes, expiry horizons and session JWTs."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest

from auth.config import AuthConfig
from auth.tokens import TokenService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789"


@pytest.fixture
def tokens():
    return TokenService(AuthConfig(), TEST_SIGNING_KEY)


class TestConstruction:

    def test_rejects_short_signing_key(self):
        with pytest.raises(ValueError):
            TokenService(AuthConfig(), "too-short")

    def test_rejects_empty_signing_key(self):
        with pytest.raises(ValueError):
            TokenService(AuthConfig(), "")


class TestIdentifiers:

    def test_request_id_is_64_hex_chars(self, tokens):
        request_id = tokens.generate_request_id()
        assert len(request_id) == 64
        int(request_id, 16)

    def test_claim_token_is_96_hex_chars(self, tokens):
        claim = tokens.generate_claim_token()
        assert len(claim) == 96
        int(claim, 16)

    def test_identifiers_do_not_repeat(self, tokens):
        ids = {tokens.generate_request_id() for _ in range(200)}
        assert len(ids) == 200


class TestOtp:

    def test_default_length_and_digits(self, tokens):
        for _ in range(50):
            otp = tokens.generate_otp()
            assert len(otp) == 6
            assert otp.isdigit()

    def test_leading_zeros_preserved(self, tokens):
        """Codes are strings; a leading zero is a real digit, not dropped."""
        codes = [tokens.generate_otp() for _ in range(2000)]
        assert all(len(code) == 6 for code in codes)
        assert any(code.startswith("0") for code in codes)

    def test_configured_length(self):
        tokens = TokenService(AuthConfig(otp_length=8), TEST_SIGNING_KEY)
        assert len(tokens.generate_otp()) == 8


class TestExpiryHorizons:

    def test_defaults(self, tokens):
        assert tokens.otp_expiry(NOW) == NOW + timedelta(minutes=10)
        assert tokens.claim_token_expiry(NOW) == NOW + timedelta(minutes=5)
        assert tokens.auth_request_expiry(NOW) == NOW + timedelta(minutes=30)
        assert tokens.session_expiry(NOW) == NOW + timedelta(days=7)

    def test_follow_config(self):
        config = AuthConfig(otp_expiry_minutes=3, claim_token_expiry_minutes=2, session_expiry_days=1)
        tokens = TokenService(config, TEST_SIGNING_KEY)
        assert tokens.otp_expiry(NOW) == NOW + timedelta(minutes=3)
        assert tokens.claim_token_expiry(NOW) == NOW + timedelta(minutes=2)
        assert tokens.session_expiry(NOW) == NOW + timedelta(days=1)


class TestSessionJwt:

    def test_sign_and_decode(self, tokens):
        user_id = uuid4()
        now = datetime.now(timezone.utc)
        token, payload = tokens.sign_session(user_id, "asha@iiit.ac.in", now)

        decoded = tokens.decode_session(token)

        assert decoded["user_id"] == str(user_id)
        assert decoded["email"] == "asha@iiit.ac.in"
        assert decoded["jti"] == payload["jti"]
        assert decoded["exp"] - decoded["iat"] == 7 * 86400

    def test_each_session_gets_fresh_jti(self, tokens):
        now = datetime.now(timezone.utc)
        _, first = tokens.sign_session(uuid4(), "a@iiit.ac.in", now)
        _, second = tokens.sign_session(uuid4(), "a@iiit.ac.in", now)
        assert first["jti"] != second["jti"]

    def test_expired_token_rejected(self, tokens):
        long_ago = datetime.now(timezone.utc) - timedelta(days=8)
        token, _ = tokens.sign_session(uuid4(), "a@iiit.ac.in", long_ago)

        with pytest.raises(jwt.ExpiredSignatureError):
            tokens.decode_session(token)

    def test_wrong_key_rejected(self, tokens):
        other = TokenService(AuthConfig(), "another-signing-key-abcdefghijklmnopqrstuvwxyz")
        token, _ = other.sign_session(uuid4(), "a@iiit.ac.in", datetime.now(timezone.utc))

        with pytest.raises(jwt.InvalidTokenError):
            tokens.decode_session(token)

    def test_missing_claim_rejected(self, tokens):
        token = jwt.encode(
            {"user_id": str(uuid4()), "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            TEST_SIGNING_KEY,
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            tokens.decode_session(token)

    def test_unsigned_token_rejected(self, tokens):
        token = jwt.encode(
            {"user_id": str(uuid4()), "email": "a@iiit.ac.in", "jti": "x", "iat": 0, "exp": 2**31},
            None,
            algorithm="none",
        )
        with pytest.raises(jwt.InvalidTokenError):
            tokens.decode_session(token)
