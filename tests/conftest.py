"""Shared test fixtures for the Alt Auth test suite."""

import pytest
from pathlib import Path
from uuid import UUID

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Drop any cached Vault client so it picks up the env vars above
from clients.vault_client import clear_secret_cache
clear_secret_cache()

from auth.config import AuthConfig


# =============================================================================
# TEST CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_EMAIL = "testuser@iiit.ac.in"

TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")
TEST_USER_B_EMAIL = "testuser-b@students.iiit.ac.in"

RELYING_ORIGIN = "https://club.example.org"
SERVICE_ORIGIN = "https://auth.example.org"

# 32+ chars, as TokenService requires
TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789"


@pytest.fixture
def config() -> AuthConfig:
    """Config pointing the service at SERVICE_ORIGIN."""
    return AuthConfig(
        app_base_url=SERVICE_ORIGIN,
        rate_limit_attempts=3,
        rate_limit_window_minutes=5,
        cookie_secure=False,
    )


@pytest.fixture
def tokens(config):
    """TokenService signing with TEST_SIGNING_KEY."""
    from auth.tokens import TokenService

    return TokenService(config, TEST_SIGNING_KEY)


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


# =============================================================================
# DATABASE FIXTURES (integration; skipped without Vault/PostgreSQL)
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient with the auth schema applied."""
    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url
    from auth.database import AuthDatabase

    try:
        client = PostgresClient(get_database_url())
    except Exception as e:
        pytest.skip(f"PostgreSQL unavailable: {e}")

    AuthDatabase(client).apply_schema()
    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Empty every auth table before the test and seed the two test users."""
    db.execute("TRUNCATE auth_requests, otps, security_events, users CASCADE")
    db.execute(
        """INSERT INTO users (id, email, created_at, updated_at)
           VALUES (%s, %s, now(), now()), (%s, %s, now(), now())""",
        (TEST_USER_ID, TEST_USER_EMAIL, TEST_USER_B_ID, TEST_USER_B_EMAIL),
    )
    yield db


# =============================================================================
# VALKEY FIXTURES (integration; skipped without Vault/Valkey)
# =============================================================================


@pytest.fixture(scope="session")
def valkey():
    """Session-scoped ValkeyClient."""
    from clients.valkey_client import ValkeyClient
    from clients.vault_client import get_valkey_url

    try:
        client = ValkeyClient(get_valkey_url())
    except Exception as e:
        pytest.skip(f"Valkey unavailable: {e}")

    yield client
    client.close()


@pytest.fixture
def clean_valkey(valkey):
    """Delete rate limit and denylist keys around the test."""

    def _flush():
        for pattern in ("ratelimit:*", "revoked_session:*", "test:*"):
            valkey.delete_matching(pattern)

    _flush()
    yield valkey
    _flush()
