"""
HashiCorp Vault client for Alt Auth secret management.

Uses AppRole authentication. Fails fast on missing configuration.
All paths scoped to 'alt_auth/' prefix - no escape to other secrets.

Secrets are read once per path and cached for the life of the process;
clear_secret_cache() drops the cache and the shared client.
"""

import logging
import os
import threading
from typing import Dict

import hvac
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "alt_auth"

_lock = threading.Lock()
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, str]] = {}


class VaultClient:
    """Vault client with AppRole auth, env-based config, and fail-fast behavior."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        """
        Reads VAULT_ADDR, VAULT_NAMESPACE, VAULT_ROLE_ID and VAULT_SECRET_ID.

        Raises:
            ValueError: Address or AppRole credentials missing.
            PermissionError: Login rejected.
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError("VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required")

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace
        self.client = hvac.Client(**client_kwargs)

        try:
            auth_response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except Exception as e:
            logger.error(f"AppRole login to {self.vault_addr} failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}")
        self.client.token = auth_response["auth"]["client_token"]

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

        logger.info(f"Vault client authenticated against {self.vault_addr}")

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        Every field of the KV v2 secret at alt_auth/<path>.

        Raises:
            PermissionError: Path missing or not readable by this role.
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")
        return dict(response["data"]["data"])

    def get_secret(self, path: str, field: str) -> str:
        """
        One field of alt_auth/<path>.

        Raises:
            PermissionError: See read_secret.
            KeyError: Field not found in secret.
        """
        return _pick(self.read_secret(path), path, field)


def _pick(secret: Dict[str, str], path: str, field: str) -> str:
    if field not in secret:
        raise KeyError(
            f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'. "
            f"Available: {', '.join(sorted(secret))}"
        )
    return secret[field]


def _cached_secret(path: str) -> Dict[str, str]:
    global _vault_client_instance
    with _lock:
        if path not in _secret_cache:
            if _vault_client_instance is None:
                _vault_client_instance = VaultClient()
            _secret_cache[path] = _vault_client_instance.read_secret(path)
        return _secret_cache[path]


def clear_secret_cache() -> None:
    """Forget cached secrets and the shared client (tests, credential rotation)."""
    global _vault_client_instance
    with _lock:
        _secret_cache.clear()
        _vault_client_instance = None


def get_database_url() -> str:
    return _pick(_cached_secret("database"), "database", "url")


def get_valkey_url() -> str:
    return _pick(_cached_secret("valkey"), "valkey", "url")


def get_email_config() -> Dict[str, str]:
    """Email gateway settings: gateway_url, api_key, hmac_secret."""
    secret = _cached_secret("email")
    return {field: _pick(secret, "email", field) for field in ("gateway_url", "api_key", "hmac_secret")}


def get_session_secret() -> str:
    """HMAC key used to sign session tokens."""
    return _pick(_cached_secret("session"), "session", "signing_key")
