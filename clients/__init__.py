# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    clear_secret_cache,
    get_database_url,
    get_valkey_url,
    get_email_config,
    get_session_secret,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.email_client import EmailGatewayClient, EmailGatewayError
