"""
config.py — Environment Settings for the Storefront Gateway

All external addresses and credentials are read from environment variables,
with development defaults. Clients receive a `Settings` instance explicitly.
"""

import os
from dataclasses import dataclass, field
from typing import List


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """
    Connection settings for the commerce platform and the identity provider.

    Attributes:
        project_key (str): Commerce platform project key (path prefix of every API call).
        auth_url (str): Base URL of the commerce platform's OAuth server.
        api_url (str): Base URL of the commerce platform's HTTP API.
        client_id (str): API client id used for the client-credentials flow.
        client_secret (str): API client secret.
        scopes (str): Space separated OAuth scopes requested for the API client.
        identity_api_url (str): Base URL of the identity provider's admin REST API.
        identity_project_id (str): Identity provider project id.
        identity_api_key (str): Identity provider API key (sent as `key` query parameter).
        identity_access_token (str): Bearer token for the identity admin API, if required.
        cors_origins (list[str]): Browser origins allowed to call the GraphQL endpoint.
        http_timeout (float): Connect/write/pool timeout for outgoing calls, in seconds.
        http_read_timeout (float): Read timeout for outgoing calls, in seconds.
        log_file (str): Path of the log file; empty string disables file logging.
    """
    project_key: str = "sunrise-store"
    auth_url: str = "https://auth.europe-west1.gcp.commercetools.com"
    api_url: str = "https://api.europe-west1.gcp.commercetools.com"
    client_id: str = ""
    client_secret: str = ""
    scopes: str = ""
    identity_api_url: str = "https://identitytoolkit.googleapis.com"
    identity_project_id: str = ""
    identity_api_key: str = ""
    identity_access_token: str = ""
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    http_timeout: float = 5.0
    http_read_timeout: float = 8.0
    log_file: str = "storefront_gateway.log"

    @classmethod
    def from_env(cls) -> "Settings":
        """Builds the settings from the process environment."""
        defaults = cls()
        return cls(
            project_key=os.environ.get("CTP_PROJECT_KEY", defaults.project_key),
            auth_url=os.environ.get("CTP_AUTH_URL", defaults.auth_url),
            api_url=os.environ.get("CTP_API_URL", defaults.api_url),
            client_id=os.environ.get("CTP_CLIENT_ID", defaults.client_id),
            client_secret=os.environ.get("CTP_CLIENT_SECRET", defaults.client_secret),
            scopes=os.environ.get("CTP_SCOPES", defaults.scopes),
            identity_api_url=os.environ.get("IDENTITY_API_URL", defaults.identity_api_url),
            identity_project_id=os.environ.get("IDENTITY_PROJECT_ID", defaults.identity_project_id),
            identity_api_key=os.environ.get("IDENTITY_API_KEY", defaults.identity_api_key),
            identity_access_token=os.environ.get("IDENTITY_ACCESS_TOKEN", defaults.identity_access_token),
            cors_origins=_split(os.environ.get("CORS_ORIGINS", ",".join(defaults.cors_origins))),
            http_timeout=float(os.environ.get("HTTP_TIMEOUT", defaults.http_timeout)),
            http_read_timeout=float(os.environ.get("HTTP_READ_TIMEOUT", defaults.http_read_timeout)),
            log_file=os.environ.get("LOG_FILE", defaults.log_file),
        )
