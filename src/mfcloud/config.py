"""
mfcloud configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field

DEFAULT_AUTH_BASE_URL = "https://api.biz.moneyforward.com"
DEFAULT_REDIRECT_URI = "http://localhost:3456/callback"
DEFAULT_TOKEN_PATH = Path.home() / ".mf-cloud" / "tokens.json"


class OAuthSettings(BaseModel):
    """OAuth2 client registration for the Money Forward authorization server."""

    client_id: str = Field(default="", description="OAuth2 client identifier")
    client_secret: str = Field(default="", description="OAuth2 client secret")
    redirect_uri: str = Field(default=DEFAULT_REDIRECT_URI, description="Registered redirect URI")
    auth_base_url: str = Field(default=DEFAULT_AUTH_BASE_URL, description="Authorization server base URL")
    callback_timeout: float = Field(default=120.0, gt=0, description="Seconds to wait for the browser callback")
    http_timeout: float = Field(default=30.0, gt=0, description="Token endpoint request timeout in seconds")

    @property
    def authorize_url(self) -> str:
        return f"{self.auth_base_url.rstrip('/')}/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.auth_base_url.rstrip('/')}/token"

    @property
    def callback_port(self) -> int:
        """Local port the redirect listener binds, taken from the redirect URI."""
        parsed = urlparse(self.redirect_uri)
        if parsed.port:
            return parsed.port
        return 443 if parsed.scheme == "https" else 80

    @property
    def callback_path(self) -> str:
        return urlparse(self.redirect_uri).path or "/callback"

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class MFCloudConfig(BaseModel):
    """Root configuration for mfcloud."""

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    token_path: Path = Field(default=DEFAULT_TOKEN_PATH, description="Location of the persisted token file")

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> MFCloudConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        env_oauth = {
            "client_id": os.environ.get("MF_CLIENT_ID"),
            "client_secret": os.environ.get("MF_CLIENT_SECRET"),
            "redirect_uri": os.environ.get("MF_REDIRECT_URI"),
        }
        env_oauth = {key: value for key, value in env_oauth.items() if value}
        if env_oauth:
            oauth = data.get("oauth", {})
            oauth.update(env_oauth)
            data["oauth"] = oauth

        env_token_path = os.environ.get("MF_TOKEN_PATH")
        if env_token_path:
            data["token_path"] = env_token_path

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)
