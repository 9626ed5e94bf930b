"""
mfcloud: Money Forward Cloud API access for tool-calling assistants.

Handles the OAuth2 credential lifecycle so every API call carries a valid
bearer token.
"""

__version__ = "0.1.0"
__all__ = ["AuthManager", "MFApiClient", "MFCloudConfig"]

from mfcloud.auth.manager import AuthManager  # noqa: E402
from mfcloud.client.api_client import MFApiClient  # noqa: E402
from mfcloud.config import MFCloudConfig  # noqa: E402
