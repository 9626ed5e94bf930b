"""Authorized HTTP access to the Money Forward Cloud APIs."""

from mfcloud.client.api_client import EXPENSE_BASE_URL, INVOICE_BASE_URL, MFApiClient, MFApiError

__all__ = ["EXPENSE_BASE_URL", "INVOICE_BASE_URL", "MFApiClient", "MFApiError"]
