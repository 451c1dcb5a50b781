"""Coda API authentication."""

import os
import sys

from .config import TOKEN_PATH

_api_token = None


def get_api_token() -> str:
    """Load the Coda API token.

    Tries (in order):
    1. CODA_API_TOKEN env var (for cloud deploys)
    2. coda_token.txt file on disk (for local dev)

    Exits the process when neither is available; nothing works without it.
    """
    global _api_token
    if _api_token is not None:
        return _api_token

    token = os.environ.get("CODA_API_TOKEN", "").strip()
    if token:
        _api_token = token
        return _api_token

    if not TOKEN_PATH.exists() or not TOKEN_PATH.read_text().strip():
        print(f"Error: {TOKEN_PATH} not found and CODA_API_TOKEN not set.")
        print("Create an API token at https://coda.io/account and export it as CODA_API_TOKEN")
        sys.exit(1)

    _api_token = TOKEN_PATH.read_text().strip()
    return _api_token


def reset_api_token() -> None:
    """Forget the cached token (used when the environment changes)."""
    global _api_token
    _api_token = None
