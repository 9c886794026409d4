"""HTTP access to the Emporix API shared by every reconciliation."""

from .async_utils import run_sync, run_sync_limited, run_sync_retrying
from .client import EmporixClient
from .oauth import OAuthTokenClient

__all__ = [
    "EmporixClient",
    "OAuthTokenClient",
    "run_sync",
    "run_sync_limited",
    "run_sync_retrying",
]
