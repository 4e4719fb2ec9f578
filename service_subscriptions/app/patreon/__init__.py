"""
Patreon API integration: OAuth2 credentials, paginated member fetches and
the tier catalog.
"""

from .client import PatreonClient, create_http_client
from .models import Credentials, Patron, Snapshot
from .oauth import TokenManager
from .tiers import DEFAULT_CATALOG, TierCatalog
from .token_store import TokenStore

__all__ = [
    "Credentials",
    "DEFAULT_CATALOG",
    "PatreonClient",
    "Patron",
    "Snapshot",
    "TierCatalog",
    "TokenManager",
    "TokenStore",
    "create_http_client",
]
