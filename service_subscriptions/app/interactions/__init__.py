"""
Discord interaction handling: payload models, dispatch and response formatting.
"""

from .handler import InteractionHandler
from .responses import LookupResponseFormatter

__all__ = ["InteractionHandler", "LookupResponseFormatter"]
