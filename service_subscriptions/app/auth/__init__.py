"""
Authentication helpers for the Subscriptions service.
"""

from .signature import Ed25519SignatureVerifier, SIGNATURE_HEADER, TIMESTAMP_HEADER

__all__ = ["Ed25519SignatureVerifier", "SIGNATURE_HEADER", "TIMESTAMP_HEADER"]
