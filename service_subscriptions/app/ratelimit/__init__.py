"""
Rate limiting package for the Subscriptions service.

Holds the token-bucket limiter that bounds the request rate towards the
Patreon API, with burst tolerance.
"""

from .token_bucket import TokenBucketRateLimiter

__all__ = ["TokenBucketRateLimiter"]
