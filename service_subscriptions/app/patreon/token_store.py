"""
Durable storage for Patreon OAuth2 credentials.
"""

import json
import os
import re
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

from shared.logging import get_logger

from .models import Credentials, utcnow

# Expiry assumed for stored credentials without one, so the first cycle refreshes.
UNKNOWN_EXPIRY_GRACE = timedelta(hours=1)

_FRACTION = re.compile(r"\.(\d+)")


class TokenStore:
    """Reads and writes ``{access_token, refresh_token, expires_at}`` as JSON."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.logger = get_logger("subscriptions.token_store")

    def load(self) -> Optional[Credentials]:
        """Return the stored credentials, or ``None`` when nothing is stored."""
        if not self.path.exists():
            self.logger.info("No stored credentials found", path=str(self.path))
            return None

        with self.path.open("r", encoding="utf-8") as f:
            payload = json.load(f)

        if not isinstance(payload, dict):
            raise ValueError(f"Credentials file {self.path} must contain a JSON object")

        expires_at = _parse_expiry(payload.get("expires_at"))
        if expires_at is None:
            expires_at = utcnow() + UNKNOWN_EXPIRY_GRACE
            self.logger.info(
                "Stored credentials have no expiry, scheduling refresh",
                assumed_expires_at=expires_at.isoformat(),
            )

        return Credentials(
            access_token=str(payload.get("access_token") or ""),
            refresh_token=str(payload.get("refresh_token") or ""),
            expires_at=expires_at,
        )

    def save(self, credentials: Credentials) -> None:
        """Atomically replace the stored credentials (file mode 0600)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "access_token": credentials.access_token,
            "refresh_token": credentials.refresh_token,
            "expires_at": credentials.expires_at.astimezone(timezone.utc).isoformat(),
        }

        fd, tmp_path = tempfile.mkstemp(prefix=".tokens-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self.logger.info("Credentials written to disk", path=str(self.path))


def _parse_expiry(value: object) -> Optional[datetime]:
    """Parse a stored expiry; empty values and the zero time count as unset."""
    if value in (None, "", 0):
        return None

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat wants 3 or 6 fractional digits; nanosecond timestamps carry 9.
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed
