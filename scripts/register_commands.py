#!/usr/bin/env python3
"""Register the ``/lookup`` application command with Discord.

Resolves the application id from the bot token, then overwrites the global
command set with the single lookup command.
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Dict, List

import httpx

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from service_subscriptions.app.interactions.handler import EMAIL_OPTION, LOOKUP_COMMAND  # noqa: E402

DISCORD_API_URL = "https://discord.com/api/v10"

# Discord application command and option types
CHAT_INPUT = 1
STRING_OPTION = 3


def lookup_command() -> Dict[str, Any]:
    return {
        "name": LOOKUP_COMMAND,
        "description": "Look up information about a user's subscription",
        "type": CHAT_INPUT,
        "options": [
            {
                "type": STRING_OPTION,
                "name": EMAIL_OPTION,
                "description": "The Patreon email address of the user to lookup",
                "required": True,
            }
        ],
    }


def register(token: str, api_url: str = DISCORD_API_URL, client: httpx.Client | None = None) -> List[Dict[str, Any]]:
    """Overwrite the application's global commands; returns Discord's echo."""
    owns_client = client is None
    client = client or httpx.Client(timeout=30.0)
    headers = {"Authorization": f"Bot {token}"}

    try:
        me = client.get(f"{api_url}/users/@me", headers=headers)
        me.raise_for_status()
        application_id = me.json()["id"]

        response = client.put(
            f"{api_url}/applications/{application_id}/commands",
            headers=headers,
            json=[lookup_command()],
        )
        response.raise_for_status()
        return response.json()
    finally:
        if owns_client:
            client.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register the lookup slash command with Discord.")
    parser.add_argument("--token", default=os.getenv("DISCORD_BOT_TOKEN"), help="Discord bot token")
    parser.add_argument("--api-url", default=DISCORD_API_URL, help="Discord API base URL")
    args = parser.parse_args()
    if not args.token:
        parser.error("--token is required (or set DISCORD_BOT_TOKEN)")
    return args


def main() -> int:
    args = _parse_args()
    try:
        register(args.token, args.api_url)
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[register-commands] failed: {exc}", file=sys.stderr)
        return 1

    print("Commands created successfully")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
