"""API key pool handling for upstream calls."""

import random
from typing import Optional, Sequence

from .exceptions import NoApiKeysError

DISABLED_KEY_VALUES = {"none", "null", "false"}


def parse_auth_header(auth_header: Optional[str]) -> list[str]:
    """Extract the comma-separated key list from a Bearer header."""
    if not auth_header:
        return []
    bearer = auth_header.strip()
    if not bearer.lower().startswith("bearer "):
        return []
    keys = bearer[len("bearer "):].strip()
    if not keys or keys.lower() in DISABLED_KEY_VALUES:
        return []
    return [key.strip() for key in keys.split(",") if key.strip()]


def parse_key_list(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(key.strip() for key in raw.split(",") if key.strip())


def select_api_key(
    request_keys: Sequence[str],
    configured_keys: Sequence[str],
    rng: Optional[random.Random] = None,
) -> str:
    """Pick one key, preferring the keys sent with the request."""
    available = list(request_keys) or list(configured_keys)
    if not available:
        raise NoApiKeysError("No API keys available")
    chooser = rng or random
    return chooser.choice(available)
