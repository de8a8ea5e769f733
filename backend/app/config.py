"""Runtime configuration read from environment variables."""

import logging
import os
from datetime import datetime

logger = logging.getLogger(__name__)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DATABASE_PATH = os.getenv("DATABASE_PATH", "./data/sim.db")
UPLOAD_PATH = os.getenv("UPLOAD_PATH", "./data/uploads")
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))
EXECUTION_TIMEOUT_SECONDS = float(os.getenv("EXECUTION_TIMEOUT_SECONDS", "300"))
HTTP_BLOCK_TIMEOUT_SECONDS = float(os.getenv("HTTP_BLOCK_TIMEOUT_SECONDS", "30"))

# Rotating provider keys are looked up as <PROVIDER>_API_KEY_1 .. _N
MAX_ROTATING_KEYS = 3


def is_hosted() -> bool:
    """Whether the service runs in hosted mode (shared provider keys)."""
    return os.getenv("SIM_HOSTED", "false").lower() in ("1", "true", "yes")


def get_rotating_api_key(provider: str) -> str:
    """Pick one of the configured hosted API keys for a provider.

    Keys rotate by the current minute so load spreads evenly across them.

    Args:
        provider: Provider name, e.g. "anthropic".

    Returns:
        The selected API key.

    Raises:
        ValueError: If no rotating key is configured for the provider.
    """
    prefix = provider.upper()
    keys = [
        key
        for i in range(1, MAX_ROTATING_KEYS + 1)
        if (key := os.getenv(f"{prefix}_API_KEY_{i}"))
    ]
    if not keys:
        raise ValueError(f"No API keys configured for rotation ({prefix}_API_KEY_1..)")

    index = datetime.now().minute % len(keys)
    logger.debug(f"Using rotating {provider} key {index + 1}/{len(keys)}")
    return keys[index]
