"""Runtime settings, read from the environment (and an optional .env file)."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

FETCH_POLICIES = ("strict", "lenient")


def parse_fetch_policy(raw: str) -> str:
    """Normalize a fetch policy name, rejecting unknown values at startup."""
    policy = raw.strip().lower()
    if policy not in FETCH_POLICIES:
        raise ValueError(
            f"CONFLICT_FETCH_POLICY must be one of {', '.join(FETCH_POLICIES)}, got {raw!r}"
        )
    return policy


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# "strict" propagates store failures to the caller, "lenient" treats a failed
# source as contributing zero conflicts.
CONFLICT_FETCH_POLICY = parse_fetch_policy(os.getenv("CONFLICT_FETCH_POLICY", "strict"))

# Per-step visit limit for the flow executor (guards against cyclic graphs)
FLOW_MAX_NODES = int(os.getenv("FLOW_MAX_NODES", "50"))

WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "5"))
