"""
Harness configuration.

Settings come from the environment; a .env file in the working directory is
honoured. The two proxy endpoints may also be given as positional arguments,
which take precedence over the environment:

    python -m proxy_conformance http://127.0.0.1:2001 http://127.0.0.1:3001

ENV VARS:
    PROXY_URL_1          first proxy endpoint (identity A)
    PROXY_URL_2          second proxy endpoint (identity B)
    RECEIPT_TIMEOUT      seconds to wait for a receipt before failing (default 120)
    TX_POLL_INTERVAL     seconds between receipt polls (default 1)
    REQUEST_TIMEOUT      HTTP timeout per RPC request (default 30)
    ARTIFACT_DIR         where JSON artifacts are written (default ./artifacts/conformance)
    SCENARIOS            comma separated subset of scenarios to run (default: all)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError

# -------------------------
# Defaults
# -------------------------
RECEIPT_TIMEOUT = 120  # seconds
TX_POLL_INTERVAL = 1  # seconds between receipt polls
REQUEST_TIMEOUT = 30
ARTIFACT_DIR = "./artifacts/conformance"


@dataclass(frozen=True)
class HarnessConfig:
    proxy_urls: Tuple[str, str]
    receipt_timeout: float = RECEIPT_TIMEOUT
    poll_interval: float = TX_POLL_INTERVAL
    request_timeout: float = REQUEST_TIMEOUT
    artifact_dir: Path = Path(ARTIFACT_DIR)
    scenarios: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if len(self.proxy_urls) != 2 or not all(self.proxy_urls):
            raise ConfigurationError("two proxy endpoints are required (PROXY_URL_1, PROXY_URL_2)")
        if self.receipt_timeout <= 0:
            raise ConfigurationError("RECEIPT_TIMEOUT must be positive")
        if self.poll_interval <= 0:
            raise ConfigurationError("TX_POLL_INTERVAL must be positive")
        if self.request_timeout <= 0:
            raise ConfigurationError("REQUEST_TIMEOUT must be positive")


def _float_setting(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def load_config(argv: Optional[Sequence[str]] = None, env: Optional[Mapping[str, str]] = None) -> HarnessConfig:
    """
    Build the HarnessConfig from positional arguments and the environment.

    argv excludes the program name. When env is None, os.environ is used after
    loading .env.
    """
    if env is None:
        load_dotenv()
        env = os.environ
    argv = list(argv or [])

    if len(argv) > 2:
        raise ConfigurationError(f"expected at most two proxy URLs, got {len(argv)} arguments")
    if len(argv) == 1:
        raise ConfigurationError("both proxy URLs must be given on the command line, or neither")

    if argv:
        urls = (argv[0], argv[1])
    else:
        urls = (env.get("PROXY_URL_1", ""), env.get("PROXY_URL_2", ""))

    scenarios = None
    raw_scenarios = env.get("SCENARIOS", "")
    if raw_scenarios.strip():
        scenarios = tuple(s.strip() for s in raw_scenarios.split(",") if s.strip())

    return HarnessConfig(
        proxy_urls=urls,
        receipt_timeout=_float_setting(env, "RECEIPT_TIMEOUT", RECEIPT_TIMEOUT),
        poll_interval=_float_setting(env, "TX_POLL_INTERVAL", TX_POLL_INTERVAL),
        request_timeout=_float_setting(env, "REQUEST_TIMEOUT", REQUEST_TIMEOUT),
        artifact_dir=Path(env.get("ARTIFACT_DIR") or ARTIFACT_DIR),
        scenarios=scenarios,
    )
