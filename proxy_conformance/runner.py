"""
Harness entry point.

Opens one session per proxy endpoint, checks the two identities are distinct,
and runs the selected scenarios in catalogue order. The first failing scenario
ends the run.

EXIT CODES:
    0   every selected scenario completed
    2   configuration, connection or identity failure before any scenario ran
    3   a scenario failed
"""

import sys
from typing import List, Optional, Sequence

from .config import HarnessConfig, load_config
from .errors import ConfigurationError, HarnessError, IdentityCollisionError, ScenarioFailure
from .reporting import log, save_json
from .scenario import Scenario
from .scenarios import SCENARIOS
from .session import Session

EXIT_OK = 0
EXIT_SETUP = 2
EXIT_SCENARIO_FAILED = 3


def select_scenarios(names: Optional[Sequence[str]]) -> List[str]:
    if not names:
        return list(SCENARIOS)
    unknown = [n for n in names if n not in SCENARIOS]
    if unknown:
        raise ConfigurationError(f"unknown scenario(s) {', '.join(unknown)}; known: {', '.join(SCENARIOS)}")
    # catalogue order, not selection order
    return [n for n in SCENARIOS if n in names]


def open_sessions(cfg: HarnessConfig, connect=Session.connect) -> List[Session]:
    sessions = []
    try:
        for url in cfg.proxy_urls:
            session = connect(
                url,
                request_timeout=cfg.request_timeout,
                receipt_timeout=cfg.receipt_timeout,
                poll_interval=cfg.poll_interval,
                artifact_dir=cfg.artifact_dir,
            )
            sessions.append(session)
            log(f"Connected to {url} as {session.default_identity()}")
        a, b = sessions
        if a.identity.lower() == b.identity.lower():
            raise IdentityCollisionError(
                f"{a.endpoint} and {b.endpoint} both act as {a.identity}; the sessions need distinct identities"
            )
    except BaseException:
        for s in sessions:
            s.close()
        raise
    return sessions


def run_all(cfg: HarnessConfig, connect=Session.connect) -> int:
    try:
        names = select_scenarios(cfg.scenarios)
        sessions = open_sessions(cfg, connect)
    except HarnessError as e:
        log(f"{type(e).__name__}: {e}", "FATAL", err=True)
        return EXIT_SETUP

    results = {}
    try:
        for name in names:
            fixture, body = SCENARIOS[name]
            scenario = Scenario(name, fixture, artifact_dir=cfg.artifact_dir)
            try:
                scenario.run(body, *sessions)
            except ScenarioFailure:
                return EXIT_SCENARIO_FAILED
            finally:
                results[name] = scenario.state.value
    finally:
        for s in sessions:
            s.close()
        save_json({"scenarios": results, "endpoints": list(cfg.proxy_urls)}, cfg.artifact_dir / "summary.json")

    log(f"All {len(names)} scenarios completed", "SUCCESS")
    if "voting" in names:
        # the line the proxy's own integration suite waits for
        print("Successfully able to deploy Voting Smart Contract and interact with it", flush=True)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    print("Starting Web3 E2E Test", flush=True)
    try:
        cfg = load_config(argv)
    except ConfigurationError as e:
        log(f"ConfigurationError: {e}", "FATAL", err=True)
        return EXIT_SETUP
    log(f"Proxies: {cfg.proxy_urls[0]} (A), {cfg.proxy_urls[1]} (B)")
    log(f"Artifacts: {cfg.artifact_dir}")
    return run_all(cfg)


if __name__ == "__main__":
    sys.exit(main())
