"""
Failure kinds raised by the conformance harness.

Every one of these is fatal for the scenario that raised it. Nothing in the
harness retries past an inconsistency: a mismatch means the proxy under test
is non-conformant.
"""

from typing import Any, Optional


class HarnessError(Exception):
    """Base class for all harness failures."""


class ConfigurationError(HarnessError, ValueError):
    pass


class ProxyConnectionError(HarnessError, ConnectionError):
    """The proxy endpoint could not be reached."""

    def __init__(self, endpoint: str, reason: str = ""):
        self.endpoint = endpoint
        msg = f"Failed to connect to proxy at {endpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NoAccountError(HarnessError):
    """The endpoint exposes no usable identity (eth_accounts is empty)."""


class IdentityCollisionError(NoAccountError):
    """Two independent sessions resolved to the same identity."""


class DeploymentMismatchError(HarnessError):
    """Deployed runtime code differs from the fixture, or the receipt has no contract address."""


class UndecodableLogError(HarnessError):
    """A log entry could not be matched or decoded against the supplied ABI."""


class TransactionRejectedError(HarnessError):
    """The proxy refused a transaction, or its receipt reports failure."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class CallFailedError(HarnessError):
    """A read-only RPC request returned an error or undecodable output."""


class ReceiptTimeoutError(HarnessError, TimeoutError):
    """A receipt was not available within the configured bound."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"Timeout waiting for receipt {tx_hash} after {timeout}s")


class AssertionMismatchError(HarnessError, AssertionError):
    """An observed value differs from the expected one."""

    def __init__(self, label: str, expected: Any, actual: Any):
        self.label = label
        self.expected = expected
        self.actual = actual
        super().__init__(f"{label}: expected {expected!r}, got {actual!r}")


class ScenarioFailure(HarnessError):
    """
    Wraps the error that halted a scenario together with the step it happened in.
    """

    def __init__(self, scenario: str, step_index: int, step_label: str, cause: BaseException):
        self.scenario = scenario
        self.step_index = step_index
        self.step_label = step_label
        self.cause = cause
        super().__init__(
            f"scenario {scenario!r} failed at step {step_index} ({step_label}): "
            f"{type(cause).__name__}: {cause}"
        )

    @property
    def expected(self):
        return getattr(self.cause, "expected", None)

    @property
    def actual(self):
        return getattr(self.cause, "actual", None)
