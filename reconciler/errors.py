"""
Reconciler errors
Every failure raised by the engine derives from ReconcileError
"""

from typing import List, Optional


class ReconcileError(Exception):
    """Base class for reconciliation failures"""


class ConfigError(ReconcileError):
    """Invalid declaration document, variable file or variable value"""


class PlanError(ReconcileError):
    """The plan cannot be built or violates a lifecycle rule"""


class UnknownReferenceError(ConfigError):
    """A resource refers to an address that is not declared"""

    def __init__(self, address: str, missing: str):
        self.address = address
        self.missing = missing
        super().__init__(f"{address} references undeclared resource {missing}")


class CycleError(ConfigError):
    """The dependency graph contains a cycle"""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__("dependency cycle: " + " -> ".join(cycle))


class ProviderError(ReconcileError):
    """A provider call failed"""

    retryable = False

    def __init__(self, message: str, address: Optional[str] = None):
        self.address = address
        super().__init__(message)


class ThrottlingError(ProviderError):
    """The provider asked us to slow down; safe to retry"""

    retryable = True


class ResourceNotFoundError(ProviderError):
    """The remote object no longer exists"""


class StateLockedError(ReconcileError):
    """Another process holds the state lock"""

    def __init__(self, path: str, holder: str = ""):
        self.path = path
        self.holder = holder
        detail = f" (held by {holder})" if holder else ""
        super().__init__(f"state {path} is locked{detail}")


class ApplyError(ReconcileError):
    """Apply finished with failed resources"""

    def __init__(self, failed: dict):
        self.failed = failed
        names = ", ".join(sorted(failed))
        super().__init__(f"apply failed for: {names}")
