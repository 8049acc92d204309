"""
Desired-state reconciler
Declared resources -> diff against recorded state -> dependency-ordered apply
"""

from .diff import Action, Change, Plan, plan_changes
from .engine import ApplyResult, Engine, retry_with_backoff
from .errors import (
    ApplyError,
    ConfigError,
    CycleError,
    PlanError,
    ProviderError,
    ReconcileError,
    ResourceNotFoundError,
    StateLockedError,
    ThrottlingError,
    UnknownReferenceError,
)
from .graph import DependencyGraph
from .loader import Document, load_document, parse_document
from .resources import UNKNOWN, Lifecycle, Ref, ResourceSpec, ResourceState, Template
from .state import State, StateStore

__version__ = "0.3.0"

__all__ = [
    "Action",
    "ApplyError",
    "ApplyResult",
    "Change",
    "ConfigError",
    "CycleError",
    "DependencyGraph",
    "Document",
    "Engine",
    "Lifecycle",
    "Plan",
    "PlanError",
    "ProviderError",
    "ReconcileError",
    "Ref",
    "ResourceNotFoundError",
    "ResourceSpec",
    "ResourceState",
    "State",
    "StateLockedError",
    "StateStore",
    "Template",
    "ThrottlingError",
    "UNKNOWN",
    "UnknownReferenceError",
    "load_document",
    "parse_document",
    "plan_changes",
    "retry_with_backoff",
]
