"""
Diff
Compares declared resources with recorded state and decides, per resource,
whether to create, update, replace, delete or leave it alone
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ConfigError, PlanError
from .graph import DependencyGraph
from .providers import ProviderRegistry
from .resources import ResourceSpec, contains_unknown, refs, resolve
from .state import State

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "noop"

    @property
    def symbol(self) -> str:
        return {"create": "+", "update": "~", "replace": "-/+", "delete": "-", "noop": " "}[self.value]


@dataclass
class Change:
    address: str
    type: str
    action: Action
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    changed: List[str] = field(default_factory=list)
    replace_paths: List[str] = field(default_factory=list)
    create_before_destroy: bool = False
    deposed: List[str] = field(default_factory=list)


@dataclass
class Plan:
    changes: Dict[str, Change] = field(default_factory=dict)
    graph: DependencyGraph = field(default_factory=DependencyGraph)
    destroy: bool = False
    state_serial: Optional[int] = None

    def by_action(self, action: Action) -> List[Change]:
        return [change for change in self.changes.values() if change.action == action]

    @property
    def counts(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in Action}
        for change in self.changes.values():
            counts[change.action.value] += 1
        return counts

    @property
    def has_changes(self) -> bool:
        return any(change.action != Action.NOOP or change.deposed for change in self.changes.values())

    def summary(self) -> str:
        counts = self.counts
        add = counts["create"] + counts["replace"]
        change = counts["update"]
        destroy = counts["delete"] + counts["replace"] + sum(len(c.deposed) for c in self.changes.values())
        if not self.has_changes:
            return "No changes. Infrastructure matches the declared state."
        return f"Plan: {add} to add, {change} to change, {destroy} to destroy."

    def ordered(self) -> List[Change]:
        """Changes in display order: declared order first, then deletions"""
        ordered = [self.changes[address] for address in self.graph.topological_order() if address in self.changes]
        seen = {change.address for change in ordered}
        ordered.extend(self.changes[address] for address in sorted(self.changes) if address not in seen)
        return ordered


def _ignored(path: str, ignore_changes: List[str]) -> bool:
    return any(path == ignored or path.startswith(ignored + ".") for ignored in ignore_changes)


def changed_paths(before: Any, after: Any, prefix: str = "") -> List[str]:
    """
    Dotted paths whose values differ between before and after

    Nested mappings are compared key by key; anything else, including
    lists, is compared as a whole. Unknown values always count as changed.
    """
    if isinstance(before, dict) and isinstance(after, dict):
        paths = []
        for key in sorted(set(before) | set(after)):
            path = f"{prefix}.{key}" if prefix else key
            paths.extend(changed_paths(before.get(key), after.get(key), path))
        return paths
    if contains_unknown(after) or before != after:
        return [prefix]
    return []


def _known_outputs(outputs: Dict[str, Any], inputs: Dict[str, Any]) -> Dict[str, Any]:
    """Outputs as they will look after an in-place update"""
    merged = dict(outputs)
    for key, value in inputs.items():
        if contains_unknown(value):
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _diff_resource(spec: ResourceSpec, resolved: Dict[str, Any], state: State,
                   registry: ProviderRegistry) -> Change:
    schema = registry.schema(spec.type)
    recorded = state.resources.get(spec.address)
    if recorded is None:
        return Change(address=spec.address, type=spec.type, action=Action.CREATE, after=resolved,
                      create_before_destroy=spec.lifecycle.create_before_destroy)

    paths = [path for path in changed_paths(recorded.inputs, resolved)
             if not _ignored(path, spec.lifecycle.ignore_changes)]
    replace_paths = [path for path in paths if schema.requires_replace(path)]
    if replace_paths:
        action = Action.REPLACE
    elif paths:
        action = Action.UPDATE
    else:
        action = Action.NOOP

    if action == Action.REPLACE and spec.lifecycle.prevent_destroy:
        raise PlanError(f"{spec.address} has prevent_destroy set but the plan would replace it "
                        f"(changed: {', '.join(replace_paths)})")

    return Change(address=spec.address, type=spec.type, action=action, before=recorded.inputs,
                  after=resolved, changed=paths, replace_paths=replace_paths,
                  create_before_destroy=spec.lifecycle.create_before_destroy)


def check_references(specs: Dict[str, ResourceSpec], registry: ProviderRegistry) -> None:
    """Reject references to attributes the target type never produces, e.g. ${aws_vpc.main.idd}"""
    for address in sorted(specs):
        for ref in refs(specs[address].properties):
            target = specs.get(ref.address)
            if target is not None and not registry.schema(target.type).exposes(ref.attribute):
                raise ConfigError(f"{address} references unknown attribute {ref.attribute} of {ref.address}")


def plan_changes(specs: Dict[str, ResourceSpec], state: State, registry: ProviderRegistry,
                 destroy: bool = False) -> Plan:
    """
    Build a plan

    Args:
        specs: Declared resources keyed by address
        state: Recorded (optionally refreshed) state
        registry: Providers, used for schemas and validation
        destroy: Plan to delete everything in state

    Returns:
        Plan with one Change per declared or recorded resource

    Raises:
        ConfigError: invalid declarations or unknown references
        PlanError: a lifecycle rule forbids the plan
    """
    graph = DependencyGraph.from_specs(specs)
    plan = Plan(graph=graph, destroy=destroy)

    if destroy:
        for address, recorded in state.resources.items():
            spec = specs.get(address)
            if spec is not None and spec.lifecycle.prevent_destroy:
                raise PlanError(f"{address} has prevent_destroy set and cannot be destroyed")
            plan.changes[address] = Change(address=address, type=recorded.type, action=Action.DELETE,
                                           before=recorded.inputs, deposed=list(recorded.deposed))
        return plan

    check_references(specs, registry)
    known: Dict[str, Dict[str, Any]] = {}
    for address in graph.topological_order():
        spec = specs[address]
        resolved = resolve(spec.properties, known)
        registry.for_type(spec.type).validate(address, spec.type, resolved)

        change = _diff_resource(spec, resolved, state, registry)
        recorded = state.resources.get(address)
        if recorded is not None:
            change.deposed = list(recorded.deposed)
        plan.changes[address] = change

        if change.action == Action.NOOP:
            known[address] = recorded.outputs
        elif change.action == Action.UPDATE:
            known[address] = _known_outputs(recorded.outputs, resolved)
        logger.debug("%s: %s %s", address, change.action.value, ", ".join(change.changed))

    for address in sorted(set(state.resources) - set(specs)):
        recorded = state.resources[address]
        plan.changes[address] = Change(address=address, type=recorded.type, action=Action.DELETE,
                                       before=recorded.inputs, deposed=list(recorded.deposed))

    return plan


__all__ = ["Action", "Change", "Plan", "changed_paths", "check_references", "plan_changes"]
