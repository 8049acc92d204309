"""
Reconciliation engine
declared state -> diff -> apply, walking the dependency graph in parallel
"""

import copy
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .diff import Action, Plan, check_references, plan_changes
from .errors import ApplyError, PlanError, ProviderError
from .graph import DependencyGraph
from .loader import Document
from .providers import ProviderRegistry
from .resources import ResourceState, contains_unknown, resolve
from .state import State, StateStore

logger = logging.getLogger(__name__)

Listener = Callable[[str, str, str], None]


def retry_with_backoff(func: Callable[[], Any], max_retries: int = 3, initial_delay: float = 1.0,
                       description: str = "", sleep: Callable[[float], None] = time.sleep) -> Any:
    """
    Retry a provider call with exponential backoff

    Only retryable provider errors (throttling) are retried.

    Args:
        func: Function to call
        max_retries: Maximum number of retries
        initial_delay: Initial delay in seconds
        description: What is being attempted, for log messages
        sleep: Sleep function

    Returns:
        Result of the function call

    Raises:
        ProviderError: the last error once retries are exhausted, or any
            non-retryable error immediately
    """
    delay = initial_delay
    for attempt in range(max_retries + 1):
        try:
            return func()
        except ProviderError as e:
            if not e.retryable or attempt >= max_retries:
                if e.retryable:
                    logger.error("%s: all %d attempts throttled", description, max_retries + 1)
                raise
            logger.warning("%s: attempt %d throttled, retrying in %.1fs: %s",
                           description, attempt + 1, delay, e)
            sleep(delay)
            delay *= 2


@dataclass
class ApplyResult:
    applied: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    rolled_back: List[str] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise ApplyError(self.failed)


def _node(kind: str, address: str) -> str:
    return f"{kind}:{address}"


def _split_node(node: str) -> tuple:
    kind, address = node.split(":", 1)
    return kind, address


class Engine:
    """
    Plans and applies declaration documents against providers

    Args:
        registry: Providers keyed by resource type prefix
        store: State storage for the stack
        parallelism: Maximum concurrent provider operations
        max_retries: Retries for throttled provider calls
        retry_delay: Initial backoff delay in seconds
        rollback_on_failure: Delete resources created during a failed apply
        listener: Called with (address, operation, status) as work progresses
        sleep: Sleep function used between retries
    """

    def __init__(self, registry: ProviderRegistry, store: StateStore, parallelism: int = 10,
                 max_retries: int = 3, retry_delay: float = 1.0, rollback_on_failure: bool = False,
                 listener: Optional[Listener] = None, sleep: Callable[[float], None] = time.sleep):
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.registry = registry
        self.store = store
        self.parallelism = parallelism
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.rollback_on_failure = rollback_on_failure
        self.listener = listener
        self.sleep = sleep
        self._state_lock = threading.Lock()

    # Helpers

    def _call(self, description: str, func: Callable[[], Any]) -> Any:
        return retry_with_backoff(func, self.max_retries, self.retry_delay, description, self.sleep)

    def _notify(self, address: str, operation: str, status: str) -> None:
        if self.listener:
            self.listener(address, operation, status)

    def _persist(self, state: State) -> None:
        self.store.save(state)

    # Validate / refresh / plan

    def validate(self, document: Document) -> None:
        """Check references, cycles and schemas without reading state"""
        graph = DependencyGraph.from_specs(document.resources)
        check_references(document.resources, self.registry)
        for address in graph.topological_order():
            spec = document.resources[address]
            provider = self.registry.for_type(spec.type)
            provider.validate(address, spec.type, resolve(spec.properties, {}))

    def refresh(self, state: State, unreadable: Optional[Dict[str, str]] = None) -> State:
        """
        Read every recorded object back from its provider

        Objects deleted out of band are dropped; recorded inputs that
        drifted take their remote value so the next diff corrects them.

        Args:
            state: Recorded state, left untouched
            unreadable: When given, read failures are collected here by
                address and the recorded entry is kept as is; otherwise
                they propagate

        Returns:
            A refreshed copy of the state
        """
        refreshed = copy.deepcopy(state)
        for address in sorted(state.resources):
            recorded = state.resources[address]
            provider = self.registry.for_type(recorded.type)
            try:
                current = self._call(f"read {address}",
                                     lambda: provider.read(recorded.type, recorded.id))
            except ProviderError as e:
                if unreadable is None:
                    raise
                logger.error("%s: refresh failed: %s", address, e)
                unreadable[address] = f"refresh failed: {e}"
                continue
            if current is None:
                logger.warning("%s (%s) no longer exists remotely, dropping it from state", address, recorded.id)
                del refreshed.resources[address]
                continue

            entry = refreshed.resources[address]
            for key, value in entry.inputs.items():
                if key in current and current[key] != value:
                    logger.warning("%s drifted: %s is %r, expected %r", address, key, current[key], value)
                    entry.inputs[key] = current[key]
            entry.outputs = current
        return refreshed

    def _refresh_and_persist(self, state: State, unreadable: Optional[Dict[str, str]] = None) -> State:
        refreshed = self.refresh(state, unreadable)
        if refreshed.to_dict() != state.to_dict():
            self._persist(refreshed)
        return refreshed

    def plan(self, document: Document, refresh: bool = True, destroy: bool = False) -> Plan:
        """Compute the changes needed to reach the declared state"""
        with self.store.locked("plan"):
            state = self.store.load()
            if refresh:
                state = self._refresh_and_persist(state)
            plan = plan_changes(document.resources, state, self.registry, destroy=destroy)
            plan.state_serial = state.serial
        logger.info(plan.summary())
        return plan

    # Apply

    def apply(self, document: Document, plan: Optional[Plan] = None, refresh: bool = True) -> ApplyResult:
        """
        Reconcile remote objects with the declaration

        Args:
            document: Parsed declaration
            plan: A plan from plan(); computed here when omitted
            refresh: Refresh state first (only when no plan is given)

        Returns:
            ApplyResult describing what happened to each resource

        Raises:
            PlanError: the supplied plan was made against older state

        Provider errors, including read failures while refreshing, are
        recorded per resource in the result and skip dependent work.
        """
        with self.store.locked("apply"):
            state = self.store.load()
            unreadable: Dict[str, str] = {}
            if plan is None:
                if refresh:
                    state = self._refresh_and_persist(state, unreadable)
                plan = plan_changes(document.resources, state, self.registry)
            elif plan.state_serial is not None and plan.state_serial != state.serial:
                raise PlanError("state changed since the plan was made; plan again")

            logger.info(plan.summary())
            result = self._execute(plan, document, state, unreadable)

            if plan.destroy:
                state.outputs = {}
            else:
                state.outputs = self._evaluate_outputs(document, state)
            result.outputs = dict(state.outputs)
            self._persist(state)

        if result.ok:
            logger.info("apply complete: %d applied", len(result.applied))
        else:
            logger.error("apply finished with %d failure(s), %d skipped",
                         len(result.failed), len(result.skipped))
        return result

    def destroy(self, document: Document, refresh: bool = True) -> ApplyResult:
        """Delete every recorded object in reverse dependency order"""
        with self.store.locked("destroy"):
            state = self.store.load()
            if refresh:
                state = self._refresh_and_persist(state)
            plan = plan_changes(document.resources, state, self.registry, destroy=True)
            plan.state_serial = state.serial
        return self.apply(document, plan=plan)

    def outputs(self) -> Dict[str, Any]:
        return dict(self.store.load().outputs)

    def _evaluate_outputs(self, document: Document, state: State) -> Dict[str, Any]:
        known = state.outputs_by_address()
        values = {}
        for name, expression in document.outputs.items():
            value = resolve(expression, known)
            if contains_unknown(value):
                logger.warning("output %s could not be resolved", name)
                continue
            values[name] = value
        return values

    def _operation_graph(self, plan: Plan, state: State) -> DependencyGraph:
        """
        Order individual operations

        apply:X   create or update X, after apply of X's dependencies
        destroy:X delete X (or its old object before re-creating it),
                  after destroy of everything recorded as depending on X
        deposed:X delete old objects left by a create-before-destroy
                  replace, after X and its dependents were applied
        Orphan deletions run before any apply.
        """
        ops = DependencyGraph()
        destroys = set()
        applies = set()
        orphans = []

        for address, change in plan.changes.items():
            if change.action == Action.DELETE:
                destroys.add(address)
                orphans.append(_node("destroy", address))
            elif change.action == Action.REPLACE and not change.create_before_destroy:
                destroys.add(address)
            if change.action in (Action.CREATE, Action.UPDATE, Action.REPLACE):
                applies.add(address)

        recorded = DependencyGraph.from_edges(
            {address: resource.dependencies for address, resource in state.resources.items()}
        )
        for address in destroys:
            node = _node("destroy", address)
            ops.add_node(node)
            for dependent in recorded.dependents(address):
                if dependent in destroys:
                    ops.add_edge(node, _node("destroy", dependent))

        for address in applies:
            node = _node("apply", address)
            ops.add_node(node)
            for dependency in plan.graph.dependencies(address):
                if dependency in applies:
                    ops.add_edge(node, _node("apply", dependency))
            if address in destroys:
                ops.add_edge(node, _node("destroy", address))
            for orphan in orphans:
                ops.add_edge(node, orphan)

        for address, change in plan.changes.items():
            cbd_replace = change.action == Action.REPLACE and change.create_before_destroy
            if address in destroys or not (cbd_replace or change.deposed):
                continue
            deposed = _node("deposed", address)
            ops.add_node(deposed)
            if address in applies:
                ops.add_edge(deposed, _node("apply", address))
            for dependent in plan.graph.dependents(address):
                if dependent in applies:
                    ops.add_edge(deposed, _node("apply", dependent))

        ops.check_acyclic()
        return ops

    def _execute(self, plan: Plan, document: Document, state: State,
                 unreadable: Optional[Dict[str, str]] = None) -> ApplyResult:
        result = ApplyResult()
        ops = self._operation_graph(plan, state)
        created: List[str] = []

        pending = {node: set(ops.dependencies(node)) for node in ops.nodes}
        done = set()
        blocked = set()
        running: Dict[Future, str] = {}

        for address, error in sorted((unreadable or {}).items()):
            result.failed[address] = error
            self._notify(address, "read", "failed")
            for kind in ("destroy", "apply", "deposed"):
                node = _node(kind, address)
                if node not in pending:
                    continue
                del pending[node]
                for dependent in ops.transitive_dependents(node):
                    if dependent in pending:
                        del pending[dependent]
                        blocked.add(dependent)

        with ThreadPoolExecutor(max_workers=self.parallelism) as pool:
            while pending or running:
                ready = sorted(node for node, deps in pending.items() if deps <= done)
                for node in ready:
                    del pending[node]
                    future = pool.submit(self._run_node, node, plan, document, state, created)
                    running[future] = node

                if not running:
                    break

                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in finished:
                    node = running.pop(future)
                    kind, address = _split_node(node)
                    error = future.exception()
                    if error is None:
                        done.add(node)
                        if kind == "apply" or (kind == "destroy" and plan.changes[address].action == Action.DELETE):
                            result.applied.append(address)
                        continue

                    result.failed[address] = str(error)
                    logger.error("%s %s failed: %s", kind, address, error)
                    self._notify(address, kind, "failed")
                    for dependent in ops.transitive_dependents(node):
                        if dependent in pending:
                            del pending[dependent]
                            blocked.add(dependent)

        for node in sorted(blocked):
            kind, address = _split_node(node)
            if address not in result.failed and address not in result.skipped:
                result.skipped.append(address)
                self._notify(address, kind, "skipped")

        if result.failed and self.rollback_on_failure and created:
            self._rollback(created, state, result)
        return result

    def _run_node(self, node: str, plan: Plan, document: Document, state: State,
                  created: List[str]) -> None:
        kind, address = _split_node(node)
        change = plan.changes[address]
        provider = self.registry.for_type(change.type)

        if kind == "destroy":
            with self._state_lock:
                recorded = state.resources.get(address)
            if recorded is None:
                return
            self._delete_deposed(address, recorded, provider, state)
            self._notify(address, "delete", "started")
            self._call(f"delete {address}", lambda: provider.delete(recorded.type, recorded.id))
            with self._state_lock:
                state.resources.pop(address, None)
                self._persist(state)
            logger.info("%s: destroyed (%s)", address, recorded.id)
            self._notify(address, "delete", "done")
            return

        if kind == "deposed":
            with self._state_lock:
                recorded = state.resources.get(address)
            if recorded is not None:
                self._delete_deposed(address, recorded, provider, state)
            return

        spec = document.resources[address]
        with self._state_lock:
            inputs = resolve(spec.properties, state.outputs_by_address())
            recorded = state.resources.get(address)
        if contains_unknown(inputs):
            raise ProviderError(f"{address}: inputs still unresolved at apply time", address)
        provider.validate(address, spec.type, inputs)

        if change.action == Action.UPDATE and recorded is not None:
            self._notify(address, "update", "started")
            outputs = self._call(f"update {address}",
                                 lambda: provider.update(spec.type, recorded.id, inputs))
            resource_id = recorded.id
            deposed = list(recorded.deposed)
        else:
            self._notify(address, "create", "started")
            resource_id, outputs = self._call(f"create {address}",
                                              lambda: provider.create(spec.type, inputs))
            # the replaced object stays recorded until its delete succeeds
            deposed = list(recorded.deposed) + [recorded.id] if recorded is not None else []

        with self._state_lock:
            state.resources[address] = ResourceState(
                type=spec.type,
                name=spec.name,
                id=resource_id,
                inputs=inputs,
                outputs=outputs,
                dependencies=spec.dependencies(),
                deposed=deposed,
            )
            if change.action == Action.CREATE:
                created.append(address)
            self._persist(state)
        logger.info("%s: %s (%s)", address, "updated" if change.action == Action.UPDATE else "created", resource_id)
        self._notify(address, change.action.value, "done")

    def _delete_deposed(self, address: str, recorded: ResourceState, provider, state: State) -> None:
        for old_id in list(recorded.deposed):
            self._notify(address, "delete-deposed", "started")
            self._call(f"delete deposed {address}", lambda: provider.delete(recorded.type, old_id))
            with self._state_lock:
                recorded.deposed.remove(old_id)
                self._persist(state)
            logger.info("%s: destroyed deposed object %s", address, old_id)
            self._notify(address, "delete-deposed", "done")

    def _rollback(self, created: List[str], state: State, result: ApplyResult) -> None:
        logger.warning("rolling back %d resource(s) created during this apply", len(created))
        for address in reversed(created):
            recorded = state.resources.get(address)
            if recorded is None:
                continue
            provider = self.registry.for_type(recorded.type)
            try:
                self._call(f"rollback {address}", lambda: provider.delete(recorded.type, recorded.id))
            except ProviderError as e:
                logger.error("rollback of %s failed, object %s left in place: %s", address, recorded.id, e)
                continue
            del state.resources[address]
            result.rolled_back.append(address)
            self._notify(address, "rollback", "done")
        self._persist(state)
