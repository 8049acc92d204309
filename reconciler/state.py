"""
State storage
Local JSON state file with an exclusive lock file next to it
"""

import contextlib
import json
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

from .errors import ReconcileError, StateLockedError
from .resources import ResourceState

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class State:
    serial: int = 0
    lineage: str = field(default_factory=lambda: str(uuid.uuid4()))
    resources: Dict[str, ResourceState] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)

    def outputs_by_address(self) -> Dict[str, Dict[str, Any]]:
        return {address: resource.outputs for address, resource in self.resources.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "serial": self.serial,
            "lineage": self.lineage,
            "resources": {address: resource.to_dict() for address, resource in sorted(self.resources.items())},
            "outputs": self.outputs,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "State":
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise ReconcileError(f"unsupported state version {version}")
        return cls(
            serial=data.get("serial", 0),
            lineage=data.get("lineage") or str(uuid.uuid4()),
            resources={
                address: ResourceState.from_dict(resource)
                for address, resource in data.get("resources", {}).items()
            },
            outputs=data.get("outputs", {}),
        )


class StateStore:
    """
    Reads and writes state for one stack

    Args:
        path: State file path; the lock lives at <path>.lock
    """

    def __init__(self, path: str):
        self.path = path
        self.lock_path = f"{path}.lock"

    def load(self) -> State:
        if not os.path.exists(self.path):
            logger.debug("no state at %s, starting empty", self.path)
            return State()
        try:
            with open(self.path, "r") as f:
                return State.from_dict(json.load(f))
        except json.JSONDecodeError as e:
            raise ReconcileError(f"state file {self.path} is corrupt: {e}")

    def save(self, state: State) -> None:
        """Write state atomically, bumping its serial"""
        state.serial += 1
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(state.to_dict(), f, indent=2, sort_keys=True)
            f.write("\n")
        os.replace(tmp_path, self.path)
        logger.debug("saved state serial %d to %s", state.serial, self.path)

    def acquire(self, operation: str = "") -> None:
        holder = {
            "id": str(uuid.uuid4()),
            "operation": operation,
            "who": f"{os.getpid()}@{socket.gethostname()}",
            "created": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        directory = os.path.dirname(os.path.abspath(self.lock_path))
        os.makedirs(directory, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise StateLockedError(self.path, self.lock_holder())
        with os.fdopen(fd, "w") as f:
            json.dump(holder, f)

    def release(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            os.remove(self.lock_path)

    def lock_holder(self) -> str:
        try:
            with open(self.lock_path, "r") as f:
                info = json.load(f)
        except (OSError, json.JSONDecodeError):
            return ""
        return f"{info.get('who', '?')} ({info.get('operation', '')}) since {info.get('created', '?')}"

    def is_locked(self) -> bool:
        return os.path.exists(self.lock_path)

    def force_unlock(self) -> bool:
        """Remove a stale lock; returns False when there was none"""
        if not self.is_locked():
            return False
        logger.warning("force-unlocking state %s held by %s", self.path, self.lock_holder())
        self.release()
        return True

    @contextlib.contextmanager
    def locked(self, operation: str = "") -> Iterator[None]:
        self.acquire(operation)
        try:
            yield
        finally:
            self.release()
