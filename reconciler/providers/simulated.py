"""
Simulated provider
Keeps remote objects in memory (optionally mirrored to a JSON file) so plans
and applies can be exercised without touching a real cloud account
"""

import json
import logging
import os
import threading
import uuid
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ProviderError, ResourceNotFoundError, ThrottlingError
from .base import Provider, ResourceSchema

logger = logging.getLogger(__name__)


class _Fault:
    def __init__(self, resource_type: str, operation: str, error: ProviderError, times: Optional[int]):
        self.resource_type = resource_type
        self.operation = operation
        self.error = error
        self.remaining = times

    def matches(self, resource_type: str, operation: str) -> bool:
        if self.remaining is not None and self.remaining <= 0:
            return False
        return self.resource_type == resource_type and self.operation in (operation, "*")


class SimulatedProvider(Provider):
    """
    In-memory stand-in for a cloud provider

    Args:
        name: Provider name (resource type prefix)
        schemas: Supported resource types
        path: Optional JSON file the objects are loaded from and saved to
        region: Region used when rendering ARNs
        account_id: Account used when rendering ARNs
    """

    def __init__(self, name: str, schemas: Dict[str, ResourceSchema], path: Optional[str] = None,
                 region: str = "af-south-1", account_id: str = "123456789012"):
        super().__init__(schemas)
        self.name = name
        self.path = path
        self.region = region
        self.account_id = account_id
        self.calls: List[Tuple[str, str, str]] = []
        self._objects: Dict[str, Dict[str, Any]] = {}
        self._faults: List[_Fault] = []
        self._lock = threading.RLock()
        if path and os.path.exists(path):
            self._load()

    # Persistence

    def _load(self) -> None:
        with open(self.path, "r") as f:
            self._objects = json.load(f).get("objects", {})
        logger.debug("loaded %d simulated object(s) from %s", len(self._objects), self.path)

    def _save(self) -> None:
        if not self.path:
            return
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump({"provider": self.name, "objects": self._objects}, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    # Fault injection

    def inject_fault(self, resource_type: str, operation: str = "create",
                     error: Optional[ProviderError] = None, times: Optional[int] = None) -> None:
        """Make the next `times` calls (all calls when None) for a type fail"""
        error = error or ProviderError(f"simulated failure for {resource_type} {operation}")
        self._faults.append(_Fault(resource_type, operation, error, times))

    def throttle(self, resource_type: str, times: int = 1, operation: str = "*") -> None:
        self.inject_fault(resource_type, operation, ThrottlingError("Rate exceeded"), times)

    def _check_faults(self, resource_type: str, operation: str) -> None:
        for fault in self._faults:
            if fault.matches(resource_type, operation):
                if fault.remaining is not None:
                    fault.remaining -= 1
                raise fault.error

    # Out-of-band changes, used to simulate drift

    def remove_object(self, resource_id: str) -> None:
        with self._lock:
            self._objects.pop(resource_id, None)
            self._save()

    def modify_object(self, resource_id: str, **outputs: Any) -> None:
        with self._lock:
            if resource_id not in self._objects:
                raise ResourceNotFoundError(f"no such object {resource_id}")
            self._objects[resource_id]["outputs"].update(outputs)
            self._save()

    def objects(self, resource_type: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                resource_id: dict(obj)
                for resource_id, obj in self._objects.items()
                if resource_type is None or obj["type"] == resource_type
            }

    # Provider calls

    def _render_outputs(self, schema: ResourceSchema, resource_id: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        outputs = schema.with_defaults(inputs)
        outputs["id"] = resource_id
        service = schema.type.split("_")[1] if "_" in schema.type else schema.type
        outputs.setdefault(
            "arn", f"arn:{self.name}:{service}:{self.region}:{self.account_id}:{schema.type}/{resource_id}"
        )
        for attribute, compute in schema.computed.items():
            outputs[attribute] = compute(resource_id, outputs)
        return outputs

    def create(self, resource_type: str, inputs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        schema = self.schema(resource_type)
        with self._lock:
            self.calls.append(("create", resource_type, ""))
            self._check_faults(resource_type, "create")
            prefix = schema.id_prefix or resource_type.split("_", 1)[-1] + "-"
            resource_id = f"{prefix}{uuid.uuid4().hex[:17]}"
            outputs = self._render_outputs(schema, resource_id, inputs)
            self._objects[resource_id] = {"type": resource_type, "inputs": inputs, "outputs": outputs}
            self._save()
        logger.debug("created %s %s", resource_type, resource_id)
        return resource_id, outputs

    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self.calls.append(("read", resource_type, resource_id))
            self._check_faults(resource_type, "read")
            obj = self._objects.get(resource_id)
            return dict(obj["outputs"]) if obj else None

    def update(self, resource_type: str, resource_id: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        schema = self.schema(resource_type)
        with self._lock:
            self.calls.append(("update", resource_type, resource_id))
            self._check_faults(resource_type, "update")
            if resource_id not in self._objects:
                raise ResourceNotFoundError(f"{resource_type} {resource_id} not found")
            outputs = self._render_outputs(schema, resource_id, inputs)
            self._objects[resource_id] = {"type": resource_type, "inputs": inputs, "outputs": outputs}
            self._save()
        logger.debug("updated %s %s", resource_type, resource_id)
        return outputs

    def delete(self, resource_type: str, resource_id: str) -> None:
        with self._lock:
            self.calls.append(("delete", resource_type, resource_id))
            self._check_faults(resource_type, "delete")
            self._objects.pop(resource_id, None)
            self._save()
        logger.debug("deleted %s %s", resource_type, resource_id)
