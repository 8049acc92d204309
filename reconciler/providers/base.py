"""
Provider interface
A provider turns create/read/update/delete calls into remote API calls
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import ConfigError
from ..resources import contains_unknown, provider_for_type


@dataclass
class ResourceSchema:
    """
    Shape of one resource type

    force_new entries may be dotted paths (vpc_config.subnet_ids); a change
    at or below such a path requires replacing the remote object.
    """

    type: str
    required: List[str] = field(default_factory=list)
    optional: List[str] = field(default_factory=list)
    force_new: List[str] = field(default_factory=list)
    defaults: Dict[str, Any] = field(default_factory=dict)
    computed: Dict[str, Callable[[str, Dict[str, Any]], Any]] = field(default_factory=dict)
    validators: List[Callable[[Dict[str, Any]], Optional[str]]] = field(default_factory=list)
    id_prefix: str = ""

    @property
    def attributes(self) -> List[str]:
        return self.required + self.optional

    def exposes(self, attribute: str) -> bool:
        """Whether created objects carry attribute (first segment of a dotted path)"""
        top = attribute.split(".", 1)[0]
        return top in ("id", "arn") or top in self.attributes or top in self.computed

    def requires_replace(self, changed_path: str) -> bool:
        for path in self.force_new:
            if changed_path == path or changed_path.startswith(path + ".") or path.startswith(changed_path + "."):
                return True
        return False

    def validate(self, address: str, inputs: Dict[str, Any]) -> None:
        """
        Check declared inputs against the schema

        Unknown values are accepted; they are checked again at apply time.

        Raises:
            ConfigError: missing required or undeclared attributes, or a
                failed type-specific validator
        """
        missing = [name for name in self.required if inputs.get(name) is None]
        if missing:
            raise ConfigError(f"{address}: missing required attribute(s) {', '.join(missing)}")

        allowed = set(self.attributes)
        unexpected = sorted(name for name in inputs if name not in allowed)
        if unexpected:
            raise ConfigError(f"{address}: unsupported attribute(s) {', '.join(unexpected)}")

        if contains_unknown(inputs):
            return
        for validator in self.validators:
            problem = validator(inputs)
            if problem:
                raise ConfigError(f"{address}: {problem}")

    def with_defaults(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(self.defaults)
        merged.update({key: value for key, value in inputs.items() if value is not None})
        return merged


class Provider(abc.ABC):
    """Base class for providers; subclasses implement the four calls"""

    name = ""

    def __init__(self, schemas: Optional[Dict[str, ResourceSchema]] = None):
        self.schemas = dict(schemas or {})

    def schema(self, resource_type: str) -> ResourceSchema:
        try:
            return self.schemas[resource_type]
        except KeyError:
            raise ConfigError(f"provider {self.name} does not support resource type {resource_type}")

    def validate(self, address: str, resource_type: str, inputs: Dict[str, Any]) -> None:
        self.schema(resource_type).validate(address, inputs)

    @abc.abstractmethod
    def create(self, resource_type: str, inputs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """Create a remote object and return (id, outputs)"""

    @abc.abstractmethod
    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        """Return current outputs, or None when the object no longer exists"""

    @abc.abstractmethod
    def update(self, resource_type: str, resource_id: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Update a remote object in place and return its outputs"""

    @abc.abstractmethod
    def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete a remote object; deleting a missing object is not an error"""


class ProviderRegistry:
    """Maps provider names (the resource type prefix) to providers"""

    def __init__(self, providers: Optional[List[Provider]] = None):
        self._providers: Dict[str, Provider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: Provider) -> None:
        if not provider.name:
            raise ValueError("provider must have a name")
        self._providers[provider.name] = provider

    def get(self, name: str) -> Provider:
        try:
            return self._providers[name]
        except KeyError:
            raise ConfigError(f"no provider registered for {name!r}")

    def for_type(self, resource_type: str) -> Provider:
        return self.get(provider_for_type(resource_type))

    def schema(self, resource_type: str) -> ResourceSchema:
        return self.for_type(resource_type).schema(resource_type)


__all__ = ["Provider", "ProviderRegistry", "ResourceSchema"]
