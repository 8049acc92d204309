"""
Resource model for the reconciler
Declared resources, recorded state, and references between them
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional


class _Unknown:
    """Placeholder for a value only known after apply"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


@dataclass(frozen=True)
class Ref:
    """Reference to an attribute of another resource, e.g. aws_vpc.main.id"""

    address: str
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.address}.{self.attribute}}}"


@dataclass(frozen=True)
class Template:
    """String with embedded references, e.g. "${aws_vpc.main.id}-rt" """

    parts: tuple

    def __str__(self) -> str:
        return "".join(str(part) for part in self.parts)


@dataclass
class Lifecycle:
    create_before_destroy: bool = False
    prevent_destroy: bool = False
    ignore_changes: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Lifecycle":
        data = data or {}
        return cls(
            create_before_destroy=bool(data.get("create_before_destroy", False)),
            prevent_destroy=bool(data.get("prevent_destroy", False)),
            ignore_changes=list(data.get("ignore_changes") or []),
        )


@dataclass
class ResourceSpec:
    """A declared resource: what should exist"""

    type: str
    name: str
    properties: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    lifecycle: Lifecycle = field(default_factory=Lifecycle)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    @property
    def provider_name(self) -> str:
        return provider_for_type(self.type)

    def dependencies(self) -> List[str]:
        """Explicit and implicit dependencies, sorted and de-duplicated"""
        found = set(self.depends_on)
        found.update(references(self.properties))
        found.discard(self.address)
        return sorted(found)


@dataclass
class ResourceState:
    """A recorded resource: what the last apply produced"""

    type: str
    name: str
    id: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    # ids of objects replaced under create_before_destroy whose delete
    # has not succeeded yet
    deposed: List[str] = field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    @property
    def provider_name(self) -> str:
        return provider_for_type(self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "id": self.id,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "dependencies": self.dependencies,
            "deposed": self.deposed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceState":
        return cls(
            type=data["type"],
            name=data["name"],
            id=data["id"],
            inputs=data.get("inputs", {}),
            outputs=data.get("outputs", {}),
            dependencies=data.get("dependencies", []),
            deposed=data.get("deposed", []),
        )


def provider_for_type(resource_type: str) -> str:
    """aws_eks_cluster -> aws"""
    return resource_type.split("_", 1)[0]


def split_address(address: str) -> tuple:
    """Split "aws_vpc.main" into ("aws_vpc", "main")"""
    parts = address.split(".")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"malformed resource address: {address!r}")
    return parts[0], parts[1]


def refs(value: Any) -> Iterator[Ref]:
    """Yield every reference inside a (nested) value"""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Template):
        for part in value.parts:
            if isinstance(part, Ref):
                yield part
    elif isinstance(value, dict):
        for item in value.values():
            yield from refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from refs(item)


def references(value: Any) -> Iterator[str]:
    """Yield every resource address referenced inside a (nested) value"""
    for ref in refs(value):
        yield ref.address


def _lookup(outputs: Dict[str, Dict[str, Any]], ref: Ref) -> Any:
    if ref.address not in outputs:
        return UNKNOWN
    current: Any = outputs[ref.address]
    for key in ref.attribute.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return UNKNOWN
    return current


def resolve(value: Any, outputs: Dict[str, Dict[str, Any]]) -> Any:
    """
    Replace references with concrete values

    Args:
        value: Declared property value, possibly nested
        outputs: Known outputs keyed by resource address

    Returns:
        The resolved value; references that cannot be resolved yet
        become UNKNOWN
    """
    if isinstance(value, Ref):
        return _lookup(outputs, value)
    if isinstance(value, Template):
        pieces = []
        for part in value.parts:
            resolved = _lookup(outputs, part) if isinstance(part, Ref) else part
            if resolved is UNKNOWN:
                return UNKNOWN
            pieces.append(str(resolved))
        return "".join(pieces)
    if isinstance(value, dict):
        return {key: resolve(item, outputs) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve(item, outputs) for item in value]
    return value


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, list):
        return any(contains_unknown(item) for item in value)
    return False
