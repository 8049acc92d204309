"""
Declaration loader
Reads declaration documents and variable files, resolves ${var.*}
interpolation, and turns ${type.name.attr} expressions into references
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .errors import ConfigError
from .resources import Lifecycle, Ref, ResourceSpec, Template, split_address

logger = logging.getLogger(__name__)

EXPRESSION = re.compile(r"\$\{([^}]+)\}")
IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

VARIABLE_TYPES = {
    "string": (str,),
    "number": (int, float),
    "bool": (bool,),
    "list": (list,),
    "map": (dict,),
}

_MISSING = object()


@dataclass
class Document:
    """A fully parsed declaration document"""

    resources: Dict[str, ResourceSpec] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)


def _read_mapping(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            if path.endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"file not found: {path}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot parse {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_var_file(path: str) -> Dict[str, Any]:
    """Load a YAML or JSON variable file"""
    values = _read_mapping(path)
    logger.debug("loaded %d variable(s) from %s", len(values), path)
    return values


def parse_var_override(text: str) -> tuple:
    """
    Parse a KEY=VALUE command line override

    The value is read as YAML so numbers, booleans and lists keep their type.
    """
    if "=" not in text:
        raise ConfigError(f"variable override must be KEY=VALUE, got {text!r}")
    key, raw = text.split("=", 1)
    key = key.strip()
    if not IDENTIFIER.match(key):
        raise ConfigError(f"invalid variable name {key!r}")
    try:
        value = yaml.safe_load(raw) if raw else ""
    except yaml.YAMLError:
        value = raw
    return key, value


def resolve_variables(declared: Dict[str, Any], supplied: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge supplied values with declared defaults

    Args:
        declared: The document's variables block
        supplied: Values from variable files and overrides

    Returns:
        Final variable values

    Raises:
        ConfigError: unknown, missing or mistyped variables
    """
    unknown = sorted(set(supplied) - set(declared))
    if unknown:
        raise ConfigError(f"values supplied for undeclared variable(s): {', '.join(unknown)}")

    values = {}
    for name, definition in declared.items():
        definition = definition or {}
        if not isinstance(definition, dict):
            raise ConfigError(f"variable {name} must be a mapping")

        value = supplied.get(name, definition.get("default", _MISSING))
        if value is _MISSING:
            raise ConfigError(f"no value for required variable {name}")

        expected = definition.get("type")
        if expected:
            if expected not in VARIABLE_TYPES:
                raise ConfigError(f"variable {name} has unsupported type {expected!r}")
            allowed = VARIABLE_TYPES[expected]
            # bool is an int subclass
            if not isinstance(value, allowed) or (expected == "number" and isinstance(value, bool)):
                raise ConfigError(f"variable {name} must be a {expected}, got {type(value).__name__}")

        values[name] = value
    return values


def _parse_expression(expr: str, variables: Dict[str, Any], where: str) -> Any:
    expr = expr.strip()
    parts = expr.split(".")
    if parts[0] == "var":
        if len(parts) != 2:
            raise ConfigError(f"{where}: malformed variable expression ${{{expr}}}")
        if parts[1] not in variables:
            raise ConfigError(f"{where}: unknown variable {parts[1]}")
        return variables[parts[1]]
    if len(parts) < 3 or not all(parts):
        raise ConfigError(f"{where}: malformed reference ${{{expr}}}")
    return Ref(address=f"{parts[0]}.{parts[1]}", attribute=".".join(parts[2:]))


def interpolate(value: Any, variables: Dict[str, Any], where: str = "document") -> Any:
    """
    Interpolate ${...} expressions inside a (nested) value

    A string that is exactly one expression becomes the variable's value
    or a Ref. Expressions embedded in a longer string become a Template,
    or a plain string when only variables are involved.
    """
    if isinstance(value, dict):
        return {key: interpolate(item, variables, f"{where}.{key}") for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate(item, variables, f"{where}[{i}]") for i, item in enumerate(value)]
    if not isinstance(value, str) or "${" not in value:
        return value

    whole = EXPRESSION.fullmatch(value)
    if whole:
        return _parse_expression(whole.group(1), variables, where)

    parts: List[Any] = []
    position = 0
    for match in EXPRESSION.finditer(value):
        if match.start() > position:
            parts.append(value[position:match.start()])
        resolved = _parse_expression(match.group(1), variables, where)
        parts.append(resolved if isinstance(resolved, Ref) else str(resolved))
        position = match.end()
    if position < len(value):
        parts.append(value[position:])

    if any(isinstance(part, Ref) for part in parts):
        return Template(parts=tuple(parts))
    return "".join(parts)


def _parse_resource(address: str, block: Any, variables: Dict[str, Any]) -> ResourceSpec:
    try:
        resource_type, name = split_address(address)
    except ValueError as e:
        raise ConfigError(str(e))
    if "_" not in resource_type:
        raise ConfigError(f"{address}: resource type must be prefixed by its provider, e.g. aws_vpc")

    block = block or {}
    if not isinstance(block, dict):
        raise ConfigError(f"{address}: resource block must be a mapping")
    extra = set(block) - {"properties", "depends_on", "lifecycle"}
    if extra:
        raise ConfigError(f"{address}: unexpected key(s) {', '.join(sorted(extra))}")

    depends_on = block.get("depends_on") or []
    for dependency in depends_on:
        try:
            split_address(dependency)
        except ValueError as e:
            raise ConfigError(f"{address}: {e}")

    return ResourceSpec(
        type=resource_type,
        name=name,
        properties=interpolate(block.get("properties") or {}, variables, address),
        depends_on=list(depends_on),
        lifecycle=Lifecycle.from_dict(block.get("lifecycle")),
    )


def parse_document(data: Dict[str, Any], supplied: Optional[Dict[str, Any]] = None) -> Document:
    """
    Build a Document from an already-loaded mapping

    Args:
        data: Mapping with variables, resources and outputs blocks
        supplied: Variable values overriding declared defaults

    Returns:
        Parsed Document
    """
    extra = set(data) - {"variables", "resources", "outputs"}
    if extra:
        raise ConfigError(f"unexpected top-level key(s): {', '.join(sorted(extra))}")

    variables = resolve_variables(data.get("variables") or {}, supplied or {})

    resources = {}
    for address, block in (data.get("resources") or {}).items():
        spec = _parse_resource(address, block, variables)
        resources[spec.address] = spec

    outputs = interpolate(data.get("outputs") or {}, variables, "outputs")
    return Document(resources=resources, outputs=outputs, variables=variables)


def load_document(path: str, var_files: Iterable[str] = (),
                  overrides: Optional[Dict[str, Any]] = None) -> Document:
    """
    Load a declaration document from disk

    Args:
        path: Declaration document (YAML or JSON)
        var_files: Variable files applied in order
        overrides: Values applied last (e.g. from --var)

    Returns:
        Parsed Document
    """
    data = _read_mapping(path)

    supplied: Dict[str, Any] = {}
    for var_file in var_files:
        supplied.update(load_var_file(var_file))
    supplied.update(overrides or {})

    document = parse_document(data, supplied)
    logger.info("loaded %d resource(s) from %s", len(document.resources), os.path.basename(path))
    return document
