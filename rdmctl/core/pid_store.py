"""PID definition loading and lookup for YAML-based rdmctl PID stores."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from rdmctl.core.codec import field_size
from rdmctl.core.errors import PidStoreError, PidValidationError, RdmctlError
from rdmctl.core.model import FieldDescriptor, MessageDescriptor, PidDescriptor
from rdmctl.core.rdm import ESTA_MANUFACTURER_ID

_MESSAGE_SLOTS = ("get_request", "get_response", "set_request", "set_response")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise yaml.constructor.ConstructorError(
                None, None, f"duplicate key '{key}'", key_node.start_mark
            )
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


class PidStore:
    """Index of PID descriptors by manufacturer, name and value."""

    def __init__(self, descriptors: list[PidDescriptor] | None = None) -> None:
        self._by_value: dict[tuple[int, int], PidDescriptor] = {}
        self._by_name: dict[tuple[int, str], PidDescriptor] = {}
        for descriptor in descriptors or ():
            self.add(descriptor)

    def add(self, descriptor: PidDescriptor) -> PidDescriptor | None:
        """Add a descriptor, returning the one it replaced (if any)."""
        key = (descriptor.manufacturer_id, descriptor.value)
        replaced = self._by_value.get(key)
        if replaced is not None:
            self._by_name.pop((replaced.manufacturer_id, replaced.name.upper()), None)
        self._by_value[key] = descriptor
        self._by_name[(descriptor.manufacturer_id, descriptor.name.upper())] = descriptor
        return replaced

    def get_descriptor(self, pid: str | int, manufacturer_id: int) -> PidDescriptor | None:
        """Look up a PID by name or value, manufacturer specific PIDs first."""
        for owner in dict.fromkeys((manufacturer_id, ESTA_MANUFACTURER_ID)):
            if isinstance(pid, str):
                found = self._by_name.get((owner, pid.strip().upper()))
            else:
                found = self._by_value.get((owner, pid))
            if found is not None:
                return found
        return None

    def supported_pids(self, manufacturer_id: int) -> list[str]:
        names = {
            descriptor.name.lower()
            for (owner, _), descriptor in self._by_value.items()
            if owner in (manufacturer_id, ESTA_MANUFACTURER_ID)
        }
        return sorted(names)

    def __len__(self) -> int:
        return len(self._by_value)


@dataclass(frozen=True)
class LoadedPidStore:
    store: PidStore
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("rdmctl.schemas").joinpath("pids.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _pid_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "rdmctl/pids", xdg_data / "rdmctl/pids"


def read_yaml(
    path: Path | Traversable,
    *,
    load_error: type[RdmctlError] = PidStoreError,
    invalid_error: type[RdmctlError] = PidValidationError,
) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise load_error(f"Could not read {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise invalid_error(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise invalid_error(f"{path} must contain a mapping at root")
    return loaded


def _build_field(doc: dict[str, Any], *, context: str) -> FieldDescriptor:
    children = tuple(
        _build_field(child, context=f"{context}.{child['name']}")
        for child in doc.get("fields", [])
    )
    field = FieldDescriptor(
        name=doc["name"],
        type=doc["type"],
        min_size=int(doc.get("min_size", 0)),
        max_size=int(doc.get("max_size", 32)),
        labels={str(label): int(value) for label, value in doc.get("labels", {}).items()},
        ranges=tuple((int(low), int(high)) for low, high in doc.get("ranges", [])),
        fields=children,
        min_count=int(doc.get("min_count", 0)),
        max_count=int(doc["max_count"]) if "max_count" in doc else None,
    )
    if field.min_size > field.max_size:
        raise PidValidationError(f"{context}: min_size exceeds max_size")
    for low, high in field.ranges:
        if low > high:
            raise PidValidationError(f"{context}: range [{low}, {high}] is empty")
    if field.type == "group":
        if not children:
            raise PidValidationError(f"{context}: group must define fields")
        for child in children:
            if field_size(child) is None:
                raise PidValidationError(f"{context}.{child.name}: group fields must be fixed size")
        if field.max_count is not None and field.max_count < field.min_count:
            raise PidValidationError(f"{context}: max_count is below min_count")
    return field


def _build_message(name: str, fields_doc: list[dict[str, Any]], *, context: str) -> MessageDescriptor:
    fields = tuple(_build_field(doc, context=f"{context}.{doc['name']}") for doc in fields_doc)
    seen: set[str] = set()
    for index, field in enumerate(fields):
        if field.name in seen:
            raise PidValidationError(f"{context}: duplicate field '{field.name}'")
        seen.add(field.name)
        is_last = index == len(fields) - 1
        if field.type == "group" and not is_last:
            raise PidValidationError(f"{context}.{field.name}: group must be the last field")
    return MessageDescriptor(name=name, fields=fields)


def _build_pids(doc: dict[str, Any], source: Path | Traversable) -> list[PidDescriptor]:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise PidValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    manufacturer_id = int(doc.get("manufacturer_id", ESTA_MANUFACTURER_ID))
    descriptors: list[PidDescriptor] = []
    names: set[str] = set()
    values: set[int] = set()
    for pid_doc in doc["pids"]:
        name = pid_doc["name"].upper()
        value = int(pid_doc["value"])
        if name in names or value in values:
            raise PidValidationError(f"Duplicate PID '{name}' (0x{value:04x}) in {source}")
        names.add(name)
        values.add(value)
        messages = {
            slot: _build_message(f"{name}.{slot}", pid_doc[slot], context=f"{name}.{slot}")
            for slot in _MESSAGE_SLOTS
            if slot in pid_doc
        }
        descriptors.append(
            PidDescriptor(name=name, value=value, manufacturer_id=manufacturer_id, **messages)
        )
    return descriptors


def _iter_packaged_pid_paths() -> list[Traversable]:
    pid_root = resources.files("rdmctl.pids")
    return [item for item in pid_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_dir(directory: Path) -> list[Path]:
    if not directory.exists() or not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"})


def _iter_user_pid_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _pid_dirs():
        paths.extend(_iter_dir(directory))
    return paths


def load_pid_store(pid_location: Path | None = None) -> LoadedPidStore:
    """Load PID definitions.

    With ``pid_location`` only that directory is read; otherwise the packaged
    definitions are loaded first and user definitions may override them.
    """
    store = PidStore()
    warnings: list[str] = []

    if pid_location is not None:
        if not pid_location.is_dir():
            raise PidStoreError(f"PID location {pid_location} is not a directory")
        sources: list[tuple[Path | Traversable, bool]] = [(p, True) for p in _iter_dir(pid_location)]
        if not sources:
            raise PidStoreError(f"No PID definitions found in {pid_location}")
    else:
        sources = [(p, False) for p in sorted(_iter_packaged_pid_paths(), key=lambda p: p.name)]
        sources.extend((p, True) for p in _iter_user_pid_paths())

    for path, is_user in sources:
        doc = read_yaml(path)
        for descriptor in _build_pids(doc, path):
            replaced = store.add(descriptor)
            if replaced is not None and is_user:
                warning = f"PID '{descriptor.name}' from {path} overrides {replaced.name}"
                LOGGER.warning(warning)
                warnings.append(warning)

    return LoadedPidStore(store=store, warnings=tuple(warnings))
