"""Build, serialize, deserialize and print RDM parameter messages."""

from __future__ import annotations

import ipaddress
import struct
from collections.abc import Sequence
from typing import Any

from rdmctl.core.errors import MessageBuildError, MessageDecodeError, UidFormatError
from rdmctl.core.model import FieldDescriptor, Message, MessageDescriptor, Uid

_INT_FORMATS = {
    "uint8": ">B",
    "uint16": ">H",
    "uint32": ">I",
    "int8": ">b",
    "int16": ">h",
    "int32": ">i",
}
_FIXED_SIZES = {"bool": 1, "uid": 6, "ipv4": 4, **{k: struct.calcsize(v) for k, v in _INT_FORMATS.items()}}
_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}


def field_size(field: FieldDescriptor) -> int | None:
    """Return the encoded size of a field, or None if it is variable length."""
    if field.type in _FIXED_SIZES:
        return _FIXED_SIZES[field.type]
    if field.type == "group":
        sizes = [field_size(child) for child in field.fields]
        if any(size is None for size in sizes):
            return None
        if field.max_count is not None and field.min_count == field.max_count:
            return sum(sizes) * field.max_count
    return None


def _group_entry_size(field: FieldDescriptor) -> int | None:
    sizes = [field_size(child) for child in field.fields]
    if any(size is None for size in sizes):
        return None
    return sum(sizes)


def _parse_int(field: FieldDescriptor, text: str) -> int:
    lowered = text.strip().lower()
    for label, value in field.labels.items():
        if label.lower() == lowered:
            return value
    try:
        value = int(lowered, 16) if lowered.lstrip("+-").startswith("0x") else int(lowered, 10)
    except ValueError:
        raise ValueError(f"'{text}' is not a valid {field.type}") from None
    fmt = _INT_FORMATS[field.type]
    try:
        struct.pack(fmt, value)
    except struct.error:
        raise ValueError(f"{value} does not fit in {field.type}") from None
    if field.ranges and not any(low <= value <= high for low, high in field.ranges):
        allowed = ", ".join(f"[{low}, {high}]" for low, high in field.ranges)
        raise ValueError(f"{value} is outside the allowed range(s) {allowed}")
    return value


def _parse_field(field: FieldDescriptor, text: str) -> Any:
    if field.type in _INT_FORMATS:
        return _parse_int(field, text)
    if field.type == "bool":
        lowered = text.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ValueError(f"'{text}' is not a boolean")
    if field.type == "string":
        try:
            encoded = text.encode("ascii")
        except UnicodeEncodeError:
            raise ValueError(f"'{text}' is not ASCII") from None
        if not field.min_size <= len(encoded) <= field.max_size:
            raise ValueError(f"string length must be between {field.min_size} and {field.max_size}")
        return text
    if field.type == "uid":
        try:
            return Uid.from_string(text)
        except UidFormatError as exc:
            raise ValueError(str(exc)) from None
    if field.type == "ipv4":
        try:
            return ipaddress.IPv4Address(text.strip())
        except ipaddress.AddressValueError:
            raise ValueError(f"'{text}' is not an IPv4 address") from None
    raise ValueError(f"unsupported field type '{field.type}'")


def _format_value(field: FieldDescriptor, value: Any) -> str:
    if field.type in _INT_FORMATS:
        for label, label_value in field.labels.items():
            if label_value == value:
                return label
        return str(value)
    if field.type == "bool":
        return "true" if value else "false"
    return str(value)


class MessageCodec:
    """Translates between user strings, typed messages and parameter data."""

    def build_message(self, descriptor: MessageDescriptor, inputs: Sequence[str]) -> Message:
        try:
            values = self._build_fields(descriptor.fields, list(inputs))
        except ValueError as exc:
            raise MessageBuildError(
                f"Invalid arguments for {descriptor.name}: {exc}",
                schema=self.schema_as_string(descriptor),
            ) from exc
        return Message(name=descriptor.name, values=values)

    def _build_fields(self, fields: Sequence[FieldDescriptor], inputs: list[str]) -> tuple[tuple[str, Any], ...]:
        scalar = [field for field in fields if field.type != "group"]
        groups = [field for field in fields if field.type == "group"]

        if not groups and len(inputs) != len(scalar):
            raise ValueError(f"expected {len(scalar)} argument(s), got {len(inputs)}")
        if len(inputs) < len(scalar):
            raise ValueError(f"expected at least {len(scalar)} argument(s), got {len(inputs)}")

        values: list[tuple[str, Any]] = []
        position = 0
        for field in fields:
            if field.type != "group":
                values.append((field.name, _parse_field(field, inputs[position])))
                position += 1
                continue
            remaining = inputs[position:]
            width = len(field.fields)
            if width == 0 or len(remaining) % width != 0:
                raise ValueError(f"{field.name} takes arguments in multiples of {width}")
            count = len(remaining) // width
            self._check_count(field, count)
            entries = tuple(
                Message(
                    name=field.name,
                    values=self._build_fields(field.fields, remaining[i * width:(i + 1) * width]),
                )
                for i in range(count)
            )
            values.append((field.name, entries))
            position = len(inputs)
        return tuple(values)

    @staticmethod
    def _check_count(field: FieldDescriptor, count: int) -> None:
        if count < field.min_count:
            raise ValueError(f"{field.name} needs at least {field.min_count} entries, got {count}")
        if field.max_count is not None and count > field.max_count:
            raise ValueError(f"{field.name} allows at most {field.max_count} entries, got {count}")

    def serialize_message(self, message: Message, descriptor: MessageDescriptor) -> bytes:
        return self._serialize_fields(descriptor.fields, dict(message.values))

    def _serialize_fields(self, fields: Sequence[FieldDescriptor], values: dict[str, Any]) -> bytes:
        out = bytearray()
        for field in fields:
            value = values[field.name]
            if field.type in _INT_FORMATS:
                out += struct.pack(_INT_FORMATS[field.type], value)
            elif field.type == "bool":
                out.append(1 if value else 0)
            elif field.type == "string":
                out += value.encode("ascii")
            elif field.type == "uid":
                out += value.pack()
            elif field.type == "ipv4":
                out += value.packed
            elif field.type == "group":
                for entry in value:
                    out += self._serialize_fields(field.fields, dict(entry.values))
        return bytes(out)

    def deserialize_message(self, descriptor: MessageDescriptor, data: bytes) -> Message:
        values, offset = self._decode_fields(descriptor.fields, data, 0, descriptor.name)
        if offset != len(data):
            raise MessageDecodeError(
                f"{len(data) - offset} trailing byte(s) after decoding {descriptor.name}"
            )
        return Message(name=descriptor.name, values=values)

    def _decode_fields(
        self,
        fields: Sequence[FieldDescriptor],
        data: bytes,
        offset: int,
        context: str,
    ) -> tuple[tuple[tuple[str, Any], ...], int]:
        values: list[tuple[str, Any]] = []
        for index, field in enumerate(fields):
            is_last = index == len(fields) - 1
            if field.type == "string":
                if is_last:
                    raw = data[offset:]
                else:
                    raw = data[offset:offset + field.max_size]
                if len(raw) > field.max_size or len(raw) < field.min_size:
                    raise MessageDecodeError(
                        f"{context}.{field.name}: string of {len(raw)} bytes outside [{field.min_size}, {field.max_size}]"
                    )
                offset += len(raw)
                values.append((field.name, raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")))
                continue

            if field.type == "group":
                entry_size = _group_entry_size(field)
                if entry_size is None or entry_size == 0:
                    raise MessageDecodeError(f"{context}.{field.name}: group entries must be fixed size")
                if field.max_count is not None and field.min_count == field.max_count:
                    count = field.max_count
                else:
                    remaining = len(data) - offset
                    if remaining % entry_size != 0:
                        raise MessageDecodeError(
                            f"{context}.{field.name}: {remaining} bytes is not a multiple of {entry_size}"
                        )
                    count = remaining // entry_size
                try:
                    self._check_count(field, count)
                except ValueError as exc:
                    raise MessageDecodeError(f"{context}: {exc}") from None
                entries = []
                for _ in range(count):
                    entry_values, offset = self._decode_fields(field.fields, data, offset, f"{context}.{field.name}")
                    entries.append(Message(name=field.name, values=entry_values))
                values.append((field.name, tuple(entries)))
                continue

            size = _FIXED_SIZES.get(field.type)
            if size is None:
                raise MessageDecodeError(f"{context}.{field.name}: unsupported field type '{field.type}'")
            chunk = data[offset:offset + size]
            if len(chunk) != size:
                raise MessageDecodeError(f"{context}.{field.name}: expected {size} bytes, got {len(chunk)}")
            offset += size
            if field.type in _INT_FORMATS:
                value: Any = struct.unpack(_INT_FORMATS[field.type], chunk)[0]
            elif field.type == "bool":
                value = chunk[0] != 0
            elif field.type == "uid":
                value = Uid(int.from_bytes(chunk[:2], "big"), int.from_bytes(chunk[2:], "big"))
            else:
                value = ipaddress.IPv4Address(chunk)
            values.append((field.name, value))
        return tuple(values), offset

    def pretty_print_message(
        self,
        manufacturer_id: int,
        is_set: bool,
        pid_value: int,
        message: Message,
        descriptor: MessageDescriptor,
    ) -> str:
        lines: list[str] = []
        self._print_fields(descriptor.fields, message.values, lines, indent=0)
        return "".join(f"{line}\n" for line in lines)

    def _print_fields(
        self,
        fields: Sequence[FieldDescriptor],
        values: tuple[tuple[str, Any], ...],
        lines: list[str],
        indent: int,
    ) -> None:
        pad = "  " * indent
        by_name = dict(values)
        for field in fields:
            value = by_name[field.name]
            if field.type == "group":
                for entry in value:
                    lines.append(f"{pad}{field.name} {{")
                    self._print_fields(field.fields, entry.values, lines, indent + 1)
                    lines.append(f"{pad}}}")
            else:
                lines.append(f"{pad}{field.name}: {_format_value(field, value)}")

    def schema_as_string(self, descriptor: MessageDescriptor) -> str:
        lines: list[str] = []
        self._schema_fields(descriptor.fields, lines, indent=0)
        if not lines:
            return "No arguments\n"
        return "".join(f"{line}\n" for line in lines)

    def _schema_fields(self, fields: Sequence[FieldDescriptor], lines: list[str], indent: int) -> None:
        pad = "  " * indent
        for field in fields:
            if field.type == "group":
                upper = "" if field.max_count is None else str(field.max_count)
                lines.append(f"{pad}{field.name} {{  # repeated [{field.min_count}, {upper}]")
                self._schema_fields(field.fields, lines, indent + 1)
                lines.append(f"{pad}}}")
                continue
            detail = field.type
            if field.type == "string":
                detail += f": [{field.min_size}, {field.max_size}]"
            elif field.ranges:
                detail += ": " + ", ".join(f"[{low}, {high}]" for low, high in field.ranges)
            lines.append(f"{pad}{field.name}: {detail}")
            for label, value in sorted(field.labels.items(), key=lambda item: item[1]):
                lines.append(f"{pad}  {value}: {label}")
