"""Model descriptors and the request values built from them.

A :class:`ModelDescriptor` names a deployed classifier, the column it
predicts (``label``) and the ordered input fields its deployment expects.
Each input field is read from a row record by name, then by alias; a field
can instead name a formatter that derives its value from the other fields.

Formatters are looked up by name in :data:`FORMATTERS` so descriptors can be
stored as plain JSON.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

BLANK_INPUT = "(blank)"

Formatter = Callable[[Mapping[str, Any], Sequence["InputField"], "InputField"], str]


@dataclass(frozen=True)
class InputField:
    name: str
    aliases: tuple[str, ...] = ()
    formatter: str | None = None

    @property
    def keys(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    name: str
    deployment_id: str
    label: str
    inputs: tuple[InputField, ...] = field(default_factory=tuple)
    description: str | None = None
    default: bool = False

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.inputs]

    def matches(self, name: str) -> bool:
        return name in (self.name, self.deployment_id)


def field_value(
    record: Mapping[str, Any],
    input_field: InputField,
    fields: Sequence[InputField],
) -> str:
    """Value sent for ``input_field``: formatter output, else first non-empty key."""
    if input_field.formatter:
        return FORMATTERS[input_field.formatter](record, fields, input_field)
    for key in input_field.keys:
        value = record.get(key)
        if value:
            return str(value)
    return BLANK_INPUT


def build_input_values(record: Mapping[str, Any], fields: Sequence[InputField]) -> list[str]:
    return [field_value(record, f, fields) for f in fields]


def full_description_unique(
    record: Mapping[str, Any],
    fields: Sequence[InputField],
    current: InputField,
) -> str:
    """Every other field's value joined with a space."""
    return " ".join(field_value(record, f, fields) for f in fields if f is not current)


FORMATTERS: dict[str, Formatter] = {
    "fullDescriptionUniqueFormatter": full_description_unique,
}


__all__ = [
    "BLANK_INPUT",
    "FORMATTERS",
    "Formatter",
    "InputField",
    "ModelDescriptor",
    "build_input_values",
    "field_value",
    "full_description_unique",
]
