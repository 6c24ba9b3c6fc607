"""
In-memory model registry and its JSON loader.

Manifesto:
    Deployed classifiers change rarely and are few, so the registry is a
    plain ordered list loaded once at startup. Validation happens at load
    and registration time so a broken descriptor (unknown formatter, no
    label) is a configuration error before any document is processed.

Example file::

    {
      "models": [
        {
          "name": "wht_v4",
          "deploymentId": "tax_withholding_v4",
          "label": "WHT_PER",
          "default": true,
          "inputs": [
            "MCO_NO",
            {"name": "NEC_DESCRIPTION_Cleaned", "aliases": ["NEC_DESCRIPTION"]},
            {"name": "Full_Description_Unique", "formatter": "fullDescriptionUniqueFormatter"}
          ]
        }
      ]
    }

Tags:
    registry, models, configuration, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from docpredict.core.errors import (
    InvalidConfigError,
    ModelNotFoundError,
    NoDefaultModelError,
    SourceNotFoundError,
)
from docpredict.core.logging import get_logger
from docpredict.core.models import new_id
from docpredict.registry.descriptors import FORMATTERS, InputField, ModelDescriptor

log = get_logger(__name__)


# ── File schema ──────────────────────────────────────────────────────────


class InputFieldSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    aliases: list[str] = Field(default_factory=list)
    formatter: str | None = None

    def to_field(self) -> InputField:
        return InputField(name=self.name, aliases=tuple(self.aliases), formatter=self.formatter)


class ModelSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str | None = None
    name: str = Field(..., min_length=1)
    deployment_id: str = Field(..., min_length=1, alias="deploymentId")
    label: str = Field(..., min_length=1)
    inputs: list[str | InputFieldSpec] = Field(default_factory=list)
    description: str | None = None
    default: bool = False

    def to_descriptor(self) -> ModelDescriptor:
        return ModelDescriptor(
            id=self.id or new_id(),
            name=self.name,
            deployment_id=self.deployment_id,
            label=self.label,
            inputs=tuple(
                InputField(name=item) if isinstance(item, str) else item.to_field()
                for item in self.inputs
            ),
            description=self.description,
            default=self.default,
        )


class ModelsFile(BaseModel):
    models: list[ModelSpec] = Field(default_factory=list)


def load_models(path: str | Path) -> list[ModelDescriptor]:
    """Read descriptors from a JSON file (a list, or ``{"models": [...]}``).

    Raises:
        SourceNotFoundError: if the file does not exist
        InvalidConfigError: if the file does not validate
    """
    path = Path(path)
    if not path.exists():
        raise SourceNotFoundError(f"Models file not found: {path}").with_context(source_name=str(path))

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, list):
            data = {"models": data}
        spec = ModelsFile.model_validate(data)
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise InvalidConfigError("models_file", str(path), f"Invalid models file {path}: {e}") from e

    return [model.to_descriptor() for model in spec.models]


# ── Registry ─────────────────────────────────────────────────────────────


class InMemoryModelRegistry:
    """Ordered collection of model descriptors."""

    def __init__(self, models: Iterable[ModelDescriptor] = ()) -> None:
        self._models: list[ModelDescriptor] = []
        self.add_models(models)

    def add_model(self, model: ModelDescriptor) -> ModelDescriptor:
        for input_field in model.inputs:
            if input_field.formatter and input_field.formatter not in FORMATTERS:
                raise InvalidConfigError(
                    "formatter",
                    input_field.formatter,
                    f"Unknown formatter {input_field.formatter!r} on {model.name}.{input_field.name}",
                )
        self._models = [m for m in self._models if m.id != model.id]
        self._models.append(model)
        log.debug("model_registered", model=model.name, deployment_id=model.deployment_id)
        return model

    def add_models(self, models: Iterable[ModelDescriptor]) -> list[ModelDescriptor]:
        return [self.add_model(model) for model in models]

    def list_models(self) -> list[ModelDescriptor]:
        return list(self._models)

    def find_model(self, name: str) -> ModelDescriptor:
        """Look up by model name or deployment id."""
        for model in self._models:
            if model.matches(name):
                return model
        raise ModelNotFoundError(name)

    def get_model(self, model_id: str) -> ModelDescriptor:
        for model in self._models:
            if model.id == model_id:
                return model
        raise ModelNotFoundError(model_id)

    def get_default_model(self) -> ModelDescriptor:
        """The model flagged default, else the first registered one."""
        if not self._models:
            raise NoDefaultModelError()
        for model in self._models:
            if model.default:
                return model
        return self._models[0]

    def __len__(self) -> int:
        return len(self._models)


__all__ = [
    "InMemoryModelRegistry",
    "InputFieldSpec",
    "ModelSpec",
    "ModelsFile",
    "load_models",
]
