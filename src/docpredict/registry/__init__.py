"""Model registry: descriptors of deployed classifiers and their inputs."""

from docpredict.registry.descriptors import (
    BLANK_INPUT,
    FORMATTERS,
    InputField,
    ModelDescriptor,
    build_input_values,
    field_value,
)
from docpredict.registry.memory import InMemoryModelRegistry, load_models

__all__ = [
    "BLANK_INPUT",
    "FORMATTERS",
    "InMemoryModelRegistry",
    "InputField",
    "ModelDescriptor",
    "build_input_values",
    "field_value",
    "load_models",
]
