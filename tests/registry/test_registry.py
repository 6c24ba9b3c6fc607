"""Tests for docpredict.registry: descriptors, formatters, loader and registry."""

import json

import pytest

from docpredict.core.errors import (
    InvalidConfigError,
    ModelNotFoundError,
    NoDefaultModelError,
    SourceNotFoundError,
)
from docpredict.registry import (
    BLANK_INPUT,
    InMemoryModelRegistry,
    InputField,
    ModelDescriptor,
    build_input_values,
    field_value,
    load_models,
)


def _model(name: str, default: bool = False, **kwargs) -> ModelDescriptor:
    return ModelDescriptor(
        id=kwargs.pop("id", f"id-{name}"),
        name=name,
        deployment_id=kwargs.pop("deployment_id", f"dep-{name}"),
        label="WHT_PER",
        default=default,
        **kwargs,
    )


class TestFieldValues:
    def test_alias_fallback(self):
        field = InputField(name="NEC_DESCRIPTION_Cleaned", aliases=("NEC_DESCRIPTION",))
        assert field_value({"NEC_DESCRIPTION": "Dividend"}, field, [field]) == "Dividend"

    def test_primary_key_wins(self):
        field = InputField(name="A", aliases=("B",))
        assert field_value({"A": "first", "B": "second"}, field, [field]) == "first"

    def test_blank(self):
        field = InputField(name="A")
        assert field_value({"A": ""}, field, [field]) == BLANK_INPUT
        assert field_value({}, field, [field]) == BLANK_INPUT

    def test_values_are_strings(self):
        field = InputField(name="MCO_NO")
        assert field_value({"MCO_NO": 42}, field, [field]) == "42"

    def test_full_description_formatter(self):
        fields = [
            InputField(name="MCO_NO"),
            InputField(name="NEC_DESCRIPTION"),
            InputField(name="Full_Description_Unique", formatter="fullDescriptionUniqueFormatter"),
        ]
        record = {"MCO_NO": "M1", "NEC_DESCRIPTION": "Dividend"}

        assert build_input_values(record, fields) == ["M1", "Dividend", "M1 Dividend"]


class TestLoadModels:
    def test_models_object(self, tmp_path):
        path = tmp_path / "models.json"
        path.write_text(json.dumps({
            "models": [{
                "name": "wht_v4",
                "deploymentId": "tax_withholding_v4",
                "label": "WHT_PER",
                "default": True,
                "inputs": ["MCO_NO", {"name": "NEC_DESCRIPTION_Cleaned", "aliases": ["NEC_DESCRIPTION"]}],
            }]
        }))

        [model] = load_models(path)

        assert model.name == "wht_v4"
        assert model.deployment_id == "tax_withholding_v4"
        assert model.default is True
        assert model.field_names == ["MCO_NO", "NEC_DESCRIPTION_Cleaned"]
        assert model.inputs[1].aliases == ("NEC_DESCRIPTION",)
        assert model.id

    def test_plain_list(self, tmp_path):
        path = tmp_path / "models.json"
        path.write_text(json.dumps([{"name": "m", "deployment_id": "d", "label": "L"}]))
        assert [m.name for m in load_models(path)] == ["m"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            load_models(tmp_path / "nope.json")

    @pytest.mark.parametrize(
        "content",
        ["{not json", json.dumps([{"name": "m"}]), json.dumps([{"name": "m", "deploymentId": "d", "label": "L", "x": 1}])],
    )
    def test_invalid(self, tmp_path, content):
        path = tmp_path / "models.json"
        path.write_text(content)
        with pytest.raises(InvalidConfigError):
            load_models(path)


class TestInMemoryModelRegistry:
    def test_find_by_name_or_deployment(self):
        registry = InMemoryModelRegistry([_model("wht_v4", deployment_id="tax_v4")])
        assert registry.find_model("wht_v4").name == "wht_v4"
        assert registry.find_model("tax_v4").name == "wht_v4"

    def test_unknown_model(self):
        with pytest.raises(ModelNotFoundError):
            InMemoryModelRegistry().find_model("nope")
        with pytest.raises(ModelNotFoundError):
            InMemoryModelRegistry().get_model("nope")

    def test_default_flag_wins(self):
        registry = InMemoryModelRegistry([_model("a"), _model("b", default=True)])
        assert registry.get_default_model().name == "b"

    def test_first_model_without_flag(self):
        registry = InMemoryModelRegistry([_model("a"), _model("b")])
        assert registry.get_default_model().name == "a"

    def test_empty_has_no_default(self):
        with pytest.raises(NoDefaultModelError):
            InMemoryModelRegistry().get_default_model()

    def test_same_id_replaces(self):
        registry = InMemoryModelRegistry([_model("a", id="x")])
        registry.add_model(_model("b", id="x"))
        assert [m.name for m in registry.list_models()] == ["b"]
        assert len(registry) == 1

    def test_unknown_formatter_rejected(self):
        model = _model("a", inputs=(InputField(name="F", formatter="shout"),))
        with pytest.raises(InvalidConfigError, match="shout"):
            InMemoryModelRegistry([model])
