"""
Tests for binding descriptors, markers and the descriptor cache.
"""

import dataclasses
from typing import Annotated, Any, Optional

import pytest
from pydantic import BaseModel, ValidationError

from pydescribe import (
    DataBoundSetter,
    DescriptorResolver,
    Required,
    StructuralBindingError,
    UnsupportedStructureError,
    data_bound_constructor,
    data_bound_setter,
    is_describable,
)
from pydescribe.markers import decapitalize, setter_property_name


# =============================================================================
# Module-Level Test Classes
# =============================================================================


class Checkout:
    @data_bound_constructor
    def __init__(self, url: str, shallow: bool, depth: int = 1, *, branch: Annotated[str, Required] = "main"):
        self.url = url
        self.shallow = shallow
        self.depth = depth
        self.branch = branch


class Base:
    timeout: Annotated[Optional[float], DataBoundSetter] = None

    @data_bound_setter
    def set_label(self, label: str):
        self.label = label


class Derived(Base):
    @data_bound_constructor
    def __init__(self):
        pass

    @data_bound_setter
    def set_label(self, label: int):
        self.label = label

    @data_bound_setter
    def set_URL(self, url: str):
        self.url = url


class Unannotated:
    @data_bound_constructor
    def __init__(self, anything):
        self.anything = anything


class StaticSetter:
    @data_bound_constructor
    def __init__(self):
        pass

    @staticmethod
    @data_bound_setter
    def set_value(value):
        pass


class Undecorated:
    def __init__(self, a):
        self.a = a


@dataclasses.dataclass
class Coordinates:
    lat: float
    lon: float


class Settings(BaseModel):
    name: str
    level: int = 0


# =============================================================================
# Markers
# =============================================================================


class TestMarkers:
    """Tests for declaration helpers."""

    @pytest.mark.parametrize("name,expected", [
        ("Label", "label"),
        ("URL", "URL"),
        ("X", "x"),
        ("label", "label"),
        ("", ""),
    ])
    def test_decapitalize(self, name, expected):
        assert decapitalize(name) == expected

    def test_setter_property_name(self):
        assert setter_property_name("set_label") == "label"
        assert setter_property_name("set_URL") == "URL"
        assert setter_property_name("set_") is None
        assert setter_property_name("label") is None

    def test_names_must_not_be_a_string(self):
        with pytest.raises(TypeError):
            data_bound_constructor(names="ab")


# =============================================================================
# Descriptors
# =============================================================================


class TestDescriptors:
    """Tests for the shape of computed descriptors."""

    def test_parameters(self):
        descriptor = DescriptorResolver().resolve(Checkout)
        assert descriptor.names == ("url", "shallow", "depth", "branch")
        assert descriptor.constructor == "__init__"
        url, shallow, depth, branch = descriptor.parameters
        assert url.annotation is str
        assert url.primitive is None
        assert shallow.primitive is bool
        assert depth.has_default and depth.default == 1
        assert depth.kind == "positional"
        assert branch.kind == "keyword"
        assert branch.required

    def test_factory(self):
        descriptor = DescriptorResolver().resolve(Checkout)
        assert descriptor.factory() is Checkout

    def test_descriptor_is_frozen(self):
        descriptor = DescriptorResolver().resolve(Checkout)
        with pytest.raises(ValidationError):
            descriptor.constructor = "other"

    def test_mutators_across_hierarchy(self):
        mutators = {m.name: m for m in DescriptorResolver().resolve(Derived).mutators}
        assert set(mutators) == {"timeout", "label", "URL"}
        assert mutators["timeout"].access == "field"
        assert mutators["timeout"].owner is Base
        assert mutators["URL"].member == "set_URL"

    def test_most_derived_setter_wins(self):
        mutators = {m.name: m for m in DescriptorResolver().resolve(Derived).mutators}
        assert mutators["label"].owner is Derived
        assert mutators["label"].annotation is int

    def test_static_setter_is_structural_error(self):
        with pytest.raises(StructuralBindingError, match="must be an instance method"):
            DescriptorResolver().find(StaticSetter)

    def test_unannotated_parameter(self):
        (spec,) = DescriptorResolver().resolve(Unannotated).parameters
        assert spec.annotation is Any
        assert spec.primitive is None

    def test_dataclass_constructor(self):
        descriptor = DescriptorResolver().resolve(Coordinates)
        assert descriptor.constructor == "__call__"
        assert descriptor.names == ("lat", "lon")
        assert descriptor.parameters[0].primitive is float

    def test_pydantic_constructor(self):
        descriptor = DescriptorResolver().resolve(Settings)
        assert descriptor.names == ("name", "level")
        assert all(p.kind == "keyword" for p in descriptor.parameters)


# =============================================================================
# Resolver
# =============================================================================


class TestResolver:
    """Tests for the descriptor cache."""

    def test_cached(self):
        resolver = DescriptorResolver()
        assert resolver.find(Checkout) is resolver.find(Checkout)

    def test_clear(self):
        resolver = DescriptorResolver()
        first = resolver.find(Checkout)
        resolver.clear()
        assert resolver.find(Checkout) is not first

    def test_non_describable_cached_as_none(self):
        resolver = DescriptorResolver()
        assert resolver.find(Undecorated) is None
        assert not resolver.is_describable(Undecorated)

    def test_resolve_non_describable(self):
        with pytest.raises(UnsupportedStructureError, match="no designated constructor"):
            DescriptorResolver().resolve(Undecorated)

    def test_structural_errors_not_cached(self):
        resolver = DescriptorResolver()
        for _ in range(2):
            with pytest.raises(StructuralBindingError):
                resolver.find(StaticSetter)

    def test_requires_a_class(self):
        with pytest.raises(TypeError):
            DescriptorResolver().find(Checkout(url="x", shallow=False))

    @pytest.mark.parametrize("cls,expected", [
        (Checkout, True),
        (Coordinates, True),
        (Settings, True),
        (Undecorated, False),
        (int, False),
        (str, False),
        (dict, False),
    ])
    def test_is_describable(self, cls, expected):
        assert is_describable(cls) is expected

    def test_partly_resolvable_annotations(self):
        from deferred_annotations import Flagged

        flag, count, ctx = DescriptorResolver().resolve(Flagged).parameters
        assert flag.annotation is bool
        assert count.annotation is int
        assert ctx.annotation is Any

    def test_spec_annotation_defaults_to_any(self):
        from pydescribe import MutatorSpec, ParameterSpec

        assert ParameterSpec(name="a", parameter="a").annotation is Any
        assert MutatorSpec(name="a", member="a", access="field", owner=Base).annotation is Any
