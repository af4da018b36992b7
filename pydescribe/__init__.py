"""
pydescribe - bind Python objects to and from JSON-like argument maps.

A describable class declares a designated constructor and, optionally,
setters for values applied after construction. pydescribe builds instances
of such classes from plain maps of scalars, lists and nested maps, and
reduces live instances back to the same maps:

- Constructor parameters are matched by name and coerced to their
  declared types (enums by member name, URLs, paths, dates and other
  lexical forms from strings, int -> float widening).
- Nested maps become nested describable instances; the reserved key
  ``$class`` selects the implementation when the declared type is
  abstract or has several implementations.
- Setters (annotated fields, ``set_<name>`` methods, property setters)
  are applied from the remaining keys.

Basic Usage:
    >>> from pydescribe import data_bound_constructor, instantiate, uninstantiate
    >>>
    >>> class Checkout:
    ...     @data_bound_constructor
    ...     def __init__(self, url: str, shallow: bool):
    ...         self.url = url
    ...         self.shallow = shallow
    >>>
    >>> step = instantiate(Checkout, {"url": "https://example.com/repo.git"})
    >>> step.shallow
    False
    >>> uninstantiate(step)
    {'shallow': False, 'url': 'https://example.com/repo.git'}

Polymorphic values:
    >>> class SCM(abc.ABC):
    ...     @abc.abstractmethod
    ...     def checkout(self): ...
    >>>
    >>> class Git(SCM):
    ...     @data_bound_constructor
    ...     def __init__(self, url: str): ...
    >>>
    >>> class Build:
    ...     @data_bound_constructor
    ...     def __init__(self, scm: SCM): ...
    >>>
    >>> instantiate(Build, {"scm": {"$class": "Git", "url": "..."}})

Short discriminators are resolved against a TypeRegistry (by default every
imported subclass); fully-qualified ones through a ClassLoader (by default
an import). Both can be replaced per call:
    >>> from pydescribe import StaticTypeRegistry
    >>> registry = StaticTypeRegistry([Git])
    >>> instantiate(Build, {"scm": {"$class": "Git", "url": "..."}}, registry=registry)

To check a class's declarations without building anything:
    >>> from pydescribe.lint import lint_type
    >>> for problem in lint_type(Build):
    ...     print(problem)
"""

from typing import Any, Mapping

from pydescribe.bind import BindingContext, BindingOptions
from pydescribe.descriptors import (
    BindingDescriptor,
    DescriptorResolver,
    MutatorSpec,
    ParameterSpec,
    is_describable,
)
from pydescribe.errors import (
    BindingError,
    CoercionError,
    ConstructionError,
    DiscriminatorError,
    MissingArgumentError,
    NestingTooDeepError,
    StructuralBindingError,
    UnknownTypeError,
    UnsupportedStructureError,
)
from pydescribe.markers import (
    DataBoundSetter,
    Required,
    data_bound_constructor,
    data_bound_setter,
)
from pydescribe.registry import (
    ClassLoader,
    ImportClassLoader,
    StaticTypeRegistry,
    SubclassRegistry,
    TypeRegistry,
    resolve_subtype,
)

# Import lint module so ``pydescribe.lint`` is available after ``import pydescribe``
from pydescribe import lint


def instantiate(
    cls: type,
    arguments: Mapping[str, Any],
    *,
    registry: TypeRegistry | None = None,
    loader: ClassLoader | None = None,
    options: BindingOptions | None = None,
):
    """
    Create an instance of ``cls`` from a Structured Object.

    The designated constructor is always invoked, even when ``arguments``
    is empty; setters are then applied for the keys that name them.

    Args:
        cls: The class to build, or an abstract supertype when ``arguments``
            carries a ``$class`` discriminator.
        arguments: Map of constructor/setter names to raw values.
        registry: Optional TypeRegistry for short discriminators.
        loader: Optional ClassLoader for fully-qualified discriminators.
        options: Optional BindingOptions.

    Returns:
        The new instance.

    Raises:
        StructuralBindingError: If ``cls`` declares its bindings inconsistently.
        CoercionError: If a value cannot be converted to its declared type.
        DiscriminatorError: If a concrete class cannot be selected.
        MissingArgumentError: If a required argument is absent.

    Example:
        >>> instantiate(Checkout, {"url": "https://example.com", "shallow": True})
    """
    context = BindingContext(registry=registry, loader=loader, options=options)
    return context.instantiate(cls, arguments)


def uninstantiate(
    obj: Any,
    *,
    registry: TypeRegistry | None = None,
    options: BindingOptions | None = None,
) -> dict[str, Any]:
    """
    Compute the Structured Object that reconstructs ``obj`` via instantiate().

    Args:
        obj: A describable instance.
        registry: Optional TypeRegistry, used to decide whether a short
            discriminator is unambiguous.
        options: Optional BindingOptions.

    Returns:
        A map with sorted keys and no None values.

    Raises:
        UnsupportedStructureError: If ``obj``'s class is not describable or a
            bound name cannot be read back off ``obj``.

    Example:
        >>> uninstantiate(Build(Git("https://example.com")))
        {'scm': {'$class': 'Git', 'url': 'https://example.com'}}
    """
    context = BindingContext(registry=registry, options=options)
    return context.uninstantiate(obj)


__all__ = [
    # Core API
    "instantiate",
    "uninstantiate",
    "BindingContext",
    "BindingOptions",
    # Declarations
    "data_bound_constructor",
    "data_bound_setter",
    "DataBoundSetter",
    "Required",
    # Descriptors
    "BindingDescriptor",
    "DescriptorResolver",
    "ParameterSpec",
    "MutatorSpec",
    "is_describable",
    # Collaborators
    "TypeRegistry",
    "ClassLoader",
    "SubclassRegistry",
    "StaticTypeRegistry",
    "ImportClassLoader",
    "resolve_subtype",
    # Errors
    "BindingError",
    "StructuralBindingError",
    "UnsupportedStructureError",
    "ConstructionError",
    "CoercionError",
    "DiscriminatorError",
    "MissingArgumentError",
    "NestingTooDeepError",
    "UnknownTypeError",
    # Validation
    "lint",
]
