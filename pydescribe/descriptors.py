"""
Binding descriptors for describable classes.

A BindingDescriptor is computed once per class and records everything the
binding engine needs to know about it:

- which callable is the designated constructor
- the ordered constructor parameters (map key, signature name, type, default)
- the mutators found anywhere in the class hierarchy (field, method or
  property form)

Descriptors are immutable pydantic models. DescriptorResolver caches them
per class; a class without a designated constructor caches as None, which
makes "is this value describable?" a plain lookup instead of a raised and
caught exception.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
import sys
import threading
import types
import typing
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from pydescribe.errors import StructuralBindingError, UnsupportedStructureError
from pydescribe.markers import (
    PARAMS_ATTRIBUTE,
    SETTER_ATTRIBUTE,
    constructor_tag,
    is_required_marker,
    is_setter,
    is_setter_marker,
    setter_property_name,
)
from pydescribe.registry import qualified_name

logger = logging.getLogger(__name__)

# Annotations treated like value-type primitives by the absent-value policy
PRIMITIVE_TYPES = (bool, int, float)

_EMPTY = inspect.Parameter.empty
_BINDABLE_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
    inspect.Parameter.KEYWORD_ONLY,
)


# =============================================================================
# Descriptor Models
# =============================================================================


class ParameterSpec(BaseModel):
    """
    One constructor parameter.

    Attributes:
        name: Key looked up in the argument map.
        parameter: Name of the parameter in the constructor signature.
        annotation: Declared type (``Any`` when unannotated).
        kind: Whether the value is passed positionally or by keyword.
        has_default: Whether the signature declares a default.
        default: The declared default, if any.
        required: Whether the parameter carries the Required marker.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    parameter: str
    annotation: Any = Field(default=Any)
    kind: Literal["positional", "keyword"] = "positional"
    has_default: bool = False
    default: Any = None
    required: bool = False

    @property
    def primitive(self) -> Optional[type]:
        """The primitive type this parameter is declared as, if any."""
        annotation = strip_annotated(self.annotation)
        return annotation if annotation in PRIMITIVE_TYPES else None


class MutatorSpec(BaseModel):
    """
    One post-construction setter.

    Attributes:
        name: Property name, used as the map key.
        member: Attribute or method name on the class.
        annotation: Type of the single value the setter accepts.
        access: ``field`` (direct assignment), ``method`` (call
            ``set_<name>``) or ``property`` (assign through the property).
        owner: Class in the hierarchy that declares the setter.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    member: str
    annotation: Any = Field(default=Any)
    access: Literal["field", "method", "property"]
    owner: type

    def as_parameter(self) -> ParameterSpec:
        return ParameterSpec(name=self.name, parameter=self.name, annotation=self.annotation)


class BindingDescriptor(BaseModel):
    """
    Cached binding metadata for one describable class.

    Attributes:
        cls: The described class.
        constructor: Name of the designated constructor (``__init__``, a
            classmethod name, or ``__call__`` for implicit constructors).
        designated: False when the constructor was picked by arity fallback.
        parameters: Constructor parameters in positional order.
        mutators: Setters found across the class hierarchy.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    cls: type
    constructor: str
    designated: bool = True
    parameters: tuple[ParameterSpec, ...] = ()
    mutators: tuple[MutatorSpec, ...] = ()

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.parameters)

    @property
    def owner(self) -> str:
        return qualified_name(self.cls)

    def factory(self) -> Callable[..., Any]:
        """The callable that constructs an instance."""
        if self.constructor in ("__init__", "__call__"):
            return self.cls
        return getattr(self.cls, self.constructor)


# =============================================================================
# Type Hint Helpers
# =============================================================================


def strip_annotated(annotation: Any) -> Any:
    """Remove ``Annotated`` wrappers, keeping everything else."""
    while typing.get_origin(annotation) is typing.Annotated:
        annotation = typing.get_args(annotation)[0]
    return annotation


def concrete_hint(hint: Any) -> Any:
    """
    Strip ``Annotated`` and ``Optional`` so a declared type can be compared to a class.

    Unions of more than one non-None member are returned unchanged.
    """
    while True:
        hint = strip_annotated(hint)
        if typing.get_origin(hint) in (typing.Union, types.UnionType):
            members = [a for a in typing.get_args(hint) if a is not type(None)]
            if len(members) != 1:
                return hint
            hint = members[0]
        else:
            return hint


def _annotated_metadata(annotation: Any) -> tuple:
    if typing.get_origin(annotation) is typing.Annotated:
        return getattr(annotation, "__metadata__", ())
    return ()


def _resolve_annotation(annotation: Any, globalns: dict, localns: Optional[dict], where: str) -> Any:
    """Evaluate one annotation; an unresolvable one becomes ``Any``."""
    holder = types.SimpleNamespace(__annotations__={"value": annotation})
    try:
        return typing.get_type_hints(holder, globalns=globalns, localns=localns, include_extras=True)["value"]
    except Exception as exc:
        logger.debug("Cannot resolve annotation %r of %s: %s", annotation, where, exc)
        return Any


def _annotation_scopes(obj: Any):
    """(annotations, globals, locals) for ``obj``, base classes first."""
    if isinstance(obj, type):
        for klass in reversed(obj.__mro__):
            annotations = klass.__dict__.get("__annotations__")
            if not annotations:
                continue
            module = sys.modules.get(klass.__module__)
            yield annotations, dict(getattr(module, "__dict__", {})), dict(vars(klass))
        return
    func = inspect.unwrap(obj)
    yield getattr(obj, "__annotations__", None) or {}, getattr(func, "__globals__", {}), None


def resolve_type_hints(obj: Any) -> dict[str, Any]:
    """
    ``typing.get_type_hints(obj, include_extras=True)``, resolved per annotation.

    When some annotation cannot be evaluated (typically a name imported only
    under ``TYPE_CHECKING``), the others still resolve and only the failing
    ones map to ``Any``.
    """
    try:
        return typing.get_type_hints(obj, include_extras=True)
    except Exception as exc:
        logger.debug("Resolving type hints of %r one at a time: %s", obj, exc)
    hints: dict[str, Any] = {}
    where = getattr(obj, "__qualname__", repr(obj))
    for annotations, globalns, localns in _annotation_scopes(obj):
        for name, annotation in annotations.items():
            hints[name] = _resolve_annotation(annotation, globalns, localns, f"{where}.{name}")
    return hints


def _own_annotations(klass: type) -> dict[str, Any]:
    try:
        return inspect.get_annotations(klass, eval_str=True)
    except Exception as exc:
        logger.debug("Cannot evaluate annotations of %s: %s", qualified_name(klass), exc)
    module = sys.modules.get(klass.__module__)
    globalns = dict(getattr(module, "__dict__", {}))
    return {
        name: _resolve_annotation(annotation, globalns, dict(vars(klass)), f"{qualified_name(klass)}.{name}")
        for name, annotation in inspect.get_annotations(klass).items()
    }


def _hint(hints: dict[str, Any], name: str, parameter: inspect.Parameter | None = None) -> Any:
    if name in hints:
        return hints[name]
    if parameter is not None and parameter.annotation is not _EMPTY:
        if not isinstance(parameter.annotation, str):
            return parameter.annotation
    return Any


# =============================================================================
# Constructor Discovery
# =============================================================================


def _bindable_parameters(signature: inspect.Signature) -> list[inspect.Parameter]:
    return [p for p in signature.parameters.values() if p.kind in _BINDABLE_KINDS]


def _is_implicitly_designated(cls: type) -> bool:
    return dataclasses.is_dataclass(cls) or issubclass(cls, BaseModel)


def _tagged_constructors(cls: type) -> list[tuple[str, Any]]:
    """(name, function) pairs for every constructor tagged on ``cls``."""
    tagged = []
    try:
        init = inspect.getattr_static(cls, "__init__")
    except AttributeError:
        init = None
    if init is not None and constructor_tag(init) is not None:
        tagged.append(("__init__", init))

    seen = set()
    for klass in cls.__mro__:
        for name, attr in vars(klass).items():
            if name in seen:
                continue
            seen.add(name)
            if isinstance(attr, classmethod) and constructor_tag(attr) is not None:
                tagged.append((name, attr.__func__))
    return tagged


def _constructor_signature(cls: type, name: str) -> inspect.Signature:
    if name == "__init__":
        signature = inspect.signature(inspect.getattr_static(cls, "__init__"))
        # drop self
        return signature.replace(parameters=list(signature.parameters.values())[1:])
    if name == "__call__":
        return inspect.signature(cls)
    return inspect.signature(getattr(cls, name))


def _build_parameters(
    cls: type,
    signature: inspect.Signature,
    names: tuple[str, ...],
    hints: dict[str, Any],
) -> tuple[ParameterSpec, ...]:
    specs = []
    for name, parameter in zip(names, _bindable_parameters(signature)):
        annotation = _hint(hints, parameter.name, parameter)
        specs.append(ParameterSpec(
            name=name,
            parameter=parameter.name,
            annotation=annotation,
            kind="keyword" if parameter.kind is inspect.Parameter.KEYWORD_ONLY else "positional",
            has_default=parameter.default is not _EMPTY,
            default=None if parameter.default is _EMPTY else parameter.default,
            required=any(is_required_marker(m) for m in _annotated_metadata(annotation)),
        ))
    return tuple(specs)


def _resolve_constructor(cls: type):
    """
    Find the designated constructor of ``cls``.

    Returns:
        (constructor name, signature, parameter names, type hints, designated)
        or None when the class is not describable.
    """
    tagged = _tagged_constructors(cls)
    if len(tagged) > 1:
        names = ", ".join(name for name, _ in tagged)
        raise StructuralBindingError(
            f"{qualified_name(cls)} has more than one designated constructor: {names}"
        )
    metadata = vars(cls).get(PARAMS_ATTRIBUTE)

    if tagged:
        name, func = tagged[0]
        signature = _constructor_signature(cls, name)
        arity = len(_bindable_parameters(signature))
        tag = constructor_tag(func)
        names = tag.names if tag.names is not None else metadata
        if names is None:
            names = tuple(p.name for p in _bindable_parameters(signature))
        names = tuple(names)
        if len(names) != arity:
            raise StructuralBindingError(
                f"{qualified_name(cls)}.{name} is the designated constructor but takes "
                f"{arity} parameters while its parameter-name metadata lists "
                f"{len(names)}: {', '.join(names)}"
            )
        return name, signature, names, resolve_type_hints(func), True

    if metadata is not None:
        names = tuple(metadata)
        signature = _constructor_signature(cls, "__init__")
        if len(_bindable_parameters(signature)) != len(names):
            raise StructuralBindingError(
                f"{qualified_name(cls)} does not have a constructor with {len(names)} arguments"
            )
        init = inspect.getattr_static(cls, "__init__")
        return "__init__", signature, names, resolve_type_hints(init), False

    if _is_implicitly_designated(cls):
        signature = _constructor_signature(cls, "__call__")
        names = tuple(p.name for p in _bindable_parameters(signature))
        return "__call__", signature, names, resolve_type_hints(cls), True

    return None


# =============================================================================
# Mutator Discovery
# =============================================================================


def _setter_value_hint(func) -> Any:
    hints = resolve_type_hints(func)
    parameters = list(inspect.signature(func).parameters.values())[1:]
    if len(parameters) != 1:
        return Any
    return _hint(hints, parameters[0].name, parameters[0])


def _find_mutators(cls: type) -> tuple[MutatorSpec, ...]:
    """Collect setters across the MRO; the most derived declaration of a name wins."""
    mutators: dict[str, MutatorSpec] = {}
    for klass in cls.__mro__:
        if klass is object:
            continue

        for member, annotation in _own_annotations(klass).items():
            if not any(is_setter_marker(m) for m in _annotated_metadata(annotation)):
                continue
            if member not in mutators:
                mutators[member] = MutatorSpec(
                    name=member,
                    member=member,
                    annotation=strip_annotated(annotation),
                    access="field",
                    owner=klass,
                )

        for member, attr in vars(klass).items():
            if isinstance(attr, property):
                if attr.fset is None or not is_setter(attr.fset):
                    continue
                name, access, func = member, "property", attr.fset
            elif inspect.isfunction(attr) and is_setter(attr):
                name = setter_property_name(member)
                parameters = list(inspect.signature(attr).parameters.values())
                if name is None or len(parameters) != 2:
                    raise StructuralBindingError(
                        f"{qualified_name(klass)}.{member} cannot be a data-bound setter: "
                        f"it must be named set_<name> and take exactly one argument"
                    )
                access, func = "method", attr
            elif isinstance(attr, (staticmethod, classmethod)) and getattr(attr.__func__, SETTER_ATTRIBUTE, False):
                raise StructuralBindingError(
                    f"{qualified_name(klass)}.{member} cannot be a data-bound setter: "
                    f"it must be an instance method"
                )
            else:
                continue
            if name not in mutators:
                mutators[name] = MutatorSpec(
                    name=name,
                    member=member,
                    annotation=strip_annotated(_setter_value_hint(func)),
                    access=access,
                    owner=klass,
                )
    return tuple(mutators.values())


# =============================================================================
# Resolver
# =============================================================================


def build_descriptor(cls: type) -> Optional[BindingDescriptor]:
    """
    Compute the binding descriptor of ``cls`` without caching.

    Returns:
        The descriptor, or None if ``cls`` is not describable.

    Raises:
        StructuralBindingError: If the class declares its bindings inconsistently.
    """
    if not isinstance(cls, type):
        raise TypeError(f"expected a class, got {cls!r}")
    if cls.__module__ == "builtins":
        return None

    resolved = _resolve_constructor(cls)
    if resolved is None:
        return None
    constructor, signature, names, hints, designated = resolved

    descriptor = BindingDescriptor(
        cls=cls,
        constructor=constructor,
        designated=designated,
        parameters=_build_parameters(cls, signature, names, hints),
        mutators=_find_mutators(cls),
    )
    logger.debug(
        "Built binding descriptor for %s: constructor=%s parameters=%s mutators=%s",
        qualified_name(cls),
        constructor,
        list(descriptor.names),
        [m.name for m in descriptor.mutators],
    )
    return descriptor


class DescriptorResolver:
    """
    Per-class cache of binding descriptors.

    Lookups after the first are lock-free dictionary reads; the first
    computation for a class happens under a lock so it runs once.
    Structural errors are not cached.

    Example:
        >>> resolver = DescriptorResolver()
        >>> resolver.find(int) is None
        True
        >>> resolver.resolve(MyStep).names
        ('url', 'shallow')
    """

    def __init__(self):
        self._cache: dict[type, Optional[BindingDescriptor]] = {}
        self._lock = threading.RLock()

    def find(self, cls: type) -> Optional[BindingDescriptor]:
        """Return the descriptor of ``cls``, or None if it is not describable."""
        try:
            return self._cache[cls]
        except KeyError:
            pass
        with self._lock:
            if cls not in self._cache:
                self._cache[cls] = build_descriptor(cls)
            return self._cache[cls]

    def resolve(self, cls: type) -> BindingDescriptor:
        """
        Return the descriptor of ``cls``.

        Raises:
            UnsupportedStructureError: If ``cls`` has no designated constructor.
            StructuralBindingError: If its declarations are inconsistent.
        """
        descriptor = self.find(cls)
        if descriptor is None:
            raise UnsupportedStructureError(
                f"{qualified_name(cls)} has no designated constructor; decorate its "
                f"__init__ with @data_bound_constructor"
            )
        return descriptor

    def is_describable(self, cls: type) -> bool:
        return self.find(cls) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


# Shared resolver used when a BindingContext is created without one
default_resolver = DescriptorResolver()


def is_describable(cls: type) -> bool:
    """Whether instances of ``cls`` can be instantiated from and reduced to maps."""
    return default_resolver.is_describable(cls)
