"""
Binding context and the instantiate/uninstantiate drivers.

This module contains the BindingContext class which carries everything one
binding call needs:

- the type registry and class loader used to resolve discriminators
- the descriptor resolver (shared cache of per-class binding metadata)
- the BindingOptions in force
- the current nesting depth, guarding against cyclic inputs

instantiate() runs Resolve -> Build -> Construct -> Inject for a class and an
argument map; uninstantiate() walks a live instance's constructor parameters
and setters back into an argument map.
"""

from __future__ import annotations

import collections.abc
import contextlib
import inspect
import logging
import types
import typing
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from pydescribe.coerce import coerce
from pydescribe.descriptors import (
    BindingDescriptor,
    DescriptorResolver,
    ParameterSpec,
    concrete_hint,
    default_resolver,
    resolve_type_hints,
)
from pydescribe.errors import (
    CoercionError,
    MissingArgumentError,
    NestingTooDeepError,
    UnsupportedStructureError,
)
from pydescribe.markers import BOOLEAN_GETTER_PREFIX, GETTER_PREFIX
from pydescribe.registry import (
    ClassLoader,
    ImportClassLoader,
    SubclassRegistry,
    TypeRegistry,
    qualified_name,
    resolve_subtype,
    short_name,
)

logger = logging.getLogger(__name__)

_MISSING = object()


# =============================================================================
# Options
# =============================================================================


class BindingOptions(BaseModel):
    """
    Per-call binding configuration.

    Attributes:
        discriminator_key: Reserved map key naming the concrete class.
        require_arguments: If True, an absent non-primitive constructor
            argument without a default is a MissingArgumentError instead of
            binding None. Parameters marked Required are always strict.
        max_depth: Deepest nesting of describable objects accepted in either
            direction before NestingTooDeepError is raised.
        qualified_discriminators: If True, uninstantiate always writes
            fully-qualified class names as discriminators.

    Example:
        >>> options = BindingOptions(require_arguments=True)
        >>> instantiate(Checkout, {"url": "https://example.com"}, options=options)
    """

    model_config = ConfigDict(frozen=True)

    discriminator_key: str = "$class"
    require_arguments: bool = False
    max_depth: int = Field(default=64, ge=1)
    qualified_discriminators: bool = False


# =============================================================================
# Hint Helpers
# =============================================================================


def _element_hint(hint: Any) -> Any:
    hint = concrete_hint(hint)
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)
    if origin in (dict, collections.abc.Mapping, collections.abc.MutableMapping):
        return args[1] if len(args) == 2 else Any
    if origin is tuple:
        return args[0] if len(args) == 2 and args[1] is Ellipsis else Any
    if origin is not None and args:
        return args[0]
    return Any


def _is_method(attr: Any) -> bool:
    return isinstance(attr, (types.FunctionType, staticmethod, classmethod, types.BuiltinFunctionType))


def _return_hint(func: Any) -> Any:
    return resolve_type_hints(func).get("return", Any)


# =============================================================================
# Binding Context
# =============================================================================


class BindingContext:
    """
    Drives binding between classes and Structured Objects.

    Attributes:
        registry: TypeRegistry consulted for short discriminators.
        loader: ClassLoader used for fully-qualified discriminators.
        options: The BindingOptions in force.
        resolver: DescriptorResolver holding cached binding descriptors.

    Example:
        >>> context = BindingContext(registry=StaticTypeRegistry([Git, Svn]))
        >>> step = context.instantiate(Checkout, {"scm": {"$class": "Git", "url": "..."}})
        >>> context.uninstantiate(step)
        {'scm': {'$class': 'Git', 'url': '...'}}
    """

    def __init__(
        self,
        registry: TypeRegistry | None = None,
        loader: ClassLoader | None = None,
        options: BindingOptions | None = None,
        resolver: DescriptorResolver | None = None,
    ):
        self.registry = registry if registry is not None else SubclassRegistry()
        self.loader = loader if loader is not None else ImportClassLoader()
        self.options = options if options is not None else BindingOptions()
        self.resolver = resolver if resolver is not None else default_resolver
        self._depth = 0

    @contextlib.contextmanager
    def _nested(self, cls: type):
        if self._depth >= self.options.max_depth:
            raise NestingTooDeepError(
                f"{qualified_name(cls)} is nested more than {self.options.max_depth} levels deep; "
                f"is the object graph cyclic?"
            )
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1

    # -------------------------------------------------------------------------
    # Instantiate
    # -------------------------------------------------------------------------

    def instantiate(self, cls: type, arguments: Mapping[str, Any]):
        """
        Create an instance of ``cls`` from a Structured Object.

        A discriminator key in ``arguments`` selects an implementation of
        ``cls``; it is required when ``cls`` is abstract.

        Args:
            cls: The class, or supertype, to instantiate.
            arguments: Map of constructor and setter names to raw values.

        Returns:
            The constructed and fully injected instance.

        Raises:
            StructuralBindingError: If the class declares its bindings
                inconsistently or has no designated constructor.
            ConstructionError: If the arguments cannot be bound.
            Exception: Whatever the constructor or a setter raises, unwrapped.
        """
        arguments = self._as_arguments(cls, arguments)
        discriminator = arguments.pop(self.options.discriminator_key, None)
        concrete = resolve_subtype(
            cls, discriminator, self.registry, self.loader, self.options.discriminator_key
        )
        return self._construct(concrete, arguments)

    def bind_structured(self, expected: type, structured: Mapping, *, owner: str, name: str):
        """
        Bind a nested Structured Object for a parameter declared as ``expected``.

        Returns:
            The new instance, or None when ``structured`` carries no
            discriminator and ``expected`` is not describable (so the value
            is simply of the wrong type).
        """
        arguments = self._as_arguments(expected, structured, owner=owner, name=name)
        discriminator = arguments.pop(self.options.discriminator_key, None)
        concrete = resolve_subtype(
            expected, discriminator, self.registry, self.loader, self.options.discriminator_key
        )
        if discriminator is None and self.resolver.find(concrete) is None:
            return None
        return self._construct(concrete, arguments)

    def _as_arguments(self, cls, arguments, owner: str | None = None, name: str | None = None) -> dict:
        if not isinstance(arguments, collections.abc.Mapping):
            raise CoercionError(
                f"arguments for {qualified_name(cls)} must be a mapping, "
                f"got {qualified_name(type(arguments))}"
            )
        for key in arguments:
            if not isinstance(key, str):
                where = f"{owner}.{name}" if owner else qualified_name(cls)
                raise CoercionError(f"{where}: argument keys must be strings, got {key!r}")
        return dict(arguments)

    def _construct(self, cls: type, arguments: dict):
        descriptor = self.resolver.resolve(cls)
        with self._nested(cls):
            args, kwargs = self._build_arguments(descriptor.owner, descriptor.parameters, arguments, force=True)
            self._log_unknown_keys(descriptor, arguments)
            instance = descriptor.factory()(*args, **kwargs)
            self._inject_setters(instance, descriptor, arguments)
        return instance

    def _build_arguments(
        self,
        owner: str,
        parameters: tuple[ParameterSpec, ...],
        arguments: Mapping[str, Any],
        force: bool,
    ) -> Optional[tuple[list, dict]]:
        """
        Assemble the argument vector for one invocation.

        Returns:
            (positional, keyword) arguments, or None when ``force`` is False
            and no parameter name appears in ``arguments``.
        """
        has_arg = force
        positional: list = []
        keywords: dict = {}
        for spec in parameters:
            present = spec.name in arguments
            has_arg = has_arg or present
            raw = arguments.get(spec.name)
            primitive = spec.primitive

            if raw is not None:
                value = coerce(raw, spec.annotation, self, owner=owner, name=spec.name)
            elif spec.has_default and (not present or primitive is not None):
                value = spec.default
            elif primitive is bool:
                value = False
            elif primitive is not None:
                if force:
                    raise MissingArgumentError(
                        f"no default for {owner}.{spec.name} of type {primitive.__name__}; "
                        f"pass an explicit value for {spec.name}"
                    )
                value = None
            elif force and (spec.required or self.options.require_arguments):
                raise MissingArgumentError(f"{owner}.{spec.name} is required")
            else:
                value = None

            if spec.kind == "keyword":
                keywords[spec.parameter] = value
            else:
                positional.append(value)
        return (positional, keywords) if has_arg else None

    def _inject_setters(self, instance, descriptor: BindingDescriptor, arguments: Mapping[str, Any]) -> None:
        for mutator in descriptor.mutators:
            if mutator.access == "field":
                if mutator.name not in arguments:
                    continue
                raw = arguments[mutator.name]
                value = None if raw is None else coerce(
                    raw, mutator.annotation, self, owner=descriptor.owner, name=mutator.name
                )
                object.__setattr__(instance, mutator.member, value)
                continue

            vector = self._build_arguments(
                descriptor.owner, (mutator.as_parameter(),), arguments, force=False
            )
            if vector is None:
                continue
            (value,), _ = vector
            if mutator.access == "method":
                getattr(instance, mutator.member)(value)
            else:
                setattr(instance, mutator.member, value)

    def _log_unknown_keys(self, descriptor: BindingDescriptor, arguments: Mapping[str, Any]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        known = set(descriptor.names) | {m.name for m in descriptor.mutators}
        unknown = sorted(set(arguments) - known)
        if unknown:
            logger.debug("Ignoring unknown keys for %s: %s", descriptor.owner, unknown)

    # -------------------------------------------------------------------------
    # Uninstantiate
    # -------------------------------------------------------------------------

    def uninstantiate(self, obj: Any) -> dict[str, Any]:
        """
        Compute the Structured Object that reconstructs ``obj``.

        Keys are sorted; keys whose value is None are dropped. Nested
        describable values become nested maps, with a discriminator where
        the declared type would not select the value's class.

        Raises:
            UnsupportedStructureError: If the class of ``obj`` has no
                designated constructor, or a bound name cannot be read back.
        """
        descriptor = self.resolver.resolve(type(obj))
        with self._nested(type(obj)):
            return self._uninstantiate(obj, descriptor)

    def _uninstantiate(self, obj: Any, descriptor: BindingDescriptor) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for spec in descriptor.parameters:
            result[spec.name] = self._inspect(obj, descriptor, spec.name, spec.annotation)
        for mutator in descriptor.mutators:
            result[mutator.name] = self._inspect(obj, descriptor, mutator.name, mutator.annotation)
        return {key: value for key, value in sorted(result.items()) if value is not None}

    def _inspect(self, obj: Any, descriptor: BindingDescriptor, name: str, fallback: Any) -> Any:
        value, declared = self._read(obj, descriptor, name)
        if declared is Any:
            declared = fallback
        return self._structure(value, declared)

    def _read(self, obj: Any, descriptor: BindingDescriptor, name: str) -> tuple[Any, Any]:
        """Read ``name`` off ``obj`` as a field, then ``get_<name>()``, then ``is_<name>()``."""
        cls = type(obj)
        attr = _MISSING
        if not name.startswith("_"):
            instance_dict = getattr(obj, "__dict__", None)
            if isinstance(instance_dict, dict) and name in instance_dict:
                return instance_dict[name], self._field_hint(cls, name)
            try:
                attr = inspect.getattr_static(obj, name)
            except AttributeError:
                pass
        if attr is not _MISSING and not _is_method(attr):
            if isinstance(attr, property):
                declared = _return_hint(attr.fget) if attr.fget is not None else Any
            else:
                declared = self._field_hint(cls, name)
            return getattr(obj, name), declared

        for prefix in (GETTER_PREFIX, BOOLEAN_GETTER_PREFIX):
            getter = getattr(obj, prefix + name, None)
            if getter is not None and callable(getter):
                declared = bool if prefix == BOOLEAN_GETTER_PREFIX else _return_hint(getter)
                return getter(), declared

        raise UnsupportedStructureError(
            f"no public field '{name}' (or getter method) found in {descriptor.owner}"
        )

    def _field_hint(self, cls: type, name: str) -> Any:
        return resolve_type_hints(cls).get(name, Any)

    def _structure(self, value: Any, declared: Any) -> Any:
        """Reduce one read value, recursing into containers and describables."""
        if value is None:
            return None
        if type(value) in (list, tuple):
            element = _element_hint(declared)
            return type(value)(self._structure(item, element) for item in value)
        if type(value) in (set, frozenset):
            element = _element_hint(declared)
            items = [self._structure(item, element) for item in value]
            try:
                return type(value)(items)
            except TypeError:
                # nested Structured Objects are dicts, which cannot live in a set
                return items
        if type(value) is dict:
            element = _element_hint(declared)
            return {key: self._structure(item, element) for key, item in value.items()}
        if type(value).__module__ == "builtins":
            return value

        descriptor = self.resolver.find(type(value))
        if descriptor is None:
            return value
        with self._nested(type(value)):
            nested = self._uninstantiate(value, descriptor)
        discriminator = self._discriminator(type(value), declared)
        if discriminator is not None:
            nested[self.options.discriminator_key] = discriminator
            nested = dict(sorted(nested.items()))
        return nested

    def _discriminator(self, actual: type, declared: Any) -> Optional[str]:
        """
        Discriminator needed so that reinstantiation selects ``actual``.

        None when the declared type is exactly ``actual``; the short name when
        the registry resolves it unambiguously; the qualified name otherwise.
        """
        declared = concrete_hint(declared)
        if declared is actual:
            return None
        if self.options.qualified_discriminators or not isinstance(declared, type):
            return qualified_name(actual)
        matches = [
            c for c in self.registry.list_implementations(declared)
            if short_name(c) == short_name(actual)
        ]
        if matches == [actual]:
            return short_name(actual)
        return qualified_name(actual)
