"""
Type registry and class loader collaborators, and subtype resolution.

The binding engine never consults global state to discover implementations.
It is handed two collaborators:

- TypeRegistry: lists the concrete implementations of a supertype.
- ClassLoader: turns a fully-qualified name into a class.

SubclassRegistry and ImportClassLoader are the defaults; StaticTypeRegistry
pins the known implementations to a fixed set, which keeps tests independent
of whatever else happens to be imported.
"""

from __future__ import annotations

import importlib
import inspect
import logging
from typing import Iterable, Optional, Protocol, Set, runtime_checkable

from pydescribe.errors import DiscriminatorError, UnknownTypeError

logger = logging.getLogger(__name__)


# =============================================================================
# Naming
# =============================================================================


def short_name(cls: type) -> str:
    """Display name usable as a short discriminator."""
    return cls.__name__


def qualified_name(cls: type) -> str:
    """Fully-qualified name; builtins are reported by their bare name."""
    module = getattr(cls, "__module__", None)
    qualname = getattr(cls, "__qualname__", None) or getattr(cls, "__name__", repr(cls))
    if module is None or module == "builtins":
        return qualname
    return f"{module}.{qualname}"


def is_fully_qualified(discriminator: str) -> bool:
    return "." in discriminator or ":" in discriminator


def is_abstract(cls: type) -> bool:
    """True for ABCs with abstract members and for Protocol classes."""
    if inspect.isabstract(cls):
        return True
    return bool(cls.__dict__.get("_is_protocol", False))


def is_subtype(cls: type, supertype: type) -> bool:
    try:
        return issubclass(cls, supertype)
    except TypeError:
        # non-runtime-checkable protocols refuse issubclass
        return supertype in getattr(cls, "__mro__", ())


# =============================================================================
# Collaborator Interfaces
# =============================================================================


@runtime_checkable
class TypeRegistry(Protocol):
    """Lists the concrete implementation classes known for a supertype."""

    def list_implementations(self, supertype: type) -> Set[type]: ...


@runtime_checkable
class ClassLoader(Protocol):
    """Resolves a fully-qualified class name, raising UnknownTypeError if it cannot."""

    def load_type(self, name: str) -> type: ...


# =============================================================================
# Default Implementations
# =============================================================================


class SubclassRegistry:
    """
    Registry backed by the interpreter's own subclass links.

    Every concrete class that transitively subclasses the supertype, and
    has been imported, is an implementation. The supertype itself counts
    when it is concrete.
    """

    def list_implementations(self, supertype: type) -> Set[type]:
        found: set[type] = set()
        seen: set[type] = set()
        stack = [supertype]
        while stack:
            klass = stack.pop()
            if klass in seen:
                continue
            seen.add(klass)
            if not is_abstract(klass):
                found.add(klass)
            stack.extend(type.__subclasses__(klass))
        return found


class StaticTypeRegistry:
    """
    Registry over a fixed, explicitly registered set of classes.

    Example:
        >>> registry = StaticTypeRegistry()
        >>> @registry.register
        ... class Git(SCM): ...
        >>> registry.list_implementations(SCM)
        {<class 'Git'>}
    """

    def __init__(self, types: Iterable[type] = ()):
        self._types: list[type] = []
        for cls in types:
            self.register(cls)

    def register(self, cls: type) -> type:
        if cls not in self._types:
            self._types.append(cls)
        return cls

    def list_implementations(self, supertype: type) -> Set[type]:
        return {
            cls for cls in self._types
            if is_subtype(cls, supertype) and not is_abstract(cls)
        }

    def __contains__(self, cls: object) -> bool:
        return cls in self._types

    def __len__(self) -> int:
        return len(self._types)


class ImportClassLoader:
    """
    Loads classes by importing their module.

    Accepted forms:
        ``package.module.Outer.Inner``  (longest importable module prefix wins)
        ``package.module:Outer.Inner``
    """

    def load_type(self, name: str) -> type:
        if ":" in name:
            module_name, _, qualname = name.partition(":")
            module = self._import(module_name)
            if module is None:
                raise UnknownTypeError(f"no module named {module_name!r} for type {name!r}")
            return self._lookup(module, qualname, name)

        parts = name.split(".")
        for i in range(len(parts) - 1, 0, -1):
            module = self._import(".".join(parts[:i]))
            if module is None:
                continue
            try:
                return self._lookup(module, ".".join(parts[i:]), name)
            except UnknownTypeError:
                continue
        raise UnknownTypeError(f"cannot load type {name!r}")

    @staticmethod
    def _import(module_name: str):
        try:
            return importlib.import_module(module_name)
        except ModuleNotFoundError as exc:
            # Only a miss on the module itself means "try a shorter prefix"
            if exc.name is not None and module_name.startswith(exc.name):
                return None
            raise

    @staticmethod
    def _lookup(module, qualname: str, name: str) -> type:
        obj = module
        for attr in qualname.split("."):
            try:
                obj = getattr(obj, attr)
            except AttributeError:
                raise UnknownTypeError(f"cannot load type {name!r}") from None
        if not isinstance(obj, type):
            raise UnknownTypeError(f"{name!r} does not name a class")
        return obj


# =============================================================================
# Subtype Resolution
# =============================================================================


def resolve_subtype(
    expected: type,
    discriminator: Optional[str],
    registry: TypeRegistry,
    loader: ClassLoader,
    key: str = "$class",
) -> type:
    """
    Select the concrete class to instantiate for a Structured Object.

    Args:
        expected: The declared parameter type.
        discriminator: Value of the discriminator key, or None if absent.
        registry: Source of known implementations for short names.
        loader: Resolves fully-qualified names.
        key: Discriminator key name, for error messages.

    Returns:
        The concrete class, always a subtype of ``expected``.

    Raises:
        DiscriminatorError: If no discriminator was given for an abstract
            type, the name is unknown or ambiguous, or it resolves to a class
            outside ``expected``'s hierarchy.
    """
    if discriminator is None:
        if is_abstract(expected):
            raise DiscriminatorError(
                f"must specify {key} with an implementation of {qualified_name(expected)}"
            )
        return expected

    if not isinstance(discriminator, str):
        raise DiscriminatorError(
            f"{key} must be a string naming an implementation of "
            f"{qualified_name(expected)}, got {type(discriminator).__name__}"
        )

    if is_fully_qualified(discriminator):
        try:
            cls = loader.load_type(discriminator)
        except UnknownTypeError as exc:
            raise DiscriminatorError(
                f"cannot load {discriminator} as a {qualified_name(expected)}: {exc}"
            ) from exc
    else:
        matches = sorted(
            (c for c in registry.list_implementations(expected) if short_name(c) == discriminator),
            key=qualified_name,
        )
        if not matches:
            raise DiscriminatorError(
                f"no known implementation of {qualified_name(expected)} is named {discriminator}"
            )
        if len(matches) > 1:
            names = [qualified_name(c) for c in matches]
            raise DiscriminatorError(
                f"{discriminator} as a {qualified_name(expected)} could mean either "
                + " or ".join(names),
                candidates=names,
            )
        cls = matches[0]

    if not is_subtype(cls, expected):
        raise DiscriminatorError(
            f"{qualified_name(cls)} is not an implementation of {qualified_name(expected)}"
        )
    if is_abstract(cls):
        raise DiscriminatorError(f"{qualified_name(cls)} is abstract and cannot be instantiated")

    logger.debug("Resolved %s %r to %s", qualified_name(expected), discriminator, qualified_name(cls))
    return cls
