"""
Declaration markers for describable classes.

A class opts into structured binding by tagging its designated constructor:

    >>> class Checkout:
    ...     @data_bound_constructor
    ...     def __init__(self, url: AnyUrl, shallow: bool):
    ...         self.url = url
    ...         self.shallow = shallow

Optional values set after construction are declared as mutators, in one
of three forms:

    >>> class Checkout:
    ...     # field form
    ...     depth: Annotated[int | None, DataBoundSetter] = None
    ...
    ...     # method form: ``set_`` prefix, property name is the remainder
    ...     @data_bound_setter
    ...     def set_branch(self, branch: str):
    ...         self._branch = branch
    ...
    ...     # property form
    ...     @property
    ...     def quiet(self) -> bool:
    ...         return self._quiet
    ...
    ...     @quiet.setter
    ...     @data_bound_setter
    ...     def quiet(self, value: bool):
    ...         self._quiet = value
"""

from __future__ import annotations

from typing import Any, Callable, Sequence, TypeVar, overload

F = TypeVar("F", bound=Callable[..., Any])

# Prefix that method-form setters must carry
SETTER_PREFIX = "set_"

# Prefixes tried, in order, when reading a value back off an instance
GETTER_PREFIX = "get_"
BOOLEAN_GETTER_PREFIX = "is_"

CONSTRUCTOR_ATTRIBUTE = "__data_bound_constructor__"
SETTER_ATTRIBUTE = "__data_bound_setter__"

# Class-level parameter-name metadata for classes without a tagged constructor
PARAMS_ATTRIBUTE = "__data_bound_params__"


class DataBoundSetter:
    """
    Annotation metadata marking a class attribute as a field-form setter.

    Used as ``name: Annotated[T, DataBoundSetter]``. Both the class and an
    instance of it are recognized.
    """


class Required:
    """
    Annotation metadata marking a constructor parameter as required.

    ``label: Annotated[str, Required]`` makes an absent ``label`` an error
    instead of binding ``None``.
    """


class ConstructorTag:
    """Metadata attached to a function tagged with @data_bound_constructor."""

    __slots__ = ("names",)

    def __init__(self, names: Sequence[str] | None = None):
        self.names = tuple(names) if names is not None else None

    def __repr__(self) -> str:
        return f"ConstructorTag(names={self.names!r})"


def _tag(func, attribute: str, value) -> None:
    # classmethod/staticmethod wrappers carry the tag on the wrapped function
    target = func.__func__ if isinstance(func, (classmethod, staticmethod)) else func
    setattr(target, attribute, value)


@overload
def data_bound_constructor(func: F) -> F: ...


@overload
def data_bound_constructor(*, names: Sequence[str]) -> Callable[[F], F]: ...


def data_bound_constructor(func=None, *, names=None):
    """
    Mark ``__init__`` or a classmethod factory as the designated constructor.

    Args:
        func: The function being decorated (when used without parentheses).
        names: Optional parameter-name metadata. When given, the i-th name is
            the map key bound to the i-th constructor parameter, and the
            number of names must equal the constructor's arity.

    Example:
        >>> class Pair:
        ...     @data_bound_constructor(names=("left", "right"))
        ...     def __init__(self, a, b): ...
    """
    if isinstance(names, str):
        raise TypeError("names must be a sequence of strings, not a single string")

    def wrap(f):
        _tag(f, CONSTRUCTOR_ATTRIBUTE, ConstructorTag(names))
        return f

    if func is not None:
        return wrap(func)
    return wrap


def data_bound_setter(func: F) -> F:
    """Mark a ``set_<name>`` method or a property setter as a mutator."""
    _tag(func, SETTER_ATTRIBUTE, True)
    return func


def constructor_tag(func) -> ConstructorTag | None:
    """Return the ConstructorTag on a function or classmethod, if any."""
    if isinstance(func, (classmethod, staticmethod)):
        func = func.__func__
    tag = getattr(func, CONSTRUCTOR_ATTRIBUTE, None)
    return tag if isinstance(tag, ConstructorTag) else None


def is_setter(func) -> bool:
    if isinstance(func, (classmethod, staticmethod)):
        return False
    return getattr(func, SETTER_ATTRIBUTE, False) is True


def is_setter_marker(metadata: Any) -> bool:
    return metadata is DataBoundSetter or isinstance(metadata, DataBoundSetter)


def is_required_marker(metadata: Any) -> bool:
    return metadata is Required or isinstance(metadata, Required)


def decapitalize(name: str) -> str:
    """
    Lower-case the first character unless the first two are both upper case.

    >>> decapitalize("Label")
    'label'
    >>> decapitalize("URL")
    'URL'
    """
    if not name:
        return name
    if len(name) > 1 and name[0].isupper() and name[1].isupper():
        return name
    return name[0].lower() + name[1:]


def setter_property_name(method_name: str) -> str | None:
    """Property name for a method-form setter, or None if the name does not conform."""
    if not method_name.startswith(SETTER_PREFIX):
        return None
    remainder = method_name[len(SETTER_PREFIX):]
    if not remainder:
        return None
    return decapitalize(remainder)
