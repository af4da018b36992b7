"""
Value coercion for constructor and setter arguments.

coerce() converts one raw value from an argument map into the type a
parameter declares. The rules, in order:

1. Unknown targets (no annotation, ``Any``, ``object``, type variables,
   unresolved forward references) accept anything.
2. ``Annotated`` and ``NewType`` are unwrapped; ``Optional``/``Union`` try
   each member; ``Literal`` checks membership.
3. Sequence and mapping generics coerce element-wise.
4. A value that already is an instance of the target passes through
   (a ``bool`` is never accepted for ``int`` or ``float``).
5. Built-in conversions: ``int`` -> ``float``, ``str`` -> ``Enum`` member by
   name, and lexical ``str`` conversions (URLs, paths, UUIDs, decimals,
   dates and times) through pydantic.
6. A Structured Object (a mapping) binds as a nested describable instance.

Anything else is a CoercionError naming the owner type, the parameter,
and the expected and received types.
"""

from __future__ import annotations

import collections.abc
import datetime
import decimal
import enum
import functools
import pathlib
import types
import typing
import uuid
from typing import TYPE_CHECKING, Any

from pydantic import AnyUrl, TypeAdapter, ValidationError

from pydescribe.errors import CoercionError
from pydescribe.registry import qualified_name

if TYPE_CHECKING:
    from pydescribe.bind import BindingContext
else:
    BindingContext = Any


# Classes a string converts into by parsing it
LEXICAL_TYPES: tuple[type, ...] = (
    AnyUrl,
    pathlib.PurePath,
    uuid.UUID,
    decimal.Decimal,
    datetime.datetime,
    datetime.date,
    datetime.time,
    datetime.timedelta,
)

_NOT_CONVERTED = object()

_LIST_ORIGINS = (
    list,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Iterable,
    collections.abc.Collection,
)
_SET_ORIGINS = (set, frozenset, collections.abc.Set, collections.abc.MutableSet)
_MAPPING_ORIGINS = (dict, collections.abc.Mapping, collections.abc.MutableMapping)
_UNION_ORIGINS = (typing.Union, types.UnionType)


def describe_type(target: Any) -> str:
    """Readable name of a type or typing construct for error messages."""
    if isinstance(target, type) and not typing.get_args(target):
        return qualified_name(target)
    return repr(target).replace("typing.", "")


def _fail(value: Any, target: Any, owner: str, name: str, detail: str = "") -> CoercionError:
    message = (
        f"{owner}.{name} expects {describe_type(target)} "
        f"but received {qualified_name(type(value))}"
    )
    if detail:
        message += f": {detail}"
    return CoercionError(message)


def _is_unknown(target: Any) -> bool:
    return (
        target is Any
        or target is object
        or target is None
        or isinstance(target, (str, typing.TypeVar, typing.ForwardRef))
    )


def satisfies(value: Any, target: type) -> bool:
    """isinstance() with bool excluded from the numeric types."""
    if isinstance(value, bool) and target in (int, float):
        return False
    try:
        return isinstance(value, target)
    except TypeError:
        # non-runtime-checkable protocols refuse isinstance
        return target in type(value).__mro__


@functools.lru_cache(maxsize=None)
def _adapter(target: type) -> TypeAdapter:
    return TypeAdapter(target)


def _convert_builtin(value: Any, target: type, owner: str, name: str) -> Any:
    """Apply a built-in conversion, or return _NOT_CONVERTED."""
    if target is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if target in (list, tuple) and isinstance(value, (list, tuple)):
        return target(value)
    if not isinstance(value, str):
        return _NOT_CONVERTED
    if issubclass(target, enum.Enum):
        try:
            return target[value]
        except KeyError:
            raise _fail(
                value, target, owner, name,
                f"{value!r} is not a member; expected one of {', '.join(target.__members__)}",
            ) from None
    if issubclass(target, LEXICAL_TYPES):
        try:
            return _adapter(target).validate_python(value)
        except ValidationError as exc:
            raise _fail(
                value, target, owner, name,
                f"{value!r} is not a valid {qualified_name(target)}: {exc.errors()[0]['msg']}",
            ) from exc
    return _NOT_CONVERTED


# =============================================================================
# Generic Targets
# =============================================================================


def _coerce_union(value, members, target, context, owner, name):
    members = [m for m in members if m is not type(None)]
    if len(members) == 1:
        return coerce(value, members[0], context, owner=owner, name=name)
    for member in members:
        member = _unwrap(member)
        if _is_unknown(member) or (isinstance(member, type) and satisfies(value, member)):
            return value
    failures = []
    for member in members:
        try:
            return coerce(value, member, context, owner=owner, name=name)
        except CoercionError as exc:
            failures.append(str(exc))
    raise _fail(value, target, owner, name, "; ".join(failures))


def _coerce_sequence(value, origin, args, target, context, owner, name):
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        raise _fail(value, target, owner, name)
    items = list(value)

    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(
                _coerce_item(item, args[0], context, owner, f"{name}[{i}]")
                for i, item in enumerate(items)
            )
        if args:
            if len(items) != len(args):
                raise _fail(value, target, owner, name, f"expected {len(args)} items, got {len(items)}")
            return tuple(
                _coerce_item(item, arg, context, owner, f"{name}[{i}]")
                for i, (item, arg) in enumerate(zip(items, args))
            )
        return tuple(items)

    element = args[0] if args else Any
    coerced = [_coerce_item(item, element, context, owner, f"{name}[{i}]") for i, item in enumerate(items)]
    if origin is frozenset:
        return frozenset(coerced)
    if origin in _SET_ORIGINS:
        return set(coerced)
    return coerced


def _coerce_mapping(value, args, target, context, owner, name):
    if not isinstance(value, collections.abc.Mapping):
        raise _fail(value, target, owner, name)
    key_type, value_type = args if len(args) == 2 else (Any, Any)
    return {
        _coerce_item(k, key_type, context, owner, f"{name}.key"):
            _coerce_item(v, value_type, context, owner, f"{name}[{k!r}]")
        for k, v in value.items()
    }


def _coerce_item(item, target, context, owner, name):
    if item is None:
        return None
    return coerce(item, target, context, owner=owner, name=name)


def _unwrap(target: Any) -> Any:
    while True:
        if typing.get_origin(target) is typing.Annotated:
            target = typing.get_args(target)[0]
        elif hasattr(target, "__supertype__"):
            target = target.__supertype__
        else:
            return target


# =============================================================================
# Entry Point
# =============================================================================


def coerce(value: Any, target: Any, context: BindingContext, *, owner: str, name: str) -> Any:
    """
    Convert ``value`` to the declared type ``target``.

    Args:
        value: The raw, non-None value from the argument map.
        target: The declared parameter or setter type.
        context: Binding context, used to bind nested Structured Objects.
        owner: Qualified name of the class being bound, for messages.
        name: Parameter or setter name, for messages.

    Returns:
        The coerced value.

    Raises:
        CoercionError: If the value cannot be converted.
        DiscriminatorError: If a nested Structured Object names no usable class.
    """
    target = _unwrap(target)
    if _is_unknown(target):
        return value

    origin = typing.get_origin(target)
    args = typing.get_args(target)

    if origin in _UNION_ORIGINS:
        return _coerce_union(value, args, target, context, owner, name)
    if origin is typing.Literal:
        if value in args:
            return value
        raise _fail(value, target, owner, name)
    if origin is tuple or origin in _LIST_ORIGINS or origin in _SET_ORIGINS:
        return _coerce_sequence(value, origin, args, target, context, owner, name)
    if origin in _MAPPING_ORIGINS:
        return _coerce_mapping(value, args, target, context, owner, name)
    if origin is not None:
        # other parameterized generics: only the runtime class can be checked
        if isinstance(origin, type) and satisfies(value, origin):
            return value
        raise _fail(value, target, owner, name)

    if not isinstance(target, type):
        return value
    if satisfies(value, target):
        return value

    converted = _convert_builtin(value, target, owner, name)
    if converted is not _NOT_CONVERTED:
        return converted

    if isinstance(value, collections.abc.Mapping):
        bound = context.bind_structured(target, value, owner=owner, name=name)
        if bound is not None:
            return bound

    raise _fail(value, target, owner, name)
