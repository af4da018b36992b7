"""
Static checks for describable class declarations.

This module inspects a class's binding declarations without constructing
anything, so problems surface when a class is written rather than when the
first argument map arrives.

Checks performed:
    1. Structural errors (conflicting constructors, parameter-name metadata
       that disagrees with the constructor, malformed setters)
    2. Classes that are not describable at all
    3. Parameters and setters without a type annotation (values bind
       without any coercion)
    4. ``int``/``float`` parameters without a default (every argument map
       must supply them)
    5. Abstract parameter types with no known implementation (no
       discriminator can ever select one)

    >>> from pydescribe.lint import lint_type, check_type
    >>>
    >>> for problem in lint_type(Checkout):
    ...     print(problem)
    >>>
    >>> # Or fail fast, e.g. in a test suite
    >>> check_type(Checkout)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from pydescribe.descriptors import DescriptorResolver, concrete_hint, default_resolver
from pydescribe.errors import StructuralBindingError
from pydescribe.registry import (
    SubclassRegistry,
    TypeRegistry,
    is_abstract,
    qualified_name,
)


# =============================================================================
# Error Classes
# =============================================================================


@dataclass
class LintError:
    """A problem found in a class's binding declarations."""
    message: str
    member: Optional[str] = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        parts = []
        if self.member:
            parts.append(f"{self.member}: {self.message}")
        else:
            parts.append(self.message)
        if self.suggestion:
            parts.append(f"  Suggestion: {self.suggestion}")
        return "\n".join(parts)


class DescribableLintError(Exception):
    """Raised by check_type() when a class fails linting."""

    def __init__(self, message: str, errors: List[LintError] = None):
        self.errors = errors or []
        super().__init__(message)


# =============================================================================
# Checks
# =============================================================================


def _check_abstract(hint: Any, member: str, registry: TypeRegistry) -> Optional[LintError]:
    hint = concrete_hint(hint)
    if not isinstance(hint, type) or not is_abstract(hint):
        return None
    if registry.list_implementations(hint):
        return None
    return LintError(
        f"{qualified_name(hint)} is abstract and has no known implementation",
        member=member,
        suggestion="import or register a concrete subclass",
    )


def lint_type(
    cls: type,
    registry: TypeRegistry | None = None,
    resolver: DescriptorResolver | None = None,
) -> List[LintError]:
    """
    Check the binding declarations of ``cls``.

    Args:
        cls: The class to check.
        registry: TypeRegistry used for the abstract-type check. Defaults
            to a SubclassRegistry.
        resolver: DescriptorResolver to use. Defaults to the shared one.

    Returns:
        List of LintError objects (empty if no problems found).
    """
    registry = registry if registry is not None else SubclassRegistry()
    resolver = resolver if resolver is not None else default_resolver
    errors: List[LintError] = []

    try:
        descriptor = resolver.find(cls)
    except StructuralBindingError as exc:
        return [LintError(str(exc))]

    if descriptor is None:
        return [LintError(
            f"{qualified_name(cls)} is not describable",
            suggestion="decorate __init__ with @data_bound_constructor",
        )]

    for spec in descriptor.parameters:
        if spec.annotation is Any:
            errors.append(LintError(
                "parameter has no type annotation; values bind without coercion",
                member=spec.name,
            ))
        elif spec.primitive in (int, float) and not spec.has_default:
            errors.append(LintError(
                f"{spec.primitive.__name__} parameter without a default must always be supplied",
                member=spec.name,
                suggestion=f"give {spec.parameter} a default value",
            ))
        else:
            problem = _check_abstract(spec.annotation, spec.name, registry)
            if problem is not None:
                errors.append(problem)

    for mutator in descriptor.mutators:
        if mutator.annotation is Any:
            errors.append(LintError(
                f"{mutator.access} setter has no type annotation; values bind without coercion",
                member=mutator.name,
            ))
        else:
            problem = _check_abstract(mutator.annotation, mutator.name, registry)
            if problem is not None:
                errors.append(problem)

    return errors


def check_type(
    cls: type,
    registry: TypeRegistry | None = None,
    resolver: DescriptorResolver | None = None,
) -> None:
    """
    Raise DescribableLintError if lint_type() reports any problem for ``cls``.
    """
    errors = lint_type(cls, registry=registry, resolver=resolver)
    if errors:
        details = "\n".join(str(e) for e in errors)
        raise DescribableLintError(
            f"{qualified_name(cls)} failed linting:\n{details}",
            errors=errors,
        )
