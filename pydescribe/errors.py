"""
Exception hierarchy for the pydescribe library.

Binding failures fall into two families:

- StructuralBindingError: the target class itself is declared wrongly
  (no designated constructor, parameter-name metadata that disagrees with
  the constructor, malformed setters). Retrying with other input never helps.
- ConstructionError: the input map cannot be bound onto an otherwise valid
  class (a value of the wrong type, an unknown or ambiguous discriminator,
  a missing required argument).

Exceptions raised by a target constructor or setter are not wrapped: they
reach the caller unchanged.
"""

from __future__ import annotations

from typing import Sequence


class BindingError(Exception):
    """Base class for every error raised by the binding layer."""


# =============================================================================
# Structural Errors
# =============================================================================


class StructuralBindingError(BindingError):
    """Raised when a class's binding declarations are inconsistent."""


class UnsupportedStructureError(StructuralBindingError):
    """
    Raised when an object or class cannot be described at all.

    Either the class has no designated constructor, or a constructor
    parameter has no readable field or getter on the instance.
    """


# =============================================================================
# Input Errors
# =============================================================================


class ConstructionError(BindingError):
    """Raised when an argument map cannot be bound onto a class."""


class CoercionError(ConstructionError, TypeError):
    """Raised when a value cannot be converted to the declared type."""


class MissingArgumentError(ConstructionError):
    """Raised when a required constructor argument is absent."""


class DiscriminatorError(ConstructionError):
    """
    Raised when the concrete class of a Structured Object cannot be selected.

    Attributes:
        candidates: Fully-qualified names of the conflicting implementations
            when the discriminator was ambiguous, otherwise empty.
    """

    def __init__(self, message: str, candidates: Sequence[str] = ()):
        self.candidates = tuple(candidates)
        super().__init__(message)


# =============================================================================
# Misc
# =============================================================================


class NestingTooDeepError(BindingError):
    """Raised when an object graph nests deeper than the configured limit."""


class UnknownTypeError(LookupError):
    """Raised by a class loader for a name it cannot resolve."""
