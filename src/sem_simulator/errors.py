"""Exception and warning types raised while building and locking a DAG."""

from __future__ import annotations


class DAGError(ValueError):
    """Base class for every error raised by sem_simulator."""


# --- Structural identity ---


class InvalidNameError(DAGError):
    pass


class DuplicateNameError(DAGError):
    pass


class MissingParameterNameError(DAGError):
    pass


class UnknownDistributionError(DAGError):
    pass


class OrderLengthMismatchError(DAGError):
    pass


class EFUConflictError(DAGError):
    """Two nodes sharing a generic name disagree on their EFU flag."""


# --- Sequencing ---


class SequencingError(DAGError):
    """The node sequence violates an ordering invariant."""


class TimeOrderingError(SequencingError):
    pass


class OrderConflictError(SequencingError):
    pass


class TimeGapError(SequencingError):
    pass


class ForwardReferenceError(SequencingError):
    pass


# --- Protocol ---


class NotADAGError(DAGError):
    pass


class LockedDAGError(DAGError):
    pass


class LockedRequiredError(DAGError):
    pass


# --- Actions ---


class EmptyNameError(DAGError):
    pass


class MissingNodesError(DAGError):
    pass


class DuplicateAttributeError(DAGError):
    pass


class UnknownNodeError(DAGError):
    pass


class UnknownActionError(DAGError):
    pass


# --- Expressions ---


class ExpressionSyntaxError(DAGError):
    """Raised when a parameter expression cannot be parsed or is not allowed."""


class ExpressionEvaluationError(DAGError):
    """Raised when a valid expression fails while being evaluated.

    The original exception is chained via ``__cause__``.
    """


class NodeOverwriteWarning(UserWarning):
    """A non-time-varying node was replaced by its time-varying version."""
