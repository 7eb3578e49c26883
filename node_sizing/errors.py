"""Errors raised while sizing a pod."""


class SizingError(Exception):
    """Base class for every failure that aborts the mutation of a pod."""


class InvalidResourceValue(SizingError):
    """A resource quantity on the pod cannot be parsed."""


class InvalidAnnotationValue(InvalidResourceValue):
    """A recognized annotation holds a malformed fraction or quantity."""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key


class NodeResolutionError(SizingError):
    """The target node cannot be derived from the pod or found in the snapshot."""


class MissingBindingError(SizingError):
    """An operand is missing a binding the receiver expects to be present."""


class BudgetExhaustedError(SizingError):
    """The pod budget is not positive once exclusions and bounds are applied."""
