"""
Exceptions raised by the recurrent cells library.

All of them signal programming errors of the caller: they are raised eagerly
at the call boundary and never recovered inside the library.

Classes:
    ShapeMismatchError: A tensor does not match the declared size of a cell or gate
    UninitializedStateError: A buffer is read before it has been produced
    UnsupportedOperationError: The requested operation is not defined for the target
"""


class ShapeMismatchError(ValueError):
    """A tensor length or shape does not match the declared size."""

    def __init__(self, what: str, expected, actual):
        self.what = what
        self.expected = expected
        self.actual = actual
        super().__init__(f"{what}: expected {expected}, got {actual}")


class UninitializedStateError(RuntimeError):
    """A buffer (values, errors, relevance, gradients) was read before being set."""


class UnsupportedOperationError(NotImplementedError):
    """The operation is not defined for this cell, path or configuration."""
