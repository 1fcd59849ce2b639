"""Error types shared across the mirror services."""


class RemoteFetchError(RuntimeError):
    """Raised when the remote proposal source cannot be reached or answers with an error."""


class ValidationError(ValueError):
    """Raised for malformed caller input. Never swallowed."""


class DimensionMismatchError(ValidationError):
    """Raised when two vectors of different lengths are compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Vectors must have same length (got {left} and {right})")


class ConflictError(ValidationError):
    """Raised when a row clashes with a unique key already held by another row."""
