"""
Activity engine errors.

Every engine operation either returns a complete new state or raises one of
these. Nothing is coerced into a best-effort state.

Hierarchy:
- ActivityError: base class
  - ConfigurationError: the source or the request cannot be honored
    - InvalidSourceError: malformed source definition (ids, schema)
    - WrongActivityTypeError: an operation was given the wrong kind of node
    - ConsistencyError: parent/child bookkeeping does not line up
  - InvariantViolation: the engine computed something impossible (a bug)
"""


class ActivityError(Exception):
    """Base class for all activity engine errors."""
    pass


class ConfigurationError(ActivityError):
    """Raised when an activity is configured in a way the engine cannot satisfy."""
    pass


class InvalidSourceError(ConfigurationError):
    """Raised when a source definition fails validation."""
    pass


class WrongActivityTypeError(ConfigurationError):
    """Raised when a type-specific operation receives another kind of activity."""

    def __init__(self, operation: str, expected: str, received: str):
        self.operation = operation
        self.expected = expected
        self.received = received
        super().__init__(
            f"Received the wrong type of activity for {operation}: "
            f"expected {expected}, got {received}"
        )


class ConsistencyError(ConfigurationError):
    """Raised when a child is not found where its parent says it should be."""
    pass


class InvariantViolation(ActivityError):
    """Raised when an internal computation disagrees with its own bookkeeping."""
    pass
