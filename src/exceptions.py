class DispatchError(Exception):
    """Base class for errors raised by the dispatch scheduler."""


class ValidationError(DispatchError):
    """Malformed input or a disallowed booking transition."""


class NotFoundError(DispatchError):
    """A booking, driver or pattern referenced by a direct operation is missing."""


class ConsistencyError(DispatchError):
    """A booking was promoted without a live ride attached."""
