"""Errors shared across the timing, caption and queue components"""


class InvariantViolation(ValueError):
    """Raised when a caller breaks a precondition (empty input, illegal transition)."""
