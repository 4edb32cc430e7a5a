"""
Exceptions raised by the polar gridding core.
"""


class InvariantViolation(ValueError):
    """A scan's arrays disagree with its declared dimensions."""


class MalformedScan(ValueError):
    """A scan has no usable data (zero rays or bins) where data is required."""
