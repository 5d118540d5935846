class AggregatorError(Exception):
    """Base class for every error raised by nanosag."""


class InvalidArgument(AggregatorError, ValueError):
    """A constructor or update argument is malformed (e.g. n <= 0)."""


class ShapeMismatch(AggregatorError, ValueError):
    """An array does not have the shape the aggregator was built with."""


class IndexOutOfRange(AggregatorError, IndexError):
    """A component index lies outside 0..n-1."""
