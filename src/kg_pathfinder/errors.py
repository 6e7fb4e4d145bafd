"""
Exception hierarchy for kg-pathfinder.

All errors inherit from PathfinderError so callers can catch them
uniformly. Only MalformedPathError and InvalidParameterError ever reach
the caller of an exploration; transport and scorer failures are
recovered inside the search.
"""


class PathfinderError(Exception):
    """Base exception for all kg-pathfinder errors."""


class MalformedPathError(PathfinderError, ValueError):
    """A property path expression could not be parsed."""

    def __init__(self, message: str, expression: str = "", position: int | None = None):
        self.expression = expression
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Malformed property path {expression!r}{where}: {message}")


class InvalidParameterError(PathfinderError, ValueError):
    """An exploration parameter is out of range."""

    def __init__(self, parameter: str, message: str):
        self.parameter = parameter
        super().__init__(f"Invalid parameter '{parameter}': {message}")


class EndpointTransportError(PathfinderError):
    """Network, timeout or HTTP failure talking to a SPARQL endpoint."""

    def __init__(self, endpoint: str, message: str):
        self.endpoint = endpoint
        super().__init__(f"[{endpoint}] {message}")


class ScorerUnavailableError(PathfinderError):
    """The relevance scorer could not produce a score."""
