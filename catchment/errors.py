"""Exceptions raised by the catchment engine."""


class CatchmentError(Exception):
    """Base class for all engine errors."""


class InvalidGraph(CatchmentError):
    """The street graph cannot be routed on (no routable edges, dangling edge)."""


class CoordinateSystemMismatch(CatchmentError):
    """Inputs were supplied in different coordinate reference systems."""


class DegenerateTessellationInput(CatchmentError):
    """No distinct sites are left to tessellate, or cells cannot be matched to sites."""


class ComputationCancelled(CatchmentError):
    """The caller cancelled a distance computation before it finished."""


class NetworkUnavailable(CatchmentError):
    """The street network could not be downloaded."""


# Recorded conditions. These are stored on results, never raised.
UNSNAPPABLE_POINT = "unsnappable"
OUTSIDE_COMPONENT = "outside_component"
