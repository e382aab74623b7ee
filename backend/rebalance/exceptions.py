"""Errors raised by the rebalancing domain. Routers map these to HTTP status codes."""


class RebalanceError(Exception):
    """Base class for rebalancing errors."""


class UnknownConstraintError(RebalanceError, LookupError):
    """The constraint id does not exist, or its key is not in the registry."""


class ConstraintTypeError(RebalanceError, ValueError):
    """A value does not match the semantic type registered for its key."""


class ConstraintBoundsError(RebalanceError, ValueError):
    """A numeric value falls outside the registered bounds for its key."""


class NoSnapshotError(RebalanceError, LookupError):
    """The tenant has no inventory snapshot to run an engine pass against."""


class EngineRunError(RebalanceError, RuntimeError):
    """The remote allocation engine failed or returned an unusable payload."""
