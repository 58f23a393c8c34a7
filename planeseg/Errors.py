class PlaneSegError(Exception):
    """Base class for every failure raised by the extraction stages."""


class InsufficientData(PlaneSegError):
    """A stage received fewer usable points than it needs."""


class IllConditionedFit(PlaneSegError):
    """Enough points, but the geometry makes the regression unstable."""


class ConfigurationError(PlaneSegError, ValueError):
    """Invalid construction-time parameter."""
