class MicrotransError(ValueError):
    """Base class for every error raised by an analysis call."""


class ConfigurationError(MicrotransError):
    """Invalid or missing combination of parameters."""


class MissingDistanceMatrixError(ConfigurationError):
    """A distance-based analysis was requested without a distance matrix."""


class UnknownFeatureSetError(ConfigurationError):
    """The symbolic feature table selector does not name a known table."""


class MissingSelectionError(ConfigurationError):
    """A group filter was requested without the group value to keep."""


class DataShapeError(MicrotransError):
    """Inputs cannot be aligned or have an unsupported shape."""


class NoOverlapError(DataShapeError):
    """Two tables share no sample identifiers."""


class TooManyGroupsError(MicrotransError):
    """Too many groups for pairwise rank-sum enumeration."""


class StatTestFailure(MicrotransError):
    """An underlying statistical routine raised or returned invalid output."""


class NoDataError(StatTestFailure):
    """No measure or variable could be evaluated."""
