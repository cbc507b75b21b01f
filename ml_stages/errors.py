"""Error taxonomy for pipeline stages.

Every error is raised synchronously at fit time and reaches the caller
unmodified; a failed fit never produces a partial model.
"""


class MLStagesError(Exception):
    """Base class for errors raised by ml_stages."""


class UnsupportedTypeError(MLStagesError, TypeError):
    """A designated column holds values outside {boolean, numeric, string},
    or the requested statistic cannot be computed for its type."""


class UnsupportedConfigurationError(MLStagesError, ValueError):
    """The requested label layout is incompatible with the chosen algorithm."""


class UnrecognizedAlgorithmError(MLStagesError, TypeError):
    """The algorithm is not a known family and cannot be fitted and predicted with."""
