class ForecastError(Exception):
    """Base class for errors raised by the revenue forecasting toolkit."""


class DataAlignmentError(ForecastError, ValueError):
    """Revenue and leads tables cannot be aligned month for month."""


class LengthMismatchError(ForecastError, ValueError):
    """Actual and predicted sequences differ in length."""


class ModelFitError(ForecastError):
    """A single model could not be fitted; other models are unaffected."""


class InsufficientObservationsError(ModelFitError):
    """The training window is too short for the requested model order."""


class NumericInstabilityError(ModelFitError):
    """Estimation broke down numerically (singular design, failed solve)."""
