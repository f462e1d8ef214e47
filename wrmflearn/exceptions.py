class ConfigurationError(ValueError):
    """Raised when the model options or its input data are inconsistent."""
    pass

class NumericalFailure(RuntimeError):
    """Raised when a direct solve hits a singular or non positive definite system."""
    pass
