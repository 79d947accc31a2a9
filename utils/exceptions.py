"""
Custom exception hierarchy for the resampling evaluation engine.
"""

class ResampleMLException(Exception):
    """Base exception for all system errors."""
    pass

class ConfigurationError(ResampleMLException):
    """Configuration validation failed."""
    pass

class DataValidationError(ResampleMLException):
    """Data validation failed."""
    pass

class PartitionError(ResampleMLException):
    """Invalid resampling scheme or scheme parameters."""
    pass

class ConfigurationSpaceError(ResampleMLException):
    """Invalid model specification, parameter range or preprocessing step."""
    pass

class UnresolvedParameterError(ConfigurationSpaceError):
    """A tunable parameter reached fitting without a concrete value."""
    pass

class AllConfigurationsFailed(ResampleMLException):
    """Every configuration in a search produced no successful cell."""
    pass

class ModelTrainingError(ResampleMLException):
    """Model training failed."""
    pass

class PredictionError(ResampleMLException):
    """Prediction generation failed."""
    pass
