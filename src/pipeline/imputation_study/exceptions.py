"""Exceptions for the imputation study."""


class ImputationStudyError(Exception):
    """Base class for imputation-study exceptions."""

    pass


class InvalidParameterError(ImputationStudyError, ValueError):
    """Raised when a configuration value is outside its valid range."""

    pass


class DegenerateColumnError(ImputationStudyError, ValueError):
    """Raised when a column has no observed values to learn from."""

    pass


class ShapeMismatchError(ImputationStudyError, ValueError):
    """Raised when paired sequences have unequal lengths."""

    pass


class NonConvergenceWarning(UserWarning):
    """Issued when an iterative imputer hits its iteration cap unconverged."""

    pass
