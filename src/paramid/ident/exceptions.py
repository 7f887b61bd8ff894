#########################################################################################
##
##                         IDENTIFICATION EXCEPTION HIERARCHY
##                              (ident/exceptions.py)
##
#########################################################################################


# EXCEPTIONS ============================================================================

class IdentificationError(Exception):
    """Base class for all identification errors."""
    pass


class ConfigurationError(IdentificationError, ValueError):
    """Raised when configuration records are missing or malformed.

    Fatal: the run aborts, nothing is retried.
    """
    pass


class ArtifactError(ConfigurationError):
    """Raised when a persisted generation artifact cannot be used
    (missing file, or column count not matching the parameter count)."""
    pass


class ModelEvaluationError(IdentificationError, RuntimeError):
    """Raised when the external model returns output that does not fit the
    experimental dataset it was evaluated for."""
    pass
