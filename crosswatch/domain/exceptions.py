"""
Domain exceptions for crosswatch.

Implements a hierarchy distinguishing between recoverable runtime errors
(network glitches, malformed input units, memory pressure) and fatal errors
(configuration issues, unreachable market data at startup) that require
operator intervention.

Data insufficiency is deliberately absent: operations that lack enough
history return a "not performed" result instead of raising.
"""


class CrosswatchError(Exception):
    """Base class for all crosswatch exceptions."""
    pass


class RecoverableError(CrosswatchError):
    """
    Errors the system can recover from without restarting.

    Examples:
    - Exchange REST call timed out
    - WebSocket dropped
    - One malformed candle or training point
    - Memory guard tripped during a training batch
    """
    pass


class FatalError(CrosswatchError):
    """
    Critical errors requiring shutdown or operator intervention.

    Examples:
    - Invalid configuration range
    - Market data unreachable during startup
    """
    pass


class MarketDataError(RecoverableError):
    """Transient failure fetching or streaming market data."""
    pass


class ValidationError(RecoverableError):
    """Malformed input. The offending unit is skipped, processing continues."""
    pass


class IndicatorInputError(ValidationError, ValueError):
    """Indicator called with a non-numeric series or invalid period."""
    pass


class FeaturePointValidationError(ValidationError):
    """Feature point missing a derived feature or carrying a non-finite value."""
    pass


class InvalidSymbolError(ValidationError):
    """Symbol is not safe to use as a storage key."""
    pass


class ResourceExhaustedError(RecoverableError):
    """Resource guard tripped; the current batch is deferred."""
    pass


class ModelVersionNotFoundError(RecoverableError, LookupError):
    """Requested model version does not exist for the symbol."""
    pass


class ConfigurationError(FatalError):
    """Invalid system configuration."""
    pass


class InitializationError(FatalError):
    """Component failed to initialize correctly."""
    pass


class MarketDataUnavailableError(InitializationError):
    """Market data could not be reached at all during startup."""
    pass
