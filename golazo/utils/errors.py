class GolazoError(Exception):
    """Base error for the monitoring pipeline."""
    pass


class ConfigurationError(GolazoError):
    pass


class DataSourceError(GolazoError):
    """Upstream fixture provider failed or returned unusable data."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"[{source}] {message}")


class UpstreamTimeout(DataSourceError):
    """Upstream call exceeded its time budget; retryable next cycle."""
    pass


class ModelError(GolazoError):
    """Learned estimator missing, broken or returned an invalid value."""
    pass


class PersistenceError(GolazoError):
    pass
