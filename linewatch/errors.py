"""Exception hierarchy for the odds engine."""


class LinewatchError(Exception):
    """Base class for all engine errors."""


class IngestionError(LinewatchError):
    """Odds could not be obtained from a source."""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.source = source


class UpstreamUnavailable(IngestionError):
    """Network failure, timeout, non-2xx or rate limit from a provider."""


class InvalidResponse(IngestionError):
    """Provider answered with a payload we cannot interpret."""


class ConfigurationError(LinewatchError):
    """Caller or configuration bug. Surfaced to the caller, never retried."""


class UnknownSport(ConfigurationError):
    def __init__(self, sport: str):
        super().__init__(f"Unsupported sport: {sport}")
        self.sport = sport


class UnknownBookmaker(ConfigurationError):
    def __init__(self, key: str):
        super().__init__(f"Unknown bookmaker: {key}")
        self.key = key
