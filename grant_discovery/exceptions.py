"""Exception hierarchy for the Grant Discovery engine."""


class GrantDiscoveryError(Exception):
    """Base class for all errors raised by the discovery pipeline."""


class ConfigurationError(GrantDiscoveryError):
    """A source definition or run configuration is invalid."""


class ParseError(GrantDiscoveryError):
    """A payload could not be parsed at all."""


class PersistenceError(GrantDiscoveryError):
    """The store failed to read or write pipeline records."""
