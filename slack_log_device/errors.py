"""Exception types raised by the Slack log device."""


class ConfigurationError(ValueError):
    """An option value is invalid or missing, or an option name is unknown."""


class SeverityError(ValueError):
    """A severity name does not match any known log severity."""


class TransportError(Exception):
    """Delivering a payload to the webhook failed."""
