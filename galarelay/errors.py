class RelayError(Exception):
    pass


class ValidationError(RelayError):
    """Bad buyer input on the checkout form."""


class SignatureError(RelayError):
    """Webhook payload failed signature verification."""


class UpstreamAdapterError(RelayError):
    """A CRM / spreadsheet / email / payment-provider call failed."""


class ConfigurationError(RelayError):
    """Required environment configuration is missing."""
