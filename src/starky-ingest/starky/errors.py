class StarkyError(Exception):
    """Base class for errors raised by starky."""


class ConfigurationError(StarkyError, ValueError):
    """Missing or invalid endpoint/credential settings. Fatal at startup."""


class AbiFormatError(StarkyError, ValueError):
    """ABI document is missing, malformed, or of an unrecognized format."""


class SelectorComputationError(StarkyError, ValueError):
    """A selector could not be computed for a name."""


class TransactionFormatError(StarkyError, ValueError):
    """A transaction payload does not match any supported transaction kind."""


class TransientNetworkError(StarkyError, RuntimeError):
    """A node or log-intake request failed; the caller is expected to retry later."""
