"""Transaction source errors"""


class FetchError(Exception):
    """Base class for transaction fetch failures"""


class TransientFetchError(FetchError):
    """Network or service hiccup; the fetch may be retried"""


class InvalidAddressError(FetchError):
    """Malformed or rejected account identifier; never retried"""
