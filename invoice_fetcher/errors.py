"""
Exceptions for Invoice Fetcher

Anything deriving from InvoiceFetcherError aborts the whole run.
Per-message and per-attachment failures are logged where they happen instead.
"""


class InvoiceFetcherError(Exception):
    """Base class for fatal errors"""


class ConfigurationError(InvoiceFetcherError):
    """Alias file or client secret file is unreadable or malformed"""


class AuthorizationError(InvoiceFetcherError):
    """The OAuth authorization step could not produce credentials"""


class AuthorizationCancelled(AuthorizationError):
    """The wait for browser consent was cancelled"""


class AuthorizationTimeout(AuthorizationError):
    """The wait for browser consent exceeded the caller's timeout"""


class ScanError(InvoiceFetcherError):
    """A search page could not be fetched"""
