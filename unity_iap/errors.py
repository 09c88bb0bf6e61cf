"""
Receipt validation errors.

Business outcomes (expired, not purchased, unknown transaction) are never
raised; they are reported as an invalid PurchaseResponse. Everything here
means the purchase could not be checked at all.
"""


class IAPError(Exception):
    """Base class for all receipt validation failures."""

    status_code = 500


class DecodeError(IAPError):
    """Receipt envelope or store payload could not be decoded."""

    status_code = 400


class MissingCredentialError(IAPError):
    """A secret required by a store was not configured."""

    status_code = 500


class TransportError(IAPError):
    """The store endpoint could not be reached or answered with an HTTP error."""

    status_code = 502


class AuthError(IAPError):
    """Service account credentials were invalid or could not be exchanged."""

    status_code = 502


class ParseError(IAPError):
    """The store answered with a body we could not deserialize."""

    status_code = 502


class UnsupportedOperationError(IAPError):
    """The requested store or product type is not supported."""

    status_code = 501
