"""Exceptions raised by the Lighthouse collector."""

from typing import Optional


class LighthouseError(Exception):
    """Base exception for Lighthouse errors."""
    pass


class ConfigError(LighthouseError):
    """Configuration file missing or invalid."""
    pass


class DatabaseConnectError(LighthouseError):
    """Unable to connect to the database at startup."""
    pass


class PersistenceError(LighthouseError):
    """A database write failed."""
    pass


class TokenError(LighthouseError):
    """Base exception for bearer token problems."""
    pass


class InvalidTokenError(TokenError):
    """Token claims could not be decoded or have no usable expiry."""
    pass


class ExpiredTokenError(TokenError):
    """Token expiry is in the past."""
    pass


class ExpiredApplicationTokenError(ExpiredTokenError):
    """Application token has expired and must be rotated on eloverblik.dk."""
    pass


class NoApplicationTokenError(TokenError):
    """No application token has been configured."""
    pass


class NoRequestTokenError(TokenError):
    """An authenticated call was attempted without a request token."""
    pass


class TokenExchangeFailedError(LighthouseError):
    """The token endpoint refused or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ProviderError(LighthouseError):
    """A provider API call failed (transport error or non-2xx status)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DecodeError(LighthouseError):
    """A response body or cached file could not be decoded."""
    pass
