"""Bearer token state and its optional on-disk mirror."""

import base64
import binascii
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DecodeError, InvalidTokenError

logger = logging.getLogger("lighthouse.token_store")

REQUEST_TOKEN_FILENAME = ".requestToken"


def default_request_token_path() -> Path:
    """Location of the cached request token, beside the running program."""
    return Path(sys.argv[0]).resolve().parent / REQUEST_TOKEN_FILENAME


def decode_token_expiry(token: str) -> datetime:
    """Read the ``exp`` claim from a JWT without verifying its signature.

    Raises:
        InvalidTokenError: if the payload can't be decoded or ``exp`` is
            missing or not a number
    """
    if token.startswith("Bearer "):
        token = token[7:]

    parts = token.split(".")
    if len(parts) < 2:
        raise InvalidTokenError("token is not a JWT")

    try:
        # Add padding for base64 decoding
        payload = json.loads(base64.urlsafe_b64decode(parts[1] + "=="))
    except (binascii.Error, ValueError) as e:
        raise InvalidTokenError(f"unable to decode token claims: {e}")

    if not isinstance(payload, dict) or "exp" not in payload:
        raise InvalidTokenError("token has no exp claim")

    exp = payload["exp"]
    if isinstance(exp, bool):
        raise InvalidTokenError(f"unable to convert token expire to a timestamp: {exp!r}")
    try:
        return datetime.fromtimestamp(int(float(exp)), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise InvalidTokenError(f"unable to convert token expire to a timestamp: {e}")


class TokenState(BaseModel):
    """A bearer token and the moment it stops being accepted.

    Serialized with the same keys as the files written by earlier releases.
    """

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(alias="Token")
    expire: datetime = Field(alias="Expire")

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return bool(self.token) and self.expire > now


class TokenStore:
    """Holds one token in memory and mirrors it to a single file on request.

    The store does no locking itself; its owner serializes access.
    """

    def __init__(self):
        self._state: Optional[TokenState] = None

    def get(self) -> Optional[TokenState]:
        return self._state

    def set(self, token: str, expire: datetime):
        self._state = TokenState(token=token, expire=expire)

    def clear(self):
        self._state = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """True if a token is held and its expiry is strictly in the future."""
        return self._state is not None and self._state.is_valid(now)

    def load(self, path: Path) -> Optional[TokenState]:
        """Load the token from ``path`` into memory.

        Returns:
            The loaded state, or None if the file does not exist

        Raises:
            DecodeError: if the file exists but can't be deserialized
        """
        if not path.is_file():
            return None

        try:
            state = TokenState.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise DecodeError(f"unable to read token file {path}: {e}")

        if state.expire.tzinfo is None:
            state.expire = state.expire.replace(tzinfo=timezone.utc)

        self._state = state
        return state

    def save(self, path: Path):
        """Write the current token to ``path``."""
        if self._state is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self._state.model_dump_json(by_alias=True))
        logger.debug(f"Token cached to {path}")
