import base64
import binascii
import struct
from typing import Optional

from .errors import PreconditionRequired

TOKEN_SPACE = 2**32
_FORMAT = "<I"  # 4-byte little-endian unsigned


def encode_token(version: int) -> str:
    """Render a row version as the opaque token handed to clients."""
    return base64.b64encode(struct.pack(_FORMAT, version % TOKEN_SPACE)).decode("ascii")


def decode_token(token: Optional[str]) -> int:
    """Parse a client token back into a row version.

    Raises :class:`PreconditionRequired` when the token is missing or is not
    the base64 form of exactly four bytes.
    """
    if token is None or not token.strip():
        raise PreconditionRequired("rowVersion is required for this operation.")
    try:
        raw = base64.b64decode(token.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise PreconditionRequired("Invalid rowVersion format (base64 expected).") from None
    if len(raw) != struct.calcsize(_FORMAT):
        raise PreconditionRequired("Invalid rowVersion format (expected 4 bytes).")
    return struct.unpack(_FORMAT, raw)[0]
