"""
Composite identifier codec.

A composite id joins an owner identifier and a local identifier with a single
colon, e.g. ``"<author_pubky>:<post_id>"``. The owner part never contains a colon;
the local part may (URIs, nested keys), so decoding splits on the first colon only.
"""
import logging
from typing import NamedTuple, Optional

from feed_cache.errors import MalformedIdError

logger = logging.getLogger(__name__)

SEPARATOR = ":"


class CompositeIdParts(NamedTuple):
    owner_id: str
    local_id: str


def encode(owner_id: str, local_id: str) -> str:
    """
    Build a composite id from its two parts.

    Raises:
        MalformedIdError: if either part is empty or the owner contains the separator.
    """
    if not owner_id or not local_id or SEPARATOR in owner_id:
        raise MalformedIdError(f"{owner_id}{SEPARATOR}{local_id}")
    return f"{owner_id}{SEPARATOR}{local_id}"


def decode(composite_id: str) -> CompositeIdParts:
    """
    Split a composite id on its first colon.

    Raises:
        MalformedIdError: if the value is not a string, has no colon, or either part is empty.
    """
    if not isinstance(composite_id, str):
        raise MalformedIdError(composite_id)
    owner_id, sep, local_id = composite_id.partition(SEPARATOR)
    if not sep or not owner_id or not local_id:
        raise MalformedIdError(composite_id)
    return CompositeIdParts(owner_id, local_id)


def decode_safe(composite_id: str) -> Optional[CompositeIdParts]:
    """Same as :func:`decode` but returns ``None`` instead of raising."""
    try:
        return decode(composite_id)
    except MalformedIdError:
        logger.debug(f"Could not decode composite id {composite_id!r}")
        return None
