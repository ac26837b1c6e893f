"""
Mute filters over composite id lists.

Two variants on purpose. ``filter_strict`` is for ids that were just produced by
the sync engine and must be well formed; a malformed id is a bug and raises.
``filter_safe`` and ``is_muted`` are for display paths working on possibly stale
data; they fail open and keep anything they cannot parse.
"""
import logging
from typing import AbstractSet, Iterable, List

from feed_cache.core.composite_id import decode, decode_safe

logger = logging.getLogger(__name__)


def filter_strict(ids: Iterable[str], muted_owners: AbstractSet[str]) -> List[str]:
    """
    Drop ids whose owner is muted.

    Raises:
        MalformedIdError: on the first id that is not a composite id.
    """
    return [composite_id for composite_id in ids if decode(composite_id).owner_id not in muted_owners]


def filter_safe(ids: Iterable[str], muted_owners: AbstractSet[str]) -> List[str]:
    """Drop ids whose owner is muted; malformed ids are kept and logged at debug level."""
    kept: List[str] = []
    for composite_id in ids:
        parts = decode_safe(composite_id)
        if parts is None:
            logger.debug(f"Keeping unfilterable id {composite_id!r} (fail-open)")
            kept.append(composite_id)
            continue
        if parts.owner_id not in muted_owners:
            kept.append(composite_id)
    return kept


def is_muted(composite_id: str, muted_owners: AbstractSet[str]) -> bool:
    """True if the id's owner is muted; False when the id cannot be parsed."""
    parts = decode_safe(composite_id)
    if parts is None:
        logger.debug(f"Treating unparseable id {composite_id!r} as not muted")
        return False
    return parts.owner_id in muted_owners
