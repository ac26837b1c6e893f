import logging

import pytest

from feed_cache.core.composite_id import CompositeIdParts, decode, decode_safe, encode
from feed_cache.errors import MalformedIdError


def test_encode_joins_with_single_colon():
    assert encode("pk123", "0032ABC") == "pk123:0032ABC"


def test_decode_splits_on_first_colon_only():
    parts = decode("pk123:local:with:colons")
    assert parts == CompositeIdParts(owner_id="pk123", local_id="local:with:colons")
    assert parts.owner_id == "pk123"


def test_encode_then_decode_preserves_parts():
    assert decode(encode("owner", "a:b")) == ("owner", "a:b")


@pytest.mark.parametrize("owner, local", [("", "x"), ("x", ""), ("a:b", "c")])
def test_encode_rejects_bad_parts(owner, local):
    with pytest.raises(MalformedIdError):
        encode(owner, local)


@pytest.mark.parametrize("value", ["", "nocolon", ":local", "owner:", None, 42])
def test_decode_rejects_malformed(value):
    with pytest.raises(MalformedIdError) as exc_info:
        decode(value)
    assert exc_info.value.composite_id == value


def test_malformed_id_error_is_a_value_error():
    with pytest.raises(ValueError):
        decode("nocolon")


def test_decode_safe_returns_none_and_logs(caplog):
    with caplog.at_level(logging.DEBUG, logger="feed_cache.core.composite_id"):
        assert decode_safe("nocolon") is None
    assert "nocolon" in caplog.text
    assert decode_safe("a:b") == ("a", "b")
