"""
Unit tests for the sync marker codec.
"""

import pytest

from icloud_exchange_sync.metadata import decode_meta
from icloud_exchange_sync.metadata import encode_meta
from icloud_exchange_sync.metadata import strip_meta
from icloud_exchange_sync.models import SyncMeta


@pytest.mark.parametrize(
    "tag,uid",
    [
        ("CAL1", "abc1"),
        ("CAL3", "0F2A9E3C-5B1D-4D6A-9C1E-7A2B3C4D5E6F@example.com"),
        ("CAL2", "rec-42::20240110T090000Z"),
    ],
)
def test_decode_reverses_encode(tag, uid):
    assert decode_meta(encode_meta(tag, uid)) == SyncMeta(tag, uid)


def test_encode_keeps_description_above_marker():
    body = encode_meta("CAL1", "abc1", "Bring insurance card")
    assert body == "Bring insurance card\n\nSynced UID: CAL1 abc1"
    assert decode_meta(body) == SyncMeta("CAL1", "abc1")


def test_encode_replaces_previous_marker():
    body = encode_meta("CAL1", "old", "Notes")
    body = encode_meta("CAL2", "new", body)
    assert body.count("Synced UID:") == 1
    assert decode_meta(body) == SyncMeta("CAL2", "new")
    assert strip_meta(body) == "Notes"


@pytest.mark.parametrize("body", [None, "", "   ", "Just some notes", "Synced UID:", "Synced UID: CAL1"])
def test_missing_or_malformed_marker_is_unclaimed(body):
    meta = decode_meta(body)
    assert meta == SyncMeta()
    assert not meta.is_valid
    assert meta.key is None


def test_decode_tolerates_whitespace_and_crlf():
    body = "Agenda\r\n\r\n   Synced UID:   CAL2 \t xyz9   \r\n"
    assert decode_meta(body) == SyncMeta("CAL2", "xyz9")


def test_last_marker_wins():
    body = "Synced UID: CAL1 first\nmore text\nSynced UID: CAL2 second"
    assert decode_meta(body) == SyncMeta("CAL2", "second")


def test_unknown_tag_decodes_but_is_not_valid():
    meta = decode_meta("Synced UID: CAL9 abc1")
    assert meta.source_tag == "CAL9"
    assert not meta.is_valid


def test_strip_meta_removes_only_marker_lines():
    body = "Line one\nSynced UID: CAL1 abc1\nLine two"
    assert strip_meta(body) == "Line one\nLine two"
    assert strip_meta(None) == ""
