"""Tests for parsing exported streaming-history files."""

import io
import zipfile
from datetime import datetime, timezone

import orjson
import pytest

from history_parser import (
    UNKNOWN_COUNTRY,
    ParseError,
    flatten_once,
    is_zip_file,
    parse_history_json,
    parse_history_zip,
    parse_record,
)
from models import InvalidRecord, ListeningEvent


def test_parse_full_record(record):
    event = parse_record(record(shuffle=True, skipped=None, offline=False))
    assert isinstance(event, ListeningEvent)
    assert event.timestamp == datetime(2024, 3, 15, 10, tzinfo=timezone.utc)
    assert event.platform == "iOS 17.0 (iPhone14,2)"
    assert event.ms_played == 180000
    assert event.country == "US"
    assert event.artist_name == "Artist"
    assert event.album_name == "Album"
    assert event.shuffle is True
    assert event.skipped is False
    assert event.episode_show_name == ""
    assert event.reason_start == "trackdone"


def test_podcast_episode(record):
    event = parse_record(record(
        master_metadata_track_name=None,
        master_metadata_album_artist_name=None,
        master_metadata_album_album_name=None,
        episode_name="Episode 1",
        episode_show_name="The Show",
    ))
    assert event.episode_show_name == "The Show"
    assert event.artist_name == ""
    assert event.episode_name == "Episode 1"


def test_missing_optional_fields_default():
    event = parse_record({"ts": "2024-01-01T00:00:00Z"})
    assert event.platform == ""
    assert event.ms_played == 0
    assert event.country == UNKNOWN_COUNTRY
    assert event.track_name == ""
    assert event.reason_end is None
    assert (event.shuffle, event.skipped, event.offline) == (False, False, False)


@pytest.mark.parametrize("value, expected", [
    (1500, 1500),
    (1500.0, 1500),
    (1500.9, 1500),
    (float("inf"), 0),
    (-20, 0),
    (True, 0),
    ("1500", 0),
    (None, 0),
])
def test_ms_played_coercion(record, value, expected):
    assert parse_record(record(ms_played=value)).ms_played == expected


def test_naive_timestamp_is_utc(record):
    event = parse_record(record(ts="2024-03-15T10:00:00"))
    assert event.timestamp.tzinfo is not None
    assert event.timestamp.utcoffset().total_seconds() == 0


@pytest.mark.parametrize("entry", [
    "not a record",
    42,
    {"ms_played": 100},
    {"ts": "yesterday"},
    {"ts": 1700000000},
])
def test_invalid_records(entry):
    result = parse_record(entry, index=3)
    assert isinstance(result, InvalidRecord)
    assert result.index == 3


def test_flatten_once():
    assert flatten_once([[1, 2], 3, [[4]]]) == [1, 2, 3, [4]]


def test_parse_history_json_flattens_nested_arrays(record):
    payload = orjson.dumps([[record(), record()], record(), [[record()]]])
    events, invalid = parse_history_json(payload)
    assert len(events) == 3
    assert len(invalid) == 1
    assert invalid[0].reason == "not an object"


def test_parse_history_json_keeps_valid_records(record):
    payload = orjson.dumps([record(), {"ts": None}, record(conn_country="SE")])
    events, invalid = parse_history_json(payload)
    assert [e.country for e in events] == ["US", "SE"]
    assert [r.index for r in invalid] == [1]


def test_parse_history_json_empty_array():
    assert parse_history_json(b"[]") == ([], [])


def test_parse_history_json_rejects_malformed():
    with pytest.raises(ParseError, match="Invalid JSON"):
        parse_history_json(b"[{not json")


def test_parse_history_json_rejects_non_array():
    with pytest.raises(ParseError, match="Expected JSON array"):
        parse_history_json(b'{"ts": "2024-01-01T00:00:00Z"}')


def _zip_bytes(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def test_parse_history_zip_returns_json_members():
    content = _zip_bytes({
        "Spotify Extended Streaming History/Streaming_History_Audio_2024.json": b"[]",
        "Spotify Extended Streaming History/ReadMeFirst.pdf": b"%PDF",
    })
    assert is_zip_file(content)
    members = parse_history_zip(content, "export.zip")
    assert members == [
        ("export.zip/Spotify Extended Streaming History/Streaming_History_Audio_2024.json", b"[]"),
    ]


def test_parse_history_zip_rejects_corrupt_archive():
    with pytest.raises(ParseError, match="Invalid ZIP"):
        parse_history_zip(b"PK\x03\x04garbage")
