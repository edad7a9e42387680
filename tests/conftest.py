"""Shared fixtures for building export records and parsed events."""

from datetime import datetime, timezone

import pytest

from models import ListeningEvent


def make_record(**overrides):
    record = {
        "ts": "2024-03-15T10:00:00Z",
        "platform": "iOS 17.0 (iPhone14,2)",
        "ms_played": 180000,
        "conn_country": "US",
        "master_metadata_track_name": "Song",
        "master_metadata_album_artist_name": "Artist",
        "master_metadata_album_album_name": "Album",
        "shuffle": False,
        "skipped": False,
        "offline": False,
        "reason_start": "trackdone",
        "reason_end": "trackdone",
        "episode_name": None,
        "episode_show_name": None,
    }
    record.update(overrides)
    return record


def make_event(**overrides):
    fields = {
        "timestamp": datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc),
        "platform": "iOS 17",
        "ms_played": 180000,
        "country": "US",
        "artist_name": "Artist",
        "album_name": "Album",
        "track_name": "Song",
    }
    fields.update(overrides)
    return ListeningEvent(**fields)


@pytest.fixture
def record():
    return make_record


@pytest.fixture
def event():
    return make_event
