import io
import math
import zipfile
from datetime import datetime, timezone
from typing import Any, List, Tuple, Union

import orjson

from models import InvalidRecord, ListeningEvent

# Spotify's placeholder for an unknown connection country
UNKNOWN_COUNTRY = "ZZ"

# ZIP magic bytes
ZIP_MAGIC = b'PK\x03\x04'


class ParseError(Exception):
    """Raised when an uploaded file cannot be used at all."""
    pass


def is_zip_file(file_bytes: bytes) -> bool:
    """Check if file is a ZIP by magic bytes."""
    return file_bytes[:4] == ZIP_MAGIC


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Naive timestamps are assumed to be UTC.

    Raises:
        ValueError: If the value is not a parseable string
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid timestamp: {value!r}")
    # Spotify uses ISO 8601 with Z suffix
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _optional_text(value: Any):
    return value if isinstance(value, str) else None


def _ms(value: Any) -> int:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    # fractional milliseconds are truncated
    return max(0, int(value))


def parse_record(entry: Any, index: int = 0) -> Union[ListeningEvent, InvalidRecord]:
    """
    Validate one raw export entry.

    Args:
        entry: Decoded JSON value from the export array
        index: Position of the entry, used for reporting

    Returns:
        A ListeningEvent, or an InvalidRecord describing why it was rejected
    """
    if not isinstance(entry, dict):
        return InvalidRecord(index=index, reason="not an object")

    try:
        timestamp = parse_timestamp(entry.get('ts'))
    except ValueError:
        return InvalidRecord(index=index, reason="missing or invalid ts")

    country = entry.get('conn_country')
    if not isinstance(country, str) or not country:
        country = UNKNOWN_COUNTRY

    return ListeningEvent(
        timestamp=timestamp,
        platform=_text(entry.get('platform')),
        ms_played=_ms(entry.get('ms_played')),
        country=country,
        track_name=_text(entry.get('master_metadata_track_name')),
        artist_name=_text(entry.get('master_metadata_album_artist_name')),
        album_name=_text(entry.get('master_metadata_album_album_name')),
        shuffle=entry.get('shuffle') is True,
        skipped=entry.get('skipped') is True,
        offline=entry.get('offline') is True,
        reason_start=_optional_text(entry.get('reason_start')),
        reason_end=_optional_text(entry.get('reason_end')),
        episode_name=_text(entry.get('episode_name')),
        episode_show_name=_text(entry.get('episode_show_name')),
    )


def flatten_once(data: list) -> list:
    """Flatten nested arrays by exactly one level."""
    flat = []
    for item in data:
        if isinstance(item, list):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def parse_history_json(file_content: bytes) -> Tuple[List[ListeningEvent], List[InvalidRecord]]:
    """
    Parse a single Spotify extended streaming history JSON file.

    Args:
        file_content: Raw bytes of the JSON file

    Returns:
        Tuple of (valid events, rejected records)

    Raises:
        ParseError: If JSON is malformed or not an array
    """
    try:
        data = orjson.loads(file_content)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}")

    if not isinstance(data, list):
        raise ParseError("Expected JSON array of listening events")

    events = []
    invalid = []
    for index, entry in enumerate(flatten_once(data)):
        record = parse_record(entry, index)
        if isinstance(record, InvalidRecord):
            invalid.append(record)
        else:
            events.append(record)

    return events, invalid


def parse_history_zip(file_content: bytes, archive_name: str = "upload.zip") -> List[Tuple[str, bytes]]:
    """
    Expand a Spotify data export ZIP into its JSON members.

    Returns:
        List of (display name, raw bytes) for every *.json member, in archive order

    Raises:
        ParseError: If the archive cannot be read
    """
    try:
        with zipfile.ZipFile(io.BytesIO(file_content)) as archive:
            members = [
                info for info in archive.infolist()
                if not info.is_dir() and info.filename.lower().endswith('.json')
            ]
            return [
                (f"{archive_name}/{info.filename}", archive.read(info))
                for info in members
            ]
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ParseError(f"Invalid ZIP archive: {e}")
