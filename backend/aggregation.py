import os
from collections import Counter, defaultdict
from datetime import timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Hashable, List, Optional
from zoneinfo import ZoneInfo

from models import BehaviorStats, ListeningEvent, Summary

MS_PER_HOUR = 1000 * 60 * 60
HUNDREDTHS = Decimal('0.01')

# Truncation defaults
TOP_COUNTRIES = int(os.getenv('TOP_COUNTRIES', '10'))
TOP_ARTISTS = int(os.getenv('TOP_ARTISTS', '5'))
TOP_ALBUMS = int(os.getenv('TOP_ALBUMS', '10'))
TOP_PODCASTS = int(os.getenv('TOP_PODCASTS', '5'))

# Zone used for hour-of-day buckets; month buckets are always UTC
HOURLY_TIMEZONE = os.getenv('HOURLY_TIMEZONE', 'UTC')

COMPUTER_MARKERS = ('macos', 'darwin', 'os x', 'linux', 'windows')
PHONE_MARKERS = ('ios', 'iphone', 'ipad', 'android')


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


def ms_to_hours(ms: int) -> float:
    """Milliseconds to hours, two decimals, halves rounded up."""
    hours = Decimal(ms) / MS_PER_HOUR
    return float(hours.quantize(HUNDREDTHS, rounding=ROUND_HALF_UP))


def classify_platform(platform: str) -> str:
    """
    Bucket a free-text platform string into Computer, Phone or Other.

    Desktop markers take precedence over phone markers.
    """
    platform = platform.lower()
    if any(marker in platform for marker in COMPUTER_MARKERS):
        return "Computer"
    if any(marker in platform for marker in PHONE_MARKERS):
        return "Phone"
    return "Other"


def platform_counts(events: List[ListeningEvent]) -> Dict[str, int]:
    counts = Counter(classify_platform(event.platform) for event in events)
    # sorted() is stable, ties keep first-seen order
    return dict(sorted(counts.items(), key=lambda item: item[1], reverse=True))


def grouped_hours(
    events: List[ListeningEvent],
    key: Callable[[ListeningEvent], Hashable],
    limit: Optional[int] = None,
    descending: bool = True,
) -> dict:
    """
    Group events by key, sum ms_played and convert to rounded hours.

    Events whose key is empty ("" or None) are left out.

    Args:
        events: Events to group
        key: Function returning the bucket for an event
        limit: Keep only the first N buckets after sorting
        descending: Sort by hours descending; otherwise sort by key ascending

    Returns:
        Ordered dict of bucket -> hours
    """
    totals = defaultdict(int)
    for event in events:
        bucket = key(event)
        if bucket is None or bucket == "":
            continue
        totals[bucket] += event.ms_played

    hours = [(bucket, ms_to_hours(ms)) for bucket, ms in totals.items()]
    if descending:
        hours.sort(key=lambda item: item[1], reverse=True)
    else:
        hours.sort(key=lambda item: item[0])

    if limit is not None:
        hours = hours[:limit]
    return dict(hours)


def monthly_hours(events: List[ListeningEvent]) -> Dict[str, float]:
    return grouped_hours(
        events,
        lambda e: e.timestamp.astimezone(timezone.utc).strftime('%Y-%m'),
        descending=False,
    )


def hourly_hours(events: List[ListeningEvent], tz: Optional[tzinfo] = None) -> Dict[int, float]:
    """Hours listened per hour of day in ``tz``; hours with no events are omitted."""
    if tz is None:
        tz = resolve_timezone(HOURLY_TIMEZONE)
    return grouped_hours(
        events,
        lambda e: e.timestamp.astimezone(tz).hour,
        descending=False,
    )


def behavior_stats(events: List[ListeningEvent]) -> BehaviorStats:
    return BehaviorStats(
        total_skips=sum(1 for e in events if e.skipped),
        shuffle_usage=sum(1 for e in events if e.shuffle),
        offline_listening=sum(1 for e in events if e.offline),
        total_tracks=len(events),
    )


def aggregate(
    events: List[ListeningEvent],
    top_countries: int = TOP_COUNTRIES,
    top_artists: int = TOP_ARTISTS,
    top_albums: int = TOP_ALBUMS,
    top_podcasts: int = TOP_PODCASTS,
    hour_tz: Optional[tzinfo] = None,
) -> Summary:
    """
    Reduce a list of listening events into the dashboard summary.

    Args:
        events: Parsed listening events
        top_countries: Number of countries to keep
        top_artists: Number of artists to keep
        top_albums: Number of albums to keep
        top_podcasts: Number of podcast shows to keep
        hour_tz: Zone for hour-of-day buckets (defaults to HOURLY_TIMEZONE)

    Returns:
        Summary of the events
    """
    return Summary(
        platform_counts=platform_counts(events),
        country_hours=grouped_hours(events, lambda e: e.country, top_countries),
        artist_hours=grouped_hours(events, lambda e: e.artist_name, top_artists),
        album_hours=grouped_hours(events, lambda e: e.album_name, top_albums),
        monthly_hours=monthly_hours(events),
        behavior=behavior_stats(events),
        top_podcasts=grouped_hours(events, lambda e: e.episode_show_name, top_podcasts),
        hourly_hours=hourly_hours(events, hour_tz),
    )
