from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List

from models import BehaviorStats, Summary

TABS = (
    'timeline',
    'platforms',
    'countries',
    'artists',
    'albums',
    'behavior',
    'podcasts',
    'hourly',
)

DEFAULT_TAB = 'platforms'

PLATFORM_COLORS = {
    'Computer': '#000000',
    'Phone': '#147EFB',
    'Other': '#808080',
}


def format_hours(value: float) -> str:
    """Format an hours figure for chart tooltips."""
    return f"{value:.1f} hours"


def month_label(month_key: str) -> str:
    """Turn a "YYYY-MM" key into an axis label like "Mar 2024"."""
    year, month = month_key.split('-')
    return date(int(year), int(month), 1).strftime('%b %Y')


def percentage(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    rate = Decimal(count) * 100 / total
    return float(rate.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


def behavior_rates(behavior: BehaviorStats) -> dict:
    """Raw behavior counts plus percentages of all events."""
    total = behavior.total_tracks
    return {
        'total_skips': behavior.total_skips,
        'shuffle_usage': behavior.shuffle_usage,
        'offline_listening': behavior.offline_listening,
        'total_tracks': total,
        'skip_rate': percentage(behavior.total_skips, total),
        'shuffle_rate': percentage(behavior.shuffle_usage, total),
        'offline_rate': percentage(behavior.offline_listening, total),
    }


def _series(mapping: Dict, key_name: str) -> List[dict]:
    return [{key_name: key, 'hours': hours} for key, hours in mapping.items()]


def _timeline(summary: Summary):
    return [
        {
            'month': month,
            'label': month_label(month),
            'hours': hours,
            'tooltip': format_hours(hours),
        }
        for month, hours in summary.monthly_hours.items()
    ]


def _platforms(summary: Summary):
    return [
        {'name': name, 'value': count, 'color': PLATFORM_COLORS.get(name, PLATFORM_COLORS['Other'])}
        for name, count in summary.platform_counts.items()
    ]


_BUILDERS: Dict[str, Callable[[Summary], object]] = {
    'timeline': _timeline,
    'platforms': _platforms,
    'countries': lambda s: _series(s.country_hours, 'country'),
    'artists': lambda s: _series(s.artist_hours, 'artist'),
    'albums': lambda s: _series(s.album_hours, 'album'),
    'behavior': lambda s: behavior_rates(s.behavior),
    'podcasts': lambda s: _series(s.top_podcasts, 'show'),
    'hourly': lambda s: _series(s.hourly_hours, 'hour'),
}


def chart_data(summary: Summary, tab: str):
    """
    Build the chart payload for one dashboard tab.

    Raises:
        KeyError: If the tab is unknown
    """
    if tab not in _BUILDERS:
        raise KeyError(tab)
    return _BUILDERS[tab](summary)
