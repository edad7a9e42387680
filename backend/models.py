from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class ListeningEvent:
    timestamp: datetime  # always timezone-aware
    platform: str
    ms_played: int
    country: str
    track_name: str = ""
    artist_name: str = ""
    album_name: str = ""
    shuffle: bool = False
    skipped: bool = False
    offline: bool = False
    reason_start: Optional[str] = None
    reason_end: Optional[str] = None
    episode_name: str = ""
    episode_show_name: str = ""


@dataclass
class InvalidRecord:
    index: int  # position in the flattened file array
    reason: str


@dataclass
class FileResult:
    filename: str
    events: List[ListeningEvent] = field(default_factory=list)
    invalid_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BehaviorStats:
    total_skips: int
    shuffle_usage: int
    offline_listening: int
    total_tracks: int


@dataclass
class Summary:
    platform_counts: Dict[str, int]  # bucket -> count, descending
    country_hours: Dict[str, float]
    artist_hours: Dict[str, float]
    album_hours: Dict[str, float]
    monthly_hours: Dict[str, float]  # "YYYY-MM" -> hours, ascending
    behavior: BehaviorStats
    top_podcasts: Dict[str, float]
    hourly_hours: Dict[int, float]  # hour of day -> hours, ascending

    def to_dict(self) -> dict:
        """Serializable form; mappings become lists so ordering survives JSON."""
        return {
            "platform_counts": [
                {"name": name, "value": value}
                for name, value in self.platform_counts.items()
            ],
            "country_hours": [
                {"country": key, "hours": hours}
                for key, hours in self.country_hours.items()
            ],
            "artist_hours": [
                {"artist": key, "hours": hours}
                for key, hours in self.artist_hours.items()
            ],
            "album_hours": [
                {"album": key, "hours": hours}
                for key, hours in self.album_hours.items()
            ],
            "monthly_hours": [
                {"month": key, "hours": hours}
                for key, hours in self.monthly_hours.items()
            ],
            "behavior": {
                "total_skips": self.behavior.total_skips,
                "shuffle_usage": self.behavior.shuffle_usage,
                "offline_listening": self.behavior.offline_listening,
                "total_tracks": self.behavior.total_tracks,
            },
            "top_podcasts": [
                {"show": key, "hours": hours}
                for key, hours in self.top_podcasts.items()
            ],
            "hourly_hours": [
                {"hour": key, "hours": hours}
                for key, hours in self.hourly_hours.items()
            ],
        }
