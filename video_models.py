"""Value objects passed between the search, metadata and proxy layers."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional


class StrategyMode(str, Enum):
    API_ONLY = "api"
    API_WITH_SCRAPE_FALLBACK = "api+scrape"


@dataclass(frozen=True)
class SearchStrategy:
    sort: str = "relevance"
    length_filter: bool = True

    @property
    def label(self) -> str:
        return f"{self.sort}+length" if self.length_filter else self.sort


def to_seconds(value) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return 0


@dataclass
class VideoCandidate:
    video_id: str
    title: str
    duration: int
    thumbnail_url: str
    owner: str = ""
    views: Optional[int] = None

    @classmethod
    def from_api(cls, item: dict, origin: str) -> Optional["VideoCandidate"]:
        video_id = item.get("id")
        if not video_id:
            return None
        views = item.get("views_total")
        return cls(
            video_id=str(video_id),
            title=item.get("title") or "Untitled",
            duration=to_seconds(item.get("duration")),
            thumbnail_url=(
                item.get("thumbnail_720_url")
                or item.get("thumbnail_480_url")
                or item.get("thumbnail_url")
                or f"{origin}/thumbnail/video/{video_id}"
            ),
            owner=item.get("owner.screenname") or "",
            views=views if isinstance(views, int) else None,
        )


@dataclass
class Rendition:
    url: Optional[str]
    content_type: Optional[str] = None

    @property
    def usable(self) -> bool:
        # Permissive: a missing or unknown type does not disqualify a URL.
        return bool(self.url)


@dataclass
class VideoMetadata:
    video_id: str
    title: str = "Untitled"
    duration: int = 0
    description: str = ""
    poster_url: Optional[str] = None
    qualities: Dict[str, List[Rendition]] = field(default_factory=dict)

    def tier(self, label: str) -> List[Rendition]:
        return self.qualities.get(label, [])

    @classmethod
    def from_payload(cls, video_id: str, payload) -> Optional["VideoMetadata"]:
        """Build metadata from the player endpoint JSON.

        Returns None when the payload is not an object or reports an error.
        Unknown or malformed tiers are dropped rather than rejected.
        """
        if not isinstance(payload, dict) or payload.get("error"):
            return None

        qualities: Dict[str, List[Rendition]] = {}
        raw_qualities = payload.get("qualities")
        if isinstance(raw_qualities, dict):
            for label, entries in raw_qualities.items():
                if not isinstance(entries, list):
                    continue
                qualities[str(label)] = [
                    Rendition(url=entry.get("url"), content_type=entry.get("type"))
                    for entry in entries
                    if isinstance(entry, dict)
                ]

        return cls(
            video_id=video_id,
            title=payload.get("title") or "Untitled",
            duration=to_seconds(payload.get("duration")),
            description=payload.get("description") or "",
            poster_url=payload.get("poster_url") or payload.get("thumbnail_url"),
            qualities=qualities,
        )


@dataclass
class ResolvedUrls:
    low: Optional[str] = None
    high: Optional[str] = None

    @property
    def available(self) -> List[str]:
        return [name for name, url in (("low", self.low), ("high", self.high)) if url]


@dataclass
class VideoRecord:
    video_id: str
    title: str
    thumbnail_url: str
    low_url: Optional[str]
    high_url: Optional[str]
    duration_seconds: int
    duration_label: str
    qualities: List[str]
    page_url: str
    owner: str = ""
    description: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SearchPage:
    candidates: List[VideoCandidate]
    total: int = 0
    has_more: bool = False


@dataclass
class SearchResult:
    videos: List[VideoRecord]
    total_count: int
    has_next_page: bool
    page: int

    def to_dict(self) -> dict:
        return {
            "page": self.page,
            "total_count": self.total_count,
            "has_next_page": self.has_next_page,
            "videos": [v.to_dict() for v in self.videos],
        }


@dataclass
class ProxiedResource:
    content_type: str
    text: Optional[str] = None
    stream: Optional[AsyncIterator[bytes]] = None
