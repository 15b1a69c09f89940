import os
from typing import List

from dotenv import load_dotenv

from video_models import SearchStrategy, StrategyMode

load_dotenv()

KNOWN_SORTS = {"relevance", "visited", "recent", "trending", "random"}


def parse_tiers(text: str) -> List[str]:
    return [t.strip() for t in text.split(",") if t.strip()]


def parse_strategies(text: str) -> List[SearchStrategy]:
    """Parse ``sort[+length],...`` into search strategies.

    ``+length`` asks upstream to pre-filter on the minimum duration.
    """
    strategies = []
    for raw in text.split(","):
        raw = raw.strip().lower()
        if not raw:
            continue
        sort, _, flag = raw.partition("+")
        if sort not in KNOWN_SORTS:
            raise ValueError(f"Unknown search sort: {sort}")
        if flag and flag != "length":
            raise ValueError(f"Unknown search strategy flag: {flag}")
        strategies.append(SearchStrategy(sort=sort, length_filter=flag == "length"))
    return strategies or [SearchStrategy()]


def env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# === 🌐 UPSTREAM ===
UPSTREAM_API_URL = os.getenv("UPSTREAM_API_URL", "https://api.dailymotion.com/videos")
PLAYER_METADATA_URL = os.getenv(
    "PLAYER_METADATA_URL", "https://www.dailymotion.com/player/metadata/video"
)
UPSTREAM_ORIGIN = os.getenv("UPSTREAM_ORIGIN", "https://www.dailymotion.com").rstrip("/")
USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Linux; Android 10; SM-G973F) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
)
ACCEPT_LANGUAGE = os.getenv("ACCEPT_LANGUAGE", "fr-FR,fr;q=0.9,en-US;q=0.8,en;q=0.7")
SEARCH_FIELDS = (
    "id,title,thumbnail_720_url,thumbnail_480_url,thumbnail_url,"
    "duration,owner.screenname,views_total"
)

# === 🎚️ QUALITY TIERS ===
LOW_TIERS = parse_tiers(os.getenv("LOW_TIERS", "360,240"))
HIGH_TIERS = parse_tiers(os.getenv("HIGH_TIERS", "720,480"))
AUTO_TIER = os.getenv("AUTO_TIER", "auto")

# === ⏱️ TIMEOUTS (seconds) ===
METADATA_TIMEOUT = float(os.getenv("METADATA_TIMEOUT", "15"))
SEARCH_PAGE_TIMEOUT = float(os.getenv("SEARCH_PAGE_TIMEOUT", "20"))
MANIFEST_TIMEOUT = float(os.getenv("MANIFEST_TIMEOUT", "30"))
SEGMENT_TIMEOUT = float(os.getenv("SEGMENT_TIMEOUT", "120"))
KEEP_ALIVE_TIMEOUT = float(os.getenv("KEEP_ALIVE_TIMEOUT", "10"))

# === 🔍 SEARCH ===
MIN_DURATION_SECONDS = int(os.getenv("MIN_DURATION_SECONDS", str(90 * 60)))
MIN_RESULTS = int(os.getenv("MIN_RESULTS", "10"))
API_PAGE_LIMIT = int(os.getenv("API_PAGE_LIMIT", "100"))
PAGES_PER_LOGICAL_PAGE = int(os.getenv("PAGES_PER_LOGICAL_PAGE", "5"))
MAX_PAGE_LOOKAHEAD = int(os.getenv("MAX_PAGE_LOOKAHEAD", "10"))
SEARCH_MODE = StrategyMode(os.getenv("SEARCH_MODE", StrategyMode.API_ONLY.value))
SEARCH_STRATEGIES = parse_strategies(
    os.getenv(
        "SEARCH_STRATEGIES", "relevance+length,relevance,visited+length,recent+length"
    )
)
SCRAPE_MAX_PAGES = int(os.getenv("SCRAPE_MAX_PAGES", "3"))
SORT_PAGE_BY_DURATION = env_flag("SORT_PAGE_BY_DURATION", "true")

# === 🔁 PROXY / TRANSCODE ===
PROXY_ROUTE = os.getenv("PROXY_ROUTE", "/proxy")
STREAM_CHUNK_SIZE = int(os.getenv("STREAM_CHUNK_SIZE", "65536"))
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")

# === 🫀 KEEP-ALIVE ===
KEEP_ALIVE_URL = os.getenv("KEEP_ALIVE_URL", "")
KEEP_ALIVE_INTERVAL = float(os.getenv("KEEP_ALIVE_INTERVAL", "600"))

# === 🚀 SERVER ===
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))
