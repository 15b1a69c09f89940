import asyncio, re, logging
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup, Tag

from settings import (
    ACCEPT_LANGUAGE,
    API_PAGE_LIMIT,
    AUTO_TIER,
    HIGH_TIERS,
    LOW_TIERS,
    METADATA_TIMEOUT,
    PLAYER_METADATA_URL,
    SEARCH_FIELDS,
    SEARCH_PAGE_TIMEOUT,
    UPSTREAM_API_URL,
    UPSTREAM_ORIGIN,
    USER_AGENT,
)
from video_models import (
    ResolvedUrls,
    SearchPage,
    SearchStrategy,
    VideoCandidate,
    VideoMetadata,
    VideoRecord,
    to_seconds,
)


class UpstreamUnavailable(Exception):
    pass


class VideoNotFound(Exception):
    pass


class NoStreamAvailable(Exception):
    pass


# === 🔌 SESSION ===
client_session: ClientSession | None = None
_session_lock = asyncio.Lock()


async def get_client_session():
    global client_session
    async with _session_lock:
        if client_session is None or client_session.closed:
            client_session = ClientSession()
    return client_session


async def close_client_session():
    global client_session
    if client_session and not client_session.closed:
        await client_session.close()
    client_session = None


def identity_headers(referer: Optional[str] = None) -> Dict[str, str]:
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
        "Accept-Language": ACCEPT_LANGUAGE,
    }
    if referer:
        headers["Referer"] = referer
    return headers


async def fetch_json(url, params=None, headers=None, timeout: float = 15):
    try:
        session = await get_client_session()
        async with session.get(
            url,
            params=params,
            headers=headers or identity_headers(),
            timeout=ClientTimeout(total=timeout),
        ) as resp:
            if not 200 <= resp.status < 300:
                raise UpstreamUnavailable(f"HTTP {resp.status} from {url}")
            return await resp.json(content_type=None)
    except asyncio.TimeoutError:
        raise UpstreamUnavailable(f"Timeout after {timeout}s from {url}")
    except (ClientError, ValueError) as e:
        raise UpstreamUnavailable(f"{e.__class__.__name__} from {url}: {e}")


# === 🔧 UTILITIES ===
def format_duration(seconds) -> str:
    total = max(0, int(seconds or 0))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    return f"{minutes}m{secs:02d}s"


def video_page_url(video_id: str) -> str:
    return f"{UPSTREAM_ORIGIN}/video/{video_id}"


# === 🎞️ METADATA ===
async def fetch_video_metadata(video_id: str) -> Optional[VideoMetadata]:
    try:
        payload = await fetch_json(
            f"{PLAYER_METADATA_URL}/{quote(video_id, safe='')}",
            headers=identity_headers(referer=video_page_url(video_id)),
            timeout=METADATA_TIMEOUT,
        )
    except UpstreamUnavailable as e:
        logging.warning(f"METADATA ERROR - {video_id}: {e}")
        return None

    metadata = VideoMetadata.from_payload(video_id, payload)
    if metadata is None:
        logging.info(f"METADATA EMPTY - {video_id}")
    return metadata


def first_usable_url(metadata: VideoMetadata, tiers: Sequence[str]) -> Optional[str]:
    for tier in tiers:
        for rendition in metadata.tier(tier):
            if rendition.usable:
                return rendition.url
    return None


def resolve_quality_urls(
    metadata: Optional[VideoMetadata],
    low_tiers: Sequence[str] = LOW_TIERS,
    high_tiers: Sequence[str] = HIGH_TIERS,
    auto_tier: str = AUTO_TIER,
) -> ResolvedUrls:
    if metadata is None or not metadata.qualities:
        return ResolvedUrls()

    low = first_usable_url(metadata, low_tiers)
    high = first_usable_url(metadata, high_tiers)

    if not low and not high:
        auto = metadata.tier(auto_tier)
        if auto and auto[0].url:
            low = high = auto[0].url

    return ResolvedUrls(low=low, high=high)


def pick_stream_url(urls: ResolvedUrls, quality: str = "720") -> Optional[str]:
    if str(quality).lower() in {"360", "240", "low"}:
        return urls.low or urls.high
    return urls.high or urls.low


def build_video_record(
    candidate: VideoCandidate, metadata: VideoMetadata, urls: ResolvedUrls
) -> VideoRecord:
    return VideoRecord(
        video_id=candidate.video_id,
        title=candidate.title,
        thumbnail_url=candidate.thumbnail_url,
        low_url=urls.low,
        high_url=urls.high,
        duration_seconds=candidate.duration,
        duration_label=format_duration(candidate.duration),
        qualities=urls.available,
        page_url=video_page_url(candidate.video_id),
        owner=candidate.owner,
        description=metadata.description,
    )


def candidate_from_metadata(metadata: VideoMetadata) -> VideoCandidate:
    return VideoCandidate(
        video_id=metadata.video_id,
        title=metadata.title,
        duration=metadata.duration,
        thumbnail_url=metadata.poster_url
        or f"{UPSTREAM_ORIGIN}/thumbnail/video/{metadata.video_id}",
    )


async def get_video_info(video_id: str) -> VideoRecord:
    metadata = await fetch_video_metadata(video_id)
    if metadata is None:
        raise VideoNotFound(video_id)

    urls = resolve_quality_urls(metadata)
    if not urls.available:
        raise NoStreamAvailable(video_id)

    return build_video_record(candidate_from_metadata(metadata), metadata, urls)


async def resolve_stream_url(video_id: str, quality: str = "720") -> str:
    metadata = await fetch_video_metadata(video_id)
    if metadata is None:
        raise VideoNotFound(video_id)

    stream_url = pick_stream_url(resolve_quality_urls(metadata), quality)
    if not stream_url:
        raise NoStreamAvailable(video_id)
    return stream_url


# === 🔍 SEARCH PAGES ===
async def fetch_search_page(
    query: str, page: int, strategy: SearchStrategy, min_duration_seconds: int
) -> SearchPage:
    params = {
        "search": query,
        "fields": SEARCH_FIELDS,
        "page": page,
        "limit": API_PAGE_LIMIT,
        "sort": strategy.sort,
    }
    if strategy.length_filter and min_duration_seconds > 0:
        params["longer_than"] = min_duration_seconds // 60

    data = await fetch_json(UPSTREAM_API_URL, params=params, timeout=SEARCH_PAGE_TIMEOUT)
    if not isinstance(data, dict) or not isinstance(data.get("list"), list):
        return SearchPage(candidates=[], total=0, has_more=False)

    candidates = []
    for item in data["list"]:
        if not isinstance(item, dict):
            continue
        candidate = VideoCandidate.from_api(item, UPSTREAM_ORIGIN)
        if candidate:
            candidates.append(candidate)

    return SearchPage(
        candidates=candidates,
        total=to_seconds(data.get("total")),
        has_more=bool(data.get("has_more")),
    )


VIDEO_HREF_RE = re.compile(r"/video/([a-zA-Z0-9]+)")
XID_RE = re.compile(r'"xid"\s*:\s*"([a-zA-Z0-9]+)"')


def extract_video_ids(html: str) -> List[str]:
    soup = BeautifulSoup(html, "lxml")
    ids = []

    for a in soup.find_all("a", href=True):
        if not isinstance(a, Tag):
            continue
        match = VIDEO_HREF_RE.search(str(a["href"]))
        if match:
            ids.append(match.group(1))

    for script in soup.find_all("script"):
        if not isinstance(script, Tag) or not script.string:
            continue
        ids.extend(XID_RE.findall(script.string))

    return list(dict.fromkeys(ids))


async def scrape_search_ids(query: str, page: int) -> List[str]:
    url = f"{UPSTREAM_ORIGIN}/search/{quote(query, safe='')}/videos"
    headers = identity_headers(referer=f"{UPSTREAM_ORIGIN}/")
    headers["Accept"] = "text/html,application/xhtml+xml"
    try:
        session = await get_client_session()
        async with session.get(
            url,
            params={"page": page},
            headers=headers,
            timeout=ClientTimeout(total=SEARCH_PAGE_TIMEOUT),
        ) as resp:
            if not 200 <= resp.status < 300:
                raise UpstreamUnavailable(f"HTTP {resp.status} from {url}")
            html = await resp.text()
    except asyncio.TimeoutError:
        raise UpstreamUnavailable(f"Timeout after {SEARCH_PAGE_TIMEOUT}s from {url}")
    except ClientError as e:
        raise UpstreamUnavailable(f"{e.__class__.__name__} from {url}: {e}")

    ids = extract_video_ids(html)
    logging.debug(f"SCRAPE - {len(ids)} video ids on {url} page {page}")
    return ids
