import asyncio, logging
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Tuple

from aiohttp import ClientError, ClientTimeout

from settings import (
    ACCEPT_LANGUAGE,
    MANIFEST_TIMEOUT,
    SEGMENT_TIMEOUT,
    STREAM_CHUNK_SIZE,
    UPSTREAM_ORIGIN,
    USER_AGENT,
)
from upstream_client import UpstreamUnavailable, get_client_session

DEFAULT_SEGMENT_TYPE = "video/MP2T"


class ProxyError(UpstreamUnavailable):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class FetchMode(str, Enum):
    TEXT = "text"
    BINARY = "binary-stream"


def proxy_headers() -> Dict[str, str]:
    return {
        "User-Agent": USER_AGENT,
        "Accept-Language": ACCEPT_LANGUAGE,
        "Referer": f"{UPSTREAM_ORIGIN}/",
        "Origin": UPSTREAM_ORIGIN,
    }


async def fetch_text(url: str) -> str:
    logging.info(f"PROXY TEXT - {url[:80]}")
    try:
        session = await get_client_session()
        async with session.get(
            url, headers=proxy_headers(), timeout=ClientTimeout(total=MANIFEST_TIMEOUT)
        ) as resp:
            if resp.status >= 300:
                raise ProxyError(f"HTTP {resp.status} from {url}", status=resp.status)
            return await resp.text()
    except asyncio.TimeoutError:
        raise ProxyError(f"Timeout after {MANIFEST_TIMEOUT}s from {url}")
    except ClientError as e:
        raise ProxyError(f"{e.__class__.__name__} from {url}: {e}")


class UpstreamBody:
    """Chunk iterator over an open upstream response.

    ``aclose()`` closes the response whether or not iteration ever started.
    """

    def __init__(self, resp, url: str):
        self.resp = resp
        self.url = url
        self._chunks = None

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self.resp.closed:
            raise StopAsyncIteration
        if self._chunks is None:
            self._chunks = self.resp.content.iter_chunked(STREAM_CHUNK_SIZE)
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except (ClientError, asyncio.TimeoutError) as e:
            logging.warning(f"PROXY STREAM ERROR - {self.url[:80]}: {e}")
            await self.aclose()
            raise

    async def aclose(self):
        if not self.resp.closed:
            self.resp.close()


async def open_stream(url: str) -> Tuple[str, AsyncIterator[bytes]]:
    """Start a binary fetch and return its content type and a chunk iterator.

    The upstream status is checked before returning so callers can still
    answer with an error. The response is closed when the iterator is
    exhausted or closed early, e.g. when the client disconnects.
    """
    logging.info(f"PROXY STREAM - {url[:80]}")
    try:
        session = await get_client_session()
        resp = await session.get(
            url, headers=proxy_headers(), timeout=ClientTimeout(total=SEGMENT_TIMEOUT)
        )
    except asyncio.TimeoutError:
        raise ProxyError(f"Timeout after {SEGMENT_TIMEOUT}s from {url}")
    except ClientError as e:
        raise ProxyError(f"{e.__class__.__name__} from {url}: {e}")

    if resp.status >= 300:
        resp.close()
        raise ProxyError(f"HTTP {resp.status} from {url}", status=resp.status)

    content_type = resp.headers.get("Content-Type") or DEFAULT_SEGMENT_TYPE
    return content_type, UpstreamBody(resp, url)


async def fetch(url: str, mode: FetchMode):
    if mode == FetchMode.TEXT:
        return await fetch_text(url)
    return await open_stream(url)
