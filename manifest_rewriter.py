"""HLS manifest rewriting.

Every media segment or sub-playlist reference in a playlist is resolved
against the playlist's own directory and replaced by a same-origin proxy
reference, so the player fetches the whole playlist graph through the proxy.
"""

import logging
from typing import Optional
from urllib.parse import quote, urlsplit

from proxy_egress import fetch_text, open_stream
from settings import PROXY_ROUTE
from video_models import ProxiedResource

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"


def is_manifest_url(url: str) -> bool:
    return ".m3u8" in url.lower()


def manifest_base_url(url: str) -> str:
    """Return the playlist directory: ``https://x.test/a/b/manifest.m3u8`` -> ``https://x.test/a/b/``."""
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        return url[: url.rfind("/") + 1]
    path = parts.path[: parts.path.rfind("/") + 1] or "/"
    return f"{parts.scheme}://{parts.netloc}{path}"


def resolve_reference(line: str, base_url: str) -> Optional[str]:
    """Resolve one playlist URI line to an absolute URL.

    Returns None when the line cannot be resolved with confidence, in which
    case the caller keeps the original line.
    """
    ref = line.strip()
    if ref.startswith("http"):
        return ref

    base_url = manifest_base_url(base_url)
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.netloc:
        return None
    origin = f"{parts.scheme}://{parts.netloc}"

    if ref.startswith("../"):
        relative = ref.split("/")
        up_count = 0
        while relative and relative[0] == "..":
            up_count += 1
            relative.pop(0)

        base_parts = base_url.split("/")
        # scheme, empty, host and the trailing empty segment stay put
        if len(base_parts) - 1 - up_count < 3:
            return None
        return "/".join(base_parts[: -1 - up_count]) + "/" + "/".join(relative)

    if ref.startswith("/"):
        return origin + ref

    while ref.startswith("./"):
        ref = ref[2:]
    return base_url + ref


def internal_reference(absolute_url: str) -> str:
    return f"{PROXY_ROUTE}?url={quote(absolute_url, safe='')}"


def rewrite_manifest_text(text: str, manifest_url: str) -> str:
    base_url = manifest_base_url(manifest_url)
    rewritten = []

    for line in text.split("\n"):
        body = line.rstrip("\r")
        ending = line[len(body) :]
        stripped = body.strip()

        if not stripped or stripped.startswith("#"):
            rewritten.append(line)
            continue

        absolute_url = resolve_reference(stripped, base_url)
        if absolute_url is None:
            logging.warning(f"MANIFEST DEGRADED - Keeping unresolved line: {stripped[:80]}")
            rewritten.append(line)
            continue

        rewritten.append(internal_reference(absolute_url) + ending)

    return "\n".join(rewritten)


async def rewrite_manifest(manifest_url: str) -> str:
    text = await fetch_text(manifest_url)
    return rewrite_manifest_text(text, manifest_url)


async def proxy_fetch(url: str) -> ProxiedResource:
    if is_manifest_url(url):
        return ProxiedResource(
            content_type=MANIFEST_CONTENT_TYPE, text=await rewrite_manifest(url)
        )

    content_type, stream = await open_stream(url)
    return ProxiedResource(content_type=content_type, stream=stream)
