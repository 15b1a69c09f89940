# === 📦 IMPORTS ===
import asyncio, re, time, logging
from contextlib import asynccontextmanager

import uvicorn
from aiohttp import ClientError, ClientTimeout
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from manifest_rewriter import MANIFEST_CONTENT_TYPE, proxy_fetch, rewrite_manifest
from proxy_egress import ProxyError
from search_aggregator import search_videos
from settings import (
    HOST,
    KEEP_ALIVE_INTERVAL,
    KEEP_ALIVE_TIMEOUT,
    KEEP_ALIVE_URL,
    LOG_LEVEL,
    MIN_DURATION_SECONDS,
    MIN_RESULTS,
    PORT,
)
from transcoder import TranscodeError, open_transcode
from upstream_client import (
    NoStreamAvailable,
    VideoNotFound,
    close_client_session,
    format_duration,
    get_client_session,
    get_video_info,
    resolve_stream_url,
)

# === ℹ️ LOGGING ===
start_time = time.monotonic()


class ElapsedFormatter(logging.Formatter):
    def format(self, record):
        elapsed = time.monotonic() - start_time
        record.elapsed_time = f"{elapsed:.2f}s"
        return super().format(record)


formatter_str = "%(elapsed_time)s [%(levelname)s] %(message)s"

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format=formatter_str)

for handler in logging.getLogger().handlers:
    handler.setFormatter(ElapsedFormatter(formatter_str))

for lib in ["aiohttp.access", "urllib3", "asyncio"]:
    logging.getLogger(lib).setLevel(logging.WARNING)


# === 🫀 KEEP-ALIVE ===
async def ping_once(url: str):
    try:
        session = await get_client_session()
        async with session.get(url, timeout=ClientTimeout(total=KEEP_ALIVE_TIMEOUT)) as resp:
            logging.debug(f"KEEP-ALIVE - {url}: HTTP {resp.status}")
    except (ClientError, asyncio.TimeoutError) as e:
        logging.warning(f"KEEP-ALIVE ERROR - {url}: {e.__class__.__name__} - {e}")


async def keep_alive_loop(url: str, interval: float):
    while True:
        await asyncio.sleep(interval)
        await ping_once(url)


# === 🚀 FASTAPI ROUTES ===
@asynccontextmanager
async def lifespan(_: FastAPI):
    ping_task = None
    if KEEP_ALIVE_URL:
        logging.info(f"KEEP-ALIVE - Pinging {KEEP_ALIVE_URL} every {KEEP_ALIVE_INTERVAL}s")
        ping_task = asyncio.create_task(keep_alive_loop(KEEP_ALIVE_URL, KEEP_ALIVE_INTERVAL))
    yield
    if ping_task:
        ping_task.cancel()
        await asyncio.gather(ping_task, return_exceptions=True)

    await close_client_session()


app = FastAPI(lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


@app.middleware("http")
async def no_cache(request: Request, call_next):
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-cache"
    return response


def error_response(status_code: int, error: str, message: str = ""):
    content = {"error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def manifest_response(text: str, filename: str = ""):
    headers = {}
    if filename:
        headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return PlainTextResponse(text, media_type=MANIFEST_CONTENT_TYPE, headers=headers)


@app.get("/")
def index():
    return {
        "message": "Long-form video search and HLS proxy",
        "endpoints": {
            "search": "GET /search?query=QUERY&page=1",
            "video": "GET /video/{video_id}",
            "stream": "GET /stream/{video_id}?quality=720",
            "download": "GET /download?video=MANIFEST_URL",
            "proxy": "GET /proxy?url=ABSOLUTE_URL",
            "transcode": "GET /transcode/{video_id}?quality=720",
        },
        "filters": {
            "min_duration": format_duration(MIN_DURATION_SECONDS),
            "qualities": ["low", "high"],
        },
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/search")
async def search(
    query: str = "",
    page: int = 1,
    min_results: int = MIN_RESULTS,
    min_duration: int = MIN_DURATION_SECONDS,
):
    if not query.strip():
        return error_response(400, "missing_query", "The query parameter is required")
    if page < 1 or min_results < 1 or min_duration < 0:
        return error_response(400, "invalid_parameters")

    result = await search_videos(
        query.strip(),
        page=page,
        min_results=min_results,
        min_duration_seconds=min_duration,
    )
    return {
        "query": query,
        "result_count": len(result.videos),
        "min_duration": format_duration(min_duration),
        **result.to_dict(),
    }


@app.get("/video/{video_id}")
async def video(video_id: str):
    try:
        record = await get_video_info(video_id)
    except VideoNotFound:
        return error_response(404, "video_not_found")
    except NoStreamAvailable:
        return error_response(404, "no_stream_available")
    return {"success": True, "video": record.to_dict()}


@app.get("/stream/{video_id}")
async def stream(video_id: str, quality: str = "720"):
    logging.info(f"STREAM - {video_id} at {quality}p")
    try:
        stream_url = await resolve_stream_url(video_id, quality)
        text = await rewrite_manifest(stream_url)
    except VideoNotFound:
        return error_response(404, "video_not_found")
    except NoStreamAvailable:
        return error_response(404, "no_stream_available")
    except ProxyError as e:
        logging.error(f"STREAM ERROR - {video_id}: {e}")
        return error_response(502, "proxy_error", str(e))
    return manifest_response(text, f"{video_id}_{quality}p.m3u8")


@app.get("/download")
async def download(video: str = ""):
    if not video:
        return error_response(400, "missing_video", "Pass a low or high stream URL from /search")

    match = re.search(r"video/([a-zA-Z0-9]+)", video)
    video_id = match.group(1) if match else "video"
    try:
        text = await rewrite_manifest(video)
    except ProxyError as e:
        logging.error(f"DOWNLOAD ERROR - {video[:80]}: {e}")
        return error_response(502, "proxy_error", str(e))
    return manifest_response(text, f"{video_id}.m3u8")


@app.get("/proxy")
async def proxy(url: str = ""):
    if not url:
        return error_response(400, "missing_url")

    try:
        resource = await proxy_fetch(url)
    except ProxyError as e:
        logging.error(f"PROXY ERROR - {url[:80]}: {e}")
        return error_response(502, "proxy_error", str(e))

    if resource.text is not None:
        return manifest_response(resource.text)
    return StreamingResponse(
        resource.stream,
        media_type=resource.content_type,
        background=BackgroundTask(resource.stream.aclose),
    )


@app.get("/transcode/{video_id}")
async def transcode(video_id: str, quality: str = "720"):
    try:
        stream_url = await resolve_stream_url(video_id, quality)
        chunks = await open_transcode(stream_url, label=video_id)
    except VideoNotFound:
        return error_response(404, "video_not_found")
    except NoStreamAvailable:
        return error_response(404, "no_stream_available")
    except TranscodeError as e:
        logging.error(f"TRANSCODE ERROR - {video_id}: {e}")
        return error_response(503, "transcode_unavailable", str(e))
    return StreamingResponse(
        chunks, media_type="video/mp4", background=BackgroundTask(chunks.aclose)
    )


if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT)
