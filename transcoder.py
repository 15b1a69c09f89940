import asyncio, re, logging

from settings import FFMPEG_BINARY, STREAM_CHUNK_SIZE, UPSTREAM_ORIGIN, USER_AGENT

PROGRESS_RE = re.compile(r"time=(\d+:\d+:\d+(?:\.\d+)?)")


class TranscodeError(Exception):
    pass


def build_ffmpeg_command(source_url: str):
    headers = f"Referer: {UPSTREAM_ORIGIN}/\r\nOrigin: {UPSTREAM_ORIGIN}\r\n"
    return [
        FFMPEG_BINARY,
        "-hide_banner",
        "-loglevel",
        "info",
        "-user_agent",
        USER_AGENT,
        "-headers",
        headers,
        "-i",
        source_url,
        "-c",
        "copy",
        "-bsf:a",
        "aac_adtstoasc",
        "-movflags",
        "frag_keyframe+empty_moov+default_base_moof",
        "-f",
        "mp4",
        "pipe:1",
    ]


async def drain_stderr(stream: asyncio.StreamReader, label: str):
    while True:
        line = await stream.readline()
        if not line:
            return
        text = line.decode(errors="replace").strip()
        match = PROGRESS_RE.search(text)
        if match:
            logging.debug(f"TRANSCODE PROGRESS - {label}: {match.group(1)}")
        elif text:
            logging.debug(f"FFMPEG - {label}: {text}")


async def terminate(process: asyncio.subprocess.Process):
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class TranscodeStream:
    """Chunk iterator over ffmpeg's stdout.

    ``aclose()`` kills and reaps the process even if no chunk was read.
    """

    def __init__(self, process: asyncio.subprocess.Process, label: str):
        self.process = process
        self.label = label
        self.sent = 0
        self._stderr_task = asyncio.create_task(drain_stderr(process.stderr, label))
        self._closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        try:
            chunk = await self.process.stdout.read(STREAM_CHUNK_SIZE)
        except BaseException:
            await self.aclose()
            raise
        if not chunk:
            await self.aclose()
            raise StopAsyncIteration
        self.sent += len(chunk)
        return chunk

    async def aclose(self):
        if self._closed:
            return
        self._closed = True
        await terminate(self.process)
        self._stderr_task.cancel()
        await asyncio.gather(self._stderr_task, return_exceptions=True)
        logging.info(
            f"TRANSCODE END - {self.label}: {self.sent} bytes, exit {self.process.returncode}"
        )


async def open_transcode(source_url: str, label: str = "stream") -> TranscodeStream:
    """Spawn ffmpeg remuxing *source_url* to fragmented MP4 on stdout.

    Raises TranscodeError if the binary cannot be started. The returned
    iterator kills and reaps the process when it finishes or is closed early.
    """
    cmd = build_ffmpeg_command(source_url)
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise TranscodeError(f"Cannot start {FFMPEG_BINARY}: {e}")

    logging.info(f"TRANSCODE START - {label} (pid {process.pid})")
    return TranscodeStream(process, label)
