"""Unit tests for the metadata fetcher, quality resolver and search page parsing."""

import asyncio

import pytest
from aiohttp import ClientConnectionError

from conftest import FakeResponse
from settings import PLAYER_METADATA_URL, UPSTREAM_API_URL, UPSTREAM_ORIGIN
from upstream_client import (
    NoStreamAvailable,
    UpstreamUnavailable,
    VideoNotFound,
    extract_video_ids,
    fetch_search_page,
    fetch_video_metadata,
    format_duration,
    get_video_info,
    pick_stream_url,
    resolve_quality_urls,
    resolve_stream_url,
)
from video_models import ResolvedUrls, SearchStrategy, VideoMetadata


def metadata_with(qualities):
    return VideoMetadata.from_payload("x1", {"title": "T", "duration": 6000, "qualities": qualities})


class TestFormatDuration:
    def test_hours(self):
        assert format_duration(6000) == "1h40m00s"

    def test_minutes_only(self):
        assert format_duration(125) == "2m05s"

    def test_zero_and_negative(self):
        assert format_duration(0) == "0m00s"
        assert format_duration(-30) == "0m00s"

    def test_float_is_floored(self):
        assert format_duration(3661.9) == "1h01m01s"


class TestResolveQualityUrls:
    def test_preferred_tiers(self):
        urls = resolve_quality_urls(metadata_with({"360": [{"url": "u360"}], "720": [{"url": "u720"}]}))
        assert urls == ResolvedUrls(low="u360", high="u720")

    def test_fallback_tiers(self):
        urls = resolve_quality_urls(metadata_with({"240": [{"url": "u240"}], "480": [{"url": "u480"}]}))
        assert urls == ResolvedUrls(low="u240", high="u480")

    def test_only_240_leaves_high_empty(self):
        urls = resolve_quality_urls(metadata_with({"240": [{"url": "u240"}]}))
        assert urls.low == "u240"
        assert urls.high is None
        assert urls.available == ["low"]

    def test_auto_used_only_when_nothing_else(self):
        urls = resolve_quality_urls(metadata_with({"auto": [{"type": "application/x-mpegURL", "url": "uauto"}]}))
        assert urls == ResolvedUrls(low="uauto", high="uauto")

        urls = resolve_quality_urls(
            metadata_with({"240": [{"url": "u240"}], "auto": [{"url": "uauto"}]})
        )
        assert urls == ResolvedUrls(low="u240", high=None)

    def test_entries_without_url_are_skipped(self):
        urls = resolve_quality_urls(
            metadata_with({"360": [{"type": "video/mp4"}, {"url": "second"}]})
        )
        assert urls.low == "second"

    def test_empty_and_missing(self):
        assert resolve_quality_urls(metadata_with({})) == ResolvedUrls()
        assert resolve_quality_urls(None) == ResolvedUrls()

    def test_custom_tier_order(self):
        urls = resolve_quality_urls(
            metadata_with({"380": [{"url": "a"}], "1080": [{"url": "b"}]}),
            low_tiers=["380"],
            high_tiers=["1080"],
        )
        assert urls == ResolvedUrls(low="a", high="b")


class TestPickStreamUrl:
    def test_quality_preference(self):
        urls = ResolvedUrls(low="lo", high="hi")
        assert pick_stream_url(urls, "360") == "lo"
        assert pick_stream_url(urls, "720") == "hi"

    def test_falls_back_to_other_tier(self):
        assert pick_stream_url(ResolvedUrls(low="lo"), "720") == "lo"
        assert pick_stream_url(ResolvedUrls(high="hi"), "360") == "hi"
        assert pick_stream_url(ResolvedUrls(), "720") is None


class TestFetchVideoMetadata:
    @pytest.mark.asyncio
    async def test_success(self, fake_session):
        fake_session.routes[PLAYER_METADATA_URL] = FakeResponse(
            json_data={
                "title": "Film",
                "duration": 6000,
                "poster_url": "poster.jpg",
                "qualities": {"720": [{"type": "video/mp4", "url": "u720"}]},
            }
        )

        metadata = await fetch_video_metadata("x1")

        assert metadata.title == "Film"
        assert metadata.duration == 6000
        assert metadata.tier("720")[0].url == "u720"
        assert metadata.tier("360") == []
        url, kwargs = fake_session.calls[0]
        assert url == f"{PLAYER_METADATA_URL}/x1"
        assert kwargs["headers"]["Referer"] == f"{UPSTREAM_ORIGIN}/video/x1"
        assert kwargs["timeout"].total == 15

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcome",
        [
            FakeResponse(status=500),
            FakeResponse(json_data=ValueError("not json")),
            FakeResponse(json_data={"error": {"code": 404}}),
            FakeResponse(json_data=["unexpected"]),
            ClientConnectionError("refused"),
            asyncio.TimeoutError(),
        ],
    )
    async def test_failures_return_none(self, fake_session, outcome):
        fake_session.routes[PLAYER_METADATA_URL] = outcome
        assert await fetch_video_metadata("x1") is None

    @pytest.mark.asyncio
    async def test_any_2xx_is_accepted(self, fake_session):
        fake_session.routes[PLAYER_METADATA_URL] = FakeResponse(
            status=203, json_data={"title": "Film", "duration": 6000}
        )
        metadata = await fetch_video_metadata("x1")
        assert metadata.title == "Film"


class TestGetVideoInfo:
    @pytest.mark.asyncio
    async def test_not_found(self, fake_session):
        fake_session.routes[PLAYER_METADATA_URL] = FakeResponse(status=404)
        with pytest.raises(VideoNotFound):
            await get_video_info("missing")

    @pytest.mark.asyncio
    async def test_no_stream(self, fake_session):
        fake_session.routes[PLAYER_METADATA_URL] = FakeResponse(
            json_data={"title": "Film", "duration": 6000, "qualities": {}}
        )
        with pytest.raises(NoStreamAvailable):
            await get_video_info("x1")

    @pytest.mark.asyncio
    async def test_record(self, fake_session):
        fake_session.routes[PLAYER_METADATA_URL] = FakeResponse(
            json_data={
                "title": "Film",
                "duration": 6000,
                "description": "desc",
                "qualities": {"360": [{"url": "u360"}]},
            }
        )

        record = await get_video_info("x1")

        assert record.low_url == "u360"
        assert record.high_url is None
        assert record.qualities == ["low"]
        assert record.duration_label == "1h40m00s"
        assert record.thumbnail_url == f"{UPSTREAM_ORIGIN}/thumbnail/video/x1"
        assert record.page_url == f"{UPSTREAM_ORIGIN}/video/x1"
        assert record.description == "desc"

    @pytest.mark.asyncio
    async def test_resolve_stream_url_prefers_requested_quality(self, fake_session):
        fake_session.routes[PLAYER_METADATA_URL] = FakeResponse(
            json_data={"qualities": {"360": [{"url": "lo"}], "720": [{"url": "hi"}]}}
        )
        assert await resolve_stream_url("x1", "360") == "lo"
        assert await resolve_stream_url("x1", "720") == "hi"


class TestFetchSearchPage:
    @pytest.mark.asyncio
    async def test_parses_listing(self, fake_session):
        fake_session.routes[UPSTREAM_API_URL] = FakeResponse(
            json_data={
                "list": [
                    {
                        "id": "a",
                        "title": "Long",
                        "duration": 6000,
                        "thumbnail_480_url": "t480",
                        "owner.screenname": "chan",
                        "views_total": 12,
                    },
                    {"id": "b", "duration": None},
                    {"title": "no id"},
                ],
                "total": 42,
                "has_more": True,
            }
        )

        page = await fetch_search_page("film", 3, SearchStrategy("visited", True), 5400)

        assert [c.video_id for c in page.candidates] == ["a", "b"]
        first, second = page.candidates
        assert first.thumbnail_url == "t480"
        assert first.owner == "chan"
        assert first.views == 12
        assert second.title == "Untitled"
        assert second.duration == 0
        assert page.total == 42
        assert page.has_more is True

        _, kwargs = fake_session.calls[0]
        assert kwargs["params"]["page"] == 3
        assert kwargs["params"]["sort"] == "visited"
        assert kwargs["params"]["longer_than"] == 90
        assert kwargs["timeout"].total == 20

    @pytest.mark.asyncio
    async def test_without_length_filter(self, fake_session):
        fake_session.routes[UPSTREAM_API_URL] = FakeResponse(json_data={"list": []})
        await fetch_search_page("film", 1, SearchStrategy("relevance", False), 5400)
        _, kwargs = fake_session.calls[0]
        assert "longer_than" not in kwargs["params"]

    @pytest.mark.asyncio
    async def test_error_raises_upstream_unavailable(self, fake_session):
        fake_session.routes[UPSTREAM_API_URL] = FakeResponse(status=503)
        with pytest.raises(UpstreamUnavailable):
            await fetch_search_page("film", 1, SearchStrategy(), 5400)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total", ["n/a", None, {"value": 3}, -5])
    async def test_malformed_total_counts_as_zero(self, fake_session, total):
        fake_session.routes[UPSTREAM_API_URL] = FakeResponse(
            json_data={"list": [], "total": total, "has_more": False}
        )
        page = await fetch_search_page("film", 1, SearchStrategy(), 5400)
        assert page.total == 0
        assert page.candidates == []


def test_extract_video_ids_from_links_and_scripts():
    html = """
    <html><body>
      <a href="/video/x8abc">one</a>
      <a href="https://www.dailymotion.com/video/x9def?playlist=1">two</a>
      <a href="/video/x8abc">dup</a>
      <a href="/user/someone">user</a>
      <script>window.__DATA__ = {"xid": "x7ghi", "xid":"x8abc"};</script>
    </body></html>
    """
    assert extract_video_ids(html) == ["x8abc", "x9def", "x7ghi"]
