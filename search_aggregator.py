import os, asyncio, logging
from typing import List, Optional, Sequence, Set

import psutil

from settings import (
    MAX_PAGE_LOOKAHEAD,
    MIN_DURATION_SECONDS,
    MIN_RESULTS,
    PAGES_PER_LOGICAL_PAGE,
    SCRAPE_MAX_PAGES,
    SEARCH_MODE,
    SEARCH_STRATEGIES,
    SORT_PAGE_BY_DURATION,
)
from upstream_client import (
    UpstreamUnavailable,
    build_video_record,
    candidate_from_metadata,
    fetch_search_page,
    fetch_video_metadata,
    resolve_quality_urls,
    scrape_search_ids,
)
from video_models import (
    SearchResult,
    SearchStrategy,
    StrategyMode,
    VideoCandidate,
    VideoMetadata,
    VideoRecord,
)


# === 🔒 CONCURRENCY ===
def get_enrichment_concurrency():
    cores = os.cpu_count() or 4
    ram_gb = psutil.virtual_memory().total // 1_073_741_824
    base = max(2, min(cores, 8))
    if ram_gb >= 16:
        base += 2
    elif ram_gb <= 4:
        base = max(2, base - 2)
    return base


ENRICH_CONCURRENCY = get_enrichment_concurrency()


# === 🧹 FILTERING ===
def select_candidates(
    candidates: Sequence[VideoCandidate],
    seen_ids: Set[str],
    min_duration_seconds: int,
    longest_first: bool = SORT_PAGE_BY_DURATION,
) -> List[VideoCandidate]:
    survivors = []
    for candidate in candidates:
        if candidate.video_id in seen_ids:
            continue
        if candidate.duration < min_duration_seconds:
            continue
        seen_ids.add(candidate.video_id)
        survivors.append(candidate)

    if longest_first:
        survivors.sort(key=lambda c: c.duration, reverse=True)
    return survivors


# === 🧩 ENRICHMENT ===
async def enrich_candidate(
    candidate: VideoCandidate, metadata: Optional[VideoMetadata] = None
) -> Optional[VideoRecord]:
    try:
        if metadata is None:
            metadata = await fetch_video_metadata(candidate.video_id)
        if metadata is None:
            logging.info(f"SKIP - No metadata for {candidate.video_id}")
            return None
        return build_video_record(candidate, metadata, resolve_quality_urls(metadata))
    except Exception as e:
        logging.error(f"ENRICH ERROR - {candidate.video_id}: {e.__class__.__name__} - {e}")
        return None


async def enrich_into(
    survivors: Sequence[VideoCandidate],
    results: List[VideoRecord],
    min_results: int,
    sem: asyncio.Semaphore,
):
    async def worker(candidate):
        async with sem:
            return await enrich_candidate(candidate)

    i = 0
    while i < len(survivors) and len(results) < min_results:
        batch = survivors[i : i + (min_results - len(results))]
        i += len(batch)

        for record in await asyncio.gather(*(worker(c) for c in batch)):
            if record is None:
                continue
            results.append(record)
            logging.info(
                f"RESULT - [{len(results)}] {record.title[:50]} ({record.duration_label})"
            )


# === 🔍 SEARCH PIPELINE ===
async def scrape_into(
    query: str,
    page: int,
    seen_ids: Set[str],
    results: List[VideoRecord],
    min_results: int,
    min_duration_seconds: int,
):
    for scrape_page in range(page, page + SCRAPE_MAX_PAGES):
        if len(results) >= min_results:
            return
        try:
            ids = await scrape_search_ids(query, scrape_page)
        except UpstreamUnavailable as e:
            logging.warning(f"SCRAPE ERROR - page {scrape_page}: {e}")
            return

        fresh = [i for i in ids if i not in seen_ids]
        if not fresh:
            return
        seen_ids.update(fresh)

        for video_id in fresh:
            if len(results) >= min_results:
                return
            metadata = await fetch_video_metadata(video_id)
            if metadata is None or metadata.duration < min_duration_seconds:
                continue
            record = await enrich_candidate(candidate_from_metadata(metadata), metadata)
            if record:
                results.append(record)
                logging.info(f"SCRAPED - [{len(results)}] {record.title[:50]}")


async def search_videos(
    query: str,
    page: int = 1,
    min_results: int = MIN_RESULTS,
    min_duration_seconds: int = MIN_DURATION_SECONDS,
    mode: StrategyMode = SEARCH_MODE,
    strategies: Optional[Sequence[SearchStrategy]] = None,
) -> SearchResult:
    page = max(1, page)
    strategies = list(strategies or SEARCH_STRATEGIES)
    results: List[VideoRecord] = []
    seen_ids: Set[str] = set()
    sem = asyncio.Semaphore(ENRICH_CONCURRENCY)

    start_page = (page - 1) * PAGES_PER_LOGICAL_PAGE + 1
    last_page = start_page + MAX_PAGE_LOOKAHEAD
    total_available = 0
    has_more = False

    logging.info(f"=== SEARCH: '{query}' - page {page} ===")

    for strategy in strategies:
        if len(results) >= min_results:
            break

        api_page = start_page
        strategy_has_more = True
        while len(results) < min_results and api_page <= last_page and strategy_has_more:
            try:
                listing = await fetch_search_page(
                    query, api_page, strategy, min_duration_seconds
                )
            except UpstreamUnavailable as e:
                logging.warning(f"SEARCH ERROR - {strategy.label} page {api_page}: {e}")
                break

            total_available = max(total_available, listing.total)
            strategy_has_more = has_more = listing.has_more

            survivors = select_candidates(listing.candidates, seen_ids, min_duration_seconds)
            logging.info(
                f"PAGE - {strategy.label} #{api_page}: {len(listing.candidates)} videos, "
                f"{len(survivors)} long enough, {listing.total} available"
            )
            await enrich_into(survivors, results, min_results, sem)
            api_page += 1

    if mode == StrategyMode.API_WITH_SCRAPE_FALLBACK and len(results) < min_results:
        logging.info(f"FALLBACK - Scraping search pages for '{query}'")
        await scrape_into(query, page, seen_ids, results, min_results, min_duration_seconds)

    results.sort(key=lambda r: r.duration_seconds, reverse=True)
    logging.info(f"RESULTS - {len(results)} long videos for '{query}'")

    return SearchResult(
        videos=results,
        total_count=total_available,
        has_next_page=has_more or len(results) >= min_results,
        page=page,
    )
