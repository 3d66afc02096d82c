"""Shared fixtures for the grant discovery tests."""

from datetime import date

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from grant_discovery.models import DiscoveryConfig, KeywordTaxonomy, Source
from grant_discovery.storage import JsonFileStore
from grant_discovery.utils.crawler import SourceCrawler
from grant_discovery.utils.scoring import KeywordRelevanceScorer

TEST_TAXONOMY = {
    "exact": {"weight": 5, "terms": ["cacao ceremony", "ceremonial cacao"]},
    "core": {"weight": 3, "terms": ["cacao", "ritual"]},
    "indigenous": {"weight": 3, "terms": ["indigenous"]},
    "cultural": {"weight": 2, "terms": ["cultural heritage"]},
    "geographic": {"weight": 1, "terms": ["peru"]},
    "exclude": {"weight": -5, "terms": ["applications closed", "mining"]},
}

TODAY = date(2026, 1, 15)


@pytest.fixture
def taxonomy():
    return KeywordTaxonomy.from_config(
        TEST_TAXONOMY,
        primary=["exact", "core", "indigenous"],
        secondary=["cultural", "geographic"],
    )


@pytest.fixture
def scorer(taxonomy):
    return KeywordRelevanceScorer(taxonomy, min_score=2, today=TODAY)


@pytest.fixture
def run_config():
    return DiscoveryConfig(
        max_sources=50,
        max_candidates_per_source=30,
        concurrency=2,
        timeout_seconds=5,
        min_relevance_score=3,
        batch_delay_seconds=0,
        run_timeout_seconds=300,
        deep_scrape_limit=0,
    )


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "data")


@pytest.fixture
def make_source():
    def _make(source_id="test-source", **overrides):
        values = {
            "id": source_id,
            "name": f"Source {source_id}",
            "region": "int",
            "type": "scrape",
            "pages": [f"https://{source_id}.example.org/funding"],
        }
        values.update(overrides)
        return Source(**values)
    return _make


@pytest_asyncio.fixture
async def serve():
    """Start an in-process HTTP server from a {path: handler} mapping; returns its base URL."""
    servers = []

    async def _serve(routes):
        app = web.Application()
        for path, handler in routes.items():
            app.router.add_route("*", path, handler)
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return str(server.make_url("")).rstrip("/")

    yield _serve

    for server in servers:
        await server.close()


@pytest_asyncio.fixture
async def crawler(taxonomy):
    crawler = SourceCrawler(
        taxonomy,
        timeout=2,
        max_redirects=5,
        max_retry_attempts=1,
        page_delay=0,
        user_agent="GrantDiscoveryTest/1.0",
    )
    yield crawler
    await crawler.close()
