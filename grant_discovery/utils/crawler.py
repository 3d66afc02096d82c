"""
Source crawler for the Grant Discovery engine.

Fetches one configured source at a time (HTML pages, RSS/Atom feeds or JSON
APIs) with a retrying aiohttp client, and turns every payload into the same
SourceItem shape. Fetch failures come back as tagged results; nothing raised
by the network layer escapes past the caller.
"""

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

import aiohttp
from aiohttp import ClientTimeout
from aiohttp_retry import ExponentialRetry, RetryClient

from grant_discovery.config import CRAWLER_CONFIG, URL_BLOCKLIST, USER_AGENTS
from grant_discovery.exceptions import ParseError
from grant_discovery.models import (
    FetchResult, KeywordTaxonomy, PageDetails, Source, SourceError, SourceItem, SourceResult
)
from grant_discovery.utils.analyzer import extract_description, extract_fields
from grant_discovery.utils.links import LinkClassifier
from grant_discovery.utils.parsing import (
    extract_anchors, extract_page_title, extract_text_content, parse_feed
)

# Configure logger
logger = logging.getLogger("crawler")

# Content types that never carry grant text
_BINARY_CONTENT_RE = re.compile(r'^(?:image|audio|video)/|application/(?:pdf|zip|octet-stream)', re.IGNORECASE)

# Keys under which JSON APIs commonly return their result list
_API_LIST_KEYS = ("items", "results", "data")


class SourceCrawler:
    """Fetches sources with timeout, retry and redirect limits."""

    def __init__(
        self,
        taxonomy: KeywordTaxonomy,
        timeout: float = CRAWLER_CONFIG["timeout"],
        max_redirects: int = CRAWLER_CONFIG["max_redirects"],
        max_retry_attempts: int = CRAWLER_CONFIG["max_retry_attempts"],
        page_delay: float = CRAWLER_CONFIG["page_delay"],
        verify_ssl: bool = CRAWLER_CONFIG["verify_ssl"],
        user_agent: Optional[str] = None,
        link_classifier: Optional[LinkClassifier] = None,
    ):
        """Initialize the crawler."""
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.max_retry_attempts = max_retry_attempts
        self.page_delay = page_delay
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.link_classifier = link_classifier or LinkClassifier(taxonomy)
        self._client: Optional[RetryClient] = None

    async def __aenter__(self) -> "SourceCrawler":
        await self.get_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_user_agent(self) -> str:
        """Configured user agent, or a random one from the rotation list."""
        return self.user_agent or random.choice(USER_AGENTS)

    def _is_valid_url(self, url: str) -> bool:
        """Check if a URL may be fetched."""
        if not url or not url.startswith(('http://', 'https://')):
            return False
        return not any(blocked in url for blocked in URL_BLOCKLIST)

    async def get_session(self) -> RetryClient:
        """Create (once) an aiohttp session with retry capability."""
        if self._client is not None:
            return self._client

        retry_options = ExponentialRetry(
            attempts=self.max_retry_attempts,
            start_timeout=CRAWLER_CONFIG["retry_start_timeout"],
            max_timeout=CRAWLER_CONFIG["retry_max_timeout"],
            factor=2.0,
            statuses=CRAWLER_CONFIG["retry_statuses"],
            exceptions={aiohttp.ClientConnectionError, asyncio.TimeoutError},
        )

        connector = aiohttp.TCPConnector(ssl=self.verify_ssl)
        session = aiohttp.ClientSession(
            connector=connector,
            timeout=ClientTimeout(total=self.timeout),
            headers={
                'Accept': CRAWLER_CONFIG["accept_header"],
                'Accept-Language': CRAWLER_CONFIG["accept_language"],
            },
        )

        self._client = RetryClient(client_session=session, retry_options=retry_options)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL.

        Returns:
            FetchResult: ok with the decoded body on a 2xx response, otherwise
            ok=False with the status (if any) and an error message
        """
        if not self._is_valid_url(url):
            return FetchResult(url=url, ok=False, error="Invalid or blocked URL")

        client = await self.get_session()
        try:
            async with client.get(
                url,
                headers={'User-Agent': self._get_user_agent()},
                allow_redirects=True,
                max_redirects=self.max_redirects,
            ) as response:
                content_type = response.headers.get('Content-Type', '')

                if not 200 <= response.status < 300:
                    return FetchResult(
                        url=url, ok=False, status=response.status,
                        content_type=content_type, error=f"HTTP {response.status}",
                    )

                if _BINARY_CONTENT_RE.search(content_type):
                    return FetchResult(
                        url=url, ok=False, status=response.status,
                        content_type=content_type, error=f"Unsupported content type {content_type}",
                    )

                raw = (await response.read())[:CRAWLER_CONFIG["max_content_length"]]
                body = raw.decode(response.charset or 'utf-8', errors='replace')
                return FetchResult(
                    url=url, ok=True, status=response.status,
                    body=body, content_type=content_type,
                )

        except aiohttp.TooManyRedirects:
            return FetchResult(url=url, ok=False, error=f"Too many redirects (limit {self.max_redirects})")
        except asyncio.TimeoutError:
            return FetchResult(url=url, ok=False, error=f"Timeout after {self.timeout}s")
        except (aiohttp.ClientError, LookupError, ValueError) as e:
            return FetchResult(url=url, ok=False, error=f"{type(e).__name__}: {str(e)}")

    def _link_item_text(self, text: str, url: str) -> str:
        """Anchor text plus the words in the URL path."""
        path_words = re.sub(r'[/_\-.]+', ' ', unquote(urlparse(url).path)).strip()
        return f"{text} {path_words}".strip()

    def parse_page(self, source: Source, url: str, body: str) -> List[SourceItem]:
        """Items from one scraped HTML page: classified links and/or the page itself."""
        items: List[SourceItem] = []

        if source.strategy in ("links", "both"):
            for link in self.link_classifier.classify(extract_anchors(body), url):
                items.append(SourceItem(
                    title=link.text,
                    url=link.url,
                    source_id=source.id,
                    source_name=source.name,
                    region=source.region,
                    text=self._link_item_text(link.text, link.url),
                    link_score=link.score,
                ))

        if source.strategy in ("page", "both"):
            text = extract_text_content(body)
            if text:
                items.append(SourceItem(
                    title=extract_page_title(body, fallback=source.name),
                    url=url,
                    source_id=source.id,
                    source_name=source.name,
                    region=source.region,
                    text=text,
                ))

        return items

    def parse_feed_items(self, source: Source, body: str) -> List[SourceItem]:
        """One item per RSS item or Atom entry."""
        items = []
        for entry in parse_feed(body):
            if not entry['title'] and not entry['description']:
                continue
            items.append(SourceItem(
                title=entry['title'] or source.name,
                url=entry['link'] or source.feed_url,
                source_id=source.id,
                source_name=source.name,
                region=source.region,
                text=f"{entry['title']} {entry['description']}".strip(),
            ))
        return items

    def parse_api_items(self, source: Source, body: str) -> List[SourceItem]:
        """One item per object in a JSON list response."""
        try:
            payload: Any = json.loads(body)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON from {source.api_url}: {str(e)}") from e

        if isinstance(payload, dict):
            records = next(
                (payload[key] for key in _API_LIST_KEYS if isinstance(payload.get(key), list)),
                None,
            )
        else:
            records = payload
        if not isinstance(records, list):
            raise ParseError(f"No result list in response from {source.api_url}")

        items = []
        for record in records:
            if not isinstance(record, dict):
                continue
            title = str(record.get('title') or record.get('name') or '').strip()
            url = str(record.get('url') or record.get('link') or '').strip()
            if not title or not url:
                continue
            description = extract_text_content(str(record.get('description') or record.get('summary') or ''))
            items.append(SourceItem(
                title=title,
                url=url,
                source_id=source.id,
                source_name=source.name,
                region=source.region,
                text=f"{title} {description}".strip(),
            ))
        return items

    def parse_payload(self, source: Source, url: str, body: str) -> List[SourceItem]:
        if source.type == "rss":
            return self.parse_feed_items(source, body)
        if source.type == "api":
            return self.parse_api_items(source, body)
        return self.parse_page(source, url, body)

    async def crawl_source(self, source: Source) -> SourceResult:
        """
        Crawl every URL of a source.

        The source succeeds if at least one of its URLs was fetched and parsed;
        each failed URL is recorded as an error for the source.
        """
        items: List[SourceItem] = []
        errors: List[SourceError] = []
        pages_fetched = 0

        for index, url in enumerate(source.urls):
            if index and self.page_delay:
                await asyncio.sleep(self.page_delay)

            result = await self.fetch(url)
            if not result.ok:
                logger.warning(f"[{source.id}] Failed to fetch {url}: {result.error}")
                errors.append(SourceError(source_id=source.id, url=url, error=result.error or "Fetch failed"))
                continue

            try:
                page_items = self.parse_payload(source, url, result.body)
            except ParseError as e:
                logger.warning(f"[{source.id}] {str(e)}")
                errors.append(SourceError(source_id=source.id, url=url, error=str(e)))
                continue

            pages_fetched += 1

            logger.debug(f"[{source.id}] {len(page_items)} items from {url}")
            items.extend(page_items)

        return SourceResult(
            source_id=source.id,
            ok=pages_fetched > 0,
            items=items,
            errors=errors,
            pages_fetched=pages_fetched,
        )

    async def fetch_details(self, url: str) -> PageDetails:
        """Fetch a candidate page and extract its text and fields."""
        result = await self.fetch(url)
        if not result.ok:
            return PageDetails(url=url, ok=False, error=result.error)

        text = extract_text_content(result.body)
        return PageDetails(
            url=url,
            title=extract_page_title(result.body) or None,
            text=text,
            description=extract_description(text),
            fields=extract_fields(text),
        )

