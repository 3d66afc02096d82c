"""
Link classification for the Grant Discovery engine.

Ranks the outbound links of a funder's page by how likely they are to point
at an actual grant or application page rather than site navigation.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urldefrag, urljoin, urlparse

from grant_discovery.config import LINK_CLASSIFIER_CONFIG, RELEVANCE_CONFIG, URL_BLOCKLIST
from grant_discovery.models import ClassifiedLink, KeywordTaxonomy

# Configure logger
logger = logging.getLogger("links")


def _contains_any(haystack: str, needles: Iterable[str]) -> bool:
    return any(needle in haystack for needle in needles)


class LinkClassifier:
    """Scores (href, anchor text) pairs found on one page."""

    def __init__(
        self,
        taxonomy: KeywordTaxonomy,
        config: Optional[Dict[str, Any]] = None,
        blocklist: Optional[List[str]] = None,
    ):
        self.config = config or LINK_CLASSIFIER_CONFIG
        self.blocklist = URL_BLOCKLIST if blocklist is None else blocklist

        self.primary_terms = [t.lower() for t in taxonomy.terms_for(taxonomy.primary)]
        secondary_limit = RELEVANCE_CONFIG["secondary_link_terms"]
        self.secondary_terms = [t.lower() for t in taxonomy.terms_for(taxonomy.secondary)][:secondary_limit]

        self.application_phrases = [p.lower() for p in self.config["application_phrases"]]
        self.grant_vocabulary = [w.lower() for w in self.config["grant_vocabulary"]]
        self.generic_texts = {t.lower() for t in self.config["generic_texts"]}
        self.boilerplate_re = re.compile(
            r'\b(?:' + '|'.join(re.escape(k) for k in self.config["boilerplate_keywords"]) + r')\b',
            re.IGNORECASE,
        )
        self.grant_url_re = re.compile(self.config["grant_url_pattern"], re.IGNORECASE)

    def resolve(self, href: str, page_url: str) -> Optional[str]:
        """Absolute http(s) URL for an href, or None if it cannot be followed."""
        try:
            absolute, _fragment = urldefrag(urljoin(page_url, href.strip()))
            parsed = urlparse(absolute)
        except ValueError as e:
            logger.debug(f"Unresolvable link {href!r} on {page_url}: {str(e)}")
            return None

        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None
        if _contains_any(absolute.lower(), self.blocklist):
            return None
        return absolute

    def is_boilerplate(self, url: str, text: str) -> bool:
        return bool(self.boilerplate_re.search(f"{url} {text}"))

    def score_link(self, url: str, text: str) -> float:
        """Additive score for one resolved link."""
        cfg = self.config
        combined = f"{url} {text}".lower()
        text_lower = text.lower().strip()
        score = 0.0

        if _contains_any(combined, self.application_phrases):
            score += cfg["application_points"]
        if _contains_any(combined, self.grant_vocabulary):
            score += cfg["grant_points"]
        if _contains_any(combined, self.primary_terms):
            score += cfg["primary_points"]
        if _contains_any(combined, self.secondary_terms):
            score += cfg["secondary_points"]
        if self.grant_url_re.search(urlparse(url).path):
            score += cfg["grant_url_points"]
        if text_lower in self.generic_texts:
            score += cfg["generic_text_penalty"]
        if len(text_lower) < cfg["short_text_length"]:
            score += cfg["short_text_penalty"]

        return score

    def classify(self, anchors: List[Tuple[str, str]], page_url: str) -> List[ClassifiedLink]:
        """
        Rank the anchors of a page.

        Args:
            anchors: (href, anchor text) pairs as found in the page
            page_url: URL the page was fetched from, used to resolve relative hrefs

        Returns:
            List[ClassifiedLink]: Positive-scoring links, one per absolute URL,
            highest score first
        """
        cfg = self.config
        page_key = urldefrag(page_url)[0].rstrip('/')
        best: Dict[str, ClassifiedLink] = {}

        for href, text in anchors:
            text = re.sub(r'\s+', ' ', text or '').strip()
            if not cfg["min_text_length"] <= len(text) <= cfg["max_text_length"]:
                continue

            url = self.resolve(href, page_url)
            if url is None or url.rstrip('/') == page_key:
                continue

            if self.is_boilerplate(url, text):
                logger.debug(f"Skipping boilerplate link: {text} ({url})")
                continue

            score = self.score_link(url, text)
            if score <= 0:
                continue

            if url not in best or best[url].score < score:
                best[url] = ClassifiedLink(url=url, text=text, score=score)

        return sorted(best.values(), key=lambda link: link.score, reverse=True)
