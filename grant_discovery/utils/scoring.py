"""
Relevance scoring for the Grant Discovery engine.

Two interchangeable scorers share the RelevanceScorer interface: a keyword
scorer that weighs taxonomy matches plus amount and deadline bonuses, and a
model-backed scorer that asks a hosted language model for the same result.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional

import aiohttp
from dateutil import parser as date_parser

from grant_discovery.config import MODEL_API_CONFIG, ORGANIZATION_PROFILE, RELEVANCE_CONFIG
from grant_discovery.models import ExtractedFields, KeywordTaxonomy, RelevanceResult

# Configure logger
logger = logging.getLogger("scoring")

_AMOUNT_RE = re.compile(
    r'(\d[\d,.]*)\s?(k|m|mln|million|miljoen|thousand|duizend)?\b',
    re.IGNORECASE,
)
_MAGNITUDES = {
    'k': 1_000, 'thousand': 1_000, 'duizend': 1_000,
    'm': 1_000_000, 'mln': 1_000_000, 'million': 1_000_000, 'miljoen': 1_000_000,
}
_DUTCH_MONTHS = {
    'januari': 'January', 'februari': 'February', 'maart': 'March', 'mei': 'May',
    'juni': 'June', 'juli': 'July', 'augustus': 'August', 'oktober': 'October', 'okt': 'Oct',
}
_ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def _normalize_number(raw: str) -> Optional[float]:
    raw = raw.rstrip('.,')
    if not raw:
        return None
    if re.fullmatch(r'\d{1,3}(?:[,.]\d{3})+', raw):
        # 50,000 / 50.000 / 1,250,000
        digits = re.sub(r'[,.]', '', raw)
    elif ',' in raw and '.' in raw:
        # The later separator is the decimal point
        decimal = ',' if raw.rfind(',') > raw.rfind('.') else '.'
        thousands = '.' if decimal == ',' else ','
        digits = raw.replace(thousands, '').replace(decimal, '.')
    else:
        digits = raw.replace(',', '.')
        if digits.count('.') > 1:
            digits = digits.replace('.', '')
    try:
        return float(digits)
    except ValueError:
        return None


def parse_amount_value(amount: Optional[str]) -> float:
    """
    Numeric value of an amount string: the largest number it contains.

    Thousands separators are dropped and K/M/million/thousand magnitudes
    applied, so "€10K - €1.5 million" parses to 1500000.0. Strings without
    digits parse to 0.0.
    """
    if not amount:
        return 0.0

    largest = 0.0
    for match in _AMOUNT_RE.finditer(amount):
        value = _normalize_number(match.group(1))
        if value is None:
            continue
        if magnitude := match.group(2):
            value *= _MAGNITUDES[magnitude.lower()]
        largest = max(largest, value)
    return largest


def parse_deadline(deadline: Optional[str]) -> Optional[date]:
    """Parse an extracted deadline string. Rolling or unreadable deadlines give None."""
    if not deadline or deadline.strip().lower() == "rolling":
        return None

    text = deadline.strip()
    try:
        if _ISO_DATE_RE.match(text):
            return date.fromisoformat(text)

        text = re.sub(r'(\d)(?:st|nd|rd|th|e)\b', r'\1', text, flags=re.IGNORECASE)
        for dutch, english in _DUTCH_MONTHS.items():
            text = re.sub(rf'\b{dutch}\b', english, text, flags=re.IGNORECASE)
        return date_parser.parse(text, dayfirst=True, fuzzy=True).date()
    except (ValueError, OverflowError) as e:
        logger.debug(f"Unparseable deadline '{deadline}': {str(e)}")
        return None


def days_until(deadline: Optional[str], today: Optional[date] = None) -> Optional[int]:
    """Days from today until the deadline, or None when there is no usable date."""
    parsed = parse_deadline(deadline)
    if parsed is None:
        return None
    return (parsed - (today or date.today())).days


class RelevanceScorer(ABC):
    """Scores a text corpus against the organisation's interests."""

    min_score: float = 0.0

    @abstractmethod
    async def evaluate(self, text: str, fields: Optional[ExtractedFields] = None) -> RelevanceResult:
        """Score the text. Implementations never raise; the worst case is a score of 0."""

    async def close(self) -> None:
        """Release any resources held by the scorer."""


class KeywordRelevanceScorer(RelevanceScorer):
    """Weighted keyword taxonomy scorer with amount and deadline bonuses."""

    def __init__(
        self,
        taxonomy: KeywordTaxonomy,
        min_score: float,
        relevance_config: Optional[Dict[str, Any]] = None,
        today: Optional[date] = None,
    ):
        self.taxonomy = taxonomy
        self.min_score = min_score
        config = relevance_config or RELEVANCE_CONFIG
        self.amount_tiers = sorted(
            config["amount_bonus"].values(), key=lambda tier: tier["above"], reverse=True
        )
        self.deadline_tiers = sorted(
            config["deadline_bonus"].values(), key=lambda tier: tier["within_days"]
        )
        self.today = today

    def amount_bonus(self, amount: Optional[str]) -> float:
        value = parse_amount_value(amount)
        if value <= 0:
            return 0.0
        for tier in self.amount_tiers:
            if value > tier["above"]:
                return tier["points"]
        return 0.0

    def deadline_bonus(self, deadline: Optional[str]) -> float:
        days = days_until(deadline, self.today)
        if days is None or days <= 0:
            return 0.0
        for tier in self.deadline_tiers:
            if days < tier["within_days"]:
                return tier["points"]
        return 0.0

    def score(self, text: str, fields: Optional[ExtractedFields] = None) -> RelevanceResult:
        """Score a corpus. Term presence counts, not frequency."""
        corpus = (text or "").lower()
        total = 0.0
        matched_terms: Dict[str, List[str]] = {}

        for name, category in self.taxonomy.categories.items():
            matched = [term for term in dict.fromkeys(category.terms) if term.lower() in corpus]
            if matched:
                matched_terms[name] = matched
                total += category.weight * len(matched)

        if fields is not None:
            total += self.amount_bonus(fields.amount)
            total += self.deadline_bonus(fields.deadline)

        score = max(0.0, total)
        return RelevanceResult(
            score=score,
            matched_terms=matched_terms,
            is_relevant=score >= self.min_score,
        )

    async def evaluate(self, text: str, fields: Optional[ExtractedFields] = None) -> RelevanceResult:
        return self.score(text, fields)


class ModelRelevanceScorer(RelevanceScorer):
    """
    Delegates relevance scoring to a hosted language model.

    The model receives the page text and the organisation profile and answers
    with JSON {"score": 0-10, "matched_terms": {...}}. Transport and parse
    failures are logged and score 0.
    """

    def __init__(
        self,
        min_score: float,
        api_key: Optional[str] = None,
        model_config: Optional[Dict[str, Any]] = None,
        profile: str = ORGANIZATION_PROFILE,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        config = model_config or MODEL_API_CONFIG
        self.min_score = min_score
        self.api_key = api_key or config["api_key"]
        self.api_url = config["api_url"]
        self.api_version = config["api_version"]
        self.model = config["model"]
        self.max_tokens = config["max_tokens"]
        self.temperature = config["temperature"]
        self.max_input_chars = config["max_input_chars"]
        self.timeout = config["timeout"]
        self.profile = profile
        self._session = session
        self._owns_session = session is None

    def _build_prompt(self, text: str, fields: Optional[ExtractedFields]) -> str:
        if len(text) > self.max_input_chars:
            text = text[:self.max_input_chars] + "...[content truncated]"

        known_fields = fields.model_dump() if fields else {}
        return f"""
        You review grant opportunities for the organisation described below and
        rate how relevant a funding opportunity is to it.

        ORGANISATION:
        {self.profile.strip()}

        FIELDS ALREADY EXTRACTED:
        {json.dumps(known_fields)}

        OPPORTUNITY TEXT:
        ```
        {text}
        ```

        Reply with a JSON object with two keys: "score", a number from 0 to 10,
        and "matched_terms", an object mapping a topic name to the list of
        phrases from the text that made you score it. Only return the JSON.
        """

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def _call_model_api(self, prompt: str) -> str:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [
                {"role": "user", "content": prompt}
            ],
        }

        session = await self._get_session()
        async with session.post(self.api_url, headers=headers, json=payload) as response:
            if response.status == 200:
                data = await response.json()
                return data["content"][0]["text"]
            error_data = await response.text()
            raise aiohttp.ClientResponseError(
                response.request_info,
                response.history,
                status=response.status,
                message=error_data[:200],
            )

    @staticmethod
    def parse_response(response: str) -> Dict[str, Any]:
        """Pull the JSON object out of a model answer, fenced or bare."""
        json_match = re.search(r'```(?:json)?\s*(.*?)\s*```', response, re.DOTALL)
        if json_match:
            json_str = json_match.group(1)
        else:
            start, end = response.find('{'), response.rfind('}')
            json_str = response[start:end + 1] if start != -1 and end > start else response.strip()
        return json.loads(json_str)

    async def evaluate(self, text: str, fields: Optional[ExtractedFields] = None) -> RelevanceResult:
        if not self.api_key:
            logger.warning("Model API key not configured. Scoring as 0.")
            return RelevanceResult(score=0.0, is_relevant=self.min_score <= 0)

        try:
            response = await self._call_model_api(self._build_prompt(text or "", fields))
            answer = self.parse_response(response)
            score = max(0.0, float(answer.get("score", 0)))
            matched_terms = {
                str(topic): [str(term) for term in terms]
                for topic, terms in (answer.get("matched_terms") or {}).items()
                if isinstance(terms, list)
            }
        except Exception as e:
            logger.warning(f"Model scoring failed: {type(e).__name__}: {str(e)}")
            return RelevanceResult(score=0.0, is_relevant=self.min_score <= 0)

        return RelevanceResult(
            score=score,
            matched_terms=matched_terms,
            is_relevant=score >= self.min_score,
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
