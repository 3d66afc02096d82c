"""
Field extraction for the Grant Discovery engine.

Deadlines, amounts, eligibility text and closed status are pulled out of
plain page text with ordered cascades of matcher functions. Each matcher
takes the text and returns the matched string or None; the first hit wins.
"""

import logging
import re
from typing import Callable, List, Optional

from grant_discovery.models import ExtractedFields

# Configure logger
logger = logging.getLogger("analyzer")

Matcher = Callable[[str], Optional[str]]

# Texts longer than this are only scanned up to the limit
MAX_SCAN_CHARS = 500_000
ELIGIBILITY_MAX_CHARS = 500
ROLLING = "rolling"

# Date building blocks (English and Dutch month names)
_MONTH = (
    r'(?:jan(?:uary|uari)?|feb(?:ruary|ruari)?|mar(?:ch)?|maart|apr(?:il)?|may|mei|'
    r'jun(?:e|i)?|jul(?:y|i)?|aug(?:ust|ustus)?|sep(?:t(?:ember)?)?|oct(?:ober)?|'
    r'okt(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?'
)
_ORDINAL = r'(?:st|nd|rd|th|e)?'
_DAY_MONTH_YEAR = rf'\d{{1,2}}{_ORDINAL}\s+{_MONTH},?\s+\d{{4}}'
_MONTH_DAY_YEAR = rf'{_MONTH}\s+\d{{1,2}}{_ORDINAL},?\s+\d{{4}}'
_ISO_DATE = r'\d{4}-\d{2}-\d{2}'
_NUMERIC_DATE = r'\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}'
_ANY_DATE = rf'(?:{_ISO_DATE}|{_DAY_MONTH_YEAR}|{_MONTH_DAY_YEAR}|{_NUMERIC_DATE})'

_DEADLINE_LABEL = (
    r'(?:deadline|closing\s+date|closes(?:\s+on)?|due(?:\s+(?:by|on))?|due\s+date|'
    r'applications?\s+(?:close|closes|due)(?:\s+on)?|submit\s+(?:by|before)|'
    r'apply\s+before|open\s+until|sluitingsdatum|deadline\s+aanvragen|uiterlijk)'
)

# Amount building blocks
_CURRENCY = r'(?:AU\$|A\$|US\$|€|\$|£|EUR\s?|USD\s?|AUD\s?|GBP\s?)'
_NUMBER = r'(?:\d{1,3}(?:[,.]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d+)?)'
_MAGNITUDE_WORD = r'(?:k|m|mln|million|miljoen|thousand|duizend)\b'
_MAGNITUDE = rf'(?:\s?{_MAGNITUDE_WORD})?'
_CURRENCY_AMOUNT = rf'{_CURRENCY}\s?{_NUMBER}{_MAGNITUDE}'
# Upper end of a range must read as money on its own, not a bare count
_RANGE_UPPER = (
    rf'(?:{_CURRENCY_AMOUNT}'
    rf'|\d{{1,3}}(?:[,.]\d{{3}})+(?:[.,]\d{{1,2}})?{_MAGNITUDE}'
    rf'|{_NUMBER}\s?{_MAGNITUDE_WORD})'
)


def _regex_matcher(pattern: str, group: int = 1, flags: int = re.IGNORECASE) -> Matcher:
    """Build a matcher returning a regex group of the first match."""
    compiled = re.compile(pattern, flags)

    def matcher(text: str) -> Optional[str]:
        if match := compiled.search(text):
            value = match.group(group)
            return re.sub(r'\s+', ' ', value).strip() if value else None
        return None

    matcher.pattern = compiled
    return matcher


def _constant_matcher(pattern: str, value: str) -> Matcher:
    """Build a matcher returning a fixed value when the pattern is found."""
    compiled = re.compile(pattern, re.IGNORECASE)

    def matcher(text: str) -> Optional[str]:
        return value if compiled.search(text) else None

    matcher.pattern = compiled
    return matcher


def first_match(matchers: List[Matcher], text: str) -> Optional[str]:
    """Run a matcher cascade and return the first hit."""
    if not text:
        return None
    window = text[:MAX_SCAN_CHARS]
    for matcher in matchers:
        try:
            if value := matcher(window):
                return value
        except Exception as e:
            logger.debug(f"Matcher {getattr(matcher, '__name__', matcher)} failed: {str(e)}")
    return None


# Deadline
match_labelled_deadline = _regex_matcher(rf'\b{_DEADLINE_LABEL}\s*[:\-]?\s*(?:is\s+|on\s+|by\s+)?({_ANY_DATE})')
match_day_month_year = _regex_matcher(rf'\b({_DAY_MONTH_YEAR})')
match_month_day_year = _regex_matcher(rf'\b({_MONTH_DAY_YEAR})')
match_iso_date = _regex_matcher(rf'\b({_ISO_DATE})\b')
match_numeric_date = _regex_matcher(rf'\b({_NUMERIC_DATE})\b')
match_rolling_deadline = _constant_matcher(
    r'\brolling\s+(?:basis|deadlines?|applications?|intake)\b'
    r'|\bdeadline\s*:?\s*(?:rolling|ongoing|none|n/a)\b'
    r'|\bno\s+(?:fixed\s+|application\s+)?deadline\b'
    r'|\bopen\s+(?:all\s+)?year[\s-]round\b'
    r'|\baccepted\s+(?:at\s+any\s+time|year[\s-]round|on\s+an?\s+(?:rolling|ongoing)\s+basis)\b'
    r'|\bongoing\s+(?:basis|applications?|call)\b'
    r'|\bdoorlopend\b',
    ROLLING,
)

DEADLINE_MATCHERS: List[Matcher] = [
    match_labelled_deadline,
    match_day_month_year,
    match_month_day_year,
    match_iso_date,
    match_numeric_date,
    match_rolling_deadline,
]

# Amount
match_amount_range = _regex_matcher(
    rf'({_CURRENCY_AMOUNT}\s*(?:-|–|to|tot)\s*{_RANGE_UPPER})'
)
match_amount_up_to = _regex_matcher(
    rf'((?:up\s+to|maximum(?:\s+of)?|max\.?|tot\s+(?:maximaal\s+)?|maximaal)\s*{_CURRENCY_AMOUNT})'
)
match_currency_amount = _regex_matcher(rf'({_CURRENCY_AMOUNT})')
match_amount_with_code = _regex_matcher(
    rf'\b({_NUMBER}{_MAGNITUDE}\s*(?:EUR|USD|AUD|GBP|euros?|dollars?))\b'
)

AMOUNT_MATCHERS: List[Matcher] = [
    match_amount_range,
    match_amount_up_to,
    match_currency_amount,
    match_amount_with_code,
]

# Eligibility
_SECTION_BOUNDARY = re.compile(
    r'\n\s*\n|\bdeadlines?\b|\bhow\s+to\s+apply\b|\bclosing\s+date\b|\bhoe\s+aanvragen\b',
    re.IGNORECASE,
)


def _section_matcher(heading: str) -> Matcher:
    """Build a matcher capturing the text after a heading up to the next section boundary."""
    compiled = re.compile(heading, re.IGNORECASE)

    def matcher(text: str) -> Optional[str]:
        match = compiled.search(text)
        if not match:
            return None
        tail = text[match.end():match.end() + ELIGIBILITY_MAX_CHARS * 4]
        if boundary := _SECTION_BOUNDARY.search(tail):
            tail = tail[:boundary.start()]
        section = re.sub(r'\s+', ' ', tail).strip(' :-')
        if not section:
            return None
        return section[:ELIGIBILITY_MAX_CHARS].rstrip()

    matcher.pattern = compiled
    return matcher


match_eligibility_heading = _section_matcher(r'\beligib(?:le|ility)\b[^.:\n]{0,80}[.:]')
match_who_can_apply = _section_matcher(r'\bwho\s+(?:can|may|should)\s+apply\b\??\s*:?')
match_dutch_eligibility = _section_matcher(r'\bwie\s+kan\s+(?:aanvragen|een\s+aanvraag\s+doen)\b\??\s*:?')

ELIGIBILITY_MATCHERS: List[Matcher] = [
    match_eligibility_heading,
    match_who_can_apply,
    match_dutch_eligibility,
]

# Closed status
CLOSED_PATTERNS = [
    re.compile(r'\bapplications?\s+(?:are\s+|is\s+)?(?:now\s+)?closed\b', re.IGNORECASE),
    re.compile(r'\bno\s+longer\s+accepting\b', re.IGNORECASE),
    re.compile(r'\bfunding\s+round\s+(?:has\s+)?closed\b', re.IGNORECASE),
    re.compile(r'\bprogram(?:me)?\s+(?:has\s+)?ended\b', re.IGNORECASE),
    re.compile(r'\bcall\s+(?:is\s+|has\s+)?(?:now\s+)?closed\b', re.IGNORECASE),
    re.compile(r'\b(?:aanvragen|inschrijving)\s+(?:is\s+)?gesloten\b', re.IGNORECASE),
]


def extract_deadline(text: str) -> Optional[str]:
    """Deadline as written on the page, "rolling", or None."""
    return first_match(DEADLINE_MATCHERS, text)


def extract_amount(text: str) -> Optional[str]:
    """First monetary amount found, as a display string."""
    return first_match(AMOUNT_MATCHERS, text)


def extract_eligibility(text: str) -> Optional[str]:
    return first_match(ELIGIBILITY_MATCHERS, text)


def check_closed(text: str) -> bool:
    """True when the text says the application window is shut."""
    if not text:
        return False
    window = text[:MAX_SCAN_CHARS]
    return any(pattern.search(window) for pattern in CLOSED_PATTERNS)


def extract_description(text: str, max_sentences: int = 3) -> Optional[str]:
    """First few sentences of a reasonable length, joined."""
    if not text:
        return None
    sentences = re.split(r'(?<=[.!?])\s+', text[:MAX_SCAN_CHARS // 10])
    picked = [s.strip() for s in sentences if 50 <= len(s.strip()) <= 500][:max_sentences]
    return ' '.join(picked) if picked else None


def extract_fields(text: str) -> ExtractedFields:
    """Run all field extractors over a text corpus."""
    if not isinstance(text, str):
        text = str(text or "")
    return ExtractedFields(
        deadline=extract_deadline(text),
        amount=extract_amount(text),
        eligibility=extract_eligibility(text),
        is_closed=check_closed(text),
    )
