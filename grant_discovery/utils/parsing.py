"""
HTML and feed parsing utilities for the Grant Discovery engine.

This module turns raw payloads into plain text, page titles, anchor lists
and feed entries. Every function is lenient: malformed markup degrades to
partial output, never to an exception.
"""

import html as html_lib
import logging
import re
from typing import Dict, List, Tuple, Union

import feedparser
from bs4 import BeautifulSoup, Comment

# Configure logger
logger = logging.getLogger("parsing")

# Elements whose content is never part of the page's readable text
BOILERPLATE_TAGS = ['script', 'style', 'nav', 'header', 'footer', 'noscript']

_BOILERPLATE_BLOCK_RE = re.compile(
    r'<(script|style|nav|header|footer|noscript)\b[^>]*>.*?</\1\s*>',
    re.IGNORECASE | re.DOTALL,
)
_COMMENT_RE = re.compile(r'<!--.*?-->', re.DOTALL)
_TAG_RE = re.compile(r'<[^>]+>')
_WHITESPACE_RE = re.compile(r'\s+')


def _decode(payload: Union[str, bytes, None]) -> str:
    if payload is None:
        return ""
    if isinstance(payload, bytes):
        return payload.decode('utf-8', errors='replace')
    return payload


def _strip_tags_fallback(markup: str) -> str:
    """Regex tag strip used when BeautifulSoup cannot handle the payload."""
    text = _COMMENT_RE.sub(' ', markup)
    text = _BOILERPLATE_BLOCK_RE.sub(' ', text)
    text = _TAG_RE.sub(' ', text)
    text = html_lib.unescape(text)
    return _WHITESPACE_RE.sub(' ', text).strip()


def extract_text_content(payload: Union[str, bytes, None]) -> str:
    """
    Extract readable text from an HTML payload.

    Script, style, navigation, header, footer and noscript blocks are removed
    together with comments; tags are stripped, entities decoded and whitespace
    collapsed to single spaces.

    Args:
        payload: HTML as str or bytes (bytes are decoded as UTF-8 with replacement)

    Returns:
        str: Plain text, possibly empty
    """
    markup = _decode(payload)
    if not markup.strip():
        return ""

    try:
        soup = BeautifulSoup(markup, 'html.parser')

        for element in soup.find_all(BOILERPLATE_TAGS):
            element.decompose()

        for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
            comment.extract()

        text = soup.get_text(' ', strip=True)
        return _WHITESPACE_RE.sub(' ', text).strip()

    except Exception as e:
        logger.warning(f"HTML parser failed, falling back to tag strip: {str(e)}")
        return _strip_tags_fallback(markup)


def extract_page_title(html: Union[str, bytes], fallback: str = "") -> str:
    """Title of a page: first h1, then og:title, then <title>."""
    markup = _decode(html)
    if not markup.strip():
        return fallback

    try:
        soup = BeautifulSoup(markup, 'html.parser')

        h1 = soup.find('h1')
        if h1 and h1.get_text(strip=True):
            return _WHITESPACE_RE.sub(' ', h1.get_text(' ', strip=True))

        og_title = soup.find('meta', attrs={'property': 'og:title'})
        if og_title and og_title.get('content', '').strip():
            return og_title['content'].strip()

        title_tag = soup.find('title')
        if title_tag and title_tag.get_text(strip=True):
            return _WHITESPACE_RE.sub(' ', title_tag.get_text(' ', strip=True))

    except Exception as e:
        logger.warning(f"Error extracting page title: {str(e)}")

    return fallback


def extract_anchors(html: Union[str, bytes]) -> List[Tuple[str, str]]:
    """
    Extract (href, anchor text) pairs from HTML content.

    Hrefs are returned as written in the page; resolution against the page
    URL is left to the link classifier.
    """
    markup = _decode(html)
    if not markup.strip():
        return []

    try:
        soup = BeautifulSoup(markup, 'html.parser')
        anchors = []

        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href:
                continue
            text = _WHITESPACE_RE.sub(' ', link.get_text(' ', strip=True))
            if not text:
                # Image links and icon buttons often only carry a title/aria-label
                text = (link.get('title') or link.get('aria-label') or '').strip()
            anchors.append((href, text))

        return anchors

    except Exception as e:
        logger.error(f"Error extracting links: {str(e)}")
        return []


def parse_feed(content: Union[str, bytes]) -> List[Dict[str, str]]:
    """
    Parse RSS or Atom feed content.

    Args:
        content: Feed XML

    Returns:
        List[Dict[str, str]]: Entries with title, link, description and published keys.
        HTML inside descriptions is reduced to plain text.
    """
    if not content:
        return []

    try:
        feed = feedparser.parse(content)
    except Exception as e:
        logger.error(f"Error parsing feed: {str(e)}")
        return []

    if feed.bozo and not feed.entries:
        logger.warning(f"Feed could not be parsed: {feed.get('bozo_exception')}")
        return []

    items = []
    for entry in feed.entries:
        description = entry.get('summary', '') or entry.get('description', '')
        if not description and entry.get('content'):
            description = entry.content[0].get('value', '')

        items.append({
            'title': extract_text_content(entry.get('title', '')),
            'link': entry.get('link', '').strip(),
            'description': extract_text_content(description),
            'published': entry.get('published', ''),
        })

    return items
