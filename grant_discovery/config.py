# config.py
"""Configuration for the Grant Discovery engine."""

import os
from pathlib import Path

# Load dot_env
from dotenv import load_dotenv
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


# Paths
DATA_DIR = Path(os.getenv("GRANT_DISCOVERY_DATA_DIR", Path.cwd() / "data")).resolve()
OUTPUT_DIR = DATA_DIR / "reports"
LOG_DIR = Path(os.getenv("GRANT_DISCOVERY_LOG_DIR", DATA_DIR / "logs")).resolve()

# Crawler settings
CRAWLER_CONFIG = {
    "timeout": 15,                        # Request timeout in seconds
    "max_redirects": 5,                   # Redirect hops before a fetch fails
    "max_retry_attempts": 2,              # Attempts per request (1 = no retry)
    "retry_start_timeout": 0.5,           # First backoff in seconds
    "retry_max_timeout": 4.0,             # Longest backoff in seconds
    "retry_statuses": {500, 502, 503, 504},
    "page_delay": 0.5,                    # Pause between pages of the same source
    "verify_ssl": True,                   # Verify SSL certificates
    "max_content_length": 5 * 1024 * 1024,# Bodies larger than this are truncated
    "accept_header": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json,*/*;q=0.8",
    "accept_language": "en-US,en;q=0.9,nl;q=0.8",
}

# Discovery run settings (each overridable from the environment)
DISCOVERY_CONFIG = {
    "max_sources": _env_int("GRANT_DISCOVERY_MAX_SOURCES", 50),
    "max_candidates_per_source": _env_int("GRANT_DISCOVERY_MAX_PER_SOURCE", 30),
    "max_candidates": _env_int("GRANT_DISCOVERY_MAX_CANDIDATES", 0),   # 0 = no cap
    "concurrency": _env_int("GRANT_DISCOVERY_CONCURRENCY", 3),
    "timeout_seconds": _env_float("GRANT_DISCOVERY_TIMEOUT", CRAWLER_CONFIG["timeout"]),
    "min_relevance_score": _env_float("GRANT_DISCOVERY_MIN_SCORE", 4.0),
    "batch_delay_seconds": _env_float("GRANT_DISCOVERY_BATCH_DELAY", 1.0),
    "run_timeout_seconds": _env_float("GRANT_DISCOVERY_RUN_TIMEOUT", 300.0),
    "deep_scrape_limit": _env_int("GRANT_DISCOVERY_DEEP_SCRAPE", 15),
    "error_warning_threshold": _env_int("GRANT_DISCOVERY_ERROR_WARNING", 10),
}

# Relevance scoring
RELEVANCE_CONFIG = {
    "amount_bonus": {                     # Applied to the largest amount found
        "major": {"above": 200_000, "points": 3.0},
        "large": {"above": 50_000, "points": 2.0},
        "medium": {"above": 10_000, "points": 1.0},
        "small": {"above": 0, "points": 0.5},
    },
    "deadline_bonus": {                   # Days until the deadline
        "urgent": {"within_days": 30, "points": 2.0},
        "soon": {"within_days": 90, "points": 1.0},
    },
    "secondary_link_terms": 10,           # Secondary terms considered by the link classifier
}

# Keyword taxonomy - category -> weight and terms
KEYWORD_TAXONOMY = {
    # Highest priority - exact mission match
    "exact": {
        "weight": 5,
        "terms": ["cacao ceremony", "ceremonial cacao", "sacred cacao", "ashaninka", "cacao ritual"],
    },
    # High priority - core to the mission
    "core": {
        "weight": 3,
        "terms": ["cacao", "sacred", "ceremony", "ceremonial", "ritual", "plant medicine",
                  "shamanic", "psychedelic therapy"],
    },
    # High priority - indigenous focus
    "indigenous": {
        "weight": 3,
        "terms": ["indigenous", "first nations", "aboriginal", "traditional knowledge",
                  "indigenous rights", "native peoples", "tribal", "ancestral knowledge"],
    },
    # Medium-high priority - wellness/healing
    "wellness": {
        "weight": 2.5,
        "terms": ["holistic health", "alternative medicine", "mindfulness", "meditation",
                  "retreats", "healing", "trauma healing", "somatic"],
    },
    # Medium priority - cultural
    "cultural": {
        "weight": 2,
        "terms": ["cultural exchange", "cultural heritage", "intangible heritage", "cultural diplomacy",
                  "cross-cultural", "intercultural", "cultural preservation", "living heritage"],
    },
    # Medium priority - social enterprise
    "social": {
        "weight": 2,
        "terms": ["social enterprise", "social impact", "social innovation", "community wellbeing",
                  "mental health", "wellbeing", "community development", "grassroots"],
    },
    # Medium priority - arts/performance
    "arts": {
        "weight": 2,
        "terms": ["performing arts", "festival", "world music", "traditional music", "sound healing",
                  "creative industries", "cultural sector"],
    },
    # Medium priority - food/agriculture
    "food": {
        "weight": 2,
        "terms": ["specialty food", "artisan food", "organic", "agroforestry", "permaculture",
                  "food heritage", "traditional food", "food innovation"],
    },
    # Lower priority - geographic
    "geographic": {
        "weight": 1,
        "terms": ["peru", "latin america", "amazon", "netherlands", "australia", "european",
                  "andes", "south america", "rainforest"],
    },
    # Lower priority - business
    "business": {
        "weight": 1,
        "terms": ["fair trade", "ethical sourcing", "sustainable", "regenerative", "export",
                  "b-corp", "circular economy", "impact investing"],
    },
    # Negative - signals that the page is not a live, relevant opportunity
    "exclude": {
        "weight": -5,
        "terms": ["application closed", "applications closed", "no longer accepting",
                  "mining", "weapons", "tobacco", "gambling"],
    },
}

# Categories the link classifier treats as primary/secondary interest
PRIMARY_CATEGORIES = ["exact", "core", "indigenous"]
SECONDARY_CATEGORIES = ["wellness", "cultural", "social", "arts", "food"]

# Link classifier
LINK_CLASSIFIER_CONFIG = {
    "application_points": 50,
    "grant_points": 20,
    "primary_points": 30,
    "secondary_points": 15,
    "grant_url_points": 25,
    "generic_text_penalty": -30,
    "short_text_penalty": -10,
    "short_text_length": 15,
    "min_text_length": 3,
    "max_text_length": 300,
    # Phrases that indicate an actual grant application
    "application_phrases": [
        "apply now", "apply here", "apply for", "submit application", "application form",
        "call for", "open call", "funding call", "grant application", "submit by",
        "deadline", "applications open", "now accepting", "request for proposals", "rfp",
        "letter of inquiry", "aanvragen", "aanvraag indienen", "inschrijven",
    ],
    # Vocabulary of a grant/funding page
    "grant_vocabulary": [
        "grant", "funding", "fund", "fellowship", "award", "programme", "program",
        "opportunity", "subsidie", "subsidy", "beurs", "financiering", "prize",
        "scholarship", "residency", "bursary",
    ],
    # Pages that are never grants
    "boilerplate_keywords": [
        "about", "about us", "our team", "contact", "privacy", "cookie", "careers", "jobs",
        "news", "blog", "press", "login", "signup", "sign up", "terms", "disclaimer",
        "over ons", "nieuws", "vacatures",
    ],
    # Link text that says nothing about the target
    "generic_texts": [
        "home", "back", "more", "read more", "learn more", "click here", "here", "next",
        "previous", "lees meer", "meer",
    ],
    "grant_url_pattern": r"/(?:call|grant|funding|program|programme|fellowship|opportunit(?:y|ie)|subsidie|regeling)s?/[^/?#]+",
}

# URL patterns the crawler never follows
URL_BLOCKLIST = [
    "linkedin.com",
    "twitter.com",
    "x.com/",
    "facebook.com",
    "instagram.com",
    "youtube.com",
    "tiktok.com",
    "/login",
    "/signin",
    "/signup",
    "/register",
    "/cart",
    "/checkout",
    "/account",
    "javascript:",
    "mailto:",
    "tel:",
    "whatsapp:",
]

# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]

# Hosted model settings for the model-backed relevance scorer
MODEL_API_CONFIG = {
    "api_key": os.getenv("ANTHROPIC_API_KEY", ""),
    "api_url": os.getenv("GRANT_DISCOVERY_MODEL_URL", "https://api.anthropic.com/v1/messages"),
    "api_version": "2023-06-01",
    "model": os.getenv("GRANT_DISCOVERY_MODEL", "claude-sonnet-4-20250514"),
    "max_tokens": 1000,
    "temperature": 0.0,
    "max_input_chars": 15000,             # Text sent to the model is truncated to this
    "timeout": 60,
}

# Profile sent to the model-backed scorer as context
ORGANIZATION_PROFILE = """
Sacred Foundation imports and processes ceremonial-grade cacao sourced from
Ashaninka communities in Peru. Its work covers food innovation, cultural
exchange between Australia, the Netherlands and Peru, indigenous land rights,
rainforest protection, and ceremonies for community wellbeing.
"""

# Stored items older than this are pruned from the candidate feed
FEED_MAX_AGE_DAYS = 30

# Number of run reports kept in the discovery log
RUN_LOG_LIMIT = 50

# Region display names
REGION_NAMES = {
    "nl": "Netherlands",
    "eu": "EU-wide",
    "au": "Australia",
    "pe": "Peru/LatAm",
    "int": "International",
}

# Grant sources
GRANT_SOURCES = [
    # ============ NETHERLANDS ============
    {
        "id": "fonds-podiumkunsten",
        "name": "Fonds Podiumkunsten",
        "region": "nl",
        "type": "scrape",
        "pages": [
            "https://fondspodiumkunsten.nl/en/funding/",
            "https://fondspodiumkunsten.nl/en/funding/international/",
        ],
    },
    {
        "id": "mondriaan-fund",
        "name": "Mondriaan Fund",
        "region": "nl",
        "type": "scrape",
        "pages": [
            "https://www.mondriaanfonds.nl/en/grants/",
            "https://www.mondriaanfonds.nl/en/grants/cultural-heritage/",
        ],
    },
    {
        "id": "doen-foundation",
        "name": "DOEN Foundation",
        "region": "nl",
        "type": "scrape",
        "pages": [
            "https://www.doen.nl/en/what-we-do",
            "https://www.doen.nl/en/what-we-do/culture-and-cohesion",
        ],
    },
    {
        "id": "stimuleringsfonds",
        "name": "Stimuleringsfonds Creatieve Industrie",
        "region": "nl",
        "type": "scrape",
        "pages": ["https://stimuleringsfonds.nl/en/grants/", "https://stimuleringsfonds.nl/en/grants/open-call/"],
    },
    {
        "id": "cultuurparticipatie",
        "name": "Fonds voor Cultuurparticipatie",
        "region": "nl",
        "type": "scrape",
        "pages": ["https://cultuurparticipatie.nl/subsidies", "https://cultuurparticipatie.nl/regelingen"],
    },
    {
        "id": "prins-bernhard",
        "name": "Prins Bernhard Cultuurfonds",
        "region": "nl",
        "type": "scrape",
        "pages": ["https://www.cultuurfonds.nl/aanvragen", "https://www.cultuurfonds.nl/fondsen"],
    },
    {
        "id": "adessium",
        "name": "Adessium Foundation",
        "region": "nl",
        "type": "scrape",
        "pages": ["https://www.adessium.org/apply/"],
    },
    {
        "id": "nl-subsidies",
        "name": "Netherlands Enterprise Agency (RVO)",
        "region": "nl",
        "type": "scrape",
        "pages": ["https://english.rvo.nl/subsidies-programmes"],
    },
    # ============ EU-WIDE ============
    {
        "id": "creative-europe",
        "name": "Creative Europe",
        "region": "eu",
        "type": "scrape",
        "pages": ["https://culture.ec.europa.eu/funding/creative-europe-calls-for-proposals"],
    },
    {
        "id": "culture-moves-europe",
        "name": "Culture Moves Europe",
        "region": "eu",
        "type": "scrape",
        "pages": ["https://www.culturemoveseurope.eu/"],
    },
    {
        "id": "ecf",
        "name": "European Cultural Foundation",
        "region": "eu",
        "type": "scrape",
        "pages": ["https://culturalfoundation.eu/grants/"],
    },
    {
        "id": "effea",
        "name": "EFFEA - European Festivals Fund",
        "region": "eu",
        "type": "scrape",
        "pages": ["https://www.effea.eu/apply/"],
    },
    {
        "id": "eit-food",
        "name": "EIT Food",
        "region": "eu",
        "type": "scrape",
        "pages": ["https://www.eitfood.eu/funding"],
    },
    {
        "id": "robert-bosch",
        "name": "Robert Bosch Stiftung",
        "region": "eu",
        "type": "scrape",
        "pages": ["https://www.bosch-stiftung.de/en/funding"],
    },
    {
        "id": "eu-funding-portal",
        "name": "EU Funding & Tenders Portal",
        "region": "eu",
        "type": "api",
        "api_url": "https://api.tech.ec.europa.eu/search-api/prod/rest/search",
        "enabled": False,
    },
    # ============ AUSTRALIA ============
    {
        "id": "creative-australia",
        "name": "Creative Australia",
        "region": "au",
        "type": "scrape",
        "pages": ["https://creative.gov.au/funding-and-support/"],
    },
    {
        "id": "screen-australia",
        "name": "Screen Australia",
        "region": "au",
        "type": "scrape",
        "pages": ["https://www.screenaustralia.gov.au/funding/documentary"],
    },
    {
        "id": "business-vic",
        "name": "Business Victoria",
        "region": "au",
        "type": "scrape",
        "pages": ["https://business.vic.gov.au/grants-and-programs"],
    },
    {
        "id": "ian-potter",
        "name": "Ian Potter Foundation",
        "region": "au",
        "type": "scrape",
        "pages": ["https://www.ianpotter.org.au/what-we-support/"],
    },
    {
        "id": "creative-vic",
        "name": "Creative Victoria",
        "region": "au",
        "type": "scrape",
        "pages": ["https://creative.vic.gov.au/funding"],
    },
    {
        "id": "myer-foundation",
        "name": "Myer Foundation",
        "region": "au",
        "type": "scrape",
        "pages": ["https://myerfoundation.org.au/apply/"],
    },
    {
        "id": "lmcf",
        "name": "Lord Mayor's Charitable Foundation",
        "region": "au",
        "type": "scrape",
        "pages": ["https://www.lmcf.org.au/grants"],
    },
    {
        "id": "grantconnect",
        "name": "GrantConnect Australia",
        "region": "au",
        "type": "api",
        "api_url": "https://www.grants.gov.au/api/",
        "enabled": False,
    },
    # ============ PERU / LATAM / INDIGENOUS ============
    {
        "id": "prince-claus",
        "name": "Prince Claus Fund",
        "region": "pe",
        "type": "scrape",
        "pages": ["https://princeclausfund.org/programmes"],
    },
    {
        "id": "cultural-survival",
        "name": "Cultural Survival",
        "region": "pe",
        "type": "scrape",
        "pages": [
            "https://www.culturalsurvival.org/grantmaking",
            "https://www.culturalsurvival.org/keepers-earth-fund",
        ],
    },
    {
        "id": "iaf",
        "name": "Inter-American Foundation",
        "region": "pe",
        "type": "scrape",
        "pages": ["https://www.iaf.gov/grants/"],
    },
    # ============ INTERNATIONAL ============
    {
        "id": "echoing-green",
        "name": "Echoing Green",
        "region": "int",
        "type": "scrape",
        "pages": ["https://echoinggreen.org/fellowship/"],
    },
    {
        "id": "global-fund-women",
        "name": "Global Fund for Women",
        "region": "int",
        "type": "scrape",
        "pages": ["https://www.globalfundforwomen.org/grantmaking/"],
    },
    {
        "id": "un-democracy-fund",
        "name": "UN Democracy Fund",
        "region": "int",
        "type": "scrape",
        "pages": ["https://www.un.org/democracyfund/apply-funding"],
    },
    {
        "id": "wellcome-trust",
        "name": "Wellcome Trust",
        "region": "int",
        "type": "scrape",
        "pages": ["https://wellcome.org/grant-funding"],
    },
    # ============ RSS FEEDS (grant aggregators) ============
    {
        "id": "fundsforngos",
        "name": "Funds for NGOs",
        "region": "int",
        "type": "rss",
        "feed_url": "https://www2.fundsforngos.org/feed/",
    },
    {
        "id": "devex-funding",
        "name": "Devex Funding",
        "region": "int",
        "type": "rss",
        "feed_url": "https://www.devex.com/news/funding/feed",
    },
    {
        "id": "pnd-rfps",
        "name": "Philanthropy News Digest RFPs",
        "region": "int",
        "type": "rss",
        "feed_url": "https://philanthropynewsdigest.org/feeds/rfps",
    },
]
