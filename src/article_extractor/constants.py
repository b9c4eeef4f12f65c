# src/article_extractor/constants.py
"""Centralized constants for the article extractor.

This module contains magic numbers and fixed patterns that are used across
multiple modules. For user-configurable settings, see config.py and
browser_config.py.
"""

import re

# =============================================================================
# Page Loading Constants
# =============================================================================

# Default number of navigation attempts per page load
DEFAULT_PAGE_RETRIES = 3

# Bounds for the randomized delay inserted between navigation attempts (seconds)
RETRY_DELAY_MIN_SECONDS = 0.5
RETRY_DELAY_MAX_SECONDS = 2.0

# Body text shorter than this (characters) on a page matching a paywall
# pattern is classified as a soft overlay
PAYWALL_BODY_TEXT_THRESHOLD = 500

# Patterns scanned in the rendered HTML for paywall detection
PAYWALL_PATTERNS = [
    re.compile(r"subscribe|sign\s*in|log\s*in|paywall", re.IGNORECASE),
    re.compile(r"metered|wall|modal.*close", re.IGNORECASE),
]

# Resource types aborted when anti-detection is enabled
BLOCKED_RESOURCE_TYPES = ["image", "stylesheet", "font", "media"]

# URL fragments identifying tracker / ad requests
TRACKER_URL_MARKERS = ["analytics", "doubleclick", "ads", "tracking"]

# Headers sent with every page load when anti-detection is enabled
ANTI_DETECTION_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


# =============================================================================
# Image Acquisition Constants
# =============================================================================

DEFAULT_MAX_CONCURRENT_DOWNLOADS = 5
DEFAULT_IMAGE_MAX_WIDTH = 1200
DEFAULT_IMAGE_QUALITY = 80
DEFAULT_IMAGE_TIMEOUT_MS = 10000

# Responses larger than this are rejected before hashing
MAX_IMAGE_BYTES = 20 * 1024 * 1024

# Chunk size used when streaming a file through the hasher
HASH_CHUNK_SIZE = 64 * 1024

# Extensions accepted as downloadable images
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")

# User agent sent with plain HTTP requests (images, cookie checks)
HTTP_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


# =============================================================================
# Summarization Constants
# =============================================================================

DEFAULT_LLM_BASE_URL = "http://localhost:11434"
DEFAULT_PRIMARY_MODEL = "llama3.1"
DEFAULT_FALLBACK_MODELS = ["mistral", "qwen3:4b"]
DEFAULT_LLM_TIMEOUT_MS = 120000
DEFAULT_TEMPERATURE = 0.5

# Timeout for the server liveness probe (seconds)
LLM_PROBE_TIMEOUT_SECONDS = 5.0

# Timeout for model pulls (seconds)
LLM_PULL_TIMEOUT_SECONDS = 300.0

# Rough characters-per-token ratio used for token estimates
CHARS_PER_TOKEN = 4

LENGTH_INSTRUCTIONS = {
    "short": "Provide a one-paragraph summary (2-3 sentences)",
    "medium": "Provide a 2-3 paragraph summary with key points",
    "long": "Provide a comprehensive 4-5 paragraph summary with all key points and details",
}


# =============================================================================
# Error Recovery Constants
# =============================================================================

# Recovery attempts allowed per error code within one pipeline run
MAX_RECOVERY_ATTEMPTS = 3

# Base delay for network timeout backoff; attempt n waits base * 2 ** (n - 1)
NETWORK_BACKOFF_BASE_MS = 1000


# =============================================================================
# Content Extraction Constants
# =============================================================================

WORDS_PER_MINUTE = 200

ARTICLE_SELECTORS = [
    "article",
    '[role="main"]',
    ".content",
    ".article",
    ".post",
    ".entry-content",
    ".main-content",
    ".story-body",
    '[itemprop="articleBody"]',
]

BOILERPLATE_SELECTORS = [
    "script",
    "style",
    "nav",
    "footer",
    ".advertisement",
    ".ads",
    ".sidebar",
    ".related-articles",
    ".comments",
    ".comment-section",
    "[data-ad-slot]",
    ".widget",
    ".tracking",
]

# Markers of a login page returned instead of the article
LOGIN_PAGE_MARKERS = ["login", "sign in", "authenticate"]


# =============================================================================
# Output Constants
# =============================================================================

DEFAULT_OUTPUT_DIR = "./output/articles"

# Maximum length of the title slug used in markdown filenames
FILENAME_SLUG_LENGTH = 50

# Files older than this are removed by the cleanup command
DEFAULT_CLEANUP_DAYS = 30

# Articles shown by the list command
DEFAULT_LIST_LIMIT = 10
