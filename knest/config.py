"""Client configuration constants for the interest taxonomy and recommendation core."""
from __future__ import annotations

# Connection defaults
DEFAULT_API_BASE_URL: str = "http://localhost:8000/api"
DEFAULT_TIMEOUT_SECONDS: float = 10.0

# Environment keys
ENV_API_BASE_URL = "KNEST_API_BASE_URL"
ENV_ACCESS_TOKEN = "KNEST_ACCESS_TOKEN"
ENV_TIMEOUT_SECONDS = "KNEST_TIMEOUT_SECONDS"
ENV_ALLOW_SAMPLE_FALLBACK = "KNEST_ALLOW_SAMPLE_FALLBACK"
ENV_SETTINGS_PATH = "KNEST_SETTINGS_PATH"

# REST endpoints, relative to the API base url
ENDPOINTS = {
    "categories": "/interests/hierarchical/categories/",
    "subcategories": "/interests/hierarchical/subcategories/",
    "tags": "/interests/hierarchical/tags/",
    "tree": "/interests/hierarchical/categories_with_subcategories_and_tags/",
    "user_profiles": "/interests/hierarchical/user-profiles/",
    "add_category_level": "/interests/hierarchical/user-profiles/add_category_level/",
    "add_subcategory_level": "/interests/hierarchical/user-profiles/add_subcategory_level/",
    "recommendations": "/v2/recommendations/circles/",
    "feedback": "/v2/recommendations/feedback/",
    "user_preferences": "/v2/recommendations/user-preferences/",
}

# Recommendation configuration
ALGORITHMS = ("smart", "content", "collaborative", "behavioral")
DEFAULT_ALGORITHM: str = "smart"
DEFAULT_RECOMMENDATION_LIMIT: int = 10
MIN_RECOMMENDATION_LIMIT: int = 5
MAX_RECOMMENDATION_LIMIT: int = 30
DEFAULT_DIVERSITY_FACTOR: float = 0.3
DEFAULT_INCLUDE_NEW_CIRCLES: bool = True

# Hierarchical match quality thresholds (exact matches / max possible score)
QUALITY_HIGH_THRESHOLD: float = 0.7
QUALITY_GOOD_THRESHOLD: float = 0.4
MATCH_SUMMARY_SEPARATOR = " • "

# Profile granularity levels
LEVEL_CATEGORY: int = 1
LEVEL_SUBCATEGORY: int = 2
LEVEL_TAG: int = 3

# Accepted server timestamp layouts, tried in order
TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%SZ",
)

# Status codes the profile repository treats as a server-side duplicate rejection
DUPLICATE_STATUS_CODES = {400, 409}
DUPLICATE_DETAIL_MARKERS = ("already", "duplicate", "exists")

# User-visible messages
MESSAGES = {
    "already_selected": "'{name}' is already selected",
    "duplicate": "This interest is already in your profile",
    "transport": "Could not reach the server. Check your connection and try again.",
    "unauthenticated": "Your session has expired. Please sign in again.",
    "server": "The server had a problem ({status}). Please try again.",
    "http": "The request failed ({status}).",
    "decode": "The server sent data this app could not read.",
    "add_failed": "Could not add the interest",
    "remove_failed": "Could not remove the interest",
    "no_common_interests": "No common interests",
    "unknown": "Something went wrong.",
}

# Observable store keys
STORE_KEYS = {
    "categories": "categories",
    "subcategories": "subcategories",
    "tags": "tags",
    "profiles": "profiles",
    "session": "session",
    "recommendations": "recommendations",
    "preferences": "preferences",
    "is_loading": "is_loading",
    "error": "error",
}
