"""Flask development backend serving the interest and recommendation endpoints.

State lives in memory and is seeded from the sample taxonomy, so the client
core can be exercised end to end without the production service.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from itertools import count
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import config, sample_taxonomy, utils
from .models import FeedbackType

logger = logging.getLogger(__name__)

API_PREFIX = "/api"

app = Flask(__name__)
CORS(app)  # Enable CORS for development

PROFILES: List[Dict[str, Any]] = []
FEEDBACK_LOG: List[Dict[str, Any]] = []  # non-persistent, useful for debugging
FEEDBACK_COUNTS: Counter = Counter()
_IDS = count(1)

STUB_USER_ID = "stub-user"

# Two circles per sample category; "new" circles are hidden when include_new_circles is off.
CIRCLES: List[Dict[str, Any]] = [
    {"id": "circle-001", "name": "Swift Study Group", "category_id": "tech-001", "status": "open",
     "member_count": 24, "tags": ["iOS Development"], "description": "Weekly SwiftUI sessions"},
    {"id": "circle-002", "name": "ML Paper Club", "category_id": "tech-001", "status": "new",
     "member_count": 6, "tags": ["Python"], "description": "Reading recent machine learning papers"},
    {"id": "circle-003", "name": "Figma Friends", "category_id": "art-001", "status": "open",
     "member_count": 15, "tags": ["Figma", "UI/UX Design"], "description": "Critique and prototyping"},
    {"id": "circle-004", "name": "Weekend Sketchers", "category_id": "art-001", "status": "new",
     "member_count": 4, "tags": [], "description": "Outdoor sketching meetups"},
    {"id": "circle-005", "name": "Morning Lifters", "category_id": "sport-001", "status": "open",
     "member_count": 31, "tags": ["Weight Training"], "description": "Early gym sessions"},
    {"id": "circle-006", "name": "Sunset Yoga", "category_id": "sport-001", "status": "open",
     "member_count": 18, "tags": ["Yoga"], "description": "Relaxed evening practice"},
    {"id": "circle-007", "name": "English Conversation", "category_id": "study-001", "status": "open",
     "member_count": 27, "tags": [], "description": "Casual speaking practice"},
    {"id": "circle-008", "name": "Cloud Certification Prep", "category_id": "study-001", "status": "new",
     "member_count": 9, "tags": [], "description": "Studying for cloud exams together"},
]

ALGORITHM_WEIGHTS: Dict[str, Dict[str, float]] = {
    "smart": {"hierarchical": 0.4, "collaborative": 0.3, "behavioral": 0.2, "diversity": 0.1},
    "content": {"hierarchical": 0.8, "collaborative": 0.0, "behavioral": 0.1, "diversity": 0.1},
    "collaborative": {"hierarchical": 0.1, "collaborative": 0.8, "behavioral": 0.0, "diversity": 0.1},
    "behavioral": {"hierarchical": 0.1, "collaborative": 0.1, "behavioral": 0.7, "diversity": 0.1},
}


def reset_state() -> None:
    """Drop every profile and feedback event; used between test runs."""

    global _IDS
    PROFILES.clear()
    FEEDBACK_LOG.clear()
    FEEDBACK_COUNTS.clear()
    _IDS = count(1)


def _route(name: str) -> str:
    return f"{API_PREFIX}{config.ENDPOINTS[name]}"


def _error(message: str, status: int):
    return jsonify({"error": message, "status": "error"}), status


def _authorized() -> bool:
    header = request.headers.get("Authorization", "")
    return header.startswith("Bearer ") and bool(header[len("Bearer "):].strip())


def _unauthorized():
    return _error("Authentication credentials were not provided.", 401)


def _now() -> str:
    return utils.format_timestamp(datetime.now(timezone.utc))


def _find(payloads: List[Dict[str, Any]], item_id: Optional[str]) -> Optional[Dict[str, Any]]:
    return next((item for item in payloads if item["id"] == item_id), None)


def _profile_key(profile: Dict[str, Any]) -> Tuple[str, str]:
    for level_name in ("tag", "subcategory", "category"):
        if profile.get(level_name):
            return level_name, profile[level_name]["id"]
    raise ValueError("profile has no level")


def _store_profile(level_name: str, **levels: Dict[str, Any]):
    leaf = levels[level_name]
    if any(_profile_key(profile) == (level_name, leaf["id"]) for profile in PROFILES):
        return _error(f"This {level_name} has already been added to your interests.", 400)
    profile = {
        "id": f"profile-{next(_IDS):03d}",
        "user": STUB_USER_ID,
        "added_at": _now(),
        "category": None,
        "subcategory": None,
        "tag": None,
    }
    profile.update(levels)
    PROFILES.append(profile)
    logger.info("Stored %s-level interest %s", level_name, leaf["id"])
    return jsonify(profile), 201


def _all_subcategory_payloads() -> List[Dict[str, Any]]:
    return [
        item
        for category_id in sample_taxonomy.SUBCATEGORIES
        for item in sample_taxonomy.subcategory_payloads(category_id)
    ]


def _all_tag_payloads() -> List[Dict[str, Any]]:
    return [
        item
        for subcategory_id in sample_taxonomy.TAGS
        for item in sample_taxonomy.tag_payloads(subcategory_id)
    ]


def _profile_category_ids() -> List[str]:
    category_ids: List[str] = []
    for profile in PROFILES:
        if profile.get("tag"):
            category_id = profile["tag"].get("category_id")
        elif profile.get("subcategory"):
            category_id = profile["subcategory"]["category_id"]
        else:
            category_id = profile["category"]["id"]
        if category_id and category_id not in category_ids:
            category_ids.append(category_id)
    return category_ids


# Taxonomy -------------------------------------------------------------------


@app.route(_route("categories"), methods=["GET"])
def list_categories():
    return jsonify(sample_taxonomy.category_payloads())


@app.route(_route("subcategories"), methods=["GET"])
def list_subcategories():
    category_id = request.args.get("category_id")
    if category_id:
        return jsonify(sample_taxonomy.subcategory_payloads(category_id))
    return jsonify(_all_subcategory_payloads())


@app.route(_route("tags"), methods=["GET"])
def list_tags():
    subcategory_id = request.args.get("subcategory_id")
    if subcategory_id:
        return jsonify(sample_taxonomy.tag_payloads(subcategory_id))
    return jsonify(_all_tag_payloads())


@app.route(_route("tree"), methods=["GET"])
def taxonomy_tree():
    return jsonify(sample_taxonomy.tree_payload())


# User interest profiles -----------------------------------------------------


@app.route(_route("user_profiles"), methods=["GET"])
def list_profiles():
    if not _authorized():
        return _unauthorized()
    return jsonify(PROFILES)


@app.route(_route("user_profiles"), methods=["POST"])
def add_tag_profile():
    if not _authorized():
        return _unauthorized()
    payload = request.get_json(silent=True) or {}
    tag = _find(_all_tag_payloads(), payload.get("tag_id"))
    if tag is None:
        return _error(f"Unknown tag: {payload.get('tag_id')}", 404)
    return _store_profile("tag", tag=tag)


@app.route(_route("add_category_level"), methods=["POST"])
def add_category_profile():
    if not _authorized():
        return _unauthorized()
    payload = request.get_json(silent=True) or {}
    if payload.get("level") != config.LEVEL_CATEGORY:
        return _error("level must be 1 for a category-level interest", 400)
    category = _find(sample_taxonomy.category_payloads(), payload.get("category_id"))
    if category is None:
        return _error(f"Unknown category: {payload.get('category_id')}", 404)
    return _store_profile("category", category=category)


@app.route(_route("add_subcategory_level"), methods=["POST"])
def add_subcategory_profile():
    if not _authorized():
        return _unauthorized()
    payload = request.get_json(silent=True) or {}
    if payload.get("level") != config.LEVEL_SUBCATEGORY:
        return _error("level must be 2 for a subcategory-level interest", 400)
    category = _find(sample_taxonomy.category_payloads(), payload.get("category_id"))
    if category is None:
        return _error(f"Unknown category: {payload.get('category_id')}", 404)
    subcategory = _find(
        sample_taxonomy.subcategory_payloads(category["id"]), payload.get("subcategory_id")
    )
    if subcategory is None:
        return _error("Subcategory does not belong to the given category", 400)
    return _store_profile("subcategory", category=category, subcategory=subcategory)


@app.route(f"{_route('user_profiles')}<profile_id>/", methods=["DELETE"])
def delete_profile(profile_id: str):
    if not _authorized():
        return _unauthorized()
    profile = _find(PROFILES, profile_id)
    if profile is None:
        return _error(f"Unknown profile: {profile_id}", 404)
    PROFILES.remove(profile)
    return "", 204


# Recommendations ------------------------------------------------------------


@app.route(_route("recommendations"), methods=["GET"])
def recommend_circles():
    if not _authorized():
        return _unauthorized()
    algorithm = request.args.get("algorithm", config.DEFAULT_ALGORITHM)
    if algorithm not in config.ALGORITHMS:
        return _error(f"algorithm must be one of {', '.join(config.ALGORITHMS)}", 400)
    try:
        limit = int(request.args.get("limit", config.DEFAULT_RECOMMENDATION_LIMIT))
        diversity = float(request.args.get("diversity_factor", config.DEFAULT_DIVERSITY_FACTOR))
    except ValueError:
        return _error("limit and diversity_factor must be numeric", 400)
    excluded = set(request.args.getlist("exclude_categories"))
    include_new = request.args.get("include_new_circles", "true").lower() != "false"

    interests = _profile_category_ids()
    candidates = [
        circle
        for circle in CIRCLES
        if circle["category_id"] not in excluded and (include_new or circle["status"] != "new")
    ]
    session_id = f"session-{next(_IDS):03d}"
    scored = []
    for index, circle in enumerate(candidates):
        matched = circle["category_id"] in interests
        score = round(utils.clamp(0.5 + (0.35 if matched else 0.0) - 0.02 * index + 0.05 * diversity), 2)
        reasons = [{"type": "hierarchical", "detail": "Shares your interest category", "weight": 0.6}] if matched else []
        if circle["status"] == "new":
            reasons.append({"type": "new_circle", "detail": "Recently created circle", "weight": 0.2})
        scored.append(
            {
                "circle": {key: value for key, value in circle.items() if key != "category_id"},
                "score": score,
                "confidence": 0.9 if matched else 0.5,
                "session_id": session_id,
                "reasons": reasons,
            }
        )
    scored.sort(key=lambda item: item["score"], reverse=True)

    return jsonify(
        {
            "session_id": session_id,
            "algorithm_used": algorithm,
            "recommendations": scored[: max(limit, 0)],
            "algorithm_weights": ALGORITHM_WEIGHTS[algorithm],
            "total_candidates": len(candidates),
            "computation_time_ms": 12.5,
            "generated_at": _now(),
        }
    )


@app.route(_route("feedback"), methods=["POST"])
def record_feedback():
    if not _authorized():
        return _unauthorized()
    payload = request.get_json(silent=True) or {}
    required_fields = {"circle_id", "feedback_type", "session_id"}
    if not required_fields.issubset(payload):
        missing = required_fields - set(payload)
        return _error(f"Missing required fields: {', '.join(sorted(missing))}", 400)
    try:
        feedback_type = FeedbackType(payload["feedback_type"])
    except ValueError:
        return _error(f"Unknown feedback_type: {payload['feedback_type']}", 400)

    # duplicates are counted, not rejected
    FEEDBACK_LOG.append(payload)
    FEEDBACK_COUNTS[(payload["circle_id"], feedback_type.value)] += 1
    return jsonify(
        {
            "message": "Feedback received",
            "count": FEEDBACK_COUNTS[(payload["circle_id"], feedback_type.value)],
            "status": "success",
        }
    ), 201


@app.route(_route("user_preferences"), methods=["GET"])
def user_preferences():
    if not _authorized():
        return _unauthorized()
    interaction_counts = Counter(entry["feedback_type"] for entry in FEEDBACK_LOG)
    return jsonify(
        {
            "user_profile": {
                "is_new_user": not PROFILES,
                "is_active_user": len(FEEDBACK_LOG) >= 5,
                "recent_activity": len(FEEDBACK_LOG),
            },
            "algorithm_weights": ALGORITHM_WEIGHTS[config.DEFAULT_ALGORITHM],
            "learning_patterns": {
                "preferred_categories": _profile_category_ids(),
                "interaction_counts": dict(interaction_counts),
            },
        }
    )


@app.route(f"{API_PREFIX}/health", methods=["GET"])
def health_check():
    return jsonify({
        "status": "healthy",
        "message": "Knest development API server is running",
        "categories": len(sample_taxonomy.CATEGORIES),
        "profiles": len(PROFILES),
    })


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    print("Starting Knest development API server...")
    print(f"Serving {len(sample_taxonomy.CATEGORIES)} sample categories under {API_PREFIX}")
    app.run(debug=True, host="0.0.0.0", port=8000)
