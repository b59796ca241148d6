"""
Offline sample taxonomy for the Knest interest picker.
These are the fixed entries shown when the taxonomy service cannot be reached,
and the seed data served by the development stub backend.
"""
from __future__ import annotations

from typing import Any, Dict, List

from .models import InterestCategory, InterestSubcategory, InterestTag

SAMPLE_CREATED_AT = "2025-01-27T10:00:00Z"

CATEGORIES: List[Dict[str, Any]] = [
    {
        "id": "tech-001",
        "name": "Technology",
        "type": "technical",
        "description": "Programming, AI, gadgets and other technical fields",
        "icon_url": "https://example.com/icons/technology.png",
    },
    {
        "id": "art-001",
        "name": "Art & Creative",
        "type": "creative",
        "description": "Design, music, photography and other creative fields",
        "icon_url": "https://example.com/icons/art.png",
    },
    {
        "id": "sport-001",
        "name": "Sports & Health",
        "type": "health",
        "description": "Fitness, sports and health management",
        "icon_url": "https://example.com/icons/sports.png",
    },
    {
        "id": "study-001",
        "name": "Learning & Skills",
        "type": "learning",
        "description": "Certifications, language learning and professional skills",
        "icon_url": "https://example.com/icons/learning.png",
    },
]

# category id -> subcategories
SUBCATEGORIES: Dict[str, List[Dict[str, Any]]] = {
    "tech-001": [
        {"id": "tech-sub-001", "name": "Programming", "description": "Web and app development"},
        {"id": "tech-sub-002", "name": "AI & Machine Learning", "description": "Artificial intelligence, data science"},
        {"id": "tech-sub-003", "name": "Gadgets", "description": "Latest devices, electronics projects"},
    ],
    "art-001": [
        {"id": "art-sub-001", "name": "Design", "description": "UI/UX, graphic design"},
        {"id": "art-sub-002", "name": "Music", "description": "Performance, composition, audio engineering"},
        {"id": "art-sub-003", "name": "Film & Photography", "description": "Shooting techniques, video production"},
    ],
    "sport-001": [
        {"id": "sport-sub-001", "name": "Fitness", "description": "Training, strength work"},
        {"id": "sport-sub-002", "name": "Team Sports", "description": "Soccer, basketball"},
        {"id": "sport-sub-003", "name": "Individual Sports", "description": "Running, swimming"},
    ],
    "study-001": [
        {"id": "study-sub-001", "name": "Languages", "description": "English, Chinese"},
        {"id": "study-sub-002", "name": "Certifications", "description": "IT and business certifications"},
        {"id": "study-sub-003", "name": "Business Skills", "description": "Management, presentations"},
    ],
}

# subcategory id -> tags
TAGS: Dict[str, List[Dict[str, Any]]] = {
    "tech-sub-001": [
        {"id": "tag-001", "name": "iOS Development", "description": "SwiftUI app development", "usage_count": 45},
        {"id": "tag-002", "name": "Web Development", "description": "React, Vue.js", "usage_count": 38},
        {"id": "tag-003", "name": "Python", "description": "Data analysis, automation", "usage_count": 52},
        {"id": "tag-004", "name": "Django", "description": "Web framework", "usage_count": 23},
    ],
    "art-sub-001": [
        {"id": "tag-007", "name": "UI/UX Design", "description": "Usability design", "usage_count": 31},
        {"id": "tag-008", "name": "Figma", "description": "Prototyping", "usage_count": 27},
    ],
    "sport-sub-001": [
        {"id": "tag-009", "name": "Weight Training", "description": "Strength training", "usage_count": 42},
        {"id": "tag-010", "name": "Yoga", "description": "Stretching, meditation", "usage_count": 35},
    ],
}


def category_payloads() -> List[Dict[str, Any]]:
    return [dict(item, created_at=SAMPLE_CREATED_AT) for item in CATEGORIES]


def subcategory_payloads(category_id: str) -> List[Dict[str, Any]]:
    return [
        dict(item, category_id=category_id, created_at=SAMPLE_CREATED_AT)
        for item in SUBCATEGORIES.get(category_id, [])
    ]


def tag_payloads(subcategory_id: str) -> List[Dict[str, Any]]:
    category_id = parent_category_id(subcategory_id)
    return [
        dict(
            item,
            subcategory_id=subcategory_id,
            category_id=category_id,
            created_at=SAMPLE_CREATED_AT,
        )
        for item in TAGS.get(subcategory_id, [])
    ]


def tree_payload() -> List[Dict[str, Any]]:
    """Nested category -> subcategory -> tag payload in the tree endpoint's shape."""

    tree = []
    for category in category_payloads():
        subcategories = []
        for subcategory in subcategory_payloads(category["id"]):
            subcategories.append(dict(subcategory, tags=tag_payloads(subcategory["id"])))
        tree.append({"category": category, "subcategories": subcategories})
    return tree


def parent_category_id(subcategory_id: str) -> str | None:
    for category_id, subcategories in SUBCATEGORIES.items():
        if any(item["id"] == subcategory_id for item in subcategories):
            return category_id
    return None


def get_categories() -> List[InterestCategory]:
    return [InterestCategory.from_payload(item) for item in category_payloads()]


def get_subcategories(category_id: str) -> List[InterestSubcategory]:
    return [InterestSubcategory.from_payload(item) for item in subcategory_payloads(category_id)]


def get_tags(subcategory_id: str) -> List[InterestTag]:
    return [InterestTag.from_payload(item) for item in tag_payloads(subcategory_id)]


def get_all_subcategories() -> List[InterestSubcategory]:
    return [item for category_id in SUBCATEGORIES for item in get_subcategories(category_id)]


def get_all_tags() -> List[InterestTag]:
    return [item for subcategory_id in TAGS for item in get_tags(subcategory_id)]
