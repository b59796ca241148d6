"""Matching score contract and its client-side derivations.

Recommendation rows and active-search match rows both render scores through
this module so the quality tier and summary text never diverge between screens.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from . import config, utils
from .errors import DecodeError
from .models import CircleSummary


class QualityTier(str, Enum):
    HIGH = "high"
    GOOD = "good"
    LOW = "low"

    @property
    def label(self) -> str:
        return _TIER_LABELS[self]


_TIER_LABELS = {
    QualityTier.HIGH: "[HIGH] Strong match",
    QualityTier.GOOD: "[GOOD] Good match",
    QualityTier.LOW: "[LOW] Basic match",
}


@dataclass(frozen=True)
class HierarchicalMatchDetails:
    """Per-level breakdown of shared interests between two profiles."""

    exact_matches: int
    subcategory_matches: int
    category_matches: int
    weighted_score: float
    max_possible_score: int

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "HierarchicalMatchDetails":
        try:
            return cls(
                exact_matches=int(payload.get("exact_matches") or 0),
                subcategory_matches=int(payload.get("subcategory_matches") or 0),
                category_matches=int(payload.get("category_matches") or 0),
                weighted_score=float(payload.get("weighted_score") or 0.0),
                max_possible_score=int(payload.get("max_possible_score") or 0),
            )
        except (TypeError, ValueError) as error:
            raise DecodeError(f"Invalid hierarchical match details: {error}") from error

    @property
    def exact_ratio(self) -> float:
        if self.max_possible_score <= 0:
            return 0.0
        return self.exact_matches / self.max_possible_score

    def quality_tier(self) -> QualityTier:
        ratio = self.exact_ratio
        if ratio >= config.QUALITY_HIGH_THRESHOLD:
            return QualityTier.HIGH
        if ratio >= config.QUALITY_GOOD_THRESHOLD:
            return QualityTier.GOOD
        return QualityTier.LOW

    def summary(self) -> str:
        """Human-readable list of the non-empty match buckets."""

        parts: List[str] = []
        if self.exact_matches > 0:
            parts.append(f"Exact match: {self.exact_matches}")
        if self.subcategory_matches > 0:
            parts.append(f"Subcategory match: {self.subcategory_matches}")
        if self.category_matches > 0:
            parts.append(f"Category match: {self.category_matches}")
        if not parts:
            return config.MESSAGES["no_common_interests"]
        return config.MATCH_SUMMARY_SEPARATOR.join(parts)


@dataclass(frozen=True)
class MatchingScore:
    total_score: float
    interest_score: float
    location_score: float
    age_score: float
    common_interests: List[str] = field(default_factory=list)
    hierarchical_details: Optional[HierarchicalMatchDetails] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MatchingScore":
        details = payload.get("hierarchical_details")
        try:
            return cls(
                total_score=utils.clamp(float(payload.get("total_score") or 0.0)),
                interest_score=utils.clamp(float(payload.get("interest_score") or 0.0)),
                location_score=utils.clamp(float(payload.get("location_score") or 0.0)),
                age_score=utils.clamp(float(payload.get("age_score") or 0.0)),
                common_interests=[str(item) for item in payload.get("common_interests") or ()],
                hierarchical_details=(
                    HierarchicalMatchDetails.from_payload(details) if details else None
                ),
            )
        except (TypeError, ValueError) as error:
            raise DecodeError(f"Invalid matching score: {error}") from error

    def quality_tier(self) -> QualityTier:
        if self.hierarchical_details is None:
            return QualityTier.LOW
        return self.hierarchical_details.quality_tier()

    def summary(self) -> str:
        if self.hierarchical_details is None:
            if self.common_interests:
                return ", ".join(self.common_interests)
            return config.MESSAGES["no_common_interests"]
        return self.hierarchical_details.summary()


@dataclass(frozen=True)
class UserMatch:
    """A matched user row from active search."""

    id: str
    user_id: str
    username: str
    score: MatchingScore
    match_reason: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "UserMatch":
        user = payload.get("user") or {}
        if "id" not in payload or "score" not in payload:
            raise DecodeError("UserMatch payload requires 'id' and 'score'")
        return cls(
            id=str(payload["id"]),
            user_id=str(user.get("id") or ""),
            username=str(user.get("username") or ""),
            score=MatchingScore.from_payload(payload["score"]),
            match_reason=str(payload.get("match_reason") or ""),
        )


@dataclass(frozen=True)
class CircleMatch:
    """A matched circle row from active search."""

    id: str
    circle: CircleSummary
    score: MatchingScore
    member_count: int = 0
    match_reason: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CircleMatch":
        if "circle" not in payload or "score" not in payload:
            raise DecodeError("CircleMatch payload requires 'circle' and 'score'")
        circle = CircleSummary.from_payload(payload["circle"])
        return cls(
            id=str(payload.get("id") or circle.id),
            circle=circle,
            score=MatchingScore.from_payload(payload["score"]),
            member_count=int(payload.get("member_count") or circle.member_count),
            match_reason=str(payload.get("match_reason") or ""),
        )
