"""Domain models for the interest taxonomy and recommendation client."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from . import config, utils
from .errors import DecodeError

ProfileKey = Tuple[str, str]


def _expect_object(payload: Any, model: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise DecodeError(f"{model} payload must be an object, got {type(payload).__name__}")
    return payload


def _require(payload: Dict[str, Any], key: str, model: str) -> Any:
    _expect_object(payload, model)
    if payload.get(key) is None:
        raise DecodeError(f"{model} payload is missing '{key}'")
    return payload[key]


def _timestamp(payload: Dict[str, Any], key: str, default: Optional[datetime]) -> datetime:
    raw = payload.get(key)
    if raw is None and default is not None:
        return default
    return utils.parse_timestamp(raw)


def _parent_id(payload: Dict[str, Any], object_key: str, id_key: str) -> Optional[str]:
    """Resolve a parent reference sent as a nested object, a bare id or an ``*_id`` field."""

    parent = payload.get(object_key)
    if isinstance(parent, dict) and parent.get("id") is not None:
        return str(parent["id"])
    if parent is not None and not isinstance(parent, dict):
        return str(parent)
    if payload.get(id_key) is not None:
        return str(payload[id_key])
    return None


# Taxonomy -------------------------------------------------------------------


@dataclass(frozen=True)
class InterestCategory:
    """Root node of the interest taxonomy."""

    id: str
    name: str
    type: str
    description: str
    created_at: datetime
    icon_url: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InterestCategory":
        return cls(
            id=str(_require(payload, "id", "InterestCategory")),
            name=str(_require(payload, "name", "InterestCategory")),
            type=str(payload.get("type") or ""),
            description=str(payload.get("description") or ""),
            icon_url=payload.get("icon_url"),
            created_at=_timestamp(payload, "created_at", None),
        )


@dataclass(frozen=True)
class InterestSubcategory:
    """Second taxonomy level, owned by exactly one category."""

    id: str
    category_id: str
    name: str
    description: str
    created_at: datetime

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        *,
        category_id: Optional[str] = None,
        default_created_at: Optional[datetime] = None,
    ) -> "InterestSubcategory":
        payload = _expect_object(payload, "InterestSubcategory")
        parent = _parent_id(payload, "category", "category_id") or category_id
        if parent is None:
            raise DecodeError(f"InterestSubcategory {payload.get('id')} has no category reference")
        return cls(
            id=str(_require(payload, "id", "InterestSubcategory")),
            category_id=parent,
            name=str(_require(payload, "name", "InterestSubcategory")),
            description=str(payload.get("description") or ""),
            created_at=_timestamp(payload, "created_at", default_created_at),
        )


@dataclass(frozen=True)
class InterestTag:
    """Leaf taxonomy level, owned by exactly one subcategory."""

    id: str
    subcategory_id: str
    name: str
    description: str
    usage_count: int
    created_at: datetime
    category_id: Optional[str] = None

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        *,
        subcategory_id: Optional[str] = None,
        category_id: Optional[str] = None,
        default_created_at: Optional[datetime] = None,
    ) -> "InterestTag":
        payload = _expect_object(payload, "InterestTag")
        parent = _parent_id(payload, "subcategory", "subcategory_id") or subcategory_id
        if parent is None:
            raise DecodeError(f"InterestTag {payload.get('id')} has no subcategory reference")
        nested = payload.get("subcategory")
        if isinstance(nested, dict):
            category_id = _parent_id(nested, "category", "category_id") or category_id
        return cls(
            id=str(_require(payload, "id", "InterestTag")),
            subcategory_id=parent,
            category_id=category_id,
            name=str(_require(payload, "name", "InterestTag")),
            description=str(payload.get("description") or ""),
            usage_count=int(payload.get("usage_count") or 0),
            created_at=_timestamp(payload, "created_at", default_created_at),
        )


# Profile levels (tagged union) ---------------------------------------------


@dataclass(frozen=True)
class CategoryLevel:
    category: InterestCategory

    level_name = "category"
    depth = config.LEVEL_CATEGORY

    @property
    def leaf_id(self) -> str:
        return self.category.id

    @property
    def display_name(self) -> str:
        return self.category.name

    @property
    def key(self) -> ProfileKey:
        return (self.level_name, self.leaf_id)


@dataclass(frozen=True)
class SubcategoryLevel:
    category_id: str
    subcategory: InterestSubcategory

    level_name = "subcategory"
    depth = config.LEVEL_SUBCATEGORY

    @property
    def leaf_id(self) -> str:
        return self.subcategory.id

    @property
    def display_name(self) -> str:
        return self.subcategory.name

    @property
    def key(self) -> ProfileKey:
        return (self.level_name, self.leaf_id)


@dataclass(frozen=True)
class TagLevel:
    tag: InterestTag

    level_name = "tag"
    depth = config.LEVEL_TAG

    @property
    def leaf_id(self) -> str:
        return self.tag.id

    @property
    def display_name(self) -> str:
        return self.tag.name

    @property
    def key(self) -> ProfileKey:
        return (self.level_name, self.leaf_id)


ProfileLevel = Union[CategoryLevel, SubcategoryLevel, TagLevel]


@dataclass(frozen=True)
class UserInterestProfile:
    """One committed interest, held at exactly one taxonomy level."""

    id: str
    user_id: str
    level: ProfileLevel
    added_at: datetime

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "UserInterestProfile":
        payload = _expect_object(payload, "UserInterestProfile")
        tag = payload.get("tag")
        subcategory = payload.get("subcategory")
        category = payload.get("category")
        level: ProfileLevel
        # the server may echo ancestors alongside the leaf; the deepest one wins
        if isinstance(tag, dict):
            level = TagLevel(tag=InterestTag.from_payload(tag))
        elif isinstance(subcategory, dict):
            parsed = InterestSubcategory.from_payload(
                subcategory, category_id=_parent_id(payload, "category", "category_id")
            )
            level = SubcategoryLevel(category_id=parsed.category_id, subcategory=parsed)
        elif isinstance(category, dict):
            level = CategoryLevel(category=InterestCategory.from_payload(category))
        else:
            raise DecodeError(f"UserInterestProfile {payload.get('id')} has no category, subcategory or tag")
        return cls(
            id=str(_require(payload, "id", "UserInterestProfile")),
            user_id=str(payload.get("user") or payload.get("user_id") or ""),
            level=level,
            added_at=_timestamp(payload, "added_at", None),
        )

    @property
    def key(self) -> ProfileKey:
        return self.level.key

    @property
    def category(self) -> Optional[InterestCategory]:
        return self.level.category if isinstance(self.level, CategoryLevel) else None

    @property
    def subcategory(self) -> Optional[InterestSubcategory]:
        return self.level.subcategory if isinstance(self.level, SubcategoryLevel) else None

    @property
    def tag(self) -> Optional[InterestTag]:
        return self.level.tag if isinstance(self.level, TagLevel) else None


# Recommendations ------------------------------------------------------------


class FeedbackType(str, Enum):
    VIEW = "view"
    CLICK = "click"
    JOIN_REQUEST = "join_request"
    JOIN_SUCCESS = "join_success"
    DISMISS = "dismiss"
    NOT_INTERESTED = "not_interested"
    BOOKMARK = "bookmark"
    SHARE = "share"


@dataclass(frozen=True)
class CircleSummary:
    """The subset of a circle a recommendation row needs."""

    id: str
    name: str
    description: str = ""
    status: str = ""
    member_count: int = 0
    tags: Tuple[str, ...] = ()
    icon_url: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CircleSummary":
        return cls(
            id=str(_require(payload, "id", "CircleSummary")),
            name=str(payload.get("name") or ""),
            description=str(payload.get("description") or ""),
            status=str(payload.get("status") or ""),
            member_count=int(payload.get("member_count") or 0),
            tags=tuple(str(tag) for tag in payload.get("tags") or ()),
            icon_url=payload.get("icon_url"),
        )


@dataclass(frozen=True)
class RecommendationReason:
    type: str
    detail: str
    weight: float

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RecommendationReason":
        return cls(
            type=str(_require(payload, "type", "RecommendationReason")),
            detail=str(payload.get("detail") or ""),
            weight=float(payload.get("weight") or 0.0),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "detail": self.detail, "weight": self.weight}


@dataclass(frozen=True)
class NextGenRecommendation:
    """A scored circle recommendation. Identity is the circle id."""

    circle: CircleSummary
    score: float
    confidence: float
    session_id: str
    reasons: Tuple[RecommendationReason, ...] = ()

    @classmethod
    def from_payload(
        cls, payload: Dict[str, Any], *, session_id: Optional[str] = None
    ) -> "NextGenRecommendation":
        return cls(
            circle=CircleSummary.from_payload(_require(payload, "circle", "NextGenRecommendation")),
            score=float(payload.get("score") or 0.0),
            confidence=utils.clamp(float(payload.get("confidence") or 0.0)),
            session_id=str(payload.get("session_id") or session_id or ""),
            reasons=tuple(
                RecommendationReason.from_payload(reason) for reason in payload.get("reasons") or ()
            ),
        )

    @property
    def circle_id(self) -> str:
        return self.circle.id


@dataclass(frozen=True)
class AlgorithmWeights:
    hierarchical: float = 0.0
    collaborative: float = 0.0
    behavioral: float = 0.0
    diversity: float = 0.0

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "AlgorithmWeights":
        payload = payload or {}
        return cls(
            hierarchical=float(payload.get("hierarchical") or 0.0),
            collaborative=float(payload.get("collaborative") or 0.0),
            behavioral=float(payload.get("behavioral") or 0.0),
            diversity=float(payload.get("diversity") or 0.0),
        )


@dataclass
class RecommendationSession:
    """One fetched batch of recommendations plus its algorithm metadata."""

    session_id: str
    algorithm_used: str
    recommendations: List[NextGenRecommendation] = field(default_factory=list)
    algorithm_weights: AlgorithmWeights = field(default_factory=AlgorithmWeights)
    total_candidates: int = 0
    computation_time_ms: float = 0.0
    generated_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RecommendationSession":
        session_id = str(_require(payload, "session_id", "RecommendationSession"))
        generated_at = payload.get("generated_at")
        return cls(
            session_id=session_id,
            algorithm_used=str(payload.get("algorithm_used") or ""),
            recommendations=[
                NextGenRecommendation.from_payload(item, session_id=session_id)
                for item in payload.get("recommendations") or ()
            ],
            algorithm_weights=AlgorithmWeights.from_payload(payload.get("algorithm_weights")),
            total_candidates=int(payload.get("total_candidates") or 0),
            computation_time_ms=float(payload.get("computation_time_ms") or 0.0),
            generated_at=utils.parse_timestamp(generated_at) if generated_at else None,
        )

    def find(self, circle_id: str) -> Optional[NextGenRecommendation]:
        for recommendation in self.recommendations:
            if recommendation.circle_id == circle_id:
                return recommendation
        return None


@dataclass(frozen=True)
class RecommendationFeedback:
    """Feedback event carrying a snapshot of the recommendation it reacts to."""

    circle_id: str
    feedback_type: FeedbackType
    session_id: str
    recommendation_score: Optional[float] = None
    recommendation_algorithm: Optional[str] = None
    recommendation_reasons: Optional[Tuple[RecommendationReason, ...]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "circle_id": self.circle_id,
            "feedback_type": self.feedback_type.value,
            "session_id": self.session_id,
        }
        if self.recommendation_score is not None:
            payload["recommendation_score"] = self.recommendation_score
        if self.recommendation_algorithm is not None:
            payload["recommendation_algorithm"] = self.recommendation_algorithm
        if self.recommendation_reasons is not None:
            payload["recommendation_reasons"] = [
                reason.to_payload() for reason in self.recommendation_reasons
            ]
        return payload


# User preferences -----------------------------------------------------------


@dataclass(frozen=True)
class UserActivityProfile:
    is_new_user: bool = False
    is_active_user: bool = False
    recent_activity: int = 0


@dataclass
class LearningPatterns:
    preferred_categories: List[str] = field(default_factory=list)
    interaction_counts: Dict[str, int] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserPreferences:
    """How the backend currently weights algorithms for this user. Read-only."""

    user_profile: UserActivityProfile
    algorithm_weights: AlgorithmWeights
    learning_patterns: LearningPatterns

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "UserPreferences":
        profile = payload.get("user_profile") or {}
        patterns = payload.get("learning_patterns") or {}
        return cls(
            user_profile=UserActivityProfile(
                is_new_user=bool(profile.get("is_new_user", False)),
                is_active_user=bool(profile.get("is_active_user", False)),
                recent_activity=int(profile.get("recent_activity") or 0),
            ),
            algorithm_weights=AlgorithmWeights.from_payload(payload.get("algorithm_weights")),
            learning_patterns=LearningPatterns(
                preferred_categories=[str(item) for item in patterns.get("preferred_categories") or ()],
                interaction_counts={
                    str(key): int(value)
                    for key, value in (patterns.get("interaction_counts") or {}).items()
                },
                raw=dict(patterns),
            ),
        )
