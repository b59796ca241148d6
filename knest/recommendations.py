"""Recommendation sessions: fetch, local dismissal and interaction tracking."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, Union

from . import config, utils
from .errors import DecodeError, KnestError, user_message
from .feedback import FeedbackClientProtocol, FeedbackDispatcher
from .models import (
    FeedbackType,
    NextGenRecommendation,
    RecommendationFeedback,
    RecommendationSession,
    UserPreferences,
)
from .store import ObservableStore

logger = logging.getLogger(__name__)


class RecommendationClientProtocol(FeedbackClientProtocol, Protocol):
    async def fetch_recommendations(
        self,
        *,
        algorithm: str,
        limit: int,
        diversity_factor: float,
        exclude_categories: Sequence[str] = (),
        include_new_circles: bool = True,
    ) -> Dict[str, Any]:
        ...

    async def fetch_user_preferences(self) -> Dict[str, Any]:
        ...


def validate_algorithm(algorithm: str) -> str:
    name = (algorithm or "").strip().lower()
    if name not in config.ALGORITHMS:
        raise ValueError(
            f"Unknown recommendation algorithm {algorithm!r}; expected one of {', '.join(config.ALGORITHMS)}"
        )
    return name


def clamp_limit(limit: int) -> int:
    return int(
        utils.clamp(int(limit), config.MIN_RECOMMENDATION_LIMIT, config.MAX_RECOMMENDATION_LIMIT)
    )


@dataclass
class RecommendationSettings:
    """User-tunable fetch parameters, persisted as a small JSON document."""

    algorithm: str = config.DEFAULT_ALGORITHM
    limit: int = config.DEFAULT_RECOMMENDATION_LIMIT
    diversity_factor: float = config.DEFAULT_DIVERSITY_FACTOR
    excluded_categories: List[str] = field(default_factory=list)
    include_new_circles: bool = config.DEFAULT_INCLUDE_NEW_CIRCLES

    def normalized(self) -> "RecommendationSettings":
        """Return a copy with the limit and diversity clamped and the algorithm validated."""

        return RecommendationSettings(
            algorithm=validate_algorithm(self.algorithm),
            limit=clamp_limit(self.limit),
            diversity_factor=float(utils.clamp(float(self.diversity_factor))),
            excluded_categories=list(dict.fromkeys(self.excluded_categories)),
            include_new_circles=bool(self.include_new_circles),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RecommendationSettings":
        defaults = cls()
        return cls(
            algorithm=str(payload.get("algorithm") or defaults.algorithm),
            limit=int(payload.get("limit", defaults.limit)),
            diversity_factor=float(payload.get("diversity_factor", defaults.diversity_factor)),
            excluded_categories=[str(item) for item in payload.get("excluded_categories") or ()],
            include_new_circles=bool(payload.get("include_new_circles", defaults.include_new_circles)),
        ).normalized()

    def save(self, path: Union[str, Path]) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.normalized().to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "RecommendationSettings":
        """Read settings from ``path``; a missing or unreadable file yields the defaults."""

        target = Path(path)
        if not target.exists():
            return cls()
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("settings file must hold a JSON object")
            return cls.from_dict(payload)
        except (OSError, TypeError, ValueError) as error:
            logger.warning("Ignoring unreadable recommendation settings at %s: %s", target, error)
            return cls()


class RecommendationSessionManager:
    """Owns the current recommendation session and the user's reactions to it.

    A fetch replaces the session wholesale. Dismissed circles are hidden
    locally for the lifetime of the session only.
    """

    def __init__(
        self,
        client: RecommendationClientProtocol,
        *,
        dispatcher: Optional[FeedbackDispatcher] = None,
        settings: Optional[RecommendationSettings] = None,
        store: Optional[ObservableStore] = None,
    ) -> None:
        self._client = client
        self.dispatcher = dispatcher or FeedbackDispatcher(client)
        self.settings = (settings or RecommendationSettings()).normalized()
        self.store = store or ObservableStore()
        self._session: Optional[RecommendationSession] = None
        self._generation = 0
        self.viewed: Set[str] = set()
        self.clicked: Set[str] = set()
        self.dismissed: Set[str] = set()
        self.preferences: Optional[UserPreferences] = None
        self.store.update(
            {
                config.STORE_KEYS["session"]: None,
                config.STORE_KEYS["recommendations"]: [],
            }
        )

    @property
    def session(self) -> Optional[RecommendationSession]:
        return self._session

    @property
    def recommendations(self) -> List[NextGenRecommendation]:
        return list(self.store.get(config.STORE_KEYS["recommendations"], []))

    async def fetch(
        self,
        *,
        algorithm: Optional[str] = None,
        limit: Optional[int] = None,
        diversity_factor: Optional[float] = None,
        exclude_categories: Optional[Sequence[str]] = None,
        include_new_circles: Optional[bool] = None,
    ) -> Optional[RecommendationSession]:
        """Fetch a new session. Returns ``None`` (keeping the old one) on failure."""

        overrides: Dict[str, Any] = {}
        if algorithm is not None:
            overrides["algorithm"] = algorithm
        if limit is not None:
            overrides["limit"] = limit
        if diversity_factor is not None:
            overrides["diversity_factor"] = diversity_factor
        if exclude_categories is not None:
            overrides["excluded_categories"] = list(exclude_categories)
        if include_new_circles is not None:
            overrides["include_new_circles"] = include_new_circles
        request = replace(self.settings, **overrides).normalized()

        self._generation += 1
        token = self._generation
        self.store.set(config.STORE_KEYS["is_loading"], True)
        try:
            payload = await self._client.fetch_recommendations(
                algorithm=request.algorithm,
                limit=request.limit,
                diversity_factor=request.diversity_factor,
                exclude_categories=request.excluded_categories,
                include_new_circles=request.include_new_circles,
            )
            if not isinstance(payload, dict):
                raise DecodeError("Recommendation response must be a JSON object")
            session = RecommendationSession.from_payload(payload)
        except KnestError as error:
            if token == self._generation:
                logger.warning("Fetching recommendations failed: %s", error)
                self.store.set(config.STORE_KEYS["error"], user_message(error))
            return None
        except (TypeError, ValueError) as error:
            if token == self._generation:
                logger.warning("Recommendation payload could not be decoded: %s", error)
                self.store.set(config.STORE_KEYS["error"], config.MESSAGES["decode"])
            return None
        finally:
            if token == self._generation:
                self.store.set(config.STORE_KEYS["is_loading"], False)

        if token != self._generation:
            logger.debug("Dropping stale recommendation session %s", session.session_id)
            return None
        self._session = session
        self.store.update(
            {
                config.STORE_KEYS["session"]: session,
                config.STORE_KEYS["recommendations"]: list(session.recommendations),
                config.STORE_KEYS["error"]: None,
            }
        )
        logger.info(
            "Fetched %d recommendations with %s (session %s, %d candidates)",
            len(session.recommendations),
            session.algorithm_used,
            session.session_id,
            session.total_candidates,
        )
        return session

    def dismiss(self, circle_id: str) -> Optional[RecommendationFeedback]:
        return self._hide(circle_id, FeedbackType.DISMISS)

    def mark_not_interested(self, circle_id: str) -> Optional[RecommendationFeedback]:
        return self._hide(circle_id, FeedbackType.NOT_INTERESTED)

    def track(
        self, feedback_type: Union[FeedbackType, str], circle_id: str
    ) -> Optional[RecommendationFeedback]:
        """Record an interaction with a recommended circle and send its feedback."""

        kind = FeedbackType(feedback_type)
        recommendation = self._find_live(circle_id)
        if recommendation is None:
            logger.info("Circle %s is not in the current recommendations; ignoring %s", circle_id, kind.value)
            return None
        if kind is FeedbackType.VIEW:
            self.viewed.add(circle_id)
        elif kind is FeedbackType.CLICK:
            self.clicked.add(circle_id)
        elif kind in (FeedbackType.DISMISS, FeedbackType.NOT_INTERESTED):
            self.dismissed.add(circle_id)
        return self.dispatcher.send(kind, recommendation, self._session)

    def is_viewed(self, circle_id: str) -> bool:
        return circle_id in self.viewed

    def is_clicked(self, circle_id: str) -> bool:
        return circle_id in self.clicked

    def is_dismissed(self, circle_id: str) -> bool:
        return circle_id in self.dismissed

    def session_stats(self) -> Dict[str, Any]:
        shown = len(self._session.recommendations) if self._session else 0
        return {
            "session_id": self._session.session_id if self._session else None,
            "algorithm": self._session.algorithm_used if self._session else None,
            "shown": shown,
            "remaining": len(self.recommendations),
            "viewed": len(self.viewed),
            "clicked": len(self.clicked),
            "dismissed": len(self.dismissed),
            "click_through_rate": len(self.clicked) / len(self.viewed) if self.viewed else 0.0,
        }

    def reset(self) -> None:
        """Forget the session and every interaction metric."""

        self._generation += 1
        self._session = None
        self.viewed.clear()
        self.clicked.clear()
        self.dismissed.clear()
        self.store.update(
            {
                config.STORE_KEYS["session"]: None,
                config.STORE_KEYS["recommendations"]: [],
                config.STORE_KEYS["error"]: None,
            }
        )

    async def load_user_preferences(self) -> Optional[UserPreferences]:
        try:
            payload = await self._client.fetch_user_preferences()
            preferences = UserPreferences.from_payload(payload or {})
        except KnestError as error:
            logger.warning("Loading recommendation preferences failed: %s", error)
            self.store.set(config.STORE_KEYS["error"], user_message(error))
            return None
        except (TypeError, ValueError, AttributeError) as error:
            logger.warning("Recommendation preferences could not be decoded: %s", error)
            self.store.set(config.STORE_KEYS["error"], config.MESSAGES["decode"])
            return None
        self.preferences = preferences
        self.store.set(config.STORE_KEYS["preferences"], preferences)
        return preferences

    def _find_live(self, circle_id: str) -> Optional[NextGenRecommendation]:
        if self._session is None:
            return None
        return next((item for item in self.recommendations if item.circle_id == circle_id), None)

    def _hide(self, circle_id: str, kind: FeedbackType) -> Optional[RecommendationFeedback]:
        # the snapshot must be taken before the circle leaves the visible list
        feedback = self.track(kind, circle_id)
        remaining = [item for item in self.recommendations if item.circle_id != circle_id]
        self.store.set(config.STORE_KEYS["recommendations"], remaining)
        return feedback
