"""Best-effort delivery of recommendation feedback events."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set, Union

from .errors import KnestError
from .models import FeedbackType, NextGenRecommendation, RecommendationFeedback, RecommendationSession

logger = logging.getLogger(__name__)


class FeedbackClientProtocol(Protocol):
    async def send_feedback(self, payload: Dict[str, Any]) -> None:
        ...


def build_feedback(
    feedback_type: Union[FeedbackType, str],
    recommendation: NextGenRecommendation,
    session: RecommendationSession,
) -> RecommendationFeedback:
    """Snapshot the recommendation a user reacted to.

    Score, algorithm and reasons are copied at this point so attribution holds
    even after the session is refetched or the circle leaves the list.
    """

    return RecommendationFeedback(
        circle_id=recommendation.circle_id,
        feedback_type=FeedbackType(feedback_type),
        session_id=recommendation.session_id or session.session_id,
        recommendation_score=recommendation.score,
        recommendation_algorithm=session.algorithm_used or None,
        recommendation_reasons=tuple(recommendation.reasons),
    )


class FeedbackDispatcher:
    """Fire-and-forget feedback sender.

    ``track`` returns immediately; delivery runs as a background task on the
    running loop. Failed deliveries are logged and dropped, never retried.
    Duplicate delivery is acceptable to the backend.
    """

    def __init__(self, client: FeedbackClientProtocol) -> None:
        self._client = client
        self._pending: Set[asyncio.Task] = set()
        self.delivered = 0
        self.failed = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def track(
        self,
        feedback_type: Union[FeedbackType, str],
        circle_id: str,
        session: Optional[RecommendationSession],
    ) -> Optional[RecommendationFeedback]:
        if session is None:
            logger.info("No recommendation session; dropping %s feedback for %s", feedback_type, circle_id)
            return None
        recommendation = session.find(circle_id)
        if recommendation is None:
            logger.info(
                "Circle %s is not part of session %s; dropping %s feedback",
                circle_id,
                session.session_id,
                feedback_type,
            )
            return None
        return self.send(feedback_type, recommendation, session)

    def send(
        self,
        feedback_type: Union[FeedbackType, str],
        recommendation: NextGenRecommendation,
        session: RecommendationSession,
    ) -> RecommendationFeedback:
        feedback = build_feedback(feedback_type, recommendation, session)
        self.dispatch(feedback)
        return feedback

    def dispatch(self, feedback: RecommendationFeedback) -> None:
        """Schedule delivery on the running event loop.

        Outside a loop the event is logged and dropped like any failed delivery.
        """

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.failed += 1
            logger.warning(
                "No running event loop; dropping %s feedback for circle %s",
                feedback.feedback_type.value,
                feedback.circle_id,
            )
            return
        task = loop.create_task(self._deliver(feedback))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, feedback: RecommendationFeedback) -> None:
        try:
            await self._client.send_feedback(feedback.to_payload())
        except KnestError as error:
            self.failed += 1
            logger.warning(
                "Feedback %s for circle %s was not delivered: %s",
                feedback.feedback_type.value,
                feedback.circle_id,
                error,
            )
            return
        except Exception:
            self.failed += 1
            logger.exception("Unexpected error delivering %s feedback", feedback.feedback_type.value)
            return
        self.delivered += 1
        logger.debug("Feedback %s for circle %s delivered", feedback.feedback_type.value, feedback.circle_id)
