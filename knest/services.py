"""REST client for the Knest interest and recommendation endpoints."""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from . import config, env
from .errors import DecodeError, HttpStatusError, TransportError, Unauthenticated

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """Source of bearer tokens; owned by the authentication layer."""

    def get_access_token(self) -> Optional[str]:
        ...

    def refresh_access_token(self) -> Optional[str]:
        ...


@dataclass
class StaticTokenProvider:
    """Token provider for a fixed token, e.g. one read from the environment."""

    access_token: Optional[str] = None

    def get_access_token(self) -> Optional[str]:
        return self.access_token

    def refresh_access_token(self) -> Optional[str]:
        # a static token cannot be renewed
        return None


class KnestAPIClient:
    """Async facade over a blocking ``requests.Session``.

    Each public coroutine runs its HTTP call in a worker thread, so the event
    loop that owns the managers is never blocked. Payloads are returned as
    decoded JSON; turning them into models is the caller's job.
    """

    def __init__(
        self,
        base_url: str = config.DEFAULT_API_BASE_URL,
        *,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = config.DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self.session = session or requests.Session()

    # Taxonomy (anonymous access tolerated) ------------------------------------
    async def fetch_categories(self) -> List[Dict[str, Any]]:
        return await self._call("GET", config.ENDPOINTS["categories"])

    async def fetch_subcategories(self, category_id: str) -> List[Dict[str, Any]]:
        return await self._call(
            "GET", config.ENDPOINTS["subcategories"], params={"category_id": category_id}
        )

    async def fetch_tags(self, subcategory_id: str) -> List[Dict[str, Any]]:
        return await self._call(
            "GET", config.ENDPOINTS["tags"], params={"subcategory_id": subcategory_id}
        )

    async def fetch_taxonomy_tree(self) -> List[Dict[str, Any]]:
        return await self._call("GET", config.ENDPOINTS["tree"])

    # User interest profiles --------------------------------------------------
    async def fetch_user_profiles(self) -> List[Dict[str, Any]]:
        try:
            return await self._call("GET", config.ENDPOINTS["user_profiles"], auth_required=True)
        except HttpStatusError as error:
            # new users have no profile resource yet
            if error.is_not_found:
                return []
            raise

    async def create_tag_profile(self, tag_id: str) -> Dict[str, Any]:
        return await self._call(
            "POST",
            config.ENDPOINTS["user_profiles"],
            json={"tag_id": tag_id},
            auth_required=True,
        )

    async def create_category_profile(self, category_id: str) -> Dict[str, Any]:
        return await self._call(
            "POST",
            config.ENDPOINTS["add_category_level"],
            json={"category_id": category_id, "level": config.LEVEL_CATEGORY},
            auth_required=True,
        )

    async def create_subcategory_profile(
        self, category_id: str, subcategory_id: str
    ) -> Dict[str, Any]:
        return await self._call(
            "POST",
            config.ENDPOINTS["add_subcategory_level"],
            json={
                "category_id": category_id,
                "subcategory_id": subcategory_id,
                "level": config.LEVEL_SUBCATEGORY,
            },
            auth_required=True,
        )

    async def delete_user_profile(self, profile_id: str) -> None:
        await self._call(
            "DELETE", f"{config.ENDPOINTS['user_profiles']}{profile_id}/", auth_required=True
        )

    # Recommendations ---------------------------------------------------------
    async def fetch_recommendations(
        self,
        *,
        algorithm: str,
        limit: int,
        diversity_factor: float,
        exclude_categories: Sequence[str] = (),
        include_new_circles: bool = True,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "algorithm": algorithm,
            "limit": limit,
            "diversity_factor": diversity_factor,
            "include_new_circles": "true" if include_new_circles else "false",
        }
        if exclude_categories:
            # requests repeats the key once per list element
            params["exclude_categories"] = list(exclude_categories)
        return await self._call(
            "GET", config.ENDPOINTS["recommendations"], params=params, auth_required=True
        )

    async def send_feedback(self, payload: Dict[str, Any]) -> None:
        await self._call("POST", config.ENDPOINTS["feedback"], json=payload, auth_required=True)

    async def fetch_user_preferences(self) -> Dict[str, Any]:
        return await self._call("GET", config.ENDPOINTS["user_preferences"], auth_required=True)

    # Internal helpers -------------------------------------------------------
    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        auth_required: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        token = self.token_provider.get_access_token() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif auth_required:
            raise Unauthenticated(f"{method} {path} requires an access token")

        logger.debug("HTTP %s %s", method, url)
        try:
            response = self.session.request(
                method, url, headers=headers, params=params, json=json, timeout=self.timeout
            )
        except requests.RequestException as error:
            raise TransportError(f"{method} {path} failed: {error}") from error

        status = response.status_code
        if status == 401:
            # the caller re-issues the request after the refresh if it still wants it
            if self.token_provider:
                self.token_provider.refresh_access_token()
            raise Unauthenticated(f"{method} {path} was rejected with 401")
        if not 200 <= status < 300:
            raise HttpStatusError(status, _error_detail(response))
        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as error:
            raise DecodeError(f"{method} {path} returned invalid JSON: {error}") from error


def build_live_client(
    *,
    base_url: Optional[str] = None,
    access_token: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> KnestAPIClient:
    """Factory helper that wires the API client from the environment and .env keys."""

    env.load_env()
    resolved_base = base_url or os.environ.get(config.ENV_API_BASE_URL, config.DEFAULT_API_BASE_URL)
    token = access_token or os.environ.get(config.ENV_ACCESS_TOKEN) or None
    timeout = env.get_float(config.ENV_TIMEOUT_SECONDS, config.DEFAULT_TIMEOUT_SECONDS)
    return KnestAPIClient(
        resolved_base,
        token_provider=StaticTokenProvider(token),
        timeout=timeout,
        session=session,
    )


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip()[:200]
    if isinstance(payload, dict):
        for key in ("detail", "error", "message"):
            if payload.get(key):
                return str(payload[key])
    return str(payload)[:200]
