"""Interest profile repository: the user's committed interest selections."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Set

from . import config
from .errors import DecodeError, DuplicateSelection, HttpStatusError, KnestError, user_message
from .models import (
    CategoryLevel,
    ProfileKey,
    ProfileLevel,
    SubcategoryLevel,
    TagLevel,
    UserInterestProfile,
)
from .store import ObservableStore

logger = logging.getLogger(__name__)


class ProfileClientProtocol(Protocol):
    """Protocol for the user-profile endpoints."""

    async def fetch_user_profiles(self) -> List[Dict[str, Any]]:
        ...

    async def create_tag_profile(self, tag_id: str) -> Dict[str, Any]:
        ...

    async def create_category_profile(self, category_id: str) -> Dict[str, Any]:
        ...

    async def create_subcategory_profile(
        self, category_id: str, subcategory_id: str
    ) -> Dict[str, Any]:
        ...

    async def delete_user_profile(self, profile_id: str) -> None:
        ...


@dataclass
class ProfileWriteOutcome:
    """Result of a profile write. Exactly one of ``profile``/``error`` is set on add."""

    profile: Optional[UserInterestProfile] = None
    error: Optional[KnestError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class InterestProfileRepository:
    """Holds the user's interest profile entries with O(1) duplicate checks.

    Write methods report failures through ``ProfileWriteOutcome`` instead of
    raising, so the picker can show a message and keep its state.
    """

    def __init__(
        self,
        client: ProfileClientProtocol,
        *,
        store: Optional[ObservableStore] = None,
    ) -> None:
        self._client = client
        self.store = store or ObservableStore()
        self._keys: Set[ProfileKey] = set()
        self._pending: Set[ProfileKey] = set()
        self._generation = 0
        self.store.set(config.STORE_KEYS["profiles"], [])

    def list(self) -> List[UserInterestProfile]:
        return list(self.store.get(config.STORE_KEYS["profiles"], []))

    def contains(self, level_name: str, leaf_id: str) -> bool:
        key = (level_name, leaf_id)
        return key in self._keys or key in self._pending

    def contains_level(self, level: ProfileLevel) -> bool:
        return self.contains(level.level_name, level.leaf_id)

    async def refresh(self) -> List[UserInterestProfile]:
        """Reload entries from the server; on failure keep the last known-good list."""

        self._generation += 1
        token = self._generation
        try:
            payload = await self._client.fetch_user_profiles()
        except KnestError as error:
            logger.warning("Loading interest profiles failed: %s", error)
            self.store.set(config.STORE_KEYS["error"], user_message(error))
            return self.list()
        if payload is None:
            payload = []
        if not isinstance(payload, list):
            error = DecodeError(f"Expected a list of interest profiles, got {type(payload).__name__}")
            logger.warning("Loading interest profiles failed: %s", error)
            self.store.set(config.STORE_KEYS["error"], user_message(error))
            return self.list()

        profiles: List[UserInterestProfile] = []
        for item in payload:
            try:
                profiles.append(UserInterestProfile.from_payload(item))
            except (DecodeError, TypeError, ValueError) as error:
                logger.warning("Skipping undecodable interest profile: %s", error)
        if token != self._generation:
            logger.debug("Dropping stale profile list")
            return self.list()
        self._replace(_dedupe(profiles))
        logger.info("Loaded %d interest profiles", len(profiles))
        return self.list()

    async def add(self, level: ProfileLevel) -> ProfileWriteOutcome:
        if self.contains_level(level):
            return ProfileWriteOutcome(error=_duplicate(level))

        self._pending.add(level.key)
        try:
            payload = await self._create(level)
            profile = UserInterestProfile.from_payload(payload)
        except HttpStatusError as error:
            if _is_duplicate_rejection(error):
                logger.info("Server rejected duplicate %s %s", level.level_name, level.leaf_id)
                return ProfileWriteOutcome(error=_duplicate(level))
            logger.warning("Adding %s %s failed: %s", level.level_name, level.leaf_id, error)
            return ProfileWriteOutcome(error=error)
        except KnestError as error:
            logger.warning("Adding %s %s failed: %s", level.level_name, level.leaf_id, error)
            return ProfileWriteOutcome(error=error)
        except (TypeError, ValueError) as error:
            return ProfileWriteOutcome(error=DecodeError(f"Invalid interest profile payload: {error}"))
        finally:
            self._pending.discard(level.key)

        if profile.key in self._keys:
            # a concurrent refresh already picked the new entry up
            return ProfileWriteOutcome(profile=profile)
        self._replace(self.list() + [profile])
        logger.info("Added %s-level interest %s", level.level_name, level.display_name)
        return ProfileWriteOutcome(profile=profile)

    async def remove(self, profile_id: str) -> ProfileWriteOutcome:
        """Remove an entry optimistically, restoring it if the server call fails."""

        profiles = self.list()
        index = next((i for i, item in enumerate(profiles) if item.id == profile_id), None)
        removed = profiles.pop(index) if index is not None else None
        if removed is not None:
            self._replace(profiles)

        try:
            await self._client.delete_user_profile(profile_id)
        except KnestError as error:
            if isinstance(error, HttpStatusError) and error.is_not_found:
                return ProfileWriteOutcome(profile=removed)
            logger.warning("Removing interest profile %s failed: %s", profile_id, error)
            self.store.set(config.STORE_KEYS["error"], config.MESSAGES["remove_failed"])
            if removed is not None and removed.key not in self._keys:
                restored = self.list()
                restored.insert(min(index, len(restored)), removed)
                self._replace(restored)
            return ProfileWriteOutcome(profile=removed, error=error)
        return ProfileWriteOutcome(profile=removed)

    # Internal helpers -------------------------------------------------------
    async def _create(self, level: ProfileLevel) -> Dict[str, Any]:
        if isinstance(level, TagLevel):
            return await self._client.create_tag_profile(level.tag.id)
        if isinstance(level, SubcategoryLevel):
            return await self._client.create_subcategory_profile(
                level.category_id, level.subcategory.id
            )
        if isinstance(level, CategoryLevel):
            return await self._client.create_category_profile(level.category.id)
        raise TypeError(f"Unsupported profile level: {level!r}")

    def _replace(self, profiles: List[UserInterestProfile]) -> None:
        self._keys = {profile.key for profile in profiles}
        self.store.set(config.STORE_KEYS["profiles"], profiles)


def _duplicate(level: ProfileLevel) -> DuplicateSelection:
    return DuplicateSelection(level.level_name, level.leaf_id, level.display_name)


def _is_duplicate_rejection(error: HttpStatusError) -> bool:
    if error.status_code not in config.DUPLICATE_STATUS_CODES:
        return False
    if error.status_code == 409:
        return True
    detail = error.detail.lower()
    return any(marker in detail for marker in config.DUPLICATE_DETAIL_MARKERS)


def _dedupe(profiles: List[UserInterestProfile]) -> List[UserInterestProfile]:
    seen: Set[ProfileKey] = set()
    unique: List[UserInterestProfile] = []
    for profile in profiles:
        if profile.key in seen:
            logger.warning("Ignoring duplicate %s entry %s from server", *profile.key)
            continue
        seen.add(profile.key)
        unique.append(profile)
    return unique
