"""Guided interest picker: category -> (subcategory) -> (tag) -> confirm.

The user may commit at any of the three granularities. Child lists are loaded
asynchronously; a response is applied only while the selection that triggered
it is still current and the picker is still open.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, List, Optional, Protocol

from . import config
from .errors import DuplicateSelection, user_message
from .models import (
    CategoryLevel,
    InterestCategory,
    InterestSubcategory,
    InterestTag,
    ProfileLevel,
    SubcategoryLevel,
    TagLevel,
)
from .profiles import ProfileWriteOutcome
from .store import ObservableStore
from .taxonomy import DataSource, TaxonomyResult

logger = logging.getLogger(__name__)


class TaxonomySourceProtocol(Protocol):
    async def load_categories(self) -> TaxonomyResult:
        ...

    async def load_subcategories(self, category_id: str) -> TaxonomyResult:
        ...

    async def load_tags(self, subcategory_id: str) -> TaxonomyResult:
        ...


class ProfileRepositoryProtocol(Protocol):
    def contains_level(self, level: ProfileLevel) -> bool:
        ...

    async def add(self, level: ProfileLevel) -> ProfileWriteOutcome:
        ...

    async def refresh(self) -> List[Any]:
        ...


class PickerState(str, Enum):
    PICKING_CATEGORY = "picking_category"
    PICKING_SUBCATEGORY = "picking_subcategory"
    PICKING_TAG = "picking_tag"
    CONFIRMING = "confirming"


class InvalidTransition(RuntimeError):
    """An action was fired from a state that does not offer it."""


class SelectionStateMachine:
    """Drives the interest picker and commits the chosen level to the repository."""

    def __init__(
        self,
        taxonomy: TaxonomySourceProtocol,
        repository: ProfileRepositoryProtocol,
        *,
        store: Optional[ObservableStore] = None,
    ) -> None:
        self._taxonomy = taxonomy
        self._repository = repository
        self.store = store or ObservableStore()
        self._is_open = True
        self._session = 0
        self._category_token = 0
        self._subcategory_token = 0
        self.state = PickerState.PICKING_CATEGORY
        self.selected_category: Optional[InterestCategory] = None
        self.selected_subcategory: Optional[InterestSubcategory] = None
        self.selected_tag: Optional[InterestTag] = None
        self.granularity: Optional[int] = None
        self.category_options: List[InterestCategory] = []
        self.subcategory_options: List[InterestSubcategory] = []
        self.tag_options: List[InterestTag] = []
        self.children_source: Optional[DataSource] = None
        self.error_message: Optional[str] = None
        self._publish()

    # Derived state -----------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def current_level(self) -> int:
        """Depth of the selection path, 0 when nothing is selected."""

        if self.selected_tag is not None:
            return config.LEVEL_TAG
        if self.selected_subcategory is not None:
            return config.LEVEL_SUBCATEGORY
        if self.selected_category is not None:
            return config.LEVEL_CATEGORY
        return 0

    def pending_level(self) -> Optional[ProfileLevel]:
        """The profile level that ``commit`` would write, if confirming."""

        if self.state is not PickerState.CONFIRMING:
            return None
        if self.granularity == config.LEVEL_TAG and self.selected_tag is not None:
            return TagLevel(tag=self.selected_tag)
        if self.granularity == config.LEVEL_SUBCATEGORY and self.selected_subcategory is not None:
            return SubcategoryLevel(
                category_id=self.selected_subcategory.category_id,
                subcategory=self.selected_subcategory,
            )
        if self.granularity == config.LEVEL_CATEGORY and self.selected_category is not None:
            return CategoryLevel(category=self.selected_category)
        return None

    # Lifecycle ---------------------------------------------------------------
    async def open(self) -> None:
        """Show the picker: reset the selection and load the category list."""

        self._is_open = True
        self._session += 1
        session = self._session
        self._reset_selection()
        result = await self._taxonomy.load_categories()
        if self._is_open and session == self._session:
            self.category_options = list(result.items)
            self._publish()
        await self._repository.refresh()

    def close(self) -> None:
        """Dismiss the picker; pending child loads are no longer applied."""

        self._is_open = False
        self._session += 1
        self._reset_selection()

    # Transitions -------------------------------------------------------------
    async def select_category(self, category: InterestCategory) -> None:
        self._require_open()
        self._require_state(
            PickerState.PICKING_CATEGORY,
            PickerState.PICKING_SUBCATEGORY,
            PickerState.PICKING_TAG,
            action="select_category",
        )
        self.selected_category = category
        self._clear_subcategory()
        self.subcategory_options = []
        self.state = PickerState.PICKING_SUBCATEGORY
        self._category_token += 1
        token, session = self._category_token, self._session
        self.error_message = None
        self._publish()

        result = await self._taxonomy.load_subcategories(category.id)
        if not self._still_current(session) or token != self._category_token:
            logger.debug("Ignoring stale subcategories for category %s", category.id)
            return
        self.subcategory_options = [
            item for item in result.items if item.category_id == category.id
        ]
        self.children_source = result.source
        self._publish()

    async def select_subcategory(self, subcategory: InterestSubcategory) -> None:
        self._require_open()
        self._require_state(
            PickerState.PICKING_SUBCATEGORY, PickerState.PICKING_TAG, action="select_subcategory"
        )
        if self.selected_category is None or subcategory.category_id != self.selected_category.id:
            raise InvalidTransition(
                f"Subcategory {subcategory.id} does not belong to the selected category"
            )
        self.selected_subcategory = subcategory
        self.selected_tag = None
        self.granularity = None
        self.tag_options = []
        self.state = PickerState.PICKING_TAG
        self._subcategory_token += 1
        token, session = self._subcategory_token, self._session
        self.error_message = None
        self._publish()

        result = await self._taxonomy.load_tags(subcategory.id)
        if not self._still_current(session) or token != self._subcategory_token:
            logger.debug("Ignoring stale tags for subcategory %s", subcategory.id)
            return
        self.tag_options = [item for item in result.items if item.subcategory_id == subcategory.id]
        self.children_source = result.source
        self._publish()

    def select_tag(self, tag: InterestTag) -> None:
        self._require_open()
        self._require_state(PickerState.PICKING_TAG, action="select_tag")
        if self.selected_subcategory is None or tag.subcategory_id != self.selected_subcategory.id:
            raise InvalidTransition(f"Tag {tag.id} does not belong to the selected subcategory")
        self.selected_tag = tag
        self.granularity = config.LEVEL_TAG
        self.state = PickerState.CONFIRMING
        self.error_message = None
        self._publish()

    def save_at_level(self, level: int) -> None:
        """Commit to a coarser granularity using only the selections made so far."""

        self._require_open()
        if self.state is PickerState.PICKING_SUBCATEGORY:
            allowed = (config.LEVEL_CATEGORY,)
        elif self.state is PickerState.PICKING_TAG:
            allowed = (config.LEVEL_CATEGORY, config.LEVEL_SUBCATEGORY)
        else:
            raise InvalidTransition(f"save_at_level is not available in {self.state.value}")
        if level not in allowed:
            raise InvalidTransition(f"Cannot save at level {level} from {self.state.value}")

        if level == config.LEVEL_CATEGORY:
            self._clear_subcategory()
        self.selected_tag = None
        self.granularity = level
        self.state = PickerState.CONFIRMING
        self.error_message = None
        self._publish()

    def back(self) -> None:
        """Step back one screen, clearing every selection below it."""

        if self.state is PickerState.CONFIRMING:
            granularity = self.granularity
            self.granularity = None
            self.selected_tag = None
            if granularity == config.LEVEL_CATEGORY:
                self.state = PickerState.PICKING_SUBCATEGORY
            else:
                self.state = PickerState.PICKING_TAG
        elif self.state is PickerState.PICKING_TAG:
            self._clear_subcategory()
            self.state = PickerState.PICKING_SUBCATEGORY
        elif self.state is PickerState.PICKING_SUBCATEGORY:
            self.selected_category = None
            self._clear_subcategory()
            self.subcategory_options = []
            self._category_token += 1
            self.state = PickerState.PICKING_CATEGORY
        self.error_message = None
        self._publish()

    async def commit(self) -> ProfileWriteOutcome:
        """Write the pending level to the repository.

        Success returns the picker to its initial state; a duplicate or any
        other failure keeps it in CONFIRMING with a user-visible message.
        """

        self._require_open()
        level = self.pending_level()
        if level is None:
            raise InvalidTransition(f"commit is not available in {self.state.value}")

        if self._repository.contains_level(level):
            error = DuplicateSelection(level.level_name, level.leaf_id, level.display_name)
            self._fail(error)
            return ProfileWriteOutcome(error=error)

        session = self._session
        outcome = await self._repository.add(level)
        if session != self._session:
            return outcome
        if outcome.error is not None:
            self._fail(outcome.error)
            return outcome

        logger.info("Committed %s-level interest %s", level.level_name, level.display_name)
        self._session += 1
        self._reset_selection()
        return outcome

    # Internal helpers -------------------------------------------------------
    def _fail(self, error: Exception) -> None:
        self.error_message = user_message(error)
        self._publish()

    def _clear_subcategory(self) -> None:
        self.selected_subcategory = None
        self.selected_tag = None
        self.granularity = None
        self.tag_options = []
        self._subcategory_token += 1

    def _reset_selection(self) -> None:
        self.selected_category = None
        self._clear_subcategory()
        self.subcategory_options = []
        self._category_token += 1
        self.children_source = None
        self.error_message = None
        self.state = PickerState.PICKING_CATEGORY
        self._publish()

    def _still_current(self, session: int) -> bool:
        return self._is_open and session == self._session

    def _require_open(self) -> None:
        if not self._is_open:
            raise InvalidTransition("The picker is closed")

    def _require_state(self, *states: PickerState, action: str) -> None:
        if self.state not in states:
            raise InvalidTransition(f"{action} is not available in {self.state.value}")

    def _publish(self) -> None:
        self.store.update(
            {
                "state": self.state,
                "selected_category": self.selected_category,
                "selected_subcategory": self.selected_subcategory,
                "selected_tag": self.selected_tag,
                "granularity": self.granularity,
                "category_options": list(self.category_options),
                "subcategory_options": list(self.subcategory_options),
                "tag_options": list(self.tag_options),
                config.STORE_KEYS["error"]: self.error_message,
            }
        )
