"""Taxonomy store: cached category -> subcategory -> tag collections."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, TypeVar

from . import config, sample_taxonomy
from .errors import DecodeError, KnestError, user_message
from .models import InterestCategory, InterestSubcategory, InterestTag
from .store import ObservableStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaxonomyClientProtocol(Protocol):
    """Protocol for the taxonomy read endpoints."""

    async def fetch_categories(self) -> List[Dict[str, Any]]:
        ...

    async def fetch_subcategories(self, category_id: str) -> List[Dict[str, Any]]:
        ...

    async def fetch_tags(self, subcategory_id: str) -> List[Dict[str, Any]]:
        ...

    async def fetch_taxonomy_tree(self) -> List[Dict[str, Any]]:
        ...


class DataSource(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"  # fixed offline sample data
    UNAVAILABLE = "unavailable"  # load failed and sample data is disabled


@dataclass
class TaxonomyResult:
    items: List[Any]
    source: DataSource

    @property
    def is_live(self) -> bool:
        return self.source is DataSource.LIVE


@dataclass
class FlattenedTaxonomy:
    """The nested tree split into three parallel collections."""

    categories: List[InterestCategory] = field(default_factory=list)
    subcategories: List[InterestSubcategory] = field(default_factory=list)
    tags: List[InterestTag] = field(default_factory=list)
    source: DataSource = DataSource.LIVE


def flatten_tree(trees: Iterable[Dict[str, Any]]) -> FlattenedTaxonomy:
    """Flatten the nested tree payload, re-deriving parent references.

    The nested wire format omits ``category_id`` on subcategories, the
    subcategory reference on tags, and sometimes ``created_at``; those are
    filled in from the enclosing node.
    """

    if not isinstance(trees, list):
        raise DecodeError("Taxonomy tree payload must be a list")
    result = FlattenedTaxonomy()
    try:
        _flatten_into(result, trees)
    except (TypeError, ValueError, AttributeError) as error:
        raise DecodeError(f"Malformed taxonomy tree: {error}") from error
    return result


def _flatten_into(result: FlattenedTaxonomy, trees: List[Dict[str, Any]]) -> None:
    for tree in trees:
        category_payload = tree.get("category") if isinstance(tree, dict) else None
        if not isinstance(category_payload, dict):
            raise DecodeError("Taxonomy tree node is missing its category")
        category = InterestCategory.from_payload(category_payload)
        result.categories.append(category)
        for sub_payload in tree.get("subcategories") or ():
            subcategory = InterestSubcategory.from_payload(
                sub_payload,
                category_id=category.id,
                default_created_at=category.created_at,
            )
            result.subcategories.append(subcategory)
            for tag_payload in sub_payload.get("tags") or ():
                tag = InterestTag.from_payload(
                    tag_payload,
                    subcategory_id=subcategory.id,
                    category_id=category.id,
                    default_created_at=subcategory.created_at,
                )
                result.tags.append(tag)


class TaxonomyStore:
    """Loads and caches the three taxonomy collections.

    Loaders never raise: on any client failure they return the documented
    sample taxonomy for the same scope (or an empty ``UNAVAILABLE`` result when
    ``allow_fallback`` is off), tagged with its ``DataSource`` so callers can
    tell real data from sample data.
    """

    def __init__(
        self,
        client: TaxonomyClientProtocol,
        *,
        allow_fallback: bool = True,
        store: Optional[ObservableStore] = None,
    ) -> None:
        self._client = client
        self.allow_fallback = allow_fallback
        self.store = store or ObservableStore()
        self._generations: Dict[str, int] = {}
        self._sources: Dict[str, DataSource] = {}
        self._in_flight = 0
        keys = config.STORE_KEYS
        for key in (keys["categories"], keys["subcategories"], keys["tags"]):
            self.store.set(key, [])

    # Views -------------------------------------------------------------------
    @property
    def categories(self) -> List[InterestCategory]:
        return list(self.store.get(config.STORE_KEYS["categories"], []))

    @property
    def subcategories(self) -> List[InterestSubcategory]:
        return list(self.store.get(config.STORE_KEYS["subcategories"], []))

    @property
    def tags(self) -> List[InterestTag]:
        return list(self.store.get(config.STORE_KEYS["tags"], []))

    def subcategories_for(self, category_id: str) -> List[InterestSubcategory]:
        return [item for item in self.subcategories if item.category_id == category_id]

    def tags_for(self, subcategory_id: str) -> List[InterestTag]:
        return [item for item in self.tags if item.subcategory_id == subcategory_id]

    def source_of(self, collection: str) -> Optional[DataSource]:
        return self._sources.get(collection)

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    # Loaders -----------------------------------------------------------------
    async def load_categories(self) -> TaxonomyResult:
        key = config.STORE_KEYS["categories"]
        return await self._load(
            key,
            self._client.fetch_categories,
            InterestCategory.from_payload,
            sample_taxonomy.get_categories,
        )

    async def load_subcategories(self, category_id: str) -> TaxonomyResult:
        key = config.STORE_KEYS["subcategories"]

        def _decode(payload: Dict[str, Any]) -> InterestSubcategory:
            return InterestSubcategory.from_payload(payload, category_id=category_id)

        return await self._load(
            key,
            lambda: self._client.fetch_subcategories(category_id),
            _decode,
            lambda: sample_taxonomy.get_subcategories(category_id),
        )

    async def load_tags(self, subcategory_id: str) -> TaxonomyResult:
        key = config.STORE_KEYS["tags"]

        def _decode(payload: Dict[str, Any]) -> InterestTag:
            return InterestTag.from_payload(payload, subcategory_id=subcategory_id)

        return await self._load(
            key,
            lambda: self._client.fetch_tags(subcategory_id),
            _decode,
            lambda: sample_taxonomy.get_tags(subcategory_id),
        )

    async def load_full_tree(self) -> FlattenedTaxonomy:
        keys = config.STORE_KEYS
        tokens = {
            name: self._next_generation(keys[name])
            for name in ("categories", "subcategories", "tags")
        }
        self._begin_load()
        try:
            flattened = flatten_tree(await self._client.fetch_taxonomy_tree())
            flattened.source = DataSource.LIVE
            logger.info(
                "Loaded taxonomy tree: %d categories, %d subcategories, %d tags",
                len(flattened.categories),
                len(flattened.subcategories),
                len(flattened.tags),
            )
        except KnestError as error:
            logger.warning("Taxonomy tree load failed: %s", error)
            self.store.set(config.STORE_KEYS["error"], user_message(error))
            flattened = self._fallback_tree()
        finally:
            self._end_load()

        for name, items in (
            ("categories", flattened.categories),
            ("subcategories", flattened.subcategories),
            ("tags", flattened.tags),
        ):
            self._apply(keys[name], tokens[name], TaxonomyResult(items, flattened.source))
        return flattened

    # Internal helpers -------------------------------------------------------
    async def _load(
        self,
        key: str,
        fetch: Callable[[], Any],
        decode: Callable[[Dict[str, Any]], T],
        sample: Callable[[], List[T]],
    ) -> TaxonomyResult:
        token = self._next_generation(key)
        self._begin_load()
        try:
            payload = await fetch()
            result = TaxonomyResult(_decode_records(payload, decode, key), DataSource.LIVE)
            logger.debug("Loaded %d %s", len(result.items), key)
        except KnestError as error:
            logger.warning("Loading %s failed, using %s data: %s", key, self._degraded_source().value, error)
            self.store.set(config.STORE_KEYS["error"], user_message(error))
            if self.allow_fallback:
                result = TaxonomyResult(sample(), DataSource.FALLBACK)
            else:
                result = TaxonomyResult([], DataSource.UNAVAILABLE)
        finally:
            self._end_load()
        self._apply(key, token, result)
        return result

    def _begin_load(self) -> None:
        self._in_flight += 1
        self.store.set(config.STORE_KEYS["is_loading"], True)

    def _end_load(self) -> None:
        # overlapping loads keep the flag up until the last one settles
        self._in_flight -= 1
        self.store.set(config.STORE_KEYS["is_loading"], self._in_flight > 0)

    def _fallback_tree(self) -> FlattenedTaxonomy:
        if not self.allow_fallback:
            return FlattenedTaxonomy(source=DataSource.UNAVAILABLE)
        return FlattenedTaxonomy(
            categories=sample_taxonomy.get_categories(),
            subcategories=sample_taxonomy.get_all_subcategories(),
            tags=sample_taxonomy.get_all_tags(),
            source=DataSource.FALLBACK,
        )

    def _degraded_source(self) -> DataSource:
        return DataSource.FALLBACK if self.allow_fallback else DataSource.UNAVAILABLE

    def _next_generation(self, key: str) -> int:
        self._generations[key] = self._generations.get(key, 0) + 1
        return self._generations[key]

    def _apply(self, key: str, token: int, result: TaxonomyResult) -> bool:
        if self._generations.get(key) != token:
            logger.debug("Dropping stale %s response", key)
            return False
        self._sources[key] = result.source
        self.store.set(key, list(result.items))
        return True


def _decode_records(
    payload: Any, decode: Callable[[Dict[str, Any]], T], label: str
) -> List[T]:
    if not isinstance(payload, list):
        raise DecodeError(f"Expected a list of {label}, got {type(payload).__name__}")
    records: List[T] = []
    for item in payload:
        try:
            records.append(decode(item))
        except (DecodeError, TypeError, ValueError, AttributeError) as error:
            logger.warning("Skipping undecodable %s record: %s", label, error)
    return records
