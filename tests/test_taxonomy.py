import asyncio

import pytest

from knest import config, sample_taxonomy
from knest.errors import DecodeError, HttpStatusError, TransportError
from knest.store import ObservableStore
from knest.taxonomy import DataSource, TaxonomyStore, flatten_tree


class FakeTaxonomyClient:
    def __init__(self, *, error=None):
        self.error = error
        self.gates = {}
        self.calls = []

    async def _respond(self, name, key, payload):
        self.calls.append((name, key))
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return payload

    async def fetch_categories(self):
        return await self._respond("categories", None, sample_taxonomy.category_payloads())

    async def fetch_subcategories(self, category_id):
        return await self._respond(
            "subcategories", category_id, sample_taxonomy.subcategory_payloads(category_id)
        )

    async def fetch_tags(self, subcategory_id):
        return await self._respond("tags", subcategory_id, sample_taxonomy.tag_payloads(subcategory_id))

    async def fetch_taxonomy_tree(self):
        return await self._respond("tree", None, sample_taxonomy.tree_payload())


def test_flatten_tree_rederives_parents_and_timestamps():
    tree = [
        {
            "category": {"id": "c1", "name": "Cat", "created_at": "2025-01-27T10:00:00Z"},
            "subcategories": [
                {
                    "id": "s1",
                    "name": "Sub",
                    "tags": [{"id": "t1", "name": "Tag", "usage_count": 4}],
                }
            ],
        }
    ]

    flattened = flatten_tree(tree)

    subcategory = flattened.subcategories[0]
    tag = flattened.tags[0]
    assert subcategory.category_id == "c1"
    assert subcategory.created_at == flattened.categories[0].created_at
    assert (tag.subcategory_id, tag.category_id) == ("s1", "c1")


def test_flatten_tree_rejects_malformed_payloads():
    with pytest.raises(DecodeError):
        flatten_tree({"category": {}})
    with pytest.raises(DecodeError):
        flatten_tree([{"subcategories": []}])


def test_tags_carry_their_subcategorys_category():
    taxonomy = TaxonomyStore(FakeTaxonomyClient())
    flattened = asyncio.run(taxonomy.load_full_tree())

    parents = {item.id: item.category_id for item in flattened.subcategories}
    assert flattened.source is DataSource.LIVE
    assert flattened.tags
    for tag in flattened.tags:
        assert tag.category_id == parents[tag.subcategory_id]
    assert [item.id for item in taxonomy.tags_for("art-sub-001")] == ["tag-007", "tag-008"]


@pytest.mark.parametrize("error", [HttpStatusError(503, "maintenance"), TransportError("offline")])
def test_failed_load_falls_back_to_sample_data(error):
    store = ObservableStore()
    taxonomy = TaxonomyStore(FakeTaxonomyClient(error=error), store=store)

    result = asyncio.run(taxonomy.load_subcategories("tech-001"))

    assert result.source is DataSource.FALLBACK
    assert not result.is_live
    assert [item.id for item in result.items] == ["tech-sub-001", "tech-sub-002", "tech-sub-003"]
    assert taxonomy.source_of(config.STORE_KEYS["subcategories"]) is DataSource.FALLBACK
    assert store.get(config.STORE_KEYS["error"])
    assert store.get(config.STORE_KEYS["is_loading"]) is False


def test_failed_load_without_fallback_is_empty_and_unavailable():
    taxonomy = TaxonomyStore(FakeTaxonomyClient(error=HttpStatusError(500)), allow_fallback=False)

    categories = asyncio.run(taxonomy.load_categories())
    tree = asyncio.run(taxonomy.load_full_tree())

    assert categories.items == []
    assert categories.source is DataSource.UNAVAILABLE
    assert tree.source is DataSource.UNAVAILABLE
    assert taxonomy.categories == []


def test_failed_tree_load_falls_back_to_the_whole_sample_tree():
    taxonomy = TaxonomyStore(FakeTaxonomyClient(error=TransportError("offline")))

    flattened = asyncio.run(taxonomy.load_full_tree())

    assert flattened.source is DataSource.FALLBACK
    assert len(taxonomy.categories) == len(sample_taxonomy.CATEGORIES)
    assert len(taxonomy.tags) == len(sample_taxonomy.get_all_tags())


def test_undecodable_records_are_skipped():
    class PartlyBrokenClient(FakeTaxonomyClient):
        async def fetch_categories(self):
            return [{"id": "ok", "name": "Fine", "created_at": "2025-01-27T10:00:00Z"}, {"name": "no id"}]

    result = asyncio.run(TaxonomyStore(PartlyBrokenClient()).load_categories())

    assert [item.id for item in result.items] == ["ok"]
    assert result.is_live


def test_only_the_latest_response_is_applied():
    client = FakeTaxonomyClient()
    taxonomy = TaxonomyStore(client)

    async def scenario():
        client.gates["tech-001"] = asyncio.Event()
        slow = asyncio.create_task(taxonomy.load_subcategories("tech-001"))
        await asyncio.sleep(0)
        await taxonomy.load_subcategories("art-001")
        client.gates["tech-001"].set()
        return await slow

    stale = asyncio.run(scenario())

    # the stale result is still returned to its caller but never stored
    assert stale.items[0].category_id == "tech-001"
    assert {item.category_id for item in taxonomy.subcategories} == {"art-001"}


def test_loading_flag_stays_up_while_any_load_is_pending():
    store = ObservableStore()
    client = FakeTaxonomyClient()
    taxonomy = TaxonomyStore(client, store=store)

    async def scenario():
        client.gates["tech-001"] = asyncio.Event()
        slow = asyncio.create_task(taxonomy.load_subcategories("tech-001"))
        await asyncio.sleep(0)
        await taxonomy.load_categories()
        still_loading = (taxonomy.is_loading, store.get(config.STORE_KEYS["is_loading"]))
        client.gates["tech-001"].set()
        await slow
        return still_loading

    still_loading = asyncio.run(scenario())

    assert still_loading == (True, True)
    assert taxonomy.is_loading is False
    assert store.get(config.STORE_KEYS["is_loading"]) is False
