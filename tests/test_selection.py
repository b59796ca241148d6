import asyncio

import pytest

from knest import config, sample_taxonomy
from knest.errors import DuplicateSelection, TransportError
from knest.models import CategoryLevel, SubcategoryLevel, TagLevel
from knest.profiles import ProfileWriteOutcome
from knest.selection import InvalidTransition, PickerState, SelectionStateMachine
from knest.taxonomy import DataSource, TaxonomyResult


class FakeTaxonomy:
    """Serves the sample taxonomy; a gate per id holds a child load open."""

    def __init__(self):
        self.gates = {}

    async def _wait(self, key):
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()

    async def load_categories(self):
        return TaxonomyResult(sample_taxonomy.get_categories(), DataSource.LIVE)

    async def load_subcategories(self, category_id):
        await self._wait(category_id)
        return TaxonomyResult(sample_taxonomy.get_subcategories(category_id), DataSource.LIVE)

    async def load_tags(self, subcategory_id):
        await self._wait(subcategory_id)
        return TaxonomyResult(sample_taxonomy.get_tags(subcategory_id), DataSource.FALLBACK)


class FakeRepository:
    def __init__(self, existing=(), error=None):
        self.keys = set(existing)
        self.error = error
        self.added = []
        self.refreshed = 0

    def contains_level(self, level):
        return level.key in self.keys

    async def add(self, level):
        if self.error is not None:
            return ProfileWriteOutcome(error=self.error)
        self.added.append(level)
        self.keys.add(level.key)
        return ProfileWriteOutcome(profile=level)

    async def refresh(self):
        self.refreshed += 1
        return []


def _category(category_id="tech-001"):
    return next(item for item in sample_taxonomy.get_categories() if item.id == category_id)


def _opened(repository=None):
    machine = SelectionStateMachine(FakeTaxonomy(), repository or FakeRepository())
    asyncio.run(machine.open())
    return machine


def test_open_loads_categories_and_profiles():
    repository = FakeRepository()
    machine = _opened(repository)

    assert machine.state is PickerState.PICKING_CATEGORY
    assert len(machine.category_options) == len(sample_taxonomy.CATEGORIES)
    assert repository.refreshed == 1
    assert machine.store.get("category_options") == machine.category_options


def test_full_path_to_a_tag_commits_at_level_three():
    repository = FakeRepository()
    machine = _opened(repository)

    async def scenario():
        await machine.select_category(_category())
        await machine.select_subcategory(machine.subcategory_options[0])
        machine.select_tag(machine.tag_options[2])
        return await machine.commit()

    outcome = asyncio.run(scenario())

    assert outcome.ok
    assert isinstance(repository.added[0], TagLevel)
    assert repository.added[0].tag.id == "tag-003"
    assert machine.state is PickerState.PICKING_CATEGORY
    assert machine.selected_category is None
    assert machine.children_source is None


def test_save_at_category_level_from_subcategory_screen():
    repository = FakeRepository()
    machine = _opened(repository)

    async def scenario():
        await machine.select_category(_category("study-001"))
        machine.save_at_level(config.LEVEL_CATEGORY)
        assert machine.state is PickerState.CONFIRMING
        assert machine.granularity == 1
        return await machine.commit()

    asyncio.run(scenario())

    assert repository.added == [CategoryLevel(_category("study-001"))]


def test_save_at_level_from_tag_screen():
    repository = FakeRepository()
    machine = _opened(repository)

    async def scenario():
        await machine.select_category(_category())
        await machine.select_subcategory(machine.subcategory_options[1])
        machine.save_at_level(config.LEVEL_SUBCATEGORY)
        level = machine.pending_level()
        await machine.commit()
        await machine.select_category(_category())
        await machine.select_subcategory(machine.subcategory_options[1])
        machine.save_at_level(config.LEVEL_CATEGORY)
        assert machine.selected_subcategory is None
        await machine.commit()
        return level

    level = asyncio.run(scenario())

    assert isinstance(level, SubcategoryLevel)
    assert level.category_id == "tech-001"
    assert [type(item) for item in repository.added] == [SubcategoryLevel, CategoryLevel]


def test_save_at_level_rejects_levels_the_screen_does_not_offer():
    machine = _opened()
    asyncio.run(machine.select_category(_category()))

    with pytest.raises(InvalidTransition):
        machine.save_at_level(config.LEVEL_SUBCATEGORY)
    with pytest.raises(InvalidTransition):
        machine.save_at_level(config.LEVEL_TAG)


def test_stale_subcategories_are_never_shown():
    taxonomy = FakeTaxonomy()
    machine = SelectionStateMachine(taxonomy, FakeRepository())

    async def scenario():
        await machine.open()
        taxonomy.gates["tech-001"] = asyncio.Event()
        first = asyncio.create_task(machine.select_category(_category("tech-001")))
        await asyncio.sleep(0)
        machine.back()
        await machine.select_category(_category("art-001"))
        taxonomy.gates["tech-001"].set()
        await first

    asyncio.run(scenario())

    assert machine.selected_category.id == "art-001"
    assert machine.subcategory_options
    assert {item.category_id for item in machine.subcategory_options} == {"art-001"}


def test_results_arriving_after_close_are_ignored():
    taxonomy = FakeTaxonomy()
    machine = SelectionStateMachine(taxonomy, FakeRepository())

    async def scenario():
        await machine.open()
        taxonomy.gates["tech-001"] = asyncio.Event()
        pending = asyncio.create_task(machine.select_category(_category("tech-001")))
        await asyncio.sleep(0)
        machine.close()
        taxonomy.gates["tech-001"].set()
        await pending

    asyncio.run(scenario())

    assert not machine.is_open
    assert machine.subcategory_options == []
    assert machine.state is PickerState.PICKING_CATEGORY
    with pytest.raises(InvalidTransition):
        asyncio.run(machine.select_category(_category()))


def test_back_clears_every_descendant_selection():
    machine = _opened()

    async def scenario():
        await machine.select_category(_category())
        await machine.select_subcategory(machine.subcategory_options[0])
        machine.select_tag(machine.tag_options[0])

    asyncio.run(scenario())
    assert machine.children_source is DataSource.FALLBACK

    machine.back()
    assert machine.state is PickerState.PICKING_TAG
    assert machine.selected_tag is None and machine.granularity is None

    machine.back()
    assert machine.state is PickerState.PICKING_SUBCATEGORY
    assert machine.selected_subcategory is None and machine.tag_options == []

    machine.back()
    assert machine.state is PickerState.PICKING_CATEGORY
    assert machine.selected_category is None and machine.subcategory_options == []
    assert machine.current_level == 0


def test_back_from_category_confirmation_returns_to_subcategories():
    machine = _opened()
    asyncio.run(machine.select_category(_category()))
    machine.save_at_level(config.LEVEL_CATEGORY)

    machine.back()

    assert machine.state is PickerState.PICKING_SUBCATEGORY
    assert machine.selected_category.id == "tech-001"


def test_duplicate_commit_stays_confirming_with_message():
    category = _category()
    repository = FakeRepository(existing={("category", category.id)})
    machine = _opened(repository)

    async def scenario():
        await machine.select_category(category)
        machine.save_at_level(config.LEVEL_CATEGORY)
        return await machine.commit()

    outcome = asyncio.run(scenario())

    assert isinstance(outcome.error, DuplicateSelection)
    assert repository.added == []
    assert machine.state is PickerState.CONFIRMING
    assert machine.error_message == "'Technology' is already selected"
    assert machine.store.get(config.STORE_KEYS["error"]) == machine.error_message


def test_failed_commit_keeps_the_selection():
    machine = _opened(FakeRepository(error=TransportError("offline")))

    async def scenario():
        await machine.select_category(_category())
        machine.save_at_level(config.LEVEL_CATEGORY)
        return await machine.commit()

    outcome = asyncio.run(scenario())

    assert not outcome.ok
    assert machine.state is PickerState.CONFIRMING
    assert machine.selected_category.id == "tech-001"
    assert machine.error_message == config.MESSAGES["transport"]


def test_commit_outside_confirmation_is_invalid():
    machine = _opened()
    with pytest.raises(InvalidTransition):
        asyncio.run(machine.commit())


def test_subcategory_from_another_category_is_rejected():
    machine = _opened()
    asyncio.run(machine.select_category(_category("tech-001")))
    foreign = sample_taxonomy.get_subcategories("art-001")[0]

    with pytest.raises(InvalidTransition):
        asyncio.run(machine.select_subcategory(foreign))
