import asyncio

from knest import config, sample_taxonomy
from knest.errors import DecodeError, DuplicateSelection, HttpStatusError, TransportError
from knest.models import CategoryLevel, SubcategoryLevel, TagLevel
from knest.profiles import InterestProfileRepository
from knest.store import ObservableStore


class FakeProfileClient:
    """In-memory stand-in for the user-profile endpoints."""

    def __init__(self, profiles=None):
        self.profiles = list(profiles or [])
        self.create_calls = []
        self.delete_calls = []
        self.create_error = None
        self.delete_error = None
        self.fetch_error = None
        self._next = 1

    async def fetch_user_profiles(self):
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.profiles)

    def _store(self, **levels):
        if self.create_error is not None:
            raise self.create_error
        payload = {
            "id": f"profile-{self._next}",
            "user": "user-1",
            "added_at": "2025-02-01T08:30:00Z",
            "category": None,
            "subcategory": None,
            "tag": None,
        }
        payload.update(levels)
        self._next += 1
        self.profiles.append(payload)
        return payload

    async def create_tag_profile(self, tag_id):
        self.create_calls.append(("tag", tag_id))
        tag = next(item for item in sample_taxonomy.tag_payloads("tech-sub-001") if item["id"] == tag_id)
        return self._store(tag=tag)

    async def create_category_profile(self, category_id):
        self.create_calls.append(("category", category_id))
        category = next(item for item in sample_taxonomy.category_payloads() if item["id"] == category_id)
        return self._store(category=category)

    async def create_subcategory_profile(self, category_id, subcategory_id):
        self.create_calls.append(("subcategory", subcategory_id))
        subcategory = next(
            item for item in sample_taxonomy.subcategory_payloads(category_id) if item["id"] == subcategory_id
        )
        return self._store(subcategory=subcategory)

    async def delete_user_profile(self, profile_id):
        self.delete_calls.append(profile_id)
        if self.delete_error is not None:
            raise self.delete_error
        self.profiles = [item for item in self.profiles if item["id"] != profile_id]


def _tag_level(tag_id="tag-003"):
    return TagLevel(next(tag for tag in sample_taxonomy.get_tags("tech-sub-001") if tag.id == tag_id))


def _category_level():
    return CategoryLevel(sample_taxonomy.get_categories()[0])


def _subcategory_level():
    subcategory = sample_taxonomy.get_subcategories("tech-001")[0]
    return SubcategoryLevel(subcategory.category_id, subcategory)


def test_add_then_refresh_round_trips_every_level():
    client = FakeProfileClient()
    repository = InterestProfileRepository(client)

    async def scenario():
        for level in (_tag_level(), _category_level(), _subcategory_level()):
            outcome = await repository.add(level)
            assert outcome.ok
        return await repository.refresh()

    profiles = asyncio.run(scenario())

    assert {profile.key for profile in profiles} == {
        ("tag", "tag-003"),
        ("category", "tech-001"),
        ("subcategory", "tech-sub-001"),
    }
    assert repository.contains("subcategory", "tech-sub-001")


def test_adding_a_local_duplicate_never_calls_the_server():
    client = FakeProfileClient()
    repository = InterestProfileRepository(client)

    async def scenario():
        await repository.add(_tag_level())
        return await repository.add(_tag_level())

    outcome = asyncio.run(scenario())

    assert isinstance(outcome.error, DuplicateSelection)
    assert outcome.error.name == "Python"
    assert client.create_calls == [("tag", "tag-003")]
    assert len(repository.list()) == 1


def test_same_id_at_another_level_is_not_a_duplicate():
    client = FakeProfileClient()
    repository = InterestProfileRepository(client)

    asyncio.run(repository.add(_category_level()))

    assert repository.contains("category", "tech-001")
    assert not repository.contains("subcategory", "tech-001")


def test_server_duplicate_rejections_map_to_duplicate_selection():
    client = FakeProfileClient()
    repository = InterestProfileRepository(client)

    client.create_error = HttpStatusError(400, "This tag has already been added")
    rejected = asyncio.run(repository.add(_tag_level()))
    client.create_error = HttpStatusError(409)
    conflict = asyncio.run(repository.add(_tag_level("tag-001")))
    client.create_error = HttpStatusError(400, "level must be 3")
    invalid = asyncio.run(repository.add(_tag_level("tag-002")))

    assert isinstance(rejected.error, DuplicateSelection)
    assert isinstance(conflict.error, DuplicateSelection)
    assert isinstance(invalid.error, HttpStatusError)
    assert repository.list() == []


def test_add_failure_is_reported_not_raised():
    client = FakeProfileClient()
    client.create_error = TransportError("offline")
    repository = InterestProfileRepository(client)

    outcome = asyncio.run(repository.add(_tag_level()))

    assert not outcome.ok
    assert isinstance(outcome.error, TransportError)
    # the pending marker is released so a retry is possible
    assert not repository.contains_level(_tag_level())


def test_refresh_failure_keeps_last_good_list():
    client = FakeProfileClient()
    store = ObservableStore()
    repository = InterestProfileRepository(client, store=store)
    asyncio.run(repository.add(_tag_level()))

    client.fetch_error = HttpStatusError(502)
    profiles = asyncio.run(repository.refresh())

    assert [profile.key for profile in profiles] == [("tag", "tag-003")]
    assert store.get(config.STORE_KEYS["error"]) == "The server had a problem (502). Please try again."


def test_refresh_drops_server_side_duplicates():
    tag = sample_taxonomy.tag_payloads("tech-sub-001")[0]
    entry = {"id": "profile-1", "user": "u", "tag": tag, "added_at": "2025-02-01T08:30:00Z"}
    client = FakeProfileClient([entry, dict(entry, id="profile-2")])
    repository = InterestProfileRepository(client)

    profiles = asyncio.run(repository.refresh())

    assert [profile.id for profile in profiles] == ["profile-1"]


def test_remove_is_optimistic_and_restores_on_failure():
    client = FakeProfileClient()
    store = ObservableStore()
    repository = InterestProfileRepository(client, store=store)

    async def scenario():
        await repository.add(_category_level())
        await repository.add(_tag_level())
        await repository.add(_subcategory_level())
        client.delete_error = TransportError("offline")
        return await repository.remove("profile-2")

    outcome = asyncio.run(scenario())

    assert not outcome.ok
    assert [profile.id for profile in repository.list()] == ["profile-1", "profile-2", "profile-3"]
    assert repository.contains("tag", "tag-003")
    assert store.get(config.STORE_KEYS["error"]) == config.MESSAGES["remove_failed"]


def test_remove_treats_not_found_as_success():
    client = FakeProfileClient()
    repository = InterestProfileRepository(client)

    async def scenario():
        await repository.add(_tag_level())
        client.delete_error = HttpStatusError(404)
        return await repository.remove("profile-1")

    outcome = asyncio.run(scenario())

    assert outcome.ok
    assert repository.list() == []
    assert not repository.contains("tag", "tag-003")


def test_removed_level_can_be_added_again():
    client = FakeProfileClient()
    repository = InterestProfileRepository(client)

    async def scenario():
        await repository.add(_tag_level())
        await repository.remove("profile-1")
        return await repository.add(_tag_level())

    outcome = asyncio.run(scenario())

    assert outcome.ok
    assert client.delete_calls == ["profile-1"]
    assert [profile.id for profile in repository.list()] == ["profile-2"]


def test_non_list_profile_payload_keeps_the_last_good_list():
    client = FakeProfileClient()
    store = ObservableStore()
    repository = InterestProfileRepository(client, store=store)

    async def scenario():
        await repository.add(_tag_level())
        client.profiles = {"count": 0, "results": []}
        return await repository.refresh()

    profiles = asyncio.run(scenario())

    assert [profile.key for profile in profiles] == [("tag", "tag-003")]
    assert store.get(config.STORE_KEYS["error"]) == config.MESSAGES["decode"]


def test_empty_create_response_is_a_decode_error():
    client = FakeProfileClient()
    repository = InterestProfileRepository(client)

    async def create_without_body(tag_id):
        client.create_calls.append(("tag", tag_id))
        return None

    client.create_tag_profile = create_without_body
    outcome = asyncio.run(repository.add(_tag_level()))

    assert isinstance(outcome.error, DecodeError)
    assert repository.list() == []
    assert not repository.contains("tag", "tag-003")
