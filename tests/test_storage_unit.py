import pytest

from papacatzzi.storage.errors import ConstraintViolation
from papacatzzi.storage.memory import MemoryStore
from papacatzzi.storage.memory_cache import MemoryCache
from papacatzzi.storage.models import Account


class TestMemoryStore:
    def test_email_lookup_is_case_insensitive(self, memory_store):
        stored = memory_store.insert_account(Account.new("Mixed.Case@Example.com", username="mixed"))

        assert stored.email == "mixed.case@example.com"
        assert memory_store.get_account_by_email("MIXED.case@example.com").id == stored.id

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"email": "taken@example.com", "username": "other"}, "email"),
            ({"email": "fresh@example.com", "username": "taken"}, "username"),
            ({"email": "fresh@example.com", "username": "other", "federated_id": "google:1"}, "federated_id"),
        ],
    )
    def test_uniqueness(self, memory_store, kwargs, field):
        memory_store.insert_account(
            Account.new("taken@example.com", username="taken", federated_id="google:1")
        )
        email = kwargs.pop("email")

        with pytest.raises(ConstraintViolation) as excinfo:
            memory_store.insert_account(Account.new(email, **kwargs))

        assert excinfo.value.field == field
        assert len(memory_store.accounts) == 1

    def test_lookups_return_copies(self, memory_store):
        stored = memory_store.insert_account(Account.new("copy@example.com"))

        fetched = memory_store.get_account(stored.id)
        fetched.is_active = True

        assert memory_store.get_account(stored.id).is_active is False

    def test_activate_keeps_existing_fields(self, memory_store):
        stored = memory_store.insert_account(Account.new("p@example.com", federated_id="github:3"))

        activated = memory_store.activate_account(stored.id, username="pat", password_hash="digest")

        assert activated.is_active
        assert activated.username == "pat"
        assert activated.password_hash == "digest"
        assert activated.federated_id == "github:3"

    def test_activate_rejects_taken_username(self, memory_store):
        memory_store.insert_account(Account.new("a@example.com", username="pat", is_active=True))
        placeholder = memory_store.insert_account(Account.new("b@example.com"))

        with pytest.raises(ConstraintViolation):
            memory_store.activate_account(placeholder.id, username="pat")

        assert memory_store.get_account(placeholder.id).is_active is False

    def test_updates_on_missing_account_return_none(self, memory_store):
        assert memory_store.update_password("missing", "digest") is None
        assert memory_store.update_federated_id("missing", "google:1") is None
        assert memory_store.activate_account("missing") is None

    def test_state_survives_restart(self, tmp_path):
        state_path = tmp_path / "state" / "accounts.json"
        store = MemoryStore(state_path=str(state_path))
        stored = store.insert_account(
            Account.new("persist@example.com", username="persist", password_hash="digest", is_active=True)
        )
        store.update_federated_id(stored.id, "google:8")

        reloaded = MemoryStore(state_path=str(state_path))

        account = reloaded.get_account_by_federated_id("google:8")
        assert account.id == stored.id
        assert account.password_hash == "digest"
        assert account.created_at == stored.created_at

    def test_unreadable_state_starts_empty(self, tmp_path):
        state_path = tmp_path / "accounts.json"
        state_path.write_text("{not json")

        assert MemoryStore(state_path=str(state_path)).accounts == {}

    def test_public_dict_hides_digest(self):
        account = Account.new("x@example.com", username="x", password_hash="digest", federated_id="google:1")

        public = account.public_dict()

        assert "password_hash" not in public
        assert public["federated"] is True


class TestMemoryCache:
    async def test_entries_expire(self, memory_cache, clock):
        await memory_cache.set("k", "v", 10)
        clock.advance(9)
        assert await memory_cache.get("k") == "v"

        clock.advance(1)
        assert await memory_cache.get("k") is None
        assert memory_cache.ttl("k") is None

    async def test_set_rearms_ttl(self, memory_cache, clock):
        await memory_cache.set("k", "v", 10)
        clock.advance(8)
        await memory_cache.set("k", "w", 10)
        clock.advance(8)

        assert await memory_cache.get("k") == "w"

    async def test_pop_is_single_use(self, memory_cache):
        await memory_cache.set("k", "v", 10)

        assert await memory_cache.pop("k") == "v"
        assert await memory_cache.pop("k") is None

    async def test_close_clears_entries(self):
        cache = MemoryCache()
        await cache.set("k", "v", 10)
        await cache.close()

        assert await cache.get("k") is None
