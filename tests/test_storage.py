"""Tests for message/user stores and reference resolution."""

import asyncio

import pytest

from chatbus.storage import (
    ConflictError,
    FileRef,
    SortOrder,
    StorageBackend,
    create_memory_storage,
    create_sqlite_storage,
    populate_message,
    populate_messages,
    settings_from_env,
)

BACKENDS = ["memory", "sqlite"]


async def _bundle(kind: str, tmp_path):
    if kind == "memory":
        return await create_memory_storage()
    return await create_sqlite_storage(str(tmp_path / "chat.db"))


# ── messages ────────────────────────────────────────────────────


class TestMessageStore:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_create_and_get(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        file = FileRef(url="https://cdn.example/a.png", mime_type="image/png", filename="a.png")

        created = await storage.messages.create("r1", "u1", text="hi", file=file)
        fetched = await storage.messages.get(created.id)

        assert fetched is not None
        assert fetched.channel_id == "r1"
        assert fetched.sender_id == "u1"
        assert fetched.text == "hi"
        assert fetched.file == file
        assert fetched.is_edited is False
        assert fetched.is_read is False
        assert fetched.created_at.tzinfo is not None
        await storage.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_find_filters_sorts_and_limits(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        for text in ("one", "two", "three"):
            await storage.messages.create("r1", "u1", text=text)
            await asyncio.sleep(0.002)
        await storage.messages.create("r2", "u1", text="elsewhere")

        oldest = await storage.messages.find({"channel_id": "r1"})
        newest = await storage.messages.find(
            {"channel_id": "r1"}, sort=SortOrder.NEWEST_FIRST, limit=2
        )

        assert [m.text for m in oldest] == ["one", "two", "three"]
        assert [m.text for m in newest] == ["three", "two"]
        await storage.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_update_returns_new_state(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        created = await storage.messages.create("r1", "u1", text="hi")

        updated = await storage.messages.update(created.id, {"text": "hello", "is_edited": True})

        assert updated.text == "hello"
        assert updated.is_edited is True
        assert (await storage.messages.get(created.id)).text == "hello"
        await storage.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_update_missing_returns_none(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        assert await storage.messages.update("missing", {"is_read": True}) is None
        await storage.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_delete(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        created = await storage.messages.create("r1", "u1", text="bye")

        assert await storage.messages.delete(created.id) is True
        assert await storage.messages.get(created.id) is None
        assert await storage.messages.delete(created.id) is False
        await storage.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_unsupported_fields_rejected(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        created = await storage.messages.create("r1", "u1", text="hi")

        with pytest.raises(ValueError):
            await storage.messages.find({"body": "hi"})
        with pytest.raises(ValueError):
            await storage.messages.update(created.id, {"channel_id": "r2"})
        await storage.close()

    @pytest.mark.asyncio
    async def test_memory_returns_copies(self):
        storage = await create_memory_storage()
        created = await storage.messages.create("r1", "u1", text="hi")

        created.text = "mutated"

        assert (await storage.messages.get(created.id)).text == "hi"


# ── users ───────────────────────────────────────────────────────


class TestUserStore:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_create_and_lookup(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        user = await storage.users.create("Alice", "Alice@Example.com", profile_pic="a.png", user_id="u1")

        assert user.id == "u1"
        assert (await storage.users.get("u1")).full_name == "Alice"
        assert (await storage.users.find_by_email("alice@example.com")).id == "u1"
        assert await storage.users.find_by_email("nobody@example.com") is None
        await storage.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_duplicate_email_conflicts(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        await storage.users.create("Alice", "alice@example.com")

        with pytest.raises(ConflictError):
            await storage.users.create("Alice Again", "alice@example.com")
        await storage.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_get_many_skips_missing(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        await storage.users.create("Alice", "alice@example.com", user_id="u1")
        await storage.users.create("Bob", "bob@example.com", user_id="u2")

        users = await storage.users.get_many(["u1", "u2", "u3"])

        assert set(users) == {"u1", "u2"}
        await storage.close()


# ── populate ────────────────────────────────────────────────────


class TestPopulate:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", BACKENDS)
    async def test_sender_and_parent_resolved(self, kind, tmp_path):
        storage = await _bundle(kind, tmp_path)
        await storage.users.create("Alice", "alice@example.com", profile_pic="a.png", user_id="u1")
        await storage.users.create("Bob", "bob@example.com", user_id="u2")
        parent = await storage.messages.create("r1", "u1", text="question")
        reply = await storage.messages.create("r1", "u2", text="answer", parent_message_id=parent.id)

        view = await populate_message(reply, storage)

        assert view["id"] == reply.id
        assert view["channelId"] == "r1"
        assert view["sender"] == {"id": "u2", "fullName": "Bob", "profilePic": ""}
        assert view["parentMessage"]["id"] == parent.id
        assert view["parentMessage"]["text"] == "question"
        assert view["parentMessage"]["sender"] == {"id": "u1", "fullName": "Alice", "profilePic": "a.png"}
        assert view["isEdited"] is False
        assert view["isRead"] is False
        assert view["createdAt"] == reply.created_at.isoformat()
        await storage.close()

    @pytest.mark.asyncio
    async def test_missing_references_do_not_fail(self):
        storage = await create_memory_storage()
        record = await storage.messages.create("r1", "ghost", text="hi", parent_message_id="gone")

        view = await populate_message(record, storage)

        assert view["sender"] == {"id": "ghost", "fullName": None, "profilePic": None}
        assert view["parentMessage"] is None

    @pytest.mark.asyncio
    async def test_file_projection(self):
        storage = await create_memory_storage()
        record = await storage.messages.create(
            "r1", "u1", file=FileRef(url="https://cdn.example/doc.pdf", mime_type="application/pdf")
        )

        [view] = await populate_messages([record], storage)

        assert view["text"] is None
        assert view["file"] == {
            "url": "https://cdn.example/doc.pdf",
            "mimeType": "application/pdf",
            "filename": None,
        }


# ── configuration ───────────────────────────────────────────────


class TestSettings:
    def test_defaults_to_memory(self, monkeypatch):
        monkeypatch.delenv("CHATBUS_STORAGE_BACKEND", raising=False)
        monkeypatch.delenv("CHATBUS_DATABASE_URL", raising=False)

        assert settings_from_env().backend == StorageBackend.MEMORY

    def test_backend_inferred_from_url(self, monkeypatch):
        monkeypatch.delenv("CHATBUS_STORAGE_BACKEND", raising=False)
        monkeypatch.setenv("CHATBUS_DATABASE_URL", "postgresql://chat:secret@db/chat")

        assert settings_from_env().backend == StorageBackend.POSTGRESQL
