"""
Tests for the versioned persisted-state repository, on in-memory and
file-backed SQLite databases.
"""

import asyncio

import pytest

from aura_runner.core.database import build_engine, build_session_factory, init_db
from aura_runner.core.errors import StateConflictError
from aura_runner.storage.repository import DRAFTS_NAMESPACE, UPLOADS_NAMESPACE, StateRepository


def run_db(scenario):
    """Run ``scenario(session_factory)`` against a fresh in-memory database."""

    async def wrapper():
        engine = build_engine("sqlite+aiosqlite:///:memory:")
        try:
            await init_db(engine)
            return await scenario(build_session_factory(engine))
        finally:
            await engine.dispose()

    return asyncio.run(wrapper())


class TestReadWrite:
    def test_put_then_get(self):
        async def scenario(factory):
            repo = StateRepository(factory, UPLOADS_NAMESPACE)
            record = await repo.put("files", [{"name": "audio-1.mp3", "size": 1024}])
            assert record.revision == 1
            assert record.schema_version == 1
            return await repo.get("files")

        assert run_db(scenario) == [{"name": "audio-1.mp3", "size": 1024}]

    def test_missing_key(self):
        async def scenario(factory):
            repo = StateRepository(factory, DRAFTS_NAMESPACE)
            return await repo.get("nothing"), await repo.get_record("nothing")

        assert run_db(scenario) == (None, None)

    def test_revision_increments_on_write(self):
        async def scenario(factory):
            repo = StateRepository(factory, DRAFTS_NAMESPACE)
            await repo.put("exam-draft", {"title": "v1"})
            await repo.put("exam-draft", {"title": "v2"})
            return await repo.get_record("exam-draft")

        record = run_db(scenario)
        assert record.revision == 2
        assert record.payload == {"title": "v2"}
        assert record.updated_at is not None

    def test_namespaces_are_isolated(self):
        async def scenario(factory):
            uploads = StateRepository(factory, UPLOADS_NAMESPACE)
            drafts = StateRepository(factory, DRAFTS_NAMESPACE)
            await uploads.put("files", ["a"])
            await drafts.put("files", ["b"])
            await drafts.put("other", ["c"])
            return await uploads.get("files"), await drafts.keys(), await uploads.keys()

        uploads_files, draft_keys, upload_keys = run_db(scenario)
        assert uploads_files == ["a"]
        assert draft_keys == ["files", "other"]
        assert upload_keys == ["files"]

    def test_delete_and_clear(self):
        async def scenario(factory):
            repo = StateRepository(factory, DRAFTS_NAMESPACE)
            await repo.put("a", 1)
            await repo.put("b", 2)
            await repo.put("c", 3)
            deleted = await repo.delete("a")
            deleted_again = await repo.delete("a")
            cleared = await repo.clear()
            return deleted, deleted_again, cleared, await repo.keys()

        assert run_db(scenario) == (True, False, 2, [])


class TestConcurrency:
    def test_expected_revision_must_match(self):
        async def scenario(factory):
            repo = StateRepository(factory, DRAFTS_NAMESPACE)
            await repo.put("exam-draft", {"title": "first tab"}, expected_revision=0)
            await repo.put("exam-draft", {"title": "second tab"}, expected_revision=1)
            with pytest.raises(StateConflictError) as exc_info:
                await repo.put("exam-draft", {"title": "stale tab"}, expected_revision=1)
            return exc_info.value, await repo.get("exam-draft")

        error, payload = run_db(scenario)
        assert (error.expected, error.actual) == (1, 2)
        assert payload == {"title": "second tab"}

    def test_create_with_stale_revision(self):
        async def scenario(factory):
            repo = StateRepository(factory, DRAFTS_NAMESPACE)
            with pytest.raises(StateConflictError):
                await repo.put("new", {}, expected_revision=3)
            return await repo.keys()

        assert run_db(scenario) == []


class TestSchemaVersion:
    def test_other_version_is_dropped_on_read(self):
        async def scenario(factory):
            old = StateRepository(factory, UPLOADS_NAMESPACE, schema_version=1)
            new = StateRepository(factory, UPLOADS_NAMESPACE, schema_version=2)
            await old.put("files", ["legacy"])
            dropped = await new.get("files")
            return dropped, await old.keys()

        dropped, remaining = run_db(scenario)
        assert dropped is None
        assert remaining == []

    def test_same_version_survives(self):
        async def scenario(factory):
            await StateRepository(factory, UPLOADS_NAMESPACE, schema_version=2).put("files", ["x"])
            return await StateRepository(factory, UPLOADS_NAMESPACE, schema_version=2).get("files")

        assert run_db(scenario) == ["x"]


class TestConcurrentWriters:
    """Writers racing on a file-backed database, each with its own connection."""

    @staticmethod
    def run_file_db(tmp_path, scenario):
        async def wrapper():
            engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
            try:
                await init_db(engine)
                return await scenario(build_session_factory(engine))
            finally:
                await engine.dispose()

        return asyncio.run(wrapper())

    def test_same_expected_revision_lets_one_writer_through(self, tmp_path):
        async def scenario(factory):
            repo = StateRepository(factory, DRAFTS_NAMESPACE)
            await repo.put("exam-draft", {"v": "base"})
            outcomes = await asyncio.gather(
                repo.put("exam-draft", {"v": "a"}, expected_revision=1),
                repo.put("exam-draft", {"v": "b"}, expected_revision=1),
                return_exceptions=True,
            )
            return outcomes, await repo.get_record("exam-draft")

        outcomes, final = self.run_file_db(tmp_path, scenario)
        written = [o for o in outcomes if not isinstance(o, Exception)]
        conflicts = [o for o in outcomes if isinstance(o, StateConflictError)]
        assert len(written) == 1
        assert len(conflicts) == 1
        assert written[0].revision == 2
        assert (conflicts[0].expected, conflicts[0].actual) == (1, 2)
        assert final.revision == 2
        assert final.payload == written[0].payload

    def test_racing_creates_with_revision_zero(self, tmp_path):
        async def scenario(factory):
            repo = StateRepository(factory, UPLOADS_NAMESPACE)
            return await asyncio.gather(
                repo.put("files", ["first"], expected_revision=0),
                repo.put("files", ["second"], expected_revision=0),
                return_exceptions=True,
            )

        outcomes = self.run_file_db(tmp_path, scenario)
        written = [o for o in outcomes if not isinstance(o, Exception)]
        conflicts = [o for o in outcomes if isinstance(o, StateConflictError)]
        assert [r.revision for r in written] == [1]
        assert len(conflicts) == 1
        assert (conflicts[0].expected, conflicts[0].actual) == (0, 1)

    def test_racing_unconditional_creates_both_land(self, tmp_path):
        async def scenario(factory):
            repo = StateRepository(factory, UPLOADS_NAMESPACE)
            outcomes = await asyncio.gather(repo.put("new", 1), repo.put("new", 2))
            return outcomes, await repo.get_record("new")

        outcomes, final = self.run_file_db(tmp_path, scenario)
        assert sorted(r.revision for r in outcomes) == [1, 2]
        assert final.revision == 2
        assert final.payload == next(r.payload for r in outcomes if r.revision == 2)

