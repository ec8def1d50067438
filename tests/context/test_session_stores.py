import asyncio

import pytest

from relay_service.context.memory_store import MemoryStore
from relay_service.context.session import Session
from relay_service.context.sqlite_store import SqliteSessionStore
from relay_service.core.errors import SessionBusyError, SessionNotFoundError
from relay_service.core.types import ConversationTurn, Role, TextBlock, ToolResultBlock, ToolUseBlock


def turns():
    return [
        ConversationTurn(role=Role.USER, content="2+2?", timestamp=1.0, id="t1"),
        ConversationTurn(
            role=Role.ASSISTANT,
            content=(TextBlock(text="Computing"), ToolUseBlock(id="toolu_1", name="calculator", input={"expression": "2+2"})),
            timestamp=2.0,
            id="t2",
        ),
        ConversationTurn(role=Role.USER, content=(ToolResultBlock(tool_use_id="toolu_1", content="4"),), timestamp=3.0, id="t3"),
    ]


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteSessionStore(f"sqlite:///{tmp_path / 'sessions.db'}")


@pytest.mark.asyncio
async def test_session_lifecycle(store):
    session = await store.create_session("s1", 1_700_000_000)
    assert session.id == "s1"
    assert session.transcript == ()
    assert await store.get_session("s1") is session

    await store.create_session("s2", 1_700_000_100)
    listed = await store.list_sessions()
    assert [s["session_id"] for s in listed] == ["s2", "s1"]

    assert await store.delete_session("s1") is True
    assert await store.delete_session("s1") is False
    assert await store.get_session("s1") is None
    assert await store.delete_all_sessions() == 1
    assert await store.list_sessions() == []


@pytest.mark.asyncio
async def test_append_turns(store):
    session = await store.create_session("s1", 1_700_000_000)
    await store.append_turns(session, turns(), expected_length=0)
    assert [t.id for t in session.transcript] == ["t1", "t2", "t3"]
    assert (await store.list_sessions())[0]["turns"] == 3


@pytest.mark.asyncio
async def test_session_with_request_in_flight_cannot_be_deleted(store):
    session = await store.create_session("s1", 1_700_000_000)
    async with session.exclusive():
        with pytest.raises(SessionBusyError):
            await store.delete_session("s1")
        await store.append_turns(session, turns(), expected_length=0)
    assert await store.get_session("s1") is session
    assert len(session.transcript) == 3
    assert await store.delete_session("s1") is True


@pytest.mark.asyncio
async def test_sqlite_append_after_delete_all_is_session_not_found(tmp_path):
    store = SqliteSessionStore(f"sqlite:///{tmp_path / 'sessions.db'}")
    session = await store.create_session("s1", 1_700_000_000)
    async with session.exclusive():
        assert await store.delete_all_sessions() == 1
        with pytest.raises(SessionNotFoundError):
            await store.append_turns(session, turns(), expected_length=0)
    assert session.transcript == ()


@pytest.mark.asyncio
async def test_stale_append_is_rejected_and_leaves_transcript_alone(store):
    session = await store.create_session("s1", 1_700_000_000)
    await store.append_turns(session, turns()[:1])
    with pytest.raises(SessionBusyError):
        await store.append_turns(session, turns()[1:], expected_length=0)
    assert [t.id for t in session.transcript] == ["t1"]


@pytest.mark.asyncio
async def test_sqlite_reload_restores_blocks(tmp_path):
    dsn = f"sqlite:///{tmp_path / 'sessions.db'}"
    first = SqliteSessionStore(dsn)
    session = await first.create_session("s1", 1_700_000_000)
    await first.append_turns(session, turns(), expected_length=0)

    reloaded = await SqliteSessionStore(dsn).get_session("s1")
    assert reloaded.transcript == session.transcript
    assert reloaded.transcript[2].is_tool_result


@pytest.mark.asyncio
async def test_sqlite_in_memory():
    store = SqliteSessionStore("sqlite:///:memory:")
    session = await store.create_session("s1", 1_700_000_000)
    await store.append_turns(session, turns())
    assert len((await store.get_session("s1")).transcript) == 3


class TestExclusivity:
    @pytest.mark.asyncio
    async def test_second_entry_is_rejected_while_first_is_in_flight(self):
        session = Session("s1", "2024-01-01T00:00:00")
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with session.exclusive():
                entered.set()
                await release.wait()

        task = asyncio.create_task(first())
        await entered.wait()
        assert session.in_flight is True
        with pytest.raises(SessionBusyError):
            async with session.exclusive():
                pass
        release.set()
        await task
        assert session.in_flight is False

    @pytest.mark.asyncio
    async def test_guard_is_released_on_error(self):
        session = Session("s1", "2024-01-01T00:00:00")
        with pytest.raises(RuntimeError):
            async with session.exclusive():
                raise RuntimeError("boom")
        async with session.exclusive():
            assert session.in_flight is True

    def test_append_returns_new_tuple(self):
        session = Session("s1", "2024-01-01T00:00:00")
        before = session.transcript
        session.append(turns())
        assert before == ()
        assert len(session.transcript) == 3
