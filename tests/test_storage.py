"""
状態ストアのテスト
FileStateStore（遅延書き込み・再読み込み）と InMemoryStateStore
"""

import json
from datetime import datetime

import pytest

from kokoro.adapters.storage.file import FileStateStore
from kokoro.adapters.storage.memory import InMemoryStateStore
from kokoro.domain.models.memory import EventContext, EventType, MemoryEvent
from kokoro.domain.models.mood import MoodState
from kokoro.domain.models.session import SessionState
from kokoro.domain.models.topic import TopicData


T0 = datetime(2026, 1, 1, 12, 0)


def _state() -> SessionState:
    return SessionState(
        mood=MoodState(primary="playful", intensity=0.8, timestamp=T0),
        mood_scores={"playful": 0.6, "sassy": 0.3},
        active_persona="teaser",
        current_topics=["gaming"],
        turn_count=3,
        updated_at=T0,
    )


def _event() -> MemoryEvent:
    return MemoryEvent(
        id="e1",
        type=EventType.EMOTIONAL,
        content="rough day at work",
        timestamp=T0,
        importance=0.76,
        emotions={"sadness": 0.9},
        context=EventContext(participants=("user1",)),
    )


class TestFileStateStore:
    """FileStateStore のテスト"""

    @pytest.mark.asyncio
    async def test_flush_writes_file(self, tmp_path):
        """flush() で即時にファイルへ書き出す"""
        store = FileStateStore(data_dir=str(tmp_path), save_delay=60.0)
        await store.save_session_state("s1", _state())
        await store.flush()

        data = json.loads((tmp_path / "kokoro_state.json").read_text(encoding="utf-8"))
        assert data["sessions"]["s1"]["active_persona"] == "teaser"

    @pytest.mark.asyncio
    async def test_reload_from_file(self, tmp_path):
        """別インスタンスから読み戻せる"""
        store = FileStateStore(data_dir=str(tmp_path), save_delay=60.0)
        await store.save_session_state("s1", _state())
        await store.save_topic(TopicData(id="gaming", domain="gaming", relations={"memes": 0.7, "art": 0.2}))
        await store.append_memory_event(_event())
        await store.flush()

        reloaded = FileStateStore(data_dir=str(tmp_path))
        state = await reloaded.load_session_state("s1")
        assert state.mood.primary == "playful"
        assert state.mood_scores == {"playful": 0.6, "sassy": 0.3}
        assert state.turn_count == 3

        topic = await reloaded.load_topic("gaming")
        assert topic.relations["memes"] == 0.7

        events = await reloaded.load_memory_events()
        assert events == [_event()]

    @pytest.mark.asyncio
    async def test_missing_entries(self, tmp_path):
        """存在しないものは None / 空"""
        store = FileStateStore(data_dir=str(tmp_path))

        assert await store.load_session_state("nope") is None
        assert await store.load_topic("nope") is None
        assert await store.query_related_topics("nope", 0.5) == []

    @pytest.mark.asyncio
    async def test_query_related_topics(self, tmp_path):
        """関連度の下限以上を強い順に返す"""
        store = FileStateStore(data_dir=str(tmp_path))
        await store.save_topic(TopicData(
            id="tech", domain="tech", relations={"science": 0.8, "art": 0.3, "gaming": 0.6}
        ))
        await store.flush()

        assert await store.query_related_topics("tech", 0.5) == ["science", "gaming"]

    @pytest.mark.asyncio
    async def test_corrupted_file_starts_empty(self, tmp_path):
        """壊れたファイルは空として扱う"""
        (tmp_path / "kokoro_state.json").write_text("{broken", encoding="utf-8")
        store = FileStateStore(data_dir=str(tmp_path))

        assert await store.load_session_state("s1") is None


class TestInMemoryStateStore:
    """InMemoryStateStore のテスト"""

    def setup_method(self):
        self.store = InMemoryStateStore()

    @pytest.mark.asyncio
    async def test_state_is_copied(self):
        """保存後に元の状態を変更しても影響しない"""
        state = _state()
        await self.store.save_session_state("s1", state)
        state.turn_count = 99

        loaded = await self.store.load_session_state("s1")
        assert loaded.turn_count == 3

    @pytest.mark.asyncio
    async def test_events(self):
        """記憶イベントは追記順"""
        await self.store.append_memory_event(_event())
        assert [e.id for e in self.store.events] == ["e1"]
