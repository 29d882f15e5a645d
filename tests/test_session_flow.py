"""
SessionFlowCoordinator のテスト

- セッションの開始・継続・終了と復元
- 1ターンの処理結果とチェックポイント
- 状態ストアが失敗してもターンが成立するか
"""

import pytest

from kokoro.adapters.storage.memory import InMemoryStateStore
from kokoro.core.config import KokoroSettings, SessionSettings
from kokoro.core.exceptions import InvalidTransitionError, SessionError, StorageError
from kokoro.domain.models.emotion import UserContext
from kokoro.domain.models.session import Interaction
from kokoro.domain.models.topic import UNCATEGORIZED_TOPIC
from kokoro.domain.ports.storage_port import IStateStore
from kokoro.domain.services.session_flow import SessionFlowCoordinator


PLAYFUL = "haha that's so fun lol"
SAD = "I feel so sad and lonely"


class FailingStateStore(IStateStore):
    """すべての操作で StorageError を送出するストア"""

    def __init__(self):
        self.calls = []

    async def _fail(self, operation):
        self.calls.append(operation)
        raise StorageError("disk unavailable", operation=operation)

    async def load_session_state(self, session_id):
        await self._fail("load_session_state")

    async def save_session_state(self, session_id, state):
        await self._fail("save_session_state")

    async def load_topic(self, topic_id):
        await self._fail("load_topic")

    async def save_topic(self, data):
        await self._fail("save_topic")

    async def append_memory_event(self, event):
        await self._fail("append_memory_event")

    async def query_related_topics(self, topic_id, min_strength):
        await self._fail("query_related_topics")


class TestSessionLifecycle:
    """セッション管理のテスト"""

    def setup_method(self):
        self.store = InMemoryStateStore()
        self.coordinator = SessionFlowCoordinator(store=self.store, settings=KokoroSettings())

    @pytest.mark.asyncio
    async def test_start_session(self):
        """新規セッションは全サブシステム有効・既定ペルソナ"""
        session = await self.coordinator.start_session("user1", {"relationship_mode": "platonic"})

        assert self.coordinator.active_session is session
        assert all(session.active_systems.values())
        assert session.state.active_persona == "teaser"
        assert session.state.mood.primary == "neutral"
        assert session.state.user_context.relationship_mode == "platonic"
        assert session.state.trust == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_continue_session(self):
        """同じユーザーの再開始は既存セッションにコンテキストをマージ"""
        first = await self.coordinator.start_session("user1", UserContext(relationship_mode="platonic"))
        second = await self.coordinator.start_session("user1", UserContext(display_name="Mika"))

        assert second is first
        assert second.resumed_count == 1
        assert second.state.flags["continued"] is True
        assert second.state.user_context.relationship_mode == "platonic"
        assert second.state.user_context.display_name == "Mika"

    @pytest.mark.asyncio
    async def test_session_of_other_user(self):
        """他のユーザーのセッションIDは使えない"""
        session = await self.coordinator.start_session("user1")

        with pytest.raises(SessionError):
            await self.coordinator.start_session("user2", session_id=session.id)

    @pytest.mark.asyncio
    async def test_no_active_session(self):
        """セッションがなければ SessionError"""
        with pytest.raises(SessionError):
            await self.coordinator.process_interaction(Interaction(content=PLAYFUL))
        with pytest.raises(SessionError):
            self.coordinator.get_current_mood()

    @pytest.mark.asyncio
    async def test_end_and_restore(self):
        """終了したセッションは状態ストアから復元される"""
        session = await self.coordinator.start_session("user1")
        state = await self.coordinator.process_interaction(Interaction(content=PLAYFUL))
        await self.coordinator.end_session()

        assert self.coordinator.active_session is None
        assert self.coordinator.get_session(session.id) is None

        restored = await self.coordinator.start_session("user1")
        assert restored.id == session.id
        assert restored.state.flags["restored"] is True
        assert restored.state.turn_count == 1
        assert self.coordinator.get_current_mood().primary == state.mood.primary

    @pytest.mark.asyncio
    async def test_restore_keeps_topic_threads(self):
        """復元後の現在スレッドは復元されたスレッドを指す"""
        session = await self.coordinator.start_session("user1")
        state = await self.coordinator.process_interaction(
            Interaction(content="I love python code and the server")
        )
        thread_id = state.current_thread_id
        assert thread_id is not None
        assert [t.id for t in state.topic_threads] == [thread_id]
        await self.coordinator.end_session()

        stored = await self.store.load_session_state(session.id)
        assert stored.to_dict()["topic_threads"][0]["main_topic"] == "tech"

        restored = await self.coordinator.start_session("user1")
        assert restored.state.current_thread_id == thread_id

        # 同じ話題は復元したスレッドに積まれる
        state = await self.coordinator.process_interaction(
            Interaction(content="more python code on the server")
        )
        assert state.current_thread_id == thread_id

    @pytest.mark.asyncio
    async def test_restore_drops_unknown_thread(self):
        """スレッドが保存されていない状態からは現在スレッドを引き継がない"""
        session = await self.coordinator.start_session("user1")
        await self.coordinator.process_interaction(Interaction(content=PLAYFUL))
        await self.coordinator.end_session()

        stored = await self.store.load_session_state(session.id)
        stored.current_thread_id = "gone"
        stored.topic_threads = []
        await self.store.save_session_state(session.id, stored)

        restored = await self.coordinator.start_session("user1")
        assert restored.state.current_thread_id is None

    @pytest.mark.asyncio
    async def test_set_system_active(self):
        """無効化したサブシステムは更新されない"""
        await self.coordinator.start_session("user1")
        self.coordinator.set_system_active("mood", False)

        state = await self.coordinator.process_interaction(Interaction(content=PLAYFUL))
        assert state.mood.primary == "neutral"
        assert state.turn_count == 1

        with pytest.raises(SessionError):
            self.coordinator.set_system_active("weather", True)


class TestProcessInteraction:
    """ターン処理のテスト"""

    def setup_method(self):
        self.store = InMemoryStateStore()
        self.coordinator = SessionFlowCoordinator(store=self.store, settings=KokoroSettings())

    @pytest.mark.asyncio
    async def test_playful_turn(self):
        """1ターンで気分・スコア・スタイルが確定する"""
        session = await self.coordinator.start_session("user1")
        state = await self.coordinator.process_interaction(Interaction(content=PLAYFUL))

        assert state.mood.primary == "playful"
        assert state.mood_scores["flirty"] == 0.0
        assert sum(state.mood_scores.values()) <= 1.0 + 1e-9
        assert state.turn_count == 1
        assert state.flags["degraded_input"] is False
        assert session.context.emotional is not None
        assert self.coordinator.get_current_mood() == state.mood

    @pytest.mark.asyncio
    async def test_mood_shift_creates_checkpoint(self):
        """気分の切り替えでチェックポイントができる"""
        session = await self.coordinator.start_session("user1")
        await self.coordinator.process_interaction(Interaction(content=PLAYFUL))

        checkpoint = session.checkpoints[-1]
        assert checkpoint.reason == "mood_shift"
        assert checkpoint.state.mood.primary == "playful"

    @pytest.mark.asyncio
    async def test_checkpoint_is_snapshot(self):
        """チェックポイントはその後の変更の影響を受けない"""
        session = await self.coordinator.start_session("user1")
        await self.coordinator.process_interaction(Interaction(content=PLAYFUL))
        checkpoint = session.checkpoints[-1]
        scores = dict(checkpoint.state.mood_scores)

        session.state.mood_scores["playful"] = 0.0
        await self.coordinator.process_interaction(Interaction(content=SAD, type="emotional"))

        assert checkpoint.state.mood_scores == scores
        assert checkpoint.state.turn_count == 1

    @pytest.mark.asyncio
    async def test_degraded_input(self):
        """空の入力は基準の気分に戻し、前回のスコアを保つ"""
        await self.coordinator.start_session("user1")
        first = await self.coordinator.process_interaction(Interaction(content=PLAYFUL))
        scores = dict(first.mood_scores)
        events = len(self.store.events)

        state = await self.coordinator.process_interaction(Interaction(content="   "))

        assert state.mood.primary == "neutral"
        assert state.mood_scores == scores
        assert state.current_topics == [UNCATEGORIZED_TOPIC]
        assert state.suggested_persona is None
        assert state.flags["degraded_input"] is True
        assert len(self.store.events) == events

    @pytest.mark.asyncio
    async def test_emotional_turn_is_remembered(self):
        """感情的な対話は記憶され、信頼と親密度が上がる"""
        await self.coordinator.start_session("user1")
        state = await self.coordinator.process_interaction(Interaction(content=SAD, type="emotional"))

        assert state.trust == pytest.approx(0.6)
        assert state.intimacy == pytest.approx(0.25)
        assert len(self.store.events) == 1
        assert self.store.events[0].content == SAD

        recalled = self.coordinator.recall_memories()
        assert [e.content for e in recalled] == [SAD]
        assert recalled[0].recall_count == 1

    @pytest.mark.asyncio
    async def test_timeline_disabled(self):
        """記憶を無効にすると何も残らない"""
        await self.coordinator.start_session("user1")
        self.coordinator.set_system_active("timeline", False)

        state = await self.coordinator.process_interaction(Interaction(content=SAD, type="emotional"))
        assert state.trust == pytest.approx(0.5)
        assert self.store.events == []

    @pytest.mark.asyncio
    async def test_state_is_persisted(self):
        """ターンごとに状態が保存される"""
        session = await self.coordinator.start_session("user1")
        await self.coordinator.process_interaction(Interaction(content=PLAYFUL))

        saved = await self.store.load_session_state(session.id)
        assert saved.turn_count == 1
        assert saved.mood == session.state.mood

    @pytest.mark.asyncio
    async def test_custom_checkpoint_policy(self):
        """チェックポイント判定は差し替えでき、保持数には上限がある"""
        settings = KokoroSettings(session=SessionSettings(max_checkpoints=2))
        coordinator = SessionFlowCoordinator(
            settings=settings, checkpoint_policy=lambda previous, current, updates: "every_turn"
        )
        session = await coordinator.start_session("user1")
        for _ in range(3):
            await coordinator.process_interaction(Interaction(content=PLAYFUL))

        assert len(session.checkpoints) == 2
        assert [c.state.turn_count for c in session.checkpoints] == [2, 3]


class TestPersonaSwitching:
    """ペルソナ切り替えのテスト"""

    def setup_method(self):
        self.coordinator = SessionFlowCoordinator(settings=KokoroSettings())

    @pytest.mark.asyncio
    async def test_switch_persona(self):
        """手動切り替えはチェックポイントを作る"""
        session = await self.coordinator.start_session("user1")
        persona = self.coordinator.switch_persona("geeky_assistant", reason="manual")

        assert persona.id == "geeky_assistant"
        assert session.state.active_persona == "geeky_assistant"
        assert session.checkpoints[-1].reason == "persona_switch"
        assert self.coordinator.get_response_style().response == "helpful_answer"

    @pytest.mark.asyncio
    async def test_switch_during_cooldown(self):
        """クールダウン中の切り替えは拒否され、状態は変わらない"""
        session = await self.coordinator.start_session("user1")
        self.coordinator.switch_persona("geeky_assistant")
        checkpoints = len(session.checkpoints)

        with pytest.raises(InvalidTransitionError):
            self.coordinator.switch_persona("teaser")

        assert session.state.active_persona == "geeky_assistant"
        assert self.coordinator.get_current_persona().id == "geeky_assistant"
        assert len(session.checkpoints) == checkpoints


class TestStorageFailures:
    """状態ストア障害のテスト"""

    def setup_method(self):
        self.store = FailingStateStore()
        self.coordinator = SessionFlowCoordinator(store=self.store, settings=KokoroSettings())

    @pytest.mark.asyncio
    async def test_turn_survives_storage_errors(self):
        """保存に失敗してもターンは成立する"""
        await self.coordinator.start_session("user1")
        state = await self.coordinator.process_interaction(
            Interaction(content="debug the python code on the server")
        )

        assert state.turn_count == 1
        assert "save_session_state" in self.store.calls
        assert "load_topic" in self.store.calls

    @pytest.mark.asyncio
    async def test_start_survives_load_error(self):
        """復元に失敗したら新規セッションとして開始"""
        session = await self.coordinator.start_session("user1", session_id="s1")

        assert session.id == "s1"
        assert "restored" not in session.state.flags
        assert self.store.calls == ["load_session_state"]

    @pytest.mark.asyncio
    async def test_end_survives_save_error(self):
        """終了時の保存に失敗してもセッションは閉じる"""
        await self.coordinator.start_session("user1")
        await self.coordinator.end_session()

        assert self.coordinator.active_session is None
