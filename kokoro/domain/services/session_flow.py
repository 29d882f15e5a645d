"""
セッションフローコーディネーター
各サブシステムの出力を1ターン分の状態にまとめる

1ターンの流れ:
1. 解析（感情コンテキスト・コンテキスト判定）は1回だけ行い、全サブシステムで共有
2. 気分・話題・ペルソナ・記憶はローカルな値として計算（セッション状態は未変更）
3. 同期ブロックで全結果をまとめてコミットし、必要ならチェックポイントを作る
4. 状態ストアへの永続化（失敗してもターンは成立する）
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from ...core.config import KokoroSettings, get_settings
from ...core.exceptions import SessionError, StorageError
from ...core.logging import get_logger, log_error, log_state_event, log_turn
from ..models.emotion import ContextAnalysis, EmotionalContext, UserContext
from ..models.memory import MemoryEvent, RecallContext, TimelineUpdate
from ..models.mood import MoodEvaluation, MoodSignals, MoodState
from ..models.persona import Persona, PersonaContext, PersonaUpdate, StyleRule
from ..models.session import (
    Interaction,
    Session,
    SessionCheckpoint,
    SessionContext,
    SessionState,
    SUBSYSTEMS,
)
from ..models.topic import (
    IntegratedContext,
    ThreadUpdate,
    TopicData,
    TopicThread,
    UNCATEGORIZED_TOPIC,
)
from ..ports.storage_port import IStateStore
from .context_analyzer import ContextDetector, EmotionalContextAnalyzer
from .mood_engine import MoodEngine
from .normalization import BiasHandler, NormalizationSystem
from .persona_system import PersonaCatalog, PersonaSystem
from .timeline_memory import TimelineMemory
from .topic_mood import TopicMoodIntegrator
from .topic_threader import TopicGraph, TopicManager

logger = get_logger(__name__)

T = TypeVar("T")

RECALL_KEYWORD_MIN_LENGTH = 4
RECALL_KEYWORD_LIMIT = 10


@dataclass
class TurnUpdates:
    """1ターン分のサブシステム出力（コミット前）"""

    user_context: UserContext
    emotional: EmotionalContext
    analysis: ContextAnalysis
    persona_context: PersonaContext
    mood: MoodEvaluation | None = None
    scores: dict[str, float] = field(default_factory=dict)
    topics: ThreadUpdate | None = None
    integrated: IntegratedContext | None = None
    persona: PersonaUpdate | None = None
    timeline: TimelineUpdate | None = None

    @property
    def current_topics(self) -> list[str]:
        return self.topics.current_topics if self.topics else [UNCATEGORIZED_TOPIC]


CheckpointPolicy = Callable[[SessionState, SessionState, TurnUpdates], "str | None"]


class SignificantChangePolicy:
    """
    既定のチェックポイント判定

    気分・ペルソナの切り替え、新しい話題スレッド、重要な記憶、
    強度の大きな変化のいずれかで理由を返す。
    """

    def __init__(self, intensity_delta: float = 0.2, significance_threshold: float = 0.7):
        self.intensity_delta = intensity_delta
        self.significance_threshold = significance_threshold

    def __call__(self, previous: SessionState, current: SessionState,
                 updates: TurnUpdates) -> str | None:
        if previous.mood.primary != current.mood.primary:
            return "mood_shift"
        if previous.active_persona != current.active_persona:
            return "persona_switch"
        if updates.topics is not None and updates.topics.opened_thread_ids:
            return "new_topic_thread"
        event = updates.timeline.event if updates.timeline else None
        if event is not None and (event.importance or 0.0) >= self.significance_threshold:
            return "significant_memory"
        if abs(current.mood.intensity - previous.mood.intensity) >= self.intensity_delta:
            return "intensity_shift"
        return None


@dataclass
class _SessionRuntime:
    """セッションが占有するサブシステム一式"""

    mood: MoodEngine
    persona: PersonaSystem
    topics: TopicManager
    integrator: TopicMoodIntegrator
    timeline: TimelineMemory
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_analysis: ContextAnalysis | None = None
    archived_events: list[MemoryEvent] = field(default_factory=list)


class SessionFlowCoordinator:
    """
    セッションフローコーディネーター

    話題グラフ・ペルソナカタログはプロセス共有、
    それ以外の状態はセッション（記憶はユーザー）ごとに持つ。
    """

    def __init__(self, store: IStateStore | None = None,
                 settings: KokoroSettings | None = None,
                 catalog: PersonaCatalog | None = None,
                 graph: TopicGraph | None = None,
                 analyzer: EmotionalContextAnalyzer | None = None,
                 checkpoint_policy: CheckpointPolicy | None = None):
        self.settings = settings or get_settings()
        self.store = store
        self.catalog = catalog or PersonaCatalog.from_settings(self.settings.persona)
        self.graph = graph or TopicGraph()
        self.analyzer = analyzer or EmotionalContextAnalyzer()
        self.detector = ContextDetector()
        self.bias = BiasHandler()
        self.normalizer = NormalizationSystem(self.settings.normalization)
        self.checkpoint_policy = checkpoint_policy or SignificantChangePolicy(
            intensity_delta=self.settings.session.checkpoint_intensity_delta,
            significance_threshold=self.settings.memory.significance_threshold,
        )

        self._sessions: dict[str, Session] = {}
        self._runtimes: dict[str, _SessionRuntime] = {}
        self._user_sessions: dict[str, str] = {}
        self._timelines: dict[str, TimelineMemory] = {}
        self._active_session_id: str | None = None
        self._registry_lock = asyncio.Lock()

    # ===== セッション管理 =====

    @property
    def active_session(self) -> Session | None:
        if self._active_session_id is None:
            return None
        return self._sessions.get(self._active_session_id)

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def timeline_for(self, user_id: str) -> TimelineMemory:
        """ユーザーのタイムライン記憶を取得または作成"""
        timeline = self._timelines.get(user_id)
        if timeline is None:
            timeline = TimelineMemory(user_id, settings=self.settings.memory)
            self._timelines[user_id] = timeline
        return timeline

    async def start_session(self, user_id: str,
                            initial_context: UserContext | Mapping[str, Any] | None = None,
                            session_id: str | None = None) -> Session:
        """
        セッションを開始

        ユーザーの直近のセッションがあれば、その状態に新しいコンテキストを
        マージして継続する。なければ新規作成（全サブシステムを有効化）。

        Args:
            user_id: ユーザーID
            initial_context: 初期コンテキスト
            session_id: 再開したいセッションID（状態ストアから復元）

        Returns:
            Session: アクティブになったセッション
        """
        if isinstance(initial_context, UserContext) or initial_context is None:
            user_context = initial_context or UserContext()
        else:
            user_context = UserContext.from_dict(initial_context)
        now = datetime.now()

        async with self._registry_lock:
            target_id = session_id or self._user_sessions.get(user_id)
            session = self._sessions.get(target_id) if target_id else None

            if session is not None:
                if session.user_id != user_id:
                    raise SessionError(
                        "Session belongs to another user", user_id=user_id, session_id=session.id
                    )
                self._continue(session, user_context, now)
            else:
                restored = None
                if target_id and self.store is not None:
                    restored = await self._guarded(
                        "load_session_state", self.store.load_session_state(target_id), target_id
                    )
                session = self._create_session(
                    target_id if restored is not None else (session_id or str(uuid.uuid4())),
                    user_id, user_context, now, restored,
                )

            self._user_sessions[user_id] = session.id
            self._active_session_id = session.id
            return session

    async def end_session(self, session_id: str | None = None) -> None:
        """セッションを終了（状態を保存してメモリから外す）"""
        session = self._resolve_session(session_id)
        runtime = self._runtimes[session.id]
        async with runtime.lock:
            if self.store is not None:
                await self._guarded(
                    "save_session_state",
                    self.store.save_session_state(session.id, session.state),
                    session.id,
                )
        async with self._registry_lock:
            self._sessions.pop(session.id, None)
            self._runtimes.pop(session.id, None)
            if self._active_session_id == session.id:
                self._active_session_id = None
        log_state_event(logger, "session_ended", session_id=session.id, turns=session.state.turn_count)

    def set_system_active(self, system: str, active: bool, session_id: str | None = None) -> None:
        """サブシステムの有効・無効を切り替え"""
        if system not in SUBSYSTEMS:
            raise SessionError(f"Unknown subsystem: {system}")
        self._resolve_session(session_id).active_systems[system] = active

    def _create_session(self, session_id: str, user_id: str, user_context: UserContext,
                        now: datetime, restored: SessionState | None) -> Session:
        timeline = self.timeline_for(user_id)
        runtime = _SessionRuntime(
            mood=MoodEngine(self.settings.mood, initial_state=restored.mood if restored else None),
            persona=PersonaSystem(self.catalog, self.settings.persona, now=now),
            topics=TopicManager(self.settings.topic, graph=self.graph),
            integrator=TopicMoodIntegrator(self.graph, settings=self.settings.mood),
            timeline=timeline,
        )
        runtime.topics.set_archiver(self._archiver(runtime))

        if restored is not None:
            runtime.persona.restore(restored.active_persona)
            runtime.topics.restore(restored.topic_threads, restored.current_thread_id)
            state = self._merge_state(restored, user_context, now)
            current = runtime.topics.current_thread
            state.current_thread_id = current.id if current else None
            state.active_persona = runtime.persona.get_current_persona().id
            state.flags["restored"] = True
        else:
            relationship = timeline.get_relationship(user_id)
            state = SessionState(
                mood=runtime.mood.get_current_mood(),
                active_persona=runtime.persona.get_current_persona().id,
                user_context=user_context,
                trust=relationship.trust if relationship else 0.5,
                intimacy=relationship.intimacy if relationship else 0.1,
                updated_at=now,
            )

        session = Session(
            id=session_id,
            user_id=user_id,
            start_time=now,
            last_active=now,
            state=state,
            context=SessionContext(user_context=state.user_context),
        )
        self._sessions[session.id] = session
        self._runtimes[session.id] = runtime
        log_state_event(
            logger, "session_started",
            session_id=session.id, user_id=user_id, restored=restored is not None,
        )
        return session

    def _continue(self, session: Session, user_context: UserContext, now: datetime) -> None:
        session.state = self._merge_state(session.state, user_context, now)
        session.context.user_context = session.state.user_context
        session.last_active = now
        session.resumed_count += 1
        log_state_event(
            logger, "session_continued",
            session_id=session.id, user_id=session.user_id, resumed_count=session.resumed_count,
        )

    def _merge_state(self, previous: SessionState, user_context: UserContext,
                     now: datetime) -> SessionState:
        state = previous.copy()
        state.user_context = previous.user_context.merge(user_context)
        state.flags["continued"] = True
        state.updated_at = now
        return state

    def _archiver(self, runtime: _SessionRuntime) -> Callable[[TopicThread], None]:
        def archive(thread: TopicThread) -> None:
            runtime.archived_events.append(runtime.timeline.archive_thread(thread))
        return archive

    def _resolve_session(self, session_id: str | None = None) -> Session:
        if session_id is not None:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionError("Session is not active", session_id=session_id)
            return session
        session = self.active_session
        if session is None:
            raise SessionError("No active session")
        return session

    # ===== ターン処理 =====

    async def process_interaction(self, interaction: Interaction) -> SessionState:
        """
        対話を1件処理

        Args:
            interaction: ユーザー入力

        Returns:
            SessionState: コミット後のセッション状態

        Raises:
            SessionError: アクティブなセッションがない
        """
        session = self._resolve_session(interaction.session_id)
        runtime = self._runtimes[session.id]

        async with runtime.lock:
            started = time.perf_counter()
            await self._hydrate_topics(runtime, interaction.content)
            updates = self._compute_turn(session, runtime, interaction)
            events = self._commit_turn(session, runtime, updates, interaction.timestamp)
            await self._persist_turn(session, updates, events)

        state = session.state
        log_turn(
            logger, session.id, state.turn_count,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            mood=state.mood.primary,
            persona=state.active_persona,
            topics=list(state.current_topics),
            degraded=state.flags.get("degraded_input", False),
        )
        return state

    def _compute_turn(self, session: Session, runtime: _SessionRuntime,
                      interaction: Interaction) -> TurnUpdates:
        """サブシステムの出力を計算（セッション状態は変更しない）"""
        now = interaction.timestamp
        state = session.state
        user_context = state.user_context.merge(interaction.user_context)

        emotional = self.analyzer.analyze(interaction.content, user_context, now)
        analysis = self.detector.analyze(
            emotional, previous=runtime.last_analysis, previous_scores=state.mood_scores
        )

        mood_eval = None
        if session.is_active("mood"):
            mood_eval = runtime.mood.evaluate(MoodSignals.from_context(emotional), now)
        mood_state = mood_eval.state if mood_eval else state.mood

        topic_update = None
        if session.is_active("topic"):
            topic_update = runtime.topics.process_input(interaction.content, emotional, now)
        detections = topic_update.detections if topic_update else []
        current_topics = topic_update.current_topics if topic_update else [UNCATEGORIZED_TOPIC]

        integrated = runtime.integrator.integrate(
            detections, mood_state, emotional,
            topic_update.current_thread if topic_update else None, now,
        )

        persona_context = PersonaContext(
            current_mood=mood_state.primary,
            topics=tuple(current_topics),
            flags=emotional.context_flags(),
            restrictions=user_context.restrictions,
            time_context=_time_of_day(now),
        )
        persona_update = None
        if session.is_active("persona"):
            persona_update = runtime.persona.process_interaction(persona_context)
            if emotional.is_empty:
                persona_update = replace(persona_update, suggested_persona=None)

        if mood_eval is not None and mood_eval.scores:
            biases = self.bias.apply_bias(
                analysis, persona_update.mood_bias if persona_update else None
            )
            scores = self.normalizer.normalize(self.bias.merge(mood_eval.scores, biases), analysis)
        else:
            scores = dict(state.mood_scores)

        timeline_update = None
        if session.is_active("timeline") and not emotional.is_empty:
            emotions = {emotional.primary_emotion: emotional.intensity}
            emotions.pop("neutral", None)
            emotions.update(interaction.emotions)
            timeline_update = runtime.timeline.plan_interaction(
                session.user_id,
                replace(interaction, emotions=emotions),
                topics=current_topics,
                intensity=interaction.intensity if interaction.intensity is not None else emotional.intensity,
                recall_context=RecallContext(
                    topics=tuple(current_topics),
                    mood=emotional.primary_emotion,
                    keywords=tuple(
                        k for k in emotional.keywords if len(k) >= RECALL_KEYWORD_MIN_LENGTH
                    )[:RECALL_KEYWORD_LIMIT],
                    participants=(session.user_id,),
                ),
                now=now,
            )

        return TurnUpdates(
            user_context=user_context,
            emotional=emotional,
            analysis=analysis,
            persona_context=persona_context,
            mood=mood_eval,
            scores=scores,
            topics=topic_update,
            integrated=integrated,
            persona=persona_update,
            timeline=timeline_update,
        )

    def _commit_turn(self, session: Session, runtime: _SessionRuntime,
                     updates: TurnUpdates, now: datetime) -> list[MemoryEvent]:
        """計算済みの出力をまとめて反映（この中では await しない）"""
        previous = session.state
        state = previous.copy()

        if updates.mood is not None:
            runtime.mood.commit(updates.mood)
            state.mood = updates.mood.state
        state.mood_scores = dict(updates.scores)

        if updates.topics is not None:
            runtime.topics.apply_update(updates.topics)
            state.current_topics = updates.current_topics
            state.current_thread_id = updates.topics.current_thread_id
            state.topic_threads = [
                replace(t, active_nodes=list(t.active_nodes)) for t in runtime.topics.active_threads
            ]

        if updates.integrated is not None:
            runtime.integrator.commit(updates.integrated)
            state.effective_intensity = updates.integrated.intensity
            state.topic_weights = dict(updates.integrated.topic_weights)

        if updates.persona is not None:
            switched = runtime.persona.apply_update(updates.persona, now)
            style = updates.persona.style
            if switched is not None:
                style = runtime.persona.get_response_style(updates.persona_context)
            state.active_persona = runtime.persona.get_current_persona().id
            state.response_style = style
            state.suggested_persona = updates.persona.suggested_persona

        new_events: list[MemoryEvent] = []
        recalled: tuple[MemoryEvent, ...] = ()
        if updates.timeline is not None:
            relationship = runtime.timeline.apply_update(updates.timeline, now)
            state.trust = relationship.trust
            state.intimacy = relationship.intimacy
            state.memory_focus = [e.id for e in updates.timeline.recalled]
            recalled = tuple(
                runtime.timeline.get_event(e.id) or e for e in updates.timeline.recalled
            )
            if updates.timeline.event is not None:
                stored = runtime.timeline.get_event(updates.timeline.event.id)
                if stored is not None:
                    new_events.append(stored)

        state.user_context = updates.user_context
        state.flags["degraded_input"] = updates.emotional.is_empty
        state.turn_count += 1
        state.updated_at = now

        main_topic = updates.integrated.main_topic if updates.integrated else UNCATEGORIZED_TOPIC
        session.state = state
        session.context = SessionContext(
            user_context=updates.user_context,
            emotional=updates.emotional,
            analysis=updates.analysis,
            persona=updates.persona_context,
            integrated=updates.integrated,
            recalled=recalled,
            related_topics=self.graph.related_topics(
                main_topic, self.settings.session.related_topic_strength
            ),
        )
        session.last_active = now
        runtime.last_analysis = updates.analysis

        reason = self.checkpoint_policy(previous, state, updates)
        if reason:
            self._checkpoint(session, reason, now)

        new_events.extend(runtime.archived_events)
        runtime.archived_events.clear()
        return new_events

    def _checkpoint(self, session: Session, reason: str, now: datetime) -> SessionCheckpoint:
        checkpoint = SessionCheckpoint(
            timestamp=now,
            reason=reason,
            state=session.state.copy(),
            context=session.context.copy(),
        )
        session.checkpoints.append(checkpoint)
        overflow = len(session.checkpoints) - self.settings.session.max_checkpoints
        if overflow > 0:
            del session.checkpoints[:overflow]
        log_state_event(logger, "checkpoint_created", session_id=session.id, reason=reason)
        return checkpoint

    # ===== 永続化 =====

    async def _hydrate_topics(self, runtime: _SessionRuntime, content: str) -> None:
        """話題グラフにない話題を状態ストアから読み込む"""
        if self.store is None:
            return
        for detection in runtime.topics.detect_topics(content):
            if detection.topic in self.graph:
                continue
            data = await self._guarded("load_topic", self.store.load_topic(detection.topic))
            if data is not None:
                self.graph.merge(data)

    async def _persist_turn(self, session: Session, updates: TurnUpdates,
                            events: list[MemoryEvent]) -> None:
        if self.store is None:
            return
        await self._guarded(
            "save_session_state", self.store.save_session_state(session.id, session.state), session.id
        )
        for event in events:
            await self._guarded("append_memory_event", self.store.append_memory_event(event), session.id)

        detections = updates.topics.detections if updates.topics else []
        for detection in detections:
            node = self.graph.snapshot(detection.topic)
            if node is None:
                continue
            data = TopicData.from_node(node, keywords=detection.matched_keywords)
            await self._guarded("save_topic", self.store.save_topic(data), session.id)

        if detections:
            related = await self._guarded(
                "query_related_topics",
                self.store.query_related_topics(
                    detections[0].topic, self.settings.session.related_topic_strength
                ),
                session.id,
            )
            if related:
                merged = list(dict.fromkeys(related + session.context.related_topics))
                session.context.related_topics = merged

    async def _guarded(self, operation: str, call: Awaitable[T],
                       session_id: str | None = None) -> T | None:
        """状態ストアの呼び出し（失敗はログに残してメモリ上の状態で続行）"""
        try:
            return await call
        except StorageError as e:
            log_error(logger, e, {"operation": operation, "session_id": session_id})
            return None

    # ===== 参照・操作 =====

    def get_current_mood(self, session_id: str | None = None) -> MoodState:
        """現在の気分"""
        session = self._resolve_session(session_id)
        return self._runtimes[session.id].mood.get_current_mood()

    def get_current_persona(self, session_id: str | None = None) -> Persona:
        """アクティブなペルソナ"""
        session = self._resolve_session(session_id)
        return self._runtimes[session.id].persona.get_current_persona()

    def get_response_style(self, session_id: str | None = None) -> StyleRule:
        """直近のコンテキストに対する応答スタイル"""
        session = self._resolve_session(session_id)
        return self._runtimes[session.id].persona.get_response_style(session.context.persona)

    def switch_persona(self, target_id: str, reason: str = "",
                       session_id: str | None = None) -> Persona:
        """
        ペルソナを切り替え

        Raises:
            InvalidTransitionError: 未知のペルソナ、またはクールダウン中（状態は変わらない）
        """
        session = self._resolve_session(session_id)
        runtime = self._runtimes[session.id]
        now = datetime.now()
        previous = session.state
        persona = runtime.persona.switch_persona(target_id, reason=reason, now=now)

        state = previous.copy()
        state.active_persona = persona.id
        state.response_style = runtime.persona.get_response_style(session.context.persona)
        state.updated_at = now
        session.state = state
        self._checkpoint(session, "persona_switch", now)
        return persona

    def recall_memories(self, context: RecallContext | None = None, limit: int | None = None,
                        session_id: str | None = None) -> list[MemoryEvent]:
        """
        セッションのユーザーの記憶を想起

        context 省略時は現在の話題と直近の感情を手がかりにする。
        """
        session = self._resolve_session(session_id)
        if context is None:
            emotional = session.context.emotional
            context = RecallContext(
                topics=tuple(session.state.current_topics),
                mood=emotional.primary_emotion if emotional else "",
                participants=(session.user_id,),
            )
        return self._runtimes[session.id].timeline.recall_memories(context, limit)


def _time_of_day(now: datetime) -> str:
    if 5 <= now.hour < 12:
        return "morning"
    if 12 <= now.hour < 18:
        return "afternoon"
    if 18 <= now.hour < 23:
        return "evening"
    return "night"
