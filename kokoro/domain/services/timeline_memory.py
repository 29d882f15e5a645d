"""
タイムライン記憶サービス
記憶イベントの保存・重要度計算・マーカー生成・想起・関係性の更新
"""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Mapping

from ...core.config import MemorySettings, get_settings
from ...core.logging import get_logger, log_state_event
from ..models.memory import (
    EventContext,
    EventType,
    MarkerType,
    MemoryEvent,
    RecallContext,
    RecurrencePattern,
    RelationshipMemory,
    ScoredMemory,
    TimelineMarker,
    TimelineUpdate,
)
from ..models.session import Interaction
from ..models.topic import TopicThread, UNCATEGORIZED_TOPIC

logger = get_logger(__name__)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ImportanceCalculator:
    """
    重要度計算

    importance = 種類の重み × (1 + 最大感情強度) × 新しさ係数
    新しさ係数 = 0.7 + 0.3 × exp(-経過時間 / 1週間)
    """

    TYPE_WEIGHTS: dict[EventType, float] = {
        EventType.EMOTIONAL: 0.4,
        EventType.PERSONAL: 0.3,
        EventType.RELATIONSHIP: 0.2,
        EventType.CONVERSATION: 0.15,
        EventType.ACHIEVEMENT: 0.1,
        EventType.CUSTOM: 0.1,
    }
    RECENCY_HOURS = 24 * 7

    def calculate(self, event: MemoryEvent, now: datetime | None = None) -> float:
        now = now or datetime.now()
        age_hours = max(0.0, (now - event.timestamp).total_seconds() / 3600.0)
        recency = 0.7 + 0.3 * math.exp(-age_hours / self.RECENCY_HOURS)
        weight = self.TYPE_WEIGHTS.get(event.type, 0.1)
        return _clamp(weight * (1.0 + event.max_emotion) * recency)


class TimelineMemory:
    """
    タイムライン記憶（ユーザーごと）

    想起スコア = 0.4 × 関連度 + 0.3 × 新しさ + 0.3 × 感情 + 0.2 × 重要度
    """

    # 想起スコアの重み
    RELEVANCE_WEIGHT = 0.4
    RECENCY_WEIGHT = 0.3
    EMOTION_WEIGHT = 0.3
    IMPORTANCE_WEIGHT = 0.2
    RECALL_HALF_LIFE_HOURS = 30 * 24

    # 関係性の変化量（personal < emotional < relationship）
    TRUST_DELTAS: dict[EventType, float] = {
        EventType.PERSONAL: 0.05,
        EventType.EMOTIONAL: 0.1,
        EventType.RELATIONSHIP: 0.15,
    }
    INTIMACY_DELTAS: dict[EventType, float] = {
        EventType.PERSONAL: 0.1,
        EventType.EMOTIONAL: 0.15,
        EventType.RELATIONSHIP: 0.2,
    }

    MILESTONE_TAGS = frozenset({"milestone", "anniversary", "first_date", "first_meeting"})
    MILESTONE_PHRASES = re.compile(
        r"\b(anniversary|first date|first time we|first met|moved in|got engaged)\b"
    )
    RECURRENCE_TAGS = {"daily": "daily", "weekly": "weekly", "monthly": "monthly", "yearly": "yearly"}
    RECURRENCE_PHRASES = re.compile(r"\bevery (day|week|month|year)\b")
    _PHRASE_FREQUENCY = {"day": "daily", "week": "weekly", "month": "monthly", "year": "yearly"}
    MAX_SHARED_TOPICS = 50

    def __init__(self, user_id: str, settings: MemorySettings | None = None,
                 calculator: ImportanceCalculator | None = None):
        self.user_id = user_id
        self.settings = settings or get_settings().memory
        self.calculator = calculator or ImportanceCalculator()
        self._events: dict[str, MemoryEvent] = {}
        self._markers: dict[str, TimelineMarker] = {}
        self._relationships: dict[str, RelationshipMemory] = {}

    # ===== 参照 =====

    @property
    def events(self) -> tuple[MemoryEvent, ...]:
        return tuple(self._events.values())

    @property
    def markers(self) -> tuple[TimelineMarker, ...]:
        return tuple(self._markers.values())

    def get_event(self, event_id: str) -> MemoryEvent | None:
        return self._events.get(event_id)

    def get_relationship(self, user_id: str) -> RelationshipMemory | None:
        return self._relationships.get(user_id)

    def get_or_create_relationship(self, user_id: str) -> RelationshipMemory:
        """関係性の記憶を取得または作成"""
        relationship = self._relationships.get(user_id)
        if relationship is None:
            relationship = RelationshipMemory(user_id=user_id)
            self._relationships[user_id] = relationship
        return relationship

    # ===== 保存 =====

    def prepare_event(self, event: MemoryEvent, now: datetime | None = None) -> MemoryEvent:
        """ID と重要度を補ったイベントを返す（保存はしない）"""
        if not event.id:
            event = replace(event, id=str(uuid.uuid4()))
        if event.importance is None:
            event = replace(event, importance=self.calculator.calculate(event, now))
        return event

    def store_event(self, event: MemoryEvent, now: datetime | None = None) -> MemoryEvent:
        """
        イベントを保存

        重要度が閾値以上ならタイムラインマーカーを生成する。
        参加者の関係性にはイベントの種類に応じた変化量を加える。

        Returns:
            MemoryEvent: ID・重要度が確定した保存済みイベント
        """
        stored = self._store(event, now)
        for participant in stored.context.participants:
            self._apply_relationship(
                participant, stored.type, stored.emotions, stored.timestamp, stored.context.topics
            )
            self.get_or_create_relationship(participant).events.append(stored.id)
        return stored

    def _store(self, event: MemoryEvent, now: datetime | None) -> MemoryEvent:
        stored = self.prepare_event(event, now)
        self._events[stored.id] = stored
        if stored.importance >= self.settings.significance_threshold:
            marker = self._create_marker(stored)
            self._markers[marker.id] = marker
            for participant in stored.context.participants:
                if marker.type == MarkerType.MILESTONE:
                    self.get_or_create_relationship(participant).milestones.append(marker.id)
        return stored

    def archive_thread(self, thread: TopicThread) -> MemoryEvent:
        """アーカイブされた話題スレッドを会話イベントとして残す"""
        topics = tuple(thread.active_nodes)
        event = MemoryEvent(
            type=EventType.CONVERSATION,
            content=f"Talked about {', '.join(topics)}",
            timestamp=thread.last_active,
            tags=topics,
            context=EventContext(participants=(self.user_id,), topics=topics),
        )
        stored = self._store(event, thread.last_active)
        relationship = self.get_or_create_relationship(self.user_id)
        relationship.events.append(stored.id)
        self._add_shared_topics(relationship, topics)
        return stored

    # ===== マーカー =====

    def _create_marker(self, event: MemoryEvent) -> TimelineMarker:
        if self._is_relationship_milestone(event):
            marker_type, recurrence = MarkerType.MILESTONE, RecurrencePattern("yearly")
        else:
            recurrence = self._detect_recurrence(event)
            if recurrence is not None:
                marker_type = MarkerType.RECURRING
            elif event.type == EventType.ACHIEVEMENT:
                marker_type = MarkerType.MILESTONE
            else:
                marker_type = MarkerType.REMINDER

        marker = TimelineMarker(
            id=str(uuid.uuid4()),
            type=marker_type,
            description=event.content,
            timestamp=event.timestamp,
            importance=event.importance or 0.0,
            event_id=event.id,
            recurrence=recurrence,
        )
        log_state_event(
            logger, "timeline_marker_created",
            marker_type=marker_type.value, event_id=event.id, importance=marker.importance,
        )
        return marker

    def _is_relationship_milestone(self, event: MemoryEvent) -> bool:
        if event.type != EventType.RELATIONSHIP:
            return False
        if self.MILESTONE_TAGS.intersection(event.tags):
            return True
        return bool(self.MILESTONE_PHRASES.search(event.content.lower()))

    def _detect_recurrence(self, event: MemoryEvent) -> RecurrencePattern | None:
        for tag in event.tags:
            if tag in self.RECURRENCE_TAGS:
                return RecurrencePattern(self.RECURRENCE_TAGS[tag])
        match = self.RECURRENCE_PHRASES.search(event.content.lower())
        if match:
            return RecurrencePattern(self._PHRASE_FREQUENCY[match.group(1)])
        return None

    def check_anniversaries(self, now: datetime | None = None,
                            window_days: int | None = None) -> list[TimelineMarker]:
        """
        近づいている記念日（年単位で繰り返すマーカー）を返す

        Args:
            now: 基準時刻
            window_days: 何日先までを対象にするか
        """
        now = now or datetime.now()
        window = self.settings.anniversary_window_days if window_days is None else window_days
        upcoming = []
        for marker in self._markers.values():
            if marker.recurrence is None or marker.recurrence.frequency != "yearly":
                continue
            next_date = self._next_anniversary(marker.timestamp, now)
            if next_date is not None and next_date - now <= timedelta(days=window):
                upcoming.append(marker)
        upcoming.sort(key=lambda m: self._next_anniversary(m.timestamp, now))
        return upcoming

    def _next_anniversary(self, original: datetime, now: datetime) -> datetime | None:
        for year in (now.year, now.year + 1):
            if year <= original.year:
                continue
            try:
                candidate = original.replace(year=year)
            except ValueError:
                # 2/29 は平年では 2/28 扱い
                candidate = original.replace(year=year, day=28)
            if candidate.date() >= now.date():
                return candidate
        return None

    # ===== 想起 =====

    def rank_memories(self, context: RecallContext, limit: int | None = None,
                      now: datetime | None = None) -> list[ScoredMemory]:
        """想起候補をスコア順に並べる（記録は更新しない）"""
        now = now or datetime.now()
        limit = self.settings.recall_limit if limit is None else limit
        scored = [
            ScoredMemory(event=event, score=self._recall_score(event, context, now))
            for event in self._events.values()
        ]
        scored.sort(key=lambda s: (s.score, s.event.timestamp), reverse=True)
        return scored[:limit]

    def recall_memories(self, context: RecallContext, limit: int | None = None,
                        now: datetime | None = None) -> list[MemoryEvent]:
        """
        記憶を想起

        スコア上位 limit 件を返し、想起回数と想起時刻を記録する。
        同点なら新しいものが先。
        """
        now = now or datetime.now()
        ranked = self.rank_memories(context, limit, now)
        return self.mark_recalled((s.event.id for s in ranked), now)

    def mark_recalled(self, event_ids: Iterable[str], now: datetime | None = None) -> list[MemoryEvent]:
        """想起を記録した新しいイベントに差し替える"""
        now = now or datetime.now()
        recalled = []
        for event_id in event_ids:
            event = self._events.get(event_id)
            if event is None:
                continue
            updated = replace(event, recall_count=event.recall_count + 1, last_recall=now)
            self._events[event_id] = updated
            recalled.append(updated)
        return recalled

    def _recall_score(self, event: MemoryEvent, context: RecallContext, now: datetime) -> float:
        age_hours = max(0.0, (now - event.timestamp).total_seconds() / 3600.0)
        recency = math.exp(-age_hours / self.RECALL_HALF_LIFE_HOURS)
        emotion = event.emotions.get(context.mood, 0.0) if context.mood else 0.0
        return (
            self.RELEVANCE_WEIGHT * self._relevance(event, context)
            + self.RECENCY_WEIGHT * recency
            + self.EMOTION_WEIGHT * emotion
            + self.IMPORTANCE_WEIGHT * (event.importance or 0.0)
        )

    def _relevance(self, event: MemoryEvent, context: RecallContext) -> float:
        cues = set(context.topics) | set(context.keywords)
        cues.discard(UNCATEGORIZED_TOPIC)
        if not cues:
            return 0.0
        event_terms = set(event.context.topics) | set(event.tags)
        overlap = len(cues & event_terms)
        content = event.content.lower()
        overlap += sum(1 for kw in context.keywords if kw not in event_terms and kw in content)
        return _clamp(overlap / len(cues))

    # ===== 関係性 =====

    def plan_interaction(self, user_id: str, interaction: Interaction,
                         topics: Iterable[str] = (), intensity: float | None = None,
                         recall_context: RecallContext | None = None,
                         now: datetime | None = None) -> TimelineUpdate:
        """
        対話1件分の記憶処理を計算（状態は変更しない）

        Args:
            user_id: 対話相手
            interaction: 対話
            topics: このターンの話題
            intensity: 感情強度（未指定なら interaction.intensity）
            recall_context: 想起の手がかり
            now: 処理時刻
        """
        now = now or interaction.timestamp
        topics = tuple(t for t in topics if t != UNCATEGORIZED_TOPIC)
        event_type = self._classify(interaction)
        intensity = interaction.intensity if intensity is None else intensity

        event = None
        if self._is_significant(event_type, intensity or 0.0):
            event = self.prepare_event(MemoryEvent(
                type=event_type,
                content=interaction.content,
                timestamp=interaction.timestamp,
                emotions=dict(interaction.emotions),
                tags=topics,
                context=EventContext(participants=(user_id,), topics=topics),
            ), now)

        trust_delta, intimacy_delta = self._relationship_deltas(event_type, interaction.emotions)
        recalled = ()
        if recall_context is not None:
            recalled = tuple(s.event for s in self.rank_memories(recall_context, now=now))

        return TimelineUpdate(
            user_id=user_id,
            timestamp=interaction.timestamp,
            event=event,
            trust_delta=trust_delta,
            intimacy_delta=intimacy_delta,
            topics=topics,
            recalled=recalled,
        )

    def apply_update(self, update: TimelineUpdate, now: datetime | None = None) -> RelationshipMemory:
        """計算済みの記憶処理を反映"""
        now = now or update.timestamp
        relationship = self.get_or_create_relationship(update.user_id)
        relationship.trust = _clamp(relationship.trust + update.trust_delta)
        relationship.intimacy = _clamp(relationship.intimacy + update.intimacy_delta)
        relationship.last_interaction = update.timestamp
        self._add_shared_topics(relationship, update.topics)

        if update.event is not None:
            stored = self._store(update.event, now)
            relationship.events.append(stored.id)
        if update.recalled:
            self.mark_recalled((e.id for e in update.recalled), now)
        return relationship

    def update_relationship(self, user_id: str, interaction: Interaction,
                            now: datetime | None = None) -> RelationshipMemory:
        """対話から関係性を更新（有意な対話はイベントとして保存）"""
        return self.apply_update(self.plan_interaction(user_id, interaction, now=now), now)

    def _apply_relationship(self, user_id: str, event_type: EventType, emotions: Mapping[str, float],
                            timestamp: datetime, topics: Iterable[str]) -> None:
        trust_delta, intimacy_delta = self._relationship_deltas(event_type, emotions)
        relationship = self.get_or_create_relationship(user_id)
        relationship.trust = _clamp(relationship.trust + trust_delta)
        relationship.intimacy = _clamp(relationship.intimacy + intimacy_delta)
        if relationship.last_interaction is None or timestamp > relationship.last_interaction:
            relationship.last_interaction = timestamp
        self._add_shared_topics(relationship, topics)

    def _relationship_deltas(self, event_type: EventType,
                            emotions: Mapping[str, float]) -> tuple[float, float]:
        trust = self.TRUST_DELTAS.get(event_type, 0.0) * (1.0 + max(0.0, emotions.get("trust", 0.0)))
        intimacy = self.INTIMACY_DELTAS.get(event_type, 0.0) * (1.0 + max(0.0, emotions.get("intimacy", 0.0)))
        return trust, intimacy

    def _add_shared_topics(self, relationship: RelationshipMemory, topics: Iterable[str]) -> None:
        for topic in topics:
            if topic != UNCATEGORIZED_TOPIC and topic not in relationship.shared_topics:
                relationship.shared_topics.append(topic)
        if len(relationship.shared_topics) > self.MAX_SHARED_TOPICS:
            del relationship.shared_topics[: len(relationship.shared_topics) - self.MAX_SHARED_TOPICS]

    def _classify(self, interaction: Interaction) -> EventType:
        try:
            return EventType(interaction.type)
        except ValueError:
            return EventType.CUSTOM

    def _is_significant(self, event_type: EventType, intensity: float) -> bool:
        if event_type in (EventType.PERSONAL, EventType.EMOTIONAL, EventType.RELATIONSHIP,
                          EventType.ACHIEVEMENT):
            return True
        return intensity >= self.settings.significant_intensity
