"""
話題×気分統合サービス
話題ドメインごとの倍率で気分強度を調整し、気分を話題の重みに反映する
"""

from __future__ import annotations

from datetime import datetime
from types import MappingProxyType
from typing import Iterable

from ...core.config import MoodSettings, get_settings
from ..models.emotion import (
    EMOTIONAL_SUPPORT,
    FEMININE_PRESENCE,
    ROMANTIC_CONTEXT,
    TECHNICAL_DISCUSSION,
    EmotionalContext,
)
from ..models.mood import MoodState
from ..models.topic import (
    ContextTransition,
    IntegratedContext,
    TopicDetection,
    TopicMoodPattern,
    TopicThread,
    UNCATEGORIZED_TOPIC,
)
from .topic_threader import TopicGraph

REQUIRED_CONTEXT_BOOST = 1.5

DEFAULT_TOPIC_MOOD_PATTERNS: tuple[TopicMoodPattern, ...] = (
    TopicMoodPattern(
        domain="romance",
        base_intensity=0.8,
        mood_modifiers=MappingProxyType({
            "flirty": 1.5, "playful": 1.3, "romantic": 1.4, "protective": 1.2,
        }),
        required_context=(FEMININE_PRESENCE, ROMANTIC_CONTEXT),
        transitions=("emotional", "social"),
        cooldown_seconds=300.0,
    ),
    TopicMoodPattern(
        domain="tech",
        base_intensity=0.7,
        mood_modifiers=MappingProxyType({
            "intellectual": 1.4, "excited": 1.2, "enthusiastic": 1.3, "playful": 1.1,
        }),
        required_context=(TECHNICAL_DISCUSSION,),
        transitions=("science", "gaming"),
        cooldown_seconds=120.0,
    ),
    TopicMoodPattern(
        domain="gaming",
        base_intensity=0.7,
        mood_modifiers=MappingProxyType({"excited": 1.4, "playful": 1.3, "sassy": 1.1}),
        transitions=("memes", "tech"),
        cooldown_seconds=120.0,
    ),
    TopicMoodPattern(
        domain="emotional",
        base_intensity=0.6,
        mood_modifiers=MappingProxyType({"protective": 1.5, "sassy": 0.7, "playful": 0.8}),
        required_context=(EMOTIONAL_SUPPORT,),
        transitions=("romance", "social"),
        cooldown_seconds=300.0,
    ),
)


class TopicMoodIntegrator:
    """
    話題×気分統合（セッションごと）

    integrate() は前回の統合結果と比較して新しい結果を計算するだけで、
    commit() が前回値の更新と話題グラフへの書き込みを行う。
    """

    def __init__(self, graph: TopicGraph | None = None,
                 patterns: Iterable[TopicMoodPattern] | None = None,
                 settings: MoodSettings | None = None):
        self.graph = graph
        self.settings = settings or get_settings().mood
        self._patterns = {p.domain: p for p in (patterns or DEFAULT_TOPIC_MOOD_PATTERNS)}
        self._last: IntegratedContext | None = None
        self._last_boost: dict[str, datetime] = {}

    @property
    def last_context(self) -> IntegratedContext | None:
        return self._last

    def integrate(self, detections: list[TopicDetection], mood: MoodState,
                  context: EmotionalContext | None = None,
                  thread: TopicThread | None = None,
                  now: datetime | None = None) -> IntegratedContext:
        """
        話題と気分を統合

        Args:
            detections: このターンの話題検出結果
            mood: このターンの気分状態
            context: 感情コンテキスト（必須コンテキストの判定に使う）
            thread: 現在のスレッド
            now: 処理時刻

        Returns:
            IntegratedContext: 統合結果（未コミット）
        """
        now = now or datetime.now()
        flags = context.context_flags() if context else frozenset()
        intensity = None
        boosted = []
        weights: dict[str, float] = {}

        for detection in detections:
            pattern = self._patterns.get(detection.topic)
            modifier = pattern.mood_modifiers.get(mood.primary, 1.0) if pattern else 1.0
            weights[detection.topic] = min(1.0, detection.confidence * modifier)
            if pattern is None:
                continue

            value = pattern.base_intensity * modifier
            if self._required_context_met(pattern, flags) and not self._cooling_down(pattern, now):
                value *= REQUIRED_CONTEXT_BOOST
                boosted.append(pattern.domain)
            intensity = value if intensity is None else max(intensity, value)

        if intensity is None:
            intensity = mood.intensity
        intensity = max(0.0, min(self.settings.max_intensity, intensity))

        main_topic = detections[0].topic if detections else (
            thread.main_topic if thread else UNCATEGORIZED_TOPIC
        )
        transitions = ()
        if self._last is not None and detections and self._last.main_topic != main_topic:
            transitions = (ContextTransition(
                from_topic=self._last.main_topic,
                to_topic=main_topic,
                timestamp=now,
                mood_shift=intensity - self._last.intensity,
            ),)

        return IntegratedContext(
            thread_id=thread.id if thread else None,
            main_topic=main_topic,
            mood=mood.primary,
            intensity=intensity,
            topic_weights=weights,
            transitions=transitions,
            boosted_domains=tuple(boosted),
            last_update=now,
        )

    def commit(self, integrated: IntegratedContext) -> None:
        """統合結果を反映"""
        self._last = integrated
        for domain in integrated.boosted_domains:
            self._last_boost[domain] = integrated.last_update
        if self.graph is not None:
            for topic in integrated.topic_weights:
                self.graph.record_attributes(topic, integrated.mood, integrated.intensity)

    def _required_context_met(self, pattern: TopicMoodPattern, flags: frozenset[str]) -> bool:
        return bool(pattern.required_context) and all(
            required in flags for required in pattern.required_context
        )

    def _cooling_down(self, pattern: TopicMoodPattern, now: datetime) -> bool:
        last = self._last_boost.get(pattern.domain)
        if last is None:
            return False
        return (now - last).total_seconds() < pattern.cooldown_seconds
