"""
話題スレッドサービス
ドメイン検出・スレッド管理・プロセス共有の話題グラフ
"""

from __future__ import annotations

import copy
import math
import re
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable

from ...core.config import TopicSettings, get_settings
from ...core.logging import get_logger, log_state_event
from ..models.emotion import EmotionalContext
from ..models.topic import (
    DomainRule,
    RelationUpdate,
    ThreadUpdate,
    TopicData,
    TopicDetection,
    TopicNode,
    TopicThread,
)
from .domain_rules import DEFAULT_DOMAIN_RULES

logger = get_logger(__name__)

# 同じ話題ペアが再び共起したときの関連度の上積み
CO_OCCURRENCE_BOOST = 0.05
DIRECT_MATCH_WEIGHT = 1.0
MOOD_MEMORY_SIZE = 10


class TopicGraph:
    """
    話題グラフ（プロセス共有）

    全セッションから読み書きされるため、すべての操作をロックで保護する。
    関連度は常に両方向同じ値で書き込む。
    """

    def __init__(self):
        self._nodes: dict[str, TopicNode] = {}
        self._lock = threading.RLock()

    def _node(self, topic: str) -> TopicNode:
        node = self._nodes.get(topic)
        if node is None:
            node = TopicNode(name=topic)
            self._nodes[topic] = node
        return node

    def __contains__(self, topic: str) -> bool:
        with self._lock:
            return topic in self._nodes

    def topics(self) -> list[str]:
        with self._lock:
            return list(self._nodes)

    def touch(self, topic: str, now: datetime) -> None:
        """出現頻度と最終出現時刻を更新"""
        with self._lock:
            node = self._node(topic)
            node.frequency += 1
            node.last_active = now

    def relation(self, source: str, target: str) -> float | None:
        """関連度（未設定なら None）"""
        with self._lock:
            node = self._nodes.get(source)
            if node is None:
                return None
            return node.related.get(target)

    def set_relation(self, source: str, target: str, strength: float) -> None:
        """関連度を両方向に設定"""
        strength = max(0.0, min(1.0, strength))
        with self._lock:
            self._node(source).related[target] = strength
            self._node(target).related[source] = strength

    def record_attributes(self, topic: str, mood: str, intensity: float) -> None:
        """話題に直近の気分と強度を記録"""
        with self._lock:
            attributes = self._node(topic).attributes
            attributes["mood"] = mood
            attributes["intensity"] = intensity
            moods = [m for m in attributes.get("moods", []) if m != mood]
            moods.append(mood)
            attributes["moods"] = moods[-MOOD_MEMORY_SIZE:]

    def snapshot(self, topic: str) -> TopicNode | None:
        """ノードのコピーを返す"""
        with self._lock:
            node = self._nodes.get(topic)
            return copy.deepcopy(node) if node else None

    def related_topics(self, topic: str, min_strength: float = 0.0) -> list[str]:
        """関連度の高い順に関連話題を返す"""
        with self._lock:
            node = self._nodes.get(topic)
            if node is None:
                return []
            related = [(name, w) for name, w in node.related.items() if w >= min_strength]
        related.sort(key=lambda item: item[1], reverse=True)
        return [name for name, _ in related]

    def merge(self, data: TopicData) -> None:
        """永続化された話題データを取り込む（関連度は大きい方を採用）"""
        with self._lock:
            node = self._node(data.id)
            node.frequency = max(node.frequency, data.frequency)
            if data.last_seen and (node.last_active is None or data.last_seen > node.last_active):
                node.last_active = data.last_seen
            for other, strength in data.relations.items():
                current = node.related.get(other, 0.0)
                self.set_relation(data.id, other, max(current, strength))


class TopicManager:
    """
    話題マネージャー（セッションごと）

    process_input() はスレッドのコピー上で計算して ThreadUpdate を返し、
    apply_update() で初めてセッション状態と話題グラフに反映する。
    """

    def __init__(self, settings: TopicSettings | None = None,
                 graph: TopicGraph | None = None,
                 rules: Iterable[DomainRule] | None = None,
                 archiver: Callable[[TopicThread], None] | None = None):
        self.settings = settings or get_settings().topic
        self.graph = graph or TopicGraph()
        self._rules = {rule.domain: rule for rule in (rules or DEFAULT_DOMAIN_RULES)}
        self._keyword_patterns = {
            domain: [
                (kw, re.compile(r"\b" + re.escape(kw) + r"\b")) for kw in rule.keywords
            ]
            for domain, rule in self._rules.items()
        }
        self._archiver = archiver
        self._threads: dict[str, TopicThread] = {}
        self._current_thread_id: str | None = None

    # ===== 状態参照 =====

    @property
    def active_threads(self) -> tuple[TopicThread, ...]:
        return tuple(self._threads.values())

    @property
    def current_thread(self) -> TopicThread | None:
        if self._current_thread_id is None:
            return None
        return self._threads.get(self._current_thread_id)

    def set_archiver(self, archiver: Callable[[TopicThread], None] | None) -> None:
        self._archiver = archiver

    def domain_keywords(self, domain: str) -> tuple[str, ...]:
        rule = self._rules.get(domain)
        return rule.keywords if rule else ()

    # ===== 検出 =====

    def detect_topics(self, text: str) -> list[TopicDetection]:
        """
        メッセージから話題ドメインを検出

        Returns:
            List[TopicDetection]: 優先度・信頼度の高い順
        """
        if not text or not text.strip():
            return []
        lowered = text.lower()
        detections = []

        for domain, rule in self._rules.items():
            confidence = 0.0
            matched = []
            for keyword, pattern in self._keyword_patterns[domain]:
                count = len(pattern.findall(lowered))
                if count:
                    confidence += count * self.settings.keyword_weight
                    matched.append(keyword)
            for validator in rule.validators:
                if validator(text):
                    confidence += self.settings.validator_weight

            if confidence >= self.settings.min_confidence:
                detections.append(TopicDetection(
                    topic=domain,
                    confidence=min(1.0, confidence),
                    priority=rule.priority,
                    matched_keywords=tuple(matched),
                ))

        detections.sort(key=lambda d: (d.priority, d.confidence), reverse=True)
        return detections

    def calculate_relationship_score(self, source: str, target: str) -> float:
        """ドメイン遷移表から話題間の親和度を求める（両方向の大きい方）"""
        forward = self._rules.get(source)
        backward = self._rules.get(target)
        return max(
            forward.transitions.get(target, 0.0) if forward else 0.0,
            backward.transitions.get(source, 0.0) if backward else 0.0,
        )

    # ===== スレッド処理 =====

    def process_input(self, text: str, context: EmotionalContext | None = None,
                      now: datetime | None = None) -> ThreadUpdate:
        """
        入力を処理してスレッド更新を計算（セッション状態は変更しない）

        Args:
            text: 入力メッセージ
            context: 感情コンテキスト（スレッドに紐付ける）
            now: 処理時刻

        Returns:
            ThreadUpdate: 更新後のスレッド・アーカイブ対象・関連度更新
        """
        now = now or datetime.now()
        threads = [replace(t, active_nodes=list(t.active_nodes)) for t in self._threads.values()]

        timeout = timedelta(minutes=self.settings.thread_timeout_minutes)
        archived = [t for t in threads if now - t.last_active > timeout]
        archived_ids = {t.id for t in archived}
        threads = [t for t in threads if t.id not in archived_ids]

        current_id = self._current_thread_id if self._current_thread_id not in archived_ids else None
        detections = self.detect_topics(text)
        pending: list[RelationUpdate] = []
        opened: list[str] = []

        for index, detection in enumerate(detections):
            thread, _ = self.find_relevant_thread(detection.topic, now, threads, pending)
            if thread is not None:
                self._update_thread(thread, detection.topic, context, now, pending)
            else:
                thread = self._new_thread(detection.topic, context, now)
                threads.append(thread)
                opened.append(thread.id)
            if index == 0:
                current_id = thread.id

        return ThreadUpdate(
            threads=threads,
            archived=archived,
            relation_updates=pending,
            detections=detections,
            current_thread_id=current_id,
            opened_thread_ids=opened,
            timestamp=now,
        )

    def apply_update(self, update: ThreadUpdate) -> list[TopicThread]:
        """スレッド更新を反映し、アーカイブしたスレッドを返す"""
        self._threads = {t.id: t for t in update.threads}
        self._current_thread_id = update.current_thread_id

        for relation in update.relation_updates:
            self.graph.set_relation(relation.source, relation.target, relation.strength)
        for detection in update.detections:
            self.graph.touch(detection.topic, update.timestamp)
        for thread in update.archived:
            self._archive(thread)
        return list(update.archived)

    def find_relevant_thread(self, topic: str, now: datetime,
                             threads: Iterable[TopicThread] | None = None,
                             pending: list[RelationUpdate] | None = None
                             ) -> tuple[TopicThread | None, float]:
        """
        話題に最も関連するスレッドを探す

        relevance = (直接一致 + 関連度) × exp(-decay_rate × 経過分)
        """
        best, best_relevance = None, 0.0
        for thread in (self._threads.values() if threads is None else threads):
            relevance = 0.0
            for node in thread.active_nodes:
                if node == topic:
                    relevance += DIRECT_MATCH_WEIGHT
                else:
                    relevance += self._current_strength(node, topic, pending or [])
            minutes = max(0.0, (now - thread.last_active).total_seconds() / 60.0)
            relevance *= math.exp(-self.settings.decay_rate * minutes)
            if relevance > best_relevance:
                best, best_relevance = thread, relevance

        if best_relevance >= self.settings.min_confidence:
            return best, best_relevance
        return None, best_relevance

    def create_thread(self, topic: str, context: EmotionalContext | None = None,
                      now: datetime | None = None) -> TopicThread:
        """新しいスレッドを作ってアクティブにする"""
        thread = self._new_thread(topic, context, now or datetime.now())
        self._threads[thread.id] = thread
        self._current_thread_id = thread.id
        self.graph.touch(topic, thread.start_time)
        return thread

    def update_thread(self, thread: TopicThread, topic: str,
                      context: EmotionalContext | None = None,
                      now: datetime | None = None) -> TopicThread:
        """スレッドに話題を追加し、関連度を即時反映する"""
        pending: list[RelationUpdate] = []
        self._update_thread(thread, topic, context, now or datetime.now(), pending)
        for relation in pending:
            self.graph.set_relation(relation.source, relation.target, relation.strength)
        self.graph.touch(topic, thread.last_active)
        return thread

    def prune(self, now: datetime | None = None) -> list[TopicThread]:
        """タイムアウトしたスレッドをアーカイブする"""
        now = now or datetime.now()
        timeout = timedelta(minutes=self.settings.thread_timeout_minutes)
        stale = [t for t in self._threads.values() if now - t.last_active > timeout]
        for thread in stale:
            del self._threads[thread.id]
            if thread.id == self._current_thread_id:
                self._current_thread_id = None
            self._archive(thread)
        return stale

    def restore(self, threads: Iterable[TopicThread], current_thread_id: str | None = None) -> None:
        """保存済みスレッドから復元"""
        self._threads = {t.id: t for t in threads}
        self._current_thread_id = current_thread_id if current_thread_id in self._threads else None

    def _new_thread(self, topic: str, context: EmotionalContext | None,
                    now: datetime) -> TopicThread:
        return TopicThread(
            id=str(uuid.uuid4()),
            main_topic=topic,
            start_time=now,
            last_active=now,
            active_nodes=[topic],
            depth=1,
            context=context,
        )

    def _update_thread(self, thread: TopicThread, topic: str,
                       context: EmotionalContext | None, now: datetime,
                       pending: list[RelationUpdate]) -> None:
        if topic not in thread.active_nodes:
            thread.active_nodes.append(topic)
            # 古いノードから追い出す
            while len(thread.active_nodes) > self.settings.max_thread_depth:
                thread.active_nodes.pop(0)

        for other in thread.active_nodes:
            if other == topic:
                continue
            pending.append(RelationUpdate(
                source=other,
                target=topic,
                strength=self._next_strength(other, topic, pending),
            ))

        thread.last_active = now
        thread.depth += 1
        if context is not None:
            thread.context = context

    def _current_strength(self, source: str, target: str,
                          pending: list[RelationUpdate]) -> float:
        for relation in reversed(pending):
            if {relation.source, relation.target} == {source, target}:
                return relation.strength
        strength = self.graph.relation(source, target)
        if strength is not None:
            return strength
        return self.calculate_relationship_score(source, target)

    def _next_strength(self, source: str, target: str,
                       pending: list[RelationUpdate]) -> float:
        pending_match = [
            r for r in pending if {r.source, r.target} == {source, target}
        ]
        existing = pending_match[-1].strength if pending_match else self.graph.relation(source, target)
        if existing is None:
            return self.calculate_relationship_score(source, target)
        return min(1.0, existing + CO_OCCURRENCE_BOOST)

    def _archive(self, thread: TopicThread) -> None:
        log_state_event(
            logger, "topic_thread_archived",
            thread_id=thread.id, main_topic=thread.main_topic,
            topics=list(thread.active_nodes),
        )
        if self._archiver is not None:
            self._archiver(thread)
