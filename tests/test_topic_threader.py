"""
TopicManager / TopicGraph のテスト

- 話題検出の優先度順
- 関連度が常に両方向で同じか
- スレッドのノード数上限（古いものから追い出し）
- タイムアウトしたスレッドのアーカイブ
"""

from datetime import datetime, timedelta

import pytest

from kokoro.core.config import TopicSettings
from kokoro.domain.models.topic import TopicData, UNCATEGORIZED_TOPIC
from kokoro.domain.services.topic_threader import TopicGraph, TopicManager


T0 = datetime(2026, 1, 1, 12, 0)

TECH = "I love python code and the server"
SCIENCE = "quantum physics and science theory"
EMOTIONAL = "I feel sad and lonely, my heart"


class TestTopicGraph:
    """TopicGraph のテスト"""

    def setup_method(self):
        self.graph = TopicGraph()

    def test_relation_is_symmetric(self):
        """関連度は両方向に同じ値で書かれる"""
        self.graph.set_relation("tech", "science", 0.8)

        assert self.graph.relation("tech", "science") == 0.8
        assert self.graph.relation("science", "tech") == 0.8

    def test_relation_is_clamped(self):
        """関連度は 0〜1"""
        self.graph.set_relation("a", "b", 1.7)
        assert self.graph.relation("b", "a") == 1.0

    def test_unknown_relation(self):
        """未設定の関連度は None"""
        assert self.graph.relation("a", "b") is None

    def test_related_topics_order(self):
        """関連度の高い順"""
        self.graph.set_relation("tech", "science", 0.8)
        self.graph.set_relation("tech", "memes", 0.4)
        self.graph.set_relation("tech", "art", 0.2)

        assert self.graph.related_topics("tech") == ["science", "memes", "art"]
        assert self.graph.related_topics("tech", min_strength=0.3) == ["science", "memes"]

    def test_record_attributes(self):
        """直近の気分と強度が記録される"""
        self.graph.record_attributes("tech", "playful", 0.6)
        self.graph.record_attributes("tech", "intellectual", 0.7)

        node = self.graph.snapshot("tech")
        assert node.attributes["mood"] == "intellectual"
        assert node.attributes["moods"] == ["playful", "intellectual"]

    def test_snapshot_is_copy(self):
        """スナップショットを変更してもグラフは変わらない"""
        self.graph.set_relation("tech", "science", 0.8)
        node = self.graph.snapshot("tech")
        node.related["science"] = 0.0

        assert self.graph.relation("tech", "science") == 0.8

    def test_merge_keeps_stronger_relation(self):
        """永続化データの取り込みでは関連度の大きい方を採用"""
        self.graph.set_relation("tech", "science", 0.5)
        self.graph.merge(TopicData(id="tech", domain="tech", relations={"science": 0.9, "art": 0.1}, frequency=4))

        assert self.graph.relation("science", "tech") == 0.9
        assert self.graph.relation("art", "tech") == 0.1
        assert self.graph.snapshot("tech").frequency == 4


class TestTopicDetection:
    """話題検出のテスト"""

    def setup_method(self):
        self.manager = TopicManager(TopicSettings())

    def test_empty_input(self):
        """空入力は何も検出しない"""
        assert self.manager.detect_topics("") == []
        assert self.manager.detect_topics("   ") == []

    def test_keyword_detection(self):
        """キーワード3件で検出される"""
        detections = self.manager.detect_topics(TECH)

        assert [d.topic for d in detections] == ["tech"]
        assert detections[0].confidence == pytest.approx(0.6)
        assert set(detections[0].matched_keywords) == {"python", "code", "server"}

    def test_below_min_confidence(self):
        """信頼度が足りなければ検出しない"""
        assert self.manager.detect_topics("python is nice") == []

    def test_validator_adds_confidence(self):
        """バリデーターの合格で信頼度が上がる"""
        detections = self.manager.detect_topics("python code in main.py")
        assert detections[0].topic == "tech"
        assert detections[0].confidence == pytest.approx(0.7)

    def test_sorted_by_priority(self):
        """優先度の高いドメインが先"""
        detections = self.manager.detect_topics(EMOTIONAL + " and my python code on the server")
        assert [d.topic for d in detections] == ["emotional", "tech"]

    def test_relationship_score_uses_both_directions(self):
        """遷移親和度は両方向の大きい方"""
        assert self.manager.calculate_relationship_score("tech", "art") == 0.3
        assert self.manager.calculate_relationship_score("art", "tech") == 0.3
        assert self.manager.calculate_relationship_score("tech", "emotional") == 0.0


class TestTopicThreads:
    """スレッド処理のテスト"""

    def setup_method(self):
        self.graph = TopicGraph()
        self.archived = []
        self.manager = TopicManager(TopicSettings(), graph=self.graph, archiver=self.archived.append)

    def _process(self, text, now=T0):
        update = self.manager.process_input(text, now=now)
        self.manager.apply_update(update)
        return update

    def test_process_input_does_not_mutate(self):
        """process_input() だけでは状態もグラフも変わらない"""
        update = self.manager.process_input(TECH, now=T0)

        assert len(update.threads) == 1
        assert update.opened_thread_ids == [update.threads[0].id]
        assert self.manager.active_threads == ()
        assert "tech" not in self.graph

    def test_apply_update_creates_thread(self):
        """apply_update() でスレッドが作られる"""
        update = self._process(TECH)

        thread = self.manager.current_thread
        assert thread.id == update.current_thread_id
        assert thread.main_topic == "tech"
        assert thread.active_nodes == ["tech"]
        assert self.graph.snapshot("tech").frequency == 1

    def test_same_topic_reuses_thread(self):
        """同じ話題は同じスレッドに入る"""
        first = self._process(TECH)
        second = self._process(TECH, T0 + timedelta(minutes=1))

        assert second.opened_thread_ids == []
        assert second.current_thread_id == first.current_thread_id
        assert len(self.manager.active_threads) == 1
        assert self.manager.current_thread.depth == 2

    def test_related_topic_joins_thread(self):
        """関連の深い話題は同じスレッドに入り、関連度が両方向に記録される"""
        self._process(TECH)
        update = self._process(SCIENCE)

        assert update.opened_thread_ids == []
        assert self.manager.current_thread.active_nodes == ["tech", "science"]
        assert self.graph.relation("tech", "science") == pytest.approx(0.8)
        assert self.graph.relation("science", "tech") == pytest.approx(0.8)

    def test_co_occurrence_strengthens_relation(self):
        """同じ組み合わせが再び出ると関連度が少し上がる"""
        self._process(TECH)
        self._process(SCIENCE)
        self._process(SCIENCE)

        assert self.graph.relation("tech", "science") == pytest.approx(0.85)
        assert self.graph.relation("science", "tech") == pytest.approx(0.85)

    def test_unrelated_topic_opens_thread(self):
        """関連のない話題は新しいスレッド"""
        first = self._process(TECH)
        second = self._process(EMOTIONAL)

        assert len(second.opened_thread_ids) == 1
        assert second.current_thread_id != first.current_thread_id
        assert self.manager.current_thread.main_topic == "emotional"
        assert len(self.manager.active_threads) == 2

    def test_thread_depth_is_bounded(self):
        """ノード数は上限まで、古いものから追い出す"""
        thread = self.manager.create_thread("tech", now=T0)
        for topic in ("science", "gaming", "memes", "art", "emotional"):
            self.manager.update_thread(thread, topic, now=T0)

        assert thread.active_nodes == ["science", "gaming", "memes", "art", "emotional"]
        assert len(thread.active_nodes) == 5

    def test_no_input_is_uncategorized(self):
        """話題がなければ uncategorized"""
        update = self._process("hello there")
        assert update.current_topics == [UNCATEGORIZED_TOPIC]

    def test_timed_out_thread_is_archived(self):
        """タイムアウトしたスレッドはアーカイブに回る"""
        first = self._process(TECH)
        later = T0 + timedelta(minutes=31)

        update = self.manager.process_input("hello there", now=later)
        assert [t.id for t in update.archived] == [first.current_thread_id]
        assert self.archived == []

        self.manager.apply_update(update)
        assert [t.id for t in self.archived] == [first.current_thread_id]
        assert self.manager.active_threads == ()
        assert self.manager.current_thread is None

    def test_prune(self):
        """prune() でタイムアウトしたスレッドを片付ける"""
        self._process(TECH)
        stale = self.manager.prune(T0 + timedelta(hours=1))

        assert len(stale) == 1
        assert self.archived == stale
        assert self.manager.active_threads == ()

    def test_restore(self):
        """保存済みスレッドから復元"""
        self._process(TECH)
        threads = self.manager.active_threads
        current = self.manager.current_thread.id

        manager = TopicManager(TopicSettings(), graph=self.graph)
        manager.restore(threads, current)
        assert manager.current_thread.id == current

    def test_graph_shared_between_managers(self):
        """話題グラフはマネージャー間で共有される"""
        other = TopicManager(TopicSettings(), graph=self.graph)
        self._process(TECH)
        self._process(SCIENCE)

        thread, relevance = other.find_relevant_thread("science", T0, threads=[
            other.create_thread("tech", now=T0)
        ])
        assert thread is not None
        assert relevance == pytest.approx(0.8)
