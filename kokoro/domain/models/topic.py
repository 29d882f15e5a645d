"""
話題モデル
話題検出・スレッド・話題グラフ・話題×気分の統合結果
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from .emotion import EmotionalContext


UNCATEGORIZED_TOPIC = "uncategorized"


@dataclass(frozen=True)
class DomainRule:
    """
    話題ドメイン規則
    キーワード・バリデーター・優先度・他ドメインへの遷移親和度
    """

    domain: str
    keywords: tuple[str, ...]
    validators: tuple[Callable[[str], bool], ...] = ()
    priority: int = 1
    transitions: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class TopicDetection:
    """話題検出結果"""

    topic: str
    confidence: float
    priority: int = 1
    matched_keywords: tuple[str, ...] = ()


@dataclass
class TopicThread:
    """
    話題スレッド
    同じ流れに属する話題ノードの束（セッションごと）
    """

    id: str
    main_topic: str
    start_time: datetime
    last_active: datetime
    active_nodes: list[str] = field(default_factory=list)
    depth: int = 0
    context: EmotionalContext | None = None

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "id": self.id,
            "main_topic": self.main_topic,
            "start_time": self.start_time.isoformat(),
            "last_active": self.last_active.isoformat(),
            "active_nodes": list(self.active_nodes),
            "depth": self.depth,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TopicThread":
        """辞書から生成"""
        return cls(
            id=data["id"],
            main_topic=data["main_topic"],
            start_time=datetime.fromisoformat(data["start_time"]),
            last_active=datetime.fromisoformat(data["last_active"]),
            active_nodes=list(data.get("active_nodes", [])),
            depth=data.get("depth", 0),
        )


@dataclass
class TopicNode:
    """話題グラフのノード（プロセス共有）"""

    name: str
    related: dict[str, float] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    frequency: int = 0
    last_active: datetime | None = None


@dataclass
class TopicData:
    """
    話題の永続化形式
    状態ストアとの受け渡しに使う
    """

    id: str
    domain: str
    keywords: list[str] = field(default_factory=list)
    relations: dict[str, float] = field(default_factory=dict)
    mood_patterns: list[str] = field(default_factory=list)
    last_seen: datetime | None = None
    frequency: int = 0

    @classmethod
    def from_node(cls, node: TopicNode, keywords: tuple[str, ...] = ()) -> "TopicData":
        """グラフノードから生成"""
        moods = node.attributes.get("moods", [])
        return cls(
            id=node.name,
            domain=node.name,
            keywords=list(keywords),
            relations=dict(node.related),
            mood_patterns=list(moods),
            last_seen=node.last_active,
            frequency=node.frequency,
        )

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "id": self.id,
            "domain": self.domain,
            "keywords": list(self.keywords),
            "relations": dict(self.relations),
            "mood_patterns": list(self.mood_patterns),
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "frequency": self.frequency,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TopicData":
        """辞書から生成"""
        last_seen = data.get("last_seen")
        return cls(
            id=data["id"],
            domain=data.get("domain", data["id"]),
            keywords=list(data.get("keywords", [])),
            relations=dict(data.get("relations", {})),
            mood_patterns=list(data.get("mood_patterns", [])),
            last_seen=datetime.fromisoformat(last_seen) if last_seen else None,
            frequency=data.get("frequency", 0),
        )


@dataclass(frozen=True)
class RelationUpdate:
    """話題間の関連度更新（両方向に同じ値を書く）"""

    source: str
    target: str
    strength: float


@dataclass
class ThreadUpdate:
    """
    話題処理の結果（未コミット）

    threads: 更新後のアクティブスレッド一式
    archived: タイムアウトでアーカイブに回すスレッド
    """

    threads: list[TopicThread]
    archived: list[TopicThread] = field(default_factory=list)
    relation_updates: list[RelationUpdate] = field(default_factory=list)
    detections: list[TopicDetection] = field(default_factory=list)
    current_thread_id: str | None = None
    opened_thread_ids: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def current_thread(self) -> TopicThread | None:
        for thread in self.threads:
            if thread.id == self.current_thread_id:
                return thread
        return None

    @property
    def current_topics(self) -> list[str]:
        """現在の話題（未検出時は uncategorized）"""
        thread = self.current_thread
        if thread is None or not self.detections:
            return [UNCATEGORIZED_TOPIC]
        return list(thread.active_nodes)


@dataclass(frozen=True)
class TopicMoodPattern:
    """話題×気分パターン"""

    domain: str
    base_intensity: float
    mood_modifiers: Mapping[str, float]
    required_context: tuple[str, ...] = ()
    transitions: tuple[str, ...] = ()
    cooldown_seconds: float = 0.0


@dataclass(frozen=True)
class ContextTransition:
    """話題の切り替わりと気分への影響"""

    from_topic: str
    to_topic: str
    timestamp: datetime
    mood_shift: float

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "from_topic": self.from_topic,
            "to_topic": self.to_topic,
            "timestamp": self.timestamp.isoformat(),
            "mood_shift": self.mood_shift,
        }


@dataclass(frozen=True)
class IntegratedContext:
    """話題と気分を統合したターンのコンテキスト"""

    thread_id: str | None
    main_topic: str
    mood: str
    intensity: float
    topic_weights: Mapping[str, float] = field(default_factory=dict)
    transitions: tuple[ContextTransition, ...] = ()
    boosted_domains: tuple[str, ...] = ()
    last_update: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "thread_id": self.thread_id,
            "main_topic": self.main_topic,
            "mood": self.mood,
            "intensity": self.intensity,
            "topic_weights": dict(self.topic_weights),
            "transitions": [t.to_dict() for t in self.transitions],
            "boosted_domains": list(self.boosted_domains),
            "last_update": self.last_update.isoformat(),
        }
