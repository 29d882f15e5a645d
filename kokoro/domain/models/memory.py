"""
タイムライン・記憶モデル
記憶イベント・タイムラインマーカー・関係性記憶
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class EventType(Enum):
    """記憶イベントの種類"""

    PERSONAL = "personal"  # 個人的な話題
    RELATIONSHIP = "relationship"  # 関係性の節目
    CONVERSATION = "conversation"  # 会話（スレッドのアーカイブなど）
    EMOTIONAL = "emotional"  # 感情的な出来事
    ACHIEVEMENT = "achievement"  # 達成・成功
    CUSTOM = "custom"  # その他


class MarkerType(Enum):
    """タイムラインマーカーの種類"""

    ANNIVERSARY = "anniversary"  # 記念日
    MILESTONE = "milestone"  # 節目
    RECURRING = "recurring"  # 繰り返しの予定
    REMINDER = "reminder"  # リマインダー


@dataclass(frozen=True)
class RecurrencePattern:
    """繰り返しパターン"""

    frequency: str  # "daily" | "weekly" | "monthly" | "yearly"
    interval: int = 1

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {"frequency": self.frequency, "interval": self.interval}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "RecurrencePattern | None":
        """辞書から生成"""
        if not data:
            return None
        return cls(frequency=data["frequency"], interval=data.get("interval", 1))


@dataclass(frozen=True)
class EventContext:
    """記憶イベントの文脈"""

    participants: tuple[str, ...] = ()
    mood: str = ""
    topics: tuple[str, ...] = ()
    location: str = ""

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "participants": list(self.participants),
            "mood": self.mood,
            "topics": list(self.topics),
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "EventContext":
        """辞書から生成"""
        data = data or {}
        return cls(
            participants=tuple(data.get("participants", ())),
            mood=data.get("mood", ""),
            topics=tuple(data.get("topics", ())),
            location=data.get("location", ""),
        )


@dataclass(frozen=True)
class MemoryEvent:
    """
    記憶イベント

    保存後は不変。想起時は recall_count / last_recall だけを
    差し替えた新しいインスタンスがストアに置かれる。
    """

    type: EventType
    content: str
    timestamp: datetime
    id: str = ""
    importance: float | None = None  # None は未計算
    emotions: Mapping[str, float] = field(default_factory=dict)
    tags: tuple[str, ...] = ()
    relations: tuple[str, ...] = ()
    context: EventContext = field(default_factory=EventContext)
    last_recall: datetime | None = None
    recall_count: int = 0

    @property
    def max_emotion(self) -> float:
        return max(self.emotions.values(), default=0.0)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "importance": self.importance,
            "emotions": dict(self.emotions),
            "tags": list(self.tags),
            "relations": list(self.relations),
            "context": self.context.to_dict(),
            "last_recall": self.last_recall.isoformat() if self.last_recall else None,
            "recall_count": self.recall_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemoryEvent":
        """辞書から生成"""
        last_recall = data.get("last_recall")
        return cls(
            id=data.get("id", ""),
            type=EventType(data.get("type", "custom")),
            content=data.get("content", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            importance=data.get("importance"),
            emotions=dict(data.get("emotions", {})),
            tags=tuple(data.get("tags", ())),
            relations=tuple(data.get("relations", ())),
            context=EventContext.from_dict(data.get("context")),
            last_recall=datetime.fromisoformat(last_recall) if last_recall else None,
            recall_count=data.get("recall_count", 0),
        )


@dataclass
class TimelineMarker:
    """タイムラインマーカー（重要イベントから派生）"""

    id: str
    type: MarkerType
    description: str
    timestamp: datetime
    importance: float
    event_id: str
    recurrence: RecurrencePattern | None = None
    last_triggered: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "importance": self.importance,
            "event_id": self.event_id,
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "last_triggered": self.last_triggered.isoformat() if self.last_triggered else None,
        }


@dataclass
class RelationshipMemory:
    """
    関係性の記憶
    trust / intimacy は Timeline Memory だけが更新し、減ることはない
    """

    user_id: str
    trust: float = 0.5
    intimacy: float = 0.1
    shared_topics: list[str] = field(default_factory=list)
    preferences: dict[str, float] = field(default_factory=dict)
    last_interaction: datetime | None = None
    events: list[str] = field(default_factory=list)
    milestones: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "user_id": self.user_id,
            "trust": self.trust,
            "intimacy": self.intimacy,
            "shared_topics": list(self.shared_topics),
            "preferences": dict(self.preferences),
            "last_interaction": self.last_interaction.isoformat() if self.last_interaction else None,
            "events": list(self.events),
            "milestones": list(self.milestones),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelationshipMemory":
        """辞書から生成"""
        last = data.get("last_interaction")
        return cls(
            user_id=data["user_id"],
            trust=data.get("trust", 0.5),
            intimacy=data.get("intimacy", 0.1),
            shared_topics=list(data.get("shared_topics", [])),
            preferences=dict(data.get("preferences", {})),
            last_interaction=datetime.fromisoformat(last) if last else None,
            events=list(data.get("events", [])),
            milestones=list(data.get("milestones", [])),
        )


@dataclass(frozen=True)
class RecallContext:
    """想起の手がかり"""

    topics: tuple[str, ...] = ()
    mood: str = ""
    keywords: tuple[str, ...] = ()
    participants: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScoredMemory:
    """スコア付きの想起候補"""

    event: MemoryEvent
    score: float


@dataclass(frozen=True)
class TimelineUpdate:
    """
    タイムライン処理の結果（未コミット）

    event: 保存予定のイベント（有意な対話でなければ None）
    recalled: このターンで想起した記憶
    """

    user_id: str
    timestamp: datetime
    event: MemoryEvent | None = None
    trust_delta: float = 0.0
    intimacy_delta: float = 0.0
    topics: tuple[str, ...] = ()
    recalled: tuple[MemoryEvent, ...] = ()
