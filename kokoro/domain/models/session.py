"""
セッションモデル
セッション・セッション状態・チェックポイント・対話
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from .emotion import ContextAnalysis, EmotionalContext, UserContext
from .memory import MemoryEvent
from .mood import MoodState
from .persona import PersonaContext, StyleRule
from .topic import IntegratedContext, TopicThread, UNCATEGORIZED_TOPIC


# セッションが束ねるサブシステム
SUBSYSTEMS = ("mood", "persona", "topic", "timeline")


@dataclass(frozen=True)
class Interaction:
    """1回分のユーザー入力"""

    content: str
    session_id: str | None = None
    type: str = "conversation"
    timestamp: datetime = field(default_factory=datetime.now)
    intensity: float | None = None
    emotions: Mapping[str, float] = field(default_factory=dict)
    user_context: UserContext | None = None


@dataclass
class SessionState:
    """
    セッション状態
    各サブシステムの出力をマージした、ターンごとの確定値
    """

    mood: MoodState
    mood_scores: dict[str, float] = field(default_factory=dict)
    effective_intensity: float = 0.0
    active_persona: str | None = None
    response_style: StyleRule = field(default_factory=StyleRule.empty)
    suggested_persona: str | None = None
    current_topics: list[str] = field(default_factory=lambda: [UNCATEGORIZED_TOPIC])
    topic_weights: dict[str, float] = field(default_factory=dict)
    current_thread_id: str | None = None
    topic_threads: list[TopicThread] = field(default_factory=list)
    memory_focus: list[str] = field(default_factory=list)
    trust: float = 0.5
    intimacy: float = 0.1
    user_context: UserContext = field(default_factory=UserContext)
    flags: dict[str, bool] = field(default_factory=dict)
    turn_count: int = 0
    updated_at: datetime = field(default_factory=datetime.now)

    def copy(self) -> "SessionState":
        """独立したコピーを返す"""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "mood": self.mood.to_dict(),
            "mood_scores": dict(self.mood_scores),
            "effective_intensity": self.effective_intensity,
            "active_persona": self.active_persona,
            "response_style": self.response_style.to_dict(),
            "suggested_persona": self.suggested_persona,
            "current_topics": list(self.current_topics),
            "topic_weights": dict(self.topic_weights),
            "current_thread_id": self.current_thread_id,
            "topic_threads": [t.to_dict() for t in self.topic_threads],
            "memory_focus": list(self.memory_focus),
            "trust": self.trust,
            "intimacy": self.intimacy,
            "user_context": self.user_context.to_dict(),
            "flags": dict(self.flags),
            "turn_count": self.turn_count,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionState":
        """辞書から生成"""
        updated_at = data.get("updated_at")
        return cls(
            mood=MoodState.from_dict(data.get("mood", {})),
            mood_scores=dict(data.get("mood_scores", {})),
            effective_intensity=data.get("effective_intensity", 0.0),
            active_persona=data.get("active_persona"),
            response_style=StyleRule.from_dict(data.get("response_style", {})),
            suggested_persona=data.get("suggested_persona"),
            current_topics=list(data.get("current_topics", [UNCATEGORIZED_TOPIC])),
            topic_weights=dict(data.get("topic_weights", {})),
            current_thread_id=data.get("current_thread_id"),
            topic_threads=[TopicThread.from_dict(t) for t in data.get("topic_threads", [])],
            memory_focus=list(data.get("memory_focus", [])),
            trust=data.get("trust", 0.5),
            intimacy=data.get("intimacy", 0.1),
            user_context=UserContext.from_dict(data.get("user_context")),
            flags=dict(data.get("flags", {})),
            turn_count=data.get("turn_count", 0),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else datetime.now(),
        )


@dataclass
class SessionContext:
    """セッションのコンテキスト（直近ターンの解析結果）"""

    user_context: UserContext = field(default_factory=UserContext)
    emotional: EmotionalContext | None = None
    analysis: ContextAnalysis | None = None
    persona: PersonaContext = field(default_factory=PersonaContext)
    integrated: IntegratedContext | None = None
    recalled: tuple[MemoryEvent, ...] = ()
    related_topics: list[str] = field(default_factory=list)

    def copy(self) -> "SessionContext":
        """独立したコピーを返す"""
        return copy.deepcopy(self)

    def to_prompt_context(self) -> dict[str, Any]:
        """
        応答生成レイヤーに渡すプレーンなコンテキスト

        言語モデルの呼び出しはこのパッケージの外側で行う。
        """
        return {
            "user_context": self.user_context.to_dict(),
            "emotion": self.emotional.to_dict() if self.emotional else None,
            "context": self.analysis.to_dict() if self.analysis else None,
            "persona_context": self.persona.to_dict(),
            "topic_mood": self.integrated.to_dict() if self.integrated else None,
            "memories": [m.content for m in self.recalled],
            "related_topics": list(self.related_topics),
        }


@dataclass(frozen=True)
class SessionCheckpoint:
    """チェックポイント（状態とコンテキストのスナップショット）"""

    timestamp: datetime
    reason: str
    state: SessionState
    context: SessionContext


@dataclass
class Session:
    """会話セッション"""

    id: str
    user_id: str
    start_time: datetime
    last_active: datetime
    state: SessionState
    context: SessionContext = field(default_factory=SessionContext)
    active_systems: dict[str, bool] = field(
        default_factory=lambda: {name: True for name in SUBSYSTEMS}
    )
    checkpoints: list[SessionCheckpoint] = field(default_factory=list)
    resumed_count: int = 0

    def is_active(self, system: str) -> bool:
        return self.active_systems.get(system, False)
