"""
Domain Models
行動状態コアのドメインモデル
"""

from .emotion import (
    ContextAnalysis,
    EmotionalContext,
    RelationalContext,
    UserContext,
)
from .memory import (
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
from .mood import (
    MoodEvaluation,
    MoodPattern,
    MoodSignals,
    MoodState,
    MoodTransition,
)
from .persona import (
    Persona,
    PersonaConstraint,
    PersonaContext,
    PersonaEvent,
    PersonaUpdate,
    StyleRule,
)
from .session import (
    Interaction,
    Session,
    SessionCheckpoint,
    SessionContext,
    SessionState,
)
from .topic import (
    ContextTransition,
    DomainRule,
    IntegratedContext,
    RelationUpdate,
    ThreadUpdate,
    TopicData,
    TopicDetection,
    TopicMoodPattern,
    TopicNode,
    TopicThread,
)

__all__ = [
    # 感情コンテキスト
    "EmotionalContext",
    "RelationalContext",
    "UserContext",
    "ContextAnalysis",
    # 気分
    "MoodState",
    "MoodPattern",
    "MoodSignals",
    "MoodTransition",
    "MoodEvaluation",
    # 話題
    "DomainRule",
    "TopicDetection",
    "TopicThread",
    "TopicNode",
    "TopicData",
    "RelationUpdate",
    "ThreadUpdate",
    "TopicMoodPattern",
    "ContextTransition",
    "IntegratedContext",
    # ペルソナ
    "Persona",
    "PersonaConstraint",
    "PersonaContext",
    "PersonaEvent",
    "PersonaUpdate",
    "StyleRule",
    # 記憶
    "EventType",
    "MarkerType",
    "RecurrencePattern",
    "EventContext",
    "MemoryEvent",
    "TimelineMarker",
    "RelationshipMemory",
    "RecallContext",
    "ScoredMemory",
    "TimelineUpdate",
    # セッション
    "Interaction",
    "Session",
    "SessionState",
    "SessionContext",
    "SessionCheckpoint",
]
