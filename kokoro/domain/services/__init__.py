"""
Domain Services
行動状態コアのサービス
"""

from .context_analyzer import ContextDetector, EmotionalContextAnalyzer
from .mood_engine import MoodEngine
from .normalization import BiasHandler, BiasRule, NormalizationSystem
from .persona_system import PersonaCatalog, PersonaSpec, PersonaSystem
from .session_flow import SessionFlowCoordinator, SignificantChangePolicy, TurnUpdates
from .timeline_memory import ImportanceCalculator, TimelineMemory
from .topic_mood import TopicMoodIntegrator
from .topic_threader import TopicGraph, TopicManager

__all__ = [
    # 解析
    "EmotionalContextAnalyzer",
    "ContextDetector",
    # 気分
    "MoodEngine",
    "BiasHandler",
    "BiasRule",
    "NormalizationSystem",
    # 話題
    "TopicGraph",
    "TopicManager",
    "TopicMoodIntegrator",
    # ペルソナ
    "PersonaCatalog",
    "PersonaSpec",
    "PersonaSystem",
    # 記憶
    "ImportanceCalculator",
    "TimelineMemory",
    # セッション
    "SessionFlowCoordinator",
    "SignificantChangePolicy",
    "TurnUpdates",
]
