"""
Kokoro Domain Layer
行動状態コアのドメインモデル
"""

from __future__ import annotations

from .models import (
    EmotionalContext,
    Interaction,
    MemoryEvent,
    MoodState,
    Persona,
    Session,
    SessionState,
    TopicThread,
    UserContext,
)

__all__ = [
    # 感情
    "EmotionalContext",
    "UserContext",
    # 気分
    "MoodState",
    # 話題
    "TopicThread",
    # ペルソナ
    "Persona",
    # 記憶
    "MemoryEvent",
    # セッション
    "Interaction",
    "Session",
    "SessionState",
]
