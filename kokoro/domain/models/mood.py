"""
気分モデル
気分状態・気分パターン・シグナル
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from .emotion import EmotionalContext


NEUTRAL_MOOD = "neutral"

# 関係性コンテキストが許可しない限り抑制される気分
FLIRT_MOODS = frozenset({"flirty", "romantic"})


@dataclass(frozen=True)
class MoodState:
    """
    気分状態
    気分エンジンの現在値。更新のたびに新しいインスタンスが作られる。
    """

    primary: str
    intensity: float  # 0.0〜max_intensity
    timestamp: datetime
    secondary: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "primary": self.primary,
            "secondary": self.secondary,
            "intensity": self.intensity,
            "timestamp": self.timestamp.isoformat(),
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MoodState":
        """辞書から生成"""
        timestamp = data.get("timestamp")
        return cls(
            primary=data.get("primary", NEUTRAL_MOOD),
            secondary=data.get("secondary"),
            intensity=data.get("intensity", 0.5),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
            context=dict(data.get("context", {})),
        )

    @classmethod
    def neutral(cls, intensity: float = 0.5, now: datetime | None = None) -> "MoodState":
        """中性の気分状態"""
        return cls(primary=NEUTRAL_MOOD, intensity=intensity, timestamp=now or datetime.now())


@dataclass(frozen=True)
class MoodPattern:
    """
    気分パターン
    キーワード・感情価・強度の組み合わせで気分ラベルを判定する
    """

    mood: str
    keywords: tuple[str, ...]
    sentiment: float
    intensity: float
    decay: float
    requirements: tuple[str, ...] = ()
    exclusions: tuple[str, ...] = ()
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.mood


@dataclass(frozen=True)
class MoodSignals:
    """気分エンジンへの入力"""

    context: EmotionalContext
    impacts: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_context(cls, context: EmotionalContext) -> "MoodSignals":
        """感情コンテキストから既定の影響値でシグナルを作る"""
        return cls(context=context, impacts=context.impacts())


@dataclass(frozen=True)
class MoodTransition:
    """気分の切り替わり記録"""

    from_mood: str
    to_mood: str
    timestamp: datetime
    intensity: float
    trigger: str = ""

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "from_mood": self.from_mood,
            "to_mood": self.to_mood,
            "timestamp": self.timestamp.isoformat(),
            "intensity": self.intensity,
            "trigger": self.trigger,
        }


@dataclass(frozen=True)
class MoodEvaluation:
    """
    気分評価の結果（未コミット）

    state: 次の気分状態
    scores: パターン（気分ラベル）ごとの生スコア
    """

    state: MoodState
    scores: Mapping[str, float]
    previous: MoodState

    @property
    def changed(self) -> bool:
        return self.state.primary != self.previous.primary
