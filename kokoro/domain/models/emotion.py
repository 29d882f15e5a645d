"""
感情コンテキストモデル
1メッセージ分の感情・関係性シグナル（生成後は不変）
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


# コンテキストフラグ（気分のゲーティング・スタイル規則の条件に使う）
ROMANTIC_CONTEXT = "romantic_context"
INTIMATE_CONTEXT = "intimate_context"
FEMININE_PRESENCE = "feminine_presence"
FEMININE_CONTEXT = "feminine_context"
MASCULINE_CONTEXT = "masculine_context"
PLATONIC_ONLY = "platonic_only"
PROFESSIONAL_CONTEXT = "professional_context"
TECHNICAL_DISCUSSION = "technical_discussion"
EMOTIONAL_SUPPORT = "emotional_support"
FLIRTING_ALLOWED = "flirting_allowed"
PLAYFUL_BANTER = "playful_banter"

# テーマスコアからフラグを立てる閾値
THEME_FLAG_THRESHOLD = 0.3


@dataclass(frozen=True)
class RelationalContext:
    """関係性コンテキスト（ロマンティック／プラトニックのゲート）"""

    is_romantic: bool = False
    is_flirty: bool = False
    is_platonic: bool = False
    intensity: float = 0.0
    allows_flirting: bool = False

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "is_romantic": self.is_romantic,
            "is_flirty": self.is_flirty,
            "is_platonic": self.is_platonic,
            "intensity": self.intensity,
            "allows_flirting": self.allows_flirting,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelationalContext":
        """辞書から生成"""
        return cls(
            is_romantic=data.get("is_romantic", False),
            is_flirty=data.get("is_flirty", False),
            is_platonic=data.get("is_platonic", False),
            intensity=data.get("intensity", 0.0),
            allows_flirting=data.get("allows_flirting", False),
        )


@dataclass(frozen=True)
class UserContext:
    """
    ユーザー側から与えられる構造化コンテキスト

    relationship_mode に "platonic" が指定された場合、
    メッセージ内容に関わらず flirt 系の気分は許可されない。
    """

    user_mood: str | None = None
    relationship_mode: str | None = None  # "romantic" | "platonic" | None
    restrictions: frozenset[str] = frozenset()
    display_name: str | None = None

    def merge(self, other: "UserContext | None") -> "UserContext":
        """新しいコンテキストで上書きした結果を返す（制限は和集合）"""
        if other is None:
            return self
        return UserContext(
            user_mood=other.user_mood if other.user_mood is not None else self.user_mood,
            relationship_mode=(
                other.relationship_mode if other.relationship_mode is not None
                else self.relationship_mode
            ),
            restrictions=self.restrictions | other.restrictions,
            display_name=other.display_name if other.display_name is not None else self.display_name,
        )

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "user_mood": self.user_mood,
            "relationship_mode": self.relationship_mode,
            "restrictions": sorted(self.restrictions),
            "display_name": self.display_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "UserContext":
        """辞書から生成"""
        if not data:
            return cls()
        return cls(
            user_mood=data.get("user_mood"),
            relationship_mode=data.get("relationship_mode"),
            restrictions=frozenset(data.get("restrictions", ())),
            display_name=data.get("display_name"),
        )


@dataclass(frozen=True)
class EmotionalContext:
    """
    感情コンテキスト
    Emotional Context Analyzer が1メッセージにつき1つ生成する
    """

    sentiment: float  # -1.0〜1.0
    intensity: float  # 0.0〜1.0
    keywords: tuple[str, ...]
    primary_emotion: str
    relational: RelationalContext
    themes: Mapping[str, float] = field(default_factory=dict)
    is_emotional: bool = False
    is_technical: bool = False
    user_mood: str = "neutral"
    emotional_tone: str = "neutral"
    raw_input: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_empty(self) -> bool:
        """解析対象のテキストがなかったか"""
        return not self.keywords

    def theme(self, name: str) -> float:
        """テーマスコアを取得"""
        return self.themes.get(name, 0.0)

    def impacts(self) -> dict[str, float]:
        """
        気分エンジン用のシグナル影響値

        valence は感情の強さ（向きは問わない）、arousal は基準強度 0.5 からの差。
        """
        if self.is_empty:
            return {}
        return {
            "valence": abs(self.sentiment),
            "arousal": self.intensity - 0.5,
        }

    def context_flags(self) -> frozenset[str]:
        """このメッセージで成立しているコンテキストフラグ"""
        flags = set()
        rel = self.relational
        if rel.is_romantic:
            flags.add(ROMANTIC_CONTEXT)
            if rel.intensity > 0.6:
                flags.add(INTIMATE_CONTEXT)
        if rel.is_platonic:
            flags.add(PLATONIC_ONLY)
        if rel.allows_flirting:
            flags.add(FLIRTING_ALLOWED)
        if self.theme("feminine") >= THEME_FLAG_THRESHOLD:
            flags.update((FEMININE_PRESENCE, FEMININE_CONTEXT))
        if self.theme("masculine") >= THEME_FLAG_THRESHOLD:
            flags.add(MASCULINE_CONTEXT)
        if self.theme("professional") >= THEME_FLAG_THRESHOLD:
            flags.add(PROFESSIONAL_CONTEXT)
        if self.theme("playful") >= THEME_FLAG_THRESHOLD:
            flags.add(PLAYFUL_BANTER)
        if self.is_technical:
            flags.add(TECHNICAL_DISCUSSION)
        if self.is_emotional:
            flags.add(EMOTIONAL_SUPPORT)
        return frozenset(flags)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "sentiment": self.sentiment,
            "intensity": self.intensity,
            "keywords": list(self.keywords),
            "primary_emotion": self.primary_emotion,
            "relational": self.relational.to_dict(),
            "themes": dict(self.themes),
            "is_emotional": self.is_emotional,
            "is_technical": self.is_technical,
            "user_mood": self.user_mood,
            "emotional_tone": self.emotional_tone,
            "raw_input": self.raw_input,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EmotionalContext":
        """辞書から生成"""
        timestamp = data.get("timestamp")
        return cls(
            sentiment=data.get("sentiment", 0.0),
            intensity=data.get("intensity", 0.0),
            keywords=tuple(data.get("keywords", ())),
            primary_emotion=data.get("primary_emotion", "neutral"),
            relational=RelationalContext.from_dict(data.get("relational", {})),
            themes=dict(data.get("themes", {})),
            is_emotional=data.get("is_emotional", False),
            is_technical=data.get("is_technical", False),
            user_mood=data.get("user_mood", "neutral"),
            emotional_tone=data.get("emotional_tone", "neutral"),
            raw_input=data.get("raw_input", ""),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
        )

    @classmethod
    def neutral(cls, now: datetime | None = None, raw_input: str = "") -> "EmotionalContext":
        """中性のコンテキストを生成（空入力・解析不能時のフォールバック）"""
        return cls(
            sentiment=0.0,
            intensity=0.0,
            keywords=(),
            primary_emotion="neutral",
            relational=RelationalContext(),
            raw_input=raw_input,
            timestamp=now or datetime.now(),
        )


@dataclass(frozen=True)
class ContextAnalysis:
    """
    コンテキスト判定結果
    正規化レイヤー・バイアスハンドラーの入力
    """

    primary_context: str
    secondary_context: str | None
    contexts: tuple[str, ...]
    is_emotional: bool
    is_technical: bool
    relational: RelationalContext
    intensity: float
    flags: frozenset[str] = frozenset()
    previous_scores: Mapping[str, float] = field(default_factory=dict)
    context_stack: tuple[str, ...] = ()

    @property
    def allows_flirting(self) -> bool:
        return self.relational.allows_flirting

    @property
    def is_romantic(self) -> bool:
        return self.relational.is_romantic

    def with_previous_scores(self, scores: Mapping[str, float]) -> "ContextAnalysis":
        """前ターンの正規化スコアを差し替えたコピー"""
        return ContextAnalysis(
            primary_context=self.primary_context,
            secondary_context=self.secondary_context,
            contexts=self.contexts,
            is_emotional=self.is_emotional,
            is_technical=self.is_technical,
            relational=self.relational,
            intensity=self.intensity,
            flags=self.flags,
            previous_scores=dict(scores),
            context_stack=self.context_stack,
        )

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "primary_context": self.primary_context,
            "secondary_context": self.secondary_context,
            "contexts": list(self.contexts),
            "is_emotional": self.is_emotional,
            "is_technical": self.is_technical,
            "relational": self.relational.to_dict(),
            "intensity": self.intensity,
            "flags": sorted(self.flags),
            "context_stack": list(self.context_stack),
        }
