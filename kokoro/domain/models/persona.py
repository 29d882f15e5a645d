"""
ペルソナモデル
ペルソナ定義・スタイル規則・切り替えイベント
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping


@dataclass(frozen=True)
class StyleRule:
    """
    応答スタイル規則

    condition がコンテキストで成立し、constraints がセッションの
    制限に含まれないときだけ採用される。
    """

    condition: str
    response: str
    tone: str
    priority: int = 0
    constraints: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.condition and not self.response

    @classmethod
    def empty(cls) -> "StyleRule":
        """該当なしを表す空の規則"""
        return cls(condition="", response="", tone="neutral")

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "condition": self.condition,
            "response": self.response,
            "tone": self.tone,
            "priority": self.priority,
            "constraints": list(self.constraints),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StyleRule":
        """辞書から生成"""
        return cls(
            condition=data.get("condition", ""),
            response=data.get("response", ""),
            tone=data.get("tone", "neutral"),
            priority=data.get("priority", 0),
            constraints=tuple(data.get("constraints", ())),
        )


@dataclass(frozen=True)
class PersonaConstraint:
    """ペルソナ全体に掛かる制約"""

    type: str
    value: str
    priority: int = 0
    description: str = ""


@dataclass(frozen=True)
class Persona:
    """
    ペルソナ
    カタログ上の定義は不変。セッションごとの作業コピーが
    active / last_used を持つ。
    """

    id: str
    name: str
    traits: Mapping[str, float]
    mood_bias: Mapping[str, float]
    style_rules: tuple[StyleRule, ...] = ()
    constraints: tuple[PersonaConstraint, ...] = ()
    description: str = ""
    active: bool = False
    last_used: datetime | None = None

    def activated(self, now: datetime) -> "Persona":
        return replace(self, active=True, last_used=now)

    def deactivated(self) -> "Persona":
        return replace(self, active=False)

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "id": self.id,
            "name": self.name,
            "traits": dict(self.traits),
            "mood_bias": dict(self.mood_bias),
            "style_rules": [r.to_dict() for r in self.style_rules],
            "constraints": [
                {"type": c.type, "value": c.value, "priority": c.priority,
                 "description": c.description}
                for c in self.constraints
            ],
            "description": self.description,
            "active": self.active,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }


@dataclass(frozen=True)
class PersonaContext:
    """
    ペルソナ判定用のコンテキスト

    flags: 感情コンテキストから得たフラグ（romantic_context など）
    restrictions: セッションで禁止されている制約名
    """

    current_mood: str = "neutral"
    topics: tuple[str, ...] = ()
    flags: frozenset[str] = frozenset()
    restrictions: frozenset[str] = frozenset()
    time_context: str = ""

    def conditions(self) -> frozenset[str]:
        """スタイル規則の condition と照合する語の集合"""
        return self.flags | frozenset(self.topics) | {
            f"mood:{self.current_mood}", "always"
        }

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "current_mood": self.current_mood,
            "topics": list(self.topics),
            "flags": sorted(self.flags),
            "restrictions": sorted(self.restrictions),
            "time_context": self.time_context,
        }


@dataclass(frozen=True)
class PersonaEvent:
    """ペルソナ切り替えイベント"""

    timestamp: datetime
    type: str
    from_persona: str | None
    to_persona: str
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換"""
        return {
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "from_persona": self.from_persona,
            "to_persona": self.to_persona,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PersonaUpdate:
    """ペルソナ処理の結果（未コミット）"""

    active_persona: str | None
    style: StyleRule
    mood_bias: Mapping[str, float] = field(default_factory=dict)
    suggested_persona: str | None = None
    suggestion_score: float = 0.0
