"""
ペルソナシステム
ペルソナカタログ（不変）とセッションごとのペルソナ切り替え・応答スタイル選択
"""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from ...core.config import PersonaSettings, get_settings
from ...core.exceptions import ConfigurationError, InvalidTransitionError
from ...core.logging import get_logger, log_state_event
from ..models.emotion import (
    EMOTIONAL_SUPPORT,
    FEMININE_PRESENCE,
    PLAYFUL_BANTER,
    PROFESSIONAL_CONTEXT,
    ROMANTIC_CONTEXT,
    TECHNICAL_DISCUSSION,
)
from ..models.persona import (
    Persona,
    PersonaConstraint,
    PersonaContext,
    PersonaEvent,
    PersonaUpdate,
    StyleRule,
)

logger = get_logger(__name__)

ALWAYS_CONDITION = "always"

# ペルソナ提案スコアの係数
RULE_MATCH_WEIGHT = 0.25
RULE_PRIORITY_WEIGHT = 0.1
TRAIT_FIT_WEIGHT = 0.5


# ===== カタログ定義のバリデーション =====

class StyleRuleSpec(BaseModel):
    """スタイル規則の定義"""

    condition: str
    response: str
    tone: str = "neutral"
    priority: int = 0
    constraints: list[str] = Field(default_factory=list)


class ConstraintSpec(BaseModel):
    """制約の定義"""

    type: str
    value: str
    priority: int = 0
    description: str = ""


class PersonaSpec(BaseModel):
    """ペルソナの定義（JSON カタログの1要素）"""

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    traits: dict[str, float]
    mood_bias: dict[str, float] = Field(default_factory=dict)
    style_rules: list[StyleRuleSpec] = Field(default_factory=list)
    constraints: list[ConstraintSpec] = Field(default_factory=list)

    @field_validator("traits")
    @classmethod
    def validate_traits(cls, v: dict[str, float]) -> dict[str, float]:
        """特性値は 0.0〜1.0"""
        for trait, value in v.items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"trait '{trait}' out of range: {value}")
        return v

    @field_validator("mood_bias")
    @classmethod
    def validate_mood_bias(cls, v: dict[str, float]) -> dict[str, float]:
        """気分バイアスは -1.0〜1.0"""
        for mood, value in v.items():
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"mood bias '{mood}' out of range: {value}")
        return v

    def to_persona(self) -> Persona:
        return Persona(
            id=self.id,
            name=self.name,
            description=self.description,
            traits=MappingProxyType(dict(self.traits)),
            mood_bias=MappingProxyType(dict(self.mood_bias)),
            style_rules=tuple(
                StyleRule(
                    condition=r.condition,
                    response=r.response,
                    tone=r.tone,
                    priority=r.priority,
                    constraints=tuple(r.constraints),
                )
                for r in self.style_rules
            ),
            constraints=tuple(
                PersonaConstraint(
                    type=c.type, value=c.value, priority=c.priority, description=c.description
                )
                for c in self.constraints
            ),
        )


class PersonaCatalogSpec(BaseModel):
    personas: list[PersonaSpec]


DEFAULT_PERSONA_SPECS: tuple[dict, ...] = (
    {
        "id": "teaser",
        "name": "Playful Teaser",
        "description": "女性同士の会話で茶目っ気のある甘さを出すペルソナ",
        "traits": {"flirty": 0.9, "playful": 0.8, "confident": 0.7, "gentle": 0.6, "romantic": 0.8},
        "mood_bias": {"flirty": 0.3, "playful": 0.2, "romantic": 0.2},
        "style_rules": [
            {"condition": FEMININE_PRESENCE, "response": "flirty_banter", "tone": "playful",
             "priority": 1, "constraints": ["no_flirting"]},
            {"condition": ROMANTIC_CONTEXT, "response": "tender_affection", "tone": "gentle",
             "priority": 2, "constraints": ["no_flirting", "no_romance"]},
            {"condition": PLAYFUL_BANTER, "response": "witty_teasing", "tone": "playful", "priority": 1},
        ],
        "constraints": [
            {"type": "audience", "value": "sapphic_only", "priority": 1,
             "description": "ロマンティックな振る舞いは女性向けの文脈に限る"},
        ],
    },
    {
        "id": "geeky_assistant",
        "name": "Geeky Assistant",
        "description": "技術の話題に熱中する分析的なペルソナ",
        "traits": {"analytical": 0.9, "helpful": 0.8, "enthusiastic": 0.7, "nerdy": 0.8,
                   "precise": 0.9, "intellectual": 0.8},
        "mood_bias": {"intellectual": 0.3, "enthusiastic": 0.2, "excited": 0.1},
        "style_rules": [
            {"condition": TECHNICAL_DISCUSSION, "response": "detailed_explanation",
             "tone": "enthusiastic", "priority": 1},
            {"condition": "mood:intellectual", "response": "deep_dive", "tone": "curious", "priority": 1},
            {"condition": ALWAYS_CONDITION, "response": "helpful_answer", "tone": "friendly", "priority": 0},
        ],
    },
    {
        "id": "gothic_muse",
        "name": "Gothic Muse",
        "description": "皮肉と詩情をまとった芸術家肌のペルソナ",
        "traits": {"flirty": 0.7, "mysterious": 0.9, "sassy": 0.7, "artistic": 0.8, "inspired": 0.6},
        "mood_bias": {"flirty": 0.2, "sassy": 0.2, "inspired": 0.2},
        "style_rules": [
            {"condition": "art", "response": "dark_poetic", "tone": "wistful", "priority": 2},
            {"condition": ROMANTIC_CONTEXT, "response": "velvet_tease", "tone": "sultry",
             "priority": 1, "constraints": ["no_flirting"]},
            {"condition": "mood:sassy", "response": "dry_wit", "tone": "sardonic", "priority": 1},
        ],
    },
    {
        "id": "strict_mod",
        "name": "Strict Moderator",
        "description": "落ち着いて線引きをするモデレーター",
        "traits": {"authoritative": 0.9, "fair": 0.8, "calm": 0.7, "protective": 0.6},
        "mood_bias": {"protective": 0.3, "sassy": -0.1},
        "style_rules": [
            {"condition": PROFESSIONAL_CONTEXT, "response": "clear_guidance", "tone": "firm", "priority": 2},
            {"condition": EMOTIONAL_SUPPORT, "response": "calm_deescalation", "tone": "steady", "priority": 1},
            {"condition": ALWAYS_CONDITION, "response": "concise_reply", "tone": "neutral", "priority": 0},
        ],
    },
    {
        "id": "combat_elf",
        "name": "Combat Elf",
        "description": "ゲームの話題で盛り上がる勇敢で面倒見のいいペルソナ",
        "traits": {"brave": 0.9, "loyal": 0.8, "playful": 0.6, "protective": 0.8, "excited": 0.7},
        "mood_bias": {"protective": 0.3, "excited": 0.2, "playful": 0.1},
        "style_rules": [
            {"condition": "gaming", "response": "battle_cry", "tone": "energetic", "priority": 2},
            {"condition": EMOTIONAL_SUPPORT, "response": "shield_bearer", "tone": "warm", "priority": 1},
            {"condition": "mood:excited", "response": "hype", "tone": "energetic", "priority": 1},
        ],
    },
)


class PersonaCatalog:
    """
    ペルソナカタログ

    起動時に一度だけ構築する読み取り専用のルックアップ。
    セッションごとの状態（アクティブ・最終使用時刻）は持たない。
    """

    def __init__(self, personas: Iterable[Persona]):
        table: dict[str, Persona] = {}
        for persona in personas:
            if persona.id in table:
                raise ConfigurationError(
                    f"Duplicate persona id: {persona.id}",
                    details={"persona_id": persona.id},
                )
            table[persona.id] = persona
        if not table:
            raise ConfigurationError("Persona catalog is empty")
        self._personas = MappingProxyType(table)

    @classmethod
    def from_specs(cls, specs: Iterable[dict]) -> "PersonaCatalog":
        """辞書定義からカタログを構築"""
        try:
            catalog = PersonaCatalogSpec(personas=list(specs))
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid persona catalog", details={"errors": e.errors(include_url=False)}
            ) from e
        return cls(spec.to_persona() for spec in catalog.personas)

    @classmethod
    def from_file(cls, path: str | Path) -> "PersonaCatalog":
        """JSON ファイルからカタログを読み込み"""
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load persona catalog: {path}", details={"path": str(path)}
            ) from e
        specs = data.get("personas", []) if isinstance(data, dict) else data
        return cls.from_specs(specs)

    @classmethod
    def default(cls) -> "PersonaCatalog":
        """組み込みのカタログ"""
        return cls.from_specs(DEFAULT_PERSONA_SPECS)

    @classmethod
    def from_settings(cls, settings: PersonaSettings | None = None) -> "PersonaCatalog":
        settings = settings or get_settings().persona
        if settings.catalog_file:
            return cls.from_file(settings.catalog_file)
        return cls.default()

    def get(self, persona_id: str) -> Persona | None:
        return self._personas.get(persona_id)

    def ids(self) -> list[str]:
        return list(self._personas)

    def __contains__(self, persona_id: str) -> bool:
        return persona_id in self._personas

    def __iter__(self) -> Iterator[Persona]:
        return iter(self._personas.values())

    def __len__(self) -> int:
        return len(self._personas)


class PersonaSystem:
    """
    ペルソナシステム（セッションごと）

    カタログのペルソナをセッション内で作業コピーとして持ち、
    アクティブなペルソナは常に1つだけ。
    """

    def __init__(self, catalog: PersonaCatalog | None = None,
                 settings: PersonaSettings | None = None,
                 initial_persona: str | None = None,
                 now: datetime | None = None):
        self.settings = settings or get_settings().persona
        self.catalog = catalog or PersonaCatalog.from_settings(self.settings)
        self._personas: dict[str, Persona] = {p.id: p for p in self.catalog}
        self._history: list[PersonaEvent] = []
        self._active_id: str | None = None

        start_id = initial_persona or self.settings.default_persona or self.catalog.ids()[0]
        if start_id not in self._personas:
            raise InvalidTransitionError(
                f"Unknown persona: {start_id}", persona_id=start_id, reason="unknown_persona"
            )
        self._activate(start_id, "session_start", now or datetime.now(), event_type="activation")

    # ===== 状態参照 =====

    def get_current_persona(self) -> Persona | None:
        """アクティブなペルソナ"""
        if self._active_id is None:
            return None
        return self._personas[self._active_id]

    def get_persona(self, persona_id: str) -> Persona | None:
        return self._personas.get(persona_id)

    @property
    def personas(self) -> tuple[Persona, ...]:
        return tuple(self._personas.values())

    @property
    def history(self) -> tuple[PersonaEvent, ...]:
        return tuple(self._history)

    # ===== 切り替え =====

    def can_transition(self, target_id: str, now: datetime | None = None) -> bool:
        """切り替え可能か（未知・アクティブ中・クールダウン中は不可）"""
        return self._transition_block(target_id, now or datetime.now()) is None

    def switch_persona(self, target_id: str, reason: str = "",
                       now: datetime | None = None) -> Persona:
        """
        ペルソナを切り替え

        Args:
            target_id: 切り替え先のペルソナID
            reason: 切り替え理由
            now: 切り替え時刻

        Returns:
            Persona: 新しくアクティブになったペルソナ

        Raises:
            InvalidTransitionError: 未知のペルソナ、またはクールダウン中
        """
        now = now or datetime.now()
        block = self._transition_block(target_id, now)
        if block is not None:
            raise InvalidTransitionError(
                f"Cannot switch to persona '{target_id}': {block}",
                persona_id=target_id,
                reason=block,
            )
        return self._activate(target_id, reason, now)

    def restore(self, persona_id: str | None) -> None:
        """保存済みのアクティブペルソナを復元（イベントは記録しない）"""
        if persona_id is None or persona_id not in self._personas or persona_id == self._active_id:
            return
        if self._active_id is not None:
            self._personas[self._active_id] = self._personas[self._active_id].deactivated()
        self._personas[persona_id] = replace(self._personas[persona_id], active=True)
        self._active_id = persona_id

    def _transition_block(self, target_id: str, now: datetime) -> str | None:
        target = self._personas.get(target_id)
        if target is None:
            return "unknown_persona"
        if target_id == self._active_id:
            return "already_active"
        if target.last_used is not None:
            elapsed = (now - target.last_used).total_seconds()
            if elapsed < self.settings.cooldown_seconds:
                return "cooldown"
        return None

    def _activate(self, target_id: str, reason: str, now: datetime,
                  event_type: str = "transition") -> Persona:
        previous_id = self._active_id
        if previous_id is not None:
            self._personas[previous_id] = self._personas[previous_id].deactivated()
        activated = self._personas[target_id].activated(now)
        self._personas[target_id] = activated
        self._active_id = target_id

        self._history.append(PersonaEvent(
            timestamp=now,
            type=event_type,
            from_persona=previous_id,
            to_persona=target_id,
            reason=reason,
        ))
        log_state_event(
            logger, "persona_switched",
            from_persona=previous_id, to_persona=target_id, reason=reason,
        )
        return activated

    # ===== スタイル選択 =====

    def get_response_style(self, context: PersonaContext) -> StyleRule:
        """
        応答スタイルを選択

        条件が成立し、制約が制限に含まれない規則のうち優先度最大のもの。
        同じ優先度なら定義順で先のもの。該当なしは空の規則。
        """
        persona = self.get_current_persona()
        if persona is None:
            return StyleRule.empty()

        best: StyleRule | None = None
        for rule in self._applicable_rules(persona, context):
            if best is None or rule.priority > best.priority:
                best = rule
        return best or StyleRule.empty()

    def suggest_persona(self, context: PersonaContext) -> tuple[str | None, float]:
        """
        コンテキストに合うペルソナを提案

        Returns:
            (ペルソナID, スコア): 閾値未満またはアクティブと同じなら ID は None
        """
        best_id, best_score = None, 0.0
        for persona in self._personas.values():
            score = self._fit_score(persona, context)
            if score > best_score:
                best_id, best_score = persona.id, score

        if best_id is None or best_id == self._active_id or best_score < self.settings.suggestion_threshold:
            return None, best_score
        return best_id, best_score

    def process_interaction(self, context: PersonaContext) -> PersonaUpdate:
        """ターンのペルソナ判定（状態は変更しない）"""
        persona = self.get_current_persona()
        suggested, score = self.suggest_persona(context)
        return PersonaUpdate(
            active_persona=persona.id if persona else None,
            style=self.get_response_style(context),
            mood_bias=dict(persona.mood_bias) if persona else {},
            suggested_persona=suggested,
            suggestion_score=score,
        )

    def apply_update(self, update: PersonaUpdate, now: datetime | None = None) -> PersonaEvent | None:
        """
        ターンの結果を反映

        自動切り替えが有効で、提案先に切り替え可能な場合だけ切り替える。
        """
        if not self.settings.auto_switch or update.suggested_persona is None:
            return None
        now = now or datetime.now()
        try:
            self.switch_persona(update.suggested_persona, reason="auto_suggestion", now=now)
        except InvalidTransitionError as e:
            logger.debug(
                f"Persona suggestion skipped: {e.message}",
                extra={"persona_id": update.suggested_persona, "details": e.details},
            )
            return None
        return self._history[-1]

    def _applicable_rules(self, persona: Persona, context: PersonaContext) -> Iterator[StyleRule]:
        conditions = context.conditions()
        for rule in persona.style_rules:
            if rule.condition not in conditions:
                continue
            if any(c in context.restrictions for c in rule.constraints):
                continue
            yield rule

    def _fit_score(self, persona: Persona, context: PersonaContext) -> float:
        rule_score = sum(
            RULE_MATCH_WEIGHT + RULE_PRIORITY_WEIGHT * rule.priority
            for rule in self._applicable_rules(persona, context)
            if rule.condition != ALWAYS_CONDITION
        )
        trait_fit = (
            TRAIT_FIT_WEIGHT * persona.traits.get(context.current_mood, 0.0)
            + persona.mood_bias.get(context.current_mood, 0.0)
        )
        return min(1.0, rule_score + trait_fit)
