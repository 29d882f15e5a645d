"""
気分エンジン
感情コンテキストから気分ラベルと強度を決定する

1. 前回強度を時間減衰させ、シグナルの影響を加算して強度を決める
2. 気分パターンごとにスコアを計算し、性格バイアスとゲートを適用
3. 最高スコアが切り替え閾値を超えたらその気分、超えなければ前回維持か中性
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from ...core.config import MoodSettings, get_settings
from ...core.logging import get_logger
from ..models.emotion import (
    EMOTIONAL_SUPPORT,
    FEMININE_CONTEXT,
    MASCULINE_CONTEXT,
    PLATONIC_ONLY,
    TECHNICAL_DISCUSSION,
    EmotionalContext,
)
from ..models.mood import (
    FLIRT_MOODS,
    MoodEvaluation,
    MoodPattern,
    MoodSignals,
    MoodState,
    MoodTransition,
)

logger = get_logger(__name__)


# 基本パターン + 拡張パターン（同じ気分ラベルは最大スコアを採用）
DEFAULT_MOOD_PATTERNS: tuple[MoodPattern, ...] = (
    MoodPattern(
        mood="playful",
        keywords=("haha", "lol", "😂", "fun", "play", "joke", "tease"),
        sentiment=0.7, intensity=0.6, decay=0.2,
    ),
    MoodPattern(
        mood="sassy",
        keywords=("actually", "well actually", "oh really", "sure jan", "whatever"),
        sentiment=0.3, intensity=0.8, decay=0.1,
    ),
    MoodPattern(
        mood="flirty",
        keywords=("cute", "pretty", "beautiful", "hot", "gorgeous", "flirt"),
        sentiment=0.8, intensity=0.7, decay=0.15,
    ),
    MoodPattern(
        mood="intellectual",
        keywords=("think", "theory", "quantum", "algorithm", "complex", "interesting"),
        sentiment=0.4, intensity=0.6, decay=0.05,
    ),
    MoodPattern(
        mood="protective",
        keywords=("help", "protect", "safe", "careful", "worry", "concern"),
        sentiment=0.2, intensity=0.5, decay=0.3,
    ),
    MoodPattern(
        name="sapphic_flirty",
        mood="flirty",
        keywords=("girlfriend", "wife", "lesbian", "sapphic", "wlw", "cute girl", "pretty girl"),
        sentiment=0.8, intensity=0.7, decay=0.15,
        requirements=(FEMININE_CONTEXT,),
        exclusions=(MASCULINE_CONTEXT, PLATONIC_ONLY),
    ),
    MoodPattern(
        name="tech_passionate",
        mood="enthusiastic",
        keywords=("code", "programming", "algorithm", "python", "rust", "compiler", "linux", "open source"),
        sentiment=0.7, intensity=0.7, decay=0.1,
        requirements=(TECHNICAL_DISCUSSION,),
    ),
    MoodPattern(
        name="intellectual_playful",
        mood="playful",
        keywords=("pun", "wordplay", "clever", "witty", "nerd joke"),
        sentiment=0.6, intensity=0.6, decay=0.15,
    ),
    MoodPattern(
        name="protective_caring",
        mood="protective",
        keywords=("sad", "hurt", "lonely", "anxious", "scared", "stressed"),
        sentiment=-0.3, intensity=0.7, decay=0.2,
        requirements=(EMOTIONAL_SUPPORT,),
    ),
    MoodPattern(
        name="sassy_confident",
        mood="sassy",
        keywords=("obviously", "duh", "clearly", "as if", "excuse me"),
        sentiment=0.4, intensity=0.8, decay=0.1,
    ),
    MoodPattern(
        name="gaming_excited",
        mood="excited",
        keywords=("game", "gaming", "raid", "boss", "level", "loot", "speedrun"),
        sentiment=0.8, intensity=0.8, decay=0.2,
    ),
    MoodPattern(
        name="artistic_inspired",
        mood="inspired",
        keywords=("art", "draw", "drawing", "paint", "music", "poem", "create"),
        sentiment=0.7, intensity=0.6, decay=0.1,
    ),
    MoodPattern(
        name="mischievous_teasing",
        mood="mischievous",
        keywords=("prank", "mischief", "trouble", "sneaky", "tease"),
        sentiment=0.6, intensity=0.7, decay=0.15,
    ),
)

# 固定の性格バイアス
DEFAULT_PERSONALITY_BIAS: dict[str, float] = {
    "sassy": 0.2,
    "intellectual": 0.15,
    "flirty": 0.1,
}

KEYWORD_MATCH_WEIGHT = 0.2

# スコアの配分
KEYWORD_SHARE = 0.4
SENTIMENT_SHARE = 0.3
INTENSITY_SHARE = 0.3


@dataclass(frozen=True)
class _CompiledPattern:
    pattern: MoodPattern
    words: frozenset[str]
    phrases: tuple[re.Pattern, ...]

    def count_matches(self, context: EmotionalContext, lowered: str) -> int:
        tokens = set(context.keywords)
        return (
            sum(1 for w in self.words if w in tokens)
            + sum(1 for p in self.phrases if p.search(lowered))
        )


def _compile(pattern: MoodPattern) -> _CompiledPattern:
    return _CompiledPattern(
        pattern=pattern,
        words=frozenset(k for k in pattern.keywords if " " not in k),
        phrases=tuple(
            re.compile(r"\b" + re.escape(k) + r"\b") for k in pattern.keywords if " " in k
        ),
    )


class MoodEngine:
    """
    気分エンジン（セッションごと）

    evaluate() は副作用なしで次の状態を計算し、commit() で反映する。
    update() はその2つをまとめて行う。
    """

    def __init__(self, settings: MoodSettings | None = None,
                 patterns: tuple[MoodPattern, ...] | None = None,
                 personality_bias: Mapping[str, float] | None = None,
                 initial_state: MoodState | None = None):
        self.settings = settings or get_settings().mood
        self._patterns = tuple(_compile(p) for p in (patterns or DEFAULT_MOOD_PATTERNS))
        self._personality_bias = dict(
            DEFAULT_PERSONALITY_BIAS if personality_bias is None else personality_bias
        )
        self._state = initial_state or MoodState(
            primary=self.settings.baseline_mood,
            intensity=self.settings.baseline_intensity,
            timestamp=datetime.now(),
        )
        self._history: list[MoodState] = []
        self._transitions: list[MoodTransition] = []
        self._update_count = 0

    # ===== 状態参照 =====

    def get_current_mood(self) -> MoodState:
        """現在の気分状態"""
        return self._state

    @property
    def history(self) -> tuple[MoodState, ...]:
        return tuple(self._history)

    @property
    def transitions(self) -> tuple[MoodTransition, ...]:
        return tuple(self._transitions)

    @property
    def update_count(self) -> int:
        return self._update_count

    @property
    def moods(self) -> tuple[str, ...]:
        """カタログに含まれる気分ラベル（重複なし・カタログ順）"""
        return tuple(dict.fromkeys(c.pattern.mood for c in self._patterns))

    # ===== 更新 =====

    def update(self, signals: MoodSignals, now: datetime | None = None) -> MoodState:
        """シグナルで気分を更新して新しい状態を返す"""
        return self.commit(self.evaluate(signals, now)).state

    def evaluate(self, signals: MoodSignals, now: datetime | None = None) -> MoodEvaluation:
        """
        次の気分状態を計算（状態は変更しない）

        Args:
            signals: 感情コンテキストと影響値
            now: 評価時刻

        Returns:
            MoodEvaluation: 次の状態と気分ごとのスコア
        """
        now = now or datetime.now()
        previous = self._state
        hours = max(0.0, (now - previous.timestamp).total_seconds() / 3600.0)

        decayed = previous.intensity * math.exp(-self.settings.decay_rate * hours)
        adjusted = decayed + sum(
            impact * self.settings.change_threshold for impact in signals.impacts.values()
        )
        intensity = max(0.0, min(self.settings.max_intensity, adjusted))

        context = signals.context
        if context.is_empty:
            # 解析できる入力がないときは基準の気分に戻す
            scores: dict[str, float] = {}
            primary, secondary = self.settings.baseline_mood, None
        else:
            scores = self.score_moods(context, hours)
            primary, secondary = self._select_mood(scores, previous, decayed)

        state = MoodState(
            primary=primary,
            secondary=secondary,
            intensity=intensity,
            timestamp=now,
            context=self._snapshot(context),
        )
        return MoodEvaluation(state=state, scores=scores, previous=previous)

    def commit(self, evaluation: MoodEvaluation) -> MoodEvaluation:
        """評価結果を反映（前回状態を履歴に積む）"""
        previous = self._state
        self._history.append(previous)
        if len(self._history) > self.settings.history_limit:
            del self._history[: len(self._history) - self.settings.history_limit]

        self._state = evaluation.state
        self._update_count += 1

        if evaluation.state.primary != previous.primary:
            self._transitions.append(MoodTransition(
                from_mood=previous.primary,
                to_mood=evaluation.state.primary,
                timestamp=evaluation.state.timestamp,
                intensity=evaluation.state.intensity,
                trigger=evaluation.state.context.get("primary_emotion", ""),
            ))
            logger.debug(
                f"Mood shift: {previous.primary} -> {evaluation.state.primary}",
                extra={"from_mood": previous.primary, "to_mood": evaluation.state.primary},
            )
        return evaluation

    def restore(self, state: MoodState) -> None:
        """永続化された状態から復元（履歴は引き継がない）"""
        self._state = state

    # ===== スコア計算 =====

    def score_moods(self, context: EmotionalContext, hours_since_update: float = 0.0) -> dict[str, float]:
        """
        気分ラベルごとのスコアを計算

        ゲート条件を満たさない気分は 0.0 になる。
        """
        lowered = context.raw_input.lower()
        flags = context.context_flags()
        scores: dict[str, float] = {}

        for compiled in self._patterns:
            pattern = compiled.pattern
            keyword_score = min(1.0, compiled.count_matches(context, lowered) * KEYWORD_MATCH_WEIGHT)
            sentiment_match = 1.0 - abs(pattern.sentiment - context.sentiment)
            intensity_match = min(context.intensity * pattern.intensity, 1.0)

            score = (
                keyword_score * KEYWORD_SHARE
                + sentiment_match * SENTIMENT_SHARE
                + intensity_match * INTENSITY_SHARE
            ) * math.exp(-pattern.decay * hours_since_update)

            score = min(1.0, score + self._personality_bias.get(pattern.mood, 0.0))

            if not self._passes_gate(pattern, flags, context):
                score = 0.0

            scores[pattern.mood] = max(scores.get(pattern.mood, 0.0), score)

        return scores

    def project_influence(self, context: EmotionalContext) -> float:
        """このコンテキストが気分に与えうる最大スコア"""
        if context.is_empty:
            return 0.0
        return max(self.score_moods(context).values(), default=0.0)

    def _passes_gate(self, pattern: MoodPattern, flags: frozenset[str],
                     context: EmotionalContext) -> bool:
        if pattern.mood in FLIRT_MOODS and not context.relational.allows_flirting:
            return False
        if any(req not in flags for req in pattern.requirements):
            return False
        return not any(ex in flags for ex in pattern.exclusions)

    def _select_mood(self, scores: dict[str, float], previous: MoodState,
                     decayed: float) -> tuple[str, str | None]:
        # sorted は安定ソートなので同点はカタログ順
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        best_mood, best_score = ranked[0] if ranked else (self.settings.baseline_mood, 0.0)

        if best_score >= self.settings.shift_threshold:
            primary = best_mood
        elif decayed > self.settings.shift_threshold:
            primary = previous.primary
        else:
            primary = self.settings.baseline_mood

        secondary = next(
            (mood for mood, score in ranked if mood != primary and score > 0.0), None
        )
        return primary, secondary

    def _snapshot(self, context: EmotionalContext) -> dict:
        return {
            "sentiment": context.sentiment,
            "intensity": context.intensity,
            "primary_emotion": context.primary_emotion,
            "keywords": list(context.keywords[:10]),
            "flags": sorted(context.context_flags()),
        }
