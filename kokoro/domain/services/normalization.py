"""
バイアス・正規化レイヤー
気分スコアに性格・文脈バイアスを掛け、重み付け・閾値・平滑化で正規化する
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ...core.config import NormalizationSettings, get_settings
from ..models.emotion import (
    EMOTIONAL_SUPPORT,
    FEMININE_PRESENCE,
    TECHNICAL_DISCUSSION,
    ContextAnalysis,
)
from ..models.mood import FLIRT_MOODS

# 浮動小数の誤差で再スケールが繰り返されないための許容幅
_SUM_EPSILON = 1e-9


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class BiasRule:
    """文脈バイアス規則"""

    name: str
    condition: str
    modifiers: Mapping[str, float]
    priority: int
    contexts: tuple[str, ...] = ()

    def applies_to(self, analysis: ContextAnalysis) -> bool:
        return (
            self.condition in analysis.flags
            or analysis.primary_context in self.contexts
        )


# 中核の性格特性（気分ラベル単位）
CORE_TRAITS: dict[str, float] = {
    "flirty": 0.9,
    "intellectual": 0.8,
    "sassy": 0.7,
    "protective": 0.6,
    "playful": 0.6,
}

# 気分ごとの基本バイアス（中核特性と平均を取る）
MOOD_BIAS: dict[str, float] = {
    "flirty": 0.7,
    "intellectual": 0.8,
    "playful": 0.6,
    "protective": 0.5,
    "sassy": 0.6,
}

DEFAULT_BIAS_RULES: tuple[BiasRule, ...] = (
    BiasRule(
        name="feminine_presence",
        condition=FEMININE_PRESENCE,
        modifiers={"flirty": 0.3, "protective": 0.2},
        priority=1,
        contexts=("social",),
    ),
    BiasRule(
        name="emotional_support",
        condition=EMOTIONAL_SUPPORT,
        modifiers={"protective": 0.5, "sassy": -0.3},
        priority=1,
        contexts=("emotional",),
    ),
    BiasRule(
        name="technical_discussion",
        condition=TECHNICAL_DISCUSSION,
        modifiers={"intellectual": 0.4, "playful": -0.1},
        priority=2,
        contexts=("technical",),
    ),
)

NEUTRAL_BIAS = 0.5

# 特性重み（未登録の気分は DEFAULT_TRAIT_WEIGHT）
TRAIT_WEIGHTS: dict[str, float] = {
    "flirty": 1.0,
    "romantic": 1.0,
    "intellectual": 0.8,
    "sassy": 0.7,
    "protective": 0.6,
    "caring": 0.6,
    "playful": 0.5,
    "neutral": 0.3,
}
DEFAULT_TRAIT_WEIGHT = 0.5

MIN_THRESHOLDS: dict[str, float] = {
    "flirty": 0.3,
    "sassy": 0.2,
    "intellectual": 0.15,
    "protective": 0.25,
    "playful": 0.1,
}

MAX_THRESHOLDS: dict[str, float] = {
    "flirty": 0.8,
    "sassy": 0.9,
    "intellectual": 0.95,
    "protective": 0.85,
    "playful": 0.7,
}

ROMANTIC_MULTIPLIER = 1.2
EMOTIONAL_CARE_MULTIPLIER = 1.3
EMOTIONAL_SASS_MULTIPLIER = 0.7
CARE_MOODS = frozenset({"protective", "caring"})


class BiasHandler:
    """
    バイアスハンドラー

    中核特性・気分バイアス・ペルソナのバイアスを合成し、
    文脈規則を優先度順に適用する。
    """

    def __init__(self, core_traits: Mapping[str, float] | None = None,
                 mood_bias: Mapping[str, float] | None = None,
                 rules: tuple[BiasRule, ...] | None = None):
        self._core_traits = dict(core_traits or CORE_TRAITS)
        self._mood_bias = dict(mood_bias or MOOD_BIAS)
        self._rules = tuple(sorted(rules or DEFAULT_BIAS_RULES, key=lambda r: r.priority))

    def apply_bias(self, analysis: ContextAnalysis,
                   persona_bias: Mapping[str, float] | None = None) -> dict[str, float]:
        """
        気分ごとのバイアスを計算

        Args:
            analysis: コンテキスト判定結果
            persona_bias: アクティブなペルソナの気分バイアス（加算）

        Returns:
            dict[str, float]: 気分 -> バイアス (0.0〜1.0)
        """
        biases = dict(self._core_traits)
        for mood, bias in self._mood_bias.items():
            biases[mood] = (biases.get(mood, bias) + bias) / 2

        for mood, bias in (persona_bias or {}).items():
            biases[mood] = _clamp(biases.get(mood, NEUTRAL_BIAS) + bias)

        for rule in self._rules:
            if not rule.applies_to(analysis):
                continue
            for mood, modifier in rule.modifiers.items():
                biases[mood] = _clamp(biases.get(mood, NEUTRAL_BIAS) + modifier)

        return {mood: _clamp(value) for mood, value in biases.items()}

    @staticmethod
    def merge(raw_scores: Mapping[str, float], biases: Mapping[str, float]) -> dict[str, float]:
        """生スコアにバイアスを掛ける（0.5 で等倍）"""
        return {
            mood: _clamp(score * (0.5 + biases.get(mood, NEUTRAL_BIAS)))
            for mood, score in raw_scores.items()
        }


class NormalizationSystem:
    """
    正規化システム

    重み付け -> 最小・最大閾値 -> 平滑化 -> ゲート再適用 -> 再スケール
    の順に処理する。
    """

    def __init__(self, settings: NormalizationSettings | None = None,
                 trait_weights: Mapping[str, float] | None = None,
                 min_thresholds: Mapping[str, float] | None = None,
                 max_thresholds: Mapping[str, float] | None = None):
        self.settings = settings or get_settings().normalization
        self._weights = dict(trait_weights or TRAIT_WEIGHTS)
        self._min = dict(min_thresholds or MIN_THRESHOLDS)
        self._max = dict(max_thresholds or MAX_THRESHOLDS)

    def normalize(self, raw_scores: Mapping[str, float],
                  analysis: ContextAnalysis) -> dict[str, float]:
        """
        気分スコアを正規化

        Args:
            raw_scores: 気分 -> スコア
            analysis: コンテキスト判定結果（前ターンのスコアを含む）

        Returns:
            dict[str, float]: 正規化済みスコア（合計 1.0 以下）
        """
        weighted: dict[str, float] = {}
        for mood, score in raw_scores.items():
            value = score * self._weights.get(mood, DEFAULT_TRAIT_WEIGHT)
            value *= self._context_weight(mood, analysis)
            if value < self._min.get(mood, 0.0):
                value = 0.0
            weighted[mood] = min(value, self._max.get(mood, 1.0))

        smoothed = self._smooth(weighted, analysis)

        # 平滑化で前ターンの値が残っても、ゲートされた気分は 0
        for mood in smoothed:
            if self._is_gated(mood, analysis):
                smoothed[mood] = 0.0

        return self.rescale(smoothed)

    @staticmethod
    def rescale(scores: Mapping[str, float]) -> dict[str, float]:
        """合計が 1.0 を超える場合だけ合計で割る"""
        total = sum(scores.values())
        if total > 1.0 + _SUM_EPSILON:
            return {mood: value / total for mood, value in scores.items()}
        return dict(scores)

    def _context_weight(self, mood: str, analysis: ContextAnalysis) -> float:
        weight = 1.0
        if mood in FLIRT_MOODS:
            if not analysis.allows_flirting:
                return 0.0
            if analysis.is_romantic:
                weight *= ROMANTIC_MULTIPLIER
        if analysis.is_emotional:
            if mood in CARE_MOODS:
                weight *= EMOTIONAL_CARE_MULTIPLIER
            elif mood == "sassy":
                weight *= EMOTIONAL_SASS_MULTIPLIER
        return weight

    def _is_gated(self, mood: str, analysis: ContextAnalysis) -> bool:
        return mood in FLIRT_MOODS and not analysis.allows_flirting

    def _smooth(self, scores: dict[str, float], analysis: ContextAnalysis) -> dict[str, float]:
        max_delta = (
            self.settings.emotional_max_delta if analysis.is_emotional
            else self.settings.max_delta
        )
        smoothed = {}
        for mood, value in scores.items():
            # 前ターンに出ていない気分は 0 からの変化として扱う
            previous = analysis.previous_scores.get(mood, 0.0)
            delta = max(-max_delta, min(max_delta, value - previous))
            smoothed[mood] = previous + delta
        return smoothed
