"""
BiasHandler / NormalizationSystem のテスト

- 正規化後の合計が 1.0 以下になるか
- 再スケールが冪等か
- flirt 系の気分が平滑化後もゲートされるか
- 平滑化の変化量が上限に収まるか
"""

import pytest

from kokoro.core.config import NormalizationSettings
from kokoro.domain.services.context_analyzer import ContextDetector, EmotionalContextAnalyzer
from kokoro.domain.services.normalization import (
    BiasHandler,
    BiasRule,
    NormalizationSystem,
)


def _analysis(text: str, previous_scores=None):
    context = EmotionalContextAnalyzer().analyze(text)
    return ContextDetector().analyze(context, previous_scores=previous_scores)


class TestBiasHandler:
    """BiasHandler のテスト"""

    def setup_method(self):
        self.handler = BiasHandler()

    def test_core_traits_averaged_with_mood_bias(self):
        """中核特性と気分バイアスの平均"""
        biases = self.handler.apply_bias(_analysis("hello there"))

        assert biases["flirty"] == pytest.approx(0.8)
        assert biases["intellectual"] == pytest.approx(0.8)
        assert biases["sassy"] == pytest.approx(0.65)

    def test_technical_rule(self):
        """技術的な話題では intellectual が上がり playful が下がる"""
        base = self.handler.apply_bias(_analysis("hello there"))
        technical = self.handler.apply_bias(_analysis("debug the python code"))

        assert technical["intellectual"] == pytest.approx(min(1.0, base["intellectual"] + 0.4))
        assert technical["playful"] == pytest.approx(base["playful"] - 0.1)

    def test_emotional_rule(self):
        """感情サポートでは protective が上がり sassy が下がる"""
        biases = self.handler.apply_bias(_analysis("I feel so sad and lonely"))

        assert biases["protective"] == pytest.approx(1.0)
        assert biases["sassy"] == pytest.approx(0.35)

    def test_persona_bias_is_added(self):
        """ペルソナのバイアスが加算される"""
        biases = self.handler.apply_bias(_analysis("hello there"), persona_bias={"playful": 0.2, "gloomy": 0.1})

        assert biases["playful"] == pytest.approx(0.8)
        assert biases["gloomy"] == pytest.approx(0.6)

    def test_values_are_clamped(self):
        """バイアスは 0〜1"""
        biases = self.handler.apply_bias(
            _analysis("debug the python code"), persona_bias={"intellectual": 5.0, "sassy": -5.0}
        )
        assert all(0.0 <= v <= 1.0 for v in biases.values())

    def test_custom_rule_by_context_label(self):
        """コンテキストラベルでも規則が適用される"""
        handler = BiasHandler(rules=(
            BiasRule(name="casual_chill", condition="never_set", modifiers={"playful": 0.3}, priority=1, contexts=("casual",)),
        ))
        biases = handler.apply_bias(_analysis("hello there"))
        assert biases["playful"] == pytest.approx(0.9)

    def test_merge(self):
        """バイアス 0.5 で等倍、1.0 で 1.5 倍"""
        merged = BiasHandler.merge({"a": 0.4, "b": 0.4, "c": 0.4}, {"a": 0.5, "b": 1.0})

        assert merged["a"] == pytest.approx(0.4)
        assert merged["b"] == pytest.approx(0.6)
        assert merged["c"] == pytest.approx(0.4)


class TestNormalizationSystem:
    """NormalizationSystem のテスト"""

    def setup_method(self):
        self.system = NormalizationSystem(NormalizationSettings())

    def test_sum_at_most_one(self):
        """正規化後の合計は 1.0 以下"""
        raw = {"playful": 0.9, "sassy": 0.9, "intellectual": 0.9, "protective": 0.9, "excited": 0.9}
        normalized = self.system.normalize(raw, _analysis("hello there"))

        assert sum(normalized.values()) <= 1.0 + 1e-9
        assert all(v >= 0.0 for v in normalized.values())

    def test_rescale_is_idempotent(self):
        """再スケールは2回掛けても同じ"""
        once = NormalizationSystem.rescale({"a": 0.7, "b": 0.6, "c": 0.3})
        twice = NormalizationSystem.rescale(once)

        assert sum(once.values()) == pytest.approx(1.0)
        assert twice == once

    def test_rescale_leaves_small_sums(self):
        """合計が 1.0 以下ならそのまま"""
        assert NormalizationSystem.rescale({"a": 0.2, "b": 0.3}) == {"a": 0.2, "b": 0.3}

    def test_flirty_gated_without_permission(self):
        """flirting が許可されなければ flirty は 0"""
        normalized = self.system.normalize({"flirty": 0.9, "playful": 0.5}, _analysis("hello there"))
        assert normalized["flirty"] == 0.0

    def test_flirty_gated_even_with_previous_score(self):
        """前ターンの値が残っていても flirty は 0 に戻る"""
        analysis = _analysis("hello there", previous_scores={"flirty": 0.6})
        normalized = self.system.normalize({"flirty": 0.9, "playful": 0.5}, analysis)
        assert normalized["flirty"] == 0.0

    def test_flirty_kept_when_allowed(self):
        """恋愛コンテキストでは flirty が残る"""
        normalized = self.system.normalize(
            {"flirty": 0.5, "playful": 0.3}, _analysis("my girlfriend is so cute")
        )
        assert normalized["flirty"] > 0.0

    def test_min_threshold(self):
        """最小閾値未満は 0"""
        normalized = self.system.normalize({"flirty": 0.2}, _analysis("my girlfriend is so cute"))
        assert normalized["flirty"] == 0.0

    def test_max_threshold(self):
        """最大閾値で頭打ち"""
        system = NormalizationSystem(NormalizationSettings(), trait_weights={"playful": 1.0})
        normalized = system.normalize(
            {"playful": 1.0}, _analysis("hello there", previous_scores={"playful": 0.6})
        )
        assert normalized["playful"] == pytest.approx(0.7)

    def test_smoothing_limits_change(self):
        """前ターンからの変化量は max_delta まで"""
        analysis = _analysis("hello there", previous_scores={"sassy": 0.0})
        normalized = self.system.normalize({"sassy": 1.0}, analysis)
        assert normalized["sassy"] == pytest.approx(0.3)

    def test_smoothing_wider_in_emotional_context(self):
        """感情的なコンテキストでは変化の上限が広い"""
        analysis = _analysis("I feel so sad and lonely", previous_scores={"protective": 0.0})
        normalized = self.system.normalize({"protective": 1.0}, analysis)
        assert normalized["protective"] == pytest.approx(0.5)

    def test_first_turn_change_is_limited(self):
        """前ターンのスコアがなければ 0 からの変化として上限をかける"""
        normalized = self.system.normalize({"intellectual": 1.0}, _analysis("hello there"))
        assert normalized["intellectual"] == pytest.approx(0.3)

    def test_first_turn_wider_in_emotional_context(self):
        """初回でも感情的なコンテキストでは上限が広い"""
        normalized = self.system.normalize({"protective": 1.0}, _analysis("I feel so sad and lonely"))
        assert normalized["protective"] == pytest.approx(0.5)
