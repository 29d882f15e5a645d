"""
EmotionalContextAnalyzer / ContextDetector のテスト

- 感情価・強度が範囲内に収まるか
- 関係性ゲート（職場・深刻・プラトニック）が働くか
- コンテキスト判定とスタック
"""

from datetime import datetime

import pytest

from kokoro.domain.models.emotion import (
    EMOTIONAL_SUPPORT,
    FEMININE_PRESENCE,
    FLIRTING_ALLOWED,
    PLATONIC_ONLY,
    PLAYFUL_BANTER,
    ROMANTIC_CONTEXT,
    TECHNICAL_DISCUSSION,
    UserContext,
)
from kokoro.domain.services.context_analyzer import (
    ContextDetector,
    EmotionalContextAnalyzer,
    tokenize,
)


class TestTokenize:
    """トークン化のテスト"""

    def test_lowercases_and_keeps_order(self):
        """小文字化して出現順を保つ"""
        assert tokenize("Haha THAT'S fun") == ["haha", "that's", "fun"]

    def test_emoji_is_token(self):
        """絵文字も1トークン"""
        assert "😂" in tokenize("lol 😂")


class TestEmotionalContextAnalyzer:
    """EmotionalContextAnalyzer のテスト"""

    def setup_method(self):
        self.analyzer = EmotionalContextAnalyzer()
        self.now = datetime(2026, 1, 1, 12, 0)

    def test_empty_input_is_neutral(self):
        """空入力は中性のコンテキスト"""
        for text in ("", "   ", "?!?"):
            context = self.analyzer.analyze(text, now=self.now)
            assert context.is_empty
            assert context.primary_emotion == "neutral"
            assert context.intensity == 0.0
            assert context.impacts() == {}

    def test_playful_message(self):
        """笑いを含むメッセージは明るく遊び心のあるトーン"""
        context = self.analyzer.analyze("haha that's so fun lol", now=self.now)

        assert context.sentiment == pytest.approx(0.75)
        assert context.intensity == pytest.approx(0.7)
        assert context.primary_emotion == "joy"
        assert context.emotional_tone == "playful"
        assert PLAYFUL_BANTER in context.context_flags()
        assert not context.relational.allows_flirting

    def test_impacts(self):
        """影響値は感情価の絶対値と基準強度からの差"""
        context = self.analyzer.analyze("haha that's so fun lol", now=self.now)
        impacts = context.impacts()

        assert impacts["valence"] == pytest.approx(0.75)
        assert impacts["arousal"] == pytest.approx(0.2)

    def test_negation_flips_polarity(self):
        """否定語の直後は極性が反転する"""
        context = self.analyzer.analyze("not happy", now=self.now)
        assert context.sentiment == pytest.approx(-0.25)

    def test_emotional_message(self):
        """悲しみのメッセージは感情サポート"""
        context = self.analyzer.analyze("I feel so sad and lonely", now=self.now)

        assert context.is_emotional
        assert context.primary_emotion == "sadness"
        assert context.emotional_tone == "supportive"
        assert context.sentiment < 0
        assert EMOTIONAL_SUPPORT in context.context_flags()

    def test_romantic_feminine_allows_flirting(self):
        """恋愛・女性コンテキストでは flirting が許可される"""
        context = self.analyzer.analyze("my girlfriend is so cute", now=self.now)
        flags = context.context_flags()

        assert context.relational.is_romantic
        assert context.relational.is_flirty
        assert context.relational.allows_flirting
        assert {ROMANTIC_CONTEXT, FLIRTING_ALLOWED, FEMININE_PRESENCE} <= flags

    def test_platonic_mode_blocks_flirting(self):
        """プラトニック指定では flirting が許可されない"""
        context = self.analyzer.analyze(
            "my girlfriend is so cute",
            user_context=UserContext(relationship_mode="platonic"),
            now=self.now,
        )

        assert not context.relational.allows_flirting
        assert PLATONIC_ONLY in context.context_flags()
        assert FLIRTING_ALLOWED not in context.context_flags()

    def test_professional_context_blocks_flirting(self):
        """職場の話題が強いと flirting は許可されない"""
        context = self.analyzer.analyze(
            "work meeting with my client at the office, my boss and my girlfriend",
            now=self.now,
        )
        assert context.relational.is_romantic
        assert not context.relational.allows_flirting

    def test_user_mood_from_context(self):
        """ユーザーコンテキストの気分が優先される"""
        context = self.analyzer.analyze(
            "hello there", user_context=UserContext(user_mood="tired"), now=self.now
        )
        assert context.user_mood == "tired"

    @pytest.mark.parametrize("text", [
        "!!!! very very very really so super extremely totally absolutely",
        "terrible awful bad sad hate angry mad",
        "haha lol lmao fun joke 😂 😂 😂 amazing awesome great!",
        "a",
    ])
    def test_values_stay_in_range(self, text):
        """感情価は -1〜1、強度は 0〜1"""
        context = self.analyzer.analyze(text, now=self.now)
        assert -1.0 <= context.sentiment <= 1.0
        assert 0.0 <= context.intensity <= 1.0

    def test_round_trip_dict(self):
        """辞書形式から同じ内容に戻る"""
        context = self.analyzer.analyze("my girlfriend is so cute", now=self.now)
        restored = type(context).from_dict(context.to_dict())

        assert restored.keywords == context.keywords
        assert restored.relational == context.relational
        assert restored.timestamp == context.timestamp


class TestContextDetector:
    """ContextDetector のテスト"""

    def setup_method(self):
        self.analyzer = EmotionalContextAnalyzer()
        self.detector = ContextDetector()

    def test_casual_fallback(self):
        """該当なしは casual"""
        analysis = self.detector.analyze(self.analyzer.analyze("hello there"))

        assert analysis.primary_context == "casual"
        assert analysis.secondary_context is None
        assert analysis.intensity == pytest.approx(0.5)

    def test_technical_context(self):
        """技術的な話題は technical"""
        analysis = self.detector.analyze(self.analyzer.analyze("debug the python code"))

        assert analysis.primary_context == "technical"
        assert analysis.is_technical
        assert TECHNICAL_DISCUSSION in analysis.flags
        assert analysis.intensity == pytest.approx(0.6)

    def test_emotional_comes_first(self):
        """感情コンテキストが最優先"""
        analysis = self.detector.analyze(
            self.analyzer.analyze("I feel sad about my python code")
        )
        assert analysis.primary_context == "emotional"
        assert analysis.secondary_context == "technical"

    def test_context_stack_is_bounded(self):
        """コンテキストスタックは直近3件"""
        previous = None
        for text in ("hello", "debug the python code", "I feel sad", "hello again"):
            previous = self.detector.analyze(self.analyzer.analyze(text), previous=previous)

        assert previous.context_stack == ("technical", "emotional", "casual")

    def test_previous_scores_are_carried(self):
        """前ターンのスコアが引き継がれる"""
        analysis = self.detector.analyze(
            self.analyzer.analyze("hello"), previous_scores={"playful": 0.4}
        )
        assert analysis.previous_scores == {"playful": 0.4}
