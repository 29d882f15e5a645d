"""
感情コンテキスト解析サービス
メッセージからキーワード・感情価・強度・関係性シグナルを抽出する

キーワード辞書ベースの軽量な解析。自然言語理解の精度は目的としない。
"""

from __future__ import annotations

import re
from datetime import datetime

from ..models.emotion import (
    ContextAnalysis,
    EmotionalContext,
    RelationalContext,
    UserContext,
)

# 単語・絵文字のトークン化
_TOKEN_PATTERN = re.compile(
    r"[a-z0-9_#+']+|[\U0001F300-\U0001FAFF☀-➿]"
)

# テーマ辞書（単語または空白を含むフレーズ）
THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "romantic": (
        "girlfriend", "wife", "partner", "date", "dating", "crush", "lesbian",
        "sapphic", "wlw", "queer woman", "gay", "romance", "romantic", "kiss",
        "sweetheart", "darling", "babe",
    ),
    "feminine": (
        "girl", "girls", "woman", "women", "lady", "ladies", "she", "her",
        "feminine", "sapphic", "girlfriend", "wife", "sis",
    ),
    "masculine": ("guy", "man", "men", "dude", "bro", "he", "him", "boyfriend", "husband"),
    "platonic": ("friend", "friends", "bestie", "buddy", "pal", "platonic", "just friends"),
    "professional": (
        "work", "business", "professional", "meeting", "office", "boss",
        "client", "deadline", "colleague",
    ),
    "serious": (
        "death", "died", "funeral", "emergency", "suicide", "grief",
        "hospital", "diagnosis", "crisis",
    ),
    "playful": ("haha", "lol", "lmao", "fun", "joke", "joking", "tease", "silly", "play", "😂"),
    "technical": (
        "code", "coding", "program", "programming", "algorithm", "function",
        "bug", "debug", "api", "server", "database", "python", "compile",
        "deploy", "software", "quantum", "theory",
    ),
    "emotional": (
        "feel", "feeling", "felt", "sad", "lonely", "anxious", "hurt", "cry",
        "heart", "worried", "scared", "upset", "stressed", "depressed", "i feel",
    ),
}

# 感情ラベル辞書（優先順）
EMOTION_KEYWORDS: dict[str, frozenset[str]] = {
    "sadness": frozenset({"sad", "lonely", "cry", "crying", "depressed", "hurt", "miss", "😢", "😭"}),
    "fear": frozenset({"scared", "afraid", "anxious", "worried", "nervous", "terrified"}),
    "anger": frozenset({"hate", "angry", "mad", "annoyed", "frustrated", "furious"}),
    "affection": frozenset({"love", "cute", "beautiful", "pretty", "adore", "❤", "💕", "😍"}),
    "joy": frozenset({
        "happy", "glad", "fun", "haha", "lol", "lmao", "yay", "excited",
        "awesome", "amazing", "great", "😂", "😊",
    }),
}

POSITIVE_WORDS = (
    EMOTION_KEYWORDS["joy"] | EMOTION_KEYWORDS["affection"]
    | frozenset({"good", "nice", "cool", "thanks", "thank", "enjoy", "wonderful", "laugh"})
)
NEGATIVE_WORDS = (
    EMOTION_KEYWORDS["sadness"] | EMOTION_KEYWORDS["fear"] | EMOTION_KEYWORDS["anger"]
    | frozenset({"bad", "awful", "terrible", "upset", "tired", "stressed"})
)
NEGATIONS = frozenset({"not", "no", "never", "don't", "dont", "isn't", "wasn't", "can't", "cannot"})
EMPHASIS_WORDS = frozenset({"very", "really", "so", "super", "totally", "extremely", "absolutely"})

FLIRTY_INDICATORS = frozenset({
    "cute", "pretty", "beautiful", "gorgeous", "stunning", "flirt", "flirty",
    "tease", "wink", "😉", "😘", "😍", "💕",
})

# スコア係数
THEME_MATCH_WEIGHT = 0.35
SENTIMENT_STEP = 0.25
BASE_INTENSITY = 0.5
EMPHASIS_STEP = 0.1
EXCLAMATION_BONUS = 0.1
THEME_INTENSITY_WEIGHT = 0.1

# 関係性ゲートの閾値
PROFESSIONAL_BLOCK = 0.7
SERIOUS_BLOCK = 0.8
PLATONIC_THRESHOLD = 0.5
FEMININE_THRESHOLD = 0.3

CONTEXT_STACK_SIZE = 3


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def tokenize(text: str) -> list[str]:
    """小文字化したトークン列（出現順）"""
    return [t.strip("'") for t in _TOKEN_PATTERN.findall(text.lower()) if t.strip("'")]


class EmotionalContextAnalyzer:
    """
    感情コンテキスト解析サービス

    パフォーマンス最適化:
    - フレーズ用の正規表現を事前コンパイル
    - 単語はセットで照合
    """

    def __init__(self, theme_keywords: dict[str, tuple[str, ...]] | None = None):
        self._themes = theme_keywords or THEME_KEYWORDS
        self._theme_words: dict[str, frozenset[str]] = {}
        self._theme_phrases: dict[str, list[re.Pattern]] = {}
        for theme, words in self._themes.items():
            self._theme_words[theme] = frozenset(w for w in words if " " not in w)
            self._theme_phrases[theme] = [
                re.compile(r"\b" + re.escape(w) + r"\b") for w in words if " " in w
            ]

    def analyze(self, text: str, user_context: UserContext | None = None,
                now: datetime | None = None) -> EmotionalContext:
        """
        メッセージを解析

        Args:
            text: 入力メッセージ
            user_context: ユーザー側の明示的なコンテキスト
            now: 解析時刻

        Returns:
            EmotionalContext: 解析結果（空入力は中性）
        """
        now = now or datetime.now()
        user_context = user_context or UserContext()
        if not text or not text.strip():
            return EmotionalContext.neutral(now=now, raw_input=text or "")

        lowered = text.lower()
        tokens = tokenize(text)
        if not tokens:
            return EmotionalContext.neutral(now=now, raw_input=text)

        themes = self._calculate_themes(tokens, lowered)
        sentiment = self._calculate_sentiment(tokens)
        intensity = self._calculate_intensity(tokens, text, themes)
        relational = self._calculate_relational(tokens, themes, user_context)

        is_technical = themes.get("technical", 0.0) >= THEME_MATCH_WEIGHT
        primary_emotion = self._determine_primary_emotion(tokens)
        is_emotional = (
            themes.get("emotional", 0.0) >= THEME_MATCH_WEIGHT
            or primary_emotion in ("sadness", "fear")
        )

        return EmotionalContext(
            sentiment=sentiment,
            intensity=intensity,
            keywords=tuple(tokens),
            primary_emotion=primary_emotion,
            relational=relational,
            themes=themes,
            is_emotional=is_emotional,
            is_technical=is_technical,
            user_mood=user_context.user_mood or self._derive_user_mood(sentiment),
            emotional_tone=self._determine_tone(is_emotional, relational, themes, is_technical),
            raw_input=text,
            timestamp=now,
        )

    def _calculate_themes(self, tokens: list[str], lowered: str) -> dict[str, float]:
        """テーマスコアを計算"""
        themes: dict[str, float] = {}
        for theme, words in self._theme_words.items():
            matches = sum(1 for t in tokens if t in words)
            matches += sum(1 for p in self._theme_phrases[theme] if p.search(lowered))
            if matches:
                themes[theme] = _clamp(matches * THEME_MATCH_WEIGHT)
        return themes

    def _calculate_sentiment(self, tokens: list[str]) -> float:
        """感情価を計算（否定語の直後は極性を反転）"""
        score = 0
        for i, token in enumerate(tokens):
            polarity = 0
            if token in POSITIVE_WORDS:
                polarity = 1
            elif token in NEGATIVE_WORDS:
                polarity = -1
            if polarity and i > 0 and tokens[i - 1] in NEGATIONS:
                polarity = -polarity
            score += polarity
        return _clamp(score * SENTIMENT_STEP, -1.0, 1.0)

    def _calculate_intensity(self, tokens: list[str], text: str,
                             themes: dict[str, float]) -> float:
        """強度を計算"""
        intensity = BASE_INTENSITY
        intensity += EMPHASIS_STEP * sum(1 for t in tokens if t in EMPHASIS_WORDS)
        if "!" in text:
            intensity += EXCLAMATION_BONUS
        intensity += THEME_INTENSITY_WEIGHT * sum(themes.values())
        return _clamp(intensity)

    def _calculate_relational(self, tokens: list[str], themes: dict[str, float],
                              user_context: UserContext) -> RelationalContext:
        """関係性コンテキストを計算"""
        romantic = themes.get("romantic", 0.0)
        flirty_hits = sum(1 for t in tokens if t in FLIRTY_INDICATORS)
        is_romantic = romantic > 0.0 or user_context.relationship_mode == "romantic"
        is_platonic = (
            themes.get("platonic", 0.0) > PLATONIC_THRESHOLD
            or user_context.relationship_mode == "platonic"
        )

        blocked = (
            themes.get("professional", 0.0) > PROFESSIONAL_BLOCK
            or themes.get("serious", 0.0) > SERIOUS_BLOCK
            or is_platonic
        )
        has_marker = is_romantic or themes.get("feminine", 0.0) >= FEMININE_THRESHOLD

        return RelationalContext(
            is_romantic=is_romantic,
            is_flirty=flirty_hits > 0,
            is_platonic=is_platonic,
            intensity=_clamp(romantic * 0.6 + flirty_hits * 0.2),
            allows_flirting=has_marker and not blocked,
        )

    def _determine_primary_emotion(self, tokens: list[str]) -> str:
        """主要感情を決定（同数なら辞書の並び順）"""
        best, best_count = "neutral", 0
        for emotion, words in EMOTION_KEYWORDS.items():
            count = sum(1 for t in tokens if t in words)
            if count > best_count:
                best, best_count = emotion, count
        return best

    def _derive_user_mood(self, sentiment: float) -> str:
        if sentiment > 0.3:
            return "happy"
        if sentiment < -0.3:
            return "upset"
        return "neutral"

    def _determine_tone(self, is_emotional: bool, relational: RelationalContext,
                        themes: dict[str, float], is_technical: bool) -> str:
        if is_emotional:
            return "supportive"
        if relational.is_romantic:
            return "affectionate"
        if themes.get("playful", 0.0) >= FEMININE_THRESHOLD:
            return "playful"
        if is_technical:
            return "analytical"
        return "neutral"


class ContextDetector:
    """
    コンテキスト判定
    感情コンテキストを emotional / technical / romantic / social / casual に分類する
    """

    def analyze(self, context: EmotionalContext,
                previous: ContextAnalysis | None = None,
                previous_scores: dict[str, float] | None = None) -> ContextAnalysis:
        """
        コンテキストを判定

        Args:
            context: 感情コンテキスト
            previous: 前ターンの判定結果（コンテキストスタック用）
            previous_scores: 前ターンの正規化済み気分スコア
        """
        contexts: list[str] = []
        if context.is_emotional:
            contexts.append("emotional")
        if context.is_technical:
            contexts.append("technical")
        if context.relational.is_romantic:
            contexts.append("romantic")
        social = max(context.theme("feminine"), context.theme("masculine"), context.theme("platonic"))
        if social >= FEMININE_THRESHOLD:
            contexts.append("social")
        if not contexts:
            contexts.append("casual")

        intensity = BASE_INTENSITY
        if context.is_emotional:
            intensity += 0.2
        if context.is_technical:
            intensity += 0.1
        if context.relational.is_romantic:
            intensity += 0.3

        stack = previous.context_stack if previous else ()
        stack = (stack + (contexts[0],))[-CONTEXT_STACK_SIZE:]

        return ContextAnalysis(
            primary_context=contexts[0],
            secondary_context=contexts[1] if len(contexts) > 1 else None,
            contexts=tuple(contexts),
            is_emotional=context.is_emotional,
            is_technical=context.is_technical,
            relational=context.relational,
            intensity=_clamp(intensity),
            flags=context.context_flags(),
            previous_scores=dict(previous_scores or {}),
            context_stack=stack,
        )
