"""
話題ドメイン規則
キーワード・バリデーター・優先度・遷移親和度（起動時に一度だけ構築する不変データ）
"""

import re
from types import MappingProxyType

from ..models.topic import DomainRule

# ===== バリデーター =====

_CODE_PATTERN = re.compile(
    r"`[^`]+`|\b\w+\(\)|\b(def|func|class|import|return|const|let)\s+\w+"
)
_TECH_PATTERN = re.compile(
    r"\b\w+\.(py|go|rs|js|ts|java|cpp|json|yaml|toml)\b"
    r"|\bstack ?trace\b|\bsegfault\b|\bpull request\b|\bgit (push|pull|merge|rebase)\b"
)
_SCIENCE_PATTERN = re.compile(r"\b(hypothesis|experiment|peer[- ]review|equation|particle)s?\b")
_GAME_PATTERN = re.compile(
    r"\b(final fantasy|zelda|minecraft|elden ring|pokemon|baldur'?s gate|league of legends)\b"
)
_GAMING_CONTEXT = re.compile(r"\b(playing|played|beat|finished|grinding|leveled|boss fight)\b")
_MEME_PATTERN = re.compile(r"💀|😂|\b(lmao|lmfao|rofl)\b|\bno cap\b|\bit's giving\b")
_ART_PATTERN = re.compile(r"\b(i (drew|painted|wrote|composed)|my (art|drawing|song|poem))\b")
_EMOTIONAL_CONTENT = re.compile(
    r"\bi (feel|felt|am feeling|'m feeling)\b|\bi'?m (so )?(sad|lonely|anxious|scared|stressed|upset)\b"
)
_PERSONAL_CONTEXT = re.compile(r"\b(my (life|family|mom|dad|heart)|about me|to me)\b")
_ROMANCE_CONTEXT = re.compile(
    r"\b(my (girlfriend|wife|partner|crush)|first date|asked (her|him|them) out|fell for)\b"
)
_SOCIAL_CONTEXT = re.compile(r"\b(hang(ing)? out|my friends?|went out with|party (at|with))\b")


def contains_code_reference(text: str) -> bool:
    """コード片・関数呼び出し・宣言を含むか"""
    return bool(_CODE_PATTERN.search(text))


def contains_tech_pattern(text: str) -> bool:
    """ファイル名・スタックトレース・git 操作などを含むか"""
    return bool(_TECH_PATTERN.search(text.lower()))


def contains_science_reference(text: str) -> bool:
    return bool(_SCIENCE_PATTERN.search(text.lower()))


def contains_game_reference(text: str) -> bool:
    """具体的なゲームタイトルを含むか"""
    return bool(_GAME_PATTERN.search(text.lower()))


def is_gaming_context(text: str) -> bool:
    return bool(_GAMING_CONTEXT.search(text.lower()))


def contains_meme_reference(text: str) -> bool:
    return bool(_MEME_PATTERN.search(text.lower()))


def is_creative_context(text: str) -> bool:
    return bool(_ART_PATTERN.search(text.lower()))


def contains_emotional_content(text: str) -> bool:
    """「I feel ...」など一人称の感情表現を含むか"""
    return bool(_EMOTIONAL_CONTENT.search(text.lower()))


def is_personal_context(text: str) -> bool:
    return bool(_PERSONAL_CONTEXT.search(text.lower()))


def contains_romance_context(text: str) -> bool:
    return bool(_ROMANCE_CONTEXT.search(text.lower()))


def is_social_context(text: str) -> bool:
    return bool(_SOCIAL_CONTEXT.search(text.lower()))


# ===== ドメイン規則 =====

DEFAULT_DOMAIN_RULES: tuple[DomainRule, ...] = (
    DomainRule(
        domain="tech",
        keywords=(
            "programming", "code", "coding", "software", "algorithm", "database",
            "python", "javascript", "rust", "golang", "linux", "server", "api",
            "compiler", "debug", "bug", "deploy",
        ),
        validators=(contains_tech_pattern, contains_code_reference),
        priority=3,
        transitions=MappingProxyType({"science": 0.8, "gaming": 0.6, "memes": 0.4, "art": 0.3}),
    ),
    DomainRule(
        domain="science",
        keywords=(
            "science", "physics", "quantum", "chemistry", "biology", "theory",
            "experiment", "research", "math", "space", "universe",
        ),
        validators=(contains_science_reference,),
        priority=3,
        transitions=MappingProxyType({"tech": 0.8, "art": 0.3}),
    ),
    DomainRule(
        domain="gaming",
        keywords=(
            "game", "games", "gaming", "rpg", "raid", "boss", "level", "loot",
            "console", "steam", "speedrun", "quest",
        ),
        validators=(contains_game_reference, is_gaming_context),
        priority=2,
        transitions=MappingProxyType({"tech": 0.6, "memes": 0.7, "art": 0.5, "social": 0.6}),
    ),
    DomainRule(
        domain="memes",
        keywords=("meme", "memes", "lol", "lmao", "haha", "shitpost", "vibe", "based", "cringe"),
        validators=(contains_meme_reference,),
        priority=1,
        transitions=MappingProxyType({"gaming": 0.7, "social": 0.6, "tech": 0.4}),
    ),
    DomainRule(
        domain="art",
        keywords=(
            "art", "draw", "drawing", "paint", "painting", "music", "song",
            "poem", "poetry", "design", "sketch",
        ),
        validators=(is_creative_context,),
        priority=2,
        transitions=MappingProxyType({"gaming": 0.5, "emotional": 0.5, "romance": 0.4}),
    ),
    DomainRule(
        domain="emotional",
        keywords=(
            "feel", "feeling", "sad", "happy", "lonely", "anxious", "depressed",
            "stressed", "upset", "worried", "heart", "cry",
        ),
        validators=(contains_emotional_content, is_personal_context),
        priority=5,
        transitions=MappingProxyType({"romance": 0.9, "social": 0.8, "art": 0.5}),
    ),
    DomainRule(
        domain="romance",
        keywords=(
            "girlfriend", "wife", "partner", "date", "crush", "lesbian",
            "sapphic", "wlw", "romance", "kiss", "love", "relationship",
        ),
        validators=(contains_romance_context,),
        priority=4,
        transitions=MappingProxyType({"emotional": 0.9, "social": 0.7, "art": 0.4}),
    ),
    DomainRule(
        domain="social",
        keywords=("friend", "friends", "party", "hangout", "family", "people", "community"),
        validators=(is_social_context,),
        priority=1,
        transitions=MappingProxyType({"emotional": 0.8, "memes": 0.6, "romance": 0.7, "gaming": 0.6}),
    ),
)


def rules_by_domain(rules: tuple[DomainRule, ...] = DEFAULT_DOMAIN_RULES) -> MappingProxyType:
    """ドメイン名 -> 規則の読み取り専用マップ"""
    return MappingProxyType({rule.domain: rule for rule in rules})
