"""
統合設定管理

pydantic-settings を使用した型安全な設定管理
- 環境変数から自動読み込み
- バリデーション付き
- デフォルト値対応
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MoodSettings(BaseSettings):
    """気分エンジン設定"""

    model_config = SettingsConfigDict(env_prefix="KOKORO_MOOD_")

    decay_rate: float = Field(default=0.1, ge=0.0, description="強度の時間減衰率（1時間あたり）")
    change_threshold: float = Field(default=0.3, ge=0.0, description="シグナル影響のスケール係数")
    max_intensity: float = Field(default=1.0, gt=0.0, le=1.0, description="強度の上限")
    shift_threshold: float = Field(default=0.4, ge=0.0, le=1.0, description="気分が切り替わる最低スコア")
    baseline_mood: str = Field(default="neutral", description="フォールバック時の気分")
    baseline_intensity: float = Field(default=0.5, ge=0.0, le=1.0, description="初期強度")
    history_limit: int = Field(default=500, gt=0, description="気分履歴の最大保持数")


class TopicSettings(BaseSettings):
    """話題スレッド設定"""

    model_config = SettingsConfigDict(env_prefix="KOKORO_TOPIC_")

    max_thread_depth: int = Field(default=5, gt=0, description="スレッドのアクティブノード上限")
    min_confidence: float = Field(default=0.6, ge=0.0, description="検出・関連付けの最低信頼度")
    decay_rate: float = Field(default=0.1, ge=0.0, description="関連度の時間減衰率（1分あたり）")
    thread_timeout_minutes: float = Field(default=30.0, gt=0.0, description="スレッドのアーカイブまでの無操作時間(分)")
    keyword_weight: float = Field(default=0.2, ge=0.0, description="キーワード出現1回あたりの信頼度")
    validator_weight: float = Field(default=0.3, ge=0.0, description="バリデーター合格1件あたりの信頼度")


class PersonaSettings(BaseSettings):
    """ペルソナ設定"""

    model_config = SettingsConfigDict(env_prefix="KOKORO_PERSONA_")

    cooldown_seconds: float = Field(default=300.0, ge=0.0, description="同一ペルソナ再有効化までの待機(秒)")
    catalog_file: Optional[str] = Field(default=None, description="ペルソナカタログ JSON のパス")
    default_persona: Optional[str] = Field(default=None, description="セッション開始時のペルソナ")
    auto_switch: bool = Field(default=False, description="提案ペルソナへの自動切り替え")
    suggestion_threshold: float = Field(default=0.5, ge=0.0, description="ペルソナ提案の最低スコア")


class MemorySettings(BaseSettings):
    """タイムライン・記憶設定"""

    model_config = SettingsConfigDict(env_prefix="KOKORO_MEMORY_")

    significance_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="マーカー生成の重要度閾値")
    recall_limit: int = Field(default=5, gt=0, description="1ターンで想起する記憶数")
    significant_intensity: float = Field(default=0.6, ge=0.0, le=1.0, description="記憶に残す対話の強度")
    anniversary_window_days: int = Field(default=7, ge=0, description="記念日通知の先読み日数")


class NormalizationSettings(BaseSettings):
    """バイアス・正規化設定"""

    model_config = SettingsConfigDict(env_prefix="KOKORO_NORMALIZATION_")

    max_delta: float = Field(default=0.3, gt=0.0, description="1ターンあたりのスコア変化上限")
    emotional_max_delta: float = Field(default=0.5, gt=0.0, description="感情的文脈での変化上限")


class SessionSettings(BaseSettings):
    """セッションフロー設定"""

    model_config = SettingsConfigDict(env_prefix="KOKORO_SESSION_")

    checkpoint_intensity_delta: float = Field(default=0.2, ge=0.0, description="チェックポイントを作る強度変化")
    max_checkpoints: int = Field(default=50, gt=0, description="セッションあたりのチェックポイント保持数")
    related_topic_strength: float = Field(default=0.5, ge=0.0, le=1.0, description="関連話題として扱う最低強度")


class KokoroSettings(BaseSettings):
    """Kokoro 全体設定"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 基本設定
    data_dir: str = Field(default="data", alias="KOKORO_DATA_DIR", description="データ保存ディレクトリ")
    debug: bool = Field(default=False, alias="KOKORO_DEBUG", description="デバッグモード")
    log_level: str = Field(default="INFO", alias="KOKORO_LOG_LEVEL", description="ログレベル")

    # サブ設定
    mood: MoodSettings = Field(default_factory=MoodSettings)
    topic: TopicSettings = Field(default_factory=TopicSettings)
    persona: PersonaSettings = Field(default_factory=PersonaSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    normalization: NormalizationSettings = Field(default_factory=NormalizationSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """ログレベル名を正規化"""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level

    @classmethod
    def load(cls) -> "KokoroSettings":
        """設定をロード（サブ設定も含む）"""
        return cls(
            mood=MoodSettings(),
            topic=TopicSettings(),
            persona=PersonaSettings(),
            memory=MemorySettings(),
            normalization=NormalizationSettings(),
            session=SessionSettings(),
        )


@lru_cache()
def get_settings() -> KokoroSettings:
    """
    設定を取得（キャッシュ付き）

    使用例:
        settings = get_settings()
        print(settings.mood.decay_rate)
        print(settings.persona.cooldown_seconds)
    """
    return KokoroSettings.load()


def reload_settings() -> KokoroSettings:
    """設定を再読み込み"""
    get_settings.cache_clear()
    return get_settings()
