"""
設定・ログ・例外のテスト
"""

import io
import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from kokoro.core.config import KokoroSettings, MoodSettings, PersonaSettings
from kokoro.core.exceptions import InvalidTransitionError, StorageError
from kokoro.core.logging import StructuredFormatter, log_error, log_state_event, log_turn


class TestSettings:
    """pydantic-settings による設定のテスト"""

    def test_defaults(self):
        """既定値"""
        settings = KokoroSettings.load()

        assert settings.mood.decay_rate == 0.1
        assert settings.persona.cooldown_seconds == 300.0
        assert settings.persona.auto_switch is False
        assert settings.topic.max_thread_depth == 5
        assert settings.session.max_checkpoints == 50

    def test_env_prefix(self, monkeypatch):
        """サブ設定は KOKORO_<名前>_ で上書きできる"""
        monkeypatch.setenv("KOKORO_MOOD_DECAY_RATE", "0.25")
        monkeypatch.setenv("KOKORO_PERSONA_DEFAULT_PERSONA", "strict_mod")

        assert MoodSettings().decay_rate == 0.25
        assert PersonaSettings().default_persona == "strict_mod"

    def test_log_level_is_normalized(self, monkeypatch):
        """ログレベルは大文字に揃える"""
        monkeypatch.setenv("KOKORO_LOG_LEVEL", "debug")
        assert KokoroSettings().log_level == "DEBUG"

    def test_invalid_log_level(self, monkeypatch):
        """未知のログレベルはエラー"""
        monkeypatch.setenv("KOKORO_LOG_LEVEL", "loud")
        with pytest.raises(PydanticValidationError):
            KokoroSettings()

    def test_out_of_range(self):
        """範囲外の値はエラー"""
        with pytest.raises(PydanticValidationError):
            MoodSettings(max_intensity=1.5)


class TestStructuredLogging:
    """構造化ログのテスト"""

    def setup_method(self):
        self.stream = io.StringIO()
        self.logger = logging.getLogger("kokoro.test_config")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        handler = logging.StreamHandler(self.stream)
        handler.setFormatter(StructuredFormatter())
        self.logger.handlers = [handler]

    def _entry(self) -> dict:
        return json.loads(self.stream.getvalue().strip().splitlines()[-1])

    def test_state_event(self):
        """状態イベントは extra に載る"""
        log_state_event(self.logger, "persona_switched", session_id="s1", to_persona="teaser")
        entry = self._entry()

        assert entry["message"] == "State event: persona_switched"
        assert entry["extra"]["state_event"] == "persona_switched"
        assert entry["extra"]["session_id"] == "s1"
        assert entry["extra"]["to_persona"] == "teaser"

    def test_turn(self):
        """ターンログに確定結果が載る"""
        log_turn(self.logger, "s1", 3, duration_ms=1.5, mood="playful", persona="teaser", topics=["gaming"])
        entry = self._entry()

        assert entry["extra"]["event_type"] == "turn"
        assert entry["extra"]["turn"] == 3
        assert entry["extra"]["mood"] == "playful"
        assert entry["extra"]["topics"] == ["gaming"]

    def test_error_includes_details(self):
        """KokoroException の詳細が出力される"""
        error = StorageError("disk full", operation="save")
        log_error(self.logger, error, {"operation": "save_session_state"})
        entry = self._entry()

        assert entry["level"] == "ERROR"
        assert entry["exception"]["error_code"] == "StorageError"
        assert entry["exception"]["details"]["service_name"] == "state_store"
        assert entry["extra"]["operation"] == "save_session_state"


class TestExceptions:
    """例外のテスト"""

    def test_invalid_transition_details(self):
        """切り替え拒否の理由が details に入る"""
        error = InvalidTransitionError("cooling down", persona_id="teaser", reason="cooldown")

        assert error.error_code == "InvalidTransitionError"
        assert error.details == {"field": "persona_id", "value": "teaser", "reason": "cooldown"}
