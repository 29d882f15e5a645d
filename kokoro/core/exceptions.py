"""
カスタム例外クラス
階層的な例外処理によるエラーハンドリングの統一
"""

from typing import Any


class KokoroException(Exception):
    """Kokoroアプリケーションのベース例外クラス"""

    def __init__(self, message: str, error_code: str | None = None,
                 details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(KokoroException):
    """設定関連のエラー（ペルソナカタログの読み込み失敗など）"""


class ValidationError(KokoroException):
    """バリデーションエラー"""

    def __init__(self, message: str, field: str | None = None,
                 value: Any | None = None, **kwargs):
        super().__init__(message, **kwargs)
        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = value


class InvalidTransitionError(ValidationError):
    """ペルソナ切り替えが拒否された（未知のペルソナ、クールダウン中）"""

    def __init__(self, message: str, persona_id: str | None = None,
                 reason: str | None = None, **kwargs):
        super().__init__(message, field="persona_id", value=persona_id, **kwargs)
        if reason:
            self.details['reason'] = reason


class BusinessLogicError(KokoroException):
    """ビジネスロジック関連のエラー"""


class SessionError(BusinessLogicError):
    """セッション処理関連のエラー"""

    def __init__(self, message: str, user_id: str | None = None,
                 session_id: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        if user_id:
            self.details['user_id'] = user_id
        if session_id:
            self.details['session_id'] = session_id


class ExternalServiceError(KokoroException):
    """外部コラボレーター（永続化ストアなど）関連のエラー"""

    def __init__(self, message: str, service_name: str = "unknown",
                 status_code: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.details['service_name'] = service_name
        if status_code:
            self.details['status_code'] = status_code


class StorageError(ExternalServiceError):
    """状態ストアの読み書きエラー"""

    def __init__(self, message: str, operation: str | None = None, **kwargs):
        kwargs.setdefault("service_name", "state_store")
        super().__init__(message, **kwargs)
        if operation:
            self.details['operation'] = operation
