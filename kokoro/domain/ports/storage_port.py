"""
状態ストアポート
セッション状態・話題・記憶イベントの永続化インターフェース
"""

from abc import ABC, abstractmethod

from ..models.memory import MemoryEvent
from ..models.session import SessionState
from ..models.topic import TopicData


class IStateStore(ABC):
    """
    状態ストアインターフェース

    コアはディスクやネットワークに直接触れず、すべてこのポート経由で永続化する。
    実装は一時的な I/O エラーを StorageError として送出する。
    """

    @abstractmethod
    async def load_session_state(self, session_id: str) -> SessionState | None:
        """
        セッション状態を読み込み

        Args:
            session_id: セッションID

        Returns:
            Optional[SessionState]: セッション状態（存在しない場合None）
        """

    @abstractmethod
    async def save_session_state(self, session_id: str, state: SessionState) -> None:
        """
        セッション状態を保存

        Args:
            session_id: セッションID
            state: 保存する状態
        """

    @abstractmethod
    async def load_topic(self, topic_id: str) -> TopicData | None:
        """
        話題データを読み込み

        Args:
            topic_id: 話題ID

        Returns:
            Optional[TopicData]: 話題データ（存在しない場合None）
        """

    @abstractmethod
    async def save_topic(self, data: TopicData) -> None:
        """
        話題データを保存

        Args:
            data: 保存する話題データ
        """

    @abstractmethod
    async def append_memory_event(self, event: MemoryEvent) -> None:
        """
        記憶イベントを追記

        Args:
            event: 保存済み（ID・重要度確定済み）のイベント
        """

    @abstractmethod
    async def query_related_topics(self, topic_id: str, min_strength: float) -> list[str]:
        """
        関連話題を検索

        Args:
            topic_id: 起点の話題ID
            min_strength: 関連度の下限

        Returns:
            List[str]: 関連度の高い順の話題ID
        """
