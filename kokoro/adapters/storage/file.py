"""
ファイル状態ストア
JSONファイルベースの状態永続化（遅延書き込み最適化）
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path

from ...core.exceptions import StorageError
from ...core.logging import get_logger
from ...domain.models.memory import MemoryEvent
from ...domain.models.session import SessionState
from ...domain.models.topic import TopicData
from ...domain.ports.storage_port import IStateStore

logger = get_logger(__name__)


class FileStateStore(IStateStore):
    """
    ファイル状態ストア

    JSONファイルを使用したシンプルな永続化実装。
    遅延書き込み（debounce）で複数更新をまとめて保存。
    """

    def __init__(self, data_dir: str = "data", save_delay: float = 1.0):
        self.data_dir = Path(data_dir)
        self.data_file = self.data_dir / "kokoro_state.json"
        self.data_dir.mkdir(parents=True, exist_ok=True)

        # メモリキャッシュ
        self._states: dict[str, dict] = {}
        self._topics: dict[str, TopicData] = {}
        self._events: list[dict] = []
        self._loaded = False
        self._lock = asyncio.Lock()

        # 遅延書き込み
        self._save_delay = save_delay
        self._dirty = False
        self._save_task: asyncio.Task | None = None

    async def _ensure_loaded(self) -> None:
        """データが読み込まれていることを保証"""
        if not self._loaded:
            async with self._lock:
                if not self._loaded:
                    await self._load_data()
                    self._loaded = True

    async def _load_data(self) -> None:
        """ファイルからデータを読み込み"""
        if not self.data_file.exists():
            return

        try:
            loop = asyncio.get_running_loop()
            data = await loop.run_in_executor(None, self._read_json_file)
            self._states = dict(data.get("sessions", {}))
            self._topics = {
                topic_id: TopicData.from_dict(topic)
                for topic_id, topic in data.get("topics", {}).items()
            }
            self._events = list(data.get("events", []))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error(f"データ読み込みエラー: {e}")
            self._states, self._topics, self._events = {}, {}, []
        except OSError as e:
            raise StorageError(
                f"Failed to read state file: {e}", operation="load"
            ) from e

    def _read_json_file(self) -> dict:
        """JSONファイルを同期的に読み込み（スレッドプール用）"""
        with open(self.data_file, encoding="utf-8") as f:
            return json.load(f)

    async def _schedule_save(self) -> None:
        """遅延書き込みをスケジュール"""
        self._dirty = True

        # 既存のタスクがあればキャンセル
        if self._save_task and not self._save_task.done():
            self._save_task.cancel()
            try:
                await self._save_task
            except asyncio.CancelledError:
                pass

        self._save_task = asyncio.create_task(self._delayed_save())

    async def _delayed_save(self) -> None:
        """遅延後に保存を実行"""
        await asyncio.sleep(self._save_delay)
        if self._dirty:
            try:
                await self._save_data_now()
            except StorageError as e:
                logger.error(f"遅延保存エラー: {e.message}", extra={"details": e.details})

    async def _save_data_now(self) -> None:
        """ファイルにデータを即時保存（アトミック書き込み）"""
        data = {
            "sessions": self._states,
            "topics": {topic_id: t.to_dict() for topic_id, t in self._topics.items()},
            "events": self._events,
            "updated_at": datetime.now().isoformat(),
        }

        temp_file = self.data_file.with_suffix(".tmp")

        async with self._lock:
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._write_json_file, temp_file, data)
                # アトミックに置換
                temp_file.replace(self.data_file)
            except OSError as e:
                raise StorageError(
                    f"Failed to write state file: {e}", operation="save"
                ) from e
            self._dirty = False

    def _write_json_file(self, path: Path, data: dict) -> None:
        """JSONファイルを同期的に書き込み（スレッドプール用）"""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, separators=(",", ":"))

    async def load_session_state(self, session_id: str) -> SessionState | None:
        """セッション状態を読み込み"""
        await self._ensure_loaded()
        data = self._states.get(session_id)
        return SessionState.from_dict(data) if data else None

    async def save_session_state(self, session_id: str, state: SessionState) -> None:
        """セッション状態を保存（遅延書き込み）"""
        await self._ensure_loaded()
        self._states[session_id] = state.to_dict()
        await self._schedule_save()

    async def load_topic(self, topic_id: str) -> TopicData | None:
        """話題データを読み込み"""
        await self._ensure_loaded()
        return self._topics.get(topic_id)

    async def save_topic(self, data: TopicData) -> None:
        """話題データを保存（遅延書き込み）"""
        await self._ensure_loaded()
        self._topics[data.id] = data
        await self._schedule_save()

    async def append_memory_event(self, event: MemoryEvent) -> None:
        """記憶イベントを追記（遅延書き込み）"""
        await self._ensure_loaded()
        self._events.append(event.to_dict())
        await self._schedule_save()

    async def load_memory_events(self) -> list[MemoryEvent]:
        """保存済みの記憶イベントを全件読み込み"""
        await self._ensure_loaded()
        return [MemoryEvent.from_dict(e) for e in self._events]

    async def query_related_topics(self, topic_id: str, min_strength: float) -> list[str]:
        """関連話題を検索"""
        await self._ensure_loaded()
        data = self._topics.get(topic_id)
        if data is None:
            return []
        related = [(t, w) for t, w in data.relations.items() if w >= min_strength]
        related.sort(key=lambda item: item[1], reverse=True)
        return [t for t, _ in related]

    async def flush(self) -> None:
        """保留中の書き込みを強制実行"""
        if self._dirty:
            if self._save_task and not self._save_task.done():
                self._save_task.cancel()
            await self._save_data_now()
