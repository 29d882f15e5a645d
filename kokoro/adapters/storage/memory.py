"""
インメモリ状態ストア
テスト・単発実行用（プロセス終了で消える）
"""

import copy

from ...domain.models.memory import MemoryEvent
from ...domain.models.session import SessionState
from ...domain.models.topic import TopicData
from ...domain.ports.storage_port import IStateStore


class InMemoryStateStore(IStateStore):
    """インメモリ状態ストア"""

    def __init__(self):
        self._states: dict[str, SessionState] = {}
        self._topics: dict[str, TopicData] = {}
        self._events: list[MemoryEvent] = []

    @property
    def events(self) -> list[MemoryEvent]:
        return list(self._events)

    async def load_session_state(self, session_id: str) -> SessionState | None:
        state = self._states.get(session_id)
        return state.copy() if state else None

    async def save_session_state(self, session_id: str, state: SessionState) -> None:
        self._states[session_id] = state.copy()

    async def load_topic(self, topic_id: str) -> TopicData | None:
        data = self._topics.get(topic_id)
        return copy.deepcopy(data) if data else None

    async def save_topic(self, data: TopicData) -> None:
        self._topics[data.id] = copy.deepcopy(data)

    async def append_memory_event(self, event: MemoryEvent) -> None:
        self._events.append(event)

    async def query_related_topics(self, topic_id: str, min_strength: float) -> list[str]:
        data = self._topics.get(topic_id)
        if data is None:
            return []
        related = [(t, w) for t, w in data.relations.items() if w >= min_strength]
        related.sort(key=lambda item: item[1], reverse=True)
        return [t for t, _ in related]
