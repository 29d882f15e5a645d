"""
Kokoro - 会話コンパニオンの行動状態コア

1ターンごとに次の状態を決める:
- 気分: 入力の感情コンテキストから気分と強度を更新
- 話題: 話題スレッドと共有の話題グラフを管理
- ペルソナ: アクティブなペルソナと応答スタイルを選択
- 記憶: 重要な出来事と関係性（信頼・親密度）を記録
"""

from pathlib import Path
import tomllib

_pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
with _pyproject.open("rb") as _f:
    __version__: str = tomllib.load(_f)["project"]["version"]

# ===== Domain Models =====
from .domain.models import (
    EmotionalContext,
    Interaction,
    MemoryEvent,
    MoodState,
    Persona,
    RecallContext,
    Session,
    SessionState,
    StyleRule,
    TopicThread,
    UserContext,
)

# ===== Ports (Interfaces) =====
from .domain.ports import IStateStore

# ===== Domain Services =====
from .domain.services import (
    EmotionalContextAnalyzer,
    MoodEngine,
    PersonaCatalog,
    PersonaSystem,
    SessionFlowCoordinator,
    TimelineMemory,
    TopicManager,
)


# ===== Adapters (lazy import) =====
def get_file_state_store():
    from .adapters.storage.file import FileStateStore

    return FileStateStore


def get_memory_state_store():
    from .adapters.storage.memory import InMemoryStateStore

    return InMemoryStateStore


__all__ = [
    # Version
    "__version__",
    # Domain Models
    "EmotionalContext",
    "UserContext",
    "MoodState",
    "TopicThread",
    "Persona",
    "StyleRule",
    "MemoryEvent",
    "RecallContext",
    "Interaction",
    "Session",
    "SessionState",
    # Domain Services
    "EmotionalContextAnalyzer",
    "MoodEngine",
    "TopicManager",
    "PersonaCatalog",
    "PersonaSystem",
    "TimelineMemory",
    "SessionFlowCoordinator",
    # Ports
    "IStateStore",
    # Adapters (lazy)
    "get_file_state_store",
    "get_memory_state_store",
]
