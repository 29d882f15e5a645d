"""
Storage Adapters
状態ストアの実装

使用例:
    from kokoro.adapters.storage.file import FileStateStore
    from kokoro.adapters.storage.memory import InMemoryStateStore
"""

from .file import FileStateStore
from .memory import InMemoryStateStore

__all__ = [
    "FileStateStore",
    "InMemoryStateStore",
]
