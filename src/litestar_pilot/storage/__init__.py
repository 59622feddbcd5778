"""Task persistence.

Three interchangeable backends share the task operations of
:class:`BaseTaskStore`: an in-memory store, a JSON-file store and (in
``litestar_pilot.db``) a SQLAlchemy store.
"""

from __future__ import annotations

from litestar_pilot.storage.base import BaseTaskStore
from litestar_pilot.storage.file import FileTaskStore
from litestar_pilot.storage.memory import MemoryTaskStore

__all__ = ["BaseTaskStore", "FileTaskStore", "MemoryTaskStore"]
