"""
Where finished storybooks are handed off.

Durable storage lives outside this package; InMemoryStorybookSink is the
reference implementation used by the CLI, the worker and the tests.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

import structlog

from storyloom.models.dto import Storybook

logger = structlog.get_logger()


class StorybookSink(ABC):
    @abstractmethod
    async def save(self, storybook: Storybook) -> str:
        """Store a finished storybook and return its id"""
        pass


class InMemoryStorybookSink(StorybookSink):
    def __init__(self):
        self._books: Dict[str, Storybook] = {}

    async def save(self, storybook: Storybook) -> str:
        storybook_id = f"book_{uuid.uuid4().hex[:12]}"
        self._books[storybook_id] = storybook.model_copy(deep=True)
        logger.info(
            "Storybook saved",
            storybook_id=storybook_id,
            run_id=storybook.run_id,
            pages=len(storybook.pages),
        )
        return storybook_id

    def get(self, storybook_id: str) -> Optional[Storybook]:
        return self._books.get(storybook_id)

    def __len__(self) -> int:
        return len(self._books)
