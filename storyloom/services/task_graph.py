"""
Small per-stage task graph.

Nodes are zero-argument coroutine factories. The only edge kind is a chain
edge ("run B after A finishes"), which is how image synthesis keeps pages in
order. Nodes without edges run concurrently, bounded by a semaphore. A node
that raises does not stop its successors; its exception is returned in place
of a result.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger()


class TaskGraph:
    def __init__(self, name: str, max_concurrent: int = 4):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.name = name
        self.max_concurrent = max_concurrent
        self._nodes: Dict[str, Callable[[], Awaitable[Any]]] = {}
        self._after: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def add(self, key: str, fn: Callable[[], Awaitable[Any]]):
        if key in self._nodes:
            raise ValueError(f"Duplicate task: {key}")
        self._nodes[key] = fn

    def chain(self, before: str, after: str):
        """Declare that `after` starts only once `before` has finished"""
        for key in (before, after):
            if key not in self._nodes:
                raise KeyError(f"Unknown task: {key}")
        if before == after:
            raise ValueError("A task cannot follow itself")
        if after in self._after:
            raise ValueError(f"{after} already follows {self._after[after]}")

        node: Optional[str] = before
        while node is not None:
            if node == after:
                raise ValueError(f"Chaining {before} -> {after} would form a cycle")
            node = self._after.get(node)

        self._after[after] = before

    def sequence(self, keys: List[str]):
        """Chain keys in the given order"""
        for before, after in zip(keys, keys[1:]):
            self.chain(before, after)

    def predecessor(self, key: str) -> Optional[str]:
        return self._after.get(key)

    async def run(self) -> Dict[str, Any]:
        """Run every node; returns results (or exceptions) in insertion order"""
        semaphore = asyncio.Semaphore(self.max_concurrent)
        finished = {key: asyncio.Event() for key in self._nodes}
        results: Dict[str, Any] = {}

        async def run_node(key: str):
            before = self._after.get(key)
            if before is not None:
                await finished[before].wait()
            try:
                async with semaphore:
                    results[key] = await self._nodes[key]()
            except Exception as e:
                logger.warning(
                    "Task failed", graph=self.name, task=key, error=str(e)
                )
                results[key] = e
            finally:
                finished[key].set()

        await asyncio.gather(*(run_node(key) for key in self._nodes))
        return {key: results[key] for key in self._nodes}
