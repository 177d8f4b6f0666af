"""
Progress reporting: where a run's stage, percentage and step label go.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import select

from storyloom.models.dto import PipelineStage, utcnow

logger = structlog.get_logger()


class ProgressReporter(ABC):
    """Receives progress for one or more runs"""

    @abstractmethod
    async def report(
        self, run_id: str, stage: PipelineStage, progress: int, step: str
    ):
        pass

    @abstractmethod
    async def failed(
        self, run_id: str, stage: PipelineStage, progress: int, code: str, message: str
    ):
        pass

    @abstractmethod
    async def completed(self, run_id: str, page_count: int, storybook_id: str):
        pass

    async def abandoned(self, run_id: str, stage: PipelineStage, progress: int):
        await self.report(run_id, stage, progress, "Abandoned")


class LoggingProgressReporter(ProgressReporter):
    async def report(
        self, run_id: str, stage: PipelineStage, progress: int, step: str
    ):
        logger.info(
            "Run progress", run_id=run_id, stage=stage.label, progress=progress, step=step
        )

    async def failed(
        self, run_id: str, stage: PipelineStage, progress: int, code: str, message: str
    ):
        logger.error(
            "Run failed", run_id=run_id, stage=stage.label, error_code=code, message=message
        )

    async def completed(self, run_id: str, page_count: int, storybook_id: str):
        logger.info(
            "Run completed",
            run_id=run_id,
            page_count=page_count,
            storybook_id=storybook_id,
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    run_id: str
    status: str
    stage: PipelineStage
    progress: int
    step: str
    at: datetime


class RecordingProgressReporter(ProgressReporter):
    """Keeps every snapshot in memory"""

    def __init__(self):
        self.snapshots: List[ProgressSnapshot] = []

    def _record(self, run_id, status, stage, progress, step):
        self.snapshots.append(
            ProgressSnapshot(run_id, status, stage, progress, step, utcnow())
        )

    async def report(
        self, run_id: str, stage: PipelineStage, progress: int, step: str
    ):
        self._record(run_id, "running", stage, progress, step)

    async def failed(
        self, run_id: str, stage: PipelineStage, progress: int, code: str, message: str
    ):
        self._record(run_id, "failed", stage, progress, f"{code}: {message}")

    async def completed(self, run_id: str, page_count: int, storybook_id: str):
        self._record(
            run_id, "done", PipelineStage.COMPLETE, 100, f"{page_count} pages"
        )

    async def abandoned(self, run_id: str, stage: PipelineStage, progress: int):
        self._record(run_id, "abandoned", stage, progress, "Abandoned")

    @property
    def progress_values(self) -> List[int]:
        return [s.progress for s in self.snapshots]

    @property
    def stages(self) -> List[PipelineStage]:
        return [s.stage for s in self.snapshots]

    @property
    def last(self) -> Optional[ProgressSnapshot]:
        return self.snapshots[-1] if self.snapshots else None


class JobStatusReporter(ProgressReporter):
    """Mirrors run progress into the jobs table"""

    def __init__(self, session_factory=None):
        if session_factory is None:
            from storyloom.core.database import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory

    async def _update(self, run_id: str, **fields):
        from storyloom.models.db import Job

        async with self.session_factory() as session:
            result = await session.execute(select(Job).where(Job.id == run_id))
            job = result.scalar_one_or_none()
            if job is None:
                job = Job(id=run_id, created_at=utcnow())
                session.add(job)

            for name, value in fields.items():
                setattr(job, name, value)
            job.updated_at = utcnow()
            await session.commit()

    async def report(
        self, run_id: str, stage: PipelineStage, progress: int, step: str
    ):
        await self._update(
            run_id,
            status="running",
            stage=stage.label,
            progress=progress,
            current_step=step[:120],
        )

    async def failed(
        self, run_id: str, stage: PipelineStage, progress: int, code: str, message: str
    ):
        await self._update(
            run_id,
            status="failed",
            stage=stage.label,
            progress=progress,
            error_code=code,
            error_message=message[:300],
        )
        logger.error("Job failed", job_id=run_id, error_code=code, message=message)

    async def completed(self, run_id: str, page_count: int, storybook_id: str):
        await self._update(
            run_id,
            status="done",
            stage=PipelineStage.COMPLETE.label,
            progress=100,
            current_step="Done",
            page_count=page_count,
            storybook_id=storybook_id,
        )
        logger.info("Job completed", job_id=run_id)

    async def abandoned(self, run_id: str, stage: PipelineStage, progress: int):
        await self._update(
            run_id,
            status="abandoned",
            stage=stage.label,
            progress=progress,
            current_step="Abandoned",
        )
