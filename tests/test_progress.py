"""
Progress reporter and storybook sink tests
"""

import pytest
from sqlalchemy import select

from storyloom.models.db import Job
from storyloom.models.dto import PipelineStage
from storyloom.services.orchestrator import PipelineOrchestrator
from storyloom.services.persistence import InMemoryStorybookSink
from storyloom.services.progress import JobStatusReporter, RecordingProgressReporter


async def load_job(session_factory, run_id):
    async with session_factory() as session:
        result = await session.execute(select(Job).where(Job.id == run_id))
        return result.scalar_one_or_none()


class TestJobStatusReporter:
    @pytest.mark.asyncio
    async def test_report_creates_and_updates_job(self, db_session, session_factory):
        reporter = JobStatusReporter(session_factory=session_factory)

        await reporter.report("run_abc", PipelineStage.INITIAL, 0, "Starting")
        await reporter.report("run_abc", PipelineStage.STORY_REWRITTEN, 20, "Story written")

        job = await load_job(session_factory, "run_abc")
        assert job.status == "running"
        assert job.stage == "story_rewritten"
        assert job.progress == 20
        assert job.current_step == "Story written"

    @pytest.mark.asyncio
    async def test_failed_records_error(self, db_session, session_factory):
        reporter = JobStatusReporter(session_factory=session_factory)

        await reporter.failed(
            "run_fail", PipelineStage.FAILED, 0, "STORY_REWRITE_FAILED", "llm offline"
        )

        job = await load_job(session_factory, "run_fail")
        assert job.status == "failed"
        assert job.error_code == "STORY_REWRITE_FAILED"
        assert job.error_message == "llm offline"

    @pytest.mark.asyncio
    async def test_completed_marks_done(self, db_session, session_factory):
        reporter = JobStatusReporter(session_factory=session_factory)

        await reporter.report("run_ok", PipelineStage.PAGES_ANIMATED, 99, "Animations ready")
        await reporter.completed("run_ok", 4, "book_123")

        job = await load_job(session_factory, "run_ok")
        assert job.status == "done"
        assert job.progress == 100
        assert job.page_count == 4
        assert job.storybook_id == "book_123"

    @pytest.mark.asyncio
    async def test_abandoned(self, db_session, session_factory):
        reporter = JobStatusReporter(session_factory=session_factory)
        await reporter.abandoned("run_stop", PipelineStage.PAGES_IMAGED, 50)

        job = await load_job(session_factory, "run_stop")
        assert job.status == "abandoned"
        assert job.progress == 50

    @pytest.mark.asyncio
    async def test_pipeline_run_tracked_in_jobs_table(
        self, db_session, session_factory, fakes, fast_settings, sample_request
    ):
        orchestrator = PipelineOrchestrator(
            capabilities=fakes.capabilities(),
            sink=InMemoryStorybookSink(),
            reporter=JobStatusReporter(session_factory=session_factory),
            config=fast_settings,
        )
        run = await orchestrator.run(sample_request)

        job = await load_job(session_factory, run.run_id)
        assert job.status == "done"
        assert job.stage == "complete"
        assert job.page_count == 3
        assert job.storybook_id == run.storybook_id


class TestRecordingProgressReporter:
    @pytest.mark.asyncio
    async def test_keeps_every_snapshot(self):
        reporter = RecordingProgressReporter()
        await reporter.report("run_1", PipelineStage.INITIAL, 0, "Starting")
        await reporter.report("run_1", PipelineStage.STORY_REWRITTEN, 20, "Story written")
        await reporter.completed("run_1", 3, "book_1")

        assert reporter.progress_values == [0, 20, 100]
        assert reporter.stages[-1] == PipelineStage.COMPLETE
        assert reporter.last.status == "done"


class TestInMemoryStorybookSink:
    @pytest.mark.asyncio
    async def test_saved_copy_is_independent(self, fakes, fast_settings, sample_request):
        sink = InMemoryStorybookSink()
        orchestrator = PipelineOrchestrator(
            capabilities=fakes.capabilities(),
            sink=sink,
            reporter=RecordingProgressReporter(),
            config=fast_settings,
        )
        run = await orchestrator.run(sample_request)

        book = run.to_storybook()
        storybook_id = await sink.save(book)
        book.pages[0].text = "changed"

        assert storybook_id.startswith("book_")
        assert sink.get(storybook_id).pages[0].text != "changed"
        assert len(sink) == 2
