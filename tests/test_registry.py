"""任务注册表的并发与状态测试。"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from image_pipeline.core.config import ProcessingOptions
from image_pipeline.core.exceptions import JobNotFoundError, JobStateError
from image_pipeline.core.log_recorder import LogRecorder
from image_pipeline.core.models import RunOutcome, RunResult
from image_pipeline.core.progress import ProgressSnapshot
from image_pipeline.jobs.registry import JobRegistry, JobStatus
from image_pipeline.processing.pipeline import TransformPipeline

WAIT_SECONDS = 20


class ExplodingPipeline:
    def run(self, options, sink, cancel_event):
        sink.publish(ProgressSnapshot(message="starting"))
        raise RuntimeError("boom")


class SilentPipeline:
    """正常返回，但没有发布终止快照。"""

    def run(self, options, sink, cancel_event):
        sink.publish(ProgressSnapshot(message="working"))
        return RunResult(outcome=RunOutcome.COMPLETED)


class GatedLogRecorder(LogRecorder):
    """写入前等待放行，用于观察状态与记录写入之间的先后关系。"""

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.release = threading.Event()

    def extend(self, entries):
        self.release.wait(WAIT_SECONDS)
        return super().extend(entries)


def _options(tmp_path: Path, name: str = "input", **overrides) -> ProcessingOptions:
    overrides.setdefault("convert_to_webp", True)
    return ProcessingOptions(input_folder=tmp_path / name, output_folder=tmp_path / f"{name}_out", **overrides)


def _registry(fake_tools, tmp_path: Path, **pipeline_kwargs) -> JobRegistry:
    pipeline_kwargs.setdefault("intro_delay", 0)
    pipeline_kwargs.setdefault("folder_delay", 0)
    pipeline = TransformPipeline(fake_tools.settings, **pipeline_kwargs)
    return JobRegistry(pipeline, LogRecorder(tmp_path / "processing_log.txt"))


def test_created_job_is_pending_with_empty_history(tmp_path: Path, fake_tools) -> None:
    registry = _registry(fake_tools, tmp_path)
    job = registry.create(_options(tmp_path))

    assert job.status is JobStatus.PENDING
    assert registry.get_history(job.id) == []
    assert registry.describe(job.id) == {"id": job.id, "status": "pending", "last_update": None}
    assert registry.jobs() == [job]


def test_completed_job_keeps_history_and_records_log(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "input" / "a.png")
    make_image(tmp_path / "input" / "b.png")
    registry = _registry(fake_tools, tmp_path)

    job = registry.submit(_options(tmp_path))
    status = registry.wait(job.id, timeout=WAIT_SECONDS)

    assert status is JobStatus.COMPLETED
    history = registry.get_history(job.id)
    assert history[-1].is_complete
    assert [s.current_file for s in history if s.current_file] == ["a.png", "a.png", "b.png", "b.png"]
    assert job.channel.closed

    recorded = registry.log_recorder.read_entries()
    assert [entry.original_file_name for entry in recorded] == ["a.png", "b.png"]
    assert recorded == job.result.entries

    described = registry.describe(job.id)
    assert described["status"] == "completed"
    assert described["last_update"]["is_complete"] is True


def test_log_is_written_before_wait_returns(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "input" / "a.png")
    recorder = GatedLogRecorder(tmp_path / "processing_log.txt")
    pipeline = TransformPipeline(fake_tools.settings, intro_delay=0, folder_delay=0)
    registry = JobRegistry(pipeline, recorder)

    job = registry.submit(_options(tmp_path))
    for snapshot in job.subscribe():
        if snapshot.is_terminal:
            break

    assert job.status is JobStatus.COMPLETED
    assert not job.wait(timeout=0.2)
    assert recorder.read_entries() == []

    recorder.release.set()
    assert job.wait(timeout=WAIT_SECONDS)
    assert [entry.original_file_name for entry in recorder.read_entries()] == ["a.png"]


def test_subscriber_sees_the_same_sequence_as_history(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "input" / "a.png")
    registry = _registry(fake_tools, tmp_path)
    job = registry.create(_options(tmp_path))
    subscription = job.subscribe()

    registry.start(job.id)
    received = list(subscription)

    assert received == job.history
    assert received[-1].is_complete


def test_cancel_running_job(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "input" / "a.png")
    registry = _registry(fake_tools, tmp_path, intro_delay=30)

    job = registry.submit(_options(tmp_path))
    assert job.status is JobStatus.RUNNING

    assert registry.cancel(job.id) is True
    assert registry.wait(job.id, timeout=WAIT_SECONDS) is JobStatus.CANCELED
    assert job.last_update.is_canceled
    assert job.last_update.error_message == "Canceled"
    assert fake_tools.calls() == []
    assert registry.cancel(job.id) is False


def test_start_twice_is_rejected(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "input" / "a.png")
    registry = _registry(fake_tools, tmp_path)
    job = registry.submit(_options(tmp_path))

    with pytest.raises(JobStateError):
        registry.start(job.id)
    registry.wait(job.id, timeout=WAIT_SECONDS)


def test_unknown_job_id(tmp_path: Path, fake_tools) -> None:
    registry = _registry(fake_tools, tmp_path)

    assert registry.get("nope") is None
    assert registry.describe("nope") is None
    assert registry.get_history("nope") is None
    with pytest.raises(JobNotFoundError):
        registry.start("nope")
    with pytest.raises(JobNotFoundError):
        registry.cancel("nope")


def test_missing_tools_fail_the_job(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "input" / "a.png")
    fake_tools.paths.avif_encoder.unlink()
    registry = _registry(fake_tools, tmp_path)

    job = registry.submit(_options(tmp_path, convert_to_webp=False, convert_to_avif=True))

    assert registry.wait(job.id, timeout=WAIT_SECONDS) is JobStatus.FAILED
    assert fake_tools.paths.avif_encoder.name in job.last_update.error_message
    assert registry.log_recorder.read_entries() == []


def test_jobs_run_independently(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "slow_input" / "slow.png")
    make_image(tmp_path / "fast_input" / "quick.png")
    registry = _registry(fake_tools, tmp_path)

    slow = registry.submit(_options(tmp_path, "slow_input"))
    fast = registry.submit(_options(tmp_path, "fast_input"))

    assert registry.wait(fast.id, timeout=WAIT_SECONDS) is JobStatus.COMPLETED
    assert slow.status is JobStatus.RUNNING

    registry.cancel(slow.id)
    assert registry.wait(slow.id, timeout=WAIT_SECONDS) is JobStatus.CANCELED
    assert fast.status is JobStatus.COMPLETED
    assert [entry.original_file_name for entry in registry.log_recorder.read_entries()] == ["quick.png"]


def test_terminal_status_never_changes(tmp_path: Path, fake_tools) -> None:
    registry = _registry(fake_tools, tmp_path)
    job = registry.create(_options(tmp_path))

    job.publish(ProgressSnapshot(message="done", is_complete=True, overall_progress=1.0))
    job.publish(ProgressSnapshot(message="late failure", is_error=True, error_message="late"))

    assert job.status is JobStatus.COMPLETED
    assert len(job.history) == 2


def test_pipeline_exception_marks_job_failed(tmp_path: Path) -> None:
    registry = JobRegistry(ExplodingPipeline())
    job = registry.submit(_options(tmp_path))

    assert registry.wait(job.id, timeout=WAIT_SECONDS) is JobStatus.FAILED
    assert [s.message for s in job.history] == ["starting", "boom"]
    assert job.result is None


def test_run_without_terminal_snapshot_is_failed(tmp_path: Path) -> None:
    registry = JobRegistry(SilentPipeline())
    job = registry.submit(_options(tmp_path))

    assert registry.wait(job.id, timeout=WAIT_SECONDS) is JobStatus.FAILED
    assert job.history[0].message == "working"
    assert job.last_update.is_error
    assert job.result.outcome is RunOutcome.COMPLETED
