"""任务注册表：为每个批处理任务分配标识、在后台线程中运行并记录进度。"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from image_pipeline.core.config import ProcessingOptions
from image_pipeline.core.exceptions import JobNotFoundError, JobStateError
from image_pipeline.core.log_recorder import LogRecorder
from image_pipeline.core.models import RunResult
from image_pipeline.core.progress import ProgressChannel, ProgressSnapshot, ProgressSubscription
from image_pipeline.processing.pipeline import TransformPipeline

LOGGER = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED})


@dataclass(eq=False)
class Job:
    """一次提交的批处理任务。

    状态只会沿 PENDING → RUNNING → 终止状态 前进，进入终止状态后不再改变。
    """

    options: ProcessingOptions
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)
    result: Optional[RunResult] = None
    channel: ProgressChannel = field(default_factory=ProgressChannel, repr=False)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _status: JobStatus = JobStatus.PENDING
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _finished: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def status(self) -> JobStatus:
        """当前状态。

        完成快照发布后状态即变为终止状态，但处理记录在此之后才写入；
        需要读取处理记录时先调用 ``wait()``。
        """

        with self._lock:
            return self._status

    @property
    def history(self) -> list[ProgressSnapshot]:
        return self.channel.snapshots()

    @property
    def last_update(self) -> Optional[ProgressSnapshot]:
        return self.channel.latest()

    def subscribe(self, start: int = 0) -> ProgressSubscription:
        return self.channel.subscribe(start)

    def publish(self, snapshot: ProgressSnapshot) -> None:
        """追加快照并据此推导状态；追加顺序即发布顺序。"""

        with self._lock:
            self.channel.publish(snapshot)
            if self._status.is_terminal:
                return
            if snapshot.is_canceled:
                self._status = JobStatus.CANCELED
            elif snapshot.is_error:
                self._status = JobStatus.FAILED
            elif snapshot.is_complete:
                self._status = JobStatus.COMPLETED

    def describe(self) -> dict[str, Any]:
        last = self.last_update
        return {
            "id": self.id,
            "status": self.status.value,
            "last_update": last.to_dict() if last else None,
        }

    def wait(self, timeout: Optional[float] = None) -> bool:
        """等待后台运行结束（包括日志写入）。"""

        return self._finished.wait(timeout)

    def _mark_running(self) -> None:
        with self._lock:
            if self._status is not JobStatus.PENDING:
                raise JobStateError(f"任务 {self.id} 当前状态为 {self._status.value}，不能再次启动")
            self._status = JobStatus.RUNNING

    def _finish(self, result: Optional[RunResult]) -> None:
        self.result = result
        if not self.status.is_terminal:
            self.publish(
                ProgressSnapshot(
                    message="任务在没有给出最终状态的情况下结束。",
                    is_error=True,
                    error_message="任务异常结束",
                )
            )
        self.channel.close()
        self._finished.set()


class JobRegistry:
    """任务标识到任务状态的并发安全映射。

    每个启动的任务运行在独立的守护线程中，任务之间互不影响；
    取消只作用于对应任务自己的取消事件。
    """

    def __init__(self, pipeline: TransformPipeline, log_recorder: Optional[LogRecorder] = None) -> None:
        self.pipeline = pipeline
        self.log_recorder = log_recorder
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, options: ProcessingOptions) -> Job:
        job = Job(options=options)
        with self._lock:
            self._jobs[job.id] = job
        LOGGER.info("创建任务 %s", job.id)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def describe(self, job_id: str) -> Optional[dict[str, Any]]:
        job = self.get(job_id)
        return job.describe() if job else None

    def get_history(self, job_id: str) -> Optional[list[ProgressSnapshot]]:
        job = self.get(job_id)
        return job.history if job else None

    def start(self, job_id: str) -> Job:
        """将任务切换为 RUNNING 并在后台线程启动，立即返回。"""

        job = self._require(job_id)
        job._mark_running()
        worker = threading.Thread(target=self._run_job, args=(job,), name=f"job-{job.id[:8]}", daemon=True)
        worker.start()
        LOGGER.info("任务 %s 已启动", job.id)
        return job

    def submit(self, options: ProcessingOptions) -> Job:
        job = self.create(options)
        return self.start(job.id)

    def cancel(self, job_id: str) -> bool:
        """请求取消任务；任务已结束时返回 ``False``。"""

        job = self._require(job_id)
        if job.status.is_terminal:
            return False
        job.cancel_event.set()
        LOGGER.info("已请求取消任务 %s", job.id)
        return True

    def wait(self, job_id: str, timeout: Optional[float] = None) -> JobStatus:
        job = self._require(job_id)
        job.wait(timeout)
        return job.status

    def _require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"任务不存在: {job_id}")
        return job

    def _run_job(self, job: Job) -> None:
        result: Optional[RunResult] = None
        try:
            result = self.pipeline.run(job.options, job, job.cancel_event)
            self._record(job, result)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("任务 %s 后台处理出错", job.id)
            job.publish(ProgressSnapshot(message=str(exc), is_error=True, error_message=str(exc)))
        finally:
            job._finish(result)
            LOGGER.info("任务 %s 结束，状态 %s", job.id, job.status.value)

    def _record(self, job: Job, result: RunResult) -> None:
        if self.log_recorder is None or not result.entries:
            return
        try:
            self.log_recorder.extend(result.entries)
        except OSError as exc:
            LOGGER.error("任务 %s 的处理记录写入失败: %s", job.id, exc)
