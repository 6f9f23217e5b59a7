"""处理流水线：扫描、逐文件调用外部工具、统计体积并发布进度。"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from image_pipeline.core.config import ProcessingOptions, ToolSettings
from image_pipeline.core.exceptions import MissingDependencyError, ProcessingAborted
from image_pipeline.core.models import RunOutcome, RunResult, TransformResult
from image_pipeline.core.output_manager import OutputLayout, delete_empty_source_dirs
from image_pipeline.core.progress import ProgressChannel, ProgressSink, ProgressSnapshot
from image_pipeline.core.scanner import collect_for_options, group_by_folder
from image_pipeline.core.stats import StatsAggregator
from image_pipeline.processing.tools import ToolChain, ToolInvoker, resolve_tool_paths
from image_pipeline.processing.worker import transform_file

LOGGER = logging.getLogger(__name__)

INTRO_DELAY_SECONDS = 1.0
FOLDER_DELAY_SECONDS = 0.5
CANCELED_ERROR = "Canceled"


class TransformPipeline:
    """批处理入口。

    构造时按当前平台解析工具路径（不支持的平台直接抛出
    ``UnsupportedPlatformError``）；每次 ``run`` 都是独立的一次批处理，
    统计数据只在该次运行内有效。
    """

    def __init__(
        self,
        settings: ToolSettings,
        *,
        invoker: Optional[ToolInvoker] = None,
        platform: Optional[str] = None,
        intro_delay: float = INTRO_DELAY_SECONDS,
        folder_delay: float = FOLDER_DELAY_SECONDS,
    ) -> None:
        self.settings = settings
        self.paths = resolve_tool_paths(settings.tools_dir, platform)
        self.tools = ToolChain(self.paths, settings, invoker)
        self.intro_delay = intro_delay
        self.folder_delay = folder_delay

    def missing_dependencies(self) -> list[str]:
        return self.paths.missing()

    def run(
        self,
        options: ProcessingOptions,
        sink: Optional[ProgressSink] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RunResult:
        """执行一次完整的批处理，所有失败都转换为终止快照与结果，不向外抛出。"""

        sink = sink if sink is not None else ProgressChannel()
        cancel_event = cancel_event if cancel_event is not None else threading.Event()

        missing = self.missing_dependencies()
        if missing:
            error = MissingDependencyError(missing)
            LOGGER.error("%s", error)
            sink.publish(ProgressSnapshot(message=str(error), is_error=True, error_message=str(error)))
            return RunResult(outcome=RunOutcome.FAILED, error=str(error))

        batch = _BatchRun(self, options, sink, cancel_event)
        try:
            batch.execute()
        except ProcessingAborted:
            LOGGER.info("任务已取消，已完成 %d 个文件", len(batch.entries))
            sink.publish(
                batch.snapshot(
                    "处理已取消。",
                    is_error=True,
                    is_canceled=True,
                    error_message=CANCELED_ERROR,
                )
            )
            return RunResult(
                outcome=RunOutcome.CANCELED,
                entries=batch.entries,
                skipped_files=batch.skipped,
                error=CANCELED_ERROR,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("处理过程中发生错误: %s", exc)
            sink.publish(
                batch.snapshot(
                    f"处理过程中发生错误: {exc}。任务已停止。",
                    is_error=True,
                    error_message=str(exc),
                )
            )
            return RunResult(
                outcome=RunOutcome.FAILED,
                entries=batch.entries,
                skipped_files=batch.skipped,
                error=str(exc),
            )

        return RunResult(outcome=RunOutcome.COMPLETED, entries=batch.entries, skipped_files=batch.skipped)


class _BatchRun:
    """单次运行的可变状态。"""

    def __init__(
        self,
        pipeline: TransformPipeline,
        options: ProcessingOptions,
        sink: ProgressSink,
        cancel_event: threading.Event,
    ) -> None:
        self.pipeline = pipeline
        self.options = options
        self.sink = sink
        self.cancel_event = cancel_event
        self.stats = StatsAggregator()
        self.entries: list[TransformResult] = []
        self.skipped = 0
        self.total = 0
        self.handled = 0

    def execute(self) -> None:
        options = self.options
        LOGGER.info("开始扫描输入目录 %s", options.input_folder)
        files = collect_for_options(options)
        if not files:
            self.sink.publish(ProgressSnapshot(message="没有找到需要处理的图片。", is_complete=True, overall_progress=1.0))
            return

        groups = group_by_folder(files)
        self.total = len(files)
        LOGGER.info("发现 %d 个候选图片文件，分布在 %d 个文件夹中", self.total, len(groups))
        self.sink.publish(ProgressSnapshot(message=f"找到 {self.total} 张图片，分布在 {len(groups)} 个文件夹中。"))
        self._pause(self.pipeline.intro_delay)

        layout = OutputLayout(options.input_folder, options.output_folder)
        current_folder: Optional[Path] = None
        handled_in_folder = 0

        for source in files:
            self._check_cancelled()

            folder = source.parent
            files_in_folder = len(groups[folder])
            if folder != current_folder:
                current_folder = folder
                handled_in_folder = 0
                self.stats.ensure_folder(folder)
                self.sink.publish(
                    self.snapshot(
                        "正在处理文件夹...",
                        folder=folder,
                        files_in_folder=files_in_folder,
                        overall_progress=self.handled / self.total,
                    )
                )
                self._pause(self.pipeline.folder_delay)

            self.handled += 1
            handled_in_folder += 1
            folder_progress = handled_in_folder / files_in_folder
            original_size = source.stat().st_size

            if original_size == 0:
                self.skipped += 1
                LOGGER.warning("跳过空文件或损坏文件: %s", source)
                self.sink.publish(
                    self.snapshot(
                        f"跳过损坏文件: {source.name}",
                        source=source,
                        folder=folder,
                        files_in_folder=files_in_folder,
                        folder_progress=folder_progress,
                    )
                )
                continue

            self.sink.publish(
                self.snapshot(
                    f"正在处理第 {self.handled}/{self.total} 个文件...",
                    source=source,
                    folder=folder,
                    files_in_folder=files_in_folder,
                    folder_progress=folder_progress,
                )
            )

            if options.has_transformation:
                targets = layout.prepare(source)
            else:
                targets = layout.targets_for(source)
            outcome = transform_file(source, targets, options, self.pipeline.tools, self.cancel_event)

            self.entries.append(
                TransformResult(
                    date=datetime.now().replace(microsecond=0),
                    input_file=source,
                    output_file=outcome.final_path,
                    input_folder=folder,
                    output_folder=targets.output_folder,
                    original_file_name=source.name,
                    processed_file_name=outcome.final_path.name if outcome.final_path else "",
                    original_size=original_size,
                    processed_size=outcome.final_size,
                )
            )
            self.stats.add(folder, source, original_size, outcome.final_size)
            LOGGER.debug(
                "文件夹 %s: 原始 %d / 转换后 %d",
                folder,
                self.stats.folder(folder).original_size,
                self.stats.folder(folder).converted_size,
            )

            self.sink.publish(
                self.snapshot(
                    f"第 {self.handled}/{self.total} 个文件处理完成。",
                    source=source,
                    folder=folder,
                    files_in_folder=files_in_folder,
                    folder_progress=folder_progress,
                )
            )

        if options.delete_source_file:
            self.sink.publish(self.snapshot("正在清理空的源目录..."))
            removed = delete_empty_source_dirs(options.input_folder, options.process_subfolders)
            LOGGER.info("已删除 %d 个空目录", len(removed))

        if self.skipped:
            final_message = f"处理完成。有 {self.skipped} 个文件因为为空或已损坏而被跳过。"
        else:
            final_message = "处理完成！"
        LOGGER.info("批处理完成：成功 %d 个，跳过 %d 个", len(self.entries), self.skipped)
        self.sink.publish(self.snapshot(final_message, is_complete=True, overall_progress=1.0))

    def snapshot(
        self,
        message: str,
        *,
        source: Optional[Path] = None,
        folder: Optional[Path] = None,
        files_in_folder: Optional[int] = None,
        overall_progress: Optional[float] = None,
        folder_progress: float = 0.0,
        is_complete: bool = False,
        is_error: bool = False,
        is_canceled: bool = False,
        error_message: Optional[str] = None,
    ) -> ProgressSnapshot:
        """根据当前统计构造快照。"""

        if overall_progress is None:
            overall_progress = self.handled / self.total if self.total else 0.0
        total = self.stats.total()
        folder_stats = self.stats.folder(folder) if folder is not None else None
        return ProgressSnapshot(
            message=message,
            current_file=source.name if source else "",
            current_file_path=str(source) if source else None,
            overall_progress=overall_progress,
            folder_progress=folder_progress,
            is_complete=is_complete,
            is_error=is_error,
            is_canceled=is_canceled,
            error_message=error_message,
            current_folder_name=folder.name if folder is not None else None,
            files_in_current_folder=files_in_folder,
            folder_original_size=folder_stats.original_size if folder_stats else 0,
            folder_converted_size=folder_stats.converted_size if folder_stats else 0,
            folder_space_saving=folder_stats.space_saving if folder_stats else None,
            total_original_size=total.original_size,
            total_converted_size=total.converted_size,
            total_space_saving=total.space_saving,
        )

    def _pause(self, seconds: float) -> None:
        # 给观察者留出展示时间，同时响应取消
        if self.cancel_event.wait(max(seconds, 0.0)):
            raise ProcessingAborted("任务已取消")

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ProcessingAborted("任务已取消")


def process_batch(
    options: ProcessingOptions,
    settings: ToolSettings,
    progress: Optional[ProgressSink] = None,
    cancel_event: Optional[threading.Event] = None,
) -> RunResult:
    """便捷入口：构造流水线并立即执行一次。"""

    return TransformPipeline(settings).run(options, progress, cancel_event)
