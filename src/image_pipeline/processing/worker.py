"""单个文件的处理阶段：放大、重新编码、清理。"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from image_pipeline.core.config import ProcessingOptions
from image_pipeline.core.exceptions import ProcessingAborted
from image_pipeline.core.output_manager import FileTargets
from image_pipeline.processing.tools import ToolChain

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FileOutcome:
    """单个文件处理后的最终产物。"""

    final_size: int = 0
    final_path: Optional[Path] = None


def transform_file(
    source: Path,
    targets: FileTargets,
    options: ProcessingOptions,
    tools: ToolChain,
    cancel_event: Optional[threading.Event] = None,
) -> FileOutcome:
    """对单个文件依次执行各阶段。

    任一阶段抛出的异常都会原样向上传播，由流水线中止整个批次。
    """

    outcome = FileOutcome()

    if options.apply_upscale:
        _check_cancelled(cancel_event)
        tools.upscale(source, targets.upscaled, options.model, cancel_event)

    upscaled_exists = options.apply_upscale and targets.upscaled.exists()
    conversion_source = targets.upscaled if upscaled_exists else source

    if options.convert_to_webp:
        _check_cancelled(cancel_event)
        tools.encode_webp(conversion_source, targets.webp, cancel_event)
        _record_artifact(outcome, targets.webp)
    elif options.convert_to_avif:
        _check_cancelled(cancel_event)
        tools.encode_avif(conversion_source, targets.avif, cancel_event)
        _record_artifact(outcome, targets.avif)
    elif upscaled_exists:
        _record_artifact(outcome, targets.upscaled)

    _check_cancelled(cancel_event)

    # 已经生成最终格式时，中间的放大文件不再需要
    if upscaled_exists and (options.convert_to_webp or options.convert_to_avif) and targets.upscaled.exists():
        targets.upscaled.unlink()
        LOGGER.debug("删除中间文件 %s", targets.upscaled)

    if options.delete_source_file:
        source.unlink()
        LOGGER.debug("删除源文件 %s", source)

    return outcome


def _record_artifact(outcome: FileOutcome, artifact: Path) -> None:
    if artifact.exists():
        outcome.final_size = artifact.stat().st_size
        outcome.final_path = artifact


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ProcessingAborted("任务已取消")
