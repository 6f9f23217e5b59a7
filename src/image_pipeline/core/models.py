"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


@dataclass(frozen=True, slots=True)
class TransformResult:
    """单个文件成功处理后的记录（同时也是持久化日志的一行）。"""

    date: datetime
    input_file: Path
    output_file: Optional[Path]
    input_folder: Path
    output_folder: Path
    original_file_name: str
    processed_file_name: str
    original_size: int
    processed_size: int

    @property
    def reduction_percentage(self) -> float:
        """体积缩减比例，取值通常在 [0, 1]；原始大小为 0 时返回 0。"""

        if self.original_size <= 0:
            return 0.0
        return (self.original_size - self.processed_size) / self.original_size


class RunOutcome(str, Enum):
    """一次流水线运行的终止结果。"""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(slots=True)
class RunResult:
    """流水线运行结果。

    失败或取消时 ``entries`` 保存中止前已完成的文件记录，
    这些文件已经写入磁盘且不会回滚。
    """

    outcome: RunOutcome
    entries: list[TransformResult] = field(default_factory=list)
    skipped_files: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is RunOutcome.COMPLETED
