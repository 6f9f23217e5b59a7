"""处理记录的持久化：只追加的分号分隔文本日志。"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from itertools import groupby
from pathlib import Path
from typing import Iterable, Optional

from image_pipeline.core.models import TransformResult

LOGGER = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
FIELD_SEPARATOR = ";"
FIELD_COUNT = 9


def format_line(entry: TransformResult) -> str:
    """序列化为一行日志（不含换行符）。"""

    fields = [
        entry.date.strftime(DATE_FORMAT),
        str(entry.input_file),
        str(entry.output_file) if entry.output_file else "",
        str(entry.original_size),
        str(entry.processed_size),
        str(entry.input_folder),
        str(entry.output_folder),
        entry.original_file_name,
        entry.processed_file_name,
    ]
    if any(FIELD_SEPARATOR in field or "\n" in field or "\r" in field for field in fields):
        LOGGER.warning("记录中包含分隔符或换行，读取时该行将被丢弃: %s", entry.input_file)
    return FIELD_SEPARATOR.join(fields)


def parse_line(line: str) -> TransformResult:
    """解析一行日志；格式错误时抛出 ``ValueError``。"""

    parts = line.rstrip("\r\n").split(FIELD_SEPARATOR)
    if len(parts) != FIELD_COUNT:
        raise ValueError(f"字段数量应为 {FIELD_COUNT}，实际为 {len(parts)}")

    return TransformResult(
        date=datetime.strptime(parts[0], DATE_FORMAT),
        input_file=Path(parts[1]),
        output_file=Path(parts[2]) if parts[2] else None,
        original_size=int(parts[3]),
        processed_size=int(parts[4]),
        input_folder=Path(parts[5]),
        output_folder=Path(parts[6]),
        original_file_name=parts[7],
        processed_file_name=parts[8],
    )


class LogRecorder:
    """只追加的处理日志文件。

    多个任务线程共享同一个实例，写入通过锁串行化。
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, entry: TransformResult) -> None:
        self.extend([entry])

    def extend(self, entries: Iterable[TransformResult]) -> int:
        lines = [format_line(entry) + "\n" for entry in entries]
        if not lines:
            return 0
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8", newline="\n") as handle:
                handle.writelines(lines)
        LOGGER.debug("写入 %d 条处理记录到 %s", len(lines), self.path)
        return len(lines)

    def read_entries(self) -> list[TransformResult]:
        """读取全部记录，格式错误的行会被丢弃。"""

        with self._lock:
            if not self.path.exists():
                return []
            # 无法解码的字节替换后，该行会在解析时被丢弃
            text = self.path.read_text(encoding="utf-8", errors="replace")

        entries: list[TransformResult] = []
        for number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append(parse_line(line))
            except ValueError as exc:
                LOGGER.debug("忽略第 %d 行无法解析的记录: %s", number, exc)
        return entries

    def clear(self) -> None:
        """清空全部历史记录。"""

        with self._lock:
            if self.path.exists():
                self.path.write_text("", encoding="utf-8")


@dataclass(frozen=True, slots=True)
class DailySummary:
    """某一天的处理汇总。"""

    day: date
    entries: tuple[TransformResult, ...]

    @property
    def total_original_size(self) -> int:
        return sum(entry.original_size for entry in self.entries)

    @property
    def total_processed_size(self) -> int:
        return sum(entry.processed_size for entry in self.entries)

    @property
    def reduction_percentage(self) -> float:
        original = self.total_original_size
        if original <= 0:
            return 0.0
        return (original - self.total_processed_size) / original


def summarize_by_day(entries: Iterable[TransformResult], limit: Optional[int] = None) -> list[DailySummary]:
    """按日期分组，最新的日期排在最前。"""

    ordered = sorted(entries, key=lambda entry: entry.date, reverse=True)
    summaries = [
        DailySummary(day=day, entries=tuple(group))
        for day, group in groupby(ordered, key=lambda entry: entry.date.date())
    ]
    if limit is not None:
        summaries = summaries[:limit]
    return summaries
