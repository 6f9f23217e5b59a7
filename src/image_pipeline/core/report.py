"""处理记录导出工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from image_pipeline.core.models import TransformResult

HEADER = [
    "Time",
    "Input Folder",
    "Output Folder",
    "Original File Name",
    "Processed File Name",
    "Original Size",
    "Processed Size",
    "Reduction",
]


def write_csv_report(entries: Iterable[TransformResult], destination: Path) -> Path:
    """将处理记录写入以分号分隔的 CSV 文件。"""

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle, delimiter=";")
        writer.writerow(HEADER)
        for entry in entries:
            writer.writerow(
                [
                    entry.date.strftime("%Y-%m-%d %H:%M:%S"),
                    str(entry.input_folder),
                    str(entry.output_folder),
                    entry.original_file_name,
                    entry.processed_file_name,
                    entry.original_size,
                    entry.processed_size,
                    _format_reduction(entry.reduction_percentage),
                ]
            )
    return destination


def _format_reduction(value: float) -> str:
    return f"{value * 100:.2f}%"
