"""输出目录布局与源目录清理。"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

UPSCALED_SUFFIX = "_improved"
UPSCALED_EXTENSION = ".png"
FINAL_SUFFIX = "_final"


@dataclass(frozen=True, slots=True)
class FileTargets:
    """单个源文件在输出目录中的各阶段产物路径。"""

    output_folder: Path
    upscaled: Path
    webp: Path
    avif: Path


class OutputLayout:
    """负责把输入目录结构映射到输出目录。"""

    def __init__(self, input_root: Path, output_root: Path) -> None:
        self.input_root = Path(input_root).resolve()
        self.output_root = Path(output_root).resolve()

    def output_folder_for(self, source: Path) -> Path:
        """源文件所在目录对应的输出目录（保持相对结构）。"""

        relative = os.path.relpath(source.parent, self.input_root)
        return (self.output_root / relative).resolve()

    def targets_for(self, source: Path) -> FileTargets:
        folder = self.output_folder_for(source)
        stem = source.stem
        return FileTargets(
            output_folder=folder,
            upscaled=folder / f"{stem}{UPSCALED_SUFFIX}{UPSCALED_EXTENSION}",
            webp=folder / f"{stem}{FINAL_SUFFIX}.webp",
            avif=folder / f"{stem}{FINAL_SUFFIX}.avif",
        )

    def prepare(self, source: Path) -> FileTargets:
        """计算产物路径并创建输出目录。"""

        targets = self.targets_for(source)
        targets.output_folder.mkdir(parents=True, exist_ok=True)
        return targets


def delete_empty_source_dirs(root: Path, recursive: bool) -> list[Path]:
    """自底向上删除空的源目录，返回实际删除的目录。

    单个目录删除失败只记录警告，不中断清理。
    """

    root = Path(root)
    removed: list[Path] = []
    if not root.is_dir():
        return removed

    if recursive:
        # 路径越长层级越深，先删最深的目录
        candidates = sorted(
            (path for path in root.rglob("*") if path.is_dir()),
            key=lambda path: len(str(path)),
            reverse=True,
        )
        for directory in candidates:
            if _remove_if_empty(directory):
                removed.append(directory)

    if _remove_if_empty(root):
        removed.append(root)
    return removed


def _remove_if_empty(directory: Path) -> bool:
    try:
        if any(directory.iterdir()):
            return False
        directory.rmdir()
    except OSError as exc:
        LOGGER.warning("无法删除目录 %s: %s", directory, exc)
        return False
    LOGGER.debug("已删除空目录 %s", directory)
    return True
