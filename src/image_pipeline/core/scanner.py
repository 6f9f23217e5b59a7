"""文件扫描与筛选逻辑。"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

from image_pipeline.core.config import ProcessingOptions
from image_pipeline.core.exceptions import InvalidConfigurationError

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})
WEBP_EXTENSION = ".webp"
AVIF_EXTENSION = ".avif"


def enabled_extensions(options: ProcessingOptions) -> frozenset[str]:
    """根据配置计算参与处理的扩展名集合。"""

    extensions = set(IMAGE_EXTENSIONS)
    if options.include_webp_files:
        extensions.add(WEBP_EXTENSION)
    if options.include_avif_files:
        extensions.add(AVIF_EXTENSION)
    return frozenset(extensions)


def _iter_candidate_files(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历目录下的所有常规文件。"""

    iterator = path.rglob("*") if recursive else path.glob("*")
    for candidate in iterator:
        if candidate.is_file():
            yield candidate


def collect_image_files(root: Path, recursive: bool, extensions: Iterable[str]) -> list[Path]:
    """扫描输入目录，返回扩展名匹配的文件列表。

    空文件不会在这里过滤：它们需要计入“当前文件夹文件数”，
    由流水线在处理时跳过。返回顺序在同一次运行内稳定。
    """

    resolved_root = Path(root).resolve()
    if not resolved_root.is_dir():
        raise InvalidConfigurationError(f"输入目录不存在: {root}")

    allowed = {ext.lower() for ext in extensions}
    collected = [
        candidate
        for candidate in _iter_candidate_files(resolved_root, recursive)
        if candidate.suffix.lower() in allowed
    ]
    # 同一文件夹内的文件保持连续，文件夹切换才是单调的
    collected.sort(key=lambda x: (str(x.parent).lower(), x.name.lower()))
    return collected


def collect_for_options(options: ProcessingOptions) -> list[Path]:
    return collect_image_files(options.input_folder, options.process_subfolders, enabled_extensions(options))


def group_by_folder(files: Iterable[Path]) -> dict[Path, list[Path]]:
    """按所在文件夹分组，保留首次出现的顺序。"""

    grouped: dict[Path, list[Path]] = {}
    for path in files:
        grouped.setdefault(path.parent, []).append(path)
    return grouped
