"""按文件夹与全局汇总原始/转换后体积。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Optional

TOTAL_KEY = "total"


@dataclass(frozen=True, slots=True)
class FolderStats:
    """某个统计范围内的累计字节数。"""

    original_size: int = 0
    converted_size: int = 0

    @property
    def space_saving(self) -> Optional[float]:
        """节省比例 ``1 - p/o``；尚未统计到任何原始字节时为 ``None``。"""

        if self.original_size <= 0:
            return None
        return 1.0 - (self.converted_size / self.original_size)


class StatsAggregator:
    """单次运行内的体积统计。

    每个文件只计一次：同一 ``file_key`` 再次加入时替换之前的贡献。
    ``TOTAL_KEY`` 为保留键，用于累计全局总量。
    """

    def __init__(self) -> None:
        self._folders: dict[Hashable, FolderStats] = {TOTAL_KEY: FolderStats()}
        self._contributions: dict[Hashable, tuple[Hashable, int, int]] = {}

    def add(self, folder: Hashable, file_key: Hashable, original_size: int, converted_size: int) -> None:
        if folder == TOTAL_KEY:
            raise ValueError(f"{TOTAL_KEY!r} 为保留键，不能作为文件夹使用")
        if original_size < 0 or converted_size < 0:
            raise ValueError("字节数不能为负数")

        previous = self._contributions.get(file_key)
        if previous is not None:
            prev_folder, prev_original, prev_converted = previous
            self._shift(prev_folder, -prev_original, -prev_converted)
            self._shift(TOTAL_KEY, -prev_original, -prev_converted)

        self._contributions[file_key] = (folder, original_size, converted_size)
        self._shift(folder, original_size, converted_size)
        self._shift(TOTAL_KEY, original_size, converted_size)

    def ensure_folder(self, folder: Hashable) -> None:
        self._folders.setdefault(folder, FolderStats())

    def folder(self, folder: Hashable) -> FolderStats:
        return self._folders.get(folder, FolderStats())

    def total(self) -> FolderStats:
        return self._folders[TOTAL_KEY]

    def _shift(self, key: Hashable, original_delta: int, converted_delta: int) -> None:
        current = self._folders.get(key, FolderStats())
        self._folders[key] = FolderStats(
            original_size=current.original_size + original_delta,
            converted_size=current.converted_size + converted_delta,
        )
