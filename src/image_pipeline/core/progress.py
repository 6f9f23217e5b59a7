"""进度快照的数据模型与多读者进度通道。"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Any, Iterator, Optional, Protocol


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """批处理过程中的一次进度报告。

    ``overall_progress`` 与 ``folder_progress`` 取值范围为 [0, 1]；
    节省比例在对应范围内尚未统计到字节时为 ``None``。
    """

    message: str
    current_file: str = ""
    current_file_path: Optional[str] = None
    overall_progress: float = 0.0
    folder_progress: float = 0.0
    is_complete: bool = False
    is_error: bool = False
    is_canceled: bool = False
    error_message: Optional[str] = None
    current_folder_name: Optional[str] = None
    files_in_current_folder: Optional[int] = None
    folder_original_size: int = 0
    folder_converted_size: int = 0
    folder_space_saving: Optional[float] = None
    total_original_size: int = 0
    total_converted_size: int = 0
    total_space_saving: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.is_complete or self.is_error

    def to_dict(self) -> dict[str, Any]:
        """转换为可直接序列化为 JSON 的字典。"""

        return asdict(self)


class ProgressSink(Protocol):
    """流水线发布快照的目标。"""

    def publish(self, snapshot: ProgressSnapshot) -> None: ...


class ChannelClosed(Exception):
    """向已关闭的通道发布快照。"""


class ProgressChannel:
    """有序、只追加的快照通道。

    发布方从不阻塞；每个订阅者持有自己的读取位置，
    可以从任意时刻开始读取并最终看到完整的有序序列。
    """

    def __init__(self) -> None:
        self._items: list[ProgressSnapshot] = []
        self._condition = threading.Condition()
        self._closed = False

    def publish(self, snapshot: ProgressSnapshot) -> None:
        with self._condition:
            if self._closed:
                raise ChannelClosed("进度通道已关闭")
            self._items.append(snapshot)
            self._condition.notify_all()

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    @property
    def closed(self) -> bool:
        with self._condition:
            return self._closed

    def snapshots(self) -> list[ProgressSnapshot]:
        """返回截至目前的全部快照副本。"""

        with self._condition:
            return list(self._items)

    def latest(self) -> Optional[ProgressSnapshot]:
        with self._condition:
            return self._items[-1] if self._items else None

    def __len__(self) -> int:
        with self._condition:
            return len(self._items)

    def subscribe(self, start: int = 0) -> "ProgressSubscription":
        return ProgressSubscription(self, start)

    def _wait_for(self, index: int, timeout: Optional[float]) -> tuple[Optional[ProgressSnapshot], bool]:
        """等待第 ``index`` 个快照；返回 (快照, 通道是否已结束)。"""

        with self._condition:
            self._condition.wait_for(lambda: index < len(self._items) or self._closed, timeout=timeout)
            if index < len(self._items):
                return self._items[index], False
            return None, self._closed


class ProgressSubscription:
    """通道上的一个独立读者。"""

    def __init__(self, channel: ProgressChannel, start: int = 0) -> None:
        self._channel = channel
        self._cursor = start

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressSnapshot]:
        """读取下一个快照；超时或通道结束时返回 ``None``。"""

        snapshot, _ = self._channel._wait_for(self._cursor, timeout)
        if snapshot is not None:
            self._cursor += 1
        return snapshot

    @property
    def exhausted(self) -> bool:
        """通道已关闭且全部快照都已读取。"""

        snapshot, ended = self._channel._wait_for(self._cursor, 0)
        return snapshot is None and ended

    def __iter__(self) -> Iterator[ProgressSnapshot]:
        while True:
            snapshot, ended = self._channel._wait_for(self._cursor, None)
            if snapshot is None:
                if ended:
                    return
                continue
            self._cursor += 1
            yield snapshot
