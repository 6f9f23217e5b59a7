"""体积与比例的显示格式。"""

from __future__ import annotations

from typing import Optional

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_size(num_bytes: float) -> str:
    """以 1024 为进制格式化字节数，例如 ``1.5 MB``。"""

    value = float(num_bytes)
    for unit in _UNITS:
        if abs(value) < 1024 or unit == _UNITS[-1]:
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} {_UNITS[-1]}"


def format_ratio(ratio: Optional[float]) -> str:
    if ratio is None:
        return "-"
    return f"{ratio * 100:.1f}%"


def describe_saving(original_size: int, converted_size: int) -> str:
    """节省体积的简短描述；原始大小为 0 时返回空字符串。"""

    if original_size <= 0:
        return ""
    saved = original_size - converted_size
    if saved >= 0:
        return f"节省 {format_size(saved)}"
    return f"增加 {format_size(-saved)}"
