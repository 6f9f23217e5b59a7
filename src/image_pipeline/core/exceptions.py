"""项目内使用的自定义异常定义。"""

from __future__ import annotations

from typing import Optional, Sequence


class ImagePipelineError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImagePipelineError):
    """配置不合法时抛出。"""


class UnsupportedPlatformError(ImagePipelineError):
    """当前操作系统没有对应的外部工具时抛出。"""


class MissingDependencyError(ImagePipelineError):
    """外部工具可执行文件缺失。"""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "缺少必需的外部工具: " + ", ".join(self.missing) + "。请确认它们位于工具目录中。"
        )


class ToolInvocationError(ImagePipelineError):
    """外部工具以非零状态退出或无法启动。"""

    def __init__(self, tool_name: str, exit_code: Optional[int], stderr: str = "") -> None:
        self.tool_name = tool_name
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code is None:
            message = f"无法启动外部工具 {tool_name}: {stderr}"
        else:
            message = f"外部工具 {tool_name} 执行失败，退出码 {exit_code}。错误输出: {stderr.strip()}"
        super().__init__(message)


class ProcessingAborted(ImagePipelineError):
    """任务被用户中断时抛出。"""


class JobNotFoundError(ImagePipelineError):
    """任务标识不存在。"""


class JobStateError(ImagePipelineError):
    """任务状态不允许当前操作（例如重复启动）。"""
