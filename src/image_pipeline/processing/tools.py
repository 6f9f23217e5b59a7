"""外部工具的定位与调用。

所有像素处理都交给外部可执行文件完成，这里只负责：

- 按操作系统约定解析三个工具的文件名；
- 启动进程并同时读取 stdout/stderr，避免管道写满导致死锁；
- 在等待期间响应取消信号，先 terminate 再 kill。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from image_pipeline.core.config import ToolSettings
from image_pipeline.core.exceptions import (
    ProcessingAborted,
    ToolInvocationError,
    UnsupportedPlatformError,
)

LOGGER = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
TERMINATE_GRACE_SECONDS = 5.0

_PLATFORM_BINARIES = {
    "windows": ("realesrgan-ncnn-vulkan.exe", "cwebp.exe", "ffmpeg.exe"),
    "linux": ("realesrgan-ncnn-vulkan", "cwebp", "ffmpeg"),
    "macos": ("realesrgan-ncnn-vulkan-mac", "cwebp-mac", "ffmpeg"),
}


@dataclass(frozen=True, slots=True)
class ToolPaths:
    """三个外部工具的完整路径。"""

    upscaler: Path
    webp_encoder: Path
    avif_encoder: Path

    def all(self) -> tuple[Path, Path, Path]:
        return self.upscaler, self.webp_encoder, self.avif_encoder

    def missing(self) -> list[str]:
        """返回不存在的工具文件名，保持固定顺序。"""

        return [path.name for path in self.all() if not path.is_file()]


@dataclass(frozen=True, slots=True)
class ToolOutput:
    exit_code: int
    stdout: str
    stderr: str


def platform_family(platform: Optional[str] = None) -> str:
    """把 ``sys.platform`` 归一化为 windows / linux / macos。"""

    platform = platform or sys.platform
    if platform.startswith(("win32", "cygwin")):
        return "windows"
    if platform.startswith("linux"):
        return "linux"
    if platform.startswith("darwin"):
        return "macos"
    raise UnsupportedPlatformError(f"不支持的操作系统: {platform}")


def resolve_tool_paths(tools_dir: Path, platform: Optional[str] = None) -> ToolPaths:
    """按平台约定在工具目录中定位三个可执行文件。"""

    upscaler, webp, avif = _PLATFORM_BINARIES[platform_family(platform)]
    tools_dir = Path(tools_dir)
    return ToolPaths(
        upscaler=tools_dir / upscaler,
        webp_encoder=tools_dir / webp,
        avif_encoder=tools_dir / avif,
    )


def render_arguments(template: str, **values: object) -> list[str]:
    """把参数模板渲染为 argv 列表。

    先按 shell 规则切分模板，再逐个替换占位符，
    因此含空格的路径始终是单个参数。
    """

    return [token.format(**{key: str(value) for key, value in values.items()}) for token in shlex.split(template)]


class ToolInvoker:
    """启动外部进程并等待其结束。"""

    def __init__(
        self,
        *,
        poll_interval: float = POLL_INTERVAL,
        terminate_grace: float = TERMINATE_GRACE_SECONDS,
    ) -> None:
        self.poll_interval = poll_interval
        self.terminate_grace = terminate_grace

    def run(
        self,
        executable: Path,
        arguments: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> ToolOutput:
        tool_name = Path(executable).name
        if cancel_event is not None and cancel_event.is_set():
            raise ProcessingAborted(f"{tool_name} 启动前任务已取消")

        command = [str(executable), *arguments]
        LOGGER.debug("执行命令: %s", subprocess.list2cmdline(command))

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except OSError as exc:
            raise ToolInvocationError(tool_name, None, str(exc)) from exc

        stdout, stderr = self._wait(process, tool_name, cancel_event)

        if process.returncode != 0:
            LOGGER.debug("%s 输出: %s", tool_name, stdout)
            raise ToolInvocationError(tool_name, process.returncode, stderr or "")
        return ToolOutput(exit_code=process.returncode, stdout=stdout or "", stderr=stderr or "")

    def _wait(
        self,
        process: subprocess.Popen,
        tool_name: str,
        cancel_event: Optional[threading.Event],
    ) -> tuple[str, str]:
        # communicate 在超时后重试不会丢失已读取的输出
        while True:
            try:
                return process.communicate(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    self._terminate(process, tool_name)
                    raise ProcessingAborted(f"{tool_name} 已因取消被终止") from None

    def _terminate(self, process: subprocess.Popen, tool_name: str) -> None:
        LOGGER.info("取消任务，终止 %s (PID %s)", tool_name, process.pid)
        try:
            process.terminate()
            try:
                process.communicate(timeout=self.terminate_grace)
            except subprocess.TimeoutExpired:
                LOGGER.warning("%s (PID %s) 未响应终止信号，强制结束", tool_name, process.pid)
                process.kill()
                process.communicate()
        except ProcessLookupError:
            pass


class ToolChain:
    """把工具路径、参数模板与调用器绑定在一起，提供各处理阶段的调用。"""

    def __init__(self, paths: ToolPaths, settings: ToolSettings, invoker: Optional[ToolInvoker] = None) -> None:
        self.paths = paths
        self.settings = settings
        self.invoker = invoker or ToolInvoker()

    def upscale(self, source: Path, destination: Path, model: str, cancel_event: Optional[threading.Event]) -> None:
        arguments = render_arguments(
            self.settings.upscale_arguments,
            input=source,
            output=destination,
            model=model,
            models_dir=self.settings.models_dir,
        )
        self.invoker.run(self.paths.upscaler, arguments, cancel_event)

    def encode_webp(self, source: Path, destination: Path, cancel_event: Optional[threading.Event]) -> None:
        arguments = render_arguments(self.settings.webp_arguments, input=source, output=destination)
        self.invoker.run(self.paths.webp_encoder, arguments, cancel_event)

    def encode_avif(self, source: Path, destination: Path, cancel_event: Optional[threading.Event]) -> None:
        arguments = render_arguments(
            self.settings.avif_arguments,
            input=source,
            output=destination,
            codec=self.settings.avif_codec,
        )
        self.invoker.run(self.paths.avif_encoder, arguments, cancel_event)
