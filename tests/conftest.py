"""测试共用的夹具：伪造的外部工具与测试图片。"""

from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from image_pipeline.core.config import ToolSettings
from image_pipeline.processing.tools import ToolPaths, resolve_tool_paths

# 伪造工具：行为由输入文件名控制。
#   broken -> 写 stderr 并以退出码 3 结束
#   noout  -> 正常退出但不生成输出
#   slow   -> 长时间阻塞，用于取消测试
FAKE_TOOL_SOURCE = textwrap.dedent(
    """
    import sys
    import time
    from pathlib import Path

    from PIL import Image

    calls_log, kind, *args = sys.argv[1:]


    def value(flag):
        return args[args.index(flag) + 1]


    if kind == "upscale":
        src, dst = Path(value("-i")), Path(value("-o"))
    elif kind == "webp":
        src, dst = Path(args[2]), Path(value("-o"))
    else:
        src, dst = Path(value("-i")), Path(args[-1])

    with open(calls_log, "a", encoding="utf-8") as handle:
        handle.write(f"{kind}|{src}|{dst}\\n")

    if "broken" in src.name:
        sys.stderr.write(f"cannot decode {src.name}\\n")
        sys.exit(3)
    if "slow" in src.name:
        time.sleep(60)
    if "noout" in src.name:
        sys.exit(0)

    if kind == "upscale":
        with Image.open(src) as img:
            img.resize((img.width * 2, img.height * 2)).save(dst, format="PNG")
    elif kind == "webp":
        with Image.open(src) as img:
            img.convert("RGB").save(dst, format="WEBP", quality=80)
    else:
        data = src.read_bytes()
        dst.write_bytes(data[: max(1, len(data) // 3)])
    """
)


@dataclass
class FakeTools:
    settings: ToolSettings
    paths: ToolPaths
    calls_log: Path

    def calls(self) -> list[tuple[str, Path, Path]]:
        if not self.calls_log.exists():
            return []
        records = []
        for line in self.calls_log.read_text(encoding="utf-8").splitlines():
            kind, src, dst = line.split("|")
            records.append((kind, Path(src), Path(dst)))
        return records


@pytest.fixture
def fake_tools(tmp_path: Path) -> FakeTools:
    if sys.platform == "win32":
        pytest.skip("伪造工具依赖 POSIX shell 脚本")

    tools_dir = tmp_path / "tools"
    tools_dir.mkdir()
    script = tools_dir / "fake_tool.py"
    script.write_text(FAKE_TOOL_SOURCE, encoding="utf-8")
    calls_log = tools_dir / "calls.log"

    paths = resolve_tool_paths(tools_dir)
    for path, kind in zip(paths.all(), ("upscale", "webp", "avif")):
        path.write_text(
            f'#!/bin/sh\nexec "{sys.executable}" "{script}" "{calls_log}" {kind} "$@"\n',
            encoding="utf-8",
        )
        path.chmod(0o755)

    return FakeTools(settings=ToolSettings(tools_dir=tools_dir), paths=paths, calls_log=calls_log)


@pytest.fixture
def make_image() -> Callable[..., Path]:
    def factory(path: Path, size: tuple[int, int] = (24, 24), color: str = "blue") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        fmt = "JPEG" if path.suffix.lower() in {".jpg", ".jpeg"} else "PNG"
        Image.new("RGB", size, color).save(path, format=fmt)
        return path

    return factory
