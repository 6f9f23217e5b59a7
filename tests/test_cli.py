"""命令行入口的测试。"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from typer.testing import CliRunner

from image_pipeline.cli.main import EXIT_DEPENDENCY, app
from image_pipeline.core.log_recorder import LogRecorder
from image_pipeline.core.models import TransformResult

runner = CliRunner()


def _seed_log(path: Path, count: int = 2) -> LogRecorder:
    recorder = LogRecorder(path)
    recorder.extend(
        TransformResult(
            date=datetime(2024, 5, 1, 9, 0, idx),
            input_file=Path(f"/in/img_{idx}.png"),
            output_file=Path(f"/out/img_{idx}_final.webp"),
            input_folder=Path("/in"),
            output_folder=Path("/out"),
            original_file_name=f"img_{idx}.png",
            processed_file_name=f"img_{idx}_final.webp",
            original_size=2048,
            processed_size=512,
        )
        for idx in range(count)
    )
    return recorder


def test_log_show_empty(tmp_path: Path) -> None:
    result = runner.invoke(app, ["log", "show", "--log-file", str(tmp_path / "log.txt")])

    assert result.exit_code == 0
    assert "暂无处理记录" in result.output


def test_log_show_lists_days(tmp_path: Path) -> None:
    log_path = tmp_path / "log.txt"
    _seed_log(log_path)

    result = runner.invoke(app, ["log", "show", "--log-file", str(log_path), "--days", "1"])

    assert result.exit_code == 0
    assert "2024-05-01" in result.output


def test_log_export_and_clear(tmp_path: Path) -> None:
    log_path = tmp_path / "log.txt"
    recorder = _seed_log(log_path, count=3)
    destination = tmp_path / "report.csv"

    exported = runner.invoke(app, ["log", "export", str(destination), "--log-file", str(log_path)])
    assert exported.exit_code == 0
    assert "已导出 3 条记录" in exported.output
    assert destination.exists()

    cleared = runner.invoke(app, ["log", "clear", "--yes", "--log-file", str(log_path)])
    assert cleared.exit_code == 0
    assert recorder.read_entries() == []


def test_run_reports_missing_tools(tmp_path: Path) -> None:
    (tmp_path / "input").mkdir()
    tools_dir = tmp_path / "empty_tools"
    tools_dir.mkdir()

    result = runner.invoke(
        app,
        ["run", str(tmp_path / "input"), str(tmp_path / "output"), "--webp", "--tools-dir", str(tools_dir)],
    )

    assert result.exit_code == EXIT_DEPENDENCY
    assert "cwebp" in result.output
    assert not (tmp_path / "output").exists()


def test_run_rejects_two_target_formats(tmp_path: Path) -> None:
    (tmp_path / "input").mkdir()

    result = runner.invoke(app, ["run", str(tmp_path / "input"), str(tmp_path / "output"), "--webp", "--avif"])

    assert result.exit_code != 0


def test_run_converts_and_records(tmp_path: Path, fake_tools, make_image) -> None:
    make_image(tmp_path / "input" / "a.png")
    log_path = tmp_path / "log.txt"

    result = runner.invoke(
        app,
        [
            "run",
            str(tmp_path / "input"),
            str(tmp_path / "output"),
            "--webp",
            "--no-upscale",
            "--tools-dir",
            str(fake_tools.settings.tools_dir),
            "--log-file",
            str(log_path),
        ],
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "output" / "a_final.webp").exists()
    entries = LogRecorder(log_path).read_entries()
    assert [entry.processed_file_name for entry in entries] == ["a_final.webp"]
