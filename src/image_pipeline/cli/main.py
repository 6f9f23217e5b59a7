"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from image_pipeline.core.config import (
    DEFAULT_MODEL,
    UPSCALE_MODELS,
    ProcessingOptions,
    ToolSettings,
    default_log_path,
    default_tools_dir,
)
from image_pipeline.core.exceptions import (
    InvalidConfigurationError,
    MissingDependencyError,
    UnsupportedPlatformError,
)
from image_pipeline.core.log_recorder import LogRecorder, summarize_by_day
from image_pipeline.core.progress import ProgressSnapshot, ProgressSubscription
from image_pipeline.core.report import write_csv_report
from image_pipeline.jobs.registry import Job, JobRegistry, JobStatus
from image_pipeline.processing.pipeline import TransformPipeline
from image_pipeline.utils.logging import setup_logging
from image_pipeline.utils.sizes import describe_saving, format_ratio, format_size

app = typer.Typer(help="调用外部工具批量放大并压缩图片。")
log_app = typer.Typer(help="查看、导出或清空处理记录。")
app.add_typer(log_app, name="log")

console = Console()

EXIT_FAILED = 1
EXIT_DEPENDENCY = 2
EXIT_CANCELED = 130


def _resolve_log_path(log_file: Optional[Path]) -> Path:
    return log_file.expanduser().resolve() if log_file else default_log_path()


def _follow(subscription: ProgressSubscription, progress: Progress, overall: TaskID, folder: TaskID) -> None:
    for snapshot in subscription:
        _render_snapshot(snapshot, progress, overall, folder)


def _render_snapshot(snapshot: ProgressSnapshot, progress: Progress, overall: TaskID, folder: TaskID) -> None:
    progress.update(overall, completed=snapshot.overall_progress * 100)
    folder_description = f"文件夹 {snapshot.current_folder_name}" if snapshot.current_folder_name else "当前文件夹"
    if snapshot.files_in_current_folder:
        folder_description += f" ({snapshot.files_in_current_folder} 个文件)"
    progress.update(folder, completed=snapshot.folder_progress * 100, description=folder_description)

    message = snapshot.message
    saving = describe_saving(snapshot.total_original_size, snapshot.total_converted_size)
    if saving and not snapshot.is_terminal:
        message += f" [总计 {format_ratio(snapshot.total_space_saving)}，{saving}]"
    progress.log(message)


@app.command("run")
def run_cli(  # noqa: PLR0913
    input_folder: Path = typer.Argument(..., help="待处理的图片目录"),
    output_folder: Path = typer.Argument(..., help="输出目录"),
    model: str = typer.Option(DEFAULT_MODEL, "--model", "-m", help="放大模型：" + ", ".join(UPSCALE_MODELS)),
    recursive: bool = typer.Option(False, "--recursive/--no-recursive", help="是否处理子目录"),
    webp: bool = typer.Option(False, "--webp", help="转换为 WebP"),
    avif: bool = typer.Option(False, "--avif", help="转换为 AVIF（与 --webp 互斥）"),
    upscale: bool = typer.Option(True, "--upscale/--no-upscale", help="是否使用 Real-ESRGAN 放大"),
    delete_source: bool = typer.Option(False, "--delete-source", help="处理后删除源文件（危险操作）"),
    include_webp: bool = typer.Option(False, "--include-webp", help="同时处理已有的 .webp 文件"),
    include_avif: bool = typer.Option(False, "--include-avif", help="同时处理已有的 .avif 文件"),
    tools_dir: Optional[Path] = typer.Option(
        None, "--tools-dir", envvar="IMAGE_PIPELINE_TOOLS_DIR", help="外部工具所在目录"
    ),
    models_dir: Optional[Path] = typer.Option(None, "--models-dir", help="放大模型目录，默认为 <tools-dir>/models"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="处理记录文件"),
    yes: bool = typer.Option(False, "--yes", "-y", help="删除源文件时跳过确认"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行一次批处理任务。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    if not (upscale or webp or avif):
        raise typer.BadParameter("至少需要启用放大、WebP 或 AVIF 中的一项")

    try:
        options = ProcessingOptions(
            input_folder=input_folder.expanduser().resolve(),
            output_folder=output_folder.expanduser().resolve(),
            model=model,
            process_subfolders=recursive,
            convert_to_webp=webp,
            convert_to_avif=avif,
            apply_upscale=upscale,
            delete_source_file=delete_source,
            include_webp_files=include_webp,
            include_avif_files=include_avif,
        )
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    settings = ToolSettings(
        tools_dir=(tools_dir or default_tools_dir()).expanduser().resolve(),
        models_dir=models_dir.expanduser().resolve() if models_dir else None,
    )

    try:
        pipeline = TransformPipeline(settings)
    except UnsupportedPlatformError as exc:
        typer.echo(str(exc))
        raise typer.Exit(EXIT_DEPENDENCY) from exc

    missing = pipeline.missing_dependencies()
    if missing:
        typer.echo(str(MissingDependencyError(missing)))
        raise typer.Exit(EXIT_DEPENDENCY)

    if delete_source and not yes:
        typer.confirm("处理完成后将删除源文件，确定继续吗？", abort=True)

    registry = JobRegistry(pipeline, LogRecorder(_resolve_log_path(log_file)))
    job = registry.submit(options)
    logging.getLogger(__name__).debug("任务 %s 已提交", job.id)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>5.1f}%"),
        TimeElapsedColumn(),
        console=console,
    )

    with progress:
        overall = progress.add_task("总体进度", total=100)
        folder = progress.add_task("当前文件夹", total=100)
        subscription = job.subscribe()
        try:
            _follow(subscription, progress, overall, folder)
        except KeyboardInterrupt:
            progress.log("正在取消任务...")
            registry.cancel(job.id)
            _follow(subscription, progress, overall, folder)

    job.wait()
    _print_summary(job)

    if job.status is JobStatus.CANCELED:
        raise typer.Exit(EXIT_CANCELED)
    if job.status is not JobStatus.COMPLETED:
        raise typer.Exit(EXIT_FAILED)


def _print_summary(job: Job) -> None:
    result = job.result
    last = job.last_update
    if last is not None and last.error_message:
        typer.echo(f"任务结束（{job.status.value}）：{last.error_message}")
    if result is None:
        return
    original = sum(entry.original_size for entry in result.entries)
    processed = sum(entry.processed_size for entry in result.entries)
    typer.echo(
        f"处理完成：成功 {len(result.entries)} 个，跳过 {result.skipped_files} 个；"
        f"原始 {format_size(original)} → {format_size(processed)}"
    )


@log_app.command("show")
def show_log(
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="处理记录文件"),
    days: Optional[int] = typer.Option(None, "--days", help="只显示最近的若干天"),
    entries: bool = typer.Option(False, "--entries", help="同时列出每个文件"),
) -> None:
    """按日期汇总显示处理记录。"""

    recorder = LogRecorder(_resolve_log_path(log_file))
    summaries = summarize_by_day(recorder.read_entries(), limit=days)
    if not summaries:
        typer.echo("暂无处理记录。")
        return

    table = Table(title="处理记录")
    table.add_column("日期")
    table.add_column("文件数", justify="right")
    table.add_column("原始大小", justify="right")
    table.add_column("处理后大小", justify="right")
    table.add_column("缩减比例", justify="right")
    for summary in summaries:
        table.add_row(
            summary.day.isoformat(),
            str(len(summary.entries)),
            format_size(summary.total_original_size),
            format_size(summary.total_processed_size),
            format_ratio(summary.reduction_percentage),
        )
    console.print(table)

    if not entries:
        return

    detail = Table(title="文件明细")
    detail.add_column("时间")
    detail.add_column("原文件")
    detail.add_column("输出文件")
    detail.add_column("原始大小", justify="right")
    detail.add_column("处理后大小", justify="right")
    detail.add_column("缩减比例", justify="right")
    for summary in summaries:
        for entry in summary.entries:
            detail.add_row(
                entry.date.strftime("%Y-%m-%d %H:%M:%S"),
                str(entry.input_file),
                entry.processed_file_name or "-",
                format_size(entry.original_size),
                format_size(entry.processed_size),
                format_ratio(entry.reduction_percentage),
            )
    console.print(detail)


@log_app.command("export")
def export_log(
    destination: Path = typer.Argument(..., help="导出的 CSV 文件路径"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="处理记录文件"),
) -> None:
    """将处理记录导出为 CSV。"""

    recorder = LogRecorder(_resolve_log_path(log_file))
    entries = recorder.read_entries()
    report_path = write_csv_report(entries, destination.expanduser().resolve())
    typer.echo(f"已导出 {len(entries)} 条记录：{report_path}")


@log_app.command("clear")
def clear_log(
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="处理记录文件"),
    yes: bool = typer.Option(False, "--yes", "-y", help="跳过确认"),
) -> None:
    """清空全部处理记录。"""

    if not yes:
        typer.confirm("确定要清空全部处理记录吗？", abort=True)
    LogRecorder(_resolve_log_path(log_file)).clear()
    typer.echo("处理记录已清空。")


if __name__ == "__main__":
    app()
