"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from heif_converter.core.config import ConverterConfig, validate_config
from heif_converter.core.exceptions import InvalidConfigurationError
from heif_converter.core.progress import ProgressUpdate
from heif_converter.core.report import write_csv_report
from heif_converter.processing.coordinator import ConversionCoordinator
from heif_converter.utils.logging import setup_logging

app = typer.Typer(help="批量将 JPG/PNG 转换为 HEIC，并同步更新 Contents.json 清单。")


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if task_id is None:
            task_id = progress.add_task("转换图片", total=update.total or None)
        progress.update(task_id, completed=update.processed, total=update.total or None)

    return callback


@app.command("run")
def run_cli(
    paths: List[Path] = typer.Argument(..., help="图片、Contents.json 或目录，可指定多个"),
    target: str = typer.Option("heic", "--target", "-t", help="目标格式 heic 或 heif"),
    quality: int = typer.Option(90, "--quality", "-q", help="编码质量 0~100"),
    max_workers: int = typer.Option(4, "--workers", "-w", help="并发线程数量"),
    skip_existing: bool = typer.Option(False, "--skip-existing", help="目标文件已存在时跳过"),
    preserve_metadata: bool = typer.Option(True, "--metadata/--no-metadata", help="是否保留 EXIF/ICC/XMP"),
    report: Optional[Path] = typer.Option(None, "--report", help="将处理结果写入 CSV 报告"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量转换。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    try:
        config = validate_config(
            ConverterConfig(
                target_extension=target,
                quality=quality,
                max_workers=max_workers,
                skip_existing=skip_existing,
                preserve_metadata=preserve_metadata,
            )
        )
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    sources = [p.expanduser().resolve() for p in paths]

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
    )

    with ConversionCoordinator(config) as coordinator, progress:
        coordinator.subscribe(_build_progress_callback(progress))
        coordinator.start_batch(sources)
        coordinator.wait()
        result = coordinator.result

    if result is None:
        typer.echo("没有需要处理的文件。")
        return

    typer.echo(
        f"处理完成：转换图片 {result.images_converted} 张，更新清单 {result.manifests_rewritten} 个，"
        f"跳过 {len(result.skipped)} 个，失败 {len(result.failed)} 个。"
    )
    for line in result.failure_summary():
        typer.echo(f"  失败: {line}", err=True)

    if report is not None:
        report_path = write_csv_report(result.all_outcomes(), report.expanduser().resolve())
        typer.echo(f"报告文件：{report_path}")

    if result.failed:
        raise typer.Exit(code=1)


@app.command("gui")
def run_gui_cli() -> None:
    """启动图形界面。"""

    from heif_converter.gui.app import run_gui

    run_gui()


if __name__ == "__main__":
    app()
