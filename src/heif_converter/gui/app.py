"""Tkinter 图形界面实现。"""

from __future__ import annotations

import logging
import tkinter as tk
from pathlib import Path
from tkinter import filedialog, messagebox, ttk
from typing import Optional

from heif_converter.core.classifier import SELECTABLE_EXTENSIONS
from heif_converter.core.config import ConverterConfig
from heif_converter.core.models import BatchResult
from heif_converter.core.progress import ConverterState, ProgressUpdate
from heif_converter.processing.coordinator import ConversionCoordinator
from heif_converter.processing.dispatch import QueueDispatcher
from heif_converter.utils.logging import setup_logging

POLL_INTERVAL_MS = 100


class TextWidgetHandler(logging.Handler):
    """Logging handler that writes records into a Tk Text widget."""

    def __init__(self, widget: tk.Text) -> None:
        super().__init__()
        self._widget = widget

    def emit(self, record: logging.LogRecord) -> None:
        message = self.format(record)
        # Schedule UI update on main thread
        self._widget.after(0, self._write, message)

    def _write(self, message: str) -> None:
        if not self._widget.winfo_exists():
            return
        self._widget.configure(state=tk.NORMAL)
        self._widget.insert(tk.END, message + "\n")
        self._widget.configure(state=tk.DISABLED)
        self._widget.see(tk.END)


class ConverterApp(tk.Tk):
    """Tkinter 主窗口：选择文件、显示进度与完成状态。"""

    def __init__(self, config: Optional[ConverterConfig] = None) -> None:
        super().__init__()
        self.title("JPG to HEIF Converter")
        self.geometry("520x360")
        setup_logging()

        self._dispatcher = QueueDispatcher()
        self.coordinator = ConversionCoordinator(config, dispatcher=self._dispatcher)
        self.coordinator.subscribe(self._handle_progress)
        self.coordinator.subscribe_completion(self._handle_done)

        self._build_ui()
        self._log_handler = TextWidgetHandler(self.log_text)
        self._log_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(message)s"))
        self._log_handler.setLevel(logging.WARNING)
        logging.getLogger("heif_converter").addHandler(self._log_handler)

        self._apply_state(ConverterState.LAUNCHED)
        self.protocol("WM_DELETE_WINDOW", self._handle_close)
        self.after(POLL_INTERVAL_MS, self._poll_dispatcher)

    # ---------------------- UI 构建 ---------------------- #

    def _build_ui(self) -> None:
        container = ttk.Frame(self, padding=12)
        container.pack(fill=tk.BOTH, expand=True)

        btn_frame = ttk.Frame(container)
        btn_frame.pack(fill=tk.X)
        self.open_files_button = ttk.Button(btn_frame, text="选择文件", command=self._open_files)
        self.open_files_button.pack(side=tk.LEFT)
        self.open_folder_button = ttk.Button(btn_frame, text="选择目录", command=self._open_folder)
        self.open_folder_button.pack(side=tk.LEFT, padx=(8, 0))

        self.progress_var = tk.DoubleVar(value=0.0)
        self.progress_bar = ttk.Progressbar(container, variable=self.progress_var, maximum=1)
        self.progress_bar.pack(fill=tk.X, pady=(12, 4))

        self.status_var = tk.StringVar(value="")
        self.status_label = ttk.Label(container, textvariable=self.status_var)
        self.status_label.pack(anchor=tk.W)

        self.log_text = tk.Text(container, height=10, state=tk.DISABLED)
        self.log_text.pack(fill=tk.BOTH, expand=True, pady=(8, 0))

    # ---------------------- 事件处理 ---------------------- #

    def _open_files(self) -> None:
        patterns = " ".join(f"*{ext}" for ext in SELECTABLE_EXTENSIONS)
        filenames = filedialog.askopenfilenames(title="选择图片或清单", filetypes=[("支持的文件", patterns)])
        self._start([Path(name) for name in filenames])

    def _open_folder(self) -> None:
        # Tk 的对话框无法同时选择文件与目录
        directory = filedialog.askdirectory(title="选择目录")
        if directory:
            self._start([Path(directory)])

    def _start(self, paths: list[Path]) -> None:
        if not paths:
            return
        if self.coordinator.start_batch(paths):
            self._apply_state(ConverterState.CONVERTING)

    def _poll_dispatcher(self) -> None:
        try:
            self._dispatcher.drain()
        finally:
            self.after(POLL_INTERVAL_MS, self._poll_dispatcher)

    def _handle_progress(self, update: ProgressUpdate) -> None:
        self.progress_bar.configure(maximum=max(update.total, 1))
        self.progress_var.set(update.processed)
        self.status_var.set(update.label)
        self._apply_state(update.state)

    def _handle_done(self, result: BatchResult) -> None:
        failures = result.failure_summary()
        if failures:
            messagebox.showwarning("部分失败", f"{len(failures)} 个文件处理失败：\n" + "\n".join(failures[:10]))

    def _apply_state(self, state: ConverterState) -> None:
        busy = state is ConverterState.CONVERTING
        button_state = tk.DISABLED if busy else tk.NORMAL
        self.open_files_button.configure(state=button_state)
        self.open_folder_button.configure(state=button_state)

        if state is ConverterState.LAUNCHED:
            self.progress_bar.pack_forget()
            self.status_label.pack_forget()
        elif not self.progress_bar.winfo_ismapped():
            self.progress_bar.pack(fill=tk.X, pady=(12, 4), before=self.log_text)
            self.status_label.pack(anchor=tk.W, before=self.log_text)

    def _handle_close(self) -> None:
        if self.coordinator.state is ConverterState.CONVERTING:
            if not messagebox.askokcancel("提示", "转换仍在进行，关闭窗口会等待剩余任务结束。继续吗？"):
                return
        logging.getLogger("heif_converter").removeHandler(self._log_handler)
        self.coordinator.close()
        self.destroy()


def run_gui() -> None:
    """启动 GUI 应用。"""

    app = ConverterApp()
    app.mainloop()


if __name__ == "__main__":
    run_gui()
