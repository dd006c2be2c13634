from __future__ import annotations

import logging
import queue
import signal
import sys
import threading
import traceback

from dualsub.app.config import PipelineConfig, build_pipeline_config, resolve_args
from dualsub.app.diagnostics import hint_for_exception, summarize_exception
from dualsub.app.logging_setup import setup_app_logger
from dualsub.app.runtime import _drain_subtitle_bus, _preload_asr_runtime, _run_worker
from dualsub.app.state import RuntimeState, RuntimeStateTracker
from dualsub.audio.mic import SoundDeviceFrameSource
from dualsub.ui.bridge import ConsoleSink, SubtitleBus


def _report_error(detail: str, log_path) -> None:
    summary = summarize_exception(detail)
    print(f"Error: {summary}", file=sys.stderr)
    print(f"Hint: {hint_for_exception(summary)}", file=sys.stderr)
    print(f"Logs: {log_path}", file=sys.stderr)


def _run_console(config: PipelineConfig, logger: logging.Logger, log_path) -> int:
    sink = ConsoleSink(show_partials=config.display.show_partials)
    state = RuntimeStateTracker()
    try:
        _run_worker(config, sink, threading.Event(), state=state, logger=logger)
    except Exception:
        detail = traceback.format_exc()
        logger.exception("worker_crash")
        state.set_error(detail)
        _report_error(detail, log_path)
        return 1
    return 0


def _run_overlay(config: PipelineConfig, logger: logging.Logger, log_path) -> int:
    # Load ASR runtime stack before PyQt initializes to avoid Windows DLL init conflicts.
    try:
        _preload_asr_runtime()
    except Exception:
        logger.exception("asr_runtime_preload_failed")
        _report_error(traceback.format_exc(), log_path)
        return 1

    from PyQt6 import QtCore, QtWidgets
    from dualsub.ui.overlay_qt import OverlayConfig, SubtitleOverlay

    app = QtWidgets.QApplication(sys.argv)
    display = config.display
    overlay = SubtitleOverlay(
        OverlayConfig(
            show_en=display.show_en,
            max_lines=max(1, config.lifecycle.max_visible),
            font_size_ja=max(10, display.font_size_ja),
            font_size_en=max(8, display.font_size_en),
            padding_px=max(0, display.padding_px),
            bg_opacity=display.overlay_opacity,
        )
    )
    bus = SubtitleBus(maxsize=max(1, display.queue_maxsize))
    state = RuntimeStateTracker()
    stop_event = threading.Event()
    err_q: "queue.Queue[str]" = queue.Queue(maxsize=8)

    def _worker_entry() -> None:
        try:
            _run_worker(config, bus, stop_event, state=state, logger=logger)
        except Exception:
            err = traceback.format_exc()
            logger.exception("worker_crash")
            try:
                err_q.put_nowait(err)
            except queue.Full:
                pass

    worker = threading.Thread(target=_worker_entry, name="dualsub-pipeline-worker", daemon=True)

    exit_code = 0

    def _on_tick() -> None:
        nonlocal exit_code
        _drain_subtitle_bus(bus, overlay, max(1, display.max_updates_per_tick))
        try:
            err = err_q.get_nowait()
        except queue.Empty:
            return
        state.set_error(err)
        logger.error("worker_crash_reported", extra={"detail": err})
        _report_error(err, log_path)
        exit_code = 1
        app.quit()

    timer = QtCore.QTimer()
    timer.timeout.connect(_on_tick)
    timer.start(max(10, display.poll_ms))

    def _on_about_to_quit() -> None:
        logger.info("app_quit", extra={"state": state.state.value, "bus_dropped": bus.dropped})
        stop_event.set()

    overlay.escape_requested.connect(app.quit)
    app.aboutToQuit.connect(_on_about_to_quit)
    signal.signal(signal.SIGINT, lambda *_: app.quit())

    overlay.show()
    worker.start()
    print("dualsub overlay running. Press Esc on the overlay to quit.")
    print(f"Logs: {log_path}")
    rc = app.exec()
    worker.join(timeout=5.0)
    if state.state == RuntimeState.ERROR:
        return exit_code or 1
    return rc


def main(argv: list[str] | None = None) -> int:
    args = resolve_args(argv)
    logger, _log_dir, log_path = setup_app_logger(level=logging.DEBUG if args.debug else logging.INFO)
    logger.info("app_start", extra={"config_path": str(getattr(args, "config", "")), "argv": argv or []})

    if args.list_devices:
        print(SoundDeviceFrameSource.list_devices())
        return 0

    try:
        config = build_pipeline_config(args)
    except ValueError as e:
        logger.error("config_invalid", extra={"error": str(e)})
        _report_error(f"ValueError: {e}", log_path)
        return 2

    if config.display.overlay:
        return _run_overlay(config, logger, log_path)
    return _run_console(config, logger, log_path)


if __name__ == "__main__":
    raise SystemExit(main())
