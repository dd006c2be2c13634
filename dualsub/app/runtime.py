from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from dualsub.app.config import PipelineConfig
from dualsub.app.logging_setup import log_event
from dualsub.app.services import PipelineServices, build_pipeline_services
from dualsub.app.state import RuntimeStateTracker
from dualsub.audio.frames import FrameSourceError
from dualsub.contracts import DisplayEvent
from dualsub.live.pipeline import SegmentPipeline
from dualsub.ui.bridge import SubtitleBus


def _drain_subtitle_bus(bus: SubtitleBus, overlay: Any, max_items: int) -> int:
    drained = 0
    while drained < max_items:
        event = bus.pop()
        if event is None:
            break
        overlay.add_event(event)
        drained += 1
    return drained


def _build_pipeline(
    config: PipelineConfig,
    services: PipelineServices,
    sink: Any,
    *,
    state: RuntimeStateTracker,
    logger: logging.Logger | None,
) -> SegmentPipeline:
    def _on_degraded(degraded: bool) -> None:
        state.set_degraded(degraded)
        log_event(logger, logging.WARNING if degraded else logging.INFO, "runtime_degraded", degraded=degraded)

    return SegmentPipeline(
        config=config,
        source=services.source,
        vad=services.vad,
        accurate=services.accurate,
        fast=services.fast,
        translator=services.translator,
        sink=sink,
        on_degraded=_on_degraded,
        logger=logger,
    )


def _run_worker(
    config: PipelineConfig,
    sink: Callable[[DisplayEvent], None] | Any,
    stop_event: threading.Event,
    *,
    state: Optional[RuntimeStateTracker] = None,
    logger: logging.Logger | None = None,
    services_factory: Callable[[PipelineConfig], PipelineServices] = build_pipeline_services,
) -> None:
    """
    Build and run one pipeline until its source ends or `stop_event` is set.
    A frame source failure marks the runtime as errored and propagates.
    """
    state = state or RuntimeStateTracker()
    state.set_starting()
    services = services_factory(config)
    pipeline = _build_pipeline(config, services, sink, state=state, logger=logger)

    def _watch_stop() -> None:
        stop_event.wait()
        pipeline.stop()

    threading.Thread(target=_watch_stop, name="dualsub-stop-watch", daemon=True).start()
    log_event(
        logger,
        logging.INFO,
        "worker_start",
        accurate=services.accurate.name,
        fast=services.fast.name if services.fast is not None else None,
        translator=services.translator.name,
        replay=config.audio.replay,
    )
    state.set_running()
    try:
        pipeline.run(drain=True)
    except FrameSourceError as e:
        state.set_error(str(e))
        raise
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "worker_keyboard_interrupt")
        pipeline.shutdown()
    finally:
        stop_event.set()
        log_event(logger, logging.INFO, "worker_stop", **pipeline.stats())
    state.set_stopped()


def _preload_asr_runtime() -> None:
    import ctranslate2  # noqa: F401
    from faster_whisper import WhisperModel  # noqa: F401
