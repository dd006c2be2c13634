from __future__ import annotations

import json
import logging
from pathlib import Path

from dualsub.app import config as app_config
from dualsub.app.logging_setup import log_event, setup_app_logger


def test_setup_app_logger_writes_json_line(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(app_config, "user_config_dir", lambda appname, appauthor=None: str(tmp_path))
    logger, log_dir, log_path = setup_app_logger("dualsub.test")

    log_event(logger, logging.INFO, "segment_emitted", segment_id=7, duration=1.25)
    for h in logger.handlers:
        h.flush()

    assert log_dir == tmp_path / "logs"
    lines = [ln for ln in log_path.read_text(encoding="utf-8").splitlines() if ln.strip()]
    payload = json.loads(lines[-1])
    assert payload["message"] == "segment_emitted"
    assert payload["segment_id"] == 7
    assert payload["duration"] == 1.25
    assert payload["level"] == "INFO"

    for h in logger.handlers:
        h.close()
    logging.getLogger("dualsub.test").handlers.clear()


def test_log_event_without_logger_is_noop() -> None:
    log_event(None, logging.ERROR, "ignored", value=1)
