from __future__ import annotations

import dataclasses
import json
from argparse import Namespace
from pathlib import Path

import pytest

from dualsub.app import config as app_config


def test_load_default_config_contains_expected_keys() -> None:
    cfg = app_config.load_default_config()
    assert cfg["translator"] in {"stub", "argos"}
    assert cfg["min_duration"] == 0.5
    assert cfg["max_duration"] == 6.0
    assert cfg["cache_size"] == 1000
    assert cfg["profiles"] == []


def test_resolve_defaults_uses_explicit_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "explicit.json"
    cfg_path.write_text(json.dumps({"sr": 48000, "accurate_model": "base"}), encoding="utf-8")
    defaults, used = app_config.resolve_defaults(str(cfg_path))
    assert used == cfg_path
    assert defaults["sr"] == 48000
    assert defaults["accurate_model"] == "base"


def test_missing_explicit_config_exits(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        app_config.load_user_config(str(tmp_path / "nope.json"))


def test_ensure_user_config_exists_creates_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(app_config, "user_config_dir", lambda appname, appauthor=None: str(tmp_path))
    created = app_config.ensure_user_config_exists({"translator": "stub", "sr": 16000})
    assert created == tmp_path / "config.json"
    loaded = json.loads(created.read_text(encoding="utf-8"))
    assert loaded["translator"] == "stub"


def test_load_user_config_ignores_unknown_keys(tmp_path: Path) -> None:
    cfg_path = tmp_path / "user.json"
    cfg_path.write_text(json.dumps({"sr": 48000, "unexpected": 1}), encoding="utf-8")
    loaded, _ = app_config.load_user_config(str(cfg_path))
    assert loaded["sr"] == 48000
    assert "unexpected" not in loaded


def test_build_pipeline_config_snapshot(tmp_path: Path) -> None:
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(
        json.dumps(
            {
                "active_profile": "rpg",
                "profiles": [
                    {
                        "name": "rpg",
                        "hotwords": ["Whiterun"],
                        "initial_prompt": "Fantasy game.",
                        "asr_corrections": {"dragon bourne": "Dragonborn"},
                        "pre_translation": {"HP": "health"},
                        "post_translation": {"ヘルス": "HP"},
                    }
                ],
                "fast_workers": 3,
            }
        ),
        encoding="utf-8",
    )
    args = app_config.resolve_args(["--config", str(cfg_path), "--max-visible", "2", "--language-lock", "auto"])
    cfg = app_config.build_pipeline_config(args)
    assert cfg.lifecycle.max_visible == 2
    assert cfg.dispatcher.fast_workers == 3
    assert cfg.asr.language is None
    assert cfg.profile.name == "rpg"
    assert tuple(cfg.profile.hotwords) == ("Whiterun",)
    assert cfg.profile.post_translation["ヘルス"] == "HP"
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.lifecycle.max_visible = 5  # type: ignore[misc]
    with pytest.raises(TypeError):
        cfg.profile.pre_translation["x"] = "y"  # type: ignore[index]


def test_unknown_profile_rejected() -> None:
    args = Namespace(active_profile="missing", profiles=[{"name": "other"}])
    with pytest.raises(ValueError):
        app_config.build_pipeline_config(args)


def test_default_profile_without_profiles() -> None:
    cfg = app_config.build_pipeline_config(Namespace())
    assert cfg.profile.name == "default"
    assert cfg.translation.target_lang == "ja"
    assert cfg.dispatcher.carry_context is True
