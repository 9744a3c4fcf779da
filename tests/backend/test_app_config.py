from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from backend.app.config import AppConfig, ConfigError, SankeyConfig, load_config


def test_config_loads_expected_structure() -> None:
    config = load_config()
    assert isinstance(config, AppConfig)
    assert config.pipeline.version == "1.0.0"
    assert config.telemetry.event_type == "ipfix"
    assert config.telemetry.measure == "sum(octetDeltaCount * 64000)"
    assert config.telemetry.device_facet == "agent"
    assert config.telemetry.destination_facet == "destinationIPv4Address"
    assert config.telemetry.interval_seconds == 30
    assert config.telemetry.limit == 50
    assert len(config.sankey.palette) == 10
    assert config.sankey.focused_link_opacity == 0.6
    assert config.sankey.blurred_link_opacity == 0.3
    assert config.sankey.default_peer_by == "peerName"
    assert config.ui.height == 650
    assert config.ui.width == 700


def _write_config(tmp_path: Path, mutate) -> Path:
    raw = yaml.safe_load(AppConfig.default_path().read_text(encoding="utf-8"))
    mutate(raw)
    target = tmp_path / "config.yaml"
    target.write_text(yaml.safe_dump(raw), encoding="utf-8")
    return target


def test_env_overrides_api_key_and_account(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLOWVIEW_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("FLOWVIEW_API_KEY", "from-env")
    monkeypatch.setenv("FLOWVIEW_ACCOUNT_ID", "987")
    path = _write_config(tmp_path, lambda raw: None)

    config = load_config(path)

    assert config.telemetry.api_key == "from-env"
    assert config.telemetry.account_id == 987


def test_env_file_is_loaded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # blank values are overwritten by the env file and restored by monkeypatch
    for key in ("FLOWVIEW_API_KEY", "NEW_RELIC_API_KEY", "FLOWVIEW_ACCOUNT_ID"):
        monkeypatch.setenv(key, "")
    env_file = tmp_path / ".env"
    env_file.write_text("export NEW_RELIC_API_KEY='quoted-key'\n# comment\n", encoding="utf-8")
    monkeypatch.setenv("FLOWVIEW_ENV_FILE", str(env_file))
    path = _write_config(tmp_path, lambda raw: raw["pipeline"].update({"version": "2.0.0"}))

    config = load_config(path)

    assert config.telemetry.api_key == "quoted-key"
    assert config.pipeline.version == "2.0.0"


def test_missing_config_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")


def test_invalid_palette_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path, lambda raw: raw["sankey"].update({"palette": ["teal"]}))

    with pytest.raises(ConfigError, match="validation failed"):
        load_config(path)


def test_non_mapping_root_rejected(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(target)


def test_opacities_must_be_ordered() -> None:
    with pytest.raises(ValueError):
        SankeyConfig(palette=["#000000"], focused_link_opacity=0.2, blurred_link_opacity=0.5)
