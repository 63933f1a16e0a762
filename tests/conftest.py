from __future__ import annotations

from pathlib import Path

import pytest

from dashsync.config import CONFIG_ENV_OVERRIDES


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("DASHSYNC_CONFIG", str(tmp_path / "config" / "config.json"))
