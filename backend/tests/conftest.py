from __future__ import annotations

import copy
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from tracker.core.config import Settings


@pytest.fixture
def sample_event_payload() -> dict[str, object]:
    path = Path(__file__).parent / "data" / "sample_event.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def resolved_event_payload(sample_event_payload) -> dict[str, object]:
    """The sample event after the binary market settled on Yes."""

    payload = copy.deepcopy(sample_event_payload)
    payload["closed"] = True
    payload["markets"] = [dict(payload["markets"][0])]
    market = payload["markets"][0]
    market["closed"] = True
    market["outcomePrices"] = '["1", "0"]'
    market["closedTime"] = "2024-12-18T19:05:12Z"
    return payload


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        ingestion_page_size=5,
        database_url=f"sqlite:///{tmp_path/'tracker.db'}",
        log_file="",
        enable_realtime=False,
        enable_scheduler=False,
        request_min_interval_seconds=0,
        request_retry_delay_seconds=0,
    )
    monkeypatch.setattr("tracker.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("tracker.core.config.settings", settings)
    return settings
