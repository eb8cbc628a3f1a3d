import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def now():
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clean_env(monkeypatch):
    for var in (
        "AI_BACKEND_URL",
        "AI_EVALUATOR_TIMEOUT",
        "ENABLE_AI_EVALUATOR",
        "TOPIC_SELECTOR_MAX_WORKERS",
    ):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch
