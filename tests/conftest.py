import json
from pathlib import Path

import pytest

SAMPLE_PLAN = Path(__file__).resolve().parent.parent / "sample_plan.json"


@pytest.fixture
def sample_plan_path() -> Path:
    return SAMPLE_PLAN


@pytest.fixture
def sample_plan_dict() -> dict:
    return json.loads(SAMPLE_PLAN.read_text(encoding="utf-8"))
