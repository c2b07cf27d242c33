from pathlib import Path

import matplotlib
import pytest

matplotlib.use("Agg")

TRACES = Path(__file__).resolve().parent.parent / "traces"


@pytest.fixture
def yi_trace():
    return str(TRACES / "yi.trace")


@pytest.fixture
def mixed_trace():
    return str(TRACES / "mixed.trace")
