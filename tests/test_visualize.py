from cache import Geometry
from replay import SimulationSummary
from visualize import plot_outcomes, plot_sweep


def test_plot_outcomes_creates_directory(tmp_path):
    out = tmp_path / "results" / "outcomes.png"
    plot_outcomes(SimulationSummary(Geometry(s=4, b=4, E=1), 4, 5, 3), str(out))
    assert out.stat().st_size > 0


def test_plot_outcomes_in_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    plot_outcomes(SimulationSummary(Geometry(s=1, b=1, E=1), 0, 0, 0), "empty.png")
    assert (tmp_path / "empty.png").exists()


def test_plot_sweep(tmp_path):
    summaries = [
        SimulationSummary(Geometry(s=4, b=4, E=1), 4, 5, 3),
        SimulationSummary(Geometry(s=4, b=4, E=2), 4, 5, 2),
    ]
    out = tmp_path / "sweep.png"
    plot_sweep(summaries, str(out))
    assert out.stat().st_size > 0
