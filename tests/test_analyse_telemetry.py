import os

import numpy as np
import pytest

import analyse_telemetry as at
import bench


def _cols(meas, setpoint=100.0, out=None, i_term=None, dt_ms=20.0):
    meas = np.asarray(meas, dtype=float)
    n = len(meas)
    sp = np.full(n, setpoint)
    return {
        "T_MS": np.arange(n) * dt_ms,
        "SETPOINT": sp,
        "MEASUREMENT": meas,
        "ERR": sp - meas,
        "P": np.zeros(n),
        "I": np.zeros(n) if i_term is None else np.asarray(i_term, dtype=float),
        "D": np.zeros(n),
        "PID_OUT": np.zeros(n) if out is None else np.asarray(out, dtype=float),
    }


@pytest.fixture
def run_dir(tmp_path):
    return bench.main(["--out", str(tmp_path)])


def test_step_response_metrics():
    meas = [0, 50, 90, 110, 105, 100, 100, 100, 100, 100]
    stats = at.compute_stats(_cols(meas), None)
    assert stats["n_samples"] == 10
    assert stats["actual_hz"] == pytest.approx(50.0)
    assert stats["overshoot_pct"] == pytest.approx(10.0)
    assert stats["settling_s"] == pytest.approx(0.1)
    assert stats["steady_state_error"] == 0.0
    assert stats["max_ae"] == 100.0


def test_unsettled_run_has_no_settling_time():
    stats = at.compute_stats(_cols([0, 20, 40, 60, 80]), None)
    assert stats["settling_s"] is None
    assert stats["overshoot_pct"] == 0.0


def test_saturation_and_windup_use_config_limits():
    config = {"pid": {"out_min": -10, "out_max": 10}}
    cols = _cols([0, 0, 0, 0], out=[10, 10, 3, -10], i_term=[0, 6, 8, 2])
    stats = at.compute_stats(cols, config)
    assert stats["saturated"] == 3
    assert stats["windup_threshold"] == 5.0
    assert stats["windup_events"] == 2


def test_too_few_samples():
    assert at.compute_stats(_cols([0]), None) is None


def test_resolve_and_load_bench_run(run_dir):
    csv_path, config, label = at.resolve_run(run_dir)
    assert csv_path.name == "log.csv"
    assert label == os.path.basename(run_dir)
    assert config["pid"]["kp"] == bench.KP

    cols = at.load_csv(csv_path)
    stats = at.compute_stats(cols, config)
    assert stats["n_samples"] == 500
    assert stats["actual_hz"] == pytest.approx(bench.PID_HZ)
    assert stats["saturated"] >= 1


def test_resolve_missing_csv(tmp_path):
    with pytest.raises(SystemExit):
        at.resolve_run(str(tmp_path))


def test_main_saves_plot(run_dir, capsys):
    at.main(["--save", run_dir])
    assert os.path.exists(os.path.join(run_dir, "plot.png"))
    out = capsys.readouterr().out
    assert "Overshoot (%)" in out
    assert "Saved:" in out


def test_main_usage():
    with pytest.raises(SystemExit):
        at.main([])


def test_main_compares_two_runs(tmp_path, capsys):
    run_a = bench.main(["--out", str(tmp_path / "a")])
    cfg_path = tmp_path / "cfg.yaml"
    cfg_path.write_text("pid: {kp: 1.0}\n")
    run_b = bench.main(["--config", str(cfg_path), "--out", str(tmp_path / "b")])
    capsys.readouterr()

    at.main(["--save", run_a, run_b])
    out = capsys.readouterr().out
    assert os.path.basename(run_a) in out
    assert "kp=1.0" in out
    assert os.path.exists(os.path.join(run_a, "plot.png"))


def test_main_rejects_more_than_two_runs(run_dir):
    with pytest.raises(SystemExit):
        at.main([run_dir, run_dir, run_dir])
