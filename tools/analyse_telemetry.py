"""
Analyse IntegerPID bench runs.

Reads a run folder (containing log.csv and optional config.yaml) or a flat
CSV file. Computes step-response statistics and produces matplotlib plots.

Usage:
    python tools/analyse_telemetry.py runs/2026-10-18_13-39-35/
    python tools/analyse_telemetry.py runs/log.csv
    python tools/analyse_telemetry.py run_a/ run_b/   # side-by-side comparison

Plots (single figure with subplots):
    1. Tracking: setpoint vs measurement
    2. Error: setpoint minus measurement
    3. PID terms: P, I, D components
    4. Controller output, with output limits

Statistics (printed to console):
    Sample rate, duration, tracking error (MAE/RMS/max/bias), overshoot,
    settling time, steady-state error, saturation count, oscillation
    frequency, integral windup events.
"""

import csv
import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import yaml

# Settling band as a fraction of the step size
SETTLE_BAND = 0.02


# ---------------------------------------------------------------------------
# Data loading
# ---------------------------------------------------------------------------

def resolve_run(path_str):
    """Resolve a CLI argument to (csv_path, config_dict_or_None, label).

    Accepts:
      - directory containing log.csv (+ optional config.yaml)
      - direct path to a .csv file (looks for config.yaml in same dir)
    """
    p = Path(path_str)
    if p.is_dir():
        csv_path = p / "log.csv"
        cfg_path = p / "config.yaml"
        label = p.name
    else:
        csv_path = p
        cfg_path = p.parent / "config.yaml"
        label = p.stem
    if not csv_path.exists():
        sys.exit(f"CSV not found: {csv_path}")
    config = load_config(cfg_path) if cfg_path.exists() else None
    return csv_path, config, label


def load_config(path):
    """Load config.yaml into a dict."""
    with open(path) as f:
        return yaml.safe_load(f)


def load_csv(path):
    """Load telemetry CSV into a dict of numpy arrays."""
    rows = []
    with open(path, newline="") as f:
        reader = csv.DictReader(f)
        for r in reader:
            rows.append(r)
    if not rows:
        sys.exit(f"Empty CSV: {path}")
    cols = {}
    for key in rows[0]:
        cols[key] = np.array([float(r[key]) for r in rows])
    return cols


def output_limits(config):
    """Return (out_min, out_max) from config, or (None, None)."""
    if not config or "pid" not in config:
        return None, None
    return config["pid"].get("out_min"), config["pid"].get("out_max")


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def settling_time_s(t_s, meas, setpoint, start):
    """Time after which meas stays within SETTLE_BAND of the step, or None."""
    band = max(abs(setpoint - start) * SETTLE_BAND, 1.0)
    outside = np.nonzero(np.abs(setpoint - meas) > band)[0]
    if len(outside) == 0:
        return 0.0
    last = outside[-1]
    if last == len(meas) - 1:
        return None
    return t_s[last + 1]


def compute_stats(cols, config):
    """Compute all diagnostic metrics from telemetry columns."""
    n = len(cols["T_MS"])
    if n < 2:
        return None

    t_ms = cols["T_MS"]
    t_s = (t_ms - t_ms[0]) / 1000.0
    setpoint = cols["SETPOINT"]
    meas = cols["MEASUREMENT"]
    out = cols["PID_OUT"]

    # --- Sample rate ---
    duration_s = (t_ms[-1] - t_ms[0]) / 1000.0
    actual_hz = (n - 1) / duration_s if duration_s > 0 else 0
    dts = np.diff(t_ms)

    # --- Tracking error ---
    errors = setpoint - meas
    abs_errors = np.abs(errors)

    # --- Step response (against the final setpoint) ---
    target = setpoint[-1]
    start = meas[0]
    step = target - start
    if step != 0:
        peak = np.max((meas - start) * np.sign(step))
        overshoot_pct = max(0.0, (peak - abs(step)) / abs(step) * 100)
    else:
        overshoot_pct = 0.0
    settle = settling_time_s(t_s, meas, target, start)
    tail = abs_errors[-max(1, n // 10):]
    steady_state_error = float(np.mean(tail))

    # --- Saturation ---
    out_min, out_max = output_limits(config)
    if out_min is not None and out_max is not None:
        saturated = int(np.sum((out <= out_min) | (out >= out_max)))
    else:
        saturated = 0

    # --- Oscillation frequency (zero-crossing rate of error signal) ---
    sign_changes = np.diff(np.sign(errors))
    zero_crossings = np.sum(sign_changes != 0)
    osc_freq = zero_crossings / (2.0 * duration_s) if duration_s > 0 else 0

    # --- Integral windup events ---
    if out_max is not None and out_min is not None:
        windup_threshold = max(abs(out_min), abs(out_max)) * 0.5
    else:
        windup_threshold = float(np.max(np.abs(out))) * 0.5
    windup_events = np.sum(np.abs(cols["I"]) > windup_threshold)

    return {
        "n_samples": n,
        "duration_s": duration_s,
        "actual_hz": actual_hz,
        "dt_mean_ms": float(np.mean(dts)),
        "dt_median_ms": float(np.median(dts)),
        "mae": float(np.mean(abs_errors)),
        "rms_error": float(np.sqrt(np.mean(errors ** 2))),
        "max_ae": float(np.max(abs_errors)),
        "bias": float(np.mean(errors)),
        "overshoot_pct": float(overshoot_pct),
        "settling_s": settle,
        "steady_state_error": steady_state_error,
        "saturated": saturated,
        "osc_freq_hz": float(osc_freq),
        "windup_events": int(windup_events),
        "windup_threshold": float(windup_threshold),
    }


# ---------------------------------------------------------------------------
# Printing
# ---------------------------------------------------------------------------

def print_config_summary(config, label):
    """Print key config values."""
    if config is None:
        print(f"  (no config.yaml for {label})")
        return
    pid = config.get("pid", {})
    plant = config.get("plant", {})
    print(f"  PID: kp={pid.get('kp')}, ki={pid.get('ki')}, kd={pid.get('kd')}, "
          f"setpoint={pid.get('setpoint')}, hz={pid.get('hz')}, mode={pid.get('mode')}")
    print(f"  Limits: [{pid.get('out_min')}, {pid.get('out_max')}]")
    print(f"  Plant: gain={plant.get('gain')}, tau_ms={plant.get('tau_ms')}")


def _fmt(value, fmt):
    if value is None:
        return "n/a"
    return format(value, fmt)


_ROWS = [
    ("--- Sample Rate ---", None, None),
    ("Samples", "n_samples", ".0f"),
    ("Duration (s)", "duration_s", ".1f"),
    ("Achieved Hz", "actual_hz", ".1f"),
    ("Mean dt (ms)", "dt_mean_ms", ".1f"),
    ("Median dt (ms)", "dt_median_ms", ".1f"),
    ("--- Tracking Error ---", None, None),
    ("MAE", "mae", ".2f"),
    ("Max AE", "max_ae", ".2f"),
    ("RMS Error", "rms_error", ".2f"),
    ("Bias (SP-PV)", "bias", ".2f"),
    ("--- Step Response ---", None, None),
    ("Overshoot (%)", "overshoot_pct", ".1f"),
    ("Settling time (s)", "settling_s", ".2f"),
    ("Steady-state error", "steady_state_error", ".2f"),
    ("--- Saturation, Oscillation & Windup ---", None, None),
    ("Saturated samples", "saturated", ".0f"),
    ("Oscillation freq (Hz)", "osc_freq_hz", ".2f"),
    ("Windup events", "windup_events", ".0f"),
    ("Windup threshold", "windup_threshold", ".1f"),
]


def print_report(runs):
    """Print a stats table for one run, or two runs side by side.

    runs is a list of (label, stats, config).
    """
    w = 50 + 15 * len(runs)
    print("=" * w)
    print(f"  {'Metric':<35}" + "".join(f" {label:>12}  " for label, _, _ in runs))
    print("-" * w)
    for label, _, config in runs:
        print(f"  {label}:")
        print_config_summary(config, label)

    for name, key, fmt in _ROWS:
        if key is None:
            print(f"\n  {name}")
        else:
            cells = "".join(f" {_fmt(stats[key], fmt):>12}  " for _, stats, _ in runs)
            print(f"  {name:<35}{cells}")
    print("=" * w)


# ---------------------------------------------------------------------------
# Plotting
# ---------------------------------------------------------------------------

def plot_run(cols, config, label, axes=None):
    """Plot 4 diagnostic subplots for a single run.

    If axes is provided (list of 4 Axes), plot onto them. Otherwise create a
    new figure.
    """
    t_ms = cols["T_MS"]
    t_s = (t_ms - t_ms[0]) / 1000.0

    own_figure = axes is None
    if own_figure:
        fig, axes = plt.subplots(4, 1, figsize=(12, 9), sharex=True)
        fig.suptitle(f"IntegerPID bench: {label}", fontsize=13)

    ax1, ax2, ax3, ax4 = axes

    # 1. Tracking
    ax1.plot(t_s, cols["SETPOINT"], label="Setpoint", linewidth=0.8, linestyle="--")
    ax1.plot(t_s, cols["MEASUREMENT"], label="Measurement", linewidth=0.8)
    ax1.set_ylabel("Value")
    ax1.set_title("Tracking")
    ax1.legend(loc="lower right", fontsize=8)
    ax1.grid(True, alpha=0.3)

    # 2. Error
    ax2.plot(t_s, cols["ERR"], linewidth=0.8, color="tab:red")
    ax2.axhline(0, color="gray", linewidth=0.5, linestyle="--")
    ax2.set_ylabel("Error")
    ax2.set_title("Error (Setpoint - Measurement)")
    ax2.grid(True, alpha=0.3)

    # 3. PID terms
    ax3.plot(t_s, cols["P"], label="P", linewidth=0.8)
    ax3.plot(t_s, cols["I"], label="I", linewidth=0.8)
    ax3.plot(t_s, cols["D"], label="D", linewidth=0.8)
    ax3.set_ylabel("Term")
    ax3.set_title("PID Terms")
    ax3.legend(loc="upper right", fontsize=8)
    ax3.grid(True, alpha=0.3)

    # 4. Output
    ax4.plot(t_s, cols["PID_OUT"], linewidth=0.8, color="tab:green")
    out_min, out_max = output_limits(config)
    for limit in (out_min, out_max):
        if limit is not None:
            ax4.axhline(limit, color="gray", linewidth=0.5, linestyle=":")
    ax4.set_ylabel("Output")
    ax4.set_xlabel("Time (s)")
    ax4.set_title("Controller Output")
    ax4.grid(True, alpha=0.3)

    if own_figure:
        fig.tight_layout()
    return axes


def plot_comparison(runs):
    """Plot two runs side by side (2 columns of 4 subplots)."""
    fig, axes = plt.subplots(4, 2, figsize=(16, 10), sharex="col")
    for col_idx, (cols, config, label) in enumerate(runs):
        col_axes = [axes[row][col_idx] for row in range(4)]
        plot_run(cols, config, label, axes=col_axes)
        axes[0][col_idx].set_title(f"{label}\nTracking", fontsize=10)
    fig.suptitle("IntegerPID bench: Run Comparison", fontsize=13)
    fig.tight_layout()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    args = [a for a in argv if not a.startswith("--")]
    save_mode = "--save" in argv

    if len(args) not in (1, 2):
        print("Usage: python tools/analyse_telemetry.py [--save] <run_folder_or_csv> [run_b]")
        print("  --save   Save plot as PNG next to the first log.csv instead of showing it")
        sys.exit(1)

    runs = []
    for arg in args:
        csv_path, config, label = resolve_run(arg)
        cols = load_csv(csv_path)
        stats = compute_stats(cols, config)
        if stats is None:
            sys.exit(f"Not enough samples in {csv_path}")
        runs.append((cols, config, label, stats, csv_path))
        print(f"Loaded {label}: {stats['n_samples']} samples, "
              f"{stats['duration_s']:.1f}s")

    print()

    print_report([(label, stats, config) for _, config, label, stats, _ in runs])
    if len(runs) == 1:
        cols, config, label, _, _ = runs[0]
        plot_run(cols, config, label)
    else:
        plot_comparison([(cols, config, label) for cols, config, label, _, _ in runs])

    if save_mode:
        out_path = runs[0][4].parent / "plot.png"
        plt.gcf().savefig(out_path, dpi=150, bbox_inches="tight")
        plt.close("all")
        print(f"Saved: {out_path}")
    else:
        plt.show()


if __name__ == "__main__":
    main()
