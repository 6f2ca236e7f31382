"""
Simulated test bench for IntegerPID.

Closes the loop around a first-order integer plant in simulated time, so two
runs with the same config produce identical telemetry. Each run lands in its
own directory (log.csv + config.yaml) for tools/analyse_telemetry.py.

Usage:
    python bench.py [--config cfg.yaml] [--out runs/] [--verbose]
"""

import copy
import logging
import sys
from datetime import timedelta

import yaml

from intpid import IntegerPID, MinMaxError, trunc_div
from recorder import FileSink, TelemetryRecorder

logger = logging.getLogger(__name__)

# =====================================================
# Defaults
# =====================================================
# Controller
KP = 2.0
KI = 0.5
KD = 0.1
SETPOINT = 1000
OUT_MIN = -500
OUT_MAX = 500

# Control loop timing
PID_HZ = 50

# Plant: steady state = gain * u, time constant tau
PLANT_GAIN = 4.0
PLANT_TAU_MS = 400
PLANT_INITIAL = 0

RUN_DURATION_S = 10.0

# Telemetry decimation: 1=every cycle, N=every Nth
TELEMETRY_SAMPLE_EVERY = 1

OUT_DIR = "runs"

MODES = ("duration", "const")

DEFAULT_CONFIG = {
    "pid": {
        "kp": KP,
        "ki": KI,
        "kd": KD,
        "setpoint": SETPOINT,
        "out_min": OUT_MIN,
        "out_max": OUT_MAX,
        "hz": PID_HZ,
        "mode": "duration",
    },
    "plant": {
        "gain": PLANT_GAIN,
        "tau_ms": PLANT_TAU_MS,
        "initial": PLANT_INITIAL,
    },
    "run": {
        "duration_s": RUN_DURATION_S,
    },
    "telemetry": {
        "sample_every": TELEMETRY_SAMPLE_EVERY,
    },
}


class FirstOrderPlant:
    """Integer first-order lag: value approaches gain * u with time constant tau_ms."""

    def __init__(self, gain, tau_ms, initial=0):
        if tau_ms <= 0:
            raise ValueError("tau_ms must be positive, got {}".format(tau_ms))
        self.gain = gain
        self.tau_ms = tau_ms
        self.value = int(initial)

    def step(self, u, dt_ms):
        """Advance dt_ms with input u (implicit Euler, stable for any dt)."""
        target = int(self.gain * u)
        self.value += trunc_div((target - self.value) * dt_ms, self.tau_ms + dt_ms)
        return self.value


# =====================================================
# Configuration
# =====================================================

def merge_config(overrides):
    """Return DEFAULT_CONFIG with overrides applied section by section.

    Raises ValueError on unknown sections or keys and on values the bench
    cannot run, MinMaxError when pid.out_min > pid.out_max.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in (overrides or {}).items():
        if section not in config:
            raise ValueError("unknown config section: {}".format(section))
        for key, value in (values or {}).items():
            if key not in config[section]:
                raise ValueError("unknown config key: {}.{}".format(section, key))
            config[section][key] = value
    _validate(config)
    return config


def _validate(config):
    pid_cfg = config["pid"]
    if pid_cfg["mode"] not in MODES:
        raise ValueError("pid.mode must be one of {}, got {!r}".format(
            MODES, pid_cfg["mode"]))
    hz = pid_cfg["hz"]
    # the loop runs on a whole number of milliseconds
    if not isinstance(hz, int) or not 1 <= hz <= 1000 or 1000 % hz:
        raise ValueError("pid.hz must divide 1000, got {!r}".format(hz))
    if pid_cfg["out_min"] > pid_cfg["out_max"]:
        raise MinMaxError(pid_cfg["out_min"], pid_cfg["out_max"])
    if config["plant"]["tau_ms"] <= 0:
        raise ValueError("plant.tau_ms must be positive, got {!r}".format(
            config["plant"]["tau_ms"]))
    if config["telemetry"]["sample_every"] < 1:
        raise ValueError("telemetry.sample_every must be >= 1, got {!r}".format(
            config["telemetry"]["sample_every"]))
    if config["run"]["duration_s"] < 0:
        raise ValueError("run.duration_s must not be negative, got {!r}".format(
            config["run"]["duration_s"]))


def load_config(path):
    """Load a YAML run config and merge it over the defaults."""
    with open(path) as f:
        return merge_config(yaml.safe_load(f))


def build_controller(pid_cfg):
    """Create an IntegerPID from the pid section of a config."""
    return (IntegerPID(pid_cfg["kp"], pid_cfg["ki"], pid_cfg["kd"])
            .set(pid_cfg["setpoint"])
            .set_output_limits(pid_cfg["out_min"], pid_cfg["out_max"]))


# =====================================================
# Run
# =====================================================

def run(config, sink=None):
    """Run one closed-loop session, recording telemetry. Returns (pid, plant)."""
    pid_cfg = config["pid"]
    plant_cfg = config["plant"]

    pid = build_controller(pid_cfg)
    plant = FirstOrderPlant(plant_cfg["gain"], plant_cfg["tau_ms"], plant_cfg["initial"])
    telemetry = TelemetryRecorder(config["telemetry"]["sample_every"], sink=sink)

    interval_ms = 1000 // pid_cfg["hz"]
    steps = int(config["run"]["duration_s"] * 1000) // interval_ms
    if pid_cfg["mode"] == "const":
        update = pid.update_const_interval
    else:
        interval = timedelta(milliseconds=interval_ms)

        def update(value):
            return pid.update_duration(value, interval)

    logger.info("running %d steps at %d ms (%s mode)", steps, interval_ms, pid_cfg["mode"])

    telemetry.begin_session(config=config)
    try:
        for n in range(steps):
            measurement = plant.value
            output = update(measurement)
            plant.step(output, interval_ms)
            telemetry.record_controller(n * interval_ms, measurement, pid)
    finally:
        telemetry.end_session()

    logger.info("final value %d (setpoint %d), integral %d",
                plant.value, pid.get(), pid.integral_value())
    return pid, plant


# =====================================================
# Main
# =====================================================

def _usage():
    print("Usage: python bench.py [--config cfg.yaml] [--out DIR] [--verbose]")
    sys.exit(1)


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    config_path = None
    out_dir = OUT_DIR
    verbose = False

    while args:
        arg = args.pop(0)
        if arg == "--verbose":
            verbose = True
        elif arg in ("--config", "--out") and args:
            value = args.pop(0)
            if arg == "--config":
                config_path = value
            else:
                out_dir = value
        else:
            _usage()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    # validate before the run directory exists
    config = load_config(config_path) if config_path else merge_config(None)
    sink = FileSink(out_dir)
    run(config, sink=sink)
    print("Saved: {}".format(sink.path))
    return sink.path


if __name__ == "__main__":
    main()
