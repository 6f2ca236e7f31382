import os
import time

import yaml

_LOG_NAME = "log.csv"
_CONFIG_NAME = "config.yaml"


def _dump_config(config):
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


class PrintSink:
    """Output backend that prints CSV rows to stdout."""

    def write_config(self, config):
        """No-op, config only matters for file runs."""
        pass

    def write(self, line):
        """Emit a single CSV line to stdout."""
        print(line)

    def flush(self):
        pass

    def close(self):
        pass


class FileSink:
    """Output backend that writes CSV rows into a timestamped run directory.

    The directory is <root>/<YYYY-MM-DD_HH-MM-SS>/ and holds log.csv and,
    once written, config.yaml.
    """

    def __init__(self, root, stamp=None):
        """Create the run directory and open log.csv.

        Args:
            root: parent directory, created if missing.
            stamp: time.struct_time used for the directory name (default: now).
        """
        dt = stamp or time.localtime()
        os.makedirs(root, exist_ok=True)
        self._run_dir = os.path.join(
            root,
            "{:04d}-{:02d}-{:02d}_{:02d}-{:02d}-{:02d}".format(
                dt.tm_year, dt.tm_mon, dt.tm_mday,
                dt.tm_hour, dt.tm_min, dt.tm_sec,
            ),
        )
        os.makedirs(self._run_dir)
        self._f = open(os.path.join(self._run_dir, _LOG_NAME), "w")

    @property
    def path(self):
        """Return the run directory path."""
        return self._run_dir

    def write_config(self, config):
        """Write config.yaml into the run directory."""
        with open(os.path.join(self._run_dir, _CONFIG_NAME), "w") as f:
            f.write(_dump_config(config))

    def write(self, line):
        """Append a CSV line to the log file."""
        self._f.write(line)
        self._f.write("\n")

    def flush(self):
        self._f.flush()

    def close(self):
        """Flush and close the log file."""
        self._f.flush()
        self._f.close()


class TelemetryRecorder:
    """Facade that decimates and formats telemetry rows, delegating I/O to a sink."""

    HEADER = "T_MS,SETPOINT,MEASUREMENT,ERR,P,I,D,PID_OUT"

    def __init__(self, sample_every, sink=None):
        """Set decimation rate and output backend (defaults to PrintSink)."""
        if sample_every < 1:
            raise ValueError("sample_every must be >= 1, got {}".format(sample_every))
        self._sample_every = sample_every
        self._sink = sink or PrintSink()
        self._counter = 0

    def begin_session(self, config=None):
        """Reset counter, write config (if provided), and emit CSV header."""
        self._counter = 0
        if config is not None:
            self._sink.write_config(config)
        self._sink.write(self.HEADER)

    def record(self, t_ms, setpoint, measurement, err, p, i, d, pid_out):
        """Emit a CSV row every sample_every-th call. Others are silently dropped."""
        self._counter += 1
        if self._counter < self._sample_every:
            return
        self._counter = 0

        self._sink.write("{},{},{},{},{},{},{},{}".format(
            t_ms, setpoint, measurement, err, p, i, d, pid_out
        ))

    def record_controller(self, t_ms, measurement, pid):
        """Record the terms of the last update of an IntegerPID."""
        self.record(t_ms, pid.setpoint, measurement, pid.setpoint - measurement,
                    pid.last_p, pid.last_i, pid.last_d, pid.last_output)

    def end_session(self):
        """Flush and close the sink."""
        self._sink.close()
