import os
import time

import pytest
import yaml

from intpid import IntegerPID
from recorder import FileSink, PrintSink, TelemetryRecorder

STAMP = time.strptime("2026-10-18 13:39:35", "%Y-%m-%d %H:%M:%S")


def test_begin_session_writes_config_and_header(sink):
    telemetry = TelemetryRecorder(1, sink=sink)
    telemetry.begin_session(config={"pid": {"kp": 1.0}})
    assert sink.config == {"pid": {"kp": 1.0}}
    assert sink.lines == [TelemetryRecorder.HEADER]


def test_record_decimates(sink):
    telemetry = TelemetryRecorder(3, sink=sink)
    telemetry.begin_session()
    for n in range(7):
        telemetry.record(n * 20, 100, n, 100 - n, 1, 2, 3, 6)
    assert sink.lines[1:] == [
        "40,100,2,98,1,2,3,6",
        "100,100,5,95,1,2,3,6",
    ]


def test_record_controller_uses_last_terms(sink):
    pid = IntegerPID(2.0, 1.0, 0.5).set(100)
    pid.update_duration(40, 1.0)
    telemetry = TelemetryRecorder(1, sink=sink)
    telemetry.record_controller(20, 40, pid)
    assert sink.lines == ["20,100,40,60,120,60,-20,160"]


def test_end_session_closes_sink(sink):
    telemetry = TelemetryRecorder(1, sink=sink)
    telemetry.begin_session()
    telemetry.end_session()
    assert sink.closed


def test_sample_every_must_be_positive():
    with pytest.raises(ValueError):
        TelemetryRecorder(0)


def test_print_sink(capsys):
    telemetry = TelemetryRecorder(1)
    telemetry.begin_session(config={"ignored": True})
    telemetry.record(0, 1, 2, 3, 4, 5, 6, 7)
    telemetry.end_session()
    assert capsys.readouterr().out.splitlines() == [
        TelemetryRecorder.HEADER,
        "0,1,2,3,4,5,6,7",
    ]
    assert isinstance(telemetry._sink, PrintSink)


def test_file_sink_layout(tmp_path):
    sink = FileSink(str(tmp_path / "runs"), stamp=STAMP)
    assert sink.path == str(tmp_path / "runs" / "2026-10-18_13-39-35")

    telemetry = TelemetryRecorder(1, sink=sink)
    telemetry.begin_session(config={"pid": {"kp": 1.5, "setpoint": 10}})
    telemetry.record(0, 10, 0, 10, 15, 0, 0, 15)
    telemetry.end_session()

    with open(os.path.join(sink.path, "log.csv")) as f:
        assert f.read() == TelemetryRecorder.HEADER + "\n0,10,0,10,15,0,0,15\n"
    with open(os.path.join(sink.path, "config.yaml")) as f:
        assert yaml.safe_load(f) == {"pid": {"kp": 1.5, "setpoint": 10}}


def test_file_sink_refuses_existing_run(tmp_path):
    FileSink(str(tmp_path), stamp=STAMP).close()
    with pytest.raises(FileExistsError):
        FileSink(str(tmp_path), stamp=STAMP)
