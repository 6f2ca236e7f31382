import matplotlib

matplotlib.use("Agg")

import pytest


class ListSink:
    """In-memory telemetry sink."""

    def __init__(self):
        self.lines = []
        self.config = None
        self.closed = False

    def write_config(self, config):
        self.config = config

    def write(self, line):
        self.lines.append(line)

    def flush(self):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def sink():
    return ListSink()
