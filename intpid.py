"""
Integer (fixed-point) PID controller.

Gains, integral and output are held as integers scaled by INTPID_SCALE, so
every update is reproducible bit for bit on any interpreter. Setpoint,
measurements and the returned output stay in plain (unscaled) integer units.

    pid = IntegerPID(1.5, 0.2, 0.05).set(100).set_output_limits(-255, 255)
    while True:
        out = pid.update_duration(read_sensor(), timedelta(milliseconds=20))

See http://en.wikipedia.org/wiki/PID_controller#Pseudocode
"""

import logging
import time
from datetime import timedelta

logger = logging.getLogger(__name__)

INTPID_SCALE = 1 << 16

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


class MinMaxError(Exception):
    """Output limits were configured with min greater than max."""

    def __init__(self, min, max):
        super().__init__("min: {} is greater than max: {}".format(min, max))
        self.min = min
        self.max = max


def trunc_div(a, b):
    """Integer division truncating toward zero, like C and Go."""
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _seconds(duration):
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class IntegerPID:
    """Discrete PID controller in scaled-integer arithmetic with anti-windup."""

    def __init__(self, p=0.0, i=0.0, d=0.0, suppress_first_derivative=False,
                 clock=time.monotonic):
        """Configure gains; output limits default to the signed 64-bit range.

        Args:
            p, i, d: real-valued gains, stored as int(g * INTPID_SCALE).
            suppress_first_derivative: if True, the first update after
                construction or reset() sees no derivative kick.
            clock: seconds source used by update().
        """
        self.setpoint = 0
        self.prev_value = 0
        self.integral = 0
        self.last_update = None
        self.out_min = INT64_MIN
        self.out_max = INT64_MAX
        self.suppress_first_derivative = suppress_first_derivative
        self._clock = clock
        self._primed = False
        self.last_p = 0
        self.last_i = 0
        self.last_d = 0
        self.last_output = 0
        self.set_pid(p, i, d)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set(self, setpoint):
        """Change the setpoint. Returns self."""
        self.setpoint = int(setpoint)
        return self

    def get(self):
        """Return the setpoint."""
        return self.setpoint

    def set_pid(self, p, i, d):
        """Change the P, I and D gains. Returns self."""
        self.p = int(p * INTPID_SCALE)
        self.i = int(i * INTPID_SCALE)
        self.d = int(d * INTPID_SCALE)
        logger.debug("gains set to p=%d i=%d d=%d (scaled)", self.p, self.i, self.d)
        return self

    def pid(self):
        """Return the P, I and D gains as floats."""
        return (self.p / INTPID_SCALE, self.i / INTPID_SCALE,
                self.d / INTPID_SCALE)

    def set_output_limits(self, min, max):
        """Set the output bounds and re-clamp the integral. Returns self.

        Raises MinMaxError when min > max; the controller is left untouched.
        """
        min, max = int(min), int(max)
        if min > max:
            raise MinMaxError(min, max)
        self.out_min = min * INTPID_SCALE
        self.out_max = max * INTPID_SCALE
        self.integral = self._clamp(self.integral)
        logger.debug("output limits set to [%d, %d]", min, max)
        return self

    def output_limits(self):
        """Return the min and max output values."""
        return trunc_div(self.out_min, INTPID_SCALE), trunc_div(self.out_max, INTPID_SCALE)

    def integral_value(self):
        """Return the integral accumulator in output units."""
        return trunc_div(self.integral, INTPID_SCALE)

    def config(self):
        """Return the configuration as a plain dict (for config.yaml)."""
        kp, ki, kd = self.pid()
        out_min, out_max = self.output_limits()
        return {
            "kp": kp,
            "ki": ki,
            "kd": kd,
            "setpoint": self.setpoint,
            "out_min": out_min,
            "out_max": out_max,
            "scale": INTPID_SCALE,
        }

    def reset(self):
        """Zero integrator, derivative and timing state. Returns self."""
        self.integral = 0
        self.prev_value = 0
        self.last_update = None
        self._primed = False
        self.last_p = self.last_i = self.last_d = self.last_output = 0
        return self

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update(self, value):
        """Like update_duration(), timing the interval since the previous call.

        The first call runs with a zero duration.
        """
        now = self._clock()
        duration = 0.0
        if self.last_update is not None:
            duration = now - self.last_update
        self.last_update = now
        return self.update_duration(value, duration)

    def update_duration(self, value, duration):
        """Advance one step of the given duration and return the new output.

        duration is a timedelta or a number of seconds.
        """
        dt = int(_seconds(duration) * INTPID_SCALE)
        err = self.setpoint - value
        self._prime(value)

        self.integral = self._clamp(self.integral + trunc_div(err * dt, INTPID_SCALE) * self.i)

        d = 0
        if dt > 0:
            d = -trunc_div((value - self.prev_value) * INTPID_SCALE, dt)
        self.prev_value = value

        return self._output(err, d)

    def update_const_interval(self, value):
        """Advance one step of exactly one second (unit time step).

        Same result as update_duration(value, 1) without the dt scaling.
        """
        err = self.setpoint - value
        self._prime(value)

        self.integral = self._clamp(self.integral + err * self.i)

        d = -(value - self.prev_value)
        self.prev_value = value

        return self._output(err, d)

    def _prime(self, value):
        if not self._primed:
            self._primed = True
            if self.suppress_first_derivative:
                self.prev_value = value

    def _output(self, err, d):
        p_term = self.p * err
        d_term = self.d * d
        output = self._clamp(p_term + self.integral + d_term)

        self.last_p = trunc_div(p_term, INTPID_SCALE)
        self.last_i = trunc_div(self.integral, INTPID_SCALE)
        self.last_d = trunc_div(d_term, INTPID_SCALE)
        self.last_output = trunc_div(output, INTPID_SCALE)
        return self.last_output

    def _clamp(self, v):
        if v > self.out_max:
            return self.out_max
        if v < self.out_min:
            return self.out_min
        return v
