"""Thermal governor -- host classification and between-component cooldowns.

Only low-end hosts (at most 2 physical cores *and* 2 logical threads)
are throttled.  On those, after every second completed component the
governor samples the CPU temperature and pauses for a cooldown derived
from it::

    t < 70 °C        →  0
    70 <= t < 80     →  15 min
    80 <= t < 90     →  15 → 45 min, linear
    t >= 90          →  45 min

The wait itself is a small state machine (``CooldownTimer``) driven by
tick and re-sample events, with the clock and sleep injectable so the
whole thing runs instantly under test.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from cosmic_deb.contracts import ThermalProfile, ThermalSample

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TEMP_WARN_C: float = 70.0
TEMP_HIGH_C: float = 80.0
TEMP_CRITICAL_C: float = 90.0

COOLDOWN_MIN_S: float = 15 * 60
COOLDOWN_MAX_S: float = 45 * 60
EARLY_EXIT_S: float = 5 * 60
POLL_INTERVAL_S: float = 60.0

LOW_END_CORE_THRESHOLD = 2
LOW_END_THREAD_THRESHOLD = 2

CPUINFO = Path("/proc/cpuinfo")
HWMON_SENSOR_NAMES = frozenset({"coretemp", "k10temp", "zenpower", "acpitz"})
FALLBACK_SENSOR_PATHS: tuple[str, ...] = (
    "class/thermal/thermal_zone0/temp",
    "class/thermal/thermal_zone1/temp",
    "class/hwmon/hwmon0/temp1_input",
    "class/hwmon/hwmon1/temp1_input",
)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def detect_physical_cores(cpuinfo: str) -> int:
    """Count distinct ``(physical id, core id)`` pairs in ``/proc/cpuinfo``.

    Falls back to the first positive ``cpu cores`` field; returns 0 when
    neither is present.
    """
    pairs: set[tuple[str, str]] = set()
    cpu_cores = 0
    physical_id = "0"
    for line in cpuinfo.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            # blank line separates processor blocks
            physical_id = "0"
            continue
        key, value = key.strip(), value.strip()
        if key == "physical id":
            physical_id = value
        elif key == "core id":
            pairs.add((physical_id, value))
        elif key == "cpu cores" and not cpu_cores:
            try:
                cpu_cores = max(int(value), 0)
            except ValueError:
                pass
    return len(pairs) or cpu_cores


def detect_profile(
    *,
    logical: int | None = None,
    cpuinfo: str | None = None,
) -> ThermalProfile:
    """Classify the host once at startup."""
    logical = logical or os.cpu_count() or 1
    if cpuinfo is None:
        try:
            cpuinfo = CPUINFO.read_text(encoding="utf-8")
        except OSError:
            cpuinfo = ""
    physical = detect_physical_cores(cpuinfo) or logical

    low_end = physical <= LOW_END_CORE_THRESHOLD and logical <= LOW_END_THREAD_THRESHOLD
    return ThermalProfile(
        physical_cores=physical,
        logical_threads=logical,
        is_low_end=low_end,
        max_concurrent_jobs=1 if low_end else logical,
        base_cooldown_s=COOLDOWN_MIN_S if low_end else 0.0,
    )


def adjust_jobs(profile: ThermalProfile, requested: int) -> int:
    """Cap *requested* on low-end hosts; otherwise pass it through."""
    if profile.is_low_end:
        return max(1, min(requested, profile.max_concurrent_jobs))
    return requested


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


def _read_celsius(path: Path) -> float | None:
    try:
        value = float(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None
    if value > 1000:
        value /= 1000.0
    return value


def _read_hwmon(sysfs_root: Path) -> float | None:
    base = sysfs_root / "class" / "hwmon"
    try:
        devices = sorted(base.iterdir())
    except OSError:
        return None
    for device in devices:
        try:
            name = (device / "name").read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if name not in HWMON_SENSOR_NAMES:
            continue
        readings = [t for t in map(_read_celsius, sorted(device.glob("temp*_input"))) if t is not None]
        hottest = max(readings, default=0.0)
        if hottest > 0:
            return hottest
    return None


def read_cpu_temp(sysfs_root: str | Path = "/sys") -> ThermalSample:
    """Current CPU temperature, or an unavailable sample."""
    root = Path(sysfs_root)
    temp = _read_hwmon(root)
    if temp is None:
        for rel in FALLBACK_SENSOR_PATHS:
            temp = _read_celsius(root / rel)
            if temp is not None:
                break
    if temp is None:
        return ThermalSample.unavailable()
    return ThermalSample(temperature_c=temp, available=True)


def compute_cooldown(temp_c: float) -> float:
    """Cooldown in seconds for a measured temperature (non-decreasing)."""
    if temp_c >= TEMP_CRITICAL_C:
        return COOLDOWN_MAX_S
    if temp_c >= TEMP_HIGH_C:
        ratio = (temp_c - TEMP_HIGH_C) / (TEMP_CRITICAL_C - TEMP_HIGH_C)
        return COOLDOWN_MIN_S + (COOLDOWN_MAX_S - COOLDOWN_MIN_S) * ratio
    if temp_c >= TEMP_WARN_C:
        return COOLDOWN_MIN_S
    return 0.0


def format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m" if secs == 0 else f"{minutes}m{secs}s"


# ---------------------------------------------------------------------------
# Cooldown state machine
# ---------------------------------------------------------------------------


class CooldownPhase(str, enum.Enum):
    IDLE = "idle"
    COOLING = "cooling"
    DONE = "done"


class CooldownTimer:
    """IDLE → COOLING(deadline) → DONE.

    ``on_tick`` finishes the wait once the deadline has passed;
    ``on_sample`` pulls the deadline in to ``EARLY_EXIT_S`` from now when
    the CPU has cooled below the warning threshold.
    """

    __slots__ = ("_clock", "phase", "deadline")

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.phase = CooldownPhase.IDLE
        self.deadline: float | None = None

    def start(self, duration_s: float) -> None:
        if duration_s <= 0:
            self.phase = CooldownPhase.DONE
            return
        self.deadline = self._clock() + duration_s
        self.phase = CooldownPhase.COOLING

    def remaining(self) -> float:
        if self.phase is not CooldownPhase.COOLING or self.deadline is None:
            return 0.0
        return max(0.0, self.deadline - self._clock())

    def on_tick(self) -> CooldownPhase:
        if self.phase is CooldownPhase.COOLING and self.remaining() <= 0:
            self.phase = CooldownPhase.DONE
        return self.phase

    def on_sample(self, sample: ThermalSample) -> bool:
        """Returns True when the deadline was shortened."""
        if self.phase is not CooldownPhase.COOLING or not sample.available:
            return False
        if sample.temperature_c < TEMP_WARN_C and self.remaining() > EARLY_EXIT_S:
            self.deadline = self._clock() + EARLY_EXIT_S
            return True
        return False


# ---------------------------------------------------------------------------
# Governor
# ---------------------------------------------------------------------------


class ThermalGovernor:
    """Decides whether, and for how long, to pause between components."""

    def __init__(
        self,
        profile: ThermalProfile,
        *,
        sysfs_root: str | Path = "/sys",
        poll_interval_s: float = POLL_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        sampler: Callable[[], ThermalSample] | None = None,
    ) -> None:
        self.profile = profile
        self._poll_interval_s = poll_interval_s
        self._clock = clock
        self._sleep = sleep
        self._sampler = sampler or (lambda: read_cpu_temp(sysfs_root))

    def should_throttle(self, completed: int, total: int) -> bool:
        """Low-end only, after an even non-zero count, never after the last one."""
        if not self.profile.is_low_end:
            return False
        return completed > 0 and completed % 2 == 0 and completed < total

    async def wait_between(self, completed: int, total: int) -> float:
        """Pause if needed after *completed* of *total* components. Returns seconds waited."""
        if not self.should_throttle(completed, total):
            return 0.0

        sample = self._sampler()
        if sample.available:
            cooldown = compute_cooldown(sample.temperature_c)
            if cooldown == 0:
                logger.info("[Thermal] CPU temp %.1f°C is within safe range; no cooldown needed", sample.temperature_c)
                return 0.0
            logger.info(
                "[Thermal] Low-end CPU detected. Temp: %.1f°C, cooldown: %s",
                sample.temperature_c, format_duration(cooldown),
            )
        else:
            cooldown = self.profile.base_cooldown_s
            logger.info("[Thermal] CPU temp sensor not readable. Applying default cooldown: %s", format_duration(cooldown))

        started = self._clock()
        timer = CooldownTimer(self._clock)
        timer.start(cooldown)
        while timer.phase is CooldownPhase.COOLING:
            await self._sleep(min(self._poll_interval_s, timer.remaining()))
            if timer.on_tick() is CooldownPhase.DONE:
                break
            current = self._sampler()
            if current.available:
                logger.info(
                    "[Thermal] Cooldown in progress: %.0fs remaining. Current temp: %.1f°C",
                    timer.remaining(), current.temperature_c,
                )
            else:
                logger.info("[Thermal] Cooldown in progress: %.0fs remaining", timer.remaining())
            if timer.on_sample(current):
                logger.info("[Thermal] Temp dropped to %.1f°C. Reducing cooldown.", current.temperature_c)

        logger.info("[Thermal] Cooldown complete. Resuming build.")
        return self._clock() - started

    def summarize(self) -> None:
        p = self.profile
        if p.is_low_end:
            logger.info(
                "[Thermal] Low-end CPU profile active: %d physical core(s), %d thread(s)",
                p.physical_cores, p.logical_threads,
            )
            logger.info(
                "[Thermal] Build limiter enabled: max %d parallel job(s), cooldown after every 2 components",
                p.max_concurrent_jobs,
            )
        else:
            logger.debug(
                "[Thermal] %d physical core(s), %d thread(s); no throttling",
                p.physical_cores, p.logical_threads,
            )
