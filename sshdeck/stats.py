"""Collecting and formatting hardware statistics of a remote Linux machine."""

from __future__ import annotations

import re
from contextlib import suppress
from dataclasses import dataclass, field, fields, replace
from typing import Callable, NamedTuple

from termcolor import colored

from .client import COMMAND_ERRORS, SshTarget, connect, run_command

__all__ = [
    "CPUInfo",
    "CPUSample",
    "FSInfo",
    "LoadAvg",
    "NetIntfInfo",
    "Stats",
    "StatsCollector",
    "cpu_usage",
    "fetch_hardware_info",
    "fmt_bytes",
    "fmt_uptime",
    "parse_cpu_sample",
    "parse_df",
    "parse_ip_addr",
    "parse_loadavg",
    "parse_meminfo",
    "parse_net_dev",
    "parse_uptime",
    "render_stats",
    "show_hardware_info",
]

_UINT_RE = re.compile(r"[0-9]+")
_UINT_MAX = 2**64 - 1
_DAY = 24 * 60 * 60

_MEMINFO_KEYS = ("MemTotal", "MemFree", "Buffers", "Cached", "SwapTotal", "SwapFree")

_CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal", "guest")


@dataclass
class FSInfo:
    mount_point: str
    used: int
    free: int


@dataclass
class NetIntfInfo:
    ipv4: str = ""
    ipv6: str = ""
    rx: int = 0
    tx: int = 0


@dataclass
class CPUSample:
    """Raw cumulative CPU times from the ``cpu`` line of /proc/stat."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0
    guest: int = 0
    total: int = 0


@dataclass
class CPUInfo:
    """CPU time shares, in percent, between two samples."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0


class LoadAvg(NamedTuple):
    load1: str = ""
    load5: str = ""
    load10: str = ""
    running_procs: str = ""
    total_procs: str = ""


@dataclass
class Stats:
    uptime: float = 0.0
    hostname: str = ""
    load1: str = ""
    load5: str = ""
    load10: str = ""
    running_procs: str = ""
    total_procs: str = ""
    mem_total: int = 0
    mem_free: int = 0
    mem_buffers: int = 0
    mem_cached: int = 0
    swap_total: int = 0
    swap_free: int = 0
    fs_infos: list[FSInfo] = field(default_factory=list)
    net_intf: dict[str, NetIntfInfo] = field(default_factory=dict)
    cpu: CPUInfo = field(default_factory=CPUInfo)
    os_info: str = ""


def _parse_uint(text: str) -> int | None:
    if not _UINT_RE.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _UINT_MAX else None


def parse_uptime(text: str) -> float:
    """Seconds of uptime from /proc/uptime; 0 if the line is not two fields."""
    parts = text.split()
    if len(parts) != 2:
        return 0.0
    return float(parts[0])


def parse_loadavg(text: str) -> LoadAvg:
    """Load averages and process counts from /proc/loadavg."""
    parts = text.split()
    if len(parts) != 5:
        return LoadAvg()
    running = total = ""
    procs = parts[3]
    slash = procs.find("/")
    if slash != -1:
        running = procs[:slash]
        total = procs[slash + 1 :]
    return LoadAvg(parts[0], parts[1], parts[2], running, total)


def parse_meminfo(text: str) -> dict[str, int]:
    """Byte counts of the memory fields of interest from /proc/meminfo."""
    result: dict[str, int] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) != 3:
            continue
        value = _parse_uint(parts[1])
        if value is None:
            continue
        name = parts[0].removesuffix(":")
        if parts[0].endswith(":") and name in _MEMINFO_KEYS:
            result[name] = value * 1024
    return result


def parse_df(text: str) -> list[FSInfo]:
    """Device-backed file systems from ``df -B1``, including wrapped lines."""
    infos: list[FSInfo] = []
    wrapped = 0
    for line in text.splitlines():
        parts = line.split()
        n = len(parts)
        is_dev = n > 0 and parts[0].startswith("/dev/")
        if n == 1 and is_dev:
            wrapped = 1
        elif (n == 5 and wrapped == 1) or (n == 6 and is_dev):
            shift = wrapped
            wrapped = 0
            used = _parse_uint(parts[2 - shift])
            free = _parse_uint(parts[3 - shift])
            if used is None or free is None:
                continue
            infos.append(FSInfo(parts[5 - shift], used, free))
    return infos


def parse_ip_addr(text: str) -> dict[str, NetIntfInfo]:
    """Interface addresses from ``ip -o addr``."""
    interfaces: dict[str, NetIntfInfo] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 4 or parts[2] not in ("inet", "inet6"):
            continue
        info = interfaces.setdefault(parts[1], NetIntfInfo())
        if parts[2] == "inet":
            info.ipv4 = parts[3]
        else:
            info.ipv6 = parts[3]
    return interfaces


def parse_net_dev(text: str, interfaces: dict[str, NetIntfInfo]) -> dict[str, NetIntfInfo]:
    """Return a copy of ``interfaces`` with rx/tx byte counts from /proc/net/dev.

    Only interfaces already present are updated.
    """
    result = {name: replace(info) for name, info in interfaces.items()}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) != 17:
            continue
        name = parts[0].strip().removesuffix(":")
        info = result.get(name)
        if info is None:
            continue
        rx = _parse_uint(parts[1])
        tx = _parse_uint(parts[9])
        if rx is None or tx is None:
            continue
        info.rx = rx
        info.tx = tx
    return result


def parse_cpu_sample(text: str) -> CPUSample:
    """The aggregate ``cpu`` line of /proc/stat; all zeros if absent."""
    sample = CPUSample()
    for line in text.splitlines():
        parts = line.split()
        if not parts or parts[0] != "cpu":
            continue
        for position, raw in enumerate(parts[1:]):
            value = _parse_uint(raw)
            if value is None:
                continue
            sample.total += value
            if position < len(_CPU_FIELDS):
                setattr(sample, _CPU_FIELDS[position], value)
        break
    return sample


def cpu_usage(previous: CPUSample, current: CPUSample) -> CPUInfo:
    """Percent shares of CPU time spent between two samples.

    With no previous sample (total of zero) every share is zero. Steal time
    is not reported.
    """
    if previous.total == 0:
        return CPUInfo()
    elapsed = current.total - previous.total
    if elapsed == 0:
        return CPUInfo()

    def share(name: str) -> float:
        return (getattr(current, name) - getattr(previous, name)) / elapsed * 100

    return CPUInfo(
        user=share("user"),
        nice=share("nice"),
        system=share("system"),
        idle=share("idle"),
        iowait=share("iowait"),
        irq=share("irq"),
        softirq=share("softirq"),
        guest=share("guest"),
    )


def _duration_string(total: int) -> str:
    sign = "-" if total < 0 else ""
    hours, rest = divmod(abs(total), 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        body = f"{hours}h{minutes}m{seconds}s"
    elif minutes:
        body = f"{minutes}m{seconds}s"
    else:
        body = f"{seconds}s"
    return sign + body


def fmt_uptime(seconds: float) -> str:
    """Format an uptime like ``2d 3h 4m 5s``."""
    total = int(seconds)
    days = 0
    if total > _DAY:
        days = (total - 1) // _DAY
        total -= days * _DAY
    text = _duration_string(total).replace("h", "h ").replace("m", "m ")
    return f"{days}d {text}" if days > 0 else text


def fmt_bytes(value: int) -> str:
    """Format a byte count with a binary unit."""
    if value < 1024:
        return f"{value} bytes"
    if value < 1024 * 1024:
        return "%6.2f KiB" % (value / 1024.0)
    if value < 1024 * 1024 * 1024:
        return "%6.2f MiB" % (value / 1024.0 / 1024.0)
    return "%6.2f GiB" % (value / 1024.0 / 1024.0 / 1024.0)


class StatsCollector:
    """Gathers :class:`Stats` through a function that runs a shell command.

    The collector remembers the previous CPU sample so that repeated calls
    to :meth:`collect` report CPU usage over the interval between them.
    """

    def __init__(self, runner: Callable[[str], str]) -> None:
        self.runner = runner
        self._previous_cpu = CPUSample()

    def _run(self, command: str) -> str | None:
        try:
            return self.runner(command)
        except COMMAND_ERRORS:
            return None

    def collect(self) -> Stats:
        stats = Stats()

        out = self._run("/bin/cat /proc/uptime")
        if out is not None:
            with suppress(ValueError):
                stats.uptime = parse_uptime(out)

        out = self._run("/bin/hostname -f")
        if out is not None:
            stats.hostname = out.strip()

        out = self._run("/bin/cat /proc/loadavg")
        if out is not None:
            load = parse_loadavg(out)
            stats.load1, stats.load5, stats.load10 = load.load1, load.load5, load.load10
            stats.running_procs, stats.total_procs = load.running_procs, load.total_procs

        out = self._run("/bin/cat /proc/meminfo")
        if out is not None:
            mem = parse_meminfo(out)
            stats.mem_total = mem.get("MemTotal", 0)
            stats.mem_free = mem.get("MemFree", 0)
            stats.mem_buffers = mem.get("Buffers", 0)
            stats.mem_cached = mem.get("Cached", 0)
            stats.swap_total = mem.get("SwapTotal", 0)
            stats.swap_free = mem.get("SwapFree", 0)

        out = self._run("/bin/df -B1")
        if out is not None:
            stats.fs_infos = parse_df(out)

        out = self._run("/bin/ip -o addr")
        if out is None:
            out = self._run("/sbin/ip -o addr")
        if out is not None:
            stats.net_intf = parse_ip_addr(out)

        out = self._run("/bin/cat /proc/net/dev")
        if out is not None:
            stats.net_intf = parse_net_dev(out, stats.net_intf)

        out = self._run("/bin/cat /proc/stat")
        if out is not None:
            sample = parse_cpu_sample(out)
            stats.cpu = cpu_usage(self._previous_cpu, sample)
            self._previous_cpu = sample

        out = self._run("uname -a")
        if out is not None:
            stats.os_info = out.strip()

        return stats


def render_stats(stats: Stats) -> str:
    """A coloured multi-line report of the statistics."""
    used = stats.mem_total - stats.mem_free - stats.mem_buffers - stats.mem_cached
    cpu = stats.cpu
    lines = [
        colored("Machine Hardware Info:", "light_cyan"),
        colored(f"HostName:\t{stats.hostname}\tUpTime:\t{fmt_uptime(stats.uptime)}", "cyan"),
        colored(stats.os_info, "yellow"),
        colored("Load:", "light_cyan"),
        colored(f"{stats.load1}\t{stats.load5}\t{stats.load10}", "yellow"),
        colored("CPU:", "light_cyan"),
        colored(
            f"User:{cpu.user:.2f}\t SYS: {cpu.system:.2f}\t Nice: {cpu.nice:.2f}\t "
            f"Idle: {cpu.idle:.2f}\t Iowait:{cpu.iowait:.2f}\t Irq:{cpu.irq:.2f}\t "
            f"SoftIrq:{cpu.softirq:.2f}\t Guest:{cpu.guest:.2f}",
            "light_yellow",
        ),
        colored("Processes:", "light_cyan"),
        colored(f"Running:\t{stats.running_procs}\tTotal:\t{stats.total_procs}", "cyan"),
        colored("Memory:", "light_cyan"),
        colored(
            f"Total: {fmt_bytes(stats.mem_total)}\t Free: {fmt_bytes(stats.mem_free)}\t "
            f"Used: {fmt_bytes(used)}\t Buffers: {fmt_bytes(stats.mem_buffers)}\t "
            f"Cached: {fmt_bytes(stats.mem_cached)}\t Swap: {stats.swap_free} of {stats.swap_total}",
            "cyan",
        ),
    ]
    if stats.fs_infos:
        lines.append(colored("Filesystems:", "light_cyan"))
        lines.extend(
            colored(
                f"{fs.mount_point}:\t{fmt_bytes(fs.free)} free of {fmt_bytes(fs.used + fs.free)}",
                "cyan",
            )
            for fs in stats.fs_infos
        )
    if stats.net_intf:
        lines.append(colored("Network Interfaces:", "light_cyan"))
        for name in sorted(stats.net_intf):
            info = stats.net_intf[name]
            lines.append(colored(f"{name}:\tIPv4: {info.ipv4}\tIPv6: {info.ipv6}", "cyan"))
            lines.append(colored(f"rx: {fmt_bytes(info.rx)}\ttx: {fmt_bytes(info.tx)}", "yellow"))
    return "\n".join(lines)


def fetch_hardware_info(target: SshTarget) -> Stats:
    """Connect to a machine and collect its statistics."""
    client = connect(target)
    try:
        return StatsCollector(lambda command: run_command(client, command)).collect()
    finally:
        client.close()


def show_hardware_info(target: SshTarget) -> None:
    """Connect to a machine and print a report of its statistics."""
    print(render_stats(fetch_hardware_info(target)))


# Keep dataclass field order of CPUSample in sync with the /proc/stat columns.
assert tuple(f.name for f in fields(CPUSample))[: len(_CPU_FIELDS)] == _CPU_FIELDS