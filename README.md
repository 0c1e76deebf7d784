# sshdeck

A Python toolbox for working with machines over SSH, built on `paramiko`:

- **Hardware stats** (`sshdeck.stats`): uptime, load, memory, filesystems,
  network interfaces and CPU usage read from `/proc` and standard tools on a
  remote Linux host.
- **Port forwarding** (`sshdeck.proxy`): listen on a local address and send
  each connection through SSH to a remote address.
- **SOCKS4/5 proxy** (`sshdeck.socks`): a local SOCKS server on `127.0.0.1`
  that opens its outgoing connections through SSH.
- **SFTP copy** (`sshdeck.scp`): recursive upload and download of files,
  directories and the targets of symbolic links.
- **Interactive terminal** (`sshdeck.terminal`): a raw-mode remote shell that
  can type the login password when `sudo` prompts for it.
- **Job scheduler** (`sshdeck.scheduler`): run functions every N seconds,
  minutes, hours, days or weeks, optionally at a fixed time of day.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Command line

Installing the package provides the `sshdeck` command. With no subcommand it
prints its help.

```
sshdeck --help
sshdeck brofist
sshdeck nesscan NES_DIR OUTPUT
sshdeck run "uname -a"
```

- `brofist` prints an ASCII-art banner followed by two coloured lines.
- `nesscan NES_DIR OUTPUT` walks `NES_DIR`, deletes files whose path below it
  contains `hack` or `Hack`, renames each `.nes` file to a lower-case name with
  well-known titles replaced by Chinese names (`nes_display_name`), and writes a
  YAML listing to `OUTPUT`: each sub-directory as a key, each ROM as a
  `- "<dir name>/<path>"` entry.
- `run COMMAND` runs `COMMAND` with `/bin/sh -c` (Git Bash on Windows) and
  prints its standard output; it exits with status 1 if the command fails.

## Library use

### Describing a machine

```python
from sshdeck.client import SshTarget, connect, run_command

password = "password"
target = SshTarget(host="host.example.com", port=22, user="admin", password=password)

client = connect(target)
try:
    print(run_command(client, "uname -a"))
finally:
    client.close()
```

`SshTarget.auth_type` is `"password"` by default; any other value makes
`connect` authenticate with the private key at `SshTarget.key`
(`~/.ssh/id_rsa` by default, loaded by `load_private_key`, which accepts RSA,
ECDSA and Ed25519 keys and raises `KeyLoadError` otherwise). Host keys are
accepted without verification. `run_command` raises `CommandError` when the
remote command exits with a non-zero status.

### Hardware statistics

```python
from sshdeck.stats import fetch_hardware_info, render_stats, show_hardware_info

stats = fetch_hardware_info(target)   # a Stats dataclass
print(render_stats(stats))            # coloured multi-line report
show_hardware_info(target)            # the same, printed directly
```

The parsers take the plain text output of the remote commands and can be used
on their own: `parse_uptime`, `parse_loadavg`, `parse_meminfo`, `parse_df`,
`parse_ip_addr`, `parse_net_dev`, `parse_cpu_sample` and `cpu_usage`.
`fmt_uptime` and `fmt_bytes` format durations and byte counts.

`StatsCollector(runner)` gathers a `Stats` through any function that takes a
command string and returns its output. It keeps the previous CPU sample, so
CPU percentages are zero on the first `collect()` and cover the interval
between calls afterwards.

### Tunnels and proxies

```python
from sshdeck.proxy import run_proxy
from sshdeck.socks import run_socks_proxy

run_proxy(target, "127.0.0.1:5555", "127.0.0.1:3306")  # blocks
run_socks_proxy(target, 1080)                          # blocks
```

`PortForwarder(client, local_addr, remote_addr)` is the forwarding loop on an
already open client; `start()` blocks until `close()` is called. The SOCKS
handling is available as `handle_connection(local, dialer)`, where `dialer`
is any callable taking `(destination, origin)` address tuples and returning a
stream; `transfer(local, remote)` relays data both ways.

### Copying files

```python
from sshdeck.scp import download, upload

upload(target, "./site", "/srv/site")
download(target, "/var/log/app", "./logs")
```

`open_sftp(target)` is a context manager yielding a `paramiko` SFTP client;
`copy_local_to_remote` and `copy_remote_to_local` work on such a client.
Failures are raised as `TransferError`.

### Interactive shell

```python
from sshdeck.terminal import run_ssh_terminal

status = run_ssh_terminal(target, sudo_mode=True)
```

This needs a POSIX terminal on standard input (otherwise `TerminalError` is
raised) and follows local window resizes. Sudo prompts for the login user are
answered only when `target.password` is set. `SudoResponder` holds the prompt
detection on its own.

### Scheduling jobs

```python
from sshdeck.scheduler import Scheduler

def report():
    print("tick")

scheduler = Scheduler()
scheduler.every(1).hours().do(report)
scheduler.every(1).day().at("10:30").do(report)
scheduler.every(1).monday().at("18:30").do(report)

job, when = scheduler.next_run()
scheduler.run_pending()     # runs whatever is due now
stop = scheduler.start()    # checks once a second in a background thread
stop.set()                  # stops it
```

The singular unit methods (`second`, `minute`, `hour`, `day`, `monday` …
`sunday`) require an interval of 1 and raise `ValueError` otherwise.
`parse_time("10:30")` validates an `HH:MM` string, and `change_loc` sets the
time zone used for fixed times of day. A scheduler holds at most `MAX_JOBS`
jobs. The module-level `every`, `run_pending`, `run_all`,
`run_all_with_delay`, `start`, `clear`, `remove` and `next_run` functions work
on a shared default scheduler.

## What it does not do

- It keeps no list of machines: there is no stored inventory, and every
  `SshTarget` is built in code.
- The SSH features (stats, forwarding, SOCKS, copying, terminals) are library
  functions only; the `sshdeck` command offers just `brofist`, `nesscan` and
  `run`.
- There is no web interface and no SSH server.