"""Command-line interface for the logcat daemon."""

import json
import sys
import time
from pathlib import Path

import click
import psutil

from .config import DaemonConfig
from .daemon import LogDaemon, daemonize, start_log_daemon
from .protocol import attach, handshake

config_option = click.option(
    "-c", "--config", "config_path",
    type=click.Path(exists=True),
    required=True,
    help="Path to configuration file (YAML)",
)


def _load_config(config_path: str) -> DaemonConfig:
    try:
        config = DaemonConfig.from_yaml(config_path)
    except Exception as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    errors = config.validate()
    if errors:
        click.echo("Configuration errors:", err=True)
        for error in errors:
            click.echo(f"  - {error}", err=True)
        sys.exit(1)

    return config


@click.group()
@click.version_option(package_name="logcat-daemon")
def main():
    """logcat-daemon - Tail the system log and fan it out to subscribers."""
    pass


@main.command()
@config_option
@click.option(
    "-d", "--daemon",
    is_flag=True,
    help="Run as daemon (background process)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)
def run(config_path: str, daemon: bool, verbose: bool):
    """Run the log daemon."""
    config = _load_config(config_path)

    if verbose:
        config.log_level = "DEBUG"

    if daemon:
        daemonize()

    LogDaemon(config).run()


@main.command()
@config_option
def start(config_path: str):
    """Start the daemon in the background and wait until it answers."""
    config = _load_config(config_path)

    if start_log_daemon(config):
        click.echo(f"✅ Log daemon ready on {config.socket_path}")
    else:
        click.echo("❌ Log daemon not started", err=True)
        sys.exit(1)


@main.command()
@config_option
def validate(config_path: str):
    """Validate configuration file."""
    config = _load_config(config_path)
    click.echo("✅ Configuration is valid")
    click.echo(f"\nLog source: {config.source_binary}")
    click.echo(f"  Buffers: {', '.join(config.buffers)}")
    click.echo(f"  Tags: {', '.join(config.tags)}")
    click.echo(f"Control socket: {config.socket_path}")
    click.echo(f"Persistent log: {config.log_file}")
    if config.enable_watchdog:
        click.echo(f"Supervised socket: {config.supervised_socket}")


def _process_info(pid_file: str) -> dict:
    """Describe the process named in a PID file."""
    info = {"pid": None, "running": False, "uptime_seconds": None, "memory_mb": None}
    pid_path = Path(pid_file)
    if not pid_path.exists():
        return info

    try:
        pid = int(pid_path.read_text().strip())
    except ValueError:
        return info

    info["pid"] = pid
    try:
        proc = psutil.Process(pid)
        info["running"] = proc.is_running()
        info["uptime_seconds"] = time.time() - proc.create_time()
        info["memory_mb"] = proc.memory_info().rss / (1024 * 1024)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass

    return info


@main.command()
@config_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status(config_path: str, as_json: bool):
    """Check whether the daemon answers handshakes."""
    config = _load_config(config_path)

    try:
        alive = handshake(config.socket_path, timeout=1.0)
    except OSError:
        alive = False

    result = {"socket_path": config.socket_path, "alive": alive}
    if config.pid_file:
        result["process"] = _process_info(config.pid_file)

    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        icon = "🟢" if alive else "🔴"
        click.echo(f"{icon} {config.socket_path}")
        click.echo(f"   Alive: {alive}")
        proc = result.get("process")
        if proc and proc["pid"]:
            click.echo(f"   PID: {proc['pid']} (running: {proc['running']})")
            if proc["uptime_seconds"] is not None:
                click.echo(f"   Uptime: {proc['uptime_seconds']:.0f}s")

    if not alive:
        sys.exit(1)


@main.command()
@config_option
def subscribe(config_path: str):
    """Attach as the hide event subscriber and print received lines."""
    config = _load_config(config_path)

    try:
        sock = attach(config.socket_path, timeout=5.0)
    except OSError as e:
        click.echo(f"Cannot connect to {config.socket_path}: {e}", err=True)
        sys.exit(1)

    out = click.get_binary_stream("stdout")
    try:
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            out.write(chunk)
            out.flush()
    except KeyboardInterrupt:
        pass
    finally:
        sock.close()


@main.command()
@click.option("-o", "--output", type=click.Path(), help="Output file path")
def init(output: str):
    """Generate a sample configuration file."""
    sample_config = '''# logcat-daemon configuration

# Control socket for subscribers and health checks
socket_path: /dev/socket/logcat_daemon

# Filtered log, the previous one is kept as <log_file>.bak
log_file: /cache/magisk.log

# Log source
source_binary: /system/bin/logcat
buffers: [main, events, crash]   # only buffers that pass a dry run are used
log_format: threadtime
tags: [am_proc_start, Magisk]
debug: false                      # also stream fatal messages of every tag

# Supervised process
enable_watchdog: true
supervised_socket: /dev/socket/magiskd
supervised_command: [/sbin/magisk, --daemon]
watchdog_grace: 5                 # seconds before the first probe
watchdog_backoff: 0.01            # seconds between failed connects

# Diagnostics
daemon_log_file: /var/log/logcat-daemon.log
log_level: INFO
pid_file: /var/run/logcat-daemon.pid
'''

    if output:
        Path(output).write_text(sample_config)
        click.echo(f"✅ Sample config written to: {output}")
    else:
        click.echo(sample_config)


if __name__ == "__main__":
    main()
