"""adkeytab CLI — process entrypoint and operator commands.

Commands:
    adkeytab entrypoint [CMD...]   Generate krb5.conf, join or verify, exec CMD
    adkeytab refresh               Regenerate the keytab (once or in a loop)
    adkeytab health                Keytab + membership check, exit 0/1
    adkeytab proxy                 Apply the network policy and run the winbind proxy
    adkeytab topology              Show the interface classification
    adkeytab config show           Print the resolved configuration as YAML
    adkeytab config krb5           Print the krb5.conf that would be generated
    adkeytab version               Show the version
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from adkeytab import __version__
from adkeytab.config.generator import render_krb5_conf, write_krb5_conf, write_smb_conf
from adkeytab.config.models import REFRESH_LOG, WINBIND_SOCKET, KerberosConfig
from adkeytab.config.resolver import resolve_config
from adkeytab.directory.base import DirectoryClient
from adkeytab.directory.net_ads import SubprocessDirectoryClient
from adkeytab.errors import AdKeytabError, ExitCode
from adkeytab.health import HealthProbe
from adkeytab.lifecycle.machine import LifecycleStateMachine
from adkeytab.lifecycle.refresh import KeytabRefreshTask
from adkeytab.lifecycle.scheduler import CronScheduler, PeriodicRunner, RefreshScheduler
from adkeytab.lifecycle.state import FileStateStore, LifecycleState, StateStore
from adkeytab.network.proxy import STARTUP_TIMEOUT, CredentialProxyGateway
from adkeytab.network.topology import PROBE_TARGET, NetworkTopologyClassifier, PingProbe

app = typer.Typer(
    name="adkeytab",
    help="Join Active Directory and keep a shared Kerberos keytab fresh",
    add_completion=False,
)

config_app = typer.Typer(help="Inspect the resolved configuration")
app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("adkeytab")


# ---------------------------------------------------------------------------
# Wiring (replaced in tests)
# ---------------------------------------------------------------------------


def _directory_client(config: KerberosConfig) -> DirectoryClient:
    return SubprocessDirectoryClient(config)


def _state_store() -> StateStore:
    return FileStateStore()


def _scheduler() -> RefreshScheduler:
    return CronScheduler()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fail(error: AdKeytabError, exit_code: int | None = None) -> typer.Exit:
    """Print a prefixed diagnostic and build the matching Exit."""
    err_console.print(f"[bold red]ERROR:[/] {escape(str(error))}")
    if error.diagnostics:
        err_console.print(escape(error.diagnostics), highlight=False)
    return typer.Exit(error.exit_code if exit_code is None else exit_code)


def _load_config(require_credentials: bool = False) -> KerberosConfig:
    try:
        return resolve_config(os.environ, require_credentials=require_credentials)
    except AdKeytabError as e:
        raise _fail(e) from e


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, markup=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


@app.command(
    "entrypoint",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def entrypoint(ctx: typer.Context) -> None:
    """Generate krb5.conf, join AD on first start, then exec the given command."""
    console.print("#" * 80)
    console.print("# Kerberos Container for Shared Authentication")
    console.print("#" * 80)

    config = _load_config()
    try:
        config.keytab_path.parent.mkdir(parents=True, exist_ok=True)
        # Regenerated on every start so it always matches the environment
        write_krb5_conf(config)

        machine = LifecycleStateMachine(
            config, _directory_client(config), _state_store(), _scheduler(),
        )
        state = machine.run()
    except AdKeytabError as e:
        raise _fail(e) from e

    if state is LifecycleState.DEGRADED:
        console.print("[yellow]⚠ Continuing with an unverified machine account[/]")

    console.print(">> CMD: Starting services")
    if ctx.args:
        try:
            os.execvp(ctx.args[0], ctx.args)
        except OSError as e:
            err = AdKeytabError(f"Cannot start {ctx.args[0]}: {e.strerror or e}", step="CMD")
            raise _fail(err) from e


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


@app.command("refresh")
def refresh(
    log_file: Optional[Path] = typer.Option(
        None, "--log-file",
        help=f"Append refresh activity to this file (with --loop: {REFRESH_LOG})",
    ),
    loop: bool = typer.Option(
        False, "--loop",
        help="Keep running and refresh on a fixed interval",
    ),
    interval_days: int = typer.Option(
        7, "--interval-days", min=1,
        help="Days between refreshes with --loop",
    ),
) -> None:
    """Regenerate the keytab and verify its principals.

    Under cron the job's output is already redirected into the refresh log,
    so a log file is only attached when asked for or when looping.
    """
    if log_file is None and loop:
        log_file = REFRESH_LOG

    handler: logging.Handler | None = None
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_file)
            handler.setFormatter(logging.Formatter("%(asctime)s: %(levelname)s %(message)s"))
            logging.getLogger().addHandler(handler)
        except OSError as e:
            logger.warning("Cannot write refresh log %s: %s", log_file, e)

    try:
        try:
            config = resolve_config(os.environ, require_credentials=False)
        except AdKeytabError as e:
            raise _fail(e, exit_code=ExitCode.UNKNOWN) from e
        task = KeytabRefreshTask(config, _directory_client(config), _state_store())

        if loop:
            runner = PeriodicRunner(task.run, timedelta(days=interval_days))
            try:
                runner.run_forever()
            except KeyboardInterrupt:
                runner.stop()
            return

        try:
            report = task.run()
        except AdKeytabError as e:
            # The refresh contract has a single failure code
            raise _fail(e, exit_code=ExitCode.UNKNOWN) from e

        if report.reregistered:
            console.print(f"  ✅ Re-registered {', '.join(report.reregistered)}")
        console.print(f"  ✅ Keytab refreshed ({len(report.principals)} principals)")
    finally:
        if handler is not None:
            logging.getLogger().removeHandler(handler)
            handler.close()


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.command("health")
def health() -> None:
    """Exit 0 when the keytab lists and the machine account is accepted, else 1."""
    # Pass/fail only: exit 2 is reserved by container health checks
    try:
        config = resolve_config(os.environ, require_credentials=False)
        report = HealthProbe(config, _directory_client(config)).check()
    except AdKeytabError as e:
        raise _fail(e, exit_code=ExitCode.UNKNOWN) from e

    if report.healthy:
        console.print(f"healthy ({report.principals} principals)")
        return
    err_console.print(f"[red]unhealthy:[/] {escape(report.detail)}")
    raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


@app.command("proxy")
def proxy(
    port: int = typer.Option(
        0, "--port", "-p",
        help="TCP port (default: WINBIND_PROXY_PORT or 9999)",
    ),
    socket_path: Path = typer.Option(
        WINBIND_SOCKET, "--socket",
        help="winbind Unix socket to forward to",
    ),
    timeout: float = typer.Option(
        STARTUP_TIMEOUT, "--timeout",
        help="Seconds to wait for the winbind socket",
    ),
    probe_target: str = typer.Option(
        PROBE_TARGET, "--probe-target",
        help="External address used to detect isolated networks",
    ),
) -> None:
    """Restrict winbind to isolated networks and forward TCP to its socket."""
    config = _load_config()

    try:
        classifier = NetworkTopologyClassifier(probe=PingProbe(probe_target))
        allow_list = classifier.allow_list()
        logger.info("Winbind Proxy: allowing %s", " ".join(allow_list))
        write_smb_conf(config, allow_list)

        gateway = CredentialProxyGateway(
            socket_path=socket_path,
            port=port or config.proxy_port,
            startup_timeout=timeout,
        )
        gateway.start()
    except AdKeytabError as e:
        raise _fail(e) from e

    try:
        gateway.serve_forever()
    except KeyboardInterrupt:
        gateway.shutdown()


@app.command("topology")
def topology(
    probe_target: str = typer.Option(
        PROBE_TARGET, "--probe-target",
        help="External address used to detect isolated networks",
    ),
) -> None:
    """Show how each local network is classified."""
    classifier = NetworkTopologyClassifier(probe=PingProbe(probe_target))
    try:
        classified = classifier.classify()
    except AdKeytabError as e:
        raise _fail(e) from e

    table = Table(title="Network Topology")
    table.add_column("Interface", style="bold")
    table.add_column("Address")
    table.add_column("Network")
    table.add_column("Verdict")
    for entry in classified:
        iface = entry.interface
        table.add_row(
            iface.name,
            f"{iface.address}/{iface.prefix_length}",
            iface.cidr,
            entry.reachability.value,
        )
    console.print(table)
    console.print(f"Allow-list: {' '.join(classifier.allow_list(classified))}")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Print the resolved configuration as YAML (secrets redacted)."""
    config = _load_config()
    typer.echo(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False), nl=False)


@config_app.command("krb5")
def config_krb5() -> None:
    """Print the krb5.conf the entrypoint would write."""
    config = _load_config()
    typer.echo(render_krb5_conf(config), nl=False)


@app.command("version")
def version() -> None:
    """Show the adkeytab version."""
    console.print(f"adkeytab v{__version__}")


if __name__ == "__main__":
    app()
