import asyncio
import sys
import threading
from typing import Callable, Optional, TextIO

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fixturetest.device import ArduinoLink, MockFixture, Stm32Link
from fixturetest.meas.workflow import WORKFLOW_STATE
from fixturetest.system import FixtureSystem, ThresholdSettings, mock_system
from fixturetest.types import (
    PROFILES,
    ConnectionUpdate,
    DebugSnapshot,
    StatusUpdate,
    TestReport,
    WrongRoleDetected,
)
from fixturetest.util import (
    DEFAULT_BAUDRATE,
    DEFAULT_LOGLEVEL,
    format_error_response,
    get_hw_ports,
    get_log_filename,
    list_ports,
    shutdown_client_log,
    start_client_log,
)

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_NO_FIXTURE = 2  # wrong role, or a link could not be connected

SLOW_MODE_HELP = "slow mode: p + Enter pauses/resumes, b / n step back / forward, c cancels"


def print_tree(cmd, prefix="", parent_ctx=None):
    """Print command tree starting from given command."""
    ctx = click.Context(cmd, info_name=cmd.name, parent=parent_ctx)

    # Only print root name if no parent
    if not parent_ctx:
        click.echo(cmd.name)

    for sub in sorted(cmd.list_commands(ctx)):
        sub_cmd = cmd.get_command(ctx, sub)
        click.echo(f"{prefix}└── {sub}")
        if isinstance(sub_cmd, click.Group):
            print_tree(sub_cmd, prefix + "    ", ctx)


def tree_option(f):
    """Add --tree option to command."""

    def callback(ctx, param, value):
        if not value or ctx.resilient_parsing:
            return
        print_tree(ctx.command)
        ctx.exit()

    return click.option(
        "--tree",
        is_flag=True,
        help="Show command tree from this point",
        expose_value=False,
        is_eager=True,
        callback=callback,
    )(f)


@click.group()
@tree_option
def cli():
    """fixturetest - production tester for the main and BodyDoor fixture boards.

    On the main board, drives every output through the STM32, reads both sides
    of each channel through the Arduino and the STM32, and reports:

    - range failures of idle, running and sensor readings

    - MOSFET, load and wiring faults per channel

    - short circuits between neighbouring pins

    On the BodyDoor board, reads every channel at idle through the Arduino and
    reports range failures and supply rail anomalies.
    """
    pass


@cli.command()
def ports():
    """List all available serial ports.

    ST-Link virtual COM ports (the programmer, not the board) are marked and
    skipped when the tester scans for the fixture.
    """
    hw_ports = get_hw_ports()
    usable = set(list_ports(exclude_stlink=True))

    console = Console(color_system="standard")
    if not hw_ports:
        console.print("No serial ports found")
        return

    table = Table(title="Serial ports")
    table.add_column("Port")
    table.add_column("Description")
    table.add_column("Hardware ID")
    table.add_column("Scanned")
    for port, info in hw_ports.items():
        description, hwid = (info + ("", ""))[:2]
        scanned = "[green]yes[/green]" if port in usable else "[yellow]no (ST-Link)[/yellow]"
        table.add_row(port, str(description), str(hwid), scanned)
    console.print(table)


@cli.command()
@click.option(
    "--mock/--no-mock",
    default=False,
    help="Run against the simulated fixture instead of serial ports",
)
@click.option(
    "--fixture",
    "-f",
    "fixture_name",
    default="main",
    type=click.Choice(sorted(PROFILES)),
    help="Fixture variant on the bench (default: main)",
)
@click.option(
    "--slow/--no-slow",
    default=False,
    help=(
        "Pause after each adjacency sub-test and print its snapshot; while "
        "running, p + Enter pauses/resumes, b and n step through the "
        "snapshots, c cancels"
    ),
)
@click.option(
    "--baudrate",
    "-b",
    default=DEFAULT_BAUDRATE,
    type=int,
    help="Baud rate of both links (default: 115200)",
)
@click.option(
    "--thresholds-file",
    "-t",
    default=None,
    type=click.Path(dir_okay=False),
    help="Threshold settings file (default: ~/.fixturetest/thresholds.json)",
)
@click.option(
    "--log-to-file/--no-log-to-file",
    "-ltf/",
    default=True,
    help="Enable/disable logging to file (default: enabled)",
)
@click.option(
    "--log-to-stdout/--no-log-to-stdout",
    "-lts/",
    default=False,
    help="Enable/disable console logging (default: disabled)",
)
@click.option(
    "--log-level",
    "-ll",
    default=DEFAULT_LOGLEVEL,
    help="Logging level (DEBUG, INFO, WARNING, ERROR) (default: INFO)",
)
@click.pass_context
def run(
    ctx,
    mock: bool,
    fixture_name: str,
    slow: bool,
    baudrate: int,
    thresholds_file: Optional[str],
    log_to_file: bool,
    log_to_stdout: bool,
    log_level: str,
):
    """Run one complete fixture test.

    Exits with 0 if the board passed, 1 if it failed or the run was cancelled,
    and 2 if the fixture could not be connected or answered as a different
    fixture.

    With --slow, each adjacency snapshot is printed as it is recorded and the
    run reads single-letter commands from stdin: p pauses or resumes the
    wait, b and n show the previous and next snapshot, c cancels the run.
    """
    start_client_log(
        log_to_file=log_to_file, log_to_stdout=log_to_stdout, log_level=log_level
    )
    settings = ThresholdSettings(thresholds_file)
    settings.load()
    profile = PROFILES[fixture_name]
    if mock:
        fixture = MockFixture() if profile.uses_stm32 else MockFixture.body_door()
        system = mock_system(fixture, settings=settings, profile=profile)
    else:
        system = FixtureSystem(
            ArduinoLink(baudrate=baudrate, channels=profile.channels),
            Stm32Link(baudrate=baudrate),
            profile=profile,
            settings=settings,
        )

    console = Console(color_system="standard")
    try:
        state = asyncio.run(_run_workflow(system, slow, console))
    except Exception:
        click.echo(f"Error: {format_error_response()}", err=True)
        ctx.exit(EXIT_FAIL)
    finally:
        log_file = get_log_filename()
        shutdown_client_log()
        if log_file:
            click.echo(f"Log written to {log_file}")

    match state:
        case WORKFLOW_STATE.FINISHED:
            print_report(console, system.last_result)
            ctx.exit(EXIT_PASS if system.last_result.passed else EXIT_FAIL)
        case WORKFLOW_STATE.CANCELLED:
            console.print("[yellow]Test cancelled[/yellow]")
            ctx.exit(EXIT_FAIL)
        case WORKFLOW_STATE.WRONG_ROLE:
            others = ", ".join(name for name in sorted(PROFILES) if name != fixture_name)
            console.print(
                f"[red]Connected board belongs to a different fixture[/red] (try --fixture {others})"
            )
            ctx.exit(EXIT_NO_FIXTURE)
        case _:
            console.print("[red]Could not connect to the fixture[/red]")
            ctx.exit(EXIT_NO_FIXTURE)


async def _run_workflow(system: FixtureSystem, slow: bool, console: Console) -> str:
    queue = asyncio.Queue()
    task = asyncio.create_task(system.run_workflow(queue, slow_mode=slow))
    if slow:
        console.print(SLOW_MODE_HELP)
        start_stdin_listener(
            asyncio.get_running_loop(),
            lambda line: _echo_slow_command(console, system, line),
        )
    try:
        while not (task.done() and queue.empty()):
            try:
                notif = await asyncio.wait_for(queue.get(), 0.1)
            except asyncio.TimeoutError:
                continue
            _echo_notification(console, notif)
        return task.result()
    finally:
        await system.packdown()


def start_stdin_listener(
    loop: asyncio.AbstractEventLoop,
    callback: Callable[[str], None],
    stream: Optional[TextIO] = None,
) -> threading.Thread:
    """Hand each line of ``stream`` (stdin) to ``callback`` on ``loop``."""
    stream = stream or sys.stdin

    def listen():
        for line in stream:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(callback, line)

    thread = threading.Thread(target=listen, daemon=True)
    thread.start()
    return thread


def slow_mode_command(system: FixtureSystem, line: str) -> Optional[str]:
    """Apply one slow-mode command to the running workflow.

    Returns a message to print, or None if nothing was done. Snapshots shown
    by ``b`` and ``n`` arrive on the notification queue.
    """
    workflow = system.workflow
    if workflow is None:
        return None
    match line.strip().lower():
        case "p":
            return "Paused" if workflow.toggle_pause() else "Resumed"
        case "b":
            workflow.history_prev()
        case "n":
            workflow.history_next()
        case "c":
            workflow.cancel()
            return "Cancelling"
        case "":
            return None
        case other:
            return f"Unknown command {other!r}; {SLOW_MODE_HELP}"
    return None


def _echo_slow_command(console: Console, system: FixtureSystem, line: str):
    message = slow_mode_command(system, line)
    if message:
        console.print(message, markup=False)


def _echo_notification(console: Console, notif):
    match notif:
        case StatusUpdate():
            console.print(f"[{notif.progress:4.0%}] {notif.status}")
        case WrongRoleDetected():
            console.print(f"[red]{notif.port} answered as a different fixture[/red]")
        case ConnectionUpdate():
            status = "connected" if notif.connected else "disconnected"
            console.print(f"{notif.role} {status} {notif.port} {notif.detail}".rstrip())
        case DebugSnapshot():
            console.print(f"--- snapshot {notif.index}/{notif.total} ---")
            console.print(notif.text, markup=False)


def print_report(console: Console, report: TestReport):
    """Print the failure lists of a report in a panel."""
    table = Table(show_header=False, box=None)
    table.add_column("Item")
    failures = {title: items for title, items in report.failure_lists().items() if items}
    if not failures:
        table.add_row("[green]All checks passed[/green]")
    for title, items in failures.items():
        table.add_row(f"\n[bold]{title}:[/bold]")
        for item in items:
            table.add_row(f"  [red]-[/red] {item}")
    if report.missing_items:
        table.add_row("\n[bold]No data:[/bold]")
        for item in report.missing_items:
            table.add_row(f"  [yellow]![/yellow] {item}")

    verdict = "[green]PASS[/green]" if report.passed else "[red]FAIL[/red]"
    console.print(
        Panel(
            table,
            title=f"Test result: {verdict}",
            border_style="green" if report.passed else "red",
            padding=(1, 2),
        )
    )


@cli.group()
@tree_option
def thresholds():
    """Show and edit the stored thresholds."""
    pass


@thresholds.command(name="show")
@click.option("--thresholds-file", "-t", default=None, type=click.Path(dir_okay=False))
def show_thresholds(thresholds_file: Optional[str]):
    """Print every scalar setting and its value."""
    settings = ThresholdSettings(thresholds_file)
    settings.load()
    table = Table(title=f"Thresholds ({settings.path})")
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    for key in settings.scalar_keys():
        table.add_row(key, str(settings.get(key)))
    Console(color_system="standard").print(table)


@thresholds.command(name="set")
@click.argument("key")
@click.argument("value")
@click.option("--thresholds-file", "-t", default=None, type=click.Path(dir_okay=False))
def set_threshold(key: str, value: str, thresholds_file: Optional[str]):
    """Set KEY to VALUE and save.

    KEY is a setting name (``adjacent_short``) or a range as TABLE.CHANNEL
    (``arduino_idle.3``) with VALUE ``lo,hi``.
    """
    settings = ThresholdSettings(thresholds_file)
    settings.load()
    try:
        settings.set(key, value)
    except (KeyError, ValueError) as e:
        raise click.BadParameter(str(e), param_hint="KEY/VALUE")
    settings.save()
    click.echo(f"{key} = {settings.get(key)}")


@thresholds.command(name="reset")
@click.option("--thresholds-file", "-t", default=None, type=click.Path(dir_okay=False))
def reset_thresholds(thresholds_file: Optional[str]):
    """Restore the default thresholds and save."""
    settings = ThresholdSettings(thresholds_file)
    settings.reset()
    settings.save()
    click.echo(f"Thresholds reset to defaults in {settings.path}")


@thresholds.command(name="path")
def thresholds_path():
    """Print the default settings file location."""
    click.echo(str(ThresholdSettings().path))
