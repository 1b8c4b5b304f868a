# -*- coding: utf-8 -*-
# pydoit task file
# see https://pydoit.org/
# run from this dir with `doit`, or `doit list`, `doit help` etc. (pip install doit 1st)

from doit.action import CmdAction

TEST_HELP = """echo '
Test Runner Help
================

Filter Options:
  -k, --keyword TEXT    Only run tests matching the keyword expression
                        Example: -k "workflow and not cancel"
  -s, --speed TEXT      Filter tests by speed:
                        - "slow": Run only slow tests (full mock runs)
                        - "not slow" or "fast": Skip slow tests
                        - "all": Run all tests regardless of speed
  -r, --retry           Only run previously failed tests

Output Options:
  -p, --print-logs      Print test logs to console instead of capturing
  -f, --full-trace      Show full traceback on errors
  -t, --show-time       Display duration of all tests

Examples:
  doit test                      # Run all tests
  doit test -k classifier        # Run tests containing "classifier"
  doit test -s fast -p           # Run fast tests with logs
  doit test --retry --show-time  # Rerun failed tests with timing
  '"""


def _build_pytest_command(
    test_dir,
    keyword="",
    speed="",
    retry=False,
    print_logs=False,
    full_trace=False,
    show_time=False,
):
    """Helper function to build pytest commands for test tasks."""
    cmd = ["pytest"]

    if print_logs:
        cmd.append("--capture=no")
    if full_trace:
        cmd.append("--full-trace")
    if show_time:
        cmd.append("--durations=0")

    cmd.extend(["--color=yes", "-vv", "-x"])

    if retry:
        cmd.append("--lf")
    if keyword:
        cmd.extend(["-k", f'"{keyword}"'])
    match speed:
        case "" | "all":
            pass
        case "slow":
            cmd.extend(["-m", "slow"])
        case "not slow" | "fast":
            cmd.extend(["-m", '"not slow"'])
        case _:
            raise ValueError(
                f"Invalid speed filter: {speed}. Use 'slow', 'not slow', 'fast', or 'all'"
            )

    cmd.append(test_dir)
    return " ".join(cmd)


def _flag(name, short):
    return {"name": name, "short": short, "default": False, "type": bool}


HELP_PARAM = {"name": "help", "long": "help", "default": False, "type": bool}


def task_install():
    """Install fixturetest in editable mode, with test extras"""
    return {
        "actions": ['pip install -e ".[test]"'],
        "verbosity": 2,
    }


def task_test():
    """Run the test suite (tests in test/logic/)."""

    def router(keyword, speed, retry, print_logs, full_trace, show_time, help=False):
        if help:
            return TEST_HELP
        try:
            return _build_pytest_command(
                "test/logic/",
                keyword=keyword,
                speed=speed,
                retry=retry,
                print_logs=print_logs,
                full_trace=full_trace,
                show_time=show_time,
            )
        except ValueError as e:
            return f"echo 'Error: {str(e)}' && exit 1"

    return {
        "actions": [CmdAction(router)],
        "params": [
            HELP_PARAM,
            {"name": "keyword", "short": "k", "default": ""},
            {"name": "speed", "short": "s", "default": ""},
            _flag("retry", "r"),
            _flag("print_logs", "p"),
            _flag("full_trace", "f"),
            _flag("show_time", "t"),
        ],
        "verbosity": 2,
    }


def task_mock_run():
    """Run a complete test against the simulated fixture, logging to the console."""
    return {
        "actions": ["fixturetest run --mock --no-log-to-file --log-to-stdout"],
        "verbosity": 2,
    }


def task_ports():
    """List serial ports and whether the tester would scan them."""
    return {
        "actions": ["fixturetest ports"],
        "verbosity": 2,
    }


def task_format():
    """Format code using ruff."""

    def router(help=False):
        if help:
            return """echo '
Code Formatter Help
=================

Sorts imports (ruff check --select I --fix) and formats code (ruff format) in
src/fixturetest/, test/ and dodo.py.

No options required - simply run:
  doit format
  '"""
        return " && ".join(
            f"ruff check --select I --fix {target} && ruff format {target}"
            for target in ("src/fixturetest", "test/", "dodo.py")
        )

    return {
        "actions": [CmdAction(router)],
        "params": [HELP_PARAM],
        "verbosity": 2,
    }
