"""CLI interface for auth-sanity using Click.

Commands:

  auth-sanity sequences [--instance FILE] [--json]   Show the execution plan
  auth-sanity check --instance FILE                  Validate registry and plan only
  auth-sanity run --instance FILE --i-accept-side-effects [options]

Exit codes: 0 when every required check passes (warnings are fine), 1 when a
required check fails or errors or the run is cancelled (Ctrl-C), 2 for
configuration, metadata or ordering errors.
"""

import datetime
import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

import click

from . import __version__
from .config import RunConfig, load_instance_seed
from .engine.report import print_results
from .engine.runner import RunCoordinator, Target
from .engine.state import InstanceState
from .errors import AuthSanityError, ConfigurationError
from .sequences import build_registry

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2


def _colorize(text: str, color: str) -> str:
    """Colorize text using ANSI codes."""
    colors = {
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "reset": "\033[0m",
        "bold": "\033[1m",
    }
    if not sys.stdout.isatty():
        return text
    return f"{colors.get(color, '')}{text}{colors['reset']}"


def _print_error(message: str):
    click.echo(_colorize(f"❌ {message}", "red"), err=True)


def _load_seed(instance: Optional[str]) -> Dict[str, Any]:
    return load_instance_seed(instance) if instance else {}


@contextmanager
def cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[threading.Event]:
    """Turn Ctrl-C into a cancellation request instead of a KeyboardInterrupt.

    The first interrupt sets ``cancel_event`` so the run stops starting new
    steps and still prints a partial report.  A second interrupt raises as
    usual.  The previous SIGINT handler is restored on exit.
    """
    def handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()
        click.echo(_colorize("Cancelling: waiting for in-flight requests to finish...", "yellow"), err=True)

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


@click.group()
@click.option("-v", "--verbose", count=True, help="Log engine activity (-vv for debug)")
@click.version_option(version=__version__)
def main(verbose: int):
    """Conformance probe for SMART / OAuth 2.0 authorization servers.

    Runs ordered conformance sequences against a live server and reports
    pass/fail/skip/warning verdicts with links to the governing specifications.
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--instance", type=click.Path(exists=True, dir_okay=False),
              help="JSON file of pre-seeded instance state")
@click.option("--json", "json_output", is_flag=True, help="Output sequence metadata as JSON")
def sequences(instance: Optional[str], json_output: bool):
    """List sequences in execution order.

    Without ``--instance`` every key no sequence defines is assumed to come
    from the seed.
    """
    try:
        registry = build_registry()
        if instance:
            preseeded = _load_seed(instance).keys()
        else:
            preseeded = registry.external_keys()
        plan = registry.plan(preseeded=preseeded)
    except AuthSanityError as e:
        _print_error(str(e))
        sys.exit(EXIT_CONFIG)

    if json_output:
        click.echo(json.dumps([s.to_dict(with_steps=True) for s in plan], indent=2))
        return
    for position, sequence in enumerate(plan, 1):
        flag = " (optional)" if sequence.optional else ""
        click.echo(_colorize(f"{position}. [{sequence.test_id_prefix}] {sequence.title}{flag}", "bold"))
        click.echo(f"   requires: {', '.join(sorted(sequence.requires)) or '-'}")
        click.echo(f"   defines:  {', '.join(sorted(sequence.defines)) or '-'}")
        for step in sequence.steps:
            click.echo(f"   {sequence.test_id(step)}  {step.name}")


@main.command()
@click.option("--instance", type=click.Path(exists=True, dir_okay=False), required=True,
              help="JSON file of pre-seeded instance state")
@click.option("--sequence", "selected", multiple=True, help="Only plan these sequences")
def check(instance: str, selected: Tuple[str, ...]):
    """Validate sequence metadata and the execution plan without running it."""
    try:
        registry = build_registry()
        seed = _load_seed(instance)
        plan = registry.plan(preseeded=seed.keys(), only=selected or None)
    except AuthSanityError as e:
        _print_error(str(e))
        sys.exit(EXIT_CONFIG)
    click.echo(_colorize(f"✅ Plan is valid: {' -> '.join(s.name for s in plan)}", "green"))


@main.command()
@click.option("--instance", type=click.Path(exists=True, dir_okay=False), required=True,
              help="JSON file of pre-seeded instance state")
@click.option("--sequence", "selected", multiple=True, help="Only run these sequences")
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
@click.option("--timeout", type=float, default=30, show_default=True, help="HTTP timeout in seconds")
@click.option("--tls-timeout", type=float, default=10, show_default=True,
              help="Timeout for each pinned TLS probe in seconds")
@click.option("--tls-no-verify", is_flag=True, help="Skip certificate verification on HTTP requests")
@click.option("--ca-bundle", type=click.Path(exists=True, dir_okay=False), help="CA bundle file")
@click.option("--proxy", help="HTTP/HTTPS proxy URL")
@click.option("--token", envvar="AUTH_SANITY_TOKEN", help="Bearer token for HTTP requests")
@click.option("--disable-tls-tests", is_flag=True, help="Skip pinned-version TLS checks")
@click.option("--workers", type=int, default=1, show_default=True,
              help="Sequences to run in parallel when they share no state")
@click.option("--i-accept-side-effects", "accept_side_effects", is_flag=True,
              help="Confirm that registering clients on the target server is acceptable")
def run(instance: str, selected: Tuple[str, ...], json_output: bool, timeout: float,
        tls_timeout: float, tls_no_verify: bool, ca_bundle: Optional[str], proxy: Optional[str],
        token: Optional[str], disable_tls_tests: bool, workers: int, accept_side_effects: bool):
    """Run the conformance plan against a live server."""
    if not accept_side_effects:
        _print_side_effect_warning(json_output)
        sys.exit(EXIT_FAILURES)

    try:
        config = RunConfig(
            timeout=timeout,
            tls_timeout=tls_timeout,
            tls_no_verify=tls_no_verify,
            ca_bundle=ca_bundle,
            proxy=proxy,
            token=token,
            disable_tls_tests=disable_tls_tests,
            max_workers=workers,
            sequences=selected,
        )
        cancel_event = threading.Event()
        with cancel_on_interrupt(cancel_event):
            code = run_conformance(config, _load_seed(instance), json_output=json_output,
                                   cancel_event=cancel_event)
        sys.exit(code)
    except AuthSanityError as e:
        _print_error(str(e))
        sys.exit(EXIT_CONFIG)


def run_conformance(config: RunConfig, seed: Dict[str, Any], json_output: bool = False,
                    cancel_event: Optional[threading.Event] = None,
                    target: Optional[Target] = None) -> int:
    """Validate, plan and execute a run; print the report; return an exit code.

    Raises:
        ConfigurationError, MetadataValidationError, OrderingError: startup
            problems, before any request reaches the server.
    """
    registry = build_registry()
    plan = registry.plan(preseeded=seed.keys(), only=config.sequences)
    if not plan:
        raise ConfigurationError("No sequences selected to run")

    state = InstanceState(seed)
    coordinator = RunCoordinator(cancel_event)
    target = target or Target.from_config(config)
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    try:
        report = coordinator.run_plan(plan, state, target, max_workers=config.max_workers)
    finally:
        target.client.close()

    print_results(report, json_output=json_output, version=__version__, timestamp=timestamp)
    if report.cancelled:
        return EXIT_FAILURES
    return EXIT_OK if report.passed else EXIT_FAILURES


def _print_side_effect_warning(json_output: bool):
    """Warn that the run registers clients on the target server."""
    message = (
        "The run registers OAuth clients on the target server (dynamic registration). "
        "Pass --i-accept-side-effects to proceed."
    )
    if json_output:
        click.echo(json.dumps({"error": "Side-effect consent required", "message": message}, indent=2))
    else:
        click.echo(f"\n  {message}\n")


if __name__ == "__main__":
    main()
