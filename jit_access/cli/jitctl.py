#!/usr/bin/env python3
"""
JIT Access Control CLI - Command Line Interface for the JIT Access engine.

Provides commands for validating IAM request files, granting the requested
time-bound access, and cleaning it up again.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import EngineSettings, load_settings
from ..engine.expiry import Expiry, parse_rfc3339
from ..engine.orchestrator import IAMReconciler, ReconciliationOutcome
from ..exceptions import AccessEngineError
from ..ingestion import load_iam_request, validate_iam_request
from ..models import IAMRequest

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration such as ``2h``, ``1h30m`` or ``90s``.

    Raises:
        ValueError: If the value is not a duration
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    seconds = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=seconds)


class DurationType(click.ParamType):
    """Click parameter type for durations."""
    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, timedelta):
            return value
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


class TimestampType(click.ParamType):
    """Click parameter type for RFC3339 timestamps."""
    name = "timestamp"

    def convert(self, value, param, ctx):
        if isinstance(value, datetime):
            return value
        try:
            return parse_rfc3339(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


class JITController:
    """Main controller for JIT Access operations."""

    def __init__(self, settings: EngineSettings):
        self.settings = settings
        self._reconciler: Optional[IAMReconciler] = None

    @property
    def reconciler(self) -> IAMReconciler:
        """Reconciler built on first use so validation never needs credentials."""
        if self._reconciler is None:
            self._reconciler = IAMReconciler.from_settings(self.settings)
            mode = "mock" if self.settings.mock_mode else "Resource Manager"
            console.print(f"[green]JIT Access engine initialized ({mode} store)[/green]")
        return self._reconciler

    def close(self):
        """Close the store clients if the reconciler was built."""
        if self._reconciler is not None:
            self._reconciler.close()


def _load_request(path: str) -> IAMRequest:
    return validate_iam_request(load_iam_request(path))


def _print_header(title: str):
    console.print(Panel(title, expand=False))


def _print_yaml(data):
    console.print(yaml.safe_dump(data, sort_keys=False), markup=False, highlight=False, soft_wrap=True)


def _print_outcome(outcome: ReconciliationOutcome):
    table = Table(title="Reconciliation Results")
    table.add_column("Resource", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Bindings")
    table.add_column("Warnings")

    for response in outcome.responses:
        table.add_row(
            response.resource, "[green]✓ updated[/green]",
            str(len(response.policy.bindings)), str(len(response.warnings)),
        )
    if outcome.error is not None:
        for scope in outcome.error.scopes:
            table.add_row(scope, "[red]✗ failed[/red]", "-", "-")

    console.print(table)

    for warning in outcome.warnings:
        console.print(f"warning: {warning}", style="yellow", markup=False, highlight=False, soft_wrap=True)


def _finish(ctx: click.Context, outcome: ReconciliationOutcome, verbose: bool, policies_title: str):
    _print_outcome(outcome)

    if verbose and outcome.responses:
        _print_header(policies_title)
        _print_yaml([r.model_dump(by_alias=True, exclude_none=True) for r in outcome.responses])

    if outcome.error is not None:
        kind = "all" if outcome.all_failed else "some"
        console.print(f"[red]✗ Failed to update {kind} resources:[/red]")
        for line in str(outcome.error).splitlines():
            console.print(f"  - {line}", markup=False, highlight=False, soft_wrap=True)
        ctx.exit(1)


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True, dir_okay=False), help='Path to YAML settings file')
@click.option('--mock/--real', default=None, help='Use the in-memory policy store instead of the API')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, mock, debug):
    """JIT Access Control CLI - temporary IAM access on Google Cloud"""
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)

    try:
        settings = load_settings(config, {"mock_mode": mock})
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Error loading settings: {e}")

    ctx.ensure_object(dict)
    controller = JITController(settings)
    ctx.obj['controller'] = controller
    ctx.call_on_close(controller.close)


@cli.group()
def iam():
    """Manage IAM requests."""


@iam.command()
@click.option('--path', '-p', required=True, type=click.Path(exists=True, dir_okay=False),
              help='The path of IAM request file, in YAML format')
def validate(path):
    """Validate an IAM request file."""
    try:
        request = _load_request(path)
    except AccessEngineError as e:
        raise click.ClickException(str(e))

    console.print(f"[green]✓ {path} is valid ({len(request.policies)} resource policies)[/green]")


@iam.command()
@click.option('--path', '-p', required=True, type=click.Path(exists=True, dir_okay=False),
              help='The path of IAM request file, in YAML format')
@click.option('--duration', '-d', required=True, type=DurationType(),
              help='How long the access lasts, e.g. 2h or 1h30m')
@click.option('--start-time', type=TimestampType(), default=None,
              help='RFC3339 start of the access window (default: now)')
@click.option('--condition-title', default=None, help='Override the managed condition title')
@click.option('--verbose', '-v', is_flag=True,
              help='Print updated IAM policies. Note that it may contain sensitive information')
@click.pass_context
def handle(ctx, path, duration, start_time, condition_title, verbose):
    """Grant the access requested in an IAM request file."""
    controller = ctx.obj['controller']

    if duration <= timedelta(0):
        raise click.BadParameter("a positive duration is required", param_hint="--duration")

    try:
        request = _load_request(path)
    except AccessEngineError as e:
        raise click.ClickException(str(e))

    start = start_time or datetime.now(timezone.utc)
    expiry = Expiry.after(duration, start)
    console.print(f"[blue]Granting access for {len(request.policies)} resources until {expiry}[/blue]")

    try:
        outcome = controller.reconciler.grant(request, expiry, condition_title=condition_title)
    except AccessEngineError as e:
        raise click.ClickException(f"Failed to handle IAM request: {e}")

    if outcome.responses:
        _print_header("Successfully Handled IAM Request")
        _print_yaml(_applied(request, [r.resource for r in outcome.responses]))

    _finish(ctx, outcome, verbose, "Updated IAM Policies")


@iam.command()
@click.option('--path', '-p', required=True, type=click.Path(exists=True, dir_okay=False),
              help='The path of IAM request file, in YAML format')
@click.option('--condition-title', default=None, help='Override the managed condition title')
@click.option('--verbose', '-v', is_flag=True,
              help='Print cleaned up IAM policies. Note that it may contain sensitive information')
@click.pass_context
def cleanup(ctx, path, condition_title, verbose):
    """Remove the access requested in an IAM request file and sweep expired bindings."""
    controller = ctx.obj['controller']

    try:
        request = _load_request(path)
    except AccessEngineError as e:
        raise click.ClickException(str(e))

    console.print(f"[blue]Cleaning up access for {len(request.policies)} resources[/blue]")

    try:
        outcome = controller.reconciler.revoke(request, condition_title=condition_title)
    except AccessEngineError as e:
        raise click.ClickException(f"Failed to clean up IAM request: {e}")

    if outcome.responses:
        _print_header("Successfully Removed Requested Bindings")
        _print_yaml(_applied(request, [r.resource for r in outcome.responses]))

    _finish(ctx, outcome, verbose, "Cleaned Up IAM Policies")


def _applied(request: IAMRequest, resources: List[str]) -> dict:
    """The part of the request that was applied, in request file shape."""
    policies = [p for p in request.policies if p.resource in resources]
    return IAMRequest(policies=policies).model_dump(exclude_none=True)


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == '__main__':
    main()
