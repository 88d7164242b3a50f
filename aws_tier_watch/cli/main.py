"""
Main CLI entry point for AWS Tier Watch.

Provides the "aws-tier-watch" command group.
"""

import functools
import sys
import time
from typing import List, Optional, Tuple

import click
from rich.console import Console

from aws_tier_watch import __version__
from aws_tier_watch.auth.credentials import SessionFactory
from aws_tier_watch.cli.dashboard import (
    build_instance_table,
    render_operation_result,
    render_status,
)
from aws_tier_watch.core.config import Config, ConfigManager
from aws_tier_watch.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ProviderError,
    StateError,
    TierWatchError,
    UserCancelled,
)
from aws_tier_watch.core.logging import configure_logging
from aws_tier_watch.services.ec2 import EC2InstanceProvider
from aws_tier_watch.state.ledger import UsageLedger
from aws_tier_watch.usage.models import StatusUpdate
from aws_tier_watch.usage.reader import normalize
from aws_tier_watch.usage.scheduler import RefreshScheduler


console = Console()

# Exit codes for different error types
EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_AUTH_ERROR = 3
EXIT_SERVICE_ERROR = 4
EXIT_USER_CANCELLED = 130

# Billing months of ledger history kept on disk
LEDGER_MONTHS_KEPT = 3


def handle_errors(func):
    """Map exceptions raised by a command to messages and exit codes."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (KeyboardInterrupt, UserCancelled, click.exceptions.Abort):
            console.print("\n⚠️  [yellow]Operation cancelled by user[/yellow]")
            sys.exit(EXIT_USER_CANCELLED)
        except ConfigurationError as e:
            console.print(f"❌ [red]Configuration error: {e}[/red]")
            sys.exit(EXIT_CONFIG_ERROR)
        except AuthenticationError as e:
            console.print(f"❌ [red]Authentication error: {e}[/red]")
            sys.exit(EXIT_AUTH_ERROR)
        except (ProviderError, StateError) as e:
            console.print(f"❌ [red]Service error: {e}[/red]")
            sys.exit(EXIT_SERVICE_ERROR)
        except TierWatchError as e:
            console.print(f"❌ [red]{e}[/red]")
            sys.exit(EXIT_GENERAL_ERROR)
        except click.exceptions.Exit:
            raise
        except Exception as e:
            console.print(f"💥 [red]Unexpected error: {e}[/red]")
            console.print("[dim]Please report this issue with the full error message.[/dim]")
            sys.exit(EXIT_GENERAL_ERROR)

    return wrapper


def _load_config(config_manager: ConfigManager) -> Config:
    try:
        return config_manager.load_or_default()
    except ValueError as e:
        raise ConfigurationError(str(e))


def _build_provider(config: Config, region: Optional[str]) -> EC2InstanceProvider:
    """Authenticate and return an EC2 provider for the chosen region."""
    factory = SessionFactory(config)

    mfa_code = None
    if factory.requires_mfa and not factory.has_valid_cached_credentials():
        mfa_code = click.prompt(f"MFA code for {config.mfa_serial}", hide_input=False)

    session_region = region or config.default_region
    session = factory.get_session(session_region, mfa_code=mfa_code)
    return EC2InstanceProvider(session, session_region, session_factory=factory)


def _build_scheduler(
    config_manager: ConfigManager,
    config: Config,
    provider: EC2InstanceProvider,
    use_ledger: bool,
) -> RefreshScheduler:
    ledger = None
    if use_ledger:
        ledger = UsageLedger(config_manager.config_dir / "ledger")
        ledger.cleanup_old_months(keep_count=LEDGER_MONTHS_KEPT)
    return RefreshScheduler(
        provider,
        settings=config.engine_settings(),
        ledger=ledger,
        region=provider.region,
    )


@click.group()
@click.option(
    "--region",
    help="AWS region to operate in (defaults to configured region)",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Show debug logging",
)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, region: Optional[str] = None, verbose: bool = False) -> None:
    """
    📊 AWS Tier Watch - EC2 Free Tier Tracker

    Track free-tier hours, project month-end usage and control instances.
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['region'] = region


@main.command()
@click.option("--no-ledger", is_flag=True, help="Count only the current stint of running instances")
@click.option("--instances", is_flag=True, help="Also list the instances behind the numbers")
@click.pass_context
@handle_errors
def status(ctx: click.Context, no_ledger: bool, instances: bool) -> None:
    """Run one refresh and show the free-tier dashboard."""
    config_manager = ConfigManager()
    config = _load_config(config_manager)
    provider = _build_provider(config, ctx.obj.get('region'))
    scheduler = _build_scheduler(config_manager, config, provider, use_ledger=not no_ledger)

    report = scheduler.run_cycle()
    update = scheduler.last_update

    if update is not None and not update.ok:
        raise ProviderError(update.error or "Refresh failed")

    render_status(
        console,
        report,
        config.free_tier_hour_cap,
        show_instances=instances,
    )


@main.command()
@click.option("--interval", type=float, help="Seconds between refreshes (defaults to configured interval)")
@click.option("--no-ledger", is_flag=True, help="Count only the current stint of running instances")
@click.pass_context
@handle_errors
def watch(ctx: click.Context, interval: Optional[float], no_ledger: bool) -> None:
    """Keep refreshing the dashboard until Ctrl+C."""
    config_manager = ConfigManager()
    config = _load_config(config_manager)
    provider = _build_provider(config, ctx.obj.get('region'))
    scheduler = _build_scheduler(config_manager, config, provider, use_ledger=not no_ledger)
    if interval is not None:
        scheduler.configure(poll_interval_seconds=interval)

    def on_update(update: StatusUpdate) -> None:
        if update.report is None:
            console.print(f"⚠️  [yellow]Refresh failed: {update.error}[/yellow]")
            return
        console.clear()
        render_status(
            console,
            update.report,
            scheduler.settings.free_tier_hour_cap,
            stale=update.stale,
            error=update.error,
        )
        console.print(
            f"[dim]Refreshing every {scheduler.settings.poll_interval_seconds:g}s. "
            "Press Ctrl+C to quit.[/dim]"
        )

    scheduler.subscribe(on_update)
    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("\n👋 Stopped watching")
    finally:
        scheduler.stop()


@main.command(name="list")
@click.pass_context
@handle_errors
def list_instances(ctx: click.Context) -> None:
    """List EC2 instances and their free-tier eligibility."""
    config = _load_config(ConfigManager())
    provider = _build_provider(config, ctx.obj.get('region'))

    records = normalize(provider.fetch_instances(), config.eligible_instance_types, provider.region)
    if not records:
        console.print(f"No EC2 instances found in {provider.region}.")
        return
    console.print(build_instance_table(records))


def _instance_command(operation: str):
    @click.argument("instance_id")
    @click.pass_context
    @handle_errors
    def command(ctx: click.Context, instance_id: str) -> None:
        config = _load_config(ConfigManager())
        provider = _build_provider(config, ctx.obj.get('region'))

        result = getattr(provider, f"{operation}_instance")(instance_id)
        render_operation_result(console, result)
        if not result.success:
            sys.exit(EXIT_SERVICE_ERROR)

    command.__doc__ = f"{operation.capitalize()} an EC2 instance."
    return main.command(name=operation)(command)


start = _instance_command("start")
stop = _instance_command("stop")
reboot = _instance_command("reboot")


@main.command()
@click.option("--interval", "poll_interval_seconds", type=float, help="Seconds between refreshes")
@click.option("--rate", "overage_rate_per_hour", type=float, help="USD per hour beyond the free tier")
@click.option("--cap", "free_tier_hour_cap", type=float, help="Free-tier hours per month")
@click.option("--default-region", help="Default AWS region")
@click.option("--auth-mode", type=click.Choice(["profile", "static", "role"]), help="How credentials are obtained")
@click.option("--profile", "profile_name", help="Named AWS profile")
@click.option("--access-key-id", help="Static access key ID")
@click.option("--secret-access-key", help="Static secret access key")
@click.option("--role-arn", "iam_role_arn", help="IAM role ARN to assume")
@click.option("--mfa-serial", help="MFA device ARN")
@click.option("--eligible-type", "eligible_types", multiple=True, help="Free-tier eligible instance type (repeatable)")
@click.option("--show", is_flag=True, help="Print the saved configuration")
@click.option("--verify", is_flag=True, help="Check the credentials with STS GetCallerIdentity")
@click.option("--reset", is_flag=True, help="Delete the saved configuration")
@click.pass_context
@handle_errors
def configure(
    ctx: click.Context,
    show: bool,
    verify: bool,
    reset: bool,
    eligible_types: Tuple[str, ...],
    **changes,
) -> None:
    """Update the saved configuration."""
    config_manager = ConfigManager()

    if reset:
        if not config_manager.config_exists():
            console.print("No saved configuration to delete")
            return
        click.confirm(f"Delete {config_manager.get_config_path()}?", abort=True)
        config_manager.delete_config()
        console.print("🗑️  [green]Configuration deleted[/green]")
        return

    if eligible_types:
        changes['eligible_instance_types'] = list(eligible_types)

    changed = any(v is not None for v in changes.values())
    if changed:
        try:
            config = config_manager.update_config(**changes)
        except ValueError as e:
            raise ConfigurationError(str(e))
        console.print(f"✅ [green]Configuration saved to {config_manager.get_config_path()}[/green]")
    else:
        config = _load_config(config_manager)

    if show or not (changed or verify):
        if not config_manager.config_exists():
            console.print("[dim]No saved configuration, showing defaults[/dim]")
        for line in _describe_config(config):
            console.print(line)

    if verify:
        _verify_credentials(config, ctx.obj.get('region'))


def _verify_credentials(config: Config, region: Optional[str]) -> None:
    factory = SessionFactory(config)
    mfa_code = None
    if factory.requires_mfa:
        mfa_code = click.prompt(f"MFA code for {config.mfa_serial}", hide_input=False)

    session = factory.get_session(region or config.default_region, mfa_code=mfa_code)
    identity = factory.validate_credentials(session)
    console.print(
        f"✅ [green]Credentials valid for account {identity.get('Account')} "
        f"({identity.get('Arn')})[/green]"
    )


def _describe_config(config: Config) -> List[str]:
    return [
        f"Region:            {config.default_region}",
        f"Auth mode:         {config.auth_mode}",
        f"Profile:           {config.profile_name or 'default'}",
        f"Role ARN:          {config.iam_role_arn or '-'}",
        f"MFA serial:        {config.mfa_serial or '-'}",
        f"Access key:        {'set' if config.access_key_id else '-'}",
        f"Poll interval:     {config.poll_interval_seconds:g}s",
        f"Overage rate:      ${config.overage_rate_per_hour}/h",
        f"Free-tier cap:     {config.free_tier_hour_cap:g}h",
        f"Eligible types:    {', '.join(config.eligible_instance_types)}",
    ]


if __name__ == "__main__":
    main()
