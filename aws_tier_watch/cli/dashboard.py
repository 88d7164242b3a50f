"""Rich rendering of free-tier status and instance lists."""

from typing import Iterable, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from aws_tier_watch.services.models import OperationResult
from aws_tier_watch.usage.classifier import usage_ratio
from aws_tier_watch.usage.models import InstanceRecord, InstanceState, StatusReport, ThresholdLevel

LEVEL_STYLES = {
    ThresholdLevel.SAFE: ("green", "✅"),
    ThresholdLevel.WARNING: ("yellow", "⚠️ "),
    ThresholdLevel.CRITICAL: ("red", "🔥"),
    ThresholdLevel.EXCEEDED: ("bold red", "💸"),
}

STATE_STYLES = {
    InstanceState.RUNNING: "green",
    InstanceState.PENDING: "cyan",
    InstanceState.STOPPING: "yellow",
    InstanceState.STOPPED: "dim",
    InstanceState.TERMINATED: "dim red",
}


def usage_bar(ratio: float, width: int = 30) -> str:
    """Text progress bar, capped at full width."""
    filled = min(width, int(round(min(ratio, 1.0) * width)))
    return "█" * filled + "░" * (width - filled)


def build_status_panel(
    report: StatusReport,
    hour_cap: float,
    stale: bool = False,
    error: Optional[str] = None,
) -> Panel:
    """Dashboard panel for one status report."""
    style, icon = LEVEL_STYLES[report.level]
    snapshot = report.snapshot
    projection = report.projection
    ratio = usage_ratio(snapshot.hours_used, hour_cap)

    summary = Table.grid(padding=(0, 2))
    summary.add_column(style="bold")
    summary.add_column()
    summary.add_row("Usage", f"[{style}]{usage_bar(ratio)}[/{style}] {ratio * 100:.1f}%")
    summary.add_row("Hours used", f"{snapshot.hours_used:.1f} / {hour_cap:.0f}")
    if snapshot.carried_hours:
        summary.add_row("  from stopped stints", f"{snapshot.carried_hours:.1f}")
    summary.add_row(
        "Projected month-end",
        f"{projection.projected_monthly_hours:.1f}h "
        f"(day {projection.day_of_month} of {projection.days_in_month})",
    )
    if projection.projected_overage_hours > 0:
        summary.add_row(
            "Projected overage",
            f"[red]{projection.projected_overage_hours:.1f}h ≈ ${projection.estimated_overage_cost:.2f}[/red]",
        )
    if projection.days_until_exhausted is not None:
        summary.add_row("Cap reached around", f"day {projection.days_until_exhausted}")
    summary.add_row("Eligible running", str(snapshot.eligible_running_count))
    summary.add_row("Non-eligible running", str(snapshot.non_eligible_running_count))

    parts = [summary]
    if report.advisories:
        advisories = Text()
        for message in report.advisories:
            advisories.append(f"\n• {message}", style=style)
        parts.append(advisories)

    as_of = snapshot.as_of.strftime("%Y-%m-%d %H:%M:%S UTC")
    subtitle = f"as of {as_of}"
    if stale:
        subtitle = f"[yellow]STALE[/yellow] - last good {as_of}"
        if error:
            parts.append(Text(f"\nLast refresh failed: {error}", style="yellow"))

    return Panel(
        Group(*parts),
        title=f"{icon} EC2 Free Tier: [{style}]{report.level.value.upper()}[/{style}]",
        subtitle=subtitle,
        border_style="yellow" if stale else style,
        expand=False,
    )


def build_instance_table(records: Iterable[InstanceRecord]) -> Table:
    """Table of instances, eligible types first."""
    table = Table(title="EC2 Instances")
    table.add_column("Instance ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("State")
    table.add_column("Free tier")
    table.add_column("Launched")

    ordered = sorted(records, key=lambda r: (not r.free_tier_eligible, r.state.value, r.id))
    for record in ordered:
        state_style = STATE_STYLES.get(record.state, "")
        launched = record.launch_time.strftime("%Y-%m-%d %H:%M") if record.launch_time else "-"
        table.add_row(
            record.id,
            record.name or "",
            record.instance_type,
            f"[{state_style}]{record.state.value}[/{state_style}]" if state_style else record.state.value,
            "✅" if record.free_tier_eligible else "[dim]no[/dim]",
            launched,
        )
    return table


def render_status(
    console: Console,
    report: StatusReport,
    hour_cap: float,
    stale: bool = False,
    error: Optional[str] = None,
    show_instances: bool = False,
) -> None:
    console.print(build_status_panel(report, hour_cap, stale, error))
    if show_instances and report.records:
        console.print(build_instance_table(report.records))


def render_operation_result(console: Console, result: OperationResult) -> None:
    if result.success:
        console.print(f"✅ [green]{result.message}[/green]")
    else:
        console.print(f"❌ [red]{result.message}[/red]")
