"""Terminal report for a schedule comparison."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from billing.core.types import ComparisonResult, ScheduleCost
from billing.services import ComparisonRun
from rate_compare import settings


def format_money(value: Decimal) -> str:
    """Round to the currency quantum for display only."""
    return f"${value.quantize(settings.CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)}"


def format_kwh(value: Optional[Decimal]) -> str:
    if value is None:
        return "N/A"
    return f"{value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)} kWh"


def verdict(result: ComparisonResult, target: str = "TOU rates") -> str:
    """One-line answer to "should I switch?"."""
    if result.delta < 0:
        return f"You would save {format_money(-result.delta)} by switching to {target}!"
    if result.delta > 0:
        return f"You would pay {format_money(result.delta)} more by switching to {target}!"
    return f"You would pay the same amount with {target}. Try another bill?"


def totals_table(result: ComparisonResult) -> Table:
    table = Table(title="Cost Comparison")
    table.add_column("Schedule", style="cyan")
    table.add_column("Energy", justify="right")
    table.add_column("Cost", justify="right")

    for cost in (result.schedule_a, result.schedule_b):
        table.add_row(cost.schedule_name, format_kwh(cost.energy_kwh), format_money(cost.total_usd))
    table.add_row("Difference", "", format_money(result.delta), style="bold")
    return table


def window_table(cost: ScheduleCost) -> Table:
    table = Table(title=f"{cost.schedule_name} by rate window")
    table.add_column("Window", style="cyan")
    table.add_column("Energy", justify="right")
    table.add_column("Cost", justify="right")

    for window in cost.windows:
        table.add_row(window.name, format_kwh(window.energy_kwh), format_money(window.cost_usd))
    return table


def cycle_table(result: ComparisonResult) -> Table:
    table = Table(title="Billing cycles")
    table.add_column("Cycle", style="cyan")
    table.add_column("Energy", justify="right")
    table.add_column(result.schedule_a.schedule_name, justify="right")
    table.add_column(result.schedule_b.schedule_name, justify="right")

    for cycle_a, cycle_b in zip(result.schedule_a.cycles, result.schedule_b.cycles):
        table.add_row(
            cycle_a.cycle.label,
            format_kwh(cycle_a.energy_kwh),
            format_money(cycle_a.cost_usd),
            format_money(cycle_b.cost_usd),
        )
    return table


def reconciliation_table(result: ComparisonResult) -> Table:
    reconciliation = result.reconciliation
    table = Table(title="Usage reconciliation")
    table.add_column("Measure", style="cyan")
    table.add_column("Energy", justify="right")

    table.add_row("Metered", format_kwh(reconciliation.metered_kwh))
    table.add_row("Billed", format_kwh(reconciliation.billed_kwh))
    if reconciliation.unbilled_kwh:
        table.add_row("Outside billing cycles", format_kwh(reconciliation.unbilled_kwh))
    if reconciliation.reference_kwh is not None:
        table.add_row("Reported on bill", format_kwh(reconciliation.reference_kwh))
        table.add_row("Discrepancy", format_kwh(reconciliation.discrepancy_kwh), style="yellow")
    return table


def render_report(
    run: ComparisonRun, console: Console, breakdown: bool = True, target: str = "TOU rates"
) -> None:
    """
    Print the comparison, optionally with per-window and per-cycle tables.

    ``target`` names the proposed schedule in the closing verdict.
    """
    result = run.result
    usage = result.usage

    console.print(f"Found {usage.interval_count} usage entries")
    console.print(f"Total kWh used: {format_kwh(usage.metered_kwh)}")
    for warning in run.warnings:
        console.print(f"[yellow]{warning}[/yellow]")

    console.print(totals_table(result))
    if breakdown:
        console.print(window_table(result.schedule_a))
        console.print(window_table(result.schedule_b))
        if len(run.cycles) > 1:
            console.print(cycle_table(result))
        console.print(reconciliation_table(result))
    elif result.reconciliation.has_discrepancy:
        console.print(reconciliation_table(result))

    style = "green" if result.delta < 0 else "red" if result.delta > 0 else "yellow"
    console.print(f"[{style}]{escape(verdict(result, target))}[/{style}]")
