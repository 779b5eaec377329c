"""Command-line interface for comparing electricity rate schedules."""

import copy
import logging.config
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click
from rich.console import Console

from billing.core.types import RateSchedule
from billing.exceptions import RateComparisonError
from billing.services import run_comparison
from rate_compare import __version__, settings
from rate_compare.report import render_report
from tariffs.presets import TouLocation, flat_schedule, location_schedule, tou_schedule
from tariffs.yaml_service import load_schedules

console = Console()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


class DecimalParamType(click.ParamType):
    """Parse a command-line number straight into a Decimal."""

    name = "decimal"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        try:
            result = Decimal(value)
        except InvalidOperation:
            self.fail(f"{value!r} is not a valid number", param, ctx)
        if not result.is_finite():
            self.fail(f"{value!r} is not a finite number", param, ctx)
        return result


DECIMAL = DecimalParamType()


def configure_logging(level=None):
    config = copy.deepcopy(settings.LOGGING)
    if level:
        for logger_config in config["loggers"].values():
            logger_config["level"] = level.upper()
    logging.config.dictConfig(config)


def _select_schedules(
    current_rate,
    tou_location,
    off_peak_rate,
    mid_peak_rate,
    peak_rate,
    schedules_path,
    current_name,
    proposed_name,
) -> tuple[RateSchedule, RateSchedule]:
    """Resolve the current and proposed schedules from mutually exclusive options."""
    manual_rates = (off_peak_rate, mid_peak_rate, peak_rate)
    uses_manual = any(rate is not None for rate in manual_rates)

    if schedules_path:
        if tou_location or uses_manual:
            raise click.UsageError(
                "--schedules cannot be combined with --tou-location or individual TOU rates"
            )
        if not proposed_name:
            raise click.UsageError("--schedules requires --proposed")
        if current_name and current_rate is not None:
            raise click.UsageError("Give either CURRENT_RATE or --current, not both")
        schedules = load_schedules(Path(schedules_path))
        proposed = _named_schedule(schedules, proposed_name, "--proposed")
        if current_name:
            current = _named_schedule(schedules, current_name, "--current")
        elif current_rate is not None:
            current = flat_schedule(current_rate, name="Current flat rate")
        else:
            raise click.UsageError("Give CURRENT_RATE or --current with --schedules")
        return current, proposed

    if current_name or proposed_name:
        raise click.UsageError("--current and --proposed require --schedules")
    if current_rate is None:
        raise click.UsageError("Missing argument 'CURRENT_RATE'")

    if tou_location:
        if uses_manual:
            raise click.UsageError(
                "--tou-location cannot be combined with individual TOU rates"
            )
        proposed = location_schedule(TouLocation(tou_location))
    elif all(rate is not None for rate in manual_rates):
        proposed = tou_schedule(off_peak_rate, mid_peak_rate, peak_rate)
    elif uses_manual:
        raise click.UsageError(
            "--off-peak-rate, --mid-peak-rate and --peak-rate must be given together"
        )
    else:
        raise click.UsageError(
            "Specify --tou-location, the three TOU rates, or --schedules with --proposed"
        )

    return flat_schedule(current_rate, name="Current flat rate"), proposed


def _named_schedule(schedules: dict[str, RateSchedule], name: str, option: str) -> RateSchedule:
    try:
        return schedules[name]
    except KeyError:
        available = ", ".join(sorted(schedules))
        raise click.BadParameter(
            f"No schedule named '{name}' (available: {available})", param_hint=option
        )


TOU_RATE_HELP = (
    "Your {} TOU rate, in dollars per kWh. Typically you can just give your location "
    "with --tou-location; use this when the utility has changed its rates."
)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("usage_csv", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("current_rate", type=DECIMAL, required=False)
@click.option(
    "-l",
    "--tou-location",
    type=click.Choice([location.value for location in TouLocation], case_sensitive=False),
    help="Your location, used to pick the built-in TOU rates ('other' covers Burien, "
    "SeaTac, Shoreline and unincorporated King County).",
)
@click.option("-o", "--off-peak-rate", type=DECIMAL, help=TOU_RATE_HELP.format("off-peak"))
@click.option("-m", "--mid-peak-rate", type=DECIMAL, help=TOU_RATE_HELP.format("mid-peak"))
@click.option("-p", "--peak-rate", type=DECIMAL, help=TOU_RATE_HELP.format("peak"))
@click.option(
    "--schedules",
    "schedules_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file of rate schedules to compare instead of the built-in TOU rates.",
)
@click.option("--current", "current_name", help="Name of the current schedule in --schedules.")
@click.option("--proposed", "proposed_name", help="Name of the proposed schedule in --schedules.")
@click.option(
    "--timezone",
    help="IANA timezone of the usage export, e.g. America/Los_Angeles. "
    "Defaults to naive local time.",
)
@click.option("--billing-day", type=click.IntRange(1, 28), help="Day of month billing cycles end.")
@click.option("--cycle-days", type=click.IntRange(min=1), help="Use rolling cycles of N days.")
@click.option(
    "--reference-kwh",
    type=DECIMAL,
    help="Total kWh reported on your bill, to check against the meter data.",
)
@click.option(
    "--breakdown/--no-breakdown",
    default=True,
    show_default=True,
    help="Show per-window, per-cycle and reconciliation tables.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help=f"Logging level (default: {settings.LOG_LEVEL}).",
)
@click.version_option(__version__, "-V", "--version")
def main(
    usage_csv,
    current_rate,
    tou_location,
    off_peak_rate,
    mid_peak_rate,
    peak_rate,
    schedules_path,
    current_name,
    proposed_name,
    timezone,
    billing_day,
    cycle_days,
    reference_kwh,
    breakdown,
    log_level,
):
    """Compare what your usage would cost on a time-of-use schedule.

    USAGE_CSV is the "Green Button" export from your utility (View Usage >
    View Usage Details). CURRENT_RATE is your current flat rate in dollars per
    kWh, as printed on your bill.
    """
    configure_logging(log_level)

    try:
        current, proposed = _select_schedules(
            current_rate,
            tou_location,
            off_peak_rate,
            mid_peak_rate,
            peak_rate,
            schedules_path,
            current_name,
            proposed_name,
        )
        run = run_comparison(
            usage_csv,
            current,
            proposed,
            timezone=timezone,
            billing_day=billing_day,
            cycle_days=cycle_days,
            reference_kwh=reference_kwh,
        )
    except RateComparisonError as e:
        raise click.ClickException(str(e)) from e

    target = f"'{proposed.name}'" if schedules_path else "TOU rates"
    render_report(run, console, breakdown=breakdown, target=target)


if __name__ == "__main__":
    main()
