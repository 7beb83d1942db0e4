"""
Command-line interface for the BOM explosion engine.

Master data is read from a directory of CSV/Excel exports (items,
bom_masters, bom_components and optionally stock, uom_conversions, pricing).

    bom-explode --data-dir ./data explode CARTON-A=100 BOX-Y=10
    bom-explode --data-dir ./data shortages CARTON-A=100
    bom-explode --data-dir ./data cost BOX-Y 10 --policy weighted_average
"""

import logging
from datetime import date
from typing import List, Tuple

import click

from bom_errors import BomError
from bom_explosion import BomExplosionEngine, group_by_stage, results_to_dataframe
from config import VALUATION_POLICIES, EngineConfig, setup_logging
from cost_rollup import CostRollup, rollup_to_dataframe
from master_data import InMemoryMasterData
from shortage_detector import ShortageDetector, shortages_to_dataframe

logger = logging.getLogger(__name__)


def parse_orders(values) -> List[Tuple[str, str]]:
    orders = []
    for value in values:
        code, sep, qty = value.replace(":", "=").partition("=")
        if not sep or not code.strip() or not qty.strip():
            raise click.BadParameter(f"expected ITEM=QUANTITY, got {value!r}")
        orders.append((code.strip(), qty.strip()))
    return orders


class Session:
    """Master data, config and engine shared by the subcommands of one run."""

    def __init__(self, data_dir: str, config: EngineConfig, as_of: date):
        self.data_dir = data_dir
        self.config = config
        self.as_of = as_of
        self._source = None

    @property
    def source(self) -> InMemoryMasterData:
        if self._source is None:
            self._source = InMemoryMasterData.from_directory(self.data_dir)
        return self._source

    @property
    def engine(self) -> BomExplosionEngine:
        return BomExplosionEngine.from_source(self.source, self.config)

    def explode(self, orders):
        return self.engine.explode_batch(parse_orders(orders), self.as_of)


def _run(func):
    """Turn engine and data errors into a clean CLI failure."""
    try:
        return func()
    except (BomError, ValueError, FileNotFoundError) as e:
        logger.debug("Command failed", exc_info=True)
        raise click.ClickException(str(e))


@click.group()
@click.option("--data-dir", required=True, type=click.Path(exists=True, file_okay=False),
              help="Directory holding the master data tables.")
@click.option("--as-of", "as_of", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Date used to select BOM versions (default: today).")
@click.option("--org", "organization_id", default=None, help="Organisation for unit conversions.")
@click.option("--default-waste", type=float, default=0.0, show_default=True,
              help="Waste percentage for lines that declare none.")
@click.option("--precision", type=int, default=2, show_default=True,
              help="Display precision for quantities.")
@click.option("--max-depth", type=int, default=20, show_default=True, help="BOM depth guard.")
@click.option("-v", "--verbose", count=True, help="-v for info, -vv for debug logging.")
@click.pass_context
def cli(ctx, data_dir, as_of, organization_id, default_waste, precision, max_depth, verbose):
    """Explode bills of materials, detect shortages and roll up material cost."""
    setup_logging([logging.WARNING, logging.INFO, logging.DEBUG][min(verbose, 2)])
    config = _run(lambda: EngineConfig(organization_id=organization_id,
                                       default_waste_percentage=default_waste,
                                       display_precision=precision, max_depth=max_depth))
    ctx.obj = Session(data_dir, config, as_of.date() if as_of else date.today())


@cli.command()
@click.argument("orders", nargs=-1, required=True)
@click.option("--by-stage", is_flag=True, help="Also list requirements per production stage.")
@click.option("--output", type=click.Path(dir_okay=False, writable=True), default=None,
              help="Write the requirements to this CSV file.")
@click.pass_obj
def explode(session, orders, by_stage, output):
    """Material requirements for ITEM=QUANTITY orders."""
    results = _run(lambda: session.explode(orders))
    df = results_to_dataframe(results)
    click.echo(df.to_string(index=False) if not df.empty else "No material requirements.")
    if by_stage:
        click.echo("")
        for req in group_by_stage(results):
            name = f" ({req.stage_name})" if req.stage_name else ""
            click.echo(f"{req.stage_id}{name}: {req.item_code} {req.quantity:.{session.config.display_precision}f}")
    if output:
        df.to_csv(output, index=False)
        click.echo(f"Wrote {len(df)} row(s) to {output}")


@cli.command()
@click.argument("orders", nargs=-1, required=True)
@click.option("--only-short", is_flag=True, help="List only items that are short.")
@click.pass_obj
def shortages(session, orders, only_short):
    """Shortages and suggested actions for ITEM=QUANTITY orders."""
    results = _run(lambda: session.explode(orders))
    records = ShortageDetector().detect_shortages(results, session.source)
    if only_short:
        records = [r for r in records if r.shortage_quantity > 0]
    df = shortages_to_dataframe(records)
    click.echo(df.to_string(index=False) if not df.empty else "No shortages.")


@cli.command()
@click.argument("item_code")
@click.argument("quantity")
@click.option("--policy", type=click.Choice(VALUATION_POLICIES), default=None,
              help="Valuation policy (default: standard_cost).")
@click.pass_obj
def cost(session, item_code, quantity, policy):
    """Material cost of producing QUANTITY of ITEM_CODE."""
    def run():
        results = session.engine.explode(item_code, quantity, session.as_of)
        return CostRollup(session.source, session.config).rollup_cost(results, policy, quantity)

    rollup = _run(run)
    click.echo(rollup_to_dataframe(rollup).to_string(index=False))
    click.echo(f"Total cost: {rollup.total_cost:.2f}")
    click.echo(f"Unit cost: {rollup.unit_cost:.4f}")
    for warning in rollup.warnings:
        click.echo(f"Warning: {warning}", err=True)


@cli.command()
@click.argument("item_code")
@click.argument("quantity", default="1")
@click.pass_obj
def topology(session, item_code, quantity):
    """Indented BOM tree of ITEM_CODE with effective quantities."""
    click.echo(_run(lambda: session.engine.display_topology(item_code, quantity, session.as_of)))


@cli.command()
@click.argument("item_code")
@click.argument("price")
@click.pass_obj
def variance(session, item_code, price):
    """Check a new purchase PRICE for ITEM_CODE against its standard cost."""
    result = _run(lambda: CostRollup(session.source, session.config).detect_pricing_variance(item_code, price))
    if result is None:
        raise click.ClickException(f"No standard cost for {item_code}")
    click.echo(f"{item_code}: {result.variance_percentage:+.1f}% against {result.master_price} "
               f"(tolerance {result.tolerance_percentage}%) -> {result.severity}")


if __name__ == "__main__":
    cli()
