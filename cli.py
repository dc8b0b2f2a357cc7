import asyncio
import click
import logging
import sqlalchemy.exc
import traceback
from tabulate import tabulate

from config.settings import get_settings
from core.database.models import AvailabilityStrategy
from core.database.operations import (
    SessionLocal,
    create_task,
    delete_task,
    ensure_seed_data,
    get_latest_check,
    get_recent_checks,
    get_task,
    init_db,
    list_tasks,
    update_task,
)
from core.monitoring.scheduler import build_scheduler
from core.scrapers.extraction import ExtractionRule
from core.scrapers.renderer_factory import RendererFactory
from core.scrapers.selector_detector import SelectorDetector, preset_for_url

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("pricewatch-cli")

STRATEGY_CHOICES = [strategy.value for strategy in AvailabilityStrategy]


def _report_error(ctx, message, error):
    click.echo(f"{message}: {str(error)}")
    if ctx.obj["VERBOSE"]:
        click.echo(traceback.format_exc())


def _format_price(value, currency=""):
    if value is None:
        return "-"
    return f"${value:,} {currency}".strip()


def _format_stock(in_stock):
    if in_stock is None:
        return "?"
    return "yes" if in_stock else "no"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, verbose):
    """Price and stock watcher for online stores."""
    # Store verbose flag in the Click context instead of a global variable
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")


@cli.command()
def init():
    """Initialize the database."""
    init_db()
    click.echo("Database initialized!")


@cli.command()
@click.pass_context
def seed(ctx):
    """Create example watch tasks if there are none."""
    db = SessionLocal()
    try:
        if ensure_seed_data(db):
            click.echo("Seeded example watch tasks.")
        else:
            click.echo("Tasks already exist, nothing seeded.")
    except sqlalchemy.exc.SQLAlchemyError as e:
        db.rollback()
        _report_error(ctx, "Database error", e)
    finally:
        db.close()


@cli.command()
@click.argument("name")
@click.argument("url")
@click.option("--selector", "-s", "price_selector", help="CSS selector of the price (defaults to the store preset)")
@click.option("--stock-selector", help="CSS selector of the stock message")
@click.option(
    "--strategy",
    type=click.Choice(STRATEGY_CHOICES),
    default=AvailabilityStrategy.PRICE_SELECTOR_ONLY.value,
    help="How availability is inferred",
)
@click.option("--keyword", "-k", multiple=True, help="Out-of-stock keyword (can be specified multiple times)")
@click.option("--target-price", type=int, help="Alert when the price reaches this value")
@click.option("--interval", default=60, type=click.IntRange(min=1), help="Check interval in minutes (default: 60)")
@click.option("--currency", default="CLP", help="Currency code (default: CLP)")
@click.option("--drop-alert/--no-drop-alert", default=True, help="Alert on price drops")
@click.option("--stock-alert/--no-stock-alert", default=True, help="Alert when back in stock")
@click.pass_context
def add(ctx, name, url, price_selector, stock_selector, strategy, keyword, target_price, interval, currency,
        drop_alert, stock_alert):
    """Add a watch task for NAME at URL."""
    if not price_selector:
        preset = preset_for_url(url)
        if preset is None:
            click.echo("No --selector given and no preset known for this store. Try 'detect' first.")
            return
        price_selector = preset["selector"]
        click.echo(f"Using {preset['name']} preset selector: {price_selector}")

    db = SessionLocal()
    try:
        task = create_task(
            db,
            name=name,
            url=url,
            currency=currency,
            price_selector=price_selector,
            stock_selector=stock_selector,
            availability_strategy=strategy,
            out_of_stock_keywords=list(keyword) if keyword else None,
            target_price=target_price,
            alert_on_drop=drop_alert,
            alert_on_back_in_stock=stock_alert,
            check_frequency_minutes=interval,
        )
        click.echo(f"Created task {task.id} for {task.store_domain}")
    except ValueError as e:
        _report_error(ctx, "Invalid task", e)
    except sqlalchemy.exc.SQLAlchemyError as e:
        db.rollback()
        _report_error(ctx, "Database error", e)
    finally:
        db.close()


@cli.command(name="list")
@click.pass_context
def list_command(ctx):
    """List watch tasks with their latest check."""
    db = SessionLocal()
    try:
        tasks = list_tasks(db)
        if not tasks:
            click.echo("No watch tasks found.")
            return

        table_data = []
        for task in tasks:
            latest = get_latest_check(db, task.id)
            name = task.name if len(task.name) <= 40 else task.name[:37] + "..."
            table_data.append([
                task.id[:8],
                name,
                task.store_domain,
                f"{task.check_frequency_minutes}m",
                "on" if task.enabled else "off",
                latest.status.value if latest else "NEVER",
                _format_price(latest.price_value, task.currency) if latest else "-",
                _format_stock(latest.in_stock) if latest else "-",
                latest.created_at.strftime("%Y-%m-%d %H:%M") if latest else "-",
            ])

        headers = ["ID", "Name", "Store", "Every", "Enabled", "Status", "Price", "In stock", "Checked"]
        click.echo(tabulate(table_data, headers=headers, tablefmt="grid"))
    except sqlalchemy.exc.SQLAlchemyError as e:
        _report_error(ctx, "Database error", e)
    finally:
        db.close()


def _resolve_task(db, task_id):
    """Accept a full ID or the 8-character prefix shown by 'list'."""
    task = get_task(db, task_id)
    if task is not None:
        return task
    matches = [task for task in list_tasks(db) if task.id.startswith(task_id)]
    return matches[0] if len(matches) == 1 else None


@cli.command()
@click.argument("task_id")
@click.option("--limit", type=int, default=20, help="Number of checks to show (default: 20)")
@click.pass_context
def show(ctx, task_id, limit):
    """Show a task and its recent check history."""
    db = SessionLocal()
    try:
        task = _resolve_task(db, task_id)
        if task is None:
            click.echo(f"Error: Task with ID {task_id} not found.")
            return

        click.echo(f"{task.name} ({task.id})")
        click.echo(f"   URL: {task.url}")
        click.echo(f"   Selector: {task.price_selector}  Strategy: {task.availability_strategy.value}")
        if task.target_price is not None:
            click.echo(f"   Target: {_format_price(task.target_price, task.currency)}")

        checks = get_recent_checks(db, task.id, limit=limit)
        if not checks:
            click.echo("\nNever checked.")
            return

        table_data = [
            [
                check.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                check.status.value,
                _format_price(check.price_value, task.currency),
                _format_stock(check.in_stock),
                f"{check.response_time_ms or 0} ms",
                check.error_message or "",
            ]
            for check in checks
        ]
        headers = ["Checked", "Status", "Price", "In stock", "Time", "Error"]
        click.echo("\n" + tabulate(table_data, headers=headers, tablefmt="grid"))
    except sqlalchemy.exc.SQLAlchemyError as e:
        _report_error(ctx, "Database error", e)
    finally:
        db.close()


def _set_enabled(ctx, task_id, enabled):
    db = SessionLocal()
    try:
        task = _resolve_task(db, task_id)
        if task is None:
            click.echo(f"Error: Task with ID {task_id} not found.")
            return
        update_task(db, task.id, enabled=enabled)
        click.echo(f"Task {task.name} {'enabled' if enabled else 'disabled'}.")
    except sqlalchemy.exc.SQLAlchemyError as e:
        db.rollback()
        _report_error(ctx, "Database error", e)
    finally:
        db.close()


@cli.command()
@click.argument("task_id")
@click.pass_context
def enable(ctx, task_id):
    """Resume checking a task."""
    _set_enabled(ctx, task_id, True)


@cli.command()
@click.argument("task_id")
@click.pass_context
def disable(ctx, task_id):
    """Stop checking a task without deleting its history."""
    _set_enabled(ctx, task_id, False)


@cli.command()
@click.argument("task_id")
@click.confirmation_option(prompt="Delete this task and all of its history?")
@click.pass_context
def delete(ctx, task_id):
    """Delete a task together with its checks and notifications."""
    db = SessionLocal()
    try:
        task = _resolve_task(db, task_id)
        if task is None or not delete_task(db, task.id):
            click.echo(f"Error: Task with ID {task_id} not found.")
            return
        click.echo(f"Deleted task {task.name}.")
    except sqlalchemy.exc.SQLAlchemyError as e:
        db.rollback()
        _report_error(ctx, "Database error", e)
    finally:
        db.close()


@cli.command()
@click.argument("url")
@click.option("--renderer", "-r", type=click.Choice(sorted(RendererFactory.RENDERERS)), help="Page renderer")
def detect(url, renderer):
    """Suggest a price selector for URL."""
    preset = preset_for_url(url)
    if preset:
        click.echo(f"Known store: {preset['name']} ({preset['selector']})")

    detector = SelectorDetector(RendererFactory.create_renderer(renderer))
    result = asyncio.run(detector.detect(url))
    if not result.found:
        click.echo("Could not detect a price selector automatically.")
        return

    click.echo(f"Strategy: {result.strategy}")
    click.echo(f"Selector: {result.selector or '(structured data, no element selector)'}")
    click.echo(f"Price: {result.price}")


@cli.command(name="test-check")
@click.argument("url")
@click.option("--selector", "-s", "price_selector", required=True, help="CSS selector of the price")
@click.option("--stock-selector", help="CSS selector of the stock message")
@click.option(
    "--strategy",
    type=click.Choice(STRATEGY_CHOICES),
    default=AvailabilityStrategy.PRICE_SELECTOR_ONLY.value,
    help="How availability is inferred",
)
@click.option("--keyword", "-k", multiple=True, help="Out-of-stock keyword (can be specified multiple times)")
@click.option("--renderer", "-r", type=click.Choice(sorted(RendererFactory.RENDERERS)), help="Page renderer")
def test_check(url, price_selector, stock_selector, strategy, keyword, renderer):
    """Run one check against URL without saving anything."""
    scheduler = build_scheduler(renderer=RendererFactory.create_renderer(renderer))
    rule = ExtractionRule(
        price_selector=price_selector,
        stock_selector=stock_selector,
        availability_strategy=strategy,
        out_of_stock_keywords=list(keyword) if keyword else None,
    )
    outcome = asyncio.run(scheduler.runner.check(rule, url))

    rows = [
        ["Status", outcome.status.value],
        ["Price", _format_price(outcome.price_value)],
        ["Price text", outcome.price_text or "-"],
        ["In stock", _format_stock(outcome.in_stock)],
        ["Source", outcome.source or "-"],
        ["Error", outcome.error_message or "-"],
        ["Time", f"{outcome.response_time_ms} ms"],
    ]
    click.echo(tabulate(rows, tablefmt="grid"))


@cli.command(name="run-checks")
def run_checks():
    """Run one due-task pass and wait for its checks to finish."""

    async def _run_once():
        scheduler = build_scheduler()
        dispatched = await scheduler.tick()
        click.echo(f"Dispatched {len(dispatched)} checks.")
        await scheduler.drain()

    asyncio.run(_run_once())
    click.echo("Checks executed.")


@cli.command()
@click.option("--interval", type=int, help="Seconds between passes (default: SCHEDULER_TICK_SECONDS)")
def run(interval):
    """Run the scheduler until interrupted."""

    async def _run_forever():
        scheduler = build_scheduler()
        await scheduler.tick()
        job_scheduler = scheduler.start(interval or get_settings().SCHEDULER_TICK_SECONDS)
        try:
            await asyncio.Event().wait()
        finally:
            job_scheduler.shutdown(wait=False)

    try:
        asyncio.run(_run_forever())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutdown signal received; stopping scheduler")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port (default: 8000)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host, port, reload):
    """Serve the HTTP API (and its scheduler) with uvicorn."""
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    # This runs the Click application
    cli.main(obj={})
