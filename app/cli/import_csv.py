# app/cli/import_csv.py
import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

import click

from app.core.exceptions import BaseServiceError
from app.core.enums import ImportSource
from app.database import async_session
from app.services.import_service import get_import_status, process_import, start_import

logger = logging.getLogger(__name__)


@click.command("import-csv")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--shop-id", type=int, required=True, help="Shop the products belong to")
@click.option("--template-id", type=int, default=None, help="OLX category template applied to every product")
@click.option("--mapping", default=None, help='Column override as JSON, e.g. \'{"Naziv": "title"}\'')
def import_csv(csv_file, shop_id, template_id, mapping):
    """Import a supplier CSV file, running normalization in the foreground"""
    override = None
    if mapping:
        try:
            override = json.loads(mapping)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint="--mapping")

    start_time = datetime.now()
    try:
        status = asyncio.run(run_import(csv_file, shop_id, template_id, override))
    except BaseServiceError as e:
        logger.error(f"Import failed: {e}")
        raise click.ClickException(str(e))

    click.echo(f"\nImport {status.import_log_id} finished: {status.status}")
    click.echo(f"Rows: {status.counters.total_rows}")
    click.echo(f"Successful: {status.counters.successful_rows}")
    click.echo(f"Failed: {status.counters.failed_rows}")
    for error in status.errors[:20]:
        click.echo(f"  - {error}")
    logger.info(f"Completed import in {datetime.now() - start_time}")


async def run_import(csv_file: Path, shop_id: int, template_id=None, mapping=None):
    async with async_session() as db:
        started = await start_import(
            db,
            shop_id,
            ImportSource.CSV.value,
            csv_file,
            column_mapping=mapping,
            template_id=template_id,
            filename=csv_file.name,
        )
    click.echo(
        f"Staged {started.total_rows} rows (mapping confidence {started.confidence}): "
        f"{json.dumps(started.column_mapping, ensure_ascii=False)}"
    )

    await process_import(started.import_log_id)

    async with async_session() as db:
        return await get_import_status(db, started.import_log_id)
