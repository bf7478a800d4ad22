import click

from app.cli.create_tables import create_tables
from app.cli.import_csv import import_csv
from app.cli.sync_olx import check_stale_imports, publish, sync_from_olx, sync_taxonomy
from app.core.logging_config import configure_logging


@click.group()
def cli():
    """OLX back office commands"""
    configure_logging()


cli.add_command(create_tables)
cli.add_command(import_csv)
cli.add_command(sync_taxonomy)
cli.add_command(sync_from_olx)
cli.add_command(publish)
cli.add_command(check_stale_imports)


if __name__ == "__main__":
    cli()
