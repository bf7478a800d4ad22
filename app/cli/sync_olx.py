# app/cli/sync_olx.py
import asyncio
import logging

import click

from app.core.config import get_settings
from app.core.exceptions import BaseServiceError
from app.database import async_session
from app.services import import_tracker
from app.services.olx.auth import OLXAuthManager
from app.services.olx.listing_service import OLXListingService
from app.services.olx.sync_service import MarketplaceSyncService
from app.services.olx.taxonomy_sync import TaxonomySyncService

logger = logging.getLogger(__name__)


def _echo_stats(name, stats):
    click.echo(f"{name}: {stats.synced}/{stats.total} synced, {stats.failed} failed, {stats.deleted} deleted")
    for error in stats.errors[:10]:
        click.echo(f"  - {error}")


@click.command("sync-taxonomy")
@click.option("--shop-id", type=int, required=True, help="Shop whose OLX account is used for the API calls")
@click.option("--skip-attributes", is_flag=True, help="Only categories and locations")
@click.option("--no-cleanup", is_flag=True, help="Keep local rows that OLX no longer returns")
@click.option("--repair-parents", is_flag=True, help="Only re-resolve category parent links")
def sync_taxonomy(shop_id, skip_attributes, no_cleanup, repair_parents):
    """Refresh OLX categories, attributes and locations"""

    async def _run():
        async with async_session() as db:
            service = TaxonomySyncService(db, OLXAuthManager().client_for(shop_id))
            if repair_parents:
                return await service.repair_category_parents()
            return await service.sync_all(include_attributes=not skip_attributes, cleanup=not no_cleanup)

    try:
        result = asyncio.run(_run())
    except BaseServiceError as e:
        raise click.ClickException(str(e))

    if repair_parents:
        click.echo(f"Parent links updated: {result}")
        return
    _echo_stats("Categories", result.categories)
    _echo_stats("Attributes", result.attributes)
    _echo_stats("Locations", result.locations)


@click.command("sync-from-olx")
@click.option("--shop-id", type=int, required=True)
@click.option("--limit", type=int, default=None, help="Stop after this many listings")
@click.option("--status", "statuses", multiple=True, help="Only listings with this OLX status (repeatable)")
@click.option("--category-id", "category_ids", type=int, multiple=True, help="Only this OLX category (repeatable)")
@click.option("--skip-existing/--update-existing", default=False, help="Leave already synced listings alone")
def sync_from_olx(shop_id, limit, statuses, category_ids, skip_existing):
    """Import the shop's OLX listings as local products"""

    async def _run():
        auth = OLXAuthManager()
        async with async_session() as db:
            service = MarketplaceSyncService(db, auth.client_for(shop_id), auth=auth)
            return await service.sync_from_marketplace(
                shop_id,
                limit=limit,
                status_filter=list(statuses) or None,
                category_ids=list(category_ids) or None,
                skip_existing=skip_existing,
            )

    try:
        result = asyncio.run(_run())
    except BaseServiceError as e:
        raise click.ClickException(str(e))

    click.echo(f"Imported: {result.imported}")
    click.echo(f"Updated: {result.updated}")
    click.echo(f"Skipped: {result.skipped}")
    click.echo(f"Failed: {result.failed}")
    for error in result.errors:
        click.echo(f"  - {error}")


@click.command("publish")
@click.argument("product_ids", type=int, nargs=-1, required=True)
@click.option("--shop-id", type=int, required=True)
@click.option("--template-id", type=int, default=None, help="Use this template instead of the product's own")
@click.option("--draft", is_flag=True, help="Create or update the listing without publishing it")
def publish(product_ids, shop_id, template_id, draft):
    """Publish products to OLX (existing listings are updated)"""

    async def _run():
        async with async_session() as db:
            service = OLXListingService(db, OLXAuthManager().client_for(shop_id))
            return await service.bulk_publish(shop_id, list(product_ids), template_id=template_id, publish=not draft)

    result = asyncio.run(_run())
    for item in result.items:
        if item.success:
            click.echo(f"  ✓ product {item.product_id} -> listing {item.external_listing_id}")
        else:
            click.echo(f"  ✗ product {item.product_id}: {item.error_type}: {item.error}")
    click.echo(f"{result.succeeded}/{result.total} succeeded")


@click.command("check-stale-imports")
@click.option("--max-age", type=int, default=None, help="Minutes without progress (default IMPORT_STALE_MINUTES)")
def check_stale_imports(max_age):
    """List imports that stopped making progress"""
    max_age = max_age or get_settings().IMPORT_STALE_MINUTES

    async def _run():
        async with async_session() as db:
            return await import_tracker.find_stale_imports(db, max_age)

    stale = asyncio.run(_run())
    if not stale:
        click.echo(f"No imports older than {max_age} minutes without progress")
        return
    for log in stale:
        click.echo(
            f"Import {log.id} shop={log.shop_id} source={log.source} status={log.status} "
            f"phase={log.current_phase} {log.processed_rows}/{log.total_rows} updated_at={log.updated_at}"
        )
