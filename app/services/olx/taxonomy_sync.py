"""
Keeps the local copy of the OLX taxonomy (categories, category attributes,
cities) in step with the marketplace.

Categories are synced in two phases: every category is upserted without a
parent first, then parent links are resolved from an in-memory
``{external_id: local_id}`` index. A parent that is not in the payload leaves
the child at the root, and a link that would close a loop is dropped, so the
stored tree is always acyclic.

Rows missing from a complete fetch are deleted. If any part of the fetch
failed nothing is deleted, so an OLX outage can never empty the store.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import OLXAPIError, OLXAuthenticationError, OLXNotFoundError, TaxonomySyncError
from app.models.olx_category import OlxCategory, OlxCategoryAttribute
from app.models.olx_location import OlxLocation
from app.schemas.olx import EntitySyncStats, TaxonomySyncResult
from app.services.olx.client import OLXClient, unwrap_data

logger = logging.getLogger(__name__)

SLUG_CHARS = re.compile(r"[^a-z0-9]+")
CATEGORY_METADATA_KEYS = ("icon", "level", "order", "active", "additional_info")


def slugify(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return SLUG_CHARS.sub("-", name.lower()).strip("-") or None


def as_list(body: Any, *keys: str) -> List[dict]:
    """Pull a list out of {"data": [...]}, {"<key>": [...]} or a bare list."""
    data = unwrap_data(body)
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), list):
                return data[key]
    return []


def creates_cycle(child_id: int, parent_id: Optional[int], parents: Dict[int, Optional[int]]) -> bool:
    """Would child -> parent close a loop, given the links accepted so far?"""
    seen: Set[int] = set()
    current = parent_id
    while current is not None:
        if current == child_id or current in seen:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


def attribute_options(attr_data: dict) -> dict:
    options = {}
    values = attr_data.get("values") or attr_data.get("options")
    if values:
        options["values"] = values
    for key in ("min", "max", "min_length", "max_length", "pattern", "placeholder", "help_text"):
        if attr_data.get(key) is not None:
            options[key] = attr_data[key]
    label = attr_data.get("display_name") or attr_data.get("label")
    if label:
        options["label"] = label
    return options


@dataclass
class CategoryFetch:
    # (payload, parent external id) in discovery order
    nodes: List[Tuple[dict, Optional[int]]] = field(default_factory=list)
    complete: bool = True
    errors: List[str] = field(default_factory=list)


class TaxonomySyncService:
    def __init__(self, db: AsyncSession, client: OLXClient):
        self.db = db
        self.client = client

    # ------------------------------------------------------------------ #
    # Categories
    # ------------------------------------------------------------------ #

    async def fetch_category_tree(self) -> CategoryFetch:
        try:
            roots = as_list(await self.client.get_categories(), "categories")
        except OLXAuthenticationError as e:
            raise TaxonomySyncError(f"Authentication failed: {e}") from e
        except OLXAPIError as e:
            raise TaxonomySyncError(f"Could not fetch root categories: {e}") from e

        fetch = CategoryFetch()
        visited: Set[int] = set()
        logger.info(f"[OLX Taxonomy] Found {len(roots)} root categories")
        await self._collect(roots, None, visited, fetch)
        logger.info(f"[OLX Taxonomy] Found {len(fetch.nodes)} categories in total")
        return fetch

    async def _collect(self, categories: List[dict], listed_by: Optional[int], visited: Set[int], fetch: CategoryFetch):
        for category in categories:
            external_id = category.get("id")
            if external_id is None or external_id in visited:
                continue
            visited.add(external_id)
            fetch.nodes.append((category, category.get("parent_id") or listed_by))

            try:
                data = unwrap_data(await self.client.get_category(external_id))
            except OLXAuthenticationError:
                raise
            except OLXAPIError as e:
                fetch.complete = False
                fetch.errors.append(f"Subcategories of {external_id}: {e}")
                logger.warning(f"[OLX Taxonomy] Could not fetch subcategories for {external_id}: {e}")
                continue

            if isinstance(data, list):
                children = data
            elif isinstance(data, dict):
                children = data.get("sub_categories") or []
            else:
                children = []

            if children:
                await self._collect(children, external_id, visited, fetch)

    def _apply_category(self, category: OlxCategory, data: dict, parent_external_id: Optional[int]):
        name = data.get("name")
        if not name:
            raise ValueError("category has no name")
        category.name = name
        category.slug = data.get("slug") or slugify(name)
        category.has_shipping = bool(data.get("has_shipping"))
        category.has_brand = bool(data.get("has_brand"))
        meta = {k: data[k] for k in CATEGORY_METADATA_KEYS if data.get(k) is not None}
        meta["parent_external_id"] = parent_external_id
        category.extra_data = meta

    async def _all_categories(self) -> List[OlxCategory]:
        return list((await self.db.execute(select(OlxCategory))).scalars().all())

    async def sync_categories(self, fetch: Optional[CategoryFetch] = None, cleanup: bool = True) -> EntitySyncStats:
        start_time = time.monotonic()
        fetch = fetch or await self.fetch_category_tree()
        stats = EntitySyncStats(total=len(fetch.nodes), errors=list(fetch.errors))

        # Phase 1: upsert without parents
        existing = {c.external_id: c for c in await self._all_categories()}
        for data, parent_external_id in fetch.nodes:
            external_id = data["id"]
            try:
                category = existing.get(external_id)
                if category is None:
                    category = OlxCategory(external_id=external_id)
                self._apply_category(category, data, parent_external_id)
                if category.id is None:
                    self.db.add(category)
                    existing[external_id] = category
                stats.synced += 1
            except (ValueError, TypeError) as e:
                stats.failed += 1
                stats.errors.append(f"Category {external_id}: {e}")
                logger.error(f"[OLX Taxonomy] Category {external_id}: {e}")
        await self.db.flush()

        # Phase 2: parents
        await self.resolve_parents()

        if cleanup and fetch.complete and fetch.nodes:
            fetched_ids = {data["id"] for data, _ in fetch.nodes}
            stats.deleted = await self._delete_missing(OlxCategory, fetched_ids)
        elif cleanup:
            logger.warning("[OLX Taxonomy] Category fetch incomplete, skipping cleanup")

        await self.db.commit()
        logger.info(
            f"[OLX Taxonomy] Categories done in {time.monotonic() - start_time:.2f}s. "
            f"Synced: {stats.synced}, Failed: {stats.failed}, Deleted: {stats.deleted}"
        )
        return stats

    async def resolve_parents(self) -> int:
        """
        Point every category at its parent's local id, from the parent external id
        recorded at sync time. Returns how many rows changed.
        """
        categories = await self._all_categories()
        index = {c.external_id: c.id for c in categories}
        parents: Dict[int, Optional[int]] = {}
        changed = 0

        for category in sorted(categories, key=lambda c: c.id):
            parent_external_id = (category.extra_data or {}).get("parent_external_id")
            desired = None
            if parent_external_id is not None:
                desired = index.get(parent_external_id)
                if desired is None:
                    logger.info(f"[OLX Taxonomy] Parent {parent_external_id} of {category.external_id} unknown, keeping it at the root")
                elif creates_cycle(category.id, desired, parents):
                    logger.warning(f"[OLX Taxonomy] Dropping parent link {category.external_id} -> {parent_external_id}: it would create a cycle")
                    desired = None
            parents[category.id] = desired

            if category.parent_id != desired:
                category.parent_id = desired
                changed += 1

        await self.db.flush()
        return changed

    async def repair_category_parents(self) -> int:
        """Maintenance pass: re-resolve parent links. Safe to run any number of times."""
        changed = await self.resolve_parents()
        await self.db.commit()
        logger.info(f"[OLX Taxonomy] Parent repair updated {changed} categories")
        return changed

    async def _delete_missing(self, model, fetched_external_ids: Set[int]) -> int:
        stale_ids = (
            await self.db.execute(select(model.id).where(model.external_id.notin_(fetched_external_ids)))
        ).scalars().all()
        if not stale_ids:
            return 0
        await self.db.execute(delete(model).where(model.id.in_(stale_ids)).execution_options(synchronize_session=False))
        logger.info(f"[OLX Taxonomy] Deleted {len(stale_ids)} {model.__tablename__} no longer on OLX")
        return len(stale_ids)

    # ------------------------------------------------------------------ #
    # Attributes
    # ------------------------------------------------------------------ #

    async def sync_category_attributes(self, category: OlxCategory, stats: Optional[EntitySyncStats] = None) -> EntitySyncStats:
        stats = stats or EntitySyncStats()
        try:
            attributes = as_list(await self.client.get_category_attributes(category.external_id), "attributes")
        except OLXAuthenticationError:
            raise
        except OLXAPIError as e:
            stats.failed += 1
            stats.errors.append(f"Attributes of category {category.external_id}: {e}")
            logger.error(f"[OLX Taxonomy] Failed to fetch attributes for {category.external_id}: {e}")
            return stats

        existing = {
            a.external_id: a
            for a in (
                await self.db.execute(
                    select(OlxCategoryAttribute).where(OlxCategoryAttribute.olx_category_id == category.id)
                )
            ).scalars().all()
        }
        seen = set()
        for attr_data in attributes:
            stats.total += 1
            external_id = attr_data.get("id")
            name = attr_data.get("name") or attr_data.get("key")
            if external_id is None or not name:
                stats.failed += 1
                stats.errors.append(f"Category {category.external_id}: attribute without id or name")
                continue

            attribute = existing.get(external_id)
            if attribute is None:
                attribute = OlxCategoryAttribute(olx_category_id=category.id, external_id=external_id)
                self.db.add(attribute)
            attribute.name = name
            attribute.attribute_type = attr_data.get("type") or "string"
            attribute.input_type = attr_data.get("input_type") or attr_data.get("widget")
            attribute.required = bool(attr_data.get("required"))
            attribute.options = attribute_options(attr_data)
            seen.add(external_id)
            stats.synced += 1

        removed = [a for ext, a in existing.items() if ext not in seen]
        for attribute in removed:
            await self.db.delete(attribute)
        stats.deleted += len(removed)
        await self.db.flush()
        return stats

    async def sync_attributes(self) -> EntitySyncStats:
        stats = EntitySyncStats()
        for category in await self._all_categories():
            await self.sync_category_attributes(category, stats)
        await self.db.commit()
        logger.info(f"[OLX Taxonomy] Attributes synced: {stats.synced}, failed: {stats.failed}, deleted: {stats.deleted}")
        return stats

    # ------------------------------------------------------------------ #
    # Locations
    # ------------------------------------------------------------------ #

    async def fetch_locations(self) -> List[dict]:
        """Cities from /cities (regions -> cantons -> cities), else the flat /locations list."""
        try:
            regions = as_list(await self.client.get_cities(), "regions")
        except OLXAuthenticationError:
            raise
        except OLXNotFoundError:
            regions = []

        cities = []
        for region in regions:
            for canton in region.get("cantons") or []:
                for city in canton.get("cities") or []:
                    cities.append({
                        **city,
                        "state_id": city.get("state_id") or region.get("id"),
                        "canton_id": city.get("canton_id") or canton.get("id"),
                        "country_id": city.get("country_id") or region.get("country_id"),
                    })
        if cities:
            return cities

        logger.info("[OLX Taxonomy] /cities returned nothing, falling back to /locations")
        return as_list(await self.client.get_locations(), "locations")

    @staticmethod
    def _apply_location(location: OlxLocation, data: dict):
        name = data.get("name")
        if not name:
            raise ValueError("location has no name")
        coords = data.get("location") if isinstance(data.get("location"), dict) else {}
        location.name = name
        location.country_id = data.get("country_id")
        location.state_id = data.get("state_id") or data.get("region_id")
        location.canton_id = data.get("canton_id")
        lat = coords.get("lat", data.get("lat", data.get("latitude")))
        lon = coords.get("lon", data.get("lon", data.get("longitude")))
        location.lat = float(lat) if lat is not None else None
        location.lon = float(lon) if lon is not None else None
        location.zip_code = data.get("zip_code") or data.get("postal_code")

    async def sync_locations(self, cleanup: bool = True) -> EntitySyncStats:
        stats = EntitySyncStats()
        try:
            locations = await self.fetch_locations()
        except OLXAuthenticationError as e:
            raise TaxonomySyncError(f"Authentication failed: {e}") from e
        except OLXAPIError as e:
            stats.errors.append(f"Could not fetch locations: {e}")
            logger.error(f"[OLX Taxonomy] Could not fetch locations, nothing changed: {e}")
            return stats

        existing = {
            l.external_id: l for l in (await self.db.execute(select(OlxLocation))).scalars().all()
        }
        stats.total = len(locations)
        for data in locations:
            external_id = data.get("id")
            try:
                if external_id is None:
                    raise ValueError("location has no id")
                location = existing.get(external_id)
                if location is None:
                    location = OlxLocation(external_id=external_id)
                    self._apply_location(location, data)
                    self.db.add(location)
                    existing[external_id] = location
                else:
                    self._apply_location(location, data)
                stats.synced += 1
            except (ValueError, TypeError) as e:
                stats.failed += 1
                stats.errors.append(f"Location {external_id} ({data.get('name')}): {e}")
        await self.db.flush()

        if cleanup and locations:
            # rows that failed to apply are still on OLX, keep them
            returned_ids = {d.get("id") for d in locations if d.get("id") is not None}
            stats.deleted = await self._delete_missing(OlxLocation, returned_ids)
        await self.db.commit()
        logger.info(f"[OLX Taxonomy] Locations synced: {stats.synced}, failed: {stats.failed}, deleted: {stats.deleted}")
        return stats

    # ------------------------------------------------------------------ #

    async def sync_all(self, include_attributes: bool = True, cleanup: bool = True) -> TaxonomySyncResult:
        result = TaxonomySyncResult()
        result.categories = await self.sync_categories(cleanup=cleanup)
        if include_attributes:
            result.attributes = await self.sync_attributes()
        result.locations = await self.sync_locations(cleanup=cleanup)
        return result
