"""Item identity, in-batch deduplication and matching against persisted houses."""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from house_schema import BulkImportResult, ParsedHouse, ParsedItem, PersistedHouse, PersistedItem


logger = logging.getLogger(__name__)

NULL_TOKEN = "<null>"


def _trace(logs: Optional[List[str]], message: str) -> None:
    if logs is not None:
        logs.append(message)
    logger.debug(message)


def _optional_value(value: Any) -> Any:
    """Coerce pandas NA and empty strings to None."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if pd.isna(value):
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    return value


def _numeric_value(value: Any) -> Optional[float]:
    """Return numeric value as float or None."""
    value = _optional_value(value)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _key_part(value: Any) -> str:
    cleaned = _optional_value(value)
    return NULL_TOKEN if cleaned is None else str(cleaned)


def price_key(price: Any) -> str:
    """Fixed-precision price text so 1.8e9 and 1800000000 agree."""
    number = _numeric_value(price)
    if number is None:
        return NULL_TOKEN
    return format(number, ".17g")


def item_key(item: Any) -> str:
    """Primary identity: (price, office, remark), case-insensitive."""
    parts = [price_key(item.price), _key_part(item.office), _key_part(item.remark)]
    return "|".join(parts).casefold()


def item_key_with_dates(item: Any, added_date: Optional[str] = None) -> str:
    """Secondary identity used at the storage boundary.

    Adds the last-updated date and the added/observed date to the primary
    tuple. Parsed items carry no added date of their own, so callers pass the
    batch stamp.
    """
    added = added_date if added_date is not None else getattr(item, "added_date", None)
    parts = [
        price_key(item.price),
        _key_part(item.office),
        _key_part(item.last_updated_date),
        _key_part(added),
        _key_part(item.remark),
    ]
    return "|".join(parts).casefold()


def dedupe_items(items: Iterable[ParsedItem], logs: Optional[List[str]] = None) -> List[ParsedItem]:
    """Keep the first item per identity key, in original order."""
    seen: set[str] = set()
    unique: List[ParsedItem] = []
    for item in items:
        key = item_key(item)
        if key in seen:
            _trace(
                logs,
                f"    Duplicate item skipped (price={item.price}, office={item.office}, remark={item.remark})",
            )
            continue
        seen.add(key)
        unique.append(item)
    return unique


def merge_items(
    target: List[ParsedItem],
    incoming: Iterable[ParsedItem],
    logs: Optional[List[str]] = None,
) -> int:
    """Append incoming items not already in target. Return number added."""
    existing = {item_key(item) for item in target}
    added = 0
    for item in incoming:
        key = item_key(item)
        if key in existing:
            _trace(
                logs,
                "    Duplicate item skipped during merge "
                f"(price={item.price}, office={item.office}, remark={item.remark})",
            )
            continue
        target.append(item)
        existing.add(key)
        added += 1
    return added


def normalize_unit(unit_number: Optional[str]) -> str:
    cleaned = _optional_value(unit_number)
    return "" if cleaned is None else str(cleaned)


def build_house_key(cluster_name: str, building_number: str, unit_number: Optional[str], area: str) -> str:
    unit = normalize_unit(unit_number) or NULL_TOKEN
    return f"{cluster_name.strip()}|{building_number.strip()}|{unit}|{area.strip()}"


def _same_text(left: Any, right: Any) -> bool:
    return normalize_unit(left).casefold() == normalize_unit(right).casefold()


def house_identity_matches(parsed: ParsedHouse, persisted: PersistedHouse) -> bool:
    """Same building, area and unit code, ignoring case and surrounding space."""
    return (
        _same_text(parsed.building_number, persisted.building_number)
        and _same_text(parsed.area, persisted.area)
        and _same_text(parsed.unit_number, persisted.unit_number)
    )


def has_shared_item(parsed_items: Iterable[ParsedItem], persisted_items: Iterable[PersistedItem]) -> bool:
    existing = {item_key(item) for item in persisted_items}
    return any(item_key(item) in existing for item in parsed_items)


def lookup_scope(houses: Sequence[ParsedHouse]) -> Tuple[List[str], Optional[str]]:
    """Return (building numbers, area filter) for fetching persisted houses.

    The area filter is only set when every parsed house has the same area.
    """
    buildings: List[str] = []
    seen_buildings: set[str] = set()
    areas: List[str] = []
    seen_areas: set[str] = set()
    for house in houses:
        building = _optional_value(house.building_number)
        if building is not None and building.casefold() not in seen_buildings:
            seen_buildings.add(building.casefold())
            buildings.append(building)
        area = _optional_value(house.area)
        if area is not None and area.casefold() not in seen_areas:
            seen_areas.add(area.casefold())
            areas.append(area)
    area_filter = areas[0] if len(areas) == 1 else None
    return buildings, area_filter


def classify_against_persisted(
    result: BulkImportResult,
    persisted_houses: Iterable[PersistedHouse],
) -> BulkImportResult:
    """Split parsed houses into novel, similar and duplicate-of-persisted.

    A parsed house whose identity matches a persisted house and which shares
    at least one (price, office, remark) item with it is moved to
    ``result.duplicates`` with ``matched_house_id`` set to the first such
    persisted house. Identity matches without a shared item are recorded in
    ``similar_house_ids`` and stay in ``result.houses``.
    """
    snapshot: Tuple[PersistedHouse, ...] = tuple(persisted_houses)
    remaining: List[ParsedHouse] = []

    for parsed in result.houses:
        matching = [existing for existing in snapshot if house_identity_matches(parsed, existing)]
        shared = next((existing for existing in matching if has_shared_item(parsed.items, existing.items)), None)
        if shared is not None:
            parsed.is_duplicate = True
            parsed.duplicate_reason = "Matches existing DB house with shared item"
            parsed.matched_house_id = shared.house_id
            parsed.similar_house_ids = []
            result.duplicates.append(parsed)
            _trace(result.logs, f"DB duplicate: {parsed.display} matches house_id={shared.house_id}")
            continue

        parsed.similar_house_ids = [existing.house_id for existing in matching]
        if matching:
            _trace(
                result.logs,
                f"DB similar: {parsed.display} has no shared item with house_id="
                + ",".join(str(house_id) for house_id in parsed.similar_house_ids),
            )
        remaining.append(parsed)

    result.houses = remaining
    logger.info(
        "Classified %s parsed houses against %s persisted: %s novel, %s similar, %s duplicate.",
        len(remaining) + len(result.duplicates),
        len(snapshot),
        len(result.novel),
        len(result.similar),
        len(result.duplicates),
    )
    return result
