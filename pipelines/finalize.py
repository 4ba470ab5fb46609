"""Apply a classified import batch to the house store."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Optional

from tqdm import tqdm

from house_schema import BulkImportResult, ParsedHouse
from store import HouseStore


logger = logging.getLogger(__name__)


@dataclass
class FinalizeSummary:
    duplicate_items_imported: int = 0
    houses_merged: int = 0
    new_houses: int = 0
    new_items: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def import_duplicates(
    store: HouseStore,
    duplicates: Iterable[ParsedHouse],
    added_date: str,
    summary: Optional[FinalizeSummary] = None,
) -> FinalizeSummary:
    """Append each duplicate's items to the persisted house it matched."""
    summary = summary or FinalizeSummary()
    for house in duplicates:
        if house.matched_house_id is None:
            logger.warning("Duplicate %s has no matched house; skipping.", house.key)
            continue
        inserted = store.append_items(house.matched_house_id, house.items, added_date)
        summary.duplicate_items_imported += inserted
        logger.debug("Imported %s items into house_id=%s from %s", inserted, house.matched_house_id, house.key)
    return summary


def merge_into_similar(
    store: HouseStore,
    house: ParsedHouse,
    target_house_id: int,
    added_date: str,
    summary: Optional[FinalizeSummary] = None,
) -> FinalizeSummary:
    summary = summary or FinalizeSummary()
    inserted = store.append_items(target_house_id, house.items, added_date)
    if inserted > 0:
        summary.houses_merged += 1
    summary.duplicate_items_imported += inserted
    logger.info("Merged %s into house_id=%s (%s new items)", house.key, target_house_id, inserted)
    return summary


def finalize_new(
    store: HouseStore,
    houses: Iterable[ParsedHouse],
    added_date: str,
    summary: Optional[FinalizeSummary] = None,
    show_progress: bool = False,
) -> FinalizeSummary:
    """Insert every house as a new persisted house with its items."""
    summary = summary or FinalizeSummary()
    houses = list(houses)
    for house in tqdm(houses, unit="house", desc="Inserting houses", disable=not show_progress):
        house_id = store.insert_house_with_items(house, added_date)
        summary.new_houses += 1
        summary.new_items += store.count_items(house_id)
    return summary


def apply_import(
    store: HouseStore,
    result: BulkImportResult,
    added_date: str,
    merge_similar: bool = False,
    show_progress: bool = False,
) -> FinalizeSummary:
    """Persist a classified batch as one unit of work.

    Duplicates feed their matched house. Similar houses are merged into their
    first candidate when ``merge_similar`` is set and inserted as new houses
    otherwise. Novel houses are inserted.
    """
    summary = FinalizeSummary()
    with store.transaction():
        import_duplicates(store, result.duplicates, added_date, summary)

        to_insert = []
        for house in result.houses:
            if merge_similar and house.similar_house_ids:
                merge_into_similar(store, house, house.similar_house_ids[0], added_date, summary)
            else:
                to_insert.append(house)
        finalize_new(store, to_insert, added_date, summary, show_progress=show_progress)

    logger.info(
        "Applied import: %s duplicate items, %s houses merged, %s new houses, %s new items.",
        summary.duplicate_items_imported,
        summary.houses_merged,
        summary.new_houses,
        summary.new_items,
    )
    return summary
