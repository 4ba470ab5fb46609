"""
House summary reporting.

Builds the per-house overview of the store: price range, item totals and
whether anything was added on the report date. Items can also be grouped per
office with repeated listings collapsed to their latest sighting.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from house_schema import format_eok, sanitize_csv_value  # noqa: E402
from store import HouseStore, to_python  # noqa: E402

SUMMARY_COLUMNS = [
    "house_id",
    "cluster_id",
    "building_number",
    "unit_number",
    "area",
    "min_price",
    "max_price",
    "item_total",
    "item_today",
    "item_today_match",
    "is_new_today",
]
DISPLAY_KEY_COLUMNS = ["price", "office", "last_updated_date", "remark"]

FRESH = "fresh"
STALE = "stale"


@dataclass
class OfficeGroup:
    office: str
    items: List[Dict[str, Any]]
    has_today_added: bool
    has_same_day_fresh: bool

    @property
    def status(self) -> str:
        # fresh: listed today and confirmed today; stale: nothing added today
        if self.has_same_day_fresh:
            return FRESH
        if not self.has_today_added:
            return STALE
        return ""


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Summarise stored houses and their items.")
    parser.add_argument("--store-root", type=Path, default=Path("house_store"), help="House store directory.")
    parser.add_argument("--report-date", help="Date treated as today (YYYY-MM-DD). Defaults to today.")
    parser.add_argument("--output", type=Path, help="Write the summary to this CSV or JSON file.")
    parser.add_argument("--format", choices=["csv", "json"], default="csv", help="Output format for --output.")
    parser.add_argument("--house-id", type=int, help="Also print the per-office item groups for this house.")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging for debugging.",
    )
    return parser.parse_args()


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s:%(name)s:%(message)s")


def _normalize_text(series: pd.Series) -> pd.Series:
    return series.fillna("").astype(str).str.strip()


def build_house_summary(houses: pd.DataFrame, items: pd.DataFrame, report_date: str) -> pd.DataFrame:
    if houses.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    working = items.copy()
    working["added_today"] = working["added_date"] == report_date
    working["today_match"] = working["added_today"] & (working["last_updated_date"] == report_date)

    stats = working.groupby("house_id").agg(
        min_price=("price", "min"),
        max_price=("price", "max"),
        item_total=("item_id", "count"),
        item_today=("added_today", "sum"),
        item_today_match=("today_match", "sum"),
    )

    summary = houses.copy()
    for column in ["min_price", "max_price"]:
        summary[column] = summary["house_id"].map(stats[column]).astype(float)
    for column in ["item_total", "item_today", "item_today_match"]:
        summary[column] = summary["house_id"].map(stats[column]).fillna(0).astype(int)
    summary["is_new_today"] = summary["item_today"] > 0
    summary = summary.sort_values("house_id", ascending=False).reset_index(drop=True)
    return summary[SUMMARY_COLUMNS]


def collapse_display_items(items: pd.DataFrame) -> pd.DataFrame:
    """Collapse repeated sightings of the same listing, keeping the latest added."""
    if items.empty:
        return items.copy()

    working = items.copy()
    for column in ["office", "last_updated_date", "remark"]:
        working[column] = _normalize_text(working[column])
    working = working.sort_values("added_date", ascending=False, na_position="last")
    collapsed = working.drop_duplicates(subset=DISPLAY_KEY_COLUMNS, keep="first")
    collapsed = collapsed.sort_values(
        ["office", "added_date", "last_updated_date"],
        ascending=[True, False, False],
        na_position="last",
    )
    return collapsed.reset_index(drop=True)


def group_items_by_office(items: pd.DataFrame, report_date: str) -> List[OfficeGroup]:
    collapsed = collapse_display_items(items)
    groups: List[OfficeGroup] = []
    if collapsed.empty:
        return groups

    for office, group in collapsed.groupby("office", sort=True):
        added_today = group["added_date"] == report_date
        fresh = added_today & (group["last_updated_date"] == report_date)
        records = [
            {key: to_python(value) for key, value in record.items()}
            for record in group.to_dict(orient="records")
        ]
        groups.append(
            OfficeGroup(
                office=office,
                items=records,
                has_today_added=bool(added_today.any()),
                has_same_day_fresh=bool(fresh.any()),
            )
        )
    return groups


def summary_records(summary: pd.DataFrame) -> List[Dict[str, Any]]:
    return [
        {key: to_python(value) for key, value in record.items()}
        for record in summary.to_dict(orient="records")
    ]


def write_summary(summary: pd.DataFrame, path: Path, fmt: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    records = summary_records(summary)
    if fmt == "json":
        with path.open("w", encoding="utf-8") as handle:
            json.dump(records, handle, ensure_ascii=False, indent=2)
    else:
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=SUMMARY_COLUMNS)
            writer.writeheader()
            for record in records:
                writer.writerow({key: sanitize_csv_value(record.get(key)) for key in SUMMARY_COLUMNS})
    logging.info("Wrote %s house rows to %s", len(records), path)


def print_summary(summary: pd.DataFrame, report_date: str) -> None:
    title = f"Houses as of {report_date}"
    print(f"\n{title}")
    print("-" * len(title))
    if summary.empty:
        print("  No houses stored.")
        return
    for record in summary_records(summary):
        price_range = f"{format_eok(record['min_price'])} ~ {format_eok(record['max_price'])}"
        marker = " *new*" if record["is_new_today"] else ""
        print(
            f"  [{record['house_id']}] {record['building_number']}동 {record['unit_number'] or '-'} "
            f"{record['area']}평: {price_range} ({record['item_total']} items, "
            f"{record['item_today']} today){marker}"
        )


def print_office_groups(groups: List[OfficeGroup], house_id: int) -> None:
    title = f"Items by office for house {house_id}"
    print(f"\n{title}")
    print("-" * len(title))
    if not groups:
        print("  None")
        return
    for group in groups:
        status = f" ({group.status})" if group.status else ""
        print(f"  {group.office or '-'}{status}")
        for item in group.items:
            print(
                f"    {format_eok(item['price']) or '-'} | {item['last_updated_date'] or '-'} | "
                f"added {item['added_date'] or '-'} | {item['remark'] or '-'}"
            )


def main() -> None:
    args = parse_args()
    setup_logging(args.verbose)
    report_date = args.report_date or date.today().isoformat()

    store = HouseStore(args.store_root)
    items = store.items()
    summary = build_house_summary(store.houses(), items, report_date)
    print_summary(summary, report_date)

    if args.house_id is not None:
        groups = group_items_by_office(items[items["house_id"] == args.house_id], report_date)
        print_office_groups(groups, args.house_id)

    if args.output:
        write_summary(summary, args.output, args.format)


if __name__ == "__main__":
    main()
