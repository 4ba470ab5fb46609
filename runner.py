import argparse
import copy
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from house_schema import BulkImportResult
from pipelines.bulk_parser import ParserSettings, parse_bulk_text
from pipelines.deduplicate import classify_against_persisted, lookup_scope
from pipelines.finalize import apply_import
from store import HouseStore


DEFAULT_CONFIG = {
    "parser": {
        "default_area": "47",
        "probe_window": 15,
        "office_lookahead": 4,
    },
    "store": {
        "root": "house_store",
    },
    "import": {
        "added_date": None,
        "apply": False,
        "merge_similar": False,
        "log_output": None,
        "show_progress": False,
    },
}


def read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Input text not found: {path}")
    return path.read_text(encoding="utf-8")


def write_trace(logs, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(logs) + "\n", encoding="utf-8")
    logging.info("Trace log written to %s", path)


def summarize(result: BulkImportResult) -> Dict[str, Any]:
    return {
        "houses": result.total_houses,
        "items": result.total_items,
        "novel": len(result.novel),
        "similar": len(result.similar),
        "duplicates": len(result.duplicates),
        "parsed": [
            {
                "display": house.display,
                "key": house.key,
                "status": house.match_status,
                "similar_house_ids": list(house.similar_house_ids),
                "items": [item.display for item in house.items],
            }
            for house in result.houses + result.duplicates
        ],
    }


def run_import(raw_text: str, config: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Parse, classify against the store and optionally apply one batch."""
    parser_cfg = config["parser"]
    import_cfg = config["import"]
    settings = ParserSettings(
        default_area=str(parser_cfg["default_area"]),
        probe_window=int(parser_cfg["probe_window"]),
        office_lookahead=int(parser_cfg["office_lookahead"]),
    )
    added_date = import_cfg.get("added_date") or date.today().isoformat()

    result = parse_bulk_text(raw_text, settings)
    store = HouseStore(Path(config["store"]["root"]))

    if result.houses:
        buildings, area_filter = lookup_scope(result.houses)
        persisted = store.fetch_houses_with_items(buildings, area_filter)
        classify_against_persisted(result, persisted)

    summary = summarize(result)
    summary["added_date"] = added_date
    summary["applied"] = False

    log_output = import_cfg.get("log_output")
    if log_output:
        write_trace(result.logs, Path(log_output))

    if import_cfg.get("apply") and (result.houses or result.duplicates):
        finalize_summary = apply_import(
            store,
            result,
            added_date,
            merge_similar=bool(import_cfg.get("merge_similar")),
            show_progress=bool(import_cfg.get("show_progress")),
        )
        summary["applied"] = True
        summary["finalize"] = finalize_summary.to_dict()

    logging.info(
        "Import finished: %s houses, %s items, %s duplicates (applied=%s).",
        summary["houses"],
        summary["items"],
        summary["duplicates"],
        summary["applied"],
    )
    return summary


def load_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import pasted listing portal text into the house store.")
    parser.add_argument("--input", required=True, help="Text file with the pasted page, or '-' for stdin.")
    parser.add_argument("--store-root", help="Override the store directory.")
    parser.add_argument("--added-date", help="Date stamp for inserted items (YYYY-MM-DD). Defaults to today.")
    parser.add_argument("--apply", action="store_true", help="Write the batch to the store instead of only previewing.")
    parser.add_argument("--merge-similar", action="store_true", help="Merge similar houses into their first candidate.")
    parser.add_argument("--default-area", help="Area used when a house has no area descriptor.")
    parser.add_argument("--probe-window", type=int, help="Lines scanned after a header for descriptors.")
    parser.add_argument("--office-lookahead", type=int, help="Lines scanned after a date for the office name.")
    parser.add_argument("--log-output", help="Write the parse trace to this file.")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar while inserting houses.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging for debugging.")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    config = copy.deepcopy(DEFAULT_CONFIG)
    parser_cfg = config["parser"]
    import_cfg = config["import"]

    if args.default_area:
        parser_cfg["default_area"] = args.default_area
    if args.probe_window is not None:
        parser_cfg["probe_window"] = args.probe_window
    if args.office_lookahead is not None:
        parser_cfg["office_lookahead"] = args.office_lookahead
    if args.store_root:
        config["store"]["root"] = args.store_root
    if args.added_date:
        import_cfg["added_date"] = args.added_date
    if args.apply:
        import_cfg["apply"] = True
    if args.merge_similar:
        import_cfg["merge_similar"] = True
    if args.log_output:
        import_cfg["log_output"] = args.log_output
    if args.progress:
        import_cfg["show_progress"] = True
    return config


def main(argv: Optional[list] = None) -> None:
    args = load_arguments(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(message)s")

    config = build_config(args)
    raw_text = read_input(args.input)
    summary = run_import(raw_text, config)
    print(json.dumps(summary, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
