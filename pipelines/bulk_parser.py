"""Parse text copy-pasted from a listing portal into houses and their items.

The pasted page is a flat sequence of lines. Each house starts with a header
such as ``삼익비치타운 216동``; the next few lines carry its floor/area/direction
descriptors, followed by one or more listings, each anchored on a price line
(``매매 18억``), optionally followed by a quoted remark and a confirmation date
with the listing office on the line after it.

Parsing never raises on malformed text. Every recognition decision is
appended to ``BulkImportResult.logs`` so a bad parse can be inspected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from house_schema import DEFAULT_AREA, TRANSACTION_TYPES, BulkImportResult, ParsedHouse, ParsedItem
from pipelines.deduplicate import build_house_key, dedupe_items
from pipelines.normalizer import (
    RANGE_SEPARATOR,
    clean_line,
    dotted_date_to_iso,
    parse_price,
    parse_unit_number,
    split_lines,
)


logger = logging.getLogger(__name__)

HOUSE_HEADER_PATTERN = re.compile(r"^(.+?)\s+(\d+)동$")
FLOOR_PATTERN = re.compile(r"(\d+|고|중|저)/\d+층")
# "재건축47평(" style info lines; promotional labels like "40평대" must not match.
AREA_INFO_LINE_PATTERN = re.compile(r"(?:재건축)?(\d+)(?:평|㎡)\s*\(")
AREA_PATTERN = re.compile(r"(?:재건축)?(\d+)평")
DIRECTION_PATTERN = re.compile(r"\d+층((?:남서|남동|북서|북동|동|서|남|북)향)")
PRICE_PATTERN = re.compile(r"^(" + "|".join(TRANSACTION_TYPES) + r")\s+(.+)$")
MULTI_ITEM_PATTERN = re.compile(r"중개사\s+\d+곳에서")
DATE_PATTERN = re.compile(r"(?:집주인)?(?:확인매물|등록)\s+(\d{4})\.(\d{2})\.(\d{2})")
FLOOR_LINE_PATTERN = re.compile(r"^\d+/\d+층")
ITEMS_START_MARKER = "매물목록 접기"
NON_OFFICE_PREFIXES = ("매물", "관심매물", "중개사", "매물목록", "이미지")
QUOTE = '"'


@dataclass(frozen=True)
class ParserSettings:
    default_area: str = DEFAULT_AREA
    probe_window: int = 15
    office_lookahead: int = 4

    def __post_init__(self) -> None:
        if not str(self.default_area).strip():
            raise ValueError("default_area must not be empty")
        if self.probe_window < 1:
            raise ValueError(f"probe_window must be positive, got {self.probe_window}")
        if self.office_lookahead < 1:
            raise ValueError(f"office_lookahead must be positive, got {self.office_lookahead}")


def match_house_header(line: str) -> Optional[Tuple[str, str]]:
    match = HOUSE_HEADER_PATTERN.match(line)
    if not match:
        return None
    return match.group(1).strip(), match.group(2)


def is_house_header(line: str) -> bool:
    return HOUSE_HEADER_PATTERN.match(line) is not None


def match_floor(line: str) -> Optional[str]:
    match = FLOOR_PATTERN.search(line)
    return match.group(1) if match else None


def match_area(line: str) -> Optional[Tuple[str, str]]:
    """Return (area, confidence) from a floor descriptor line."""
    match = AREA_INFO_LINE_PATTERN.search(line)
    if match:
        return match.group(1), "info-line"
    match = AREA_PATTERN.search(line)
    if match:
        return match.group(1), "fallback"
    return None


def match_direction(line: str) -> Optional[str]:
    match = DIRECTION_PATTERN.search(line)
    return match.group(1) if match else None


def match_price(line: str) -> Optional[Tuple[str, str]]:
    match = PRICE_PATTERN.match(line)
    if not match:
        return None
    return match.group(1), match.group(2)


def is_multi_item_marker(line: str) -> bool:
    return MULTI_ITEM_PATTERN.search(line) is not None


def match_date(line: str) -> Optional[str]:
    match = DATE_PATTERN.search(line)
    if not match:
        return None
    return dotted_date_to_iso(match.group(1), match.group(2), match.group(3))


def is_non_office_line(line: str) -> bool:
    return (
        line.startswith(NON_OFFICE_PREFIXES)
        or "이미지" in line
        or FLOOR_LINE_PATTERN.match(line) is not None
        or is_house_header(line)
    )


def extract_quoted_block(lines: Sequence[str], start: int) -> Tuple[Optional[str], int]:
    """Collect a quoted remark beginning at or after ``start``.

    Returns (remark, index of the last consumed line). The first non-blank
    line must contain a quote, otherwise nothing is extracted and ``start``
    is returned. An unclosed quote stops before the next house header.
    """
    parts: List[str] = []
    end_index = start
    in_quote = False

    for index in range(start, len(lines)):
        line = clean_line(lines[index])
        if not line:
            continue

        if not in_quote:
            if QUOTE not in line:
                break
            in_quote = True
            cleaned = line.replace(QUOTE, "").strip()
            if cleaned:
                parts.append(cleaned)
            end_index = index
            if line.count(QUOTE) >= 2:
                break
            continue

        if is_house_header(line):
            break
        if QUOTE in line:
            cleaned = line.replace(QUOTE, "").strip()
            if cleaned:
                parts.append(cleaned)
            end_index = index
            break

        parts.append(line)
        end_index = index

    if not parts:
        return None, start
    return " ".join(parts).strip(), end_index


class _Trace:
    def __init__(self, logs: List[str]) -> None:
        self.logs = logs

    def __call__(self, message: str) -> None:
        self.logs.append(message)
        logger.debug(message)


@dataclass
class _HouseProbe:
    unit_number: Optional[str] = None
    area: Optional[str] = None
    direction: Optional[str] = None
    is_multi_item: bool = False
    items_start: int = 0


@dataclass
class _ItemScan:
    is_multi_item: bool
    open_item: Optional[ParsedItem] = None
    seen_first_price: bool = False
    items: List[ParsedItem] = field(default_factory=list)

    def commit(self) -> Optional[ParsedItem]:
        item = self.open_item
        self.open_item = None
        if item is not None and item.is_retained():
            self.items.append(item)
            return item
        return None


def _probe_house(lines: Sequence[str], header_index: int, settings: ParserSettings, trace: _Trace) -> _HouseProbe:
    """Scan the lines after a header for descriptors and the item list start."""
    probe = _HouseProbe(items_start=header_index + 1)
    stop = min(len(lines), header_index + settings.probe_window)

    for index in range(header_index + 1, stop):
        line = clean_line(lines[index])
        if not line:
            continue
        if is_house_header(line):
            break

        if probe.unit_number is None:
            floor_token = match_floor(line)
            if floor_token is not None:
                probe.unit_number = parse_unit_number(floor_token)
                trace(f"  Floor at line {index + 1}: {line} -> unit {probe.unit_number}")

                area = match_area(line)
                if area is not None:
                    probe.area = area[0]
                    trace(f"  Area at line {index + 1}: {area[0]}평 ({area[1]})")

                direction = match_direction(line)
                if direction is not None:
                    probe.direction = direction
                    trace(f"  Direction at line {index + 1}: {direction}")

        if is_multi_item_marker(line):
            probe.is_multi_item = True
            trace(f"  Multi-item marker at line {index + 1}")

        if ITEMS_START_MARKER in line:
            probe.items_start = index + 1
            trace(f"  Items start after line {index + 1}")
            break

    return probe


def _find_office(lines: Sequence[str], date_index: int, settings: ParserSettings) -> Optional[Tuple[int, str]]:
    stop = min(len(lines), date_index + settings.office_lookahead + 1)
    for index in range(date_index + 1, stop):
        line = clean_line(lines[index])
        if not line:
            continue
        if is_non_office_line(line):
            continue
        return index, line
    return None


def _scan_items(
    lines: Sequence[str],
    start: int,
    is_multi_item: bool,
    settings: ParserSettings,
    trace: _Trace,
) -> Tuple[List[ParsedItem], int]:
    """Collect items from ``start`` until the next house header.

    Returns (items, index where the outer scan resumes).
    """
    scan = _ItemScan(is_multi_item=is_multi_item)
    index = start
    count = len(lines)

    while index < count:
        line = clean_line(lines[index])
        if not line:
            index += 1
            continue

        if is_house_header(line):
            break

        price = match_price(line)
        if price is not None:
            transaction_type, price_text = price
            if not scan.seen_first_price and scan.is_multi_item and RANGE_SEPARATOR in price_text:
                scan.seen_first_price = True
                trace(f"    Skip summary price at line {index + 1}: {price_text}")
                index += 1
                continue
            scan.seen_first_price = True

            saved = scan.commit()
            if saved is not None:
                trace(f"    Saved item (price={saved.price}, office={saved.office}) at line {index + 1}")

            scan.open_item = ParsedItem(transaction_type=transaction_type, price=parse_price(price_text))
            trace(f"    New item at line {index + 1}: {transaction_type} {price_text} -> {scan.open_item.price}")
            index += 1
            continue

        item = scan.open_item
        if item is not None:
            if not item.remark and QUOTE in line:
                remark, end_index = extract_quoted_block(lines, index)
                if remark:
                    item.remark = remark
                    trace(f"    Remark captured through line {end_index + 1}")
                    index = end_index + 1
                    continue

            date = match_date(line)
            if date is not None:
                item.last_updated_date = date
                trace(f"    Date at line {index + 1}: {date}")
                office = _find_office(lines, index, settings)
                if office is not None:
                    item.office = office[1]
                    trace(f"    Office at line {office[0] + 1}: {office[1]}")

        index += 1

    if scan.commit() is not None:
        trace("    Saved final item")
    return scan.items, index


def parse_bulk_text(raw_text: Optional[str], settings: Optional[ParserSettings] = None) -> BulkImportResult:
    """Parse pasted portal text into houses with deduplicated items."""
    settings = settings or ParserSettings()
    result = BulkImportResult()
    if not raw_text or not raw_text.strip():
        return result

    lines = split_lines(raw_text)
    count = len(lines)
    trace = _Trace(result.logs)
    lf_count = raw_text.count("\n")
    trace(f"Raw length: {len(raw_text)}, LF count: {lf_count}")
    trace(f"Total lines: {count}")
    trace("First lines: " + " | ".join(f"[{idx + 1}] {line}" for idx, line in enumerate(lines[:5])))

    index = 0
    while index < count:
        header = match_house_header(clean_line(lines[index]))
        if header is None:
            index += 1
            continue

        cluster_name, building_number = header
        trace(f"House header at line {index + 1}: {cluster_name} {building_number}동")

        probe = _probe_house(lines, index, settings, trace)
        house = ParsedHouse(
            cluster_name=cluster_name,
            building_number=building_number,
            unit_number=probe.unit_number,
            area=probe.area or settings.default_area,
            direction=probe.direction,
        )

        items, resume_at = _scan_items(lines, probe.items_start, probe.is_multi_item, settings, trace)
        if items:
            house.items = dedupe_items(items, result.logs)
            house.key = build_house_key(house.cluster_name, house.building_number, house.unit_number, house.area)
            result.houses.append(house)
            trace(f"  Added house with {len(house.items)} items (end at line {resume_at})")
        else:
            trace(f"  Skipped house (no items found, end at line {resume_at})")

        index = max(resume_at, index + 1)

    logger.info("Parsed %s houses with %s items from %s lines.", result.total_houses, result.total_items, count)
    return result
