import re
from typing import List, Optional

from house_schema import EOK


LINE_BREAK_PATTERN = re.compile(r"\r\n|\n|\r")
INVISIBLE_CHARS = ("\ufeff", "\u200b", "\u200c", "\u200d")

RANGE_SEPARATOR = "~"
CHANGE_SUFFIX_PATTERN = re.compile(r"변동.+$")
EOK_PATTERN = re.compile(r"(\d+(?:\.\d+)?)억")
MAN_PATTERN = re.compile(r"(\d+(?:\.\d+)?)만")
EOK_REMAINDER_PATTERN = re.compile(r"억(\d+(?:\.\d+)?)")
MAN = 10_000

HIGH_FLOOR_CODE = "ZXX"
MID_FLOOR_CODE = "YXX"
LOW_FLOOR_CODE = "XXX"
FLOOR_LEVEL_CODES = {
    "고": HIGH_FLOOR_CODE,
    "중": MID_FLOOR_CODE,
    "저": LOW_FLOOR_CODE,
}


def split_lines(raw_text: Optional[str]) -> List[str]:
    # Clipboard text may use CRLF, LF or a bare CR.
    return LINE_BREAK_PATTERN.split(raw_text or "")


def clean_line(value: Optional[str]) -> str:
    text = value or ""
    for char in INVISIBLE_CHARS:
        text = text.replace(char, "")
    return text.strip()


def parse_price(price_text: Optional[str]) -> Optional[float]:
    """Convert the text after 매매/전세 into won.

    "18억" -> 1_800_000_000, "2억5000만" -> 250_000_000 and the portal idiom
    "17억 5,000" (a bare 만 remainder after 억) -> 1_750_000_000.
    """
    if not price_text or not price_text.strip():
        return None

    raw = price_text.split(RANGE_SEPARATOR)[0].strip()
    raw = CHANGE_SUFFIX_PATTERN.sub("", raw)
    raw = raw.replace(",", "").replace(" ", "")

    total = 0.0
    eok_match = EOK_PATTERN.search(raw)
    if eok_match:
        total += float(eok_match.group(1)) * EOK

    man_match = MAN_PATTERN.search(raw)
    if man_match:
        total += float(man_match.group(1)) * MAN
    else:
        remainder = EOK_REMAINDER_PATTERN.search(raw)
        if remainder:
            total += float(remainder.group(1)) * MAN

    return total if total > 0 else None


def parse_unit_number(floor_token: Optional[str]) -> str:
    token = (floor_token or "").strip()
    if token in FLOOR_LEVEL_CODES:
        return FLOOR_LEVEL_CODES[token]
    try:
        floor = int(token)
    except ValueError:
        return LOW_FLOOR_CODE
    # The unit digit never appears in the portal text.
    return f"{floor}0X"


def dotted_date_to_iso(year: str, month: str, day: str) -> str:
    return f"{year}-{month}-{day}"
