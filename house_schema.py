import re
from dataclasses import dataclass, field
from typing import List, Optional


SALE = "매매"
LEASE = "전세"
TRANSACTION_TYPES = (SALE, LEASE)

DEFAULT_AREA = "47"
EOK = 100_000_000


def format_eok(price: Optional[float]) -> str:
    """Render a won amount in 억 with at most four decimals ("17.5억")."""
    if price is None:
        return ""
    text = f"{price / EOK:.4f}".rstrip("0").rstrip(".")
    return f"{text}억"


@dataclass
class ParsedItem:
    transaction_type: str = SALE
    price: Optional[float] = None
    office: Optional[str] = None
    last_updated_date: Optional[str] = None
    remark: Optional[str] = None

    def is_retained(self) -> bool:
        """An item without price and office is noise."""
        return self.price is not None or bool(self.office)

    @property
    def price_display(self) -> str:
        return format_eok(self.price)

    @property
    def display(self) -> str:
        return (
            f"{self.transaction_type} {self.price_display} | {self.office or '-'} | "
            f"{self.last_updated_date or '-'} | {self.remark or '-'}"
        )


@dataclass
class ParsedHouse:
    cluster_name: str
    building_number: str
    unit_number: Optional[str] = None
    area: str = DEFAULT_AREA
    direction: Optional[str] = None
    items: List[ParsedItem] = field(default_factory=list)
    key: str = ""
    is_duplicate: bool = False
    duplicate_reason: str = ""
    matched_house_id: Optional[int] = None
    similar_house_ids: List[int] = field(default_factory=list)

    @property
    def match_status(self) -> str:
        if self.is_duplicate:
            return "duplicate"
        if self.similar_house_ids:
            return "similar"
        return "novel"

    @property
    def display(self) -> str:
        direction = f" {self.direction}" if self.direction else ""
        prefix = "[DUP] " if self.is_duplicate else ""
        text = (
            f"{prefix}{self.cluster_name} {self.building_number}동 {self.unit_number or ''} "
            f"({self.area}평{direction}) - {len(self.items)} items"
        )
        if self.is_duplicate and self.matched_house_id is not None:
            return f"{text} -> same as id={self.matched_house_id}"
        return text


@dataclass
class PersistedItem:
    item_id: int
    house_id: int
    price: Optional[float]
    office: Optional[str]
    last_updated_date: Optional[str]
    added_date: Optional[str]
    remark: Optional[str]
    transaction_type: str = SALE


@dataclass
class PersistedHouse:
    house_id: int
    cluster_id: int
    building_number: str
    unit_number: Optional[str]
    area: str
    items: List[PersistedItem] = field(default_factory=list)


@dataclass
class BulkImportResult:
    houses: List[ParsedHouse] = field(default_factory=list)
    duplicates: List[ParsedHouse] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def total_houses(self) -> int:
        return len(self.houses)

    @property
    def total_items(self) -> int:
        return sum(len(house.items) for house in self.houses)

    @property
    def novel(self) -> List[ParsedHouse]:
        return [house for house in self.houses if house.match_status == "novel"]

    @property
    def similar(self) -> List[ParsedHouse]:
        return [house for house in self.houses if house.match_status == "similar"]

    def related_duplicates(self, house: ParsedHouse) -> List[ParsedHouse]:
        """Duplicates from the same batch that share the house's identity key."""
        key = house.key.casefold()
        return [dup for dup in self.duplicates if dup.key.casefold() == key]


HOUSE_COLUMNS = [
    "house_id",
    "cluster_id",
    "building_number",
    "unit_number",
    "area",
]

ITEM_COLUMNS = [
    "item_id",
    "house_id",
    "transaction_type",
    "price",
    "office",
    "last_updated_date",
    "added_date",
    "remark",
]

CLUSTER_COLUMNS = [
    "cluster_id",
    "name",
]


def sanitize_csv_value(value) -> str:
    if isinstance(value, str):
        cleaned = value.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
        cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
        return cleaned.strip()
    if value is None:
        return ""
    return str(value)
