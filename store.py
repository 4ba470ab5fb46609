import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from house_schema import (
    CLUSTER_COLUMNS,
    HOUSE_COLUMNS,
    ITEM_COLUMNS,
    SALE,
    ParsedHouse,
    ParsedItem,
    PersistedHouse,
    PersistedItem,
)
from pipelines.deduplicate import item_key_with_dates, normalize_unit


logger = logging.getLogger(__name__)

HOUSES_FILE = "houses.parquet"
ITEMS_FILE = "items.parquet"
CLUSTERS_FILE = "clusters.parquet"

HOUSE_SCHEMA = pa.schema(
    [
        ("house_id", pa.int64()),
        ("cluster_id", pa.int64()),
        ("building_number", pa.string()),
        ("unit_number", pa.string()),
        ("area", pa.string()),
    ]
)
ITEM_SCHEMA = pa.schema(
    [
        ("item_id", pa.int64()),
        ("house_id", pa.int64()),
        ("transaction_type", pa.string()),
        ("price", pa.float64()),
        ("office", pa.string()),
        ("last_updated_date", pa.string()),
        ("added_date", pa.string()),
        ("remark", pa.string()),
    ]
)
CLUSTER_SCHEMA = pa.schema([("cluster_id", pa.int64()), ("name", pa.string())])

HOUSE_DTYPES = {
    "house_id": "Int64",
    "cluster_id": "Int64",
    "building_number": object,
    "unit_number": object,
    "area": object,
}
ITEM_DTYPES = {
    "item_id": "Int64",
    "house_id": "Int64",
    "transaction_type": object,
    "price": float,
    "office": object,
    "last_updated_date": object,
    "added_date": object,
    "remark": object,
}
CLUSTER_DTYPES = {"cluster_id": "Int64", "name": object}

TABLES = {
    "houses": (HOUSES_FILE, HOUSE_COLUMNS, HOUSE_DTYPES, HOUSE_SCHEMA),
    "items": (ITEMS_FILE, ITEM_COLUMNS, ITEM_DTYPES, ITEM_SCHEMA),
    "clusters": (CLUSTERS_FILE, CLUSTER_COLUMNS, CLUSTER_DTYPES, CLUSTER_SCHEMA),
}


def to_python(value: Any) -> Any:
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, (np.integer, np.int64, np.int32)):
        return int(value)
    if isinstance(value, (np.floating, np.float32, np.float64)):
        if np.isnan(value):
            return None
        return float(value)
    if value is pd.NA or (isinstance(value, float) and np.isnan(value)):
        return None
    return value


def empty_frame(columns: List[str], dtypes: Dict[str, Any]) -> pd.DataFrame:
    return pd.DataFrame({column: pd.Series(dtype=dtypes[column]) for column in columns})


def coerce_frame(df: pd.DataFrame, columns: List[str], dtypes: Dict[str, Any]) -> pd.DataFrame:
    working = df.reindex(columns=columns)
    for column in columns:
        if dtypes[column] is object:
            working[column] = working[column].astype(object).where(working[column].notna(), None)
        else:
            working[column] = working[column].astype(dtypes[column])
    return working.reset_index(drop=True)


def load_parquet(path: Path, columns: List[str], dtypes: Dict[str, Any]) -> pd.DataFrame:
    if not path.exists():
        logger.warning("Store file %s not found; starting empty.", path)
        return empty_frame(columns, dtypes)
    df = pq.read_table(str(path)).to_pandas()
    return coerce_frame(df, columns, dtypes)


def write_parquet(df: pd.DataFrame, path: Path, schema: pa.Schema) -> None:
    try:
        table = pa.Table.from_pandas(df, schema=schema, preserve_index=False)
        pq.write_table(table, str(path), compression="zstd")
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Failed to write %s: %s", path, exc)
        raise RuntimeError(
            f"Failed to write parquet file {path}: {exc}\n"
            "Ensure that a compatible pyarrow installation is available."
        ) from exc


def _next_id(series: pd.Series) -> int:
    if series.dropna().empty:
        return 1
    return int(series.max()) + 1


def _append_rows(frame: pd.DataFrame, rows: List[Dict[str, Any]], table: str) -> pd.DataFrame:
    _, columns, dtypes, _ = TABLES[table]
    new_rows = coerce_frame(pd.DataFrame(rows, columns=columns), columns, dtypes)
    if frame.empty:
        return new_rows
    return pd.concat([frame, new_rows], ignore_index=True)


class HouseStore:
    """Parquet-backed houses, items and clusters.

    Reads outside a transaction always see the files on disk. Commands run
    inside ``transaction()``; a command issued without one opens its own.
    Everything written in a transaction lands together or not at all.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._lock = threading.RLock()
        self._pending: Optional[Dict[str, pd.DataFrame]] = None

    def _path(self, table: str) -> Path:
        return self.root / TABLES[table][0]

    def _read(self, table: str) -> pd.DataFrame:
        _, columns, dtypes, _ = TABLES[table]
        return load_parquet(self._path(table), columns, dtypes)

    def _frame(self, table: str) -> pd.DataFrame:
        if self._pending is not None:
            return self._pending[table]
        return self._read(table)

    @contextmanager
    def transaction(self) -> Iterator["HouseStore"]:
        with self._lock:
            outermost = self._pending is None
            if outermost:
                self._pending = {table: self._read(table) for table in TABLES}
            try:
                yield self
            except BaseException:
                if outermost:
                    logger.warning("Transaction failed; discarding pending changes.")
                    self._pending = None
                raise
            if outermost:
                try:
                    self._commit(self._pending)
                finally:
                    self._pending = None

    def _commit(self, frames: Dict[str, pd.DataFrame]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        staged: List[tuple] = []
        try:
            for table, frame in frames.items():
                target = self._path(table)
                tmp_path = target.with_name(target.name + ".tmp")
                write_parquet(frame, tmp_path, TABLES[table][3])
                staged.append((tmp_path, target))
        except RuntimeError:
            for tmp_path, _ in staged:
                tmp_path.unlink(missing_ok=True)
            raise
        for tmp_path, target in staged:
            os.replace(tmp_path, target)
        logger.debug(
            "Committed %s houses, %s items, %s clusters to %s",
            len(frames["houses"]),
            len(frames["items"]),
            len(frames["clusters"]),
            self.root,
        )

    def houses(self) -> pd.DataFrame:
        return self._frame("houses").copy()

    def items(self) -> pd.DataFrame:
        return self._frame("items").copy()

    def clusters(self) -> pd.DataFrame:
        return self._frame("clusters").copy()

    def count_items(self, house_id: int) -> int:
        items = self._frame("items")
        return int((items["house_id"] == house_id).sum())

    def fetch_houses_with_items(
        self,
        building_numbers: Iterable[str],
        area: Optional[str] = None,
    ) -> List[PersistedHouse]:
        """Persisted houses in the given buildings, optionally limited to one area."""
        wanted = {normalize_unit(number).casefold() for number in building_numbers}
        wanted.discard("")
        if not wanted:
            return []

        houses = self._frame("houses")
        mask = houses["building_number"].map(lambda value: normalize_unit(value).casefold() in wanted)
        if area is not None:
            area_key = normalize_unit(area).casefold()
            mask &= houses["area"].map(lambda value: normalize_unit(value).casefold() == area_key)
        selected = houses[mask.astype(bool)].sort_values("house_id")

        items = self._frame("items")
        items = items[items["house_id"].isin(selected["house_id"])]
        items = items.sort_values(["added_date", "last_updated_date"], ascending=False, na_position="last")
        items_by_house: Dict[int, List[PersistedItem]] = {}
        for record in items.to_dict(orient="records"):
            item = self._item_from_record(record)
            items_by_house.setdefault(item.house_id, []).append(item)

        result: List[PersistedHouse] = []
        for record in selected.to_dict(orient="records"):
            house_id = int(record["house_id"])
            result.append(
                PersistedHouse(
                    house_id=house_id,
                    cluster_id=int(to_python(record["cluster_id"]) or 0),
                    building_number=to_python(record["building_number"]),
                    unit_number=to_python(record["unit_number"]),
                    area=to_python(record["area"]),
                    items=items_by_house.get(house_id, []),
                )
            )
        logger.info("Fetched %s persisted houses for buildings %s (area=%s)", len(result), sorted(wanted), area)
        return result

    @staticmethod
    def _item_from_record(record: Dict[str, Any]) -> PersistedItem:
        row = {key: to_python(value) for key, value in record.items()}
        return PersistedItem(
            item_id=int(row["item_id"]),
            house_id=int(row["house_id"]),
            price=row["price"],
            office=row["office"],
            last_updated_date=row["last_updated_date"],
            added_date=row["added_date"],
            remark=row["remark"],
            transaction_type=row["transaction_type"] or SALE,
        )

    def get_or_create_cluster_id(self, name: str) -> int:
        cleaned = (name or "").strip()
        with self.transaction():
            clusters = self._pending["clusters"]
            matches = clusters[clusters["name"].map(lambda value: (value or "").strip() == cleaned)]
            if not matches.empty:
                return int(matches["cluster_id"].iloc[0])
            cluster_id = _next_id(clusters["cluster_id"])
            self._pending["clusters"] = _append_rows(
                clusters, [{"cluster_id": cluster_id, "name": cleaned}], "clusters"
            )
            logger.info("Registered cluster %s as id=%s", cleaned, cluster_id)
            return cluster_id

    def insert_house(
        self,
        cluster_id: int,
        building_number: str,
        unit_number: Optional[str],
        area: str,
    ) -> int:
        with self.transaction():
            houses = self._pending["houses"]
            house_id = _next_id(houses["house_id"])
            row = {
                "house_id": house_id,
                "cluster_id": cluster_id,
                "building_number": building_number,
                "unit_number": unit_number,
                "area": area,
            }
            self._pending["houses"] = _append_rows(houses, [row], "houses")
            return house_id

    def append_items(self, house_id: int, items: Iterable[ParsedItem], added_date: str) -> int:
        """Insert items into a house, ignoring ones already stored for it.

        Identity is (price, office, last updated, added date, remark) so the
        same batch applied twice on one day inserts nothing the second time.
        Returns the number of rows actually inserted.
        """
        with self.transaction():
            houses = self._pending["houses"]
            if not (houses["house_id"] == house_id).any():
                raise ValueError(f"Unknown house_id: {house_id}")

            stored = self._pending["items"]
            existing = {
                item_key_with_dates(self._item_from_record(record))
                for record in stored[stored["house_id"] == house_id].to_dict(orient="records")
            }
            next_id = _next_id(stored["item_id"])
            rows: List[Dict[str, Any]] = []
            for item in items:
                key = item_key_with_dates(item, added_date)
                if key in existing:
                    logger.debug("Item already stored for house_id=%s: %s", house_id, key)
                    continue
                existing.add(key)
                rows.append(
                    {
                        "item_id": next_id + len(rows),
                        "house_id": house_id,
                        "transaction_type": item.transaction_type,
                        "price": item.price,
                        "office": item.office,
                        "last_updated_date": item.last_updated_date,
                        "added_date": added_date,
                        "remark": item.remark,
                    }
                )
            if rows:
                self._pending["items"] = _append_rows(stored, rows, "items")
            return len(rows)

    def insert_house_with_items(
        self,
        house: ParsedHouse,
        added_date: str,
        cluster_id: Optional[int] = None,
    ) -> int:
        with self.transaction():
            if cluster_id is None:
                cluster_id = self.get_or_create_cluster_id(house.cluster_name)
            house_id = self.insert_house(cluster_id, house.building_number, house.unit_number, house.area)
            inserted = self.append_items(house_id, house.items, added_date)
            logger.debug("Inserted house_id=%s (%s) with %s items", house_id, house.key, inserted)
            return house_id
