# photoarchiver/services/costs.py
# Usage counters for one run and a rough cost estimate from configured prices.

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Iterator, Optional, Tuple

GB = 1024 * 1024 * 1024


@dataclass
class CostOptions:
    """Unit prices; None means "not configured" and the line is omitted."""

    currency: str = "$"
    list_or_create_container_price_per_10000: Optional[Decimal] = None
    read_price_per_10000: Optional[Decimal] = None
    write_price_per_10000: Optional[Decimal] = None
    other_price_per_10000: Optional[Decimal] = None
    data_storage_price_per_gb: Optional[Decimal] = None
    grs_data_transfer_price_per_gb: Optional[Decimal] = None
    outbound_data_transfer_price_per_gb: Optional[Decimal] = None
    describe_price_per_1000: Optional[Decimal] = None
    face_price_per_1000: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, cfg: dict) -> "CostOptions":
        kwargs = {}
        for f in fields(cls):
            if f.name not in cfg or cfg[f.name] is None:
                continue
            value = cfg[f.name]
            kwargs[f.name] = str(value) if f.name == "currency" else Decimal(str(value))
        return cls(**kwargs)

    def is_any_set(self) -> bool:
        return any(getattr(self, f.name) is not None for f in fields(self) if f.name != "currency")


class CostEstimator:
    """Increment-only counters, summarized at the end of a run."""

    def __init__(self, options: Optional[CostOptions] = None) -> None:
        self.options = options or CostOptions()
        self.reads = 0
        self.writes = 0
        self.others = 0
        self.list_or_create_containers = 0
        self.bytes_written = 0
        self.bytes_read = 0
        self.describe_transactions = 0
        self.face_transactions = 0

    def add_read(self, nbytes: int = 0) -> None:
        self.reads += 1
        self.bytes_read += nbytes

    def add_write(self, nbytes: int = 0) -> None:
        self.writes += 1
        self.bytes_written += nbytes

    def add_other(self) -> None:
        self.others += 1

    def add_list_or_create_container(self) -> None:
        self.list_or_create_containers += 1

    def add_describe(self) -> None:
        self.describe_transactions += 1

    def add_face(self) -> None:
        self.face_transactions += 1

    def summarize_usage(self) -> Iterator[Tuple[str, int]]:
        rows = [
            ("Bytes transferred", self.bytes_written),
            ("Bytes downloaded", self.bytes_read),
            ("List or Create Container operations", self.list_or_create_containers),
            ("Computer Vision Describe transactions", self.describe_transactions),
            ("Face transactions", self.face_transactions),
            ("Read operations", self.reads),
            ("Write operations", self.writes),
            ("Other operations", self.others),
        ]
        return ((item, amount) for item, amount in rows if amount > 0)

    def summarize_costs(self) -> Iterator[Tuple[str, Decimal]]:
        o = self.options
        rows = [
            ("Data Storage (monthly)", self.bytes_written, o.data_storage_price_per_gb, GB),
            ("List or Create Container operations (one time)", self.list_or_create_containers,
             o.list_or_create_container_price_per_10000, 10000),
            ("Computer Vision Describe transactions", self.describe_transactions, o.describe_price_per_1000, 1000),
            ("Face transactions", self.face_transactions, o.face_price_per_1000, 1000),
            ("Read operations (one time)", self.reads, o.read_price_per_10000, 10000),
            ("Write operations (one time)", self.writes, o.write_price_per_10000, 10000),
            ("Other operations (one time)", self.others, o.other_price_per_10000, 10000),
            ("Outbound Data Transfer (one time)", self.bytes_read, o.outbound_data_transfer_price_per_gb, GB),
            ("Geo-Redundancy Data Transfer (one time)", self.bytes_written, o.grs_data_transfer_price_per_gb, GB),
        ]
        for item, amount, price, unit in rows:
            if amount > 0 and price is not None:
                yield item, Decimal(amount) / Decimal(unit) * price
