"""
Vendor and deal data structures.

VendorRecord is the ingestion boundary for feed payloads: it accepts the
camelCase wire format and normalizes vendor ids to one canonical string so
every lookup downstream needs a single dictionary access.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Days of the week, lowercase as the feed keys them (Monday first, like datetime.weekday())
DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class DealType(str, Enum):
    BIRTHDAY = "birthday"
    DAILY = "daily"
    MULTI_DAY = "multiDay"
    SPECIAL = "special"
    EVERYDAY = "everyday"


class CheckInType(str, Enum):
    QR = "qr"
    QR_SKIPPED = "qrSkipped"
    NONE = "none"


def normalize_vendor_id(value) -> str:
    """
    Canonical string form of a vendor id.

    12, 12.0, "12" and " 12 " all map to "12".
    """
    if value is None:
        raise ValueError("vendor id is required")
    if isinstance(value, bool):
        raise ValueError(f"invalid vendor id: {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    if not text:
        raise ValueError("vendor id is empty")
    return text


def weekday_name(moment: datetime) -> str:
    """Lowercase English day name of a datetime ('monday' ... 'sunday')."""
    return DAYS[moment.weekday()]


def local_now(tz=None) -> datetime:
    """Timezone-aware now in the given zone (UTC if none)."""
    return datetime.now(tz or pytz.utc)


def as_aware(moment: datetime, tz) -> datetime:
    """Attach tz to a naive datetime; convert an aware one."""
    if moment.tzinfo is None:
        return tz.localize(moment) if hasattr(tz, "localize") else moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


# --------------------- Pydantic models ---------------------


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Coordinates(WireModel):
    latitude: float
    longitude: float


class BusinessHours(WireModel):
    open: str
    close: str


class VendorContact(WireModel):
    phone: Optional[str] = None
    email: Optional[str] = None
    social: Dict[str, str] = Field(default_factory=dict)


class Deal(WireModel):
    id: Optional[str] = None
    title: str = ""
    description: str = ""
    discount: str = ""
    restrictions: List[str] = Field(default_factory=list)
    category: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return None if value is None else str(value)

    def is_empty(self) -> bool:
        return not (self.title or self.description or self.discount)


class SpecialDeal(Deal):
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")

    def is_active(self, now: datetime) -> bool:
        tz = now.tzinfo or pytz.utc
        return as_aware(self.start_date, tz) <= now <= as_aware(self.end_date, tz)


class MultiDayDeal(Deal):
    active_days: List[str] = Field(default_factory=list, alias="activeDays")

    @field_validator("active_days", mode="before")
    @classmethod
    def _lowercase_days(cls, value):
        return [str(day).strip().lower() for day in (value or [])]


class VendorDeals(WireModel):
    daily: Dict[str, List[Deal]] = Field(default_factory=dict)
    birthday: Optional[Deal] = None
    multi_day: List[MultiDayDeal] = Field(default_factory=list, alias="multiDay")
    special: List[SpecialDeal] = Field(default_factory=list)
    everyday: List[Deal] = Field(default_factory=list)

    @field_validator("daily", mode="before")
    @classmethod
    def _lowercase_daily_keys(cls, value):
        return {str(day).strip().lower(): deals or [] for day, deals in (value or {}).items()}

    @field_validator("everyday", "multi_day", "special", mode="before")
    @classmethod
    def _wrap_single(cls, value):
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        return value


class VendorRecord(WireModel):
    id: str
    name: str
    coordinates: Optional[Coordinates] = None
    address: str = ""
    contact: VendorContact = Field(default_factory=VendorContact)
    is_partner: bool = Field(False, alias="isPartner")
    rating: float = 0.0
    hours: Dict[str, BusinessHours] = Field(default_factory=dict)
    deals: VendorDeals = Field(default_factory=VendorDeals)
    has_qr_code: bool = Field(True, alias="hasQrCode")
    status: Optional[str] = None
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")

    @model_validator(mode="before")
    @classmethod
    def _flatten_location(cls, data):
        # Feed nests address and coordinates under "location"
        if isinstance(data, dict) and "location" in data:
            data = dict(data)
            location = data.pop("location") or {}
            data.setdefault("coordinates", location.get("coordinates"))
            data.setdefault("address", location.get("address") or "")
        if isinstance(data, dict) and data.get("hasQrCode") is None and data.get("has_qr_code") is None:
            data = {k: v for k, v in data.items() if k not in ("hasQrCode", "has_qr_code")}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value):
        return normalize_vendor_id(value)


@dataclass
class DealRecord:
    """Flattened view of one vendor deal; recomputed from VendorRecord on query."""
    id: str
    vendor_id: str
    title: str
    description: str
    discount_text: str
    deal_type: DealType
    restrictions: List[str] = field(default_factory=list)
    day: Optional[str] = None
    active_days: List[str] = field(default_factory=list)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "vendorId": self.vendor_id,
            "title": self.title,
            "description": self.description,
            "discountText": self.discount_text,
            "dealType": self.deal_type.value,
            "restrictions": list(self.restrictions),
            "day": self.day,
            "activeDays": list(self.active_days),
            "validFrom": self.valid_from.isoformat() if self.valid_from else None,
            "validUntil": self.valid_until.isoformat() if self.valid_until else None,
            "category": self.category,
        }


def flatten_deals(vendor: VendorRecord, deal_type: DealType) -> List[DealRecord]:
    """Every deal of one type offered by a vendor, regardless of date."""
    deals = vendor.deals
    records: List[DealRecord] = []

    def make(deal: Deal, index: int, **extra) -> DealRecord:
        return DealRecord(
            id=deal.id or f"{vendor.id}-{deal_type.value}-{index}",
            vendor_id=vendor.id,
            title=deal.title,
            description=deal.description,
            discount_text=deal.discount,
            deal_type=deal_type,
            restrictions=list(deal.restrictions),
            category=deal.category,
            **extra,
        )

    if deal_type is DealType.BIRTHDAY:
        if deals.birthday is not None and not deals.birthday.is_empty():
            records.append(make(deals.birthday, 0))
    elif deal_type is DealType.DAILY:
        index = 0
        for day in DAYS:
            for deal in deals.daily.get(day, []):
                records.append(make(deal, index, day=day))
                index += 1
    elif deal_type is DealType.MULTI_DAY:
        for index, deal in enumerate(deals.multi_day):
            records.append(make(deal, index, active_days=list(deal.active_days)))
    elif deal_type is DealType.SPECIAL:
        for index, deal in enumerate(deals.special):
            records.append(make(deal, index, valid_from=deal.start_date, valid_until=deal.end_date))
    elif deal_type is DealType.EVERYDAY:
        for index, deal in enumerate(deals.everyday):
            records.append(make(deal, index))
    else:
        raise ValueError(f"Unhandled deal type: {deal_type}")
    return records
