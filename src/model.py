"""
model.py

Domain models for the Rapportino daily work report system.

Entities
--------
- DailyReport      (aggregate root: one worker-day)
- ClientSection    (per-client grouping inside a report)
- MachineActivity  (machine / equipment hours)
- MaterialActivity (material used or transported)

`Activity` is the tagged union of the two activity variants; each variant
carries only its own required fields and validates them on construction.

All models use Python dataclasses for clean, framework-agnostic definitions.
UUID primary keys are used throughout for portability.
Timestamps are always stored in UTC; the report date is a local calendar day.
Numeric amounts are Decimals so that fractional hours and quantities survive
a save/reload cycle exactly.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import ClassVar, List, Optional, Union

from errors import ValidationError


# Border colours used by the UI to tell client sections apart.
CLIENT_COLOR_PALETTE = (
    "color-1",
    "color-2",
    "color-3",
    "color-4",
    "color-5",
    "color-6",
)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ReportStatus(str, Enum):
    """Lifecycle status of a daily report."""
    DRAFT = "draft"
    FINAL = "final"


class MaterialUnit(str, Enum):
    """Unit of measurement for a material activity."""
    CUBIC_METERS = "cubic_meters"
    TONS = "tons"


class ActivityType(str, Enum):
    """Discriminator of the Activity union."""
    MACHINE = "machine"
    MATERIAL = "material"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value, field_name: str) -> Decimal:
    """Coerce an int / float / str / Decimal into a finite Decimal."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number, got {value!r}.")
    try:
        # str() first so floats like 8.5 do not carry binary noise
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number, got {value!r}.") from exc
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number, got {value!r}.")
    return amount


def _positive_or_none(value, field_name: str) -> Optional[Decimal]:
    # None is tolerated for legacy records whose amount was never stored
    if value is None:
        return None
    amount = to_decimal(value, field_name)
    if amount <= 0:
        raise ValidationError(f"{field_name} must be greater than zero, got {amount}.")
    return amount


def _require_text(value: str, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} must not be empty.")
    return text


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


@dataclass
class MachineActivity:
    """
    Hours worked with a machine or piece of equipment for one client.

    Only machine activities contribute to the report's total hours.
    """
    kind: ClassVar[ActivityType] = ActivityType.MACHINE

    id: uuid.UUID = field(default_factory=uuid.uuid4)
    client_section_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → ClientSection.id
    machine_name: str = ""
    hours: Optional[Decimal] = None     # None only for legacy records missing the value
    description: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.hours = _positive_or_none(self.hours, "hours")
        self.description = self.description or ""


@dataclass
class MaterialActivity:
    """
    Material used or transported for one client (e.g. gravel, asphalt).
    """
    kind: ClassVar[ActivityType] = ActivityType.MATERIAL

    id: uuid.UUID = field(default_factory=uuid.uuid4)
    client_section_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → ClientSection.id
    material_name: str = ""
    quantity: Optional[Decimal] = None
    unit: MaterialUnit = MaterialUnit.CUBIC_METERS
    notes: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.quantity = _positive_or_none(self.quantity, "quantity")
        try:
            self.unit = MaterialUnit(self.unit)
        except ValueError as exc:
            raise ValidationError(
                f"unit must be one of: {[u.value for u in MaterialUnit]}, got {self.unit!r}."
            ) from exc
        self.notes = self.notes or ""


Activity = Union[MachineActivity, MaterialActivity]


# ---------------------------------------------------------------------------
# Client section
# ---------------------------------------------------------------------------


@dataclass
class ClientSection:
    """
    A per-client grouping of activities within one day's report.

    Owned exclusively by one DailyReport; deleting the report deletes the
    section, and deleting the section deletes its activities.
    `color_tag` is an index into CLIENT_COLOR_PALETTE.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    daily_report_id: uuid.UUID = field(default_factory=uuid.uuid4)     # FK → DailyReport.id
    client_name: str = ""
    job_site: str = ""
    color_tag: int = 0
    activities: List[Activity] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.client_name = _require_text(self.client_name, "client_name")
        self.job_site = _require_text(self.job_site, "job_site")
        if self.color_tag < 0:
            raise ValidationError(f"color_tag must not be negative, got {self.color_tag}.")

    @property
    def color_class(self) -> str:
        return CLIENT_COLOR_PALETTE[self.color_tag % len(CLIENT_COLOR_PALETTE)]


# ---------------------------------------------------------------------------
# Daily report
# ---------------------------------------------------------------------------


@dataclass
class DailyReport:
    """
    One worker-day: the aggregate root of the model.

    A report starts as DRAFT and is edited progressively.  Finalizing it
    stamps `total_hours` and `finalized_at` and locks its content; reopening
    it clears `finalized_at` and unlocks it again.

    `total_hours` is authoritative only while FINAL.  For a DRAFT the value
    shown to the user is computed live from the activities.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    date: date = field(default_factory=date.today)     # local calendar day
    status: ReportStatus = ReportStatus.DRAFT
    trasferta: bool = False                             # worker away from home base
    total_hours: Decimal = Decimal("0")
    clients: List[ClientSection] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    finalized_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        try:
            self.status = ReportStatus(self.status)
        except ValueError as exc:
            raise ValidationError(f"Unknown report status {self.status!r}.") from exc
        self.total_hours = to_decimal(self.total_hours, "total_hours")
        if (self.status == ReportStatus.FINAL) != (self.finalized_at is not None):
            raise ValidationError(
                "finalized_at must be set exactly when the report is final."
            )

    @property
    def is_draft(self) -> bool:
        return self.status == ReportStatus.DRAFT

    @property
    def is_final(self) -> bool:
        return self.status == ReportStatus.FINAL

    def find_client(self, client_section_id: uuid.UUID) -> Optional[ClientSection]:
        return next((c for c in self.clients if c.id == client_section_id), None)
