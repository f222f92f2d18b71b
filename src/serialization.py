"""
serialization.py

Persisted representation of a DailyReport tree.

Encoding (canonical)
--------------------
    {
      "id": "<uuid>",
      "date": "2024-05-13",
      "status": "final",
      "trasferta": false,
      "total_hours": "8.5",
      "created_at": "2024-05-13T06:12:40.123456+00:00",
      "finalized_at": "2024-05-13T17:02:11.000001+00:00",
      "clients": [
        {
          "id": "<uuid>", "daily_report_id": "<uuid>",
          "client_name": "...", "job_site": "...", "color_tag": 0,
          "created_at": "...",
          "activities": [
            {"type": "machine", "id": "<uuid>", "client_section_id": "<uuid>",
             "machine_name": "Escavatore", "hours": "8.5", "description": "",
             "created_at": "..."},
            {"type": "material", ..., "material_name": "Ghiaia",
             "quantity": "3.25", "unit": "cubic_meters", "notes": ""}
          ]
        }
      ]
    }

Decimals are written as strings so no precision is lost, timestamps as
ISO-8601 with their UTC offset, so a save/reload cycle is exact.

Decoding is lenient towards records written by older app versions:
camelCase keys, "DRAFT"/"FINAL"/"finalized" status spellings, "m³"/"ton"
units, epoch-millisecond dates, numeric ids and missing amounts are all
accepted and normalised.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from errors import ValidationError
from model import (
    CLIENT_COLOR_PALETTE,
    Activity,
    ActivityType,
    ClientSection,
    DailyReport,
    MachineActivity,
    MaterialActivity,
    MaterialUnit,
    ReportStatus,
    to_decimal,
)

logger = logging.getLogger(__name__)

# Namespace for deterministic UUIDs derived from legacy numeric ids.
LEGACY_ID_NAMESPACE = uuid.UUID("6f1c7f0e-3b8a-4a55-9d0e-7a2b9d4f1c11")

_STATUS_ALIASES = {
    "draft": ReportStatus.DRAFT,
    "final": ReportStatus.FINAL,
    "finalized": ReportStatus.FINAL,
}

_UNIT_ALIASES = {
    "cubic_meters": MaterialUnit.CUBIC_METERS,
    "m³": MaterialUnit.CUBIC_METERS,
    "m3": MaterialUnit.CUBIC_METERS,
    "mc": MaterialUnit.CUBIC_METERS,
    "tons": MaterialUnit.TONS,
    "ton": MaterialUnit.TONS,
    "t": MaterialUnit.TONS,
}


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_decimal(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def activity_to_dict(activity: Activity) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "type": activity.kind.value,
        "id": str(activity.id),
        "client_section_id": str(activity.client_section_id),
        "created_at": format_timestamp(activity.created_at),
    }
    if isinstance(activity, MachineActivity):
        data.update(
            machine_name=activity.machine_name,
            hours=_fmt_decimal(activity.hours),
            description=activity.description,
        )
    else:
        data.update(
            material_name=activity.material_name,
            quantity=_fmt_decimal(activity.quantity),
            unit=activity.unit.value,
            notes=activity.notes,
        )
    return data


def section_to_dict(section: ClientSection) -> Dict[str, Any]:
    return {
        "id": str(section.id),
        "daily_report_id": str(section.daily_report_id),
        "client_name": section.client_name,
        "job_site": section.job_site,
        "color_tag": section.color_tag,
        "created_at": format_timestamp(section.created_at),
        "activities": [activity_to_dict(a) for a in section.activities],
    }


def report_to_dict(report: DailyReport) -> Dict[str, Any]:
    return {
        "id": str(report.id),
        "date": report.date.isoformat(),
        "status": report.status.value,
        "trasferta": report.trasferta,
        "total_hours": _fmt_decimal(report.total_hours),
        "created_at": format_timestamp(report.created_at),
        "finalized_at": format_timestamp(report.finalized_at),
        "clients": [section_to_dict(c) for c in report.clients],
    }


def dumps(report: DailyReport) -> str:
    return json.dumps(report_to_dict(report), ensure_ascii=False, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _pick(data: Mapping[str, Any], *keys: str, default=None):
    """First present key wins; lets snake_case and legacy camelCase coexist."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _parse_id(raw) -> uuid.UUID:
    if raw is None:
        return uuid.uuid4()
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return uuid.uuid5(LEGACY_ID_NAMESPACE, str(raw))


def parse_timestamp(raw) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, (int, float)):
        dt = datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
    else:
        try:
            dt = datetime.fromisoformat(str(raw))
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp {raw!r}.") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_day(raw) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, (int, float)):
        # epoch millis of local midnight
        return datetime.fromtimestamp(raw / 1000).date()
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError as exc:
        raise ValidationError(f"Invalid report date {raw!r}.") from exc


def _parse_status(raw) -> ReportStatus:
    status = _STATUS_ALIASES.get(str(raw or "draft").strip().lower())
    if status is None:
        raise ValidationError(f"Unknown report status {raw!r}.")
    return status


def _parse_unit(raw) -> MaterialUnit:
    unit = _UNIT_ALIASES.get(str(raw or "").strip().lower())
    if unit is None:
        raise ValidationError(f"Unknown material unit {raw!r}.")
    return unit


def _parse_amount(raw, field_name: str, record_id) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    try:
        amount = to_decimal(raw, field_name)
    except ValidationError:
        amount = None
    if amount is None or amount <= 0:
        logger.warning(
            "Ignoring unusable %s %r on activity %s", field_name, raw, record_id
        )
        return None
    return amount


_TRUE_FLAGS = {"true", "1", "yes"}
_FALSE_FLAGS = {"false", "0", "no", ""}


def _parse_flag(raw, field_name: str) -> bool:
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE_FLAGS:
            return True
        if text in _FALSE_FLAGS:
            return False
    raise ValidationError(f"Invalid {field_name} flag {raw!r}.")


def _parse_color_tag(data: Mapping[str, Any]) -> int:
    tag = _pick(data, "color_tag", "colorTag")
    if tag is not None:
        try:
            return int(tag)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValidationError(f"Invalid color tag {tag!r}.") from exc
    color_class = _pick(data, "colorClass", "color_class")
    if color_class in CLIENT_COLOR_PALETTE:
        return CLIENT_COLOR_PALETTE.index(color_class)
    return 0


def activity_from_dict(data: Mapping[str, Any], client_section_id: uuid.UUID) -> Activity:
    kind = str(_pick(data, "type", "activityType", "activity_type", default="")).lower()
    activity_id = _parse_id(data.get("id"))
    created_at = parse_timestamp(_pick(data, "created_at", "createdAt")) or datetime.now(timezone.utc)

    if kind == ActivityType.MACHINE.value:
        return MachineActivity(
            id=activity_id,
            client_section_id=client_section_id,
            machine_name=_pick(data, "machine_name", "machineName", "machine", default=""),
            hours=_parse_amount(data.get("hours"), "hours", activity_id),
            description=_pick(data, "description", default=""),
            created_at=created_at,
        )
    if kind == ActivityType.MATERIAL.value:
        return MaterialActivity(
            id=activity_id,
            client_section_id=client_section_id,
            material_name=_pick(data, "material_name", "materialName", "name", default=""),
            quantity=_parse_amount(data.get("quantity"), "quantity", activity_id),
            unit=_parse_unit(data.get("unit")),
            notes=_pick(data, "notes", "note", default=""),
            created_at=created_at,
        )
    raise ValidationError(f"Unknown activity type {kind!r}.")


def section_from_dict(data: Mapping[str, Any], daily_report_id: uuid.UUID) -> ClientSection:
    section_id = _parse_id(data.get("id"))
    return ClientSection(
        id=section_id,
        daily_report_id=daily_report_id,
        client_name=_pick(data, "client_name", "clientName", default=""),
        job_site=_pick(data, "job_site", "jobSite", default=""),
        color_tag=_parse_color_tag(data),
        activities=[activity_from_dict(a, section_id) for a in data.get("activities", [])],
        created_at=parse_timestamp(_pick(data, "created_at", "createdAt")) or datetime.now(timezone.utc),
    )


def report_from_dict(data: Mapping[str, Any]) -> DailyReport:
    report_id = _parse_id(data.get("id"))
    status = _parse_status(data.get("status"))
    created_at = parse_timestamp(_pick(data, "created_at", "createdAt")) or datetime.now(timezone.utc)
    finalized_at = parse_timestamp(_pick(data, "finalized_at", "finalizedAt"))

    if status == ReportStatus.FINAL and finalized_at is None:
        logger.warning("Report %s is final without finalized_at; using created_at", report_id)
        finalized_at = created_at
    elif status == ReportStatus.DRAFT and finalized_at is not None:
        logger.warning("Report %s is a draft with finalized_at; clearing it", report_id)
        finalized_at = None

    return DailyReport(
        id=report_id,
        date=_parse_day(data.get("date")),
        status=status,
        trasferta=_parse_flag(data.get("trasferta"), "trasferta"),
        total_hours=_pick(data, "total_hours", "totalHours", default="0"),
        clients=[section_from_dict(c, report_id) for c in data.get("clients", [])],
        created_at=created_at,
        finalized_at=finalized_at,
    )


def loads(text: str) -> DailyReport:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Stored report is not valid JSON: {exc}") from exc
    return report_from_dict(data)
