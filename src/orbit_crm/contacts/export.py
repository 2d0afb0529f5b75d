"""Contact export to CSV and XLSX."""

import csv
import io
from datetime import date, datetime

from openpyxl import Workbook
from openpyxl.styles import Font

from orbit_crm.common.exceptions import ValidationError

DEFAULT_FIELDS = ["name", "email", "phone", "company", "status", "tags"]

FIELD_HEADERS = {
    "name": "Name",
    "email": "Email",
    "phone": "Phone",
    "company": "Company",
    "status": "Status",
    "tags": "Tags",
    "createdAt": "Created Date",
}

MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def parse_fields(raw: str | None) -> list[str]:
    if not raw:
        return list(DEFAULT_FIELDS)
    fields = [f.strip() for f in raw.split(",") if f.strip()]
    return fields or list(DEFAULT_FIELDS)


def _display_name(contact) -> str:
    if contact.is_company and contact.company_name:
        return contact.company_name
    full = f"{contact.first_name or ''} {contact.last_name or ''}".strip()
    return full or contact.email or "Unknown"


def field_value(contact, field: str) -> str:
    """Render one contact attribute as a flat cell value."""
    if field == "name":
        return _display_name(contact)
    if field == "email":
        return contact.email or ""
    if field == "phone":
        return contact.phone or ""
    if field == "company":
        return "" if contact.is_company else (contact.company_name or "")
    if field == "status":
        return contact.status or "lead"
    if field == "tags":
        return ", ".join(contact.tags or [])
    if field == "createdAt":
        created = contact.created_at
        if isinstance(created, datetime):
            return created.date().isoformat()
        return created.isoformat() if created else ""
    return ""


def build_rows(contacts, fields: list[str]) -> list[list[str]]:
    header = [FIELD_HEADERS.get(f, f) for f in fields]
    return [header] + [[field_value(c, f) for f in fields] for c in contacts]


def to_csv(contacts, fields: list[str]) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerows(build_rows(contacts, fields))
    return buf.getvalue().encode("utf-8")


def to_xlsx(contacts, fields: list[str]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Contacts"
    for row in build_rows(contacts, fields):
        ws.append(row)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_contacts(contacts, fmt: str, fields: list[str], today: date | None = None):
    """Return ``(content, media_type, filename)`` for the requested format."""
    if fmt not in MEDIA_TYPES:
        raise ValidationError(f"Unsupported export format: {fmt}")
    content = to_csv(contacts, fields) if fmt == "csv" else to_xlsx(contacts, fields)
    stamp = (today or date.today()).isoformat()
    return content, MEDIA_TYPES[fmt], f"contacts-export-{stamp}.{fmt}"
