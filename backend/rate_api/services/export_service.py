"""
Audit export - csv, excel and pdf renderings of filtered audit records.

A pass-through formatting concern: rows come from AuditRecorder.query and
are rendered as-is.
"""
import csv
import io
import json
import logging
from datetime import datetime
from typing import Any, List, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from rate_core.audit import AuditFilters, AuditRecorder
from rate_core.errors import ValidationError
from rate_core.models import AUDIT_ACTION_LABELS, ENTITY_TYPE_LABELS, RateAuditRecord

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "ID", "Timestamp", "User", "Action", "Entity Type", "Entity ID",
    "Entity Name", "Changed Fields", "Description",
]

MEDIA_TYPES = {
    "csv": "text/csv",
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}

EXTENSIONS = {"csv": "csv", "excel": "xlsx", "pdf": "pdf"}

_THIN = Side(style="thin")
_HEADER_FONT = Font(bold=True, color="FFFFFF")
_HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
_BORDER = Border(left=_THIN, right=_THIN, top=_THIN, bottom=_THIN)


def _row(record: RateAuditRecord) -> List[Any]:
    return [
        record.id,
        record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        record.actor_name,
        AUDIT_ACTION_LABELS.get(record.action, record.action.value),
        ENTITY_TYPE_LABELS.get(record.entity_type, record.entity_type.value),
        record.entity_id if record.entity_id is not None else "",
        record.entity_name or "",
        ", ".join(record.changed_fields),
        record.change_description or "",
    ]


class AuditExportService:
    """Renders audit records into downloadable blobs."""

    def __init__(self, recorder: AuditRecorder, limit: int = 10000):
        self.recorder = recorder
        self.limit = limit

    def records(self, filters: AuditFilters) -> List[RateAuditRecord]:
        return self.recorder.query(filters, page=0, size=self.limit).content

    def export(self, fmt: str, filters: AuditFilters) -> Tuple[bytes, str, str]:
        """
        Returns:
            (content, media type, file name)
        """
        renderers = {"csv": self.to_csv, "excel": self.to_excel, "pdf": self.to_pdf}
        if fmt not in renderers:
            raise ValidationError(f"Unsupported export format: {fmt}")
        records = self.records(filters)
        content = renderers[fmt](records)
        filename = f"rate_audit_{datetime.now().strftime('%Y%m%d_%H%M%S')}.{EXTENSIONS[fmt]}"
        logger.info(f"Exported {len(records)} audit records as {fmt}")
        return content, MEDIA_TYPES[fmt], filename

    def to_csv(self, records: List[RateAuditRecord]) -> bytes:
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(EXPORT_HEADERS + ["Previous Value", "New Value"])
        for record in records:
            writer.writerow(_row(record) + [
                json.dumps(record.previous_value, default=str) if record.previous_value is not None else "",
                json.dumps(record.new_value, default=str) if record.new_value is not None else "",
            ])
        return output.getvalue().encode("utf-8")

    def to_excel(self, records: List[RateAuditRecord]) -> bytes:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Rate Audit"

        sheet.append(EXPORT_HEADERS)
        for cell in sheet[1]:
            cell.font = _HEADER_FONT
            cell.fill = _HEADER_FILL
            cell.alignment = Alignment(horizontal="center", vertical="center")
            cell.border = _BORDER
        for record in records:
            sheet.append(_row(record))

        for column_cells in sheet.columns:
            length = max(len(str(cell.value or "")) for cell in column_cells)
            sheet.column_dimensions[get_column_letter(column_cells[0].column)].width = min(length + 2, 50)

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    def to_pdf(self, records: List[RateAuditRecord]) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=landscape(A4), title="Rate Audit Log")
        styles = getSampleStyleSheet()
        story = [
            Paragraph("Rate Audit Log", styles["Title"]),
            Paragraph(f"Generated {datetime.now().strftime('%Y-%m-%d %H:%M')}, {len(records)} records",
                      styles["Normal"]),
            Spacer(1, 12),
        ]

        table = Table([EXPORT_HEADERS] + [[str(v) for v in _row(r)] for r in records], repeatRows=1)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#366092")),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 7),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ]))
        story.append(table)
        doc.build(story)
        return buffer.getvalue()
