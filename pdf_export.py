"""
PDF export

Printable documents for resident details, medicine details and weekly BHW
reports, built with ReportLab. Every document has the same layout: a title
block, sections of label/value rows, and a footer with the print date and
page number.
"""

import logging
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

import config
from helpers import calculate_bmi, construct_full_name, get_age_display, get_week_end, to_date

logger = logging.getLogger(__name__)

Row = Tuple[str, Any]


class HealthRecordPDF:
    """Renders health records to A4 PDF bytes."""

    HEADER_BG = colors.Color(0.85, 0.89, 0.95)
    DARK_BLUE = colors.Color(0.03, 0.1, 0.23)

    def __init__(self, printed_at: Optional[datetime] = None):
        self.printed_at = printed_at or datetime.now()
        self.styles = getSampleStyleSheet()
        self._setup_styles()

    def _setup_styles(self):
        self.styles.add(ParagraphStyle(
            name="DocTitle",
            parent=self.styles["Heading1"],
            fontSize=18,
            alignment=TA_CENTER,
            textColor=self.DARK_BLUE,
            spaceAfter=4,
        ))
        self.styles.add(ParagraphStyle(
            name="DocSubtitle",
            parent=self.styles["Normal"],
            fontSize=10,
            alignment=TA_CENTER,
            spaceAfter=10,
        ))
        self.styles.add(ParagraphStyle(
            name="SectionHeading",
            parent=self.styles["Heading2"],
            fontSize=12,
            fontName="Helvetica-Bold",
            spaceBefore=12,
            spaceAfter=6,
        ))
        self.styles.add(ParagraphStyle(
            name="Cell",
            parent=self.styles["Normal"],
            fontSize=9,
        ))

    def _text(self, value: Any) -> str:
        if value is None or value == "" or value == []:
            return "N/A"
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value)
        if isinstance(value, datetime):
            return value.strftime("%B %d, %Y %I:%M %p")
        return str(value)

    def _title(self, title: str, subtitle: str) -> list:
        return [
            Paragraph(f"<b>{escape(title)}</b>", self.styles["DocTitle"]),
            Paragraph(escape(subtitle), self.styles["DocSubtitle"]),
            HRFlowable(width="100%", thickness=1, color=colors.black, spaceAfter=6),
        ]

    def _section(self, title: str, rows: List[Row]) -> list:
        data = [
            [Paragraph(f"<b>{escape(label)}</b>", self.styles["Cell"]),
             Paragraph(escape(self._text(value)), self.styles["Cell"])]
            for label, value in rows
        ]
        table = Table(data, colWidths=[5 * cm, 12 * cm])
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (0, -1), self.HEADER_BG),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ]))
        return [Paragraph(escape(title), self.styles["SectionHeading"]), table]

    def _numbered_list(self, title: str, items: List[str]) -> list:
        data = [[f"{i}.", Paragraph(escape(item), self.styles["Cell"])] for i, item in enumerate(items, 1)]
        if not data:
            data = [["", Paragraph("<i>None</i>", self.styles["Cell"])]]
        table = Table(data, colWidths=[1 * cm, 16 * cm])
        table.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ]))
        heading = f"{title} ({len(items)})"
        return [Paragraph(escape(heading), self.styles["SectionHeading"]), table]

    def _footer(self, canvas, doc):
        canvas.saveState()
        canvas.setFont("Helvetica", 8)
        canvas.drawString(2 * cm, 1.2 * cm, f"{config.APP_NAME} | Printed {self._text(self.printed_at)}")
        canvas.drawRightString(A4[0] - 2 * cm, 1.2 * cm, f"Page {doc.page}")
        canvas.restoreState()

    def _build(self, elements: list) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=2 * cm,
            rightMargin=2 * cm,
            topMargin=2 * cm,
            bottomMargin=2 * cm,
        )
        doc.build(elements, onFirstPage=self._footer, onLaterPages=self._footer)
        return buffer.getvalue()

    def resident(self, resident: Dict[str, Any], household: Optional[Dict[str, Any]] = None) -> bytes:
        full_name = construct_full_name(resident.get("first_name"), resident.get("middle_name"),
                                        resident.get("last_name"), resident.get("suffix"))
        bmi = calculate_bmi(resident.get("height"), resident.get("weight"))
        height = resident.get("height")
        weight = resident.get("weight")

        elements = self._title("Resident Information", full_name or "Resident")
        elements += self._section("Household", [
            ("Family Number", resident.get("family_no")),
            ("Household Number", resident.get("household_id")),
            ("House Number", resident.get("house_no")),
            ("Household Head", (household or {}).get("head_of_household")),
        ])
        elements += self._section("Personal Information", [
            ("Full Name", full_name),
            ("Birth Date", resident.get("birth_date")),
            ("Age", get_age_display(resident.get("birth_date"))),
            ("Birth Place", resident.get("birth_place")),
            ("Gender", resident.get("gender")),
            ("Marginalized Group", resident.get("marginalized_group")),
            ("Spouse Name", resident.get("spouse_name")),
        ])
        elements += self._section("Contact Information", [
            ("Email", resident.get("email")),
            ("Contact Number", resident.get("contact_number")),
            ("Complete Address", resident.get("address")),
        ])
        elements += self._section("Health Information", [
            ("Height", f"{height} cm" if height else None),
            ("Weight", f"{weight} kg" if weight else None),
            ("BMI", f"{bmi.bmi} ({bmi.category})" if bmi.bmi is not None else bmi.category),
            ("Blood Type", resident.get("blood_type")),
        ])
        elements += self._section("System Information", [
            ("Created At", resident.get("created_at")),
            ("Resident Database ID", resident.get("id")),
        ])
        return self._build(elements)

    def medicine(self, medicine: Dict[str, Any]) -> bytes:
        elements = self._title("Medicine Information", f"Generated on {self.printed_at:%B %d, %Y}")
        elements += self._section("Basic Information", [
            ("Medicine Code", medicine.get("med_code")),
            ("Medicine Name", medicine.get("name")),
            ("Description", medicine.get("description")),
        ])
        elements += self._section("Medicine Details", [
            ("Medicine Type", medicine.get("med_type")),
            ("Category", medicine.get("category")),
            ("Supplier", medicine.get("supplier")),
            ("Quantity", medicine.get("quantity")),
            ("Status", medicine.get("status")),
            ("Expiry Date", medicine.get("exp_date")),
        ])
        elements += self._section("System Information", [
            ("Created At", medicine.get("created_at")),
            ("Last Updated", medicine.get("updated_at")),
        ])
        return self._build(elements)

    def weekly_report(self, report: Dict[str, Any], bhw: Optional[Dict[str, Any]] = None) -> bytes:
        bhw = bhw or {}
        week_start = to_date(report.get("week_start"))
        period = "N/A"
        if week_start:
            period = f"{week_start:%B %d} - {get_week_end(week_start):%B %d, %Y}"

        elements = self._title("Weekly Report", "Barangay Health Worker")
        elements += self._section("BHW Information", [
            ("Name", report.get("bhw_name") or bhw.get("name")),
            ("Contact Number", bhw.get("contact_number")),
            ("Address", bhw.get("address")),
            ("Email", bhw.get("email")),
        ])
        elements += self._section("Report Period", [("Week", period)])
        elements += self._numbered_list("Tasks Completed", report.get("task_list") or [])
        if report.get("remarks"):
            elements += self._section("Remarks", [("Remarks", report["remarks"])])
        elements.append(Spacer(1, 12))
        elements += self._section("Record", [
            ("Report Created", report.get("created_at")),
            ("Last Updated", report.get("updated_at")),
        ])
        logger.debug("Rendering weekly report %s", report.get("id"))
        return self._build(elements)
