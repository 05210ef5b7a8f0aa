"""
PDF claim report.

Pure formatting over a stored claim and its questions; rendered with
reportlab's platypus layout.
"""

import io
import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..models.claim import Claim, ClaimQuestion, utcnow
from .badges import format_confidence, format_routing, format_severity

logger = logging.getLogger(__name__)

MARGIN = 0.75 * inch
SECTION_COLOR = colors.HexColor("#3B82F6")
HEADER_COLOR = colors.HexColor("#1E293B")


class _NumberedCanvas(canvas.Canvas):
    """Defers page output so every footer can show the total page count."""

    def __init__(self, *args, generated_on: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_pages: List[dict] = []
        self._generated_on = generated_on

    def showPage(self):
        self._saved_pages.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_pages)
        for state in self._saved_pages:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int):
        self.saveState()
        self.setFont("Helvetica", 8)
        self.setFillColor(colors.grey)
        self.drawString(
            MARGIN, 0.5 * inch,
            f"Generated on {self._generated_on} | Page {self._pageNumber} of {total}"
        )
        self.restoreState()


def _format_date(value: Any) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y")
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).strftime("%B %d, %Y")
    except ValueError:
        return str(value)


class ClaimReportBuilder:
    """Builds the platypus story for one claim."""

    def __init__(self):
        styles = getSampleStyleSheet()
        self.body = ParagraphStyle("ReportBody", parent=styles["BodyText"], fontSize=9, spaceAfter=4)
        self.small = ParagraphStyle("ReportSmall", parent=self.body, fontSize=8, leftIndent=12)
        self.label = ParagraphStyle("ReportLabel", parent=self.body, fontName="Helvetica-Bold")
        self.title = ParagraphStyle(
            "ReportTitle", parent=styles["Heading1"], fontSize=20, textColor=colors.white, spaceAfter=2
        )
        self.subtitle = ParagraphStyle("ReportSubtitle", parent=styles["Normal"], fontSize=12, textColor=colors.white)
        self.section = ParagraphStyle(
            "ReportSection", parent=styles["Heading2"], fontSize=11, textColor=colors.white
        )
        self.story: List[Any] = []

    def _text(self, text: Any, style: Optional[ParagraphStyle] = None):
        self.story.append(Paragraph(escape(str(text)), style or self.body))

    def _header(self, claim: Claim):
        table = Table(
            [[Paragraph("Claim Report", self.title)], [Paragraph(escape(f"Claim #{claim.claim_number}"), self.subtitle)]],
            colWidths=[letter[0] - 2 * MARGIN],
        )
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), HEADER_COLOR),
            ("LEFTPADDING", (0, 0), (-1, -1), 10),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ]))
        self.story.append(table)
        self.story.append(Spacer(1, 0.15 * inch))

    def _section(self, title: str):
        table = Table([[Paragraph(escape(title), self.section)]], colWidths=[letter[0] - 2 * MARGIN])
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), SECTION_COLOR),
            ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ]))
        self.story.append(Spacer(1, 0.1 * inch))
        self.story.append(table)
        self.story.append(Spacer(1, 0.05 * inch))

    def _fields(self, rows: Iterable[tuple]):
        data = [
            [Paragraph(escape(f"{label}:"), self.label), Paragraph(escape(str(value) if value not in (None, "") else "N/A"), self.body)]
            for label, value in rows
        ]
        if not data:
            return
        table = Table(data, colWidths=[1.8 * inch, letter[0] - 2 * MARGIN - 1.8 * inch])
        table.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("TOPPADDING", (0, 0), (-1, -1), 1),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 1),
        ]))
        self.story.append(table)

    def build(self, claim: Claim, questions: List[ClaimQuestion]) -> List[Any]:
        self._header(claim)
        self._fields([
            ("Status", claim.status.value.upper()),
            ("Severity", format_severity(claim.severity_level)),
            ("Routing Decision", format_routing(claim.routing_decision)),
            ("Confidence Score", format_confidence(claim.confidence_score)),
            ("Submitted", _format_date(claim.created_at)),
        ])

        self._section("INCIDENT DETAILS")
        self._fields([
            ("Incident Type", claim.incident.incident_type.value.replace("_", " ")),
            ("Incident Date", _format_date(claim.incident.incident_date)),
            ("Location", claim.incident.location),
            ("Description", claim.incident.description),
        ])

        vehicle = claim.vehicle
        self._section("VEHICLE INFORMATION")
        self._fields([
            ("Make", vehicle.make),
            ("Model", vehicle.model),
            ("Year", vehicle.year),
            ("VIN", vehicle.vin),
            ("License Plate", vehicle.license_plate),
            ("Ownership Status", vehicle.ownership_status),
            ("Odometer", f"{vehicle.odometer:,} mi" if vehicle.odometer else None),
            ("Purchase Date", _format_date(vehicle.purchase_date)),
        ])

        self._section("POLICY INFORMATION")
        self._fields([("Policy Number", claim.policy_number), ("Policy Status", claim.policy_status)])

        if claim.ai_assessment:
            self._assessment(claim.ai_assessment)

        answered = [q for q in questions if q.is_answered]
        if answered:
            self._section("FOLLOW-UP QUESTIONS & ANSWERS")
            for i, qa in enumerate(answered, start=1):
                self._text(f"Q{i}: {qa.question}", self.label)
                self._text(f"A: {qa.answer}")
        return self.story

    def _assessment(self, assessment: dict):
        self._section("AI ASSESSMENT")
        damage = assessment.get("damage_assessment") or {}
        if damage:
            rows = [
                ("Estimated Cost", damage.get("estimated_cost_range")),
                ("Repair Complexity", damage.get("repair_complexity")),
                ("Drivable", "Yes" if damage.get("is_drivable") else "No"),
                ("Total Loss Risk", damage.get("total_loss_risk")),
            ]
            if damage.get("damage_types"):
                rows.append(("Damage Types", ", ".join(map(str, damage["damage_types"]))))
            if damage.get("affected_areas"):
                rows.append(("Affected Areas", ", ".join(map(str, damage["affected_areas"]))))
            self._fields(rows)

        recommendations = assessment.get("recommendations") or {}
        if recommendations:
            rows = [("Estimated Timeline", recommendations.get("estimated_timeline"))]
            if recommendations.get("immediate_actions"):
                rows.append(("Immediate Actions", "; ".join(map(str, recommendations["immediate_actions"]))))
            self._fields(rows)

        if assessment.get("reasoning"):
            self._text("Assessment Reasoning:", self.label)
            self._text(assessment["reasoning"])

        fraud = assessment.get("fraud_indicators") or {}
        if fraud.get("has_red_flags"):
            self._section("FRAUD FLAGS")
            self._fields([("Status", fraud.get("verification_status"))])
            for concern in fraud.get("concerns") or []:
                self._text(f"• {concern}")

        qa = assessment.get("qa_summary") or {}
        if qa:
            self._section("ASSESSMENT SUMMARY")
            self._fields([("Credibility Score", format_confidence(qa.get("credibility_score")))])
            if qa.get("overall_impression"):
                self._text("Overall Impression:", self.label)
                self._text(qa["overall_impression"])
            takeaways = qa.get("key_takeaways") or []
            if takeaways:
                self._text("Key Takeaways:", self.label)
                for takeaway in takeaways:
                    if isinstance(takeaway, dict):
                        category = str(takeaway.get("category") or "").replace("_", " ").upper()
                        self._text(f"[{category}] {takeaway.get('insight', '')}")
                    else:
                        self._text(str(takeaway))
            gaps = qa.get("gaps_and_concerns") or []
            if gaps:
                self._text("Gaps & Concerns:", self.label)
                for gap in gaps:
                    if not isinstance(gap, dict):
                        self._text(f"• {gap}")
                        continue
                    self._text(f"• [{str(gap.get('severity') or '').upper()}] {gap.get('issue', '')}")
                    if gap.get("recommendation"):
                        self._text(f"Recommendation: {gap['recommendation']}", self.small)


def render_claim_report(claim: Claim, questions: List[ClaimQuestion], generated_on: Optional[datetime] = None) -> bytes:
    """
    Render a claim as PDF.

    Returns:
        PDF document bytes
    """
    buffer = io.BytesIO()
    stamp = (generated_on or utcnow()).strftime("%Y-%m-%d %H:%M UTC")
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=f"Claim Report {claim.claim_number}",
    )
    story = ClaimReportBuilder().build(claim, questions)
    doc.build(story, canvasmaker=lambda *args, **kwargs: _NumberedCanvas(*args, generated_on=stamp, **kwargs))
    logger.info(f"Rendered PDF report for claim {claim.claim_number}")
    return buffer.getvalue()
