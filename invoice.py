from __future__ import annotations

import logging
from datetime import date
from io import BytesIO
from typing import Any, Dict, List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import KeepInFrame, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ledger import BillingRecord, LedgerSummary, summarize
from metrics import DailyMetrics, parse_date
from paginator import Block, Page, paginate, usable_height

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
SIDE_MARGIN = 36
# SimpleDocTemplate frames pad 6pt on every side
FRAME_PADDING = 12

# Invoice body: a 730pt content box at the bottom of the letterhead, 20pt bottom padding
INVOICE_CONTENT_HEIGHT = 730
INVOICE_BOTTOM_PADDING = 20
INVOICE_TOP_MARGIN = PAGE_HEIGHT - INVOICE_CONTENT_HEIGHT
INVOICE_USABLE_HEIGHT = usable_height(INVOICE_CONTENT_HEIGHT, 0, INVOICE_BOTTOM_PADDING)

INVOICE_HEADER_HEIGHT = 100
INVOICE_TABLE_HEADER_HEIGHT = 50
INVOICE_ROW_HEIGHT = 50
INVOICE_SUMMARY_HEIGHT = 200
INVOICE_FOOTER_HEIGHT = 100

REPORT_TOP_OFFSET = 90
REPORT_BOTTOM_OFFSET = 70
REPORT_USABLE_HEIGHT = usable_height(PAGE_HEIGHT, REPORT_TOP_OFFSET, REPORT_BOTTOM_OFFSET)

REPORT_HEADER_HEIGHT = 40
REPORT_METRICS_HEIGHT = 120
REPORT_TABLE_HEADER_HEIGHT = 24
REPORT_ROW_HEIGHT = 12
REPORT_FOOTER_HEIGHT = 30

HEADER_COLOR = colors.HexColor("#0b3d60")

styles = getSampleStyleSheet()
TITLE_STYLE = ParagraphStyle("InvoiceTitle", parent=styles["Heading2"], fontSize=12, textColor=HEADER_COLOR)
SECTION_STYLE = ParagraphStyle("Section", parent=styles["Heading3"], fontSize=11, spaceAfter=4)
BODY_STYLE = ParagraphStyle("Body", parent=styles["Normal"], fontSize=8, leading=10)
FOOTER_STYLE = ParagraphStyle("Footer", parent=styles["Normal"], fontSize=7, textColor=colors.grey, alignment=1)


def format_currency(amount) -> str:
    return f"Rs. {amount:,.2f}"


def format_day(value: Any) -> str:
    parsed = parse_date(value)
    return parsed.strftime("%d %b %Y") if parsed else "N/A"


def _grid_table(rows: List[List[str]], col_widths: List[float], font_size: int = 8) -> Table:
    table = Table(rows, colWidths=col_widths, repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOR),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), font_size),
                ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
            ]
        )
    )
    return table


def invoice_blocks(record: BillingRecord, bill_date: date, summary: Optional[LedgerSummary] = None) -> List[Block]:
    summary = summary or summarize(record)
    blocks: List[Block] = []

    details = [
        ["Patient Name:", record.patient_name or "N/A", "Bill Date:", bill_date.strftime("%d %b %Y")],
        ["Mobile:", record.mobile_number or "N/A", "Admission Date:", format_day(record.admitted_at)],
    ]
    if record.discharge_date:
        details.append(["Room / Bed:", f"{record.room_type} / {record.bed}", "Discharge Date:", format_day(record.discharge_date)])
    header_table = Table(details, colWidths=[80, 170, 80, 170])
    header_table.setStyle(TableStyle([("FONTSIZE", (0, 0), (-1, -1), 8), ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                                      ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold")]))
    blocks.append(Block([Paragraph("PATIENT INVOICE", TITLE_STYLE), header_table], INVOICE_HEADER_HEIGHT))

    service_rows = [["Service", "Date", "Status", "Amount"]]
    service_rows += [[s.name, format_day(s.created_at), s.status.title(), format_currency(s.amount)] for s in record.services]
    blocks.append(
        Block(
            [Paragraph("Itemized Services", SECTION_STYLE), _grid_table(service_rows, [220, 90, 70, 110])],
            INVOICE_TABLE_HEADER_HEIGHT + INVOICE_ROW_HEIGHT * len(record.services),
        )
    )

    equipment_rows = [["Category", "Equipment", "Price"]]
    equipment_rows += [[e.category, e.name, format_currency(e.price)] for e in record.equipment]
    blocks.append(
        Block(
            [Paragraph("Itemized Equipment", SECTION_STYLE), _grid_table(equipment_rows, [160, 220, 110])],
            INVOICE_TABLE_HEADER_HEIGHT + INVOICE_ROW_HEIGHT * len(record.equipment),
        )
    )

    summary_rows = [
        ["Total Services Charges:", format_currency(summary.total_services_amount)],
        ["Total Equipment Charges:", format_currency(summary.total_equipment_amount)],
        [f"Discount ({summary.discount_percentage.normalize():f}%):", f"- {format_currency(summary.discount_amount)}"],
        ["Amount After Discount:", format_currency(summary.amount_after_discount)],
        ["Deposit Amount:", format_currency(summary.deposit)],
        ["Completed Services:", format_currency(summary.completed_services_amount)],
        ["Balance Due:", format_currency(summary.balance)],
    ]
    summary_table = Table(summary_rows, colWidths=[180, 120], hAlign="RIGHT")
    summary_table.setStyle(
        TableStyle(
            [
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("TEXTCOLOR", (1, 2), (1, 2), colors.red),
                ("LINEABOVE", (0, -1), (-1, -1), 1, colors.black),
            ]
        )
    )
    blocks.append(Block([Spacer(1, 6), summary_table], INVOICE_SUMMARY_HEIGHT))

    blocks.append(
        Block(
            [Spacer(1, 20), Paragraph("This is a computer-generated invoice and does not require a signature.", FOOTER_STYLE)],
            INVOICE_FOOTER_HEIGHT,
        )
    )
    return blocks


def invoice_pages(record: BillingRecord, bill_date: date) -> List[Page]:
    return paginate(invoice_blocks(record, bill_date), INVOICE_USABLE_HEIGHT)


def invoice_filename(record: BillingRecord) -> str:
    prefix = "Final_Invoice" if record.is_discharged else "Provisional_Invoice"
    name = "_".join((record.patient_name or "patient").split())
    return f"{prefix}_{name}_{record.admission_id}.pdf"


def report_blocks(
    metrics: DailyMetrics, beds: List[Dict[str, str]], mortality: List[Dict[str, Any]], day: date
) -> List[Block]:
    blocks = [
        Block(
            [
                Paragraph("Daily Performance Report", ParagraphStyle("ReportTitle", parent=TITLE_STYLE, alignment=1)),
                Paragraph(f"Date: {day.strftime('%d %b %Y')}", FOOTER_STYLE),
            ],
            REPORT_HEADER_HEIGHT,
        )
    ]

    labelled = metrics.labelled()
    metric_rows = []
    for i in range(0, len(labelled), 2):
        pair = labelled[i:i + 2]
        row: List[str] = []
        for label, value in pair:
            row += [label, str(value)]
        if len(pair) == 1:
            row += ["", ""]
        metric_rows.append(row)
    metrics_table = Table(metric_rows, colWidths=[150, 80, 150, 80])
    metrics_table.setStyle(TableStyle([("FONTSIZE", (0, 0), (-1, -1), 8), ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
                                       ("ALIGN", (1, 0), (1, -1), "CENTER"), ("ALIGN", (3, 0), (3, -1), "CENTER")]))
    blocks.append(Block([Paragraph("Today's Metrics", SECTION_STYLE), metrics_table], REPORT_METRICS_HEIGHT))

    bed_rows = [["Ward", "Bed", "Type", "Status"]]
    bed_rows += [[b["ward"], b["bed_number"], b["type"], b["status"].title()] for b in beds]
    blocks.append(
        Block(
            [Paragraph("Detailed Bed Status", SECTION_STYLE), _grid_table(bed_rows, [150, 100, 120, 90], font_size=7)],
            REPORT_TABLE_HEADER_HEIGHT + REPORT_ROW_HEIGHT * len(beds),
        )
    )

    mortality_rows = [["Name", "Age", "Admission", "Date of Death", "Findings"]]
    mortality_rows += [
        [
            str(m.get("name", "")),
            str(m.get("age", "")),
            format_day(m.get("admissionDate")),
            format_day(m.get("dateOfDeath")),
            str(m.get("medicalFindings", "")),
        ]
        for m in mortality
    ]
    blocks.append(
        Block(
            [Paragraph("Mortality Reports", SECTION_STYLE), _grid_table(mortality_rows, [110, 40, 80, 80, 150], font_size=7)],
            REPORT_TABLE_HEADER_HEIGHT + REPORT_ROW_HEIGHT * len(mortality),
        )
    )

    blocks.append(
        Block(
            [Paragraph("This is a computer-generated report and does not require a signature.", FOOTER_STYLE)],
            REPORT_FOOTER_HEIGHT,
        )
    )
    return blocks


def report_pages(metrics: DailyMetrics, beds: List[Dict[str, str]], mortality: List[Dict[str, Any]], day: date) -> List[Page]:
    return paginate(report_blocks(metrics, beds, mortality, day), REPORT_USABLE_HEIGHT)


def render_pages(pages: List[Page], top_margin: float, bottom_margin: float, title: str, hospital_name: str) -> bytes:
    """Render one PDF page per paginator page on A4 with the hospital letterhead.

    Content is shrunk to fit when the height estimates were too small, so the
    page count always matches the pagination.
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        topMargin=top_margin,
        bottomMargin=bottom_margin,
        leftMargin=SIDE_MARGIN,
        rightMargin=SIDE_MARGIN,
        title=title,
    )
    frame_width = doc.width - FRAME_PADDING
    frame_height = doc.height - FRAME_PADDING

    story = []
    for index, page in enumerate(pages):
        if index:
            story.append(PageBreak())
        flowables = [flowable for content in page.contents for flowable in content]
        story.append(KeepInFrame(frame_width, frame_height, flowables, mode="shrink"))

    def _letterhead(canvas, document):
        canvas.saveState()
        canvas.setFillColor(HEADER_COLOR)
        canvas.setFont("Helvetica-Bold", 14)
        canvas.drawCentredString(PAGE_WIDTH / 2, PAGE_HEIGHT - 40, hospital_name)
        canvas.setFont("Helvetica", 7)
        canvas.setFillColor(colors.grey)
        canvas.drawRightString(PAGE_WIDTH - SIDE_MARGIN, 14, f"Page {document.page}")
        canvas.restoreState()

    doc.build(story, onFirstPage=_letterhead, onLaterPages=_letterhead)
    logger.info("Rendered %s (%d page(s))", title, len(pages))
    return buffer.getvalue()


def render_invoice(record: BillingRecord, hospital_name: str, bill_date: Optional[date] = None) -> bytes:
    pages = invoice_pages(record, bill_date or date.today())
    return render_pages(pages, INVOICE_TOP_MARGIN, INVOICE_BOTTOM_PADDING, invoice_filename(record), hospital_name)


def render_daily_report(
    metrics: DailyMetrics, beds: List[Dict[str, str]], mortality: List[Dict[str, Any]], day: date, hospital_name: str
) -> bytes:
    pages = report_pages(metrics, beds, mortality, day)
    return render_pages(pages, REPORT_TOP_OFFSET, REPORT_BOTTOM_OFFSET, f"DPR_{day.isoformat()}", hospital_name)
