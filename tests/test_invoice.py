from datetime import date
from dataclasses import replace
from decimal import Decimal
from unittest import TestCase

from invoice import (
    INVOICE_USABLE_HEIGHT,
    REPORT_USABLE_HEIGHT,
    format_currency,
    invoice_blocks,
    invoice_filename,
    invoice_pages,
    render_daily_report,
    render_invoice,
    report_pages,
)
from ledger import BillingRecord, EquipmentCharge, Service, add_service, apply_discount
from metrics import DailyMetrics

BILL_DATE = date(2026, 10, 19)


def make_record(services=2, discharged=False):
    record = BillingRecord(
        admission_id="12",
        patient_name="Asha Verma",
        mobile_number="9876543210",
        room_type="icu",
        bed="3",
        admitted_at="2026-10-15T09:00:00",
        deposit=Decimal("5000"),
        equipment=(EquipmentCharge(category="General Consumables", name="IV cannulas", price=Decimal("200")),),
        discharge_date="2026-10-19T11:00:00" if discharged else None,
    )
    for i in range(services):
        record = replace(record, services=record.services + (Service(f"Service {i}", Decimal("100")),))
    return record


class InvoicePaginationTest(TestCase):
    def test_block_height_estimates(self):
        heights = [block.height for block in invoice_blocks(make_record(services=2), BILL_DATE)]
        self.assertEqual(heights, [100, 150, 100, 200, 100])

    def test_short_invoice_fits_one_page(self):
        pages = invoice_pages(make_record(services=2), BILL_DATE)
        self.assertEqual(len(pages), 1)
        self.assertLessEqual(pages[0].height, INVOICE_USABLE_HEIGHT)

    def test_long_invoice_moves_summary_to_next_page(self):
        pages = invoice_pages(make_record(services=9), BILL_DATE)
        self.assertEqual([len(page.blocks) for page in pages], [3, 2])

    def test_very_long_service_list_overflows_alone(self):
        pages = invoice_pages(make_record(services=30), BILL_DATE)
        self.assertEqual(len(pages[1].blocks), 1)
        self.assertTrue(pages[1].overflows(INVOICE_USABLE_HEIGHT))

    def test_filename_reflects_discharge(self):
        self.assertEqual(invoice_filename(make_record()), "Provisional_Invoice_Asha_Verma_12.pdf")
        self.assertEqual(invoice_filename(make_record(discharged=True)), "Final_Invoice_Asha_Verma_12.pdf")

    def test_format_currency(self):
        self.assertEqual(format_currency(Decimal("123456.5")), "Rs. 123,456.50")


class RenderTest(TestCase):
    def test_render_invoice_produces_pdf(self):
        record = apply_discount(add_service(make_record(services=12), "ECG", "250"), "7.5")
        pdf = render_invoice(record, "City Care Hospital", BILL_DATE)
        self.assertTrue(pdf.startswith(b"%PDF"))

    def test_daily_report(self):
        beds = [{"ward": "icu", "bed_key": str(i), "bed_number": str(i), "status": "occupied", "type": ""} for i in range(40)]
        metrics = DailyMetrics(total_beds=40, beds_occupied=40)

        pages = report_pages(metrics, beds, [], BILL_DATE)
        self.assertEqual(len(pages), 2)
        for page in pages:
            self.assertLessEqual(page.height, REPORT_USABLE_HEIGHT)

        pdf = render_daily_report(metrics, beds, [], BILL_DATE, "City Care Hospital")
        self.assertTrue(pdf.startswith(b"%PDF"))
