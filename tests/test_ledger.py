from decimal import Decimal
from unittest import TestCase

from ledger import (
    ADMISSION_DISCHARGED,
    ADMISSION_OPEN,
    SERVICE_COMPLETED,
    SERVICE_PENDING,
    AdmissionClosedError,
    BillingRecord,
    EquipmentCharge,
    InvalidPaymentError,
    LedgerError,
    Service,
    add_equipment,
    add_service,
    amount_after_discount,
    apply_discharge,
    apply_discount,
    apply_payment,
    completed_services_amount,
    discount_amount,
    ledger_balance,
    mark_service_completed,
    pending_services_amount,
    record_from_document,
    record_to_document,
    summarize,
    total_equipment_amount,
    total_services_amount,
)


class FakeBeds:
    def __init__(self):
        self.calls = []

    def set_bed_status(self, room_type, bed_id, status):
        self.calls.append((room_type, bed_id, status))


def make_record(**overrides):
    values = dict(
        admission_id="7",
        patient_name="Asha Verma",
        room_type="general_ward",
        bed="B12",
        deposit=Decimal("1000"),
        services=(
            Service(name="X-Ray", amount=Decimal("500"), status=SERVICE_COMPLETED),
            Service(name="Dressing", amount=Decimal("300"), status=SERVICE_PENDING),
        ),
        equipment=(EquipmentCharge(category="General Consumables", name="IV cannulas", price=Decimal("200")),),
    )
    values.update(overrides)
    return BillingRecord(**values)


class LedgerTotalsTest(TestCase):
    def test_billing_scenario_totals(self):
        record = apply_discount(make_record(), 10)
        summary = summarize(record)

        self.assertEqual(summary.total_services_amount, Decimal("800"))
        self.assertEqual(summary.total_equipment_amount, Decimal("200"))
        self.assertEqual(summary.total_charges, Decimal("1000"))
        self.assertEqual(summary.discount_amount, Decimal("100"))
        self.assertEqual(summary.amount_after_discount, Decimal("900"))
        self.assertEqual(summary.completed_services_amount, Decimal("500"))
        self.assertEqual(summary.pending_services_amount, Decimal("300"))

    def test_completed_and_pending_partition_the_total(self):
        services = [
            Service(name="a", amount=Decimal("10.50"), status=SERVICE_COMPLETED),
            Service(name="b", amount=Decimal("0"), status=SERVICE_PENDING),
            Service(name="c", amount=Decimal("99.99"), status=SERVICE_PENDING),
            Service(name="d", amount=Decimal("1"), status=SERVICE_COMPLETED),
        ]
        for end in range(len(services) + 1):
            subset = services[:end]
            self.assertEqual(
                completed_services_amount(subset) + pending_services_amount(subset),
                total_services_amount(subset),
            )

    def test_empty_lists_sum_to_zero(self):
        self.assertEqual(total_services_amount([]), 0)
        self.assertEqual(total_equipment_amount([]), 0)

    def test_discount_helpers_are_unguarded(self):
        self.assertEqual(discount_amount(Decimal("1000"), Decimal("150")), Decimal("1500"))
        self.assertEqual(amount_after_discount(Decimal("1000"), Decimal("1500")), Decimal("-500"))

    def test_discount_is_overwritten_not_accumulated(self):
        record = apply_discount(apply_discount(make_record(), 10), 5)
        self.assertEqual(record.discount_percentage, Decimal("5"))
        self.assertEqual(summarize(record).discount_amount, Decimal("50"))

    def test_balance_nets_charges_against_deposit(self):
        record = apply_discount(make_record(), 10)
        self.assertEqual(ledger_balance(record), Decimal("-100"))
        record = apply_payment(record, 50, "cash")
        self.assertEqual(ledger_balance(record), Decimal("-150"))


class LedgerMutationTest(TestCase):
    def test_apply_payment_is_additive(self):
        record = make_record()
        amounts = [Decimal("100"), Decimal("250.50"), Decimal("49.50")]
        for amount in amounts:
            record = apply_payment(record, amount, "online")

        self.assertEqual(record.deposit, Decimal("1000") + sum(amounts))
        self.assertEqual(len(record.payments), len(amounts))
        self.assertEqual([p.amount for p in record.payments], amounts)

    def test_apply_payment_rejects_non_positive_amounts(self):
        record = make_record()
        with self.assertRaises(InvalidPaymentError):
            apply_payment(record, 0, "cash")
        with self.assertRaises(InvalidPaymentError):
            apply_payment(record, "-20", "card")

    def test_apply_payment_rejects_unknown_type(self):
        with self.assertRaises(InvalidPaymentError):
            apply_payment(make_record(), 100, "cheque")

    def test_mutations_leave_input_untouched(self):
        record = make_record()
        apply_payment(record, 100, "card")
        add_service(record, "ECG", 250)
        add_equipment(record, "Diagnostic Consumables", "Lancets", 20)
        mark_service_completed(record, 1)

        self.assertEqual(record.deposit, Decimal("1000"))
        self.assertEqual(len(record.services), 2)
        self.assertEqual(len(record.equipment), 1)
        self.assertEqual(record.services[1].status, SERVICE_PENDING)

    def test_add_service_appends_pending_service(self):
        record = add_service(make_record(), "ECG", "250")
        self.assertEqual(record.services[-1].name, "ECG")
        self.assertEqual(record.services[-1].amount, Decimal("250"))
        self.assertEqual(record.services[-1].status, SERVICE_PENDING)

    def test_mark_service_completed_is_idempotent(self):
        once = mark_service_completed(make_record(), 1)
        twice = mark_service_completed(once, 1)

        self.assertEqual(once, twice)
        self.assertEqual(once.services[1].status, SERVICE_COMPLETED)
        self.assertEqual(completed_services_amount(once.services), Decimal("800"))

    def test_mark_service_completed_ignores_bad_indices(self):
        record = make_record()
        self.assertIs(mark_service_completed(record, 5), record)
        self.assertIs(mark_service_completed(record, -1), record)
        self.assertIs(mark_service_completed(record, 0), record)


class DischargeTest(TestCase):
    def test_discharge_closes_admission_and_releases_bed(self):
        beds = FakeBeds()
        record = apply_discharge(make_record(), beds, timestamp="2026-10-19T10:00:00")

        self.assertEqual(record.state, ADMISSION_DISCHARGED)
        self.assertEqual(record.discharge_date, "2026-10-19T10:00:00")
        self.assertEqual(beds.calls, [("general_ward", "B12", "available")])

    def test_open_record_state(self):
        self.assertEqual(make_record().state, ADMISSION_OPEN)

    def test_discharge_requires_bed_information(self):
        beds = FakeBeds()
        with self.assertRaises(LedgerError):
            apply_discharge(make_record(bed=""), beds)
        self.assertEqual(beds.calls, [])

    def test_bed_released_only_after_save(self):
        beds = FakeBeds()
        saved = []
        record = apply_discharge(make_record(), beds, save=saved.append)

        self.assertEqual(saved, [record])
        self.assertEqual(len(beds.calls), 1)

    def test_failed_save_keeps_bed_occupied(self):
        beds = FakeBeds()

        def failing_save(record):
            raise OSError("workbook locked")

        with self.assertRaises(OSError):
            apply_discharge(make_record(), beds, save=failing_save)
        self.assertEqual(beds.calls, [])

    def test_discharged_record_rejects_mutations(self):
        record = apply_discharge(make_record(), FakeBeds())
        for mutate in (
            lambda: apply_payment(record, 100, "cash"),
            lambda: add_service(record, "ECG", 100),
            lambda: add_equipment(record, "General Consumables", "Tourniquets", 10),
            lambda: apply_discount(record, 5),
            lambda: mark_service_completed(record, 1),
            lambda: apply_discharge(record, FakeBeds()),
        ):
            with self.assertRaises(AdmissionClosedError):
                mutate()


class DocumentMappingTest(TestCase):
    def test_reads_stored_document(self):
        doc = {
            "name": "Ravi",
            "mobileNumber": "9876543210",
            "amount": 2000,
            "discountPercentage": "12.5",
            "roomType": "icu",
            "bed": "3",
            "services": [{"serviceName": "Oxygen", "amount": "400", "status": "completed", "createdAt": ""}],
            "payments": {
                "-Nabc": {"amount": 500, "paymentType": "cash", "date": "2026-10-18T09:00:00Z"},
            },
        }
        record = record_from_document("42", doc)

        self.assertEqual(record.admission_id, "42")
        self.assertEqual(record.deposit, Decimal("2000"))
        self.assertEqual(record.discount_percentage, Decimal("12.5"))
        self.assertEqual(record.services[0].status, SERVICE_COMPLETED)
        self.assertEqual(record.payments[0].amount, Decimal("500"))
        self.assertEqual(record.equipment, ())
        self.assertIsNone(record.discharge_date)

    def test_written_document_keeps_completed_value_as_total_paid(self):
        doc = record_to_document(make_record())
        self.assertEqual(doc["totalPaid"], "500")
        self.assertEqual(doc["amount"], "1000")
        self.assertEqual(doc["services"][1]["status"], SERVICE_PENDING)
