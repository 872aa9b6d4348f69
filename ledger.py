from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from records import BED_AVAILABLE

logger = logging.getLogger(__name__)

SERVICE_PENDING = "pending"
SERVICE_COMPLETED = "completed"
SERVICE_STATUSES = (SERVICE_PENDING, SERVICE_COMPLETED)

PAYMENT_TYPES = ("cash", "online", "card")

ADMISSION_OPEN = "open"
ADMISSION_DISCHARGED = "discharged"

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class LedgerError(ValueError):
    pass


class InvalidPaymentError(LedgerError):
    pass


class AdmissionClosedError(LedgerError):
    pass


def to_amount(value: Any) -> Decimal:
    """Coerce a stored or submitted value into a Decimal, blank means zero."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise LedgerError(f"Invalid amount: {value!r}") from exc


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass(frozen=True)
class Service:
    name: str
    amount: Decimal
    status: str = SERVICE_PENDING
    created_at: str = ""

    @property
    def is_completed(self) -> bool:
        return self.status == SERVICE_COMPLETED


@dataclass(frozen=True)
class EquipmentCharge:
    category: str
    name: str
    price: Decimal
    created_at: str = ""


@dataclass(frozen=True)
class Payment:
    amount: Decimal
    payment_type: str
    date: str = ""


@dataclass(frozen=True)
class BillingRecord:
    admission_id: str
    patient_name: str = ""
    mobile_number: str = ""
    room_type: str = ""
    bed: str = ""
    admitted_at: str = ""
    deposit: Decimal = ZERO
    discount_percentage: Decimal = ZERO
    services: Tuple[Service, ...] = field(default_factory=tuple)
    equipment: Tuple[EquipmentCharge, ...] = field(default_factory=tuple)
    payments: Tuple[Payment, ...] = field(default_factory=tuple)
    discharge_date: Optional[str] = None

    @property
    def state(self) -> str:
        return ADMISSION_DISCHARGED if self.discharge_date else ADMISSION_OPEN

    @property
    def is_discharged(self) -> bool:
        return self.state == ADMISSION_DISCHARGED


@dataclass(frozen=True)
class LedgerSummary:
    total_services_amount: Decimal
    completed_services_amount: Decimal
    pending_services_amount: Decimal
    total_equipment_amount: Decimal
    total_charges: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    amount_after_discount: Decimal
    deposit: Decimal
    total_payments: Decimal
    balance: Decimal

    def as_dict(self) -> Dict[str, str]:
        return {name: str(value) for name, value in asdict(self).items()}


def total_services_amount(services: Iterable[Service]) -> Decimal:
    return sum((s.amount for s in services), ZERO)


def completed_services_amount(services: Iterable[Service]) -> Decimal:
    return sum((s.amount for s in services if s.status == SERVICE_COMPLETED), ZERO)


def pending_services_amount(services: Iterable[Service]) -> Decimal:
    return sum((s.amount for s in services if s.status == SERVICE_PENDING), ZERO)


def total_equipment_amount(equipment: Iterable[EquipmentCharge]) -> Decimal:
    return sum((e.price for e in equipment), ZERO)


def total_payments_amount(payments: Iterable[Payment]) -> Decimal:
    return sum((p.amount for p in payments), ZERO)


def discount_amount(total: Decimal, percentage: Decimal) -> Decimal:
    """Percentage is expected in [0, 100]; the form layer enforces that."""
    return to_amount(total) * to_amount(percentage) / HUNDRED


def amount_after_discount(total: Decimal, discount: Decimal) -> Decimal:
    return to_amount(total) - to_amount(discount)


def ledger_balance(record: BillingRecord) -> Decimal:
    """Amount still owed for the admission.

    Charges after discount minus everything received so far. The deposit
    already includes every recorded payment, since ``apply_payment`` adds
    each payment to it, so payments are not subtracted a second time.
    """
    charges = total_services_amount(record.services) + total_equipment_amount(record.equipment)
    discount = discount_amount(charges, record.discount_percentage)
    return amount_after_discount(charges, discount) - record.deposit


def summarize(record: BillingRecord) -> LedgerSummary:
    services_total = total_services_amount(record.services)
    equipment_total = total_equipment_amount(record.equipment)
    charges = services_total + equipment_total
    discount = discount_amount(charges, record.discount_percentage)
    return LedgerSummary(
        total_services_amount=services_total,
        completed_services_amount=completed_services_amount(record.services),
        pending_services_amount=pending_services_amount(record.services),
        total_equipment_amount=equipment_total,
        total_charges=charges,
        discount_percentage=record.discount_percentage,
        discount_amount=discount,
        amount_after_discount=amount_after_discount(charges, discount),
        deposit=record.deposit,
        total_payments=total_payments_amount(record.payments),
        balance=ledger_balance(record),
    )


def _ensure_open(record: BillingRecord, action: str):
    if record.is_discharged:
        logger.warning("Rejected %s on discharged admission %s", action, record.admission_id)
        raise AdmissionClosedError(
            f"Admission {record.admission_id} was discharged on {record.discharge_date}; cannot {action}."
        )


def add_service(record: BillingRecord, name: str, amount: Any, created_at: Optional[str] = None) -> BillingRecord:
    _ensure_open(record, "add a service")
    service = Service(name=name, amount=to_amount(amount), status=SERVICE_PENDING, created_at=created_at or _now())
    return replace(record, services=record.services + (service,))


def add_equipment(
    record: BillingRecord, category: str, name: str, price: Any, created_at: Optional[str] = None
) -> BillingRecord:
    _ensure_open(record, "add equipment")
    charge = EquipmentCharge(category=category, name=name, price=to_amount(price), created_at=created_at or _now())
    return replace(record, equipment=record.equipment + (charge,))


def apply_payment(record: BillingRecord, amount: Any, payment_type: str, date: Optional[str] = None) -> BillingRecord:
    _ensure_open(record, "record a payment")
    value = to_amount(amount)
    if value <= ZERO:
        raise InvalidPaymentError("Payment amount must be positive.")
    if payment_type not in PAYMENT_TYPES:
        raise InvalidPaymentError(f"Unknown payment type: {payment_type!r}")
    payment = Payment(amount=value, payment_type=payment_type, date=date or _now())
    return replace(record, payments=record.payments + (payment,), deposit=record.deposit + value)


def apply_discount(record: BillingRecord, percentage: Any) -> BillingRecord:
    _ensure_open(record, "apply a discount")
    return replace(record, discount_percentage=to_amount(percentage))


def mark_service_completed(record: BillingRecord, index: int) -> BillingRecord:
    _ensure_open(record, "update a service")
    if index < 0 or index >= len(record.services):
        return record
    service = record.services[index]
    if service.is_completed:
        return record
    services: List[Service] = list(record.services)
    services[index] = replace(service, status=SERVICE_COMPLETED)
    return replace(record, services=tuple(services))


def apply_discharge(
    record: BillingRecord,
    beds,
    room_type: Optional[str] = None,
    bed: Optional[str] = None,
    timestamp: Optional[str] = None,
    save: Optional[Callable[[BillingRecord], Any]] = None,
) -> BillingRecord:
    """Close the admission and release its bed in the bed inventory.

    When ``save`` is given the discharged record is persisted through it
    first; the bed is only released once that succeeds.
    """
    _ensure_open(record, "discharge")
    room_type = room_type or record.room_type
    bed = bed or record.bed
    if not room_type or not bed:
        raise LedgerError("Bed or Room Type information missing. Cannot discharge.")
    discharged = replace(record, room_type=room_type, bed=bed, discharge_date=timestamp or _now())
    if save is not None:
        save(discharged)
    beds.set_bed_status(room_type, bed, BED_AVAILABLE)
    logger.info("Admission %s discharged, bed %s/%s released", record.admission_id, room_type, bed)
    return discharged


def _service_from_document(doc: Dict[str, Any]) -> Service:
    status = doc.get("status") or SERVICE_PENDING
    if status not in SERVICE_STATUSES:
        status = SERVICE_PENDING
    return Service(
        name=doc.get("serviceName") or doc.get("name") or "",
        amount=to_amount(doc.get("amount")),
        status=status,
        created_at=doc.get("createdAt") or "",
    )


def _items(value: Any) -> List[Dict[str, Any]]:
    # the store keeps pushed children as {key: child} maps and plain lists alike
    if not value:
        return []
    if isinstance(value, dict):
        return [item for item in value.values() if isinstance(item, dict)]
    return [item for item in value if isinstance(item, dict)]


def record_from_document(key: str, doc: Dict[str, Any]) -> BillingRecord:
    return BillingRecord(
        admission_id=str(key),
        patient_name=doc.get("name") or "",
        mobile_number=doc.get("mobileNumber") or "",
        room_type=doc.get("roomType") or "",
        bed=doc.get("bed") or "",
        admitted_at=doc.get("date") or doc.get("createdAt") or "",
        deposit=to_amount(doc.get("amount")),
        discount_percentage=to_amount(doc.get("discountPercentage")),
        services=tuple(_service_from_document(s) for s in _items(doc.get("services"))),
        equipment=tuple(
            EquipmentCharge(
                category=e.get("category") or "",
                name=e.get("equipmentName") or e.get("name") or "",
                price=to_amount(e.get("price")),
                created_at=e.get("createdAt") or "",
            )
            for e in _items(doc.get("equipment"))
        ),
        payments=tuple(
            Payment(
                amount=to_amount(p.get("amount")),
                payment_type=p.get("paymentType") or "",
                date=p.get("date") or "",
            )
            for p in _items(doc.get("payments"))
        ),
        discharge_date=doc.get("dischargeDate") or None,
    )


def record_to_document(record: BillingRecord) -> Dict[str, Any]:
    """Plain document for the record store; ``totalPaid`` keeps its legacy meaning."""
    return {
        "name": record.patient_name,
        "mobileNumber": record.mobile_number,
        "roomType": record.room_type,
        "bed": record.bed,
        "date": record.admitted_at,
        "amount": str(record.deposit),
        "discountPercentage": str(record.discount_percentage),
        "totalPaid": str(completed_services_amount(record.services)),
        "services": [
            {"serviceName": s.name, "amount": str(s.amount), "status": s.status, "createdAt": s.created_at}
            for s in record.services
        ],
        "equipment": [
            {"category": e.category, "equipmentName": e.name, "price": str(e.price), "createdAt": e.created_at}
            for e in record.equipment
        ],
        "payments": [
            {"amount": str(p.amount), "paymentType": p.payment_type, "date": p.date} for p in record.payments
        ],
        "dischargeDate": record.discharge_date or "",
    }
