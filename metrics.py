"""Dashboard and daily performance figures, derived on demand from record snapshots.

Every function here is a pure reducer over plain store documents: nothing is
accumulated between calls, so the same records and filters always give the
same figures.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ledger import ZERO, Payment, to_amount
from records import BED_OCCUPIED

APPOINTMENT_OPD = "OPD"
APPOINTMENT_IPD = "IPD"
APPOINTMENT_PATHOLOGY = "Pathology"
APPOINTMENT_TYPES = (APPOINTMENT_OPD, APPOINTMENT_IPD, APPOINTMENT_PATHOLOGY)


def parse_date(value: Any) -> Optional[datetime]:
    """Read ISO strings (with or without time / trailing Z) and epoch milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000)
        except (OverflowError, ValueError, OSError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1]
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def _on_day(value: Any, day: date) -> bool:
    parsed = parse_date(value)
    return parsed is not None and parsed.date() == day


@dataclass(frozen=True)
class DailyMetrics:
    total_opd: int = 0
    total_ipd_admissions: int = 0
    total_ipd_discharges: int = 0
    total_ipd_referrals: int = 0
    total_surgeries: int = 0
    total_mortality_reports: int = 0
    total_beds: int = 0
    beds_occupied: int = 0
    beds_available: int = 0

    def labelled(self) -> List[Tuple[str, int]]:
        return [
            ("Total OPD Today", self.total_opd),
            ("IPD Admissions", self.total_ipd_admissions),
            ("IPD Discharges", self.total_ipd_discharges),
            ("IPD Referrals", self.total_ipd_referrals),
            ("Surgeries Today", self.total_surgeries),
            ("Mortality Reports", self.total_mortality_reports),
            ("Total Beds", self.total_beds),
            ("Beds Occupied", self.beds_occupied),
            ("Beds Available", self.beds_available),
        ]


def daily_performance_metrics(
    opd_bookings: Iterable[Dict[str, Any]],
    ipd_bookings: Iterable[Dict[str, Any]],
    surgeries: Iterable[Dict[str, Any]],
    beds: Dict[str, Dict[str, Dict[str, Any]]],
    mortality_reports: Iterable[Dict[str, Any]],
    day: date,
) -> DailyMetrics:
    ipd_bookings = list(ipd_bookings)
    total_beds = 0
    occupied = 0
    for ward_beds in beds.values():
        for bed in ward_beds.values():
            total_beds += 1
            if (bed.get("status") or "").lower() == BED_OCCUPIED:
                occupied += 1

    return DailyMetrics(
        total_opd=sum(1 for b in opd_bookings if _on_day(b.get("date"), day)),
        total_ipd_admissions=sum(1 for i in ipd_bookings if _on_day(i.get("date"), day)),
        total_ipd_discharges=sum(1 for i in ipd_bookings if _on_day(i.get("dischargeDate"), day)),
        # a referral counts on the day the admission was created
        total_ipd_referrals=sum(
            1
            for i in ipd_bookings
            if i.get("referralDoctor") and _on_day(i.get("createdAt") or i.get("date"), day)
        ),
        total_surgeries=sum(1 for s in surgeries if _on_day(s.get("surgeryDate"), day)),
        total_mortality_reports=sum(1 for m in mortality_reports if _on_day(m.get("dateOfDeath"), day)),
        total_beds=total_beds,
        beds_occupied=occupied,
        beds_available=total_beds - occupied,
    )


def bed_details(beds: Dict[str, Dict[str, Dict[str, Any]]]) -> List[Dict[str, str]]:
    details = []
    for ward, ward_beds in beds.items():
        for bed_key, bed in ward_beds.items():
            details.append(
                {
                    "ward": ward,
                    "bed_key": bed_key,
                    "bed_number": str(bed.get("bedNumber") or bed_key),
                    "status": bed.get("status") or "",
                    "type": bed.get("type") or "",
                }
            )
    return details


def mortality_on(reports: Iterable[Dict[str, Any]], day: date) -> List[Dict[str, Any]]:
    return [report for report in reports if _on_day(report.get("dateOfDeath"), day)]


@dataclass(frozen=True)
class Appointment:
    id: str
    name: str
    phone: str
    appointment_type: str
    when: Optional[datetime]
    amount: Decimal = ZERO


def collect_appointments(
    opd_bookings: Dict[str, Dict[str, Any]],
    ipd_bookings: Dict[str, Dict[str, Any]],
    blood_tests: Dict[str, Dict[str, Any]],
) -> List[Appointment]:
    appointments = [
        Appointment(
            id=key,
            name=doc.get("name") or "",
            phone=doc.get("phone") or "",
            appointment_type=APPOINTMENT_OPD,
            when=parse_date(doc.get("date")),
            amount=to_amount(doc.get("amount")),
        )
        for key, doc in opd_bookings.items()
    ]
    appointments += [
        Appointment(
            id=key,
            name=doc.get("name") or "",
            phone=doc.get("mobileNumber") or doc.get("emergencyMobileNumber") or "",
            appointment_type=APPOINTMENT_IPD,
            when=parse_date(doc.get("date")),
            amount=to_amount(doc.get("amount")),
        )
        for key, doc in ipd_bookings.items()
    ]
    appointments += [
        Appointment(
            id=key,
            name=doc.get("name") or "",
            phone=doc.get("phone") or "",
            appointment_type=APPOINTMENT_PATHOLOGY,
            when=parse_date(doc.get("timestamp")),
            amount=to_amount(doc.get("amount")),
        )
        for key, doc in blood_tests.items()
    ]
    return appointments


@dataclass(frozen=True)
class DashboardFilters:
    query: str = ""
    month: str = "All"
    today_only: bool = False
    on_date: Optional[date] = None


def filter_appointments(
    appointments: Iterable[Appointment], filters: DashboardFilters, today: date
) -> List[Appointment]:
    results = list(appointments)
    if filters.query:
        lowered = filters.query.lower()
        results = [a for a in results if lowered in a.name.lower() or filters.query in a.phone]
    if filters.month and filters.month != "All":
        results = [a for a in results if a.when and calendar.month_name[a.when.month] == filters.month]
    if filters.today_only:
        results = [a for a in results if a.when and a.when.date() == today]
    if filters.on_date:
        results = [a for a in results if a.when and a.when.date() == filters.on_date]
    return results


@dataclass
class DashboardMetrics:
    appointments: List[Appointment] = field(default_factory=list)
    monthly_opd: Dict[str, int] = field(default_factory=dict)
    monthly_ipd: Dict[str, int] = field(default_factory=dict)
    today_amounts: Dict[str, Decimal] = field(default_factory=dict)


def _monthly_counts(appointments: List[Appointment], appointment_type: str) -> Dict[str, int]:
    counts: Dict[int, int] = {}
    for a in appointments:
        if a.appointment_type == appointment_type and a.when:
            counts[a.when.month] = counts.get(a.when.month, 0) + 1
    return {calendar.month_name[month]: counts[month] for month in sorted(counts)}


def dashboard_metrics(
    appointments: Iterable[Appointment], filters: DashboardFilters, today: date
) -> DashboardMetrics:
    filtered = filter_appointments(appointments, filters, today)
    today_amounts = {kind: ZERO for kind in APPOINTMENT_TYPES}
    for a in filtered:
        if a.when and a.when.date() == today:
            today_amounts[a.appointment_type] += a.amount
    return DashboardMetrics(
        appointments=filtered,
        monthly_opd=_monthly_counts(filtered, APPOINTMENT_OPD),
        monthly_ipd=_monthly_counts(filtered, APPOINTMENT_IPD),
        today_amounts=today_amounts,
    )


@dataclass(frozen=True)
class PaymentChart:
    days: List[date]
    amounts: List[Decimal]
    best_day: Optional[date]

    @property
    def labels(self) -> List[str]:
        return [day.strftime("%a %d %b") for day in self.days]


def payments_by_day(payments: Iterable[Payment], today: date, days: int = 7) -> PaymentChart:
    window = [today - timedelta(days=offset) for offset in reversed(range(days))]
    totals = {day: ZERO for day in window}
    for payment in payments:
        when = parse_date(payment.date)
        if when and when.date() in totals:
            totals[when.date()] += payment.amount
    amounts = [totals[day] for day in window]
    best_day = None
    if window:
        best = max(amounts)
        best_day = window[amounts.index(best)]
    return PaymentChart(days=window, amounts=amounts, best_day=best_day)
