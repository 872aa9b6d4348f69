from __future__ import annotations

import logging
import zipfile
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import Flask, abort, jsonify, request, send_file
from openpyxl.utils.exceptions import InvalidFileException

from config import Config
from invoice import invoice_filename, render_daily_report, render_invoice
from ledger import (
    PAYMENT_TYPES,
    BillingRecord,
    LedgerError,
    add_equipment,
    add_service,
    apply_discharge,
    apply_discount,
    apply_payment,
    mark_service_completed,
    record_from_document,
    record_to_document,
    summarize,
)
from metrics import (
    DashboardFilters,
    bed_details,
    collect_appointments,
    dashboard_metrics,
    daily_performance_metrics,
    mortality_on,
    parse_date,
    payments_by_day,
)
from records import (
    BED_OCCUPIED,
    BLOOD_TESTS,
    IPD_BOOKINGS,
    MORTALITY_REPORTS,
    OPD_BOOKINGS,
    SURGERIES,
    BedInventory,
    RecordStore,
)

EQUIPMENT_CATALOG: Dict[str, List[str]] = {
    "General Consumables": [
        "Cotton rolls and balls",
        "Gauze pieces and bandages",
        "Adhesive tapes (micropore, surgical tape)",
        "Disposable gloves (sterile and non-sterile)",
        "Syringes (various sizes)",
        "Needles (various gauges)",
        "IV cannulas",
        "IV sets and infusion sets",
        "Saline bottles (normal saline, dextrose)",
        "Tourniquets",
        "Hand sanitizers",
        "Face masks and shields",
    ],
    "Diagnostic Consumables": [
        "Blood sample collection tubes (EDTA, citrate, serum separator)",
        "Urine sample containers",
        "Culture swabs",
        "Specimen bags",
        "Glucometer strips",
        "Lancets",
    ],
    "Surgical Consumables": [
        "Sutures (absorbable, non-absorbable)",
        "Surgical blades (various sizes)",
        "Drapes and surgical gowns",
        "Sterile packs (scissors, forceps, etc.)",
        "Hemostats and clips",
        "Sterilization pouches",
        "Antiseptic solutions (Betadine, Chlorhexidine)",
    ],
    "Wound Care and Dressing": [
        "Antiseptic creams and ointments",
        "Wound dressing materials (hydrocolloid, foam, etc.)",
        "Absorbent pads",
        "Transparent films",
        "Elastic and crepe bandages",
        "Plasters and tapes",
    ],
    "ICU/CCU Specific Consumables": [
        "Endotracheal tubes",
        "Suction catheters",
        "Oxygen masks and nasal cannulas",
        "Ventilator circuits",
        "Disposable CPAP/BiPAP masks",
        "Disposable ECG electrodes",
        "Central line kits",
        "Arterial line kits",
    ],
    "Catheters and Tubes": [
        "Urinary catheters (Foley, Nelaton)",
        "Ryles tubes",
        "Feeding tubes",
        "Chest drainage tubes",
        "Surgical drains (e.g., JP drains)",
    ],
    "Patient Care Consumables": [
        "Diapers (adult and pediatric)",
        "Bed sheets and underpads",
        "Disposable towels",
        "Patient ID bands",
        "Thermometer probe covers",
        "Bedside sponges",
    ],
    "Medicated Consumables": [
        "Insulin pens and cartridges",
        "Nebulizer masks and kits",
        "Heparin lock sets",
        "Heparin vials and syringes",
        "Ampoules (e.g., adrenaline, epinephrine)",
    ],
    "Radiology/Imaging Consumables": [
        "Xray",
        "Sonography",
        "CT Scan",
    ],
}

app = Flask(__name__)
app.config.from_object(Config)

logging.basicConfig(
    level=app.config["LOG_LEVEL"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

RETRY_MESSAGE = "Failed to update hospital records. Please try again."


@app.errorhandler(LedgerError)
def handle_ledger_error(error):
    logger.warning("Rejected billing change: %s", error)
    return jsonify({"error": str(error)}), 400


@app.errorhandler(400)
def handle_bad_request(error):
    return jsonify({"error": "Invalid request parameters."}), 400


@app.errorhandler(404)
def handle_not_found(error):
    return jsonify({"error": "Record not found."}), 404


@app.errorhandler(OSError)
@app.errorhandler(InvalidFileException)
@app.errorhandler(zipfile.BadZipFile)
def handle_store_failure(error):
    logger.exception("Record store or renderer failure")
    return jsonify({"error": RETRY_MESSAGE}), 503


def _log_billing_change(collection: str, snapshot: Dict[str, Dict[str, Any]]):
    logger.debug("%s now holds %d record(s)", collection, len(snapshot))


def _store() -> RecordStore:
    path = Path(app.config["RECORD_STORE_FILE"])
    store = app.extensions.get("record_store")
    if store is None or store.path != path:
        store = RecordStore(path)
        store.subscribe(IPD_BOOKINGS, _log_billing_change)
        app.extensions["record_store"] = store
    return store


def _beds() -> BedInventory:
    return BedInventory(_store())


def _find_record(admission_id: str) -> BillingRecord:
    doc = _store().get(IPD_BOOKINGS, admission_id)
    if doc is None:
        abort(404)
    return record_from_document(admission_id, doc)


def _save_record(record: BillingRecord) -> BillingRecord:
    _store().update(IPD_BOOKINGS, record.admission_id, record_to_document(record))
    return record


def _record_payload(record: BillingRecord) -> Dict[str, Any]:
    payload = {"id": record.admission_id, "state": record.state}
    payload.update(record_to_document(record))
    payload["summary"] = summarize(record).as_dict()
    return payload


def _form_value(name: str) -> str:
    return request.form.get(name, "").strip()


def _validate_amount(value: str, label: str, allow_zero: bool = False) -> Optional[str]:
    try:
        amount = Decimal(value)
    except (InvalidOperation, ValueError):
        return f"{label} must be a number."
    if not amount.is_finite():
        return f"{label} must be a number."
    if amount < 0 or (amount == 0 and not allow_zero):
        return f"{label} must be positive."
    return None


def _validate_admission_payload(form) -> Optional[str]:
    for field_name in ("name", "mobile_number", "room_type", "bed"):
        if not form.get(field_name, "").strip():
            return f"{field_name.replace('_', ' ').title()} is required."
    deposit = form.get("deposit", "").strip()
    if deposit:
        error = _validate_amount(deposit, "Deposit", allow_zero=True)
        if error:
            return error
    payment_type = form.get("payment_type", "").strip()
    if payment_type and payment_type not in PAYMENT_TYPES:
        return "Payment Type must be one of: " + ", ".join(PAYMENT_TYPES) + "."
    return None


def _validate_service_payload(form) -> Optional[str]:
    if not form.get("service_name", "").strip():
        return "Service Name is required."
    return _validate_amount(form.get("amount", "").strip(), "Amount")


def _validate_payment_payload(form) -> Optional[str]:
    error = _validate_amount(form.get("payment_amount", "").strip(), "Payment Amount")
    if error:
        return error
    if form.get("payment_type", "").strip() not in PAYMENT_TYPES:
        return "Payment Type must be one of: " + ", ".join(PAYMENT_TYPES) + "."
    return None


def _validate_equipment_payload(form) -> Optional[str]:
    category = form.get("category", "").strip()
    if category not in EQUIPMENT_CATALOG:
        return "Category is required."
    if form.get("equipment_name", "").strip() not in EQUIPMENT_CATALOG[category]:
        return "Equipment Name is required."
    return _validate_amount(form.get("price", "").strip(), "Price")


def _validate_discount_payload(form) -> Optional[str]:
    value = form.get("discount_percentage", "").strip()
    try:
        percentage = Decimal(value)
    except (InvalidOperation, ValueError):
        return "Discount must be a number."
    if not percentage.is_finite():
        return "Discount must be a number."
    if percentage < 0:
        return "Discount cannot be negative."
    if percentage > 100:
        return "Discount cannot exceed 100%."
    return None


def _bad_request(message: str):
    logger.warning("Invalid form submission on %s: %s", request.path, message)
    return jsonify({"error": message}), 400


def _parse_day_arg(name: str) -> Optional[date]:
    value = request.args.get(name, "").strip()
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        abort(400)


@app.post("/api/ipd/admissions")
def create_admission():
    form = request.form
    error = _validate_admission_payload(form)
    if error:
        return _bad_request(error)

    room_type = _form_value("room_type")
    bed = _form_value("bed")
    beds = _beds()
    existing = beds.all_beds().get(room_type, {}).get(bed)
    if existing and (existing.get("status") or "").lower() == BED_OCCUPIED:
        return _bad_request(f"Bed {bed} in {room_type} is already occupied.")

    now = datetime.now().isoformat(timespec="seconds")
    document = {
        "name": _form_value("name"),
        "mobileNumber": _form_value("mobile_number"),
        "roomType": room_type,
        "bed": bed,
        "date": _form_value("date") or now,
        "createdAt": now,
        "amount": _form_value("deposit") or "0",
        "paymentType": _form_value("payment_type") or "cash",
        "referralDoctor": _form_value("referral_doctor"),
        "discountPercentage": "0",
        "services": [],
        "equipment": [],
        "payments": [],
    }
    admission_id = _store().append_child(IPD_BOOKINGS, document)
    beds.set_bed_status(room_type, bed, BED_OCCUPIED)
    logger.info("Admission %s booked for %s in %s/%s", admission_id, document["name"], room_type, bed)
    return jsonify(_record_payload(record_from_document(admission_id, document))), 201


@app.route("/api/ipd/billing", methods=["GET"])
def list_billing_records():
    records = [record_from_document(key, doc) for key, doc in _store().get_all(IPD_BOOKINGS).items()]
    search_query = request.args.get("search", "").strip().lower()
    if search_query:
        records = [
            record
            for record in records
            if search_query in record.patient_name.lower()
            or search_query in record.mobile_number.lower()
            or search_query == record.admission_id
        ]
    records.sort(key=lambda r: parse_date(r.admitted_at) or datetime.min, reverse=True)
    return jsonify({"records": [_record_payload(record) for record in records]})


@app.route("/api/ipd/billing/<admission_id>", methods=["GET"])
def view_billing_record(admission_id: str):
    return jsonify(_record_payload(_find_record(admission_id)))


@app.post("/api/ipd/billing/<admission_id>/services")
def add_billing_service(admission_id: str):
    record = _find_record(admission_id)
    error = _validate_service_payload(request.form)
    if error:
        return _bad_request(error)
    record = _save_record(add_service(record, _form_value("service_name"), _form_value("amount")))
    logger.info("Service added to admission %s", admission_id)
    return jsonify(_record_payload(record)), 201


@app.post("/api/ipd/billing/<admission_id>/services/<int:index>/complete")
def complete_billing_service(admission_id: str, index: int):
    record = _find_record(admission_id)
    updated = mark_service_completed(record, index)
    if updated is not record:
        _save_record(updated)
        logger.info("Service %d of admission %s marked completed", index, admission_id)
    return jsonify(_record_payload(updated))


@app.post("/api/ipd/billing/<admission_id>/payments")
def record_billing_payment(admission_id: str):
    record = _find_record(admission_id)
    error = _validate_payment_payload(request.form)
    if error:
        return _bad_request(error)
    record = _save_record(apply_payment(record, _form_value("payment_amount"), _form_value("payment_type")))
    logger.info("Payment recorded for admission %s", admission_id)
    return jsonify(_record_payload(record)), 201


@app.post("/api/ipd/billing/<admission_id>/equipment")
def add_billing_equipment(admission_id: str):
    record = _find_record(admission_id)
    error = _validate_equipment_payload(request.form)
    if error:
        return _bad_request(error)
    record = _save_record(
        add_equipment(record, _form_value("category"), _form_value("equipment_name"), _form_value("price"))
    )
    logger.info("Equipment added to admission %s", admission_id)
    return jsonify(_record_payload(record)), 201


@app.post("/api/ipd/billing/<admission_id>/discount")
def apply_billing_discount(admission_id: str):
    record = _find_record(admission_id)
    error = _validate_discount_payload(request.form)
    if error:
        return _bad_request(error)
    record = _save_record(apply_discount(record, _form_value("discount_percentage")))
    logger.info("Discount of %s%% applied to admission %s", record.discount_percentage, admission_id)
    return jsonify(_record_payload(record))


@app.post("/api/ipd/billing/<admission_id>/discharge")
def discharge_admission(admission_id: str):
    record = _find_record(admission_id)
    record = apply_discharge(record, _beds(), save=_save_record)
    return jsonify(_record_payload(record))


@app.route("/api/ipd/billing/<admission_id>/invoice", methods=["GET"])
def download_invoice(admission_id: str):
    record = _find_record(admission_id)
    pdf = render_invoice(record, app.config["HOSPITAL_NAME"])
    return send_file(
        BytesIO(pdf), mimetype="application/pdf", as_attachment=True, download_name=invoice_filename(record)
    )


@app.route("/api/ipd/billing/<admission_id>/payments/chart", methods=["GET"])
def payment_chart(admission_id: str):
    record = _find_record(admission_id)
    chart = payments_by_day(record.payments, date.today())
    return jsonify(
        {
            "labels": chart.labels,
            "amounts": [str(amount) for amount in chart.amounts],
            "best_day": chart.best_day.strftime("%a %d %b") if chart.best_day else "",
            "total_payments": str(sum(chart.amounts, Decimal("0"))),
        }
    )


@app.route("/api/beds", methods=["GET"])
def list_beds():
    room_type = request.args.get("room_type", "").strip()
    beds = _beds()
    if room_type:
        return jsonify({"room_type": room_type, "available": beds.available_beds(room_type)})
    return jsonify({"beds": beds.all_beds()})


@app.route("/api/dashboard", methods=["GET"])
def dashboard():
    store = _store()
    filters = DashboardFilters(
        query=request.args.get("search", "").strip(),
        month=request.args.get("month", "All").strip() or "All",
        today_only=request.args.get("today", "").strip().lower() in ("1", "true", "yes"),
        on_date=_parse_day_arg("date"),
    )
    appointments = collect_appointments(
        store.get_all(OPD_BOOKINGS), store.get_all(IPD_BOOKINGS), store.get_all(BLOOD_TESTS)
    )
    metrics = dashboard_metrics(appointments, filters, date.today())
    return jsonify(
        {
            "total_appointments": len(metrics.appointments),
            "monthly_opd": metrics.monthly_opd,
            "monthly_ipd": metrics.monthly_ipd,
            "today_amounts": {kind: str(amount) for kind, amount in metrics.today_amounts.items()},
            "appointments": [
                {
                    "id": a.id,
                    "name": a.name,
                    "phone": a.phone,
                    "type": a.appointment_type,
                    "date": a.when.isoformat() if a.when else "",
                    "amount": str(a.amount),
                }
                for a in metrics.appointments
            ],
        }
    )


def _daily_report_inputs(day: date):
    store = _store()
    beds = _beds().all_beds()
    mortality = list(store.get_all(MORTALITY_REPORTS).values())
    metrics = daily_performance_metrics(
        store.get_all(OPD_BOOKINGS).values(),
        store.get_all(IPD_BOOKINGS).values(),
        store.get_all(SURGERIES).values(),
        beds,
        mortality,
        day,
    )
    return metrics, bed_details(beds), mortality_on(mortality, day)


@app.route("/api/reports/daily", methods=["GET"])
def daily_report():
    day = _parse_day_arg("date") or date.today()
    metrics, beds, mortality = _daily_report_inputs(day)
    return jsonify({"date": day.isoformat(), "metrics": asdict(metrics), "beds": beds, "mortality": mortality})


@app.route("/api/reports/daily/pdf", methods=["GET"])
def download_daily_report():
    day = _parse_day_arg("date") or date.today()
    metrics, beds, mortality = _daily_report_inputs(day)
    pdf = render_daily_report(metrics, beds, mortality, day, app.config["HOSPITAL_NAME"])
    return send_file(
        BytesIO(pdf), mimetype="application/pdf", as_attachment=True, download_name=f"DPR_{day.isoformat()}.pdf"
    )


if __name__ == "__main__":
    app.run(debug=True)
