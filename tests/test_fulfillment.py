from datetime import date

import pytest
from pydantic import ValidationError as SchemaError

from clinicflow.database.models import (
    InventoryItem,
    LabPaymentMode,
    LabPaymentStatus,
    LabReportStatus,
    LabTestStatus,
    OrderPaymentStatus,
    OrderStatus,
    StockStatus,
    UserRole,
    stock_status,
)
from clinicflow.errors import NotFoundError, PaymentRequiredError, StorageError, ValidationError
from clinicflow.services import fulfillment, treatment
from clinicflow.services.fulfillment import InventoryItemRequest, InventoryItemUpdate
from clinicflow.services.storage import UploadPayload

from conftest import PDF_BYTES, BrokenStorage, make_user


@pytest.fixture
def lab_request(db_session, storage, appointment, doctor_user):
    treatment.save_plan(db_session, storage, appointment.id, doctor_user.id, lab_tests=["CBC"])
    return fulfillment.list_lab_requests(db_session)[0]


@pytest.fixture
def order(db_session, storage, appointment, doctor_user):
    treatment.save_plan(db_session, storage, appointment.id, doctor_user.id,
                        medications=[{"medicineName": "Paracetamol"}])
    return fulfillment.list_pharmacy_orders(db_session)[0]


def report(name="cbc.pdf", content=PDF_BYTES):
    return UploadPayload(content=content, filename=name, content_type="application/pdf")


# ==================== LAB PAYMENT ====================

def test_update_payment_sets_all_fields(db_session, lab_request):
    updated = fulfillment.update_lab_payment(db_session, lab_request.id, "PAID", "UPI", 650)

    assert updated.payment_status == LabPaymentStatus.PAID.value
    assert updated.payment_mode == LabPaymentMode.UPI.value
    assert updated.amount == 650


def test_any_payment_transition_is_allowed(db_session, lab_request):
    fulfillment.update_lab_payment(db_session, lab_request.id, "PAID", "CASH", 100)
    back = fulfillment.update_lab_payment(db_session, lab_request.id, "PENDING")

    assert back.payment_status == LabPaymentStatus.PENDING.value
    assert back.payment_mode == LabPaymentMode.CASH.value


def test_update_payment_rejects_unknown_values(db_session, lab_request):
    with pytest.raises(ValidationError):
        fulfillment.update_lab_payment(db_session, lab_request.id, "MAYBE")
    with pytest.raises(ValidationError):
        fulfillment.update_lab_payment(db_session, lab_request.id, "PAID", "BARTER")
    with pytest.raises(NotFoundError):
        fulfillment.update_lab_payment(db_session, "LABMISSING", "PAID")


# ==================== REPORT UPLOAD ====================

def test_report_upload_requires_payment(db_session, storage, lab_request):
    with pytest.raises(PaymentRequiredError) as exc:
        fulfillment.upload_lab_report(db_session, storage, lab_request.id, report())
    assert "mark payment as received before uploading the report" in exc.value.detail

    # the payment gate comes before any file check
    with pytest.raises(PaymentRequiredError):
        fulfillment.upload_lab_report(db_session, storage, lab_request.id, None)
    with pytest.raises(PaymentRequiredError):
        fulfillment.upload_lab_report(db_session, storage, lab_request.id, report("x.exe", b"MZ"))

    db_session.refresh(lab_request)
    assert lab_request.test_status == LabTestStatus.PENDING.value
    assert storage.files == {}


def test_paid_report_upload_completes_request(db_session, storage, lab_request, appointment):
    fulfillment.update_lab_payment(db_session, lab_request.id, "PAID", "CASH", 400)

    done = fulfillment.upload_lab_report(db_session, storage, lab_request.id, report(), notes="Normal ranges")

    assert done.test_status == LabTestStatus.DONE.value
    assert done.report_status == LabReportStatus.UPLOADED.value
    assert done.report_file["name"] == "cbc.pdf"
    assert done.report_file["storage_id"] in storage.files
    assert done.notes == "Normal ranges"

    db_session.refresh(appointment)
    assert len(appointment.documents) == 1
    document = appointment.documents[0]
    assert document["name"] == "Lab Report: cbc.pdf"
    assert document["type"] == "lab_report"
    assert document["url"] == done.report_file["url"]


def test_second_report_appends_another_document(db_session, storage, lab_request, appointment):
    fulfillment.update_lab_payment(db_session, lab_request.id, "PAID")
    fulfillment.upload_lab_report(db_session, storage, lab_request.id, report("first.pdf"))
    fulfillment.upload_lab_report(db_session, storage, lab_request.id, report("second.pdf"))

    db_session.refresh(appointment)
    assert [d["name"] for d in appointment.documents] == ["Lab Report: first.pdf", "Lab Report: second.pdf"]


def test_paid_upload_still_validates_the_file(db_session, storage, lab_request):
    fulfillment.update_lab_payment(db_session, lab_request.id, "PAID")

    with pytest.raises(ValidationError):
        fulfillment.upload_lab_report(db_session, storage, lab_request.id, None)
    with pytest.raises(ValidationError):
        fulfillment.upload_lab_report(db_session, storage, lab_request.id, report("fake.pdf", b"not a pdf"))


def test_storage_failure_leaves_request_untouched(db_session, lab_request):
    fulfillment.update_lab_payment(db_session, lab_request.id, "PAID")

    with pytest.raises(StorageError):
        fulfillment.upload_lab_report(db_session, BrokenStorage(), lab_request.id, report())

    db_session.refresh(lab_request)
    assert lab_request.report_status == LabReportStatus.PENDING.value


def test_lab_stats_and_listing(db_session, storage, lab_request):
    assert fulfillment.lab_stats(db_session) == {"total": 1, "pending": 1, "completed": 0}

    fulfillment.update_lab_payment(db_session, lab_request.id, "PAID")
    fulfillment.upload_lab_report(db_session, storage, lab_request.id, report())

    assert fulfillment.lab_stats(db_session) == {"total": 1, "pending": 0, "completed": 1}
    assert [r.id for r in fulfillment.list_lab_requests(db_session, "completed")] == [lab_request.id]
    assert fulfillment.list_lab_requests(db_session, "pending") == []


def test_patient_sees_only_own_reports(db_session, lab_request, patient):
    stranger = make_user(db_session, UserRole.PATIENT, "other@clinicflow.dev", patient_id="P-1002")

    assert [r.id for r in fulfillment.list_patient_reports(db_session, patient.id)] == [lab_request.id]
    assert fulfillment.list_patient_reports(db_session, stranger.id) == []


# ==================== PHARMACY ORDERS ====================

def test_complete_order_without_payment_precondition(db_session, order):
    assert order.payment_status == OrderPaymentStatus.PENDING.value

    completed = fulfillment.complete_pharmacy_order(db_session, order.id)

    assert completed.payment_status == OrderPaymentStatus.PAID.value
    assert completed.order_status == OrderStatus.COMPLETED.value


def test_complete_unknown_order(db_session):
    with pytest.raises(NotFoundError):
        fulfillment.complete_pharmacy_order(db_session, "ORDMISSING")


def test_patient_orders(db_session, order, patient):
    assert [o.id for o in fulfillment.list_patient_orders(db_session, patient.id)] == [order.id]


# ==================== INVENTORY ====================

def form_item(**overrides):
    data = {
        "name": "Paracetamol 500mg",
        "category": "Analgesic",
        "stock": "20",
        "unit": "Tablets",
        "buying_price": "1.5",
        "selling_price": "2.25",
        "vendor": "Sun Pharma",
        "batch_number": "B-0425",
        "expiry_date": "2027-03-31",
    }
    data.update(overrides)
    return InventoryItemRequest(**data)


@pytest.mark.parametrize("stock, expected", [
    (-3, StockStatus.OUT_OF_STOCK),
    (0, StockStatus.OUT_OF_STOCK),
    (1, StockStatus.LOW_STOCK),
    (49, StockStatus.LOW_STOCK),
    (50, StockStatus.IN_STOCK),
    (500, StockStatus.IN_STOCK),
])
def test_stock_status_thresholds(stock, expected):
    assert stock_status(stock) == expected.value


def test_add_item_coerces_form_strings(db_session, pharmacy_user):
    item = fulfillment.add_inventory_item(db_session, pharmacy_user.id, form_item())

    assert item.stock == 20
    assert item.buying_price == 1.5
    assert item.selling_price == 2.25
    assert item.expiry_date == date(2027, 3, 31)
    assert item.purchase_date == date.today()
    assert item.status == StockStatus.LOW_STOCK.value


def test_decimal_stock_string_and_blank_stock(db_session, pharmacy_user):
    assert form_item(stock="75.0").stock == 75
    assert form_item(stock="").stock == 0


def test_invalid_form_values_are_rejected():
    with pytest.raises(SchemaError):
        form_item(expiry_date="someday")
    with pytest.raises(SchemaError):
        form_item(buying_price="")
    with pytest.raises(SchemaError):
        form_item(stock="-1")


def test_status_is_recomputed_on_update(db_session, pharmacy_user):
    item = fulfillment.add_inventory_item(db_session, pharmacy_user.id, form_item(stock="120"))
    assert item.status == StockStatus.IN_STOCK.value

    item = fulfillment.update_inventory_item(db_session, pharmacy_user.id, item.id, InventoryItemUpdate(stock="0"))
    assert item.status == StockStatus.OUT_OF_STOCK.value

    item = fulfillment.update_inventory_item(db_session, pharmacy_user.id, item.id, InventoryItemUpdate(stock=30))
    assert item.status == StockStatus.LOW_STOCK.value


def test_status_is_recomputed_on_direct_save(db_session, pharmacy_user):
    item = fulfillment.add_inventory_item(db_session, pharmacy_user.id, form_item(stock="120"))
    item.stock = 10
    db_session.commit()
    db_session.refresh(item)

    assert item.status == StockStatus.LOW_STOCK.value


def test_inventory_is_scoped_to_owner(db_session, pharmacy_user):
    other = make_user(db_session, UserRole.PHARMACY, "branch@clinicflow.dev")
    item = fulfillment.add_inventory_item(db_session, pharmacy_user.id, form_item())

    assert fulfillment.list_inventory(db_session, other.id) == []
    with pytest.raises(NotFoundError):
        fulfillment.update_inventory_item(db_session, other.id, item.id, InventoryItemUpdate(stock=5))
    with pytest.raises(NotFoundError):
        fulfillment.delete_inventory_item(db_session, other.id, item.id)

    fulfillment.delete_inventory_item(db_session, pharmacy_user.id, item.id)
    assert db_session.query(InventoryItem).count() == 0
