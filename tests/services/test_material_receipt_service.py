"""
Tests for MaterialReceiptService.
"""

from datetime import date
from decimal import Decimal

import pytest

from mes_kernel.domain.statuses import BatchCreatedVia, BatchStatus, InventoryState, InventoryType
from mes_kernel.exceptions import ErrorKind


def test_receipt_creates_batch_and_inventory(receipt_service, actor):
    receipt = receipt_service.receive_material(
        "IRON",
        Decimal("750"),
        material_name="Iron ore",
        supplier_id="SUP-9",
        location="Yard 2",
        expiry_date=date(2027, 1, 1),
        actor=actor,
    ).unwrap()

    batch, inventory = receipt.batch, receipt.inventory
    assert batch.batch_number == "RM-IRON-20260206-001"
    assert batch.status == BatchStatus.AVAILABLE
    assert batch.created_via == BatchCreatedVia.RECEIPT
    assert batch.quantity == Decimal("750")
    assert batch.unit == "KG"
    assert batch.received_date == date(2026, 2, 6)
    assert batch.expiry_date == date(2027, 1, 1)
    assert batch.supplier_id == "SUP-9"
    assert batch.created_by == actor

    assert inventory.batch_id == batch.id
    assert inventory.inventory_type == InventoryType.RM
    assert inventory.state == InventoryState.AVAILABLE
    assert inventory.quantity == Decimal("750")
    assert inventory.location == "Yard 2"


def test_supplier_lot_and_unit(receipt_service):
    receipt = receipt_service.receive_material(
        "IRON", Decimal("5"), "T", supplier_batch_number="lot 7/a"
    ).unwrap()
    assert receipt.batch.batch_number == "RM-IRON-20260206-001-lot7a"
    assert receipt.batch.supplier_batch_number == "lot 7/a"
    assert receipt.inventory.unit == "T"


def test_received_date_drives_number(receipt_service):
    receipt = receipt_service.receive_material("IRON", Decimal("1"), received_date=date(2026, 1, 31)).unwrap()
    assert receipt.batch.batch_number == "RM-IRON-20260131-001"


def test_receipts_are_sequenced(receipt_service):
    numbers = [receipt_service.receive_material("IRON", Decimal("1")).unwrap().batch.batch_number for _ in range(3)]
    assert numbers == ["RM-IRON-20260206-001", "RM-IRON-20260206-002", "RM-IRON-20260206-003"]


@pytest.mark.parametrize(
    "material_id, quantity, field",
    [
        (" ", Decimal("1"), "material_id"),
        ("IRON", Decimal("0"), "quantity"),
        ("IRON", Decimal("-3"), "quantity"),
    ],
)
def test_invalid_receipts(receipt_service, material_id, quantity, field):
    result = receipt_service.receive_material(material_id, quantity)
    assert result.error_kind == ErrorKind.VALIDATION_FAILURE
    assert result.error.details["field"] == field


def test_receipt_logged(receipt_service, captured_logs):
    receipt_service.receive_material("IRON", Decimal("2"))
    record = next(r for r in captured_logs() if r["message"] == "material_received")
    assert record["batch_number"] == "RM-IRON-20260206-001"
    assert record["quantity"] == "2"
