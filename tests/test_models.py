"""Tests for document payload conversion and legacy migration."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pacioli.constants import AmountType, DocumentStatus, DocumentType
from pacioli.models import (
    DeletedLink,
    DeletedLinks,
    Installment,
    LinkedDocuments,
    PartialPayment,
    document_from_dict,
    document_id_for,
    document_to_dict,
    infer_document_type,
)
from pacioli.tax import TaxBreakdown, TaxRule


def test_document_id_for_joins_type_and_number():
    """Ids are the type value followed by the document number."""

    assert document_id_for(DocumentType.INVOICE, "INV-202510-001") == "invoice-INV-202510-001"


def test_document_to_dict_uses_camel_case_and_omits_empty_fields(make_document):
    """Serialized payloads carry camelCase keys and skip ``None`` values."""

    document = make_document(customer_id="cust-1", chain_id="chain-1")

    payload = document_to_dict(document)

    assert payload["documentNumber"] == "QT-001"
    assert payload["customerId"] == "cust-1"
    assert payload["chainId"] == "chain-1"
    assert payload["validUntil"] == "2025-10-31"
    assert payload["items"][0] == {
        "description": "Design work",
        "quantity": "1",
        "unit": "job",
        "unitPrice": "1000",
    }
    assert "dueDate" not in payload
    assert "linkedDocuments" not in payload
    assert "archivedAt" not in payload


def test_document_round_trips_through_payload(make_document):
    """A fully populated document survives serialization unchanged."""

    document = make_document(
        DocumentType.INVOICE,
        "INV-001",
        chain_id="chain-9",
        source_document_id="quotation-QT-001",
        source_document_number="QT-001",
        payment_terms=("50% upfront", "50% on delivery"),
        tax_breakdown=TaxBreakdown(
            subtotal=Decimal("961.54"),
            vat_amount=Decimal("67.31"),
            withholding_amount=Decimal("28.85"),
            total=Decimal("1000.00"),
            gross_up_amount=Decimal("-38.46"),
        ),
        linked_documents=LinkedDocuments(receipt_id="receipt-REC-001"),
        deleted_linked_documents=DeletedLinks(
            receipt=DeletedLink("receipt-REC-000", "REC-000", "2025-10-29T10:00:00+00:00")
        ),
        partial_payment=PartialPayment(enabled=True, type=AmountType.FIXED, value=Decimal("200")),
        installment=Installment(
            is_installment=True,
            installment_number=2,
            total_contract_amount=Decimal("3000"),
            paid_to_date=Decimal("1000"),
            remaining_amount=Decimal("2000"),
            parent_chain_id="chain-9",
        ),
        archived_at="2025-10-30T09:30:00+00:00",
    )

    assert document_from_dict(document_to_dict(document)) == document


def test_document_from_dict_migrates_legacy_tax_fields():
    """Legacy ``taxRate``/``taxType`` pairs become a tax configuration."""

    document = document_from_dict(
        {
            "id": "invoice-INV-1",
            "type": "invoice",
            "documentNumber": "INV-1",
            "taxRate": 0.07,
            "taxType": "vat",
        }
    )

    assert document.tax_config.vat == TaxRule(enabled=True, rate=Decimal("0.07"))
    assert document.tax_config.withholding.enabled is False


def test_document_from_dict_prefers_tax_config_over_legacy_fields():
    """An explicit tax configuration wins over legacy fields."""

    document = document_from_dict(
        {
            "id": "q-1",
            "type": "quotation",
            "taxRate": 0.03,
            "taxType": "withholding",
            "taxConfig": {"vat": {"enabled": True, "rate": "0.07"}, "grossUp": True},
        }
    )

    assert document.tax_config.vat.enabled is True
    assert document.tax_config.withholding.enabled is False
    assert document.tax_config.gross_up is True


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"type": "receipt"}, DocumentType.RECEIPT),
        ({"validUntil": "2025-10-31"}, DocumentType.QUOTATION),
        ({"dueDate": "2025-11-15"}, DocumentType.INVOICE),
        ({"paymentDate": "2025-11-20"}, DocumentType.RECEIPT),
    ],
)
def test_infer_document_type_falls_back_to_dates(payload, expected):
    """Untyped legacy records are typed by their characteristic date."""

    assert infer_document_type(payload) is expected


def test_infer_document_type_rejects_untyped_payload():
    """A payload with neither a type nor a typed date is rejected."""

    with pytest.raises(ValueError):
        infer_document_type({"id": "mystery"})


def test_document_from_dict_flags_legacy_revision_by_number():
    """Records without ``isRevision`` are revisions when their number ends in -R<n>."""

    document = document_from_dict({"id": "q-r1", "type": "quotation", "documentNumber": "QT-001-R1"})

    assert document.is_revision is True


def test_document_from_dict_trusts_explicit_revision_flag():
    """An explicit ``isRevision`` is never second-guessed by the number."""

    document = document_from_dict(
        {"id": "q-r1", "type": "quotation", "documentNumber": "QT-001-R1", "isRevision": False}
    )

    assert document.is_revision is False


def test_document_from_dict_accepts_snake_case_archive_stamp():
    """Older stores wrote ``archived_at``; it still marks the document archived."""

    document = document_from_dict(
        {"id": "q-1", "type": "quotation", "archived_at": "2025-10-30T09:30:00+00:00"}
    )

    assert document.is_archived is True


def test_document_from_dict_defaults_number_and_status():
    """Missing number falls back to the id, missing status to pending."""

    document = document_from_dict({"id": "q-1", "type": "quotation"})

    assert document.document_number == "q-1"
    assert document.status is DocumentStatus.PENDING
    assert document.items == ()
