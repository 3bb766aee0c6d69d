# Overview: Invoice export representations (structured JSON, plain XML and Facturae 3.2.2).

"""
Invoice Export Service

Exports serialize the stored invoice exactly as persisted: numbers, dates
and totals are read from the row and never recomputed, so an export of a
void invoice still shows the frozen amounts it was issued with.

FORMATS:
- json: the invoice document with issuer, lines and payments
- xml: simple markup of the same document
- facturae: subset of the Spanish Facturae 3.2.2 electronic invoice schema
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET

from ..models import Invoice
from ..money_utils import bps_to_pct, format_cents
from ..time_utils import to_iso_date, utcnow
from ..validation import ValidationError, require_choice
from .invoice_service import get_invoice

EXPORT_FORMATS = ["json", "xml", "facturae"]

FACTURAE_NAMESPACE = "http://www.facturae.es/Facturae/2014/v3.2.2/Facturae"
FACTURAE_SCHEMA_VERSION = "3.2.2"
FACTURAE_TAX_TYPE_IVA = "01"
FACTURAE_UNIT_OF_MEASURE = "01"

# Facturae document type / class per invoice type
FACTURAE_DOCUMENT_TYPES = {
    "ordinary": ("FC", "OO"),
    "simplified": ("FA", "OO"),
    "proforma": ("FC", "OO"),
    "corrective": ("FC", "OR"),
}


def export_invoice(tenant_id: int, invoice_id: int, fmt: str) -> tuple[bytes, str, str]:
    """
    Render an invoice.

    Returns:
        (payload bytes, content type, download filename)
    """
    fmt = require_choice("format", fmt, EXPORT_FORMATS)
    invoice = get_invoice(tenant_id, invoice_id)

    if fmt == "json":
        payload = json.dumps(invoice_document(invoice), indent=2, ensure_ascii=False).encode("utf-8")
        return payload, "application/json", f"{invoice.number}.json"
    if fmt == "xml":
        return _to_bytes(build_xml(invoice)), "application/xml", f"{invoice.number}.xml"
    if fmt == "facturae":
        return _to_bytes(build_facturae(invoice)), "application/xml", f"{invoice.number}.xsig.xml"
    raise ValidationError(f"Unsupported export format '{fmt}'")


def invoice_document(invoice: Invoice) -> dict:
    doc = invoice.to_dict()
    doc["issuer"] = invoice.tenant.issuer_dict()
    doc["payments"] = [p.to_dict() for p in invoice.payments]
    doc["exported_at"] = utcnow().replace(microsecond=0).isoformat() + "Z"
    return doc


def _to_bytes(root: ET.Element) -> bytes:
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _sub(parent: ET.Element, tag: str, text=None) -> ET.Element:
    el = ET.SubElement(parent, tag)
    if text is not None:
        el.text = str(text)
    return el


# =============================================================================
# PLAIN XML
# =============================================================================

def build_xml(invoice: Invoice) -> ET.Element:
    issuer = invoice.tenant.issuer_dict()
    customer = invoice.customer_dict()

    root = ET.Element("Invoice")

    header = _sub(root, "Header")
    _sub(header, "Number", invoice.number)
    _sub(header, "Type", invoice.invoice_type)
    _sub(header, "Status", invoice.effective_status())
    _sub(header, "IssueDate", to_iso_date(invoice.issue_date))
    _sub(header, "DueDate", to_iso_date(invoice.due_date))
    _sub(header, "Currency", invoice.currency)
    if invoice.corrects_invoice_id:
        _sub(header, "CorrectsInvoice", invoice.corrects_invoice.number)
        _sub(header, "CorrectionReason", invoice.correction_reason or "")

    seller = _sub(root, "Issuer")
    _sub(seller, "Name", issuer["name"])
    _sub(seller, "TaxId", issuer["tax_id"])
    _sub(seller, "Address", issuer["address"])
    _sub(seller, "PostalCode", issuer["postal_code"])
    _sub(seller, "City", issuer["city"])

    buyer = _sub(root, "Customer")
    _sub(buyer, "Name", customer["name"])
    _sub(buyer, "TaxId", customer["tax_id"] or "")
    _sub(buyer, "Address", customer["address"] or "")
    _sub(buyer, "PostalCode", customer["postal_code"] or "")
    _sub(buyer, "City", customer["city"] or "")

    lines = _sub(root, "Lines")
    for line in invoice.lines:
        el = _sub(lines, "Line", None)
        el.set("position", str(line.position))
        _sub(el, "Description", line.description)
        _sub(el, "Quantity", format(line.quantity.normalize(), "f"))
        _sub(el, "UnitPrice", format_cents(line.unit_price_cents))
        _sub(el, "DiscountPct", bps_to_pct(line.line_discount_bps))
        _sub(el, "Base", format_cents(line.base_cents))

    totals = _sub(root, "Totals")
    _sub(totals, "Subtotal", format_cents(invoice.subtotal_cents))
    _sub(totals, "GlobalDiscountPct", bps_to_pct(invoice.global_discount_bps))
    _sub(totals, "DiscountAmount", format_cents(invoice.discount_amount_cents))
    _sub(totals, "TaxableBase", format_cents(invoice.taxable_base_cents))
    _sub(totals, "TaxRate", bps_to_pct(invoice.tax_rate_bps))
    _sub(totals, "TaxAmount", format_cents(invoice.tax_amount_cents))
    _sub(totals, "Total", format_cents(invoice.total_cents))
    _sub(totals, "AmountPaid", format_cents(invoice.amount_paid_cents))

    return root


# =============================================================================
# FACTURAE 3.2.2
# =============================================================================

def _tax_identification(parent: ET.Element, tax_id: str, person_type: str) -> None:
    el = _sub(parent, "TaxIdentification")
    _sub(el, "PersonTypeCode", person_type)
    _sub(el, "ResidenceTypeCode", "R")
    _sub(el, "TaxIdentificationNumber", tax_id)


def _legal_entity(parent: ET.Element, name: str, address: dict) -> None:
    entity = _sub(parent, "LegalEntity")
    _sub(entity, "CorporateName", name)
    spain = _sub(entity, "AddressInSpain")
    _sub(spain, "Address", address.get("address") or "N/A")
    _sub(spain, "PostCode", address.get("postal_code") or "00000")
    _sub(spain, "Town", address.get("city") or "N/A")
    _sub(spain, "Province", address.get("province") or "N/A")
    _sub(spain, "CountryCode", "ESP")


def _tax_block(parent: ET.Element, rate, base: str, amount: str | None = None) -> None:
    tax = _sub(_sub(parent, "TaxesOutputs"), "Tax")
    _sub(tax, "TaxTypeCode", FACTURAE_TAX_TYPE_IVA)
    _sub(tax, "TaxRate", rate)
    _sub(_sub(tax, "TaxableBase"), "TotalAmount", base)
    if amount is not None:
        _sub(_sub(tax, "TaxAmount"), "TotalAmount", amount)


def build_facturae(invoice: Invoice) -> ET.Element:
    issuer = invoice.tenant.issuer_dict()
    customer = invoice.customer_dict()
    rate = bps_to_pct(invoice.tax_rate_bps)
    total = format_cents(invoice.total_cents)

    ET.register_namespace("fe", FACTURAE_NAMESPACE)
    root = ET.Element(f"{{{FACTURAE_NAMESPACE}}}Facturae")

    file_header = _sub(root, "FileHeader")
    _sub(file_header, "SchemaVersion", FACTURAE_SCHEMA_VERSION)
    _sub(file_header, "Modality", "I")
    _sub(file_header, "InvoiceIssuerType", "EM")
    batch = _sub(file_header, "Batch")
    _sub(batch, "BatchIdentifier", f"{issuer['tax_id']}{invoice.number}")
    _sub(batch, "InvoicesCount", 1)
    _sub(_sub(batch, "TotalInvoicesAmount"), "TotalAmount", total)
    _sub(_sub(batch, "TotalOutstandingAmount"), "TotalAmount", format_cents(invoice.amount_due_cents))
    _sub(_sub(batch, "TotalExecutableAmount"), "TotalAmount", total)
    _sub(batch, "InvoiceCurrencyCode", invoice.currency)

    parties = _sub(root, "Parties")
    seller = _sub(parties, "SellerParty")
    _tax_identification(seller, issuer["tax_id"], "J")
    _legal_entity(seller, issuer["name"], issuer)

    buyer = _sub(parties, "BuyerParty")
    _tax_identification(buyer, customer["tax_id"] or "00000000T", "J" if customer["tax_id"] else "F")
    _legal_entity(buyer, customer["name"], customer)

    document_type, invoice_class = FACTURAE_DOCUMENT_TYPES[invoice.invoice_type]
    inv = _sub(_sub(root, "Invoices"), "Invoice")

    header = _sub(inv, "InvoiceHeader")
    _sub(header, "InvoiceNumber", invoice.sequence_number)
    _sub(header, "InvoiceSeriesCode", f"{invoice.series}-{invoice.period_key}")
    _sub(header, "InvoiceDocumentType", document_type)
    _sub(header, "InvoiceClass", invoice_class)
    if invoice.corrects_invoice_id:
        corrective = _sub(header, "Corrective")
        _sub(corrective, "InvoiceNumber", invoice.corrects_invoice.number)
        _sub(corrective, "ReasonCode", "01")
        _sub(corrective, "ReasonDescription", invoice.correction_reason or "")

    issue = _sub(inv, "InvoiceIssueData")
    _sub(issue, "IssueDate", to_iso_date(invoice.issue_date))
    _sub(issue, "InvoiceCurrencyCode", invoice.currency)
    _sub(issue, "TaxCurrencyCode", invoice.currency)
    _sub(issue, "LanguageName", "es")

    _tax_block(inv, rate, format_cents(invoice.taxable_base_cents), format_cents(invoice.tax_amount_cents))

    totals = _sub(inv, "InvoiceTotals")
    _sub(totals, "TotalGrossAmount", format_cents(invoice.subtotal_cents))
    _sub(totals, "TotalGeneralDiscounts", format_cents(invoice.discount_amount_cents))
    _sub(totals, "TotalGrossAmountBeforeTaxes", format_cents(invoice.taxable_base_cents))
    _sub(totals, "TotalTaxOutputs", format_cents(invoice.tax_amount_cents))
    _sub(totals, "TotalTaxesWithheld", "0.00")
    _sub(totals, "InvoiceTotal", total)
    _sub(totals, "TotalOutstandingAmount", format_cents(invoice.amount_due_cents))
    _sub(totals, "TotalExecutableAmount", total)

    items = _sub(inv, "Items")
    for line in invoice.lines:
        item = _sub(items, "InvoiceLine")
        _sub(item, "ItemDescription", line.description)
        _sub(item, "Quantity", format(line.quantity.normalize(), "f"))
        _sub(item, "UnitOfMeasure", FACTURAE_UNIT_OF_MEASURE)
        _sub(item, "UnitPriceWithoutTax", format_cents(line.unit_price_cents))
        _sub(item, "TotalCost", format_cents(line.base_cents))
        _sub(item, "GrossAmount", format_cents(line.base_cents))
        # Tax amounts are only stored per invoice, so lines carry rate and base
        _tax_block(item, rate, format_cents(line.base_cents))

    return root

