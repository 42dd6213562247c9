"""Tax breakdown calculator for quotations, invoices, and receipts.

Two taxes can apply to a document: VAT, added on top of the billed amount,
and withholding tax, deducted by the payer. In *normal* mode the line-item
subtotal is the billed amount and the taxes are derived from it. In
*gross-up* mode the caller supplies the net amount the issuer wants to end
up with, and the calculator solves for the billed amount that produces it.

All values are :class:`~decimal.Decimal`. Monetary outputs are rounded
half-up to the cent; intermediate products are kept unrounded so the
rounded total is derived from exact tax amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional, Tuple

from . import log
from .constants import LegacyTaxType
from .errors import InvalidTaxConfiguration


CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass(frozen=True)
class TaxRule:
    """A single tax component: whether it applies and at what rate."""

    enabled: bool = False
    rate: Decimal = ZERO


@dataclass(frozen=True)
class TaxConfig:
    """Full tax configuration attached to a document."""

    vat: TaxRule = field(default_factory=TaxRule)
    withholding: TaxRule = field(default_factory=TaxRule)
    gross_up: bool = False


@dataclass(frozen=True)
class TaxBreakdown:
    """Computed tax lines for one document.

    ``subtotal`` is the billed amount before tax lines. In gross-up mode it
    is the solved gross amount, ``total`` is the requested net, and
    ``gross_up_amount`` is ``subtotal - total`` (billed minus net), which is
    negative whenever VAT outweighs withholding.
    """

    subtotal: Decimal
    vat_amount: Decimal
    withholding_amount: Decimal
    total: Decimal
    gross_up_amount: Optional[Decimal] = None


def round_money(amount: Decimal) -> Decimal:
    """Round a monetary value half-up to two decimal places."""

    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def items_subtotal(items: Iterable[Any]) -> Decimal:
    """Sum ``quantity * unit_price`` across line items."""

    total = ZERO
    for item in items:
        total += Decimal(item.quantity) * Decimal(item.unit_price)
    return total


def validate_tax_config(config: TaxConfig) -> None:
    """Reject tax configurations that cannot produce finite amounts.

    Args:
        config (TaxConfig): Configuration about to be used for calculation.

    Raises:
        InvalidTaxConfiguration: If an enabled rate falls outside ``[0, 1]``,
            or if gross-up mode would divide by zero or produce a negative
            gross amount.
    """

    for name, rule in (("VAT", config.vat), ("Withholding", config.withholding)):
        if rule.enabled and not (ZERO <= rule.rate <= ONE):
            log.error("%s rate out of range: %s", name, rule.rate)
            raise InvalidTaxConfiguration(f"{name} rate must be between 0 and 1, got {rule.rate}")

    if not config.gross_up:
        return

    denominator = _gross_up_denominator(config)
    if denominator <= ZERO:
        log.error(
            "Gross-up denominator is %s for VAT=%s WHT=%s",
            denominator,
            config.vat,
            config.withholding,
        )
        raise InvalidTaxConfiguration(
            "Gross-up is impossible with these rates: the billed amount would be infinite or negative"
        )


def _gross_up_denominator(config: TaxConfig) -> Decimal:
    vat_rate = config.vat.rate if config.vat.enabled else ZERO
    wht_rate = config.withholding.rate if config.withholding.enabled else ZERO
    return ONE + vat_rate - wht_rate


def calculate_tax_breakdown(items_subtotal_amount: Decimal, config: TaxConfig) -> TaxBreakdown:
    """Compute VAT, withholding, and totals for a document.

    Negative subtotals are not rejected here; callers validate line items
    before reaching the calculator.

    Args:
        items_subtotal_amount (Decimal): Sum of line items. In gross-up mode
            this is the net amount the issuer wants to receive.
        config (TaxConfig): Tax configuration to apply.

    Returns:
        TaxBreakdown: Rounded breakdown. ``gross_up_amount`` is only set in
            gross-up mode.

    Raises:
        InvalidTaxConfiguration: When :func:`validate_tax_config` rejects the
            configuration.
    """

    validate_tax_config(config)
    amount = Decimal(items_subtotal_amount)
    vat, withholding = config.vat, config.withholding

    if not config.gross_up:
        vat_amount = amount * vat.rate if vat.enabled else ZERO
        withholding_amount = amount * withholding.rate if withholding.enabled else ZERO
        breakdown = TaxBreakdown(
            subtotal=round_money(amount),
            vat_amount=round_money(vat_amount),
            withholding_amount=round_money(withholding_amount),
            total=round_money(amount + vat_amount - withholding_amount),
        )
        log.debug("Calculated tax breakdown %s for subtotal %s", breakdown, amount)
        return breakdown

    # VAT-only and withholding-only are the same formula with the other rate at zero.
    gross_amount = amount / _gross_up_denominator(config)
    vat_amount = gross_amount * vat.rate if vat.enabled else ZERO
    withholding_amount = gross_amount * withholding.rate if withholding.enabled else ZERO

    breakdown = TaxBreakdown(
        subtotal=round_money(gross_amount),
        vat_amount=round_money(vat_amount),
        withholding_amount=round_money(withholding_amount),
        total=round_money(amount),
        gross_up_amount=round_money(gross_amount - amount),
    )
    log.debug("Calculated gross-up breakdown %s for net %s", breakdown, amount)
    return breakdown


def legacy_tax_config(tax_rate: Any, tax_type: Optional[str]) -> TaxConfig:
    """Translate the legacy ``{taxRate, taxType}`` pair into a :class:`TaxConfig`.

    A missing or zero rate yields a configuration with both taxes disabled.
    Unknown tax types are treated as withholding, matching how legacy
    documents were totalled.
    """

    rate = Decimal(str(tax_rate)) if tax_rate not in (None, "") else ZERO
    if rate == ZERO:
        return TaxConfig()
    if tax_type == LegacyTaxType.VAT.value:
        return TaxConfig(vat=TaxRule(enabled=True, rate=rate))
    return TaxConfig(withholding=TaxRule(enabled=True, rate=rate))


def to_legacy_tax(config: TaxConfig) -> Tuple[Decimal, LegacyTaxType]:
    """Collapse a :class:`TaxConfig` into the single-tax pair legacy renderers use.

    VAT takes priority when both taxes are enabled.
    """

    if config.vat.enabled:
        return config.vat.rate, LegacyTaxType.VAT
    if config.withholding.enabled:
        return config.withholding.rate, LegacyTaxType.WITHHOLDING
    return ZERO, LegacyTaxType.WITHHOLDING


__all__ = [
    "TaxRule",
    "TaxConfig",
    "TaxBreakdown",
    "round_money",
    "items_subtotal",
    "validate_tax_config",
    "calculate_tax_breakdown",
    "legacy_tax_config",
    "to_legacy_tax",
]
