"""
Sales Service - sale creation, edits, cancellation and returns

WHY: A sale touches several records (sale + items, product stock, promo usage,
the cash session, the activity log). This module fixes the order of those
writes and what happens when one of them fails.

TRANSACTION BOUNDARIES:
- Primary transaction (all-or-nothing): sale row + items + stock ledger
  movements + promo redemption. Any failure, InsufficientStockError included,
  rolls the whole unit back: there are no half-created sales.
- Side effects (best effort, after commit): cash session bookkeeping and the
  activity log. Their failures are logged and reported in
  SaleOutcome.side_effects; they never fail the sale.

Cancellation and returns follow the same split: stock restore + status change
commit together; cash session deductions run afterwards as side effects.

STATUS TRANSITIONS:
    completed          --return-->  partially_returned
    partially_returned --return-->  partially_returned
    completed | partially_returned --cancel (within window)--> cancelled
    cancelled accepts no edits and no returns.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..errors import (
    CancellationWindowError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, Product, PromoCode, Sale, SaleItem, SaleReturn, SaleReturnItem
from ..models.inventory import REASON_CANCELLATION, REASON_RETURN, REASON_SALE, REASON_SALE_EDIT
from ..models.sales import (
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PARTIALLY_RETURNED,
)
from ..time_utils import end_of_day, hours_since, utcnow
from ..validation import MAX_AMOUNT_CENTS, coerce_int
from . import activity_service, cash_session_service, promo_service
from .activity_service import CATEGORY_SALES, SideEffectResult, run_side_effect
from .concurrency import begin_write, lock_for_update, run_with_retry
from .stock_ledger_service import apply_adjustment


logger = logging.getLogger(__name__)


@dataclass
class SaleOutcome:
    """Primary result (the sale) kept apart from auxiliary-effect outcomes."""
    sale: Sale
    replayed: bool = False
    side_effects: list[SideEffectResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.sale.to_dict()
        data["side_effects"] = [s.to_dict() for s in self.side_effects]
        return data


@dataclass
class ReturnOutcome:
    sale_return: SaleReturn
    sale: Sale
    side_effects: list[SideEffectResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "return": self.sale_return.to_dict(),
            "sale": self.sale.to_dict(),
            "side_effects": [s.to_dict() for s in self.side_effects],
        }


@dataclass(frozen=True)
class _LineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int | None
    discount_cents: int


# =============================================================================
# INPUT PARSING (no data store access)
# =============================================================================

def _parse_payment_method(raw) -> str:
    method = (raw or "").strip().lower() if isinstance(raw, str) else ""
    if not method:
        raise ValidationError("Le mode de paiement est requis")
    allowed = current_app.config["PAYMENT_METHODS"]
    if method not in allowed:
        raise ValidationError(
            "Mode de paiement invalide",
            details={"payment_method": method, "allowed": sorted(allowed)},
        )
    return method


def _parse_lines(raw_items) -> list[_LineRequest]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("La vente doit contenir au moins un article")

    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Article invalide", details={"index": index})
        if raw.get("product_id") is None:
            raise ValidationError("product_id est requis", details={"index": index})
        product_id = coerce_int(raw.get("product_id"), "product_id")
        quantity = coerce_int(raw.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("La quantité doit être > 0", details={"index": index})

        unit_price = raw.get("unit_price_cents")
        if unit_price is not None:
            unit_price = coerce_int(unit_price, "unit_price_cents")
            if unit_price < 0 or unit_price > MAX_AMOUNT_CENTS:
                raise ValidationError("Prix unitaire invalide", details={"index": index})

        discount = coerce_int(raw.get("discount_cents", 0) or 0, "discount_cents")
        if discount < 0:
            raise ValidationError("La remise doit être >= 0", details={"index": index})

        lines.append(_LineRequest(product_id, quantity, unit_price, discount))
    return lines


def _is_cash(payment_method: str) -> bool:
    return payment_method in current_app.config["CASH_PAYMENT_METHODS"]


def _tax_for(amount_cents: int) -> int:
    bps = current_app.config.get("DEFAULT_TAX_RATE_BPS", 0) or 0
    return (amount_cents * bps + 5000) // 10000


def _quantities_by_product(pairs) -> "OrderedDict[int, int]":
    """Sum quantities per product; ordered by product id so locks are taken in a stable order."""
    totals: dict[int, int] = {}
    for product_id, quantity in pairs:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return OrderedDict(sorted(totals.items()))


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Vente non trouvée", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    status: str | None = None,
    customer_id: int | None = None,
    limit: int = 200,
) -> list[Sale]:
    q = db.session.query(Sale)
    if start is not None:
        q = q.filter(Sale.sold_at >= start)
    if end is not None:
        q = q.filter(Sale.sold_at <= end_of_day(end))
    if status:
        q = q.filter(Sale.status == status)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    return q.order_by(Sale.sold_at.desc(), Sale.id.desc()).limit(limit).all()


# =============================================================================
# CREATE
# =============================================================================

def _build_items(lines: list[_LineRequest]) -> tuple[list[SaleItem], int]:
    """Resolve products and price the lines. Returns (items, total_cents)."""
    items = []
    total = 0
    for line in lines:
        product = db.session.get(Product, line.product_id)
        if product is None:
            raise NotFoundError("Produit non trouvé", details={"product_id": line.product_id})
        if not product.is_active:
            raise ValidationError("Produit inactif", details={"product_id": product.id})

        unit_price = product.price_cents if line.unit_price_cents is None else line.unit_price_cents
        gross = unit_price * line.quantity
        if line.discount_cents > gross:
            raise ValidationError(
                "La remise dépasse le montant de la ligne",
                details={"product_id": product.id},
            )
        line_total = gross - line.discount_cents
        items.append(SaleItem(
            product_id=product.id,
            quantity=line.quantity,
            unit_price_cents=unit_price,
            discount_cents=line.discount_cents,
            line_total_cents=line_total,
            returned_quantity=0,
        ))
        total += line_total
    return items, total


def _sale_side_effects(sale: Sale, action: str, details: str, user_id: int | None) -> list[SideEffectResult]:
    effects = []
    if _is_cash(sale.payment_method):
        effects.append(_book_cash(sale))
    effects.append(_log(action, sale, details, user_id))
    return effects


def _book_cash(sale: Sale) -> SideEffectResult:
    booked = {}

    def _do():
        booked["session"] = cash_session_service.add_sales_amount(sale.final_cents, sale=sale)

    result = run_side_effect("cash_session", _do, context=f"sale {sale.id}")
    if result.ok and booked.get("session") is None:
        logger.warning("No open cash session: sale %s not booked to a drawer", sale.id)
        return SideEffectResult(name="cash_session", ok=False, error="NoOpenSession")
    return result


def _log(action: str, sale: Sale, details: str, user_id: int | None, amount_cents: int | None = None) -> SideEffectResult:
    entry = activity_service.log_activity(
        action,
        CATEGORY_SALES,
        details=details,
        entity_type="sale",
        entity_id=sale.id,
        amount_cents=sale.final_cents if amount_cents is None else amount_cents,
        user_id=user_id,
    )
    return SideEffectResult(name="activity_log", ok=entry is not None, error=None if entry else "LogWriteFailed")


def _check_replay_matches(existing: Sale, lines, payment_method: str, customer_id, idempotency_key: str) -> None:
    """A replayed key must describe the same sale; anything else is a client bug."""
    requested = _quantities_by_product((line.product_id, line.quantity) for line in lines)
    recorded = _quantities_by_product((item.product_id, item.quantity) for item in existing.items)
    mismatched = []
    if requested != recorded:
        mismatched.append("items")
    if payment_method != existing.payment_method:
        mismatched.append("payment_method")
    if customer_id != existing.customer_id:
        mismatched.append("customer_id")
    for line in lines:
        if line.unit_price_cents is None and not line.discount_cents:
            continue
        if not any(
            item.product_id == line.product_id
            and item.quantity == line.quantity
            and item.discount_cents == line.discount_cents
            and (line.unit_price_cents is None or item.unit_price_cents == line.unit_price_cents)
            for item in existing.items
        ):
            mismatched.append("amounts")
            break
    if mismatched:
        raise ConflictError(
            "Clé d'idempotence déjà utilisée pour une autre vente",
            details={"idempotency_key": idempotency_key, "sale_id": existing.id, "fields": mismatched},
        )


def create_sale(payload: dict, *, user_id: int | None = None, idempotency_key: str | None = None) -> SaleOutcome:
    """
    Create a sale and decrement stock in one transaction.

    Payload: items [{product_id, quantity, unit_price_cents?, discount_cents?}],
    payment_method, customer_id?, promo_code?, notes?

    Raises:
        ValidationError / NotFoundError: bad input (nothing written)
        InsufficientStockError: a product cannot cover the quantity (nothing written)
        Promo*Error: the promo code is not usable (nothing written)
    """
    if not isinstance(payload, dict):
        raise ValidationError("Corps JSON invalide")
    lines = _parse_lines(payload.get("items"))
    payment_method = _parse_payment_method(payload.get("payment_method"))
    customer_id = payload.get("customer_id")
    if customer_id is not None:
        customer_id = coerce_int(customer_id, "customer_id")
    promo_code = payload.get("promo_code") or None
    notes = payload.get("notes")

    def _op():
        begin_write()

        if idempotency_key:
            existing = db.session.query(Sale).filter_by(idempotency_key=idempotency_key).first()
            if existing is not None:
                _check_replay_matches(existing, lines, payment_method, customer_id, idempotency_key)
                db.session.rollback()
                return existing, True

        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise NotFoundError("Client non trouvé", details={"customer_id": customer_id})

        items, total = _build_items(lines)

        discount = 0
        promo = None
        if promo_code:
            promo = promo_service.redeem(promo_code, total)
            discount = promo.discount_cents

        net = total - discount
        tax = _tax_for(net)

        sale = Sale(
            idempotency_key=idempotency_key,
            sold_at=utcnow(),
            customer_id=customer_id,
            user_id=user_id,
            payment_method=payment_method,
            total_cents=total,
            discount_cents=discount,
            tax_cents=tax,
            final_cents=net + tax,
            promo_code_id=promo.promo_code_id if promo else None,
            promo_code=promo.code if promo else None,
            status=SALE_STATUS_COMPLETED,
            notes=notes,
        )
        sale.items = items
        db.session.add(sale)
        db.session.flush()
        sale.reference = f"V-{sale.id:06d}"

        for product_id, quantity in _quantities_by_product((i.product_id, i.quantity) for i in items).items():
            apply_adjustment(
                product_id,
                -quantity,
                REASON_SALE,
                sale.id,
                user_id=user_id,
                notes=f"Vente {sale.reference}",
            )

        db.session.commit()
        return sale, False

    sale, replayed = run_with_retry(_op)
    if replayed:
        logger.info("Sale creation replayed for idempotency key %s (sale %s)", idempotency_key, sale.id)
        return SaleOutcome(sale=sale, replayed=True)

    logger.info("Sale %s created: %s items, final=%s cents", sale.id, len(sale.items), sale.final_cents)
    effects = _sale_side_effects(
        sale,
        "SALE_CREATED",
        f"Vente {sale.reference} ({sale.payment_method})",
        user_id,
    )
    return SaleOutcome(sale=sale, side_effects=effects)


# =============================================================================
# UPDATE
# =============================================================================

def _locked_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFoundError("Vente non trouvée", details={"sale_id": sale_id})
    return sale


def _recompute_discount(sale: Sale, total: int) -> int:
    if not sale.promo_code_id:
        return 0
    promo = db.session.get(PromoCode, sale.promo_code_id)
    if promo is None:
        return min(sale.discount_cents, total)
    if total < (promo.min_amount_cents or 0):
        return 0
    return promo_service.compute_discount(promo, total)


def update_sale(sale_id: int, payload: dict, *, user_id: int | None = None) -> SaleOutcome:
    """
    Edit notes, payment method and (while untouched by returns) the items.

    Item edits are reconciled per product as stock deltas with reason
    `sale_edit`, in the same transaction as the new items and amounts.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Corps JSON invalide")
    lines = _parse_lines(payload["items"]) if "items" in payload else None
    payment_method = _parse_payment_method(payload["payment_method"]) if "payment_method" in payload else None

    def _op():
        begin_write()
        sale = _locked_sale(sale_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise ConflictError("Vente annulée: modification impossible", details={"sale_id": sale_id})

        before = (sale.payment_method, sale.final_cents, sale.cash_session_id)

        if "notes" in payload:
            sale.notes = payload.get("notes")
        if payment_method is not None:
            sale.payment_method = payment_method

        if lines is not None:
            if sale.status != SALE_STATUS_COMPLETED or any(i.returned_quantity for i in sale.items):
                raise ConflictError(
                    "Les articles d'une vente avec retours ne peuvent pas être modifiés",
                    details={"sale_id": sale_id},
                )
            old_qty = _quantities_by_product((i.product_id, i.quantity) for i in sale.items)
            new_items, total = _build_items(lines)
            new_qty = _quantities_by_product((i.product_id, i.quantity) for i in new_items)

            for product_id in sorted(set(old_qty) | set(new_qty)):
                delta = old_qty.get(product_id, 0) - new_qty.get(product_id, 0)
                if delta:
                    apply_adjustment(
                        product_id,
                        delta,
                        REASON_SALE_EDIT,
                        sale.id,
                        user_id=user_id,
                        notes=f"Modification vente {sale.reference}",
                    )

            sale.items.clear()
            db.session.flush()
            sale.items.extend(new_items)

            discount = _recompute_discount(sale, total)
            net = total - discount
            tax = _tax_for(net)
            sale.total_cents = total
            sale.discount_cents = discount
            sale.tax_cents = tax
            sale.final_cents = net + tax

        db.session.commit()
        return sale, before

    sale, (old_method, old_final, old_session_id) = run_with_retry(_op)

    effects = []
    cash_changed = _is_cash(old_method) != _is_cash(sale.payment_method) or old_final != sale.final_cents
    if cash_changed:
        # Re-book only once the old amount has left its drawer
        unbooked = True
        if old_session_id is not None:
            result = _unbook_cash(sale, old_final, old_session_id, unlink=True)
            effects.append(result)
            unbooked = result.ok
        if unbooked and _is_cash(sale.payment_method):
            effects.append(_book_cash(sale))
    effects.append(_log("SALE_UPDATED", sale, f"Vente {sale.reference} modifiée", user_id))
    return SaleOutcome(sale=sale, side_effects=effects)


def _unbook_cash(
    sale: Sale,
    amount_cents: int,
    session_id: int,
    *,
    count_sale: bool = True,
    unlink: bool = False,
) -> SideEffectResult:
    removed = {}

    def _do():
        removed["session"] = cash_session_service.remove_sales_amount(
            amount_cents,
            session_id=session_id,
            count_sale=count_sale,
        )
        if unlink and removed["session"] is not None:
            sale.cash_session_id = None
            db.session.commit()

    result = run_side_effect("cash_session", _do, context=f"sale {sale.id}")
    if result.ok and removed.get("session") is None:
        logger.warning("Cash session %s is closed: amount of sale %s not deducted", session_id, sale.id)
        return SideEffectResult(name="cash_session", ok=False, error="SessionClosed")
    return result


# =============================================================================
# CANCEL
# =============================================================================

def cancel_sale(sale_id: int, *, user_id: int | None = None, reason: str | None = None) -> SaleOutcome:
    """
    Cancel a sale within the configured window (24h by default).

    Restores stock for every unit not already returned (reason `cancellation`,
    keyed on the sale id so a retried cancel cannot restock twice).

    Raises:
        NotFoundError: unknown sale
        ConflictError: already cancelled
        CancellationWindowError: older than the window
    """
    window = current_app.config["SALE_CANCEL_WINDOW_HOURS"]

    def _op():
        begin_write()
        sale = _locked_sale(sale_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise ConflictError("Vente déjà annulée", details={"sale_id": sale_id})
        if hours_since(sale.sold_at) > window:
            raise CancellationWindowError(
                f"Impossible d'annuler une vente après {window} heures",
                details={"sale_id": sale_id, "window_hours": window},
            )

        restock = _quantities_by_product(
            (i.product_id, i.returnable_quantity) for i in sale.items if i.returnable_quantity > 0
        )
        for product_id, quantity in restock.items():
            apply_adjustment(
                product_id,
                quantity,
                REASON_CANCELLATION,
                sale.id,
                user_id=user_id,
                notes=f"Annulation vente {sale.reference}",
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = user_id
        sale.cancel_reason = reason
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Sale %s cancelled", sale.id)

    effects = []
    if sale.cash_session_id is not None and _is_cash(sale.payment_method):
        # Cash refunds from earlier returns were already taken out of the drawer
        refunded = sum(r.refund_cents for r in sale.returns)
        effects.append(_unbook_cash(sale, sale.final_cents - refunded, sale.cash_session_id))
    effects.append(_log("SALE_CANCELLED", sale, f"Vente {sale.reference} annulée", user_id))
    return SaleOutcome(sale=sale, side_effects=effects)


# =============================================================================
# RETURNS
# =============================================================================

def _parse_return_items(raw_items) -> list[tuple[int, int, str | None]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Le retour doit contenir au moins un article")

    parsed = []
    seen = set()
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Article invalide", details={"index": index})
        raw_id = raw.get("item_id", raw.get("sale_item_id"))
        if raw_id is None:
            raise ValidationError("item_id est requis", details={"index": index})
        item_id = coerce_int(raw_id, "item_id")
        quantity = coerce_int(raw.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("La quantité retournée doit être > 0", details={"item_id": item_id})
        if item_id in seen:
            raise ValidationError("Article en double dans le retour", details={"item_id": item_id})
        seen.add(item_id)
        parsed.append((item_id, quantity, raw.get("reason")))
    return parsed


def _paid_shares(sale: Sale) -> dict[int, int]:
    """
    Split what the customer paid (final_cents, after promo and tax) across the
    lines in proportion to their line totals.

    Cumulative rounding keeps the shares summing exactly to final_cents.
    """
    items = sorted(sale.items, key=lambda i: i.id)
    total = sum(i.line_total_cents for i in items)
    if total <= 0:
        return {i.id: 0 for i in items}

    shares = {}
    running = 0
    allocated = 0
    for item in items:
        running += item.line_total_cents
        upto = (sale.final_cents * running * 2 + total) // (2 * total)
        shares[item.id] = upto - allocated
        allocated = upto
    return shares


def _line_refund(item: SaleItem, share: int, quantity: int, already_refunded: int) -> int:
    """Pro rata of the line's paid share; the last units take the remainder."""
    remaining = max(0, share - already_refunded)
    if quantity >= item.returnable_quantity:
        return remaining
    part = (share * quantity * 2 + item.quantity) // (2 * item.quantity)
    return min(part, remaining)


def process_return(sale_id: int, payload: dict, *, user_id: int | None = None) -> ReturnOutcome:
    """
    Take back part of a sale.

    Payload: items [{item_id, quantity, reason?}], reason.
    Cumulative returned quantity per line never exceeds the quantity sold.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Corps JSON invalide")
    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Le motif du retour est requis")
    requested = _parse_return_items(payload.get("items"))

    def _op():
        begin_write()
        sale = _locked_sale(sale_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise ConflictError("Vente annulée: retour impossible", details={"sale_id": sale_id})

        by_id = {item.id: item for item in sale.items}
        for item_id, quantity, _ in requested:
            item = by_id.get(item_id)
            if item is None:
                raise ValidationError("Article absent de cette vente", details={"item_id": item_id})
            if quantity > item.returnable_quantity:
                raise ValidationError(
                    "Quantité retournée supérieure à la quantité vendue",
                    details={
                        "item_id": item_id,
                        "requested": quantity,
                        "returnable": item.returnable_quantity,
                    },
                )

        refunded_by_item: dict[int, int] = {}
        for previous in sale.returns:
            for row in previous.items:
                refunded_by_item[row.sale_item_id] = refunded_by_item.get(row.sale_item_id, 0) + row.refund_cents

        sale_return = SaleReturn(sale_id=sale.id, reason=reason.strip(), user_id=user_id)
        db.session.add(sale_return)
        db.session.flush()

        shares = _paid_shares(sale)
        refund_total = 0
        for item_id, quantity, line_reason in requested:
            item = by_id[item_id]
            refund = _line_refund(item, shares[item_id], quantity, refunded_by_item.get(item_id, 0))
            sale_return.items.append(SaleReturnItem(
                sale_item_id=item.id,
                product_id=item.product_id,
                quantity=quantity,
                refund_cents=refund,
                reason=line_reason,
            ))
            item.returned_quantity = (item.returned_quantity or 0) + quantity
            refund_total += refund

        # Rows never exceed their line's share, so refunds never exceed final_cents
        sale_return.refund_cents = refund_total

        restock = _quantities_by_product((by_id[i].product_id, q) for i, q, _ in requested)
        for product_id, quantity in restock.items():
            apply_adjustment(
                product_id,
                quantity,
                REASON_RETURN,
                sale_return.id,
                user_id=user_id,
                notes=f"Retour vente {sale.reference}: {sale_return.reason}",
            )

        sale.status = SALE_STATUS_PARTIALLY_RETURNED
        db.session.commit()
        return sale_return, sale

    sale_return, sale = run_with_retry(_op)
    logger.info("Return %s recorded for sale %s: refund=%s cents", sale_return.id, sale.id, sale_return.refund_cents)

    effects = []
    if sale.cash_session_id is not None and _is_cash(sale.payment_method) and sale_return.refund_cents:
        effects.append(_unbook_cash(sale, sale_return.refund_cents, sale.cash_session_id, count_sale=False))
    effects.append(_log(
        "SALE_RETURN",
        sale,
        f"Retour sur vente {sale.reference}: {sale_return.reason}",
        user_id,
        amount_cents=sale_return.refund_cents,
    ))
    return ReturnOutcome(sale_return=sale_return, sale=sale, side_effects=effects)
