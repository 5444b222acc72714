# Overview: Stock ledger accessor; the single writer of Product.stock.

"""
Stock Ledger Invariants (authoritative)

- Product.stock is the materialized running sum of InventoryMovement.quantity_delta.
- Every change to Product.stock goes through apply_adjustment() and appends
  exactly one InventoryMovement in the same DB transaction. Nothing else in
  the code base writes the stock column.
- Movements are append-only (enforced by mapper events on the model).
- Sale-driven and other strict decrements fail with InsufficientStockError
  rather than going below zero. Only the explicit "set"/"remove" adjustment
  flows clamp at zero.
- Document-driven movements (sale, cancellation, return) carry an
  idempotency key (reason:source_ref:product_id). Replaying a key returns the
  recorded result and does not apply the delta again.
- Concurrency: the product row is locked (FOR UPDATE / BEGIN IMMEDIATE on
  SQLite) and versioned, so two writers cannot both act on the same read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product, Replenishment, Supplier
from ..models.inventory import (
    MOVEMENT_REASONS,
    REASON_ADJUSTMENT,
    REASON_CANCELLATION,
    REASON_REPLENISHMENT,
    REASON_RETURN,
    REASON_SALE,
)
from ..time_utils import end_of_day
from .concurrency import begin_write, lock_for_update, run_with_retry


KEYED_REASONS = {REASON_SALE, REASON_CANCELLATION, REASON_RETURN}

ADJUST_ADD = "add"
ADJUST_REMOVE = "remove"
ADJUST_SET = "set"


@dataclass(frozen=True)
class AdjustmentResult:
    product_id: int
    previous_stock: int
    new_stock: int
    quantity_delta: int
    movement_id: int
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "quantity_delta": self.quantity_delta,
            "movement_id": self.movement_id,
            "replayed": self.replayed,
        }


def movement_key(reason: str, source_ref, product_id: int) -> str:
    return f"{reason}:{source_ref}:{product_id}"


def _result_from_movement(movement: InventoryMovement, replayed: bool) -> AdjustmentResult:
    return AdjustmentResult(
        product_id=movement.product_id,
        previous_stock=movement.previous_stock,
        new_stock=movement.new_stock,
        quantity_delta=movement.quantity_delta,
        movement_id=movement.id,
        replayed=replayed,
    )


def _load_product_locked(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError("Produit non trouvé", details={"product_id": product_id})
    return product


def apply_adjustment(
    product_id: int,
    delta: int,
    reason: str,
    source_ref=None,
    *,
    user_id: int | None = None,
    notes: str | None = None,
    clamp: bool = False,
    idempotency_key: str | None = None,
) -> AdjustmentResult:
    """
    Core ledger write without transaction handling: no begin, no commit.

    Callers that compose several writes into one unit (sale creation,
    cancellation, returns) call this inside their own transaction.
    """
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"Motif de mouvement inconnu: {reason}")
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("La quantité doit être un entier")

    if idempotency_key is None and source_ref is not None and reason in KEYED_REASONS:
        idempotency_key = movement_key(reason, source_ref, product_id)

    if idempotency_key is not None:
        existing = db.session.query(InventoryMovement).filter_by(idempotency_key=idempotency_key).first()
        if existing is not None:
            if existing.product_id != product_id or existing.quantity_delta != delta:
                raise ConflictError(
                    "Clé d'idempotence déjà utilisée pour un autre mouvement",
                    details={"idempotency_key": idempotency_key},
                )
            return _result_from_movement(existing, replayed=True)

    product = _load_product_locked(product_id)

    previous = product.stock
    new_stock = previous + delta
    if new_stock < 0:
        if not clamp:
            raise InsufficientStockError(
                product_id=product.id,
                requested=-delta,
                available=previous,
                product_name=product.name,
            )
        new_stock = 0
        delta = -previous

    product._stock = new_stock

    movement = InventoryMovement(
        product_id=product_id,
        quantity_delta=delta,
        previous_stock=previous,
        new_stock=new_stock,
        reason=reason,
        source_ref=str(source_ref) if source_ref is not None else None,
        idempotency_key=idempotency_key,
        notes=notes,
        user_id=user_id,
    )
    db.session.add(movement)
    db.session.flush()

    return _result_from_movement(movement, replayed=False)


def adjust(
    product_id: int,
    delta: int,
    reason: str,
    source_ref=None,
    *,
    user_id: int | None = None,
    notes: str | None = None,
    clamp: bool = False,
) -> AdjustmentResult:
    """
    Public contract: adjust(productId, delta, reason, sourceRefId) -> {previousStock, newStock}.

    Runs in its own transaction with lock acquisition and retry.
    """
    def _op():
        begin_write()
        result = apply_adjustment(
            product_id,
            delta,
            reason,
            source_ref,
            user_id=user_id,
            notes=notes,
            clamp=clamp,
        )
        db.session.commit()
        return result

    return run_with_retry(_op)


def get_stock(product_id: int) -> int:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Produit non trouvé", details={"product_id": product_id})
    return product.stock


def set_stock(
    product_id: int,
    new_stock: int,
    reason: str,
    *,
    notes: str | None = None,
    user_id: int | None = None,
) -> tuple[Product, AdjustmentResult]:
    """
    Direct-set adjustment (physical inventory). The target value is turned into
    a delta against the locked current stock, so it is still one ledger entry.
    Negative targets clamp to zero.
    """
    target = max(0, new_stock)
    label = f"Ajustement: {reason}"
    movement_notes = f"{label} - {notes}" if notes else label

    def _op():
        begin_write()
        product = _load_product_locked(product_id)
        result = apply_adjustment(
            product_id,
            target - product.stock,
            REASON_ADJUSTMENT,
            user_id=user_id,
            notes=movement_notes,
            clamp=True,
        )
        db.session.commit()
        return product, result

    return run_with_retry(_op)


def bulk_adjust(adjustments: list[dict], *, user_id: int | None = None) -> list[dict]:
    """
    Apply add/remove/set rows. Rows fail independently (unknown product,
    bad type, bad quantity) and are reported per row; valid rows are
    committed together. remove/set clamp at zero.
    """
    def _op():
        begin_write()
        results = []
        for row in adjustments:
            product_id = row.get("product_id")
            kind = row.get("type")
            quantity = row.get("adjustment")
            reason = row.get("reason") or "Ajustement groupé"

            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
                results.append({"product_id": product_id, "success": False, "error": "Quantité invalide"})
                continue
            if kind not in (ADJUST_ADD, ADJUST_REMOVE, ADJUST_SET):
                results.append({"product_id": product_id, "success": False, "error": "Type d'ajustement invalide"})
                continue
            product = db.session.get(Product, product_id) if isinstance(product_id, int) else None
            if product is None:
                results.append({"product_id": product_id, "success": False, "error": "Produit non trouvé"})
                continue

            if kind == ADJUST_ADD:
                delta = quantity
            elif kind == ADJUST_REMOVE:
                delta = -quantity
            else:
                delta = quantity - product.stock

            result = apply_adjustment(
                product_id,
                delta,
                REASON_ADJUSTMENT,
                user_id=user_id,
                notes=f"Ajustement ({kind}): {reason}",
                clamp=True,
            )
            results.append({
                "product_id": product_id,
                "success": True,
                "previous_stock": result.previous_stock,
                "new_stock": result.new_stock,
                "adjustment": quantity,
            })
        db.session.commit()
        return results

    return run_with_retry(_op)


def receive(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    supplier_id: int | None = None,
    delivery_cost_cents: int = 0,
    receipt_number: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Replenishment:
    """Record goods received and post the matching `replenishment` movement."""
    if quantity <= 0:
        raise ValidationError("La quantité doit être > 0")

    def _op():
        begin_write()
        if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
            raise NotFoundError("Fournisseur non trouvé", details={"supplier_id": supplier_id})

        replenishment = Replenishment(
            product_id=product_id,
            supplier_id=supplier_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            delivery_cost_cents=delivery_cost_cents,
            total_cost_cents=quantity * unit_cost_cents + delivery_cost_cents,
            receipt_number=receipt_number,
            notes=notes,
            user_id=user_id,
        )
        # Product existence is checked by the ledger write below
        _load_product_locked(product_id)
        db.session.add(replenishment)
        db.session.flush()

        apply_adjustment(
            product_id,
            quantity,
            REASON_REPLENISHMENT,
            f"replenishment:{replenishment.id}",
            user_id=user_id,
            notes=f"Ravitaillement: {receipt_number or 'N/A'}",
        )
        db.session.commit()
        return replenishment

    return run_with_retry(_op)


def list_movements(
    *,
    product_id: int | None = None,
    reason: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    """Newest first. `end` is inclusive of the whole day."""
    q = db.session.query(InventoryMovement)
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if reason:
        q = q.filter(InventoryMovement.reason == reason)
    if start is not None:
        q = q.filter(InventoryMovement.occurred_at >= start)
    if end is not None:
        q = q.filter(InventoryMovement.occurred_at <= end_of_day(end))
    return q.order_by(
        InventoryMovement.occurred_at.desc(),
        InventoryMovement.id.desc(),
    ).limit(limit).all()


def list_replenishments(
    *,
    supplier_id: int | None = None,
    receipt_number: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Replenishment]:
    q = db.session.query(Replenishment)
    if supplier_id is not None:
        q = q.filter(Replenishment.supplier_id == supplier_id)
    if receipt_number:
        q = q.filter(Replenishment.receipt_number.contains(receipt_number))
    if start is not None:
        q = q.filter(Replenishment.created_at >= start)
    if end is not None:
        q = q.filter(Replenishment.created_at <= end_of_day(end))
    return q.order_by(Replenishment.created_at.desc(), Replenishment.id.desc()).all()
