# Overview: Stock-threshold notifications (batch job) and the notification read API.

from __future__ import annotations

import logging
import math

from flask import current_app

from ..errors import NotFoundError
from ..extensions import db
from ..models import Notification, Product
from ..time_utils import utcnow


logger = logging.getLogger(__name__)


TYPE_STOCK_OUT = "stock_out"
TYPE_STOCK_CRITICAL = "stock_critical"
TYPE_STOCK_LOW = "stock_low"

_TEMPLATES = {
    TYPE_STOCK_OUT: ("Rupture de stock", 'Le produit "{name}" est en rupture de stock', "critical"),
    TYPE_STOCK_CRITICAL: (
        "Stock critique",
        'Le produit "{name}" est en stock critique ({stock} unités restantes)',
        "high",
    ),
    TYPE_STOCK_LOW: (
        "Stock faible",
        'Le produit "{name}" est en stock faible ({stock} unités restantes)',
        "normal",
    ),
}


def classify_stock(stock: int, min_stock: int, critical_ratio: float = 0.25) -> str | None:
    """
    stock_out:      stock == 0
    stock_critical: stock <= max(1, floor(min_stock * ratio))
    stock_low:      stock <= min_stock
    Products without a threshold (min_stock == 0) only raise stock_out.
    """
    if stock <= 0:
        return TYPE_STOCK_OUT
    if min_stock <= 0:
        return None
    if stock <= max(1, math.floor(min_stock * critical_ratio)):
        return TYPE_STOCK_CRITICAL
    if stock <= min_stock:
        return TYPE_STOCK_LOW
    return None


def check_stock_levels() -> list[Notification]:
    """
    Scan active products and create one notification per product/level.

    A product that already has an unread notification of the same type is
    skipped, so running the job repeatedly does not pile up duplicates.
    """
    ratio = current_app.config.get("STOCK_CRITICAL_RATIO", 0.25)
    created = []

    products = db.session.query(Product).filter(Product.is_active.is_(True)).order_by(Product.id).all()
    for product in products:
        kind = classify_stock(product.stock, product.min_stock, ratio)
        if kind is None:
            continue

        existing = db.session.query(Notification).filter_by(
            product_id=product.id,
            type=kind,
            is_read=False,
        ).first()
        if existing is not None:
            logger.debug("Unread %s notification already exists for product %s", kind, product.id)
            continue

        title, template, priority = _TEMPLATES[kind]
        notification = Notification(
            type=kind,
            title=title,
            message=template.format(name=product.name, stock=product.stock),
            priority=priority,
            product_id=product.id,
            payload={
                "product_name": product.name,
                "sku": product.sku,
                "stock": product.stock,
                "min_stock": product.min_stock,
            },
        )
        db.session.add(notification)
        created.append(notification)

    db.session.commit()
    logger.info("Stock check: %s products scanned, %s notifications created", len(products), len(created))
    return created


def list_notifications(*, unread_only: bool = False, limit: int = 100) -> list[Notification]:
    q = db.session.query(Notification)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count() -> int:
    return db.session.query(Notification).filter(Notification.is_read.is_(False)).count()


def mark_read(notification_id: int) -> Notification:
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification non trouvée", details={"notification_id": notification_id})
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.session.commit()
    return notification
