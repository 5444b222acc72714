# backend/backoffice/services/catalog_service.py
"""
Catalog Service: products, categories, suppliers, customers.

STOCK: product creation accepts an initial quantity, which is posted to the
stock ledger as an `initial` movement in the same transaction. Product updates
never touch stock; use the inventory endpoints for that.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Category, Customer, Product, Supplier
from ..models.inventory import REASON_INITIAL
from ..validation import ModelValidationPolicy, enforce_rules_amounts, require_int, validate_payload
from .concurrency import begin_write, run_with_retry
from .stock_ledger_service import apply_adjustment


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "sku",
        "barcode",
        "description",
        "price_cents",
        "cost_price_cents",
        "min_stock",
        "category_id",
        "supplier_id",
        "is_active",
    },
    required_on_create={"name", "sku", "price_cents"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact_name", "phone", "email", "address", "is_active"},
    required_on_create={"name"},
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "loyalty_card"},
    required_on_create={"name"},
)


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional filters and pagination.

    - search: case-insensitive match on name, sku or barcode
    - low_stock: only products at or below their min_stock
    """
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            Product.name.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.barcode.ilike(pattern),
        ))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if low_stock:
        q = q.filter(Product._stock <= Product.min_stock)

    base_query = q.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Produit non trouvé", details={"product_id": product_id})
    return product


def get_product_by_barcode(barcode: str) -> Product:
    product = db.session.query(Product).filter_by(barcode=barcode.strip(), is_active=True).first()
    if product is None:
        raise NotFoundError("Produit non trouvé", details={"barcode": barcode})
    return product


def _check_references(patch: dict) -> None:
    if patch.get("category_id") is not None and db.session.get(Category, patch["category_id"]) is None:
        raise NotFoundError("Catégorie non trouvée", details={"category_id": patch["category_id"]})
    if patch.get("supplier_id") is not None and db.session.get(Supplier, patch["supplier_id"]) is None:
        raise NotFoundError("Fournisseur non trouvé", details={"supplier_id": patch["supplier_id"]})
    if "min_stock" in patch and patch["min_stock"] is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock doit être >= 0")
    enforce_rules_amounts(patch, "price_cents", "cost_price_cents")


def _check_unique(patch: dict, product_id: int | None = None) -> None:
    for field in ("sku", "barcode"):
        value = patch.get(field)
        if not value:
            continue
        q = db.session.query(Product).filter(getattr(Product, field) == value)
        if product_id is not None:
            q = q.filter(Product.id != product_id)
        if q.first() is not None:
            raise ConflictError(f"{field} déjà utilisé", details={field: value})


def create_product(payload: dict, *, user_id: int | None = None) -> Product:
    """
    Create a product. `stock` in the payload is the opening quantity and goes
    through the ledger; it is not a column write.
    """
    payload = dict(payload or {})
    initial_stock = require_int(payload, "stock", minimum=0, default=0)
    payload.pop("stock", None)

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    if patch.get("barcode") == "":
        patch["barcode"] = None
    _check_references(patch)

    def _op():
        begin_write()
        _check_unique(patch)
        product = Product(**patch)
        db.session.add(product)
        db.session.flush()
        if initial_stock:
            apply_adjustment(
                product.id,
                initial_stock,
                REASON_INITIAL,
                user_id=user_id,
                notes="Stock initial",
            )
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, payload: dict) -> Product:
    payload = dict(payload or {})
    if "stock" in payload:
        raise ValidationError("Le stock se modifie via les ajustements d'inventaire")

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    if patch.get("barcode") == "":
        patch["barcode"] = None
    _check_references(patch)

    def _op():
        begin_write()
        product = get_product(product_id)
        _check_unique(patch, product_id=product_id)
        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def deactivate_product(product_id: int) -> Product:
    """Soft delete: sales and movements keep referencing the row."""
    product = get_product(product_id)
    product.is_active = False
    db.session.commit()
    return product


# =============================================================================
# CATEGORIES / SUPPLIERS
# =============================================================================

def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


def create_category(payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    if db.session.query(Category).filter(Category.name == patch["name"]).first() is not None:
        raise ConflictError("Cette catégorie existe déjà", details={"name": patch["name"]})
    category = Category(**patch)
    db.session.add(category)
    db.session.commit()
    return category


def list_suppliers(include_inactive: bool = False) -> list[Supplier]:
    q = db.session.query(Supplier)
    if not include_inactive:
        q = q.filter(Supplier.is_active.is_(True))
    return q.order_by(Supplier.name.asc()).all()


def create_supplier(payload: dict) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    if db.session.query(Supplier).filter(Supplier.name == patch["name"]).first() is not None:
        raise ConflictError("Ce fournisseur existe déjà", details={"name": patch["name"]})
    supplier = Supplier(**patch)
    db.session.add(supplier)
    db.session.commit()
    return supplier


# =============================================================================
# CUSTOMERS
# =============================================================================

def list_customers(search: str | None = None, limit: int = 100) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            Customer.name.ilike(pattern),
            Customer.phone.ilike(pattern),
            Customer.loyalty_card.ilike(pattern),
        ))
    return q.order_by(Customer.name.asc()).limit(limit).all()


def create_customer(payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    for field in ("phone", "email", "loyalty_card"):
        if patch.get(field) == "":
            patch[field] = None
    for field in ("phone", "loyalty_card"):
        value = patch.get(field)
        if value and db.session.query(Customer).filter(getattr(Customer, field) == value).first() is not None:
            raise ConflictError(f"{field} déjà utilisé", details={field: value})
    customer = Customer(**patch)
    db.session.add(customer)
    db.session.commit()
    return customer
