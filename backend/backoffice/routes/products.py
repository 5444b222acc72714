# Overview: Flask API routes for the catalog (products, categories, suppliers, customers).

# backend/backoffice/routes/products.py
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import GENERIC_INTERNAL_MESSAGE, ServiceError
from ..extensions import db
from ..services import activity_service, catalog_service
from ..services.activity_service import CATEGORY_CATALOG
from ..decorators import resolve_user


products_bp = Blueprint("products", __name__, url_prefix="/api")


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


# =============================================================================
# PRODUCTS
# =============================================================================

@products_bp.get("/products")
def list_products_route():
    """
    List products.

    Query params:
    - search: name / sku / barcode contains
    - category_id: int
    - low_stock: 1 to keep products at or below min_stock
    - all: 1 to include inactive products
    - page, per_page: optional pagination (default 20, max 100)
    """
    result = catalog_service.list_products(
        search=request.args.get("search") or None,
        category_id=request.args.get("category_id", type=int),
        low_stock=_flag("low_stock"),
        include_inactive=_flag("all"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@products_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.get_product(product_id).to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.get("/products/barcode/<string:barcode>")
def get_product_by_barcode_route(barcode: str):
    try:
        return jsonify({"product": catalog_service.get_product_by_barcode(barcode).to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.post("/products")
@resolve_user
def create_product_route():
    """`stock` in the body is the opening quantity, posted to the ledger."""
    try:
        product = catalog_service.create_product(request.get_json(silent=True) or {}, user_id=g.user_id)
        activity_service.log_activity(
            "PRODUCT_CREATED",
            CATEGORY_CATALOG,
            details=f"{product.name} ({product.sku})",
            entity_type="product",
            entity_id=product.id,
            user_id=g.user_id,
        )
        return jsonify({"product": product.to_dict()}), 201
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to create product")


@products_bp.put("/products/<int:product_id>")
@resolve_user
def update_product_route(product_id: int):
    try:
        product = catalog_service.update_product(product_id, request.get_json(silent=True) or {})
        return jsonify({"product": product.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to update product")


@products_bp.delete("/products/<int:product_id>")
@resolve_user
def delete_product_route(product_id: int):
    try:
        product = catalog_service.deactivate_product(product_id)
        activity_service.log_activity(
            "PRODUCT_DEACTIVATED",
            CATEGORY_CATALOG,
            details=product.name,
            entity_type="product",
            entity_id=product.id,
            user_id=g.user_id,
        )
        return jsonify({"product": product.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# CATEGORIES / SUPPLIERS / CUSTOMERS
# =============================================================================

@products_bp.get("/categories")
def list_categories_route():
    return jsonify({"categories": [c.to_dict() for c in catalog_service.list_categories()]}), 200


@products_bp.post("/categories")
def create_category_route():
    try:
        category = catalog_service.create_category(request.get_json(silent=True) or {})
        return jsonify({"category": category.to_dict()}), 201
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to create category")


@products_bp.get("/suppliers")
def list_suppliers_route():
    suppliers = catalog_service.list_suppliers(include_inactive=_flag("all"))
    return jsonify({"suppliers": [s.to_dict() for s in suppliers]}), 200


@products_bp.post("/suppliers")
def create_supplier_route():
    try:
        supplier = catalog_service.create_supplier(request.get_json(silent=True) or {})
        return jsonify({"supplier": supplier.to_dict()}), 201
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to create supplier")


@products_bp.get("/customers")
def list_customers_route():
    customers = catalog_service.list_customers(search=request.args.get("search") or None)
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@products_bp.post("/customers")
def create_customer_route():
    try:
        customer = catalog_service.create_customer(request.get_json(silent=True) or {})
        return jsonify({"customer": customer.to_dict()}), 201
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to create customer")
