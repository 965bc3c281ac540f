"""Product registry JSON API."""
from flask import Blueprint, request, jsonify

from mrp_ledger.database import get_session
from mrp_ledger.middleware import current_actor, json_payload
from mrp_ledger.services import product_service

products_bp = Blueprint('products', __name__, url_prefix='/api/products')


@products_bp.route('', methods=['POST'])
def create_product():
    payload = json_payload()
    product = product_service.create_product(
        get_session(),
        name=payload.get('name'),
        sku=payload.get('sku'),
        product_type=payload.get('product_type', 'raw_material'),
        unit_of_measure=payload.get('unit_of_measure', 'unit'),
        category=payload.get('category'),
        cost_price=payload.get('cost_price', 0),
        reorder_level=payload.get('reorder_level', 0),
        opening_stock=payload.get('opening_stock'),
        created_by=current_actor(),
    )
    return jsonify(product), 201


@products_bp.route('', methods=['GET'])
def list_products():
    include_inactive = request.args.get('include_inactive', '').lower() in ('1', 'true', 'yes')
    products = product_service.list_products(
        get_session(),
        product_type=request.args.get('product_type') or None,
        include_inactive=include_inactive,
    )
    return jsonify(products)


@products_bp.route('/<int:product_id>', methods=['GET'])
def get_product(product_id: int):
    return jsonify(product_service.get_product(get_session(), product_id))


@products_bp.route('/<int:product_id>', methods=['PATCH'])
def update_product(product_id: int):
    product = product_service.update_product(
        get_session(), product_id, json_payload(), updated_by=current_actor()
    )
    return jsonify(product)


@products_bp.route('/<int:product_id>', methods=['DELETE'])
def deactivate_product(product_id: int):
    product = product_service.deactivate_product(
        get_session(), product_id, deactivated_by=current_actor()
    )
    return jsonify(product)
