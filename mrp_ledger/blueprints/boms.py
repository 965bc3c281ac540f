"""Bill of materials JSON API."""
from flask import Blueprint, request, jsonify

from mrp_ledger.database import get_session
from mrp_ledger.exceptions import ValidationError
from mrp_ledger.middleware import current_actor, json_payload
from mrp_ledger.services import bom_service

boms_bp = Blueprint('boms', __name__, url_prefix='/api/boms')


def _parse_active(value):
    """'true'/'false' query flag; empty means no filter."""
    if value is None or value == '':
        return None
    value = value.lower()
    if value in ('1', 'true', 'yes', 'active'):
        return True
    if value in ('0', 'false', 'no', 'inactive'):
        return False
    raise ValidationError('active must be true or false', field='active', value=value)


@boms_bp.route('', methods=['POST'])
def create_bom():
    payload = json_payload()
    bom = bom_service.create_bom(
        get_session(),
        product_id=payload.get('product_id'),
        version=payload.get('version'),
        components=payload.get('components'),
        description=payload.get('description'),
        created_by=current_actor(),
    )
    return jsonify(bom), 201


@boms_bp.route('', methods=['GET'])
def list_boms():
    boms = bom_service.list_boms(
        get_session(),
        product_id=request.args.get('product_id') or None,
        active=_parse_active(request.args.get('active')),
    )
    return jsonify(boms)


@boms_bp.route('/<int:bom_id>', methods=['GET'])
def get_bom(bom_id: int):
    include_inactive = request.args.get('include_inactive', '').lower() in ('1', 'true', 'yes')
    return jsonify(bom_service.get_bom(get_session(), bom_id, include_inactive=include_inactive))


@boms_bp.route('/<int:bom_id>/components', methods=['PUT'])
def update_components(bom_id: int):
    payload = json_payload()
    bom = bom_service.update_components(
        get_session(), bom_id, payload.get('components'), updated_by=current_actor()
    )
    return jsonify(bom)


@boms_bp.route('/<int:bom_id>/scale', methods=['GET'])
def scale_bom(bom_id: int):
    return jsonify(bom_service.scale_for_quantity(get_session(), bom_id, request.args.get('quantity')))


@boms_bp.route('/<int:bom_id>/cost-breakdown', methods=['GET'])
def cost_breakdown(bom_id: int):
    return jsonify(bom_service.material_cost_breakdown(get_session(), bom_id, request.args.get('quantity')))


@boms_bp.route('/<int:bom_id>/clone', methods=['POST'])
def clone_bom(bom_id: int):
    payload = json_payload()
    bom = bom_service.clone_bom(
        get_session(),
        bom_id,
        new_version=payload.get('new_version') or payload.get('version'),
        description=payload.get('description'),
        created_by=current_actor(),
    )
    return jsonify(bom), 201


@boms_bp.route('/<int:bom_id>', methods=['DELETE'])
def delete_bom(bom_id: int):
    return jsonify(bom_service.soft_delete_bom(get_session(), bom_id, deleted_by=current_actor()))


@boms_bp.route('/requirements', methods=['GET'])
def material_requirements():
    requirements = bom_service.get_material_requirements(
        get_session(),
        product_id=request.args.get('product_id'),
        quantity=request.args.get('quantity'),
        version=request.args.get('version') or None,
    )
    return jsonify(requirements)
