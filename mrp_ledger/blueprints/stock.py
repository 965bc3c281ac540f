"""Stock ledger and inventory analysis JSON API."""
from datetime import datetime

from flask import Blueprint, request, jsonify

from mrp_ledger.database import get_session
from mrp_ledger.exceptions import ValidationError
from mrp_ledger.middleware import current_actor, json_payload
from mrp_ledger.services import stock_ledger_service, inventory_analysis_service
from mrp_ledger.services.cache_service import cached_report
from mrp_ledger.services.queries import DateRange, MovementQuery, StockLevelQuery, ValuationQuery

stock_bp = Blueprint('stock', __name__, url_prefix='/api/stock')

CACHE_MODULE = 'stock'


@stock_bp.route('/movements', methods=['POST'])
def record_movement():
    payload = json_payload()
    movement = stock_ledger_service.record_movement(
        get_session(),
        product_id=payload.get('product_id'),
        movement_type=payload.get('movement_type'),
        quantity=payload.get('quantity'),
        reference_type=payload.get('reference_type'),
        reference_id=payload.get('reference_id'),
        reason=payload.get('reason'),
        recorded_by=current_actor(),
        notes=payload.get('notes'),
        location=payload.get('location'),
    )
    return jsonify(movement), 201


@stock_bp.route('/movements', methods=['GET'])
def list_movements():
    query = MovementQuery.from_args(request.args)
    return jsonify(stock_ledger_service.get_movements(get_session(), query))


@stock_bp.route('/adjustments', methods=['POST'])
def adjust_stock():
    payload = json_payload()
    movement = stock_ledger_service.perform_adjustment(
        get_session(),
        product_id=payload.get('product_id'),
        delta=payload.get('delta'),
        reason=payload.get('reason'),
        notes=payload.get('notes'),
        performed_by=current_actor(),
    )
    return jsonify(movement), 201


@stock_bp.route('/transfers', methods=['POST'])
def transfer_stock():
    payload = json_payload()
    transfer = stock_ledger_service.transfer_stock(
        get_session(),
        product_id=payload.get('product_id'),
        from_location=payload.get('from_location'),
        to_location=payload.get('to_location'),
        quantity=payload.get('quantity'),
        performed_by=current_actor(),
    )
    return jsonify(transfer), 201


@stock_bp.route('/consumptions', methods=['POST'])
def consume_materials():
    payload = json_payload()
    consumption = stock_ledger_service.consume_materials(
        get_session(),
        mo_id=payload.get('mo_id'),
        lines=payload.get('lines'),
        consumed_by=current_actor(),
    )
    return jsonify(consumption), 201


@stock_bp.route('/receipts', methods=['POST'])
def receive_production():
    payload = json_payload()
    receipt = stock_ledger_service.receive_production(
        get_session(),
        mo_id=payload.get('mo_id'),
        product_id=payload.get('product_id'),
        quantity_produced=payload.get('quantity_produced'),
        quality_status=payload.get('quality_status'),
        received_by=current_actor(),
    )
    return jsonify(receipt), 201 if receipt['stock_updated'] else 200


@stock_bp.route('/availability', methods=['POST'])
def check_availability():
    payload = json_payload()
    requirements = payload.get('requirements')
    if not isinstance(requirements, list) or not requirements:
        raise ValidationError('requirements must be a non-empty list', field='requirements')
    return jsonify(stock_ledger_service.check_availability(get_session(), requirements))


@stock_bp.route('/audit-trail/<int:product_id>', methods=['GET'])
def audit_trail(product_id: int):
    date_range = DateRange.from_args(request.args)
    return jsonify(stock_ledger_service.get_audit_trail(get_session(), product_id, date_range))


@stock_bp.route('/levels', methods=['GET'])
def stock_levels():
    query = StockLevelQuery.from_args(request.args)
    return jsonify(stock_ledger_service.get_current_stock_levels(get_session(), query))


@stock_bp.route('/valuation', methods=['GET'])
def stock_valuation():
    query = ValuationQuery.from_args(request.args)
    valuation = cached_report(
        CACHE_MODULE,
        f"valuation:{query.cache_key}",
        lambda: stock_ledger_service.get_stock_valuation(get_session(), query),
    )
    return jsonify(valuation)


@stock_bp.route('/aging', methods=['GET'])
def inventory_aging():
    periods = request.args.get('periods') or None
    as_of = request.args.get('as_of') or None
    if as_of:
        try:
            as_of = datetime.strptime(as_of, '%Y-%m-%d').date()
        except ValueError:
            raise ValidationError('as_of must be a date in YYYY-MM-DD format', field='as_of', value=as_of)
    return jsonify(inventory_analysis_service.get_inventory_aging(get_session(), periods, as_of))


@stock_bp.route('/abc', methods=['GET'])
def abc_analysis():
    period_days = request.args.get('period_days', '90')
    basis = request.args.get('basis')
    if not basis:
        raise ValidationError('basis is required (value or quantity)', field='basis')
    analysis = cached_report(
        CACHE_MODULE,
        f"abc:{period_days}:{basis}",
        lambda: inventory_analysis_service.get_abc_analysis(get_session(), period_days, basis),
    )
    return jsonify(analysis)
