"""
Unit tests for inventory aging and ABC analysis.
"""

import pytest
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from mrp_ledger.exceptions import ValidationError
from mrp_ledger.models import StockMovement, MovementType
from mrp_ledger.services import stock_ledger_service
from mrp_ledger.services.inventory_analysis_service import get_inventory_aging, get_abc_analysis

AS_OF = date(2026, 6, 30)


def _receipt(session, product, quantity, days_old, unit_cost='2'):
    """Insert an 'in' movement received days_old days before AS_OF."""
    received = datetime.combine(AS_OF - timedelta(days=days_old), time(12, 0), tzinfo=timezone.utc)
    session.add(StockMovement(
        product_id=product.id,
        movement_type=MovementType.IN,
        quantity=Decimal(str(quantity)),
        previous_stock=Decimal('0'),
        new_stock=Decimal(str(quantity)),
        unit_cost=Decimal(unit_cost),
        movement_date=received,
    ))
    session.commit()


class TestInventoryAging:
    """Tests for get_inventory_aging."""

    def test_bucket_boundaries(self, session, product_factory):
        """Test that a receipt exactly on a boundary day goes to the lower bucket."""
        product = product_factory(name='Resin')
        for qty, days in ((1, 0), (2, 30), (4, 31), (8, 90), (16, 91)):
            _receipt(session, product, qty, days)

        report = get_inventory_aging(session, periods=(30, 60, 90), as_of=AS_OF)

        assert report['buckets'] == ['0-30', '31-60', '61-90', '90+']
        buckets = report['products'][0]['buckets']
        assert buckets['0-30']['quantity'] == Decimal('3')
        assert buckets['31-60']['quantity'] == Decimal('4')
        assert buckets['61-90']['quantity'] == Decimal('8')
        assert buckets['90+']['quantity'] == Decimal('16')
        assert buckets['90+']['value'] == Decimal('32')
        assert report['products'][0]['total_quantity'] == Decimal('31')

    def test_totals_across_products(self, session, product_factory):
        """Test bucket totals summing every product."""
        first = product_factory(name='Resin')
        second = product_factory(name='Hardener')
        _receipt(session, first, 5, 10, unit_cost='3')
        _receipt(session, second, 7, 12, unit_cost='1')

        report = get_inventory_aging(session, as_of=AS_OF)

        assert len(report['products']) == 2
        assert report['totals']['0-30']['quantity'] == Decimal('12')
        assert report['totals']['0-30']['value'] == Decimal('22')

    def test_ignores_out_movements_and_future_receipts(self, session, product_factory):
        """Test that only receipts up to as_of are aged."""
        product = product_factory(name='Resin')
        _receipt(session, product, 5, 3)
        _receipt(session, product, 9, -2)  # after as_of

        report = get_inventory_aging(session, as_of=AS_OF)

        assert report['products'][0]['total_quantity'] == Decimal('5')

    def test_as_of_datetime_is_read_in_utc(self, session, product_factory):
        """Test that an offset as_of is converted to its UTC calendar date."""
        product = product_factory(name='Resin')
        _receipt(session, product, 5, 0)  # 2026-06-30 12:00 UTC

        # 22:00 at UTC-5 is already 2026-06-30 in UTC
        as_of = datetime(2026, 6, 29, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        report = get_inventory_aging(session, as_of=as_of)

        assert report['as_of'] == '2026-06-30'
        assert report['totals']['0-30']['quantity'] == Decimal('5')

    @pytest.mark.parametrize('periods', [(60, 30), (30, 30), (0, 30), (), ('a',)])
    def test_invalid_periods(self, session, periods):
        """Test that periods must be positive and strictly ascending."""
        with pytest.raises(ValidationError):
            get_inventory_aging(session, periods=periods, as_of=AS_OF)


class TestABCAnalysis:
    """Tests for get_abc_analysis."""

    def _consume(self, session, product, quantity):
        stock_ledger_service.record_movement(session, product.id, 'out', quantity)

    def test_classification_by_quantity(self, session, product_factory):
        """Test A while cumulative <= 80, B while <= 95, else C."""
        products = [product_factory(name=f'P{i}', stock=1000, cost=1) for i in range(4)]
        for product, qty in zip(products, (70, 20, 6, 4)):
            self._consume(session, product, qty)

        result = get_abc_analysis(session, 30, 'quantity')

        classes = [(row['product_id'], row['abc_class']) for row in result['classified_products']]
        assert classes == [
            (products[0].id, 'A'),
            (products[1].id, 'B'),
            (products[2].id, 'C'),
            (products[3].id, 'C'),
        ]
        assert [row['cumulative_percentage'] for row in result['classified_products']] == [
            Decimal('70.00'), Decimal('90.00'), Decimal('96.00'), Decimal('100.00'),
        ]
        assert result['summary']['grand_total'] == Decimal('100')
        assert result['summary']['classes']['C']['count'] == 2

    def test_value_basis_uses_recorded_unit_cost(self, session, product_factory):
        """Test that the value basis ranks by quantity * unit cost."""
        cheap = product_factory(name='Cheap', stock=1000, cost=1)
        dear = product_factory(name='Dear', stock=1000, cost=50)
        self._consume(session, cheap, 100)  # value 100
        self._consume(session, dear, 10)  # value 500

        by_value = get_abc_analysis(session, 30, 'value')
        by_quantity = get_abc_analysis(session, 30, 'quantity')

        assert by_value['classified_products'][0]['product_id'] == dear.id
        assert by_quantity['classified_products'][0]['product_id'] == cheap.id

    def test_ties_broken_by_product_id(self, session, product_factory):
        """Test deterministic ordering of equal consumption."""
        first = product_factory(name='Twin A', stock=100, cost=1)
        second = product_factory(name='Twin B', stock=100, cost=1)
        self._consume(session, second, 10)
        self._consume(session, first, 10)

        runs = [get_abc_analysis(session, 30, 'quantity') for _ in range(2)]

        for result in runs:
            assert [r['product_id'] for r in result['classified_products']] == [first.id, second.id]
        assert runs[0]['classified_products'] == runs[1]['classified_products']

    def test_window_excludes_old_consumption(self, session, product_factory):
        """Test that out movements before the window are ignored."""
        product = product_factory(name='Old', stock=100, cost=1)
        session.add(StockMovement(
            product_id=product.id,
            movement_type=MovementType.OUT,
            quantity=Decimal('5'),
            previous_stock=Decimal('100'),
            new_stock=Decimal('95'),
            unit_cost=Decimal('1'),
            movement_date=datetime.now(timezone.utc) - timedelta(days=45),
        ))
        session.commit()

        assert get_abc_analysis(session, 30, 'quantity')['classified_products'] == []
        assert len(get_abc_analysis(session, 60, 'quantity')['classified_products']) == 1

    @pytest.mark.parametrize('basis', [None, '', 'weight'])
    def test_basis_is_required(self, session, basis):
        """Test that the basis must be given explicitly."""
        with pytest.raises(ValidationError):
            get_abc_analysis(session, 30, basis)

    def test_period_must_be_positive(self, session):
        """Test period_days validation."""
        with pytest.raises(ValidationError):
            get_abc_analysis(session, 0, 'value')
