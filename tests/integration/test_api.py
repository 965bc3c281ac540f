"""
Integration tests for the JSON API: error rendering, BOM and stock flows.
"""

import pytest
from decimal import Decimal


def _create_product(client, name, sku, **extra):
    payload = {'name': name, 'sku': sku, **extra}
    response = client.post('/api/products', json=payload, headers={'X-User': 'tester'})
    assert response.status_code == 201, response.get_json()
    return response.get_json()


class TestProductsAPI:
    """Tests for the product registry endpoints."""

    def test_create_product_with_opening_stock(self, client):
        """Test that opening stock is booked as an opening_balance movement."""
        product = _create_product(client, 'Steel', 'STL-1', cost_price='5', opening_stock='100')

        assert Decimal(product['current_stock']) == Decimal('100')

        movements = client.get(f"/api/stock/movements?product_id={product['id']}").get_json()
        assert len(movements) == 1
        assert movements[0]['reference_type'] == 'opening_balance'
        assert movements[0]['recorded_by'] == 'tester'

    def test_duplicate_sku(self, client):
        """Test that duplicate SKUs are rejected with a field error."""
        _create_product(client, 'Steel', 'STL-1')

        response = client.post('/api/products', json={'name': 'Other', 'sku': 'STL-1'})
        assert response.status_code == 400
        body = response.get_json()
        assert body['status'] == 'error'
        assert body['error'] == 'ValidationError'
        assert body['field'] == 'sku'

    def test_unknown_product_is_404(self, client):
        """Test NotFoundError rendering."""
        response = client.get('/api/products/9999')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'NotFoundError'

    def test_non_json_body_rejected(self, client):
        """Test that a non-object body is a validation error."""
        response = client.post('/api/products', data='not json', content_type='text/plain')
        assert response.status_code == 400

    def test_update_and_deactivate(self, client):
        """Test editing a product and then taking it out of stock operations."""
        product = _create_product(client, 'Steel', 'STL-1', cost_price='5', opening_stock='10')

        response = client.patch(f"/api/products/{product['id']}", json={'cost_price': '6.5', 'category': 'metals'})
        assert response.status_code == 200
        body = response.get_json()
        assert Decimal(body['cost_price']) == Decimal('6.5')
        assert body['category'] == 'metals'

        response = client.delete(f"/api/products/{product['id']}", headers={'X-User': 'tester'})
        assert response.status_code == 200
        assert response.get_json()['is_active'] is False

        assert client.get('/api/products').get_json() == []
        response = client.post('/api/stock/movements', json={
            'product_id': product['id'], 'movement_type': 'in', 'quantity': '1',
        })
        assert response.status_code == 404

    def test_stock_not_editable_through_update(self, client):
        """Test that PATCH refuses current_stock."""
        product = _create_product(client, 'Steel', 'STL-1', opening_stock='10')

        response = client.patch(f"/api/products/{product['id']}", json={'current_stock': '99'})
        assert response.status_code == 400
        assert response.get_json()['field'] == 'current_stock'


class TestBOMAPI:
    """Tests for the BOM endpoints."""

    @pytest.fixture
    def catalog(self, client):
        cabinet = _create_product(client, 'Cabinet', 'CAB-1', product_type='finished_good')
        bolt = _create_product(client, 'Bolt', 'BLT-1', cost_price='3', opening_stock='50')
        return cabinet, bolt

    def _create_bom(self, client, cabinet, bolt, version='v1'):
        return client.post('/api/boms', json={
            'product_id': cabinet['id'],
            'version': version,
            'components': [
                {'component_product_id': bolt['id'], 'quantity_required': '2', 'waste_percentage': '10'},
            ],
        }, headers={'X-User': 'planner'})

    def test_create_and_scale(self, client, catalog):
        """Test BOM creation and scaling over HTTP."""
        cabinet, bolt = catalog
        response = self._create_bom(client, cabinet, bolt)
        assert response.status_code == 201
        bom = response.get_json()
        assert bom['created_by'] == 'planner'

        scaled = client.get(f"/api/boms/{bom['id']}/scale?quantity=5").get_json()
        assert Decimal(scaled['total_cost']) == Decimal('33')
        assert Decimal(scaled['cost_per_unit']) == Decimal('6.6')
        assert Decimal(scaled['components'][0]['scaled_qty']) == Decimal('11')

        breakdown = client.get(f"/api/boms/{bom['id']}/cost-breakdown?quantity=5").get_json()
        assert Decimal(breakdown['components'][0]['cost_percentage']) == Decimal('100')

    def test_duplicate_version_is_409(self, client, catalog):
        """Test duplicate-version rejection through the API."""
        cabinet, bolt = catalog
        assert self._create_bom(client, cabinet, bolt).status_code == 201

        response = self._create_bom(client, cabinet, bolt)
        assert response.status_code == 409
        assert response.get_json()['error'] == 'DuplicateVersionError'

    def test_waste_out_of_range_is_400(self, client, catalog):
        """Test the waste percentage range check over HTTP."""
        cabinet, bolt = catalog
        response = client.post('/api/boms', json={
            'product_id': cabinet['id'],
            'version': 'v1',
            'components': [{'component_product_id': bolt['id'], 'quantity_required': '1', 'waste_percentage': '101'}],
        })
        assert response.status_code == 400
        assert response.get_json()['field'] == 'waste_percentage'

    def test_clone_delete_and_list(self, client, catalog):
        """Test clone, soft delete and the active filter."""
        cabinet, bolt = catalog
        bom = self._create_bom(client, cabinet, bolt).get_json()

        clone = client.post(f"/api/boms/{bom['id']}/clone", json={'new_version': 'v2'})
        assert clone.status_code == 201

        assert client.delete(f"/api/boms/{bom['id']}").status_code == 200
        assert client.get(f"/api/boms/{bom['id']}").status_code == 404
        assert client.get(f"/api/boms/{bom['id']}?include_inactive=true").status_code == 200

        active = client.get(f"/api/boms?product_id={cabinet['id']}&active=true").get_json()
        assert [b['version'] for b in active] == ['v2']

    def test_requirements_and_availability(self, client, catalog):
        """Test the MO data flow: requirements, availability check, consumption and receipt."""
        cabinet, bolt = catalog
        self._create_bom(client, cabinet, bolt)

        requirements = client.get(
            f"/api/boms/requirements?product_id={cabinet['id']}&quantity=10"
        ).get_json()
        assert Decimal(requirements['components'][0]['scaled_qty']) == Decimal('22')

        availability = client.post('/api/stock/availability', json={
            'requirements': requirements['components'],
        }).get_json()
        assert availability['all_available'] is True

        consumed = client.post('/api/stock/consumptions', json={
            'mo_id': 'MO-100',
            'lines': [{'product_id': bolt['id'], 'quantity_consumed': '22'}],
        })
        assert consumed.status_code == 201

        received = client.post('/api/stock/receipts', json={
            'mo_id': 'MO-100', 'product_id': cabinet['id'], 'quantity_produced': '10', 'quality_status': 'passed',
        })
        assert received.status_code == 201

        cabinet_now = client.get(f"/api/products/{cabinet['id']}").get_json()
        bolt_now = client.get(f"/api/products/{bolt['id']}").get_json()
        assert Decimal(cabinet_now['current_stock']) == Decimal('10')
        assert Decimal(bolt_now['current_stock']) == Decimal('28')


class TestStockAPI:
    """Tests for the stock ledger endpoints."""

    @pytest.fixture
    def steel(self, client):
        return _create_product(client, 'Steel', 'STL-1', cost_price='5', opening_stock='100', category='metals')

    def test_insufficient_stock_is_409(self, client, steel):
        """Test that overdrawing renders required and available."""
        ok = client.post('/api/stock/movements', json={
            'product_id': steel['id'], 'movement_type': 'out', 'quantity': '30',
        })
        assert ok.status_code == 201
        assert Decimal(ok.get_json()['new_stock']) == Decimal('70')

        response = client.post('/api/stock/movements', json={
            'product_id': steel['id'], 'movement_type': 'out', 'quantity': '80',
        })
        assert response.status_code == 409
        body = response.get_json()
        assert body['error'] == 'InsufficientStockError'
        assert Decimal(body['required']) == Decimal('80')
        assert Decimal(body['available']) == Decimal('70')

    def test_unstorable_quantity_is_400(self, client, steel):
        """Test that quantities finer than four decimals never reach the ledger."""
        response = client.post('/api/stock/movements', json={
            'product_id': steel['id'], 'movement_type': 'in', 'quantity': '0.00001',
        })
        assert response.status_code == 400
        assert response.get_json()['field'] == 'quantity'

        ok = client.post('/api/stock/movements', json={
            'product_id': steel['id'], 'movement_type': 'in', 'quantity': '1',
        })
        assert ok.status_code == 201
        assert Decimal(ok.get_json()['new_stock']) == Decimal('101')

    def test_numeric_adjustment_reason_is_400(self, client, steel):
        """Test that a non-text reason is a validation error, not a server error."""
        response = client.post('/api/stock/adjustments', json={
            'product_id': steel['id'], 'delta': '2', 'reason': 7,
        })
        assert response.status_code == 400
        assert response.get_json()['field'] == 'reason'

    def test_transfer_and_audit_trail(self, client, steel):
        """Test that the audit trail replay stays consistent after a transfer and adjustment."""
        transfer = client.post('/api/stock/transfers', json={
            'product_id': steel['id'], 'from_location': 'A', 'to_location': 'B', 'quantity': '15',
        })
        assert transfer.status_code == 201

        adjust = client.post('/api/stock/adjustments', json={
            'product_id': steel['id'], 'delta': '-5', 'reason': 'Damaged',
        })
        assert adjust.status_code == 201

        trail = client.get(f"/api/stock/audit-trail/{steel['id']}").get_json()
        assert trail['consistent'] is True
        assert len(trail['movements']) == 4
        assert Decimal(trail['closing_balance']) == Decimal('95')

    def test_same_location_transfer_is_400(self, client, steel):
        response = client.post('/api/stock/transfers', json={
            'product_id': steel['id'], 'from_location': 'A', 'to_location': 'A', 'quantity': '1',
        })
        assert response.status_code == 400

    def test_reports(self, client, steel):
        """Test levels, valuation, aging and ABC endpoints."""
        client.post('/api/stock/movements', json={
            'product_id': steel['id'], 'movement_type': 'out', 'quantity': '10',
        })

        levels = client.get('/api/stock/levels?category=metals').get_json()
        assert [row['sku'] for row in levels] == ['STL-1']

        valuation = client.get('/api/stock/valuation?group_by=category').get_json()
        assert Decimal(valuation['total_value']) == Decimal('450')

        aging = client.get('/api/stock/aging?periods=30,60').get_json()
        assert aging['buckets'] == ['0-30', '31-60', '60+']

        abc = client.get('/api/stock/abc?period_days=30&basis=quantity').get_json()
        assert abc['classified_products'][0]['abc_class'] == 'C'
        assert abc['summary']['basis'] == 'quantity'

    def test_abc_requires_basis(self, client):
        response = client.get('/api/stock/abc?period_days=30')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'basis'

    def test_bad_date_filter_is_400(self, client):
        response = client.get('/api/stock/movements?start_date=31-12-2026')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'start_date'

    def test_metrics_endpoint(self, client, steel):
        """Test that ledger counters are exposed."""
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'stock_movements_total' in response.data


class TestCLI:
    """Tests for the Flask CLI commands."""

    def test_verify_ledger_command(self, app, client):
        """Test that a consistent ledger passes verification."""
        _create_product(client, 'Steel', 'STL-1', opening_stock='10')

        result = app.test_cli_runner().invoke(args=['verify-ledger'])

        assert result.exit_code == 0
        assert '1 products checked, 0 inconsistent.' in result.output


class TestAuditLogAPI:
    """Tests for the status history endpoint."""

    def test_lists_actions_newest_first(self, client):
        """Test that engine operations leave filtered, newest-first history."""
        product = _create_product(client, 'Steel', 'STL-1', opening_stock='10')
        client.post('/api/stock/adjustments', json={
            'product_id': product['id'], 'delta': '2', 'reason': 'Count',
        }, headers={'X-User': 'auditor'})

        logs = client.get(f"/api/audit-logs?resource_type=product&resource_id={product['id']}").get_json()
        assert [entry['action'] for entry in logs] == ['STOCK_ADJUSTED', 'PRODUCT_CREATED']
        assert logs[0]['performed_by'] == 'auditor'

        adjusted = client.get('/api/audit-logs?action=stock_adjusted').get_json()
        assert len(adjusted) == 1

    def test_unknown_action_is_400(self, client):
        assert client.get('/api/audit-logs?action=NOPE').status_code == 400
