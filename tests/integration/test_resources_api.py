"""
Integration tests for quota-bound resource creation.
"""

from stockflow.models import Warehouse, Product


class TestLimitEnforcement:
    def test_second_warehouse_on_free_plan(self, authenticated_client, session, tenant1):
        session.add(Warehouse(tenant_id=tenant1.id, name='Principal'))
        session.commit()

        response = authenticated_client.post('/api/warehouses', json={'name': 'Sucursal'})

        assert response.status_code == 403
        data = response.get_json()
        assert data['resource'] == 'bodegas'
        assert data['current'] == 1
        assert data['limit'] == 1
        assert 'Mejora tu plan' in data['message']

    def test_product_created_below_limit(self, authenticated_client, session, tenant1):
        tenant_id = tenant1.id

        response = authenticated_client.post('/api/products', json={'name': 'Café molido', 'sku': 'CAF-1'})

        assert response.status_code == 201
        assert session.query(Product).filter_by(tenant_id=tenant_id).count() == 1

    def test_required_field(self, authenticated_client):
        response = authenticated_client.post('/api/products', json={})
        assert response.status_code == 400

    def test_invoice_and_employee(self, authenticated_client):
        assert authenticated_client.post('/api/invoices', json={'number': 'F-1', 'total': 1000}).status_code == 201
        assert authenticated_client.post('/api/employees', json={'full_name': 'Luis Pérez'}).status_code == 201


class TestMembers:
    def test_accountant_needs_paid_plan(self, authenticated_client, session, make_tenant, make_member):
        other = make_member(make_tenant(), role='OWNER')

        response = authenticated_client.post('/api/users', json={'email': other.email, 'role': 'ACCOUNTANT'})

        assert response.status_code == 403
        assert response.get_json()['resource'] == 'contadores'

    def test_add_staff_member(self, authenticated_client, session, make_tenant, make_member):
        other = make_member(make_tenant(), role='OWNER')

        response = authenticated_client.post('/api/users', json={'email': other.email, 'role': 'STAFF'})

        assert response.status_code == 201
        assert response.get_json()['role'] == 'STAFF'

    def test_user_seats_full(self, authenticated_client, session, tenant1, make_member, make_tenant):
        make_member(tenant1, role='STAFF')  # owner + staff = 2 seats on the free plan
        other = make_member(make_tenant(), role='OWNER')

        response = authenticated_client.post('/api/users', json={'email': other.email})

        assert response.status_code == 403
        assert response.get_json()['resource'] == 'usuarios'


class TestAccess:
    def test_suspended_tenant_cannot_create(self, authenticated_client, session, tenant1):
        tenant1.status = 'SUSPENDED'
        session.commit()

        response = authenticated_client.post('/api/products', json={'name': 'X'})

        assert response.status_code == 403
        assert 'suspendido' in response.get_json()['message']

    def test_staff_cannot_create_warehouse(self, client, session, tenant1, make_member):
        staff = make_member(tenant1, role='STAFF')
        with client.session_transaction() as sess:
            sess['user_id'] = staff.id
            sess['tenant_id'] = tenant1.id

        assert client.post('/api/warehouses', json={'name': 'B'}).status_code == 403
