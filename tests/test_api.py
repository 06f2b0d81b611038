import hashlib
import hmac
from datetime import date

import httpx

from conftest import auth_headers

from app.integrations.razorpay import RazorpayClient, get_payment_gateway
from app.main import app
from app.models import User

API = '/api/v1'
ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]


def _gateway():
    def handler(request):
        return httpx.Response(200, json={'id': 'order_api', 'status': 'created'})

    return RazorpayClient(
        key_id='rzp_test_key',
        key_secret='rzp_secret',
        webhook_secret='whsec_test',
        base_url='https://razorpay.test/v1',
        transport=httpx.MockTransport(handler),
    )


def test_signup_login_and_me(client, platform):
    response = client.post(
        f'{API}/auth/signup',
        json={'email': 'Neha@Example.com', 'password': 'correct-horse', 'full_name': 'Neha'},
    )
    assert response.status_code == 201
    assert response.json()['user']['email'] == 'neha@example.com'

    duplicate = client.post(f'{API}/auth/signup', json={'email': 'neha@example.com', 'password': 'correct-horse'})
    assert duplicate.status_code == 400

    assert client.post(f'{API}/auth/login', json={'email': 'neha@example.com', 'password': 'nope'}).status_code == 401
    login = client.post(f'{API}/auth/login', json={'email': 'neha@example.com', 'password': 'correct-horse'})
    assert login.status_code == 200
    token = login.json()['access_token']

    me = client.get(f'{API}/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    assert me.json()['roles'] == ['customer']
    assert client.get(f'{API}/auth/me').status_code == 401


def test_vendor_signup_waits_for_approval(client, platform):
    response = client.post(
        f'{API}/auth/signup',
        json={'email': 'cook@example.com', 'password': 'correct-horse', 'role': 'vendor', 'vendor_name': 'Dabba Co'},
    )

    assert response.status_code == 201
    assert 'vendor' in response.json()['user']['roles']
    assert client.get(f'{API}/public/vendors').json()['total'] == 0


def test_public_vendor_listing_includes_prices(client, vendor):
    response = client.get(f'{API}/public/vendors', params={'slot': 'lunch'})

    assert response.status_code == 200
    items = response.json()['items']
    assert [v['slug'] for v in items] == ['meeras-kitchen']
    assert items[0]['prices']['lunch'] == 185.0

    assert client.get(f'{API}/public/vendors/meeras-kitchen').json()['menu'] == []
    assert client.get(f'{API}/public/vendors/nobody').status_code == 404


def test_checkout_pay_and_pause_preview(client, customer, vendor, plan, address):
    headers = auth_headers(customer)
    app.dependency_overrides[get_payment_gateway] = _gateway
    body = {
        'vendor_id': str(vendor.id),
        'plan_id': str(plan.id),
        'address_id': str(address.id),
        'preferences': {'dinner': {'weekdays': ALL_DAYS}},
    }

    quote = client.post(f'{API}/me/checkout/quote', json=body, headers=headers)
    assert quote.status_code == 200
    created = client.post(f'{API}/me/checkout', json=body, headers=headers)
    assert created.status_code == 201
    data = created.json()
    assert data['requires_payment'] is True
    assert data['invoice']['total_amount'] == quote.json()['total']
    invoice_id = data['invoice']['id']
    subscription_id = data['subscription']['id']

    pay = client.post(f'{API}/me/invoices/{invoice_id}/pay', headers=headers)
    assert pay.status_code == 200
    assert pay.json()['razorpay_order_id'] == 'order_api'

    signature = hmac.new(b'rzp_secret', b'order_api|pay_api', hashlib.sha256).hexdigest()
    confirm = client.post(
        f'{API}/me/invoices/{invoice_id}/confirm',
        json={'razorpay_order_id': 'order_api', 'razorpay_payment_id': 'pay_api', 'razorpay_signature': signature},
        headers=headers,
    )
    assert confirm.status_code == 200
    assert confirm.json()['status'] == 'paid'

    orders = client.get(f'{API}/me/orders', headers=headers).json()
    assert orders['total'] >= 1

    preview = client.get(f'{API}/me/subscriptions/{subscription_id}/pause/preview', headers=headers)
    assert preview.status_code == 200
    assert preview.json()['orders_count'] == orders['total']

    detail = client.get(f'{API}/me/subscriptions/{subscription_id}', headers=headers).json()
    assert len(detail['cycles']) == 1
    assert detail['invoices'][0]['status'] == 'paid'


def test_lifecycle_errors_map_to_http_status(client, customer, make_user, subscribe):
    subscription = subscribe()
    headers = auth_headers(customer)

    resume = client.post(f'{API}/me/subscriptions/{subscription.id}/resume', json={}, headers=headers)
    assert resume.status_code == 409
    assert resume.json()['detail']['code'] == 'InvalidTransition'

    skip = client.post(
        f'{API}/me/subscriptions/{subscription.id}/skip',
        json={'service_date': date(2025, 1, 11).isoformat(), 'slot': 'lunch'},
        headers=headers,
    )
    assert skip.status_code == 404

    stranger = auth_headers(make_user('ravi@example.com'))
    other = client.get(f'{API}/me/subscriptions/{subscription.id}', headers=stranger)
    assert other.status_code == 404


def test_admin_routes_require_admin(client, customer, admin, platform):
    assert client.get(f'{API}/admin/settings', headers=auth_headers(customer)).status_code == 403

    response = client.patch(
        f'{API}/admin/settings', json={'skip_cutoff_hours': 5}, headers=auth_headers(admin)
    )
    assert response.status_code == 200
    assert response.json()['skip_cutoff_hours'] == 5

    bad = client.patch(f'{API}/admin/settings', json={'commission_pct': 3}, headers=auth_headers(admin))
    assert bad.status_code in (400, 422)


def test_admin_approves_vendor(client, admin, vendor):
    vendor.status = 'pending'
    response = client.post(
        f'{API}/admin/vendors/{vendor.id}/status', json={'status': 'active'}, headers=auth_headers(admin)
    )

    assert response.status_code == 200
    assert response.json()['status'] == 'active'


def test_cron_requires_secret(client, platform):
    assert client.post(f'{API}/cron/credit_expiry').status_code == 401
    assert client.post(f'{API}/cron/credit_expiry', headers={'Authorization': 'Bearer wrong'}).status_code == 401

    headers = {'Authorization': 'Bearer test-cron-secret'}
    response = client.post(f'{API}/cron/credit_expiry', headers=headers)
    assert response.status_code == 200
    assert response.json()['status'] == 'success'
    assert response.json()['result'] == {'expired': 0}
    assert client.post(f'{API}/cron/defragment', headers=headers).status_code == 400
    assert 'renewals' in client.get(f'{API}/cron/jobs', headers=headers).json()['jobs']


def test_webhook_rejects_bad_signature(client, platform):
    app.dependency_overrides[get_payment_gateway] = _gateway

    response = client.post(
        f'{API}/payments/webhook', content=b'{"event": "payment.captured"}', headers={'X-Razorpay-Signature': 'bad'}
    )

    assert response.status_code == 400


def test_integration_health_reports_database(client):
    response = client.get(f'{API}/health/integrations')

    assert response.status_code == 200
    checks = response.json()['integrations']
    assert checks['database'] is True
    assert checks['cron_secret'] is True


def test_vendor_manages_menu_and_holidays(client, db, vendor):
    headers = auth_headers(db.get(User, vendor.owner_id))

    meal = client.post(f'{API}/vendor/menu', json={'slot': 'lunch', 'name': 'Sambar rice'}, headers=headers)
    assert meal.status_code == 201
    assert client.post(f'{API}/vendor/menu', json={'slot': 'brunch', 'name': 'Dosa'}, headers=headers).status_code == 400

    holiday = client.post(
        f'{API}/vendor/holidays', json={'date': '2025-01-26', 'reason': 'Republic Day'}, headers=headers
    )
    assert holiday.status_code == 201
    assert len(client.get(f'{API}/vendor/holidays', headers=headers).json()['items']) == 1

    menu = client.get(f'{API}/public/vendors/meeras-kitchen').json()['menu']
    assert [m['name'] for m in menu] == ['Sambar rice']


def test_customer_cannot_use_vendor_routes(client, customer):
    assert client.get(f'{API}/vendor/me', headers=auth_headers(customer)).status_code == 403


def test_addresses_in_use_cannot_be_deleted(client, customer, address, subscribe):
    subscribe()
    headers = auth_headers(customer)

    second = client.post(
        f'{API}/me/addresses', json={'line1': '4 Church St', 'city': 'Bengaluru', 'pincode': '560001'}, headers=headers
    )
    assert second.status_code == 201
    assert second.json()['is_default'] is False

    assert client.delete(f'{API}/me/addresses/{address.id}', headers=headers).status_code == 400
    assert client.delete(f"{API}/me/addresses/{second.json()['id']}", headers=headers).status_code == 200
    assert len(client.get(f'{API}/me/addresses', headers=headers).json()['items']) == 1
