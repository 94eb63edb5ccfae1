from conftest import login


def test_price_list(client):
    login(client, 'mary.doe@gmail.com')
    prices = client.get('/api/payments/prices').get_json()
    assert [p['service_name'] for p in prices] == ['Home Care Service', 'Medical Checkup', 'Emergency Assistance']
    assert client.post('/api/payments/prices', json={'service_name': 'Laundry', 'price': 1}).status_code == 403

    login(client, 'admin.helicare@gmail.com')
    created = client.post('/api/payments/prices', json={'service_name': 'Laundry', 'price': 50000})
    assert created.status_code == 201
    assert client.post('/api/payments/prices', json={'service_name': 'Laundry', 'price': 1}).status_code == 409
    assert client.post('/api/payments/prices', json={'service_name': 'Spa', 'price': 0}).status_code == 400

    price_id = created.get_json()['id']
    assert client.put(f'/api/payments/prices/{price_id}',
                      json={'service_name': 'Laundry', 'price': 60000}).get_json()['price'] == 60000
    assert client.delete(f'/api/payments/prices/{price_id}').status_code == 200


def test_invoice_adds_vat(as_staff):
    response = as_staff.post('/api/invoices', json={'service_name': 'Medical Checkup', 'resident_id': 4})
    assert response.status_code == 201
    invoice = response.get_json()
    assert (invoice['amount'], invoice['vat'], invoice['total']) == (300000, 30000, 330000)
    assert invoice['status'] == 'unpaid'

    custom = as_staff.post('/api/invoices', json={'service_name': 'Medical Checkup', 'resident_id': 4,
                                                  'amount': 123456}).get_json()
    assert custom['vat'] == 12346

    assert as_staff.post('/api/invoices', json={'service_name': 'Massage', 'resident_id': 4}).status_code == 400


def test_review_only_once(as_admin):
    assert as_admin.post('/api/invoices/3/review', json={'decision': 'rejected'}).status_code == 409
    approved = as_admin.post('/api/invoices/2/review', json={'decision': 'approved'})
    assert approved.get_json()['status'] == 'approved'
    assert as_admin.post('/api/invoices/2/review', json={'decision': 'rejected'}).status_code == 409
    assert as_admin.post('/api/invoices/1/review', json={'decision': 'maybe'}).status_code == 400


def test_pay_invoice(client):
    login(client, 'nurse.linh@gmail.com')
    johns = client.post('/api/invoices', json={'service_name': 'Home Care Service', 'resident_id': 4}).get_json()
    assert client.post('/api/invoices/1/pay').status_code == 409

    login(client, 'mary.doe@gmail.com')
    assert [i['id'] for i in client.get('/api/invoices').get_json()] == [johns['id']]
    assert client.post('/api/invoices/2/pay').status_code == 403
    paid = client.post(f"/api/invoices/{johns['id']}/pay")
    assert paid.status_code == 200
    assert paid.get_json()['status'] == 'paid'
    assert client.post(f"/api/invoices/{johns['id']}/pay").status_code == 409


def test_summary(client):
    login(client, 'nurse.linh@gmail.com')
    assert client.get('/api/invoices/summary').status_code == 403
    client.post('/api/invoices/2/pay')

    login(client, 'admin.helicare@gmail.com')
    summary = client.get('/api/invoices/summary').get_json()
    assert summary['total_revenue'] == 550000 + 330000
    assert summary['total_invoices'] == 3
    assert summary['by_status']['paid'] == 2
    assert summary['by_status']['approved'] == 1
    assert client.get('/api/invoices?status=paid').get_json()[0]['id'] == 1
