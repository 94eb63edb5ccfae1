from conftest import PASSWORD


def test_signin_validates_fields(client):
    response = client.post('/api/auth/signin', json={'email': 'mary@yahoo.com', 'password': 'short'})
    assert response.status_code == 400
    errors = response.get_json()['errors']
    assert errors['email'] == 'Invalid email format. Must be @gmail.com'
    assert errors['password'] == 'Password must be at least 8 characters'


def test_signin_unknown_account(client):
    response = client.post('/api/auth/signin', json={'email': 'nobody@gmail.com', 'password': PASSWORD})
    assert response.status_code == 401


def test_signin_and_signout(client):
    response = client.post('/api/auth/signin', json={'email': ' Mary.Doe@gmail.com ', 'password': PASSWORD})
    assert response.status_code == 200
    assert response.get_json()['user']['role'] == 'family'

    me = client.get('/api/auth/me').get_json()
    assert me['email'] == 'mary.doe@gmail.com'
    assert me['linked_residents'] == [4]

    assert client.post('/api/auth/signout').status_code == 200
    assert client.get('/api/auth/me').status_code == 401


def test_signup_flow_creates_family_account(client):
    assert client.post('/api/auth/signup/verify', json={'otp': '123456'}).status_code == 400

    response = client.post('/api/auth/signup/email', json={'email': 'New.Family@example.org'})
    assert response.status_code == 200
    assert response.get_json()['email'] == 'new.family@example.org'

    assert client.post('/api/auth/signup/password', json={'password': PASSWORD}).status_code == 400
    bad_otp = client.post('/api/auth/signup/verify', json={'otp': '12345'})
    assert bad_otp.get_json()['errors']['otp'] == 'Please enter all 6 digits'
    assert client.post('/api/auth/signup/verify', json={'otp': '123456'}).status_code == 200

    server_error = client.post('/api/auth/signup/password', json={'password': 'error'})
    assert server_error.status_code == 502
    assert server_error.get_json()['error'] == 'Server error: Password is invalid.'

    weak = client.post('/api/auth/signup/password', json={'password': 'password'})
    assert weak.status_code == 400
    assert weak.get_json()['checklist'] == {'length': True, 'upper_lower': False, 'number': False,
                                            'symbol': False}

    mismatch = client.post('/api/auth/signup/password', json={'password': PASSWORD, 'confirm_password': 'x'})
    assert mismatch.get_json()['errors']['confirm_password'] == 'Passwords do not match'

    created = client.post('/api/auth/signup/password', json={
        'password': PASSWORD, 'confirm_password': PASSWORD, 'full_name': 'New Family',
    })
    assert created.status_code == 201
    assert created.get_json()['user']['role'] == 'family'
    assert client.get('/api/auth/me').get_json()['full_name'] == 'New Family'


def test_signup_rejects_existing_email(client):
    response = client.post('/api/auth/signup/email', json={'email': 'mary.doe@gmail.com'})
    assert response.status_code == 409


def test_forgot_password_flow(client):
    wrong_domain = client.post('/api/auth/forgot/email', json={'email': 'mary@outlook.com'})
    assert wrong_domain.status_code == 400

    assert client.post('/api/auth/forgot/reset', json={'password': PASSWORD}).status_code == 400
    assert client.post('/api/auth/forgot/email', json={'email': 'mary.doe@gmail.com'}).status_code == 200
    assert client.post('/api/auth/forgot/verify', json={'otp': '654321'}).status_code == 200

    weak = client.post('/api/auth/forgot/reset', json={'password': 'Password1', 'confirm_password': 'Password1'})
    assert weak.get_json()['errors']['password'] == 'Password must include a symbol'

    done = client.post('/api/auth/forgot/reset', json={'password': PASSWORD, 'confirm_password': PASSWORD})
    assert done.status_code == 200
    assert client.post('/api/auth/forgot/reset', json={'password': PASSWORD}).status_code == 400


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body['database'] == 'connected'
    assert body['status'] == 'healthy'
    assert body['demo_data_loaded'] is True
    assert body['records'] == {'users': 9, 'residents': 5, 'events': 6, 'open_sos_alerts': 2}


def test_unknown_route_returns_json(client):
    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert 'error' in response.get_json()
