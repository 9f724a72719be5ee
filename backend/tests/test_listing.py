from tests.test_lifecycle_helpers import headers_for, create_resource_and_assert
from tests.test_utils_seed import ensure_company


def _seed_readings(client, headers, name, values):
    for v in values:
        create_resource_and_assert(client, '/meters/readings',
                                   {'meter_type': 'water', 'meter_name': name, 'reading_value': v}, headers)


def test_etag_conditional_get(client):
    engineer = headers_for(client, 'eng_etag@example.com', 'SITE_ENGINEER')
    _seed_readings(client, engineer, 'MTR-ETAG', ['1.00'])
    first = client.get('/meters/readings?limit=5', headers=engineer)
    assert first.status_code == 200
    etag = first.headers.get('ETag')
    assert etag
    second = client.get('/meters/readings?limit=5', headers={**engineer, 'If-None-Match': etag})
    assert second.status_code == 304
    assert second.headers.get('ETag') == etag
    lm = first.headers.get('Last-Modified')
    assert lm
    third = client.get('/meters/readings?limit=5', headers={**engineer, 'If-Modified-Since': lm})
    assert third.status_code == 304

    # a new row changes the page and the validator
    _seed_readings(client, engineer, 'MTR-ETAG', ['2.00'])
    fourth = client.get('/meters/readings?limit=5', headers={**engineer, 'If-None-Match': etag})
    assert fourth.status_code == 200
    assert fourth.headers.get('ETag') != etag


def test_head_validators(client):
    fireman = headers_for(client, 'fire_head@example.com', 'FIREMAN')
    r = client.head('/permits?limit=5', headers=fireman)
    assert r.status_code == 200
    etag = r.headers.get('ETag')
    assert etag
    r2 = client.head('/permits?limit=5', headers={**fireman, 'If-None-Match': etag})
    assert r2.status_code == 304


def test_iso_if_modified_since_accepted(client):
    admin = headers_for(client, 'vmsadmin_iso@example.com', 'VMS_ADMIN')
    ensure_company('LIST-ISO')
    first = client.get('/vms/companies?limit=200', headers=admin)
    iso = first.headers.get('X-Last-Modified-ISO')
    assert iso and iso.endswith('Z')
    again = client.get('/vms/companies?limit=200', headers={**admin, 'If-Modified-Since': iso})
    assert again.status_code == 304


def test_pagination_meta_and_clamp(client):
    engineer = headers_for(client, 'eng_page@example.com', 'SITE_ENGINEER')
    _seed_readings(client, engineer, 'MTR-PAGE', ['1.00', '2.00', '3.00'])
    body = client.get('/meters/readings?limit=2&offset=1', headers=engineer).get_json()
    assert body['pagination'] == {'total': 3, 'limit': 2, 'offset': 1, 'returned': 2}
    big = client.get('/meters/readings?limit=500', headers=engineer).get_json()
    assert big['pagination']['limit'] == 200
    assert client.get('/meters/readings?limit=lots', headers=engineer).status_code == 400


def test_multi_sort_and_invalid_field(client):
    engineer = headers_for(client, 'eng_sort@example.com', 'SITE_ENGINEER')
    _seed_readings(client, engineer, 'MTR-SORT', ['30.00', '10.00', '20.00'])
    data = client.get('/meters/readings?sort=-reading_value', headers=engineer).get_json()['data']
    assert [r['reading_value'] for r in data] == ['30.00', '20.00', '10.00']
    resp = client.get('/meters/readings?sort=colour', headers=engineer)
    assert resp.status_code == 400
    assert 'reading_value' in resp.get_json()['error']['allowed']


def test_status_filter_rejects_unknown_value(client):
    fireman = headers_for(client, 'fire_filter@example.com', 'FIREMAN')
    assert client.get('/permits?status=PENDING', headers=fireman).status_code == 200
    assert client.get('/permits?status=DONE', headers=fireman).status_code == 400
