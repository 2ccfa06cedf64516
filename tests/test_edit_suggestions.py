"""Tests for edit suggestions against existing courts."""
import json

from backend.app import db
from backend.models import Court, CourtEditSuggestion
from backend.services.court_payloads import CourtPatch
from backend.services.geocoding import GeocodeResult


def _url(court_id, suggestion_id=None):
    base = f'/api/courts/{court_id}/edit-suggestions'
    return f'{base}/{suggestion_id}' if suggestion_id else base


def _propose(client, headers, court_id, **fields):
    payload = {'reason': 'Resurfaced last spring'}
    payload.update(fields)
    return client.post(_url(court_id), json=payload, headers=headers)


def _review(client, headers, court_id, suggestion_id, status='approved', **extra):
    payload = {'status': status}
    payload.update(extra)
    return client.put(_url(court_id, suggestion_id), json=payload, headers=headers)


def _court(client, court_id):
    with client.application.app_context():
        court = db.session.get(Court, court_id)
        return court.to_dict()


def test_edit_suggestion_stores_only_changed_fields(client, user_headers, sample_court):
    res = _propose(
        client, user_headers, sample_court.id,
        name='Lincoln Park Courts', surface='Clay', numberOfCourts=6, lights=False,
    )
    assert res.status_code == 201
    suggestion = json.loads(res.data)['suggestion']
    assert suggestion['status'] == 'pending'
    assert suggestion['reason'] == 'Resurfaced last spring'
    assert suggestion['suggested_surface'] == 'Clay'
    assert suggestion['suggested_lights'] is False
    assert suggestion['suggested_name'] is None
    assert suggestion['suggested_number_of_courts'] is None
    assert suggestion['suggested_latitude'] is None


def test_edit_suggestion_without_changes_is_rejected(client, user_headers, sample_court):
    res = _propose(client, user_headers, sample_court.id, name='lincoln park courts ', surface='HARD')
    assert res.status_code == 400
    assert json.loads(res.data)['error'] == 'No changes detected'


def test_edit_suggestion_reason_rules(client, user_headers, sample_court):
    res = client.post(_url(sample_court.id), json={'surface': 'Clay'}, headers=user_headers)
    assert res.status_code == 400
    assert json.loads(res.data)['error'] == 'Reason is required'

    res = _propose(client, user_headers, sample_court.id, surface='Clay', reason='x' * 101)
    assert res.status_code == 400
    assert '100 characters' in json.loads(res.data)['error']


def test_edit_suggestion_number_of_courts_range(client, user_headers, sample_court):
    res = _propose(client, user_headers, sample_court.id, number_of_courts=1001)
    assert res.status_code == 400
    res = _propose(client, user_headers, sample_court.id, number_of_courts='lots')
    assert res.status_code == 400


def test_edit_suggestion_unknown_court(client, user_headers):
    res = _propose(client, user_headers, 4242, surface='Clay')
    assert res.status_code == 404


def test_one_pending_edit_per_court_and_user(client, user_headers, other_headers,
                                             admin_headers, sample_court):
    first = _propose(client, user_headers, sample_court.id, surface='Clay')
    assert first.status_code == 201
    res = _propose(client, user_headers, sample_court.id, court_condition='Poor')
    assert res.status_code == 409

    # A different submitter is unaffected
    assert _propose(client, other_headers, sample_court.id, court_condition='Poor').status_code == 201

    suggestion_id = json.loads(first.data)['suggestion']['id']
    assert _review(client, admin_headers, sample_court.id, suggestion_id, 'rejected').status_code == 200
    assert _propose(client, user_headers, sample_court.id, court_condition='Poor').status_code == 201


def test_submitter_cannot_review_own_suggestion(client, admin_headers, sample_court):
    res = _propose(client, admin_headers, sample_court.id, surface='Clay')
    suggestion_id = json.loads(res.data)['suggestion']['id']
    res = _review(client, admin_headers, sample_court.id, suggestion_id)
    assert res.status_code == 403
    assert _court(client, sample_court.id)['surface'] == 'Hard'


def test_non_admin_cannot_review(client, user_headers, other_headers, sample_court):
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay').data)['suggestion']['id']
    res = _review(client, other_headers, sample_court.id, suggestion_id)
    assert res.status_code == 403


def test_approval_applies_only_proposed_fields(client, user_headers, admin_headers, sample_court):
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, name='Lincoln Park Tennis Center',
    ).data)['suggestion']['id']

    res = _review(client, admin_headers, sample_court.id, suggestion_id, review_note='Confirmed')
    assert res.status_code == 200
    body = json.loads(res.data)
    assert body['suggestion']['status'] == 'approved'
    assert body['suggestion']['review_note'] == 'Confirmed'
    assert body['applied_fields'] == ['name']

    court = _court(client, sample_court.id)
    assert court['name'] == 'Lincoln Park Tennis Center'
    assert court['surface'] == 'Hard'
    assert court['number_of_courts'] == 6
    assert court['lighted'] is True


def test_reviewed_edit_suggestion_cannot_be_reviewed_again(client, user_headers,
                                                          admin_headers, sample_court):
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay').data)['suggestion']['id']
    assert _review(client, admin_headers, sample_court.id, suggestion_id, 'rejected').status_code == 200
    res = _review(client, admin_headers, sample_court.id, suggestion_id, 'approved')
    assert res.status_code == 400
    assert _court(client, sample_court.id)['surface'] == 'Hard'


def test_review_requires_valid_status(client, user_headers, admin_headers, sample_court):
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay').data)['suggestion']['id']
    res = _review(client, admin_headers, sample_court.id, suggestion_id, 'pending')
    assert res.status_code == 400


def test_address_change_is_geocoded(client, user_headers, admin_headers, sample_court, geocoder):
    geocoder.result = GeocodeResult(41.95, -87.65, 'fake')

    res = _propose(client, user_headers, sample_court.id, address='2100 N Cannon Dr')
    assert res.status_code == 201
    suggestion = json.loads(res.data)['suggestion']
    assert suggestion['suggested_latitude'] == 41.95
    assert geocoder.calls[-1] == ('2100 N Cannon Dr', 'Chicago', 'IL', '60614')

    _review(client, admin_headers, sample_court.id, suggestion['id'])
    with client.application.app_context():
        court = db.session.get(Court, sample_court.id)
        assert court.address == '2100 N Cannon Dr'
        assert court.latitude == 41.95
        assert court.address_key == '2100 n cannon dr|chicago|il|60614'


def test_address_change_must_geocode(client, user_headers, sample_court, geocoder):
    geocoder.unresolvable.add('nowhere')
    res = _propose(client, user_headers, sample_court.id, address='Nowhere')
    assert res.status_code == 400
    assert json.loads(res.data)['error'] == 'Invalid address'


def test_field_by_field_review(client, user_headers, admin_headers, sample_court):
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay', court_condition='Poor',
    ).data)['suggestion']['id']

    res = _review(client, admin_headers, sample_court.id, suggestion_id, 'approved', field='surface')
    assert res.status_code == 200
    body = json.loads(res.data)
    assert body['applied_fields'] == ['surface']
    assert body['suggestion']['status'] == 'pending'
    assert body['suggestion']['suggested_surface'] is None
    assert body['suggestion']['suggested_condition'] == 'Poor'
    assert _court(client, sample_court.id)['surface'] == 'Clay'

    res = _review(client, admin_headers, sample_court.id, suggestion_id, 'rejected', field='condition')
    body = json.loads(res.data)
    assert body['suggestion']['status'] == 'rejected'
    assert body['suggestion']['reviewed_by'] == 'admin-1'
    assert _court(client, sample_court.id)['court_condition'] == 'Good'


def test_field_review_rejects_unknown_or_empty_field(client, user_headers, admin_headers, sample_court):
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay').data)['suggestion']['id']
    assert _review(client, admin_headers, sample_court.id, suggestion_id,
                   field='colour').status_code == 400
    assert _review(client, admin_headers, sample_court.id, suggestion_id,
                   field='name').status_code == 400


def test_owner_can_update_pending_suggestion(client, user_headers, other_headers,
                                             admin_headers, sample_court):
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay').data)['suggestion']['id']
    url = _url(sample_court.id, suggestion_id)

    res = client.patch(url, json={'reason': 'Typo', 'surface': 'Grass'}, headers=other_headers)
    assert res.status_code == 403

    res = client.patch(url, json={'reason': 'Typo', 'surface': 'Grass'}, headers=user_headers)
    assert res.status_code == 200
    suggestion = json.loads(res.data)['suggestion']
    assert suggestion['suggested_surface'] == 'Grass'
    assert suggestion['reason'] == 'Typo'

    _review(client, admin_headers, sample_court.id, suggestion_id, 'rejected')
    res = client.patch(url, json={'reason': 'Again', 'surface': 'Clay'}, headers=user_headers)
    assert res.status_code == 400


def test_delete_edit_suggestion_permissions(client, user_headers, other_headers,
                                            admin_headers, sample_court):
    first = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay').data)['suggestion']['id']
    second = json.loads(_propose(
        client, other_headers, sample_court.id, surface='Grass').data)['suggestion']['id']

    assert client.delete(_url(sample_court.id, first), headers=other_headers).status_code == 403
    assert client.delete(_url(sample_court.id, first), headers=user_headers).status_code == 200
    assert client.delete(_url(sample_court.id, second), headers=admin_headers).status_code == 200
    with client.application.app_context():
        assert CourtEditSuggestion.query.count() == 0


def test_list_hides_suggestions_the_court_already_matches(client, user_headers, other_headers,
                                                         admin_headers, sample_court):
    _propose(client, user_headers, sample_court.id, surface='Clay', court_condition='Poor')
    _propose(client, other_headers, sample_court.id, surface='Grass')

    # An admin edit makes the second suggestion redundant
    client.put(f'/api/admin/courts/{sample_court.id}', json={'surface': 'grass'},
               headers=admin_headers)

    res = client.get(_url(sample_court.id), headers=user_headers)
    assert res.status_code == 200
    suggestions = json.loads(res.data)['suggestions']
    assert len(suggestions) == 1
    assert suggestions[0]['suggested_by'] == 'user-1'
    assert suggestions[0]['changed_fields'] == ['surface', 'court_condition']

    res = client.get(_url(sample_court.id) + '?include_all=true', headers=user_headers)
    assert len(json.loads(res.data)['suggestions']) == 2

    res = client.get(_url(sample_court.id) + '?user_id=user-2&include_all=1', headers=user_headers)
    assert [s['suggested_by'] for s in json.loads(res.data)['suggestions']] == ['user-2']


def test_list_requires_login(client, sample_court):
    assert client.get(_url(sample_court.id)).status_code == 401


def test_approval_refreshes_cached_court(client, user_headers, admin_headers, sample_court):
    assert json.loads(client.get(f'/api/courts/{sample_court.id}').data)['court']['surface'] == 'Hard'
    suggestion_id = json.loads(_propose(
        client, user_headers, sample_court.id, surface='Clay').data)['suggestion']['id']
    _review(client, admin_headers, sample_court.id, suggestion_id)
    assert json.loads(client.get(f'/api/courts/{sample_court.id}').data)['court']['surface'] == 'Clay'


def test_court_patch_skips_absent_values():
    court = Court(name='Old', surface='Hard', number_of_courts=4, address='1 A St',
                  city='X', state='IL', zip='1', address_key='1 a st|x|il|1')
    applied = CourtPatch(name='New', surface=None, number_of_courts=0).apply_to(court)
    assert applied == ['name']
    assert court.name == 'New'
    assert court.surface == 'Hard'
    assert court.number_of_courts == 4
    assert court.updated_at is not None


def test_court_patch_empty():
    assert CourtPatch().is_empty()
    assert CourtPatch.from_mapping({'lighted': False, 'bogus': 1}).changes() == {'lighted': False}
