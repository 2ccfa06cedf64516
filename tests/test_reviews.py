"""Tests for court reviews, court photos and image uploads."""
import io
import json
import os

from backend.app import db
from backend.models import PhotoModeration, Review
from backend.services.storage import StorageError


def _review_url(court_id, review_id=None):
    base = f'/api/courts/{court_id}/reviews'
    return f'{base}/{review_id}' if review_id else base


def _photo_url(court_id, photo_id=None):
    base = f'/api/courts/{court_id}/photos'
    return f'{base}/{photo_id}' if photo_id else base


def _post_review(client, headers, court_id, **overrides):
    payload = {'rating': 4, 'text': 'Good nets, cracked baseline'}
    payload.update(overrides)
    return client.post(_review_url(court_id), json=payload, headers=headers)


def _upload(client, headers, *files):
    data = {'files': [(io.BytesIO(body), name, mimetype) for body, name, mimetype in files]}
    return client.post('/api/uploads', data=data, headers=headers,
                       content_type='multipart/form-data')


def _stored_path(storage, url):
    return os.path.join(storage.root, storage.key_from_url(url))


# ── Reviews ──────────────────────────────────────────────────────────────

def test_create_review(client, user_headers, sample_court):
    res = _post_review(client, user_headers, sample_court.id,
                       photos=['/uploads/tennis-courts/a.jpg'])
    assert res.status_code == 201
    review = json.loads(res.data)['review']
    assert review['rating'] == 4
    assert review['user_id'] == 'user-1'
    assert review['user_name'] == 'Alice'
    assert review['photos'] == ['/uploads/tennis-courts/a.jpg']

    with client.application.app_context():
        row = PhotoModeration.query.one()
        assert row.review_id == review['id']
        assert row.court_id == sample_court.id
        assert row.uploaded_by == 'user-1'


def test_create_review_validation(client, user_headers, sample_court):
    for rating in (0, 6, 'great', 4.5, None, True):
        res = _post_review(client, user_headers, sample_court.id, rating=rating)
        assert res.status_code == 400, rating
    res = _post_review(client, user_headers, sample_court.id, text='x' * 2001)
    assert res.status_code == 400
    res = _post_review(client, user_headers, sample_court.id, photos='not-a-list')
    assert res.status_code == 400
    res = _post_review(client, user_headers, sample_court.id,
                       photos=[f'/uploads/{i}.jpg' for i in range(11)])
    assert res.status_code == 400


def test_create_review_requires_login_and_court(client, user_headers):
    assert client.post(_review_url(1), json={'rating': 5}).status_code == 401
    assert _post_review(client, user_headers, 999).status_code == 404


def test_list_reviews_and_rating_stats(client, user_headers, other_headers, sample_court):
    _post_review(client, user_headers, sample_court.id, rating=5)
    _post_review(client, other_headers, sample_court.id, rating=2)

    reviews = json.loads(client.get(_review_url(sample_court.id)).data)['reviews']
    assert [r['user_id'] for r in reviews] == ['user-2', 'user-1']

    court = json.loads(client.get(f'/api/courts/{sample_court.id}').data)['court']
    assert court['average_rating'] == 3.5
    assert court['review_count'] == 2


def test_update_review_replaces_photos(client, user_headers, sample_court, storage):
    kept = storage.store(b'kept', 'tennis-courts', 'image/jpeg')
    dropped = storage.store(b'dropped', 'tennis-courts', 'image/png')
    review = json.loads(_post_review(
        client, user_headers, sample_court.id, photos=[kept, dropped]).data)['review']

    res = client.put(_review_url(sample_court.id, review['id']), json={
        'rating': 2, 'photos': [kept, '/uploads/tennis-courts/new.jpg'],
    }, headers=user_headers)
    assert res.status_code == 200
    updated = json.loads(res.data)['review']
    assert updated['rating'] == 2
    assert updated['text'] == 'Good nets, cracked baseline'
    assert updated['photos'] == [kept, '/uploads/tennis-courts/new.jpg']
    assert updated['updated_at'] is not None

    assert os.path.exists(_stored_path(storage, kept))
    assert not os.path.exists(_stored_path(storage, dropped))
    with client.application.app_context():
        urls = sorted(row.photo_url for row in PhotoModeration.query.all())
        assert urls == sorted([kept, '/uploads/tennis-courts/new.jpg'])


def test_only_author_can_change_review(client, user_headers, other_headers, admin_headers, sample_court):
    review = json.loads(_post_review(client, user_headers, sample_court.id).data)['review']
    url = _review_url(sample_court.id, review['id'])
    assert client.put(url, json={'rating': 1}, headers=other_headers).status_code == 403
    assert client.put(url, json={'rating': 1}, headers=admin_headers).status_code == 403
    assert client.delete(url, headers=other_headers).status_code == 403


def test_author_delete_is_soft(client, user_headers, sample_court, storage):
    photo = storage.store(b'img', 'tennis-courts', 'image/jpeg')
    review = json.loads(_post_review(
        client, user_headers, sample_court.id, photos=[photo]).data)['review']

    res = client.delete(_review_url(sample_court.id, review['id']), headers=user_headers)
    assert res.status_code == 200
    assert json.loads(client.get(_review_url(sample_court.id)).data)['reviews'] == []
    assert not os.path.exists(_stored_path(storage, photo))

    with client.application.app_context():
        stored = db.session.get(Review, review['id'])
        assert stored.is_deleted is True
        assert stored.deleted_by == 'user-1'
        assert PhotoModeration.query.one().is_deleted is True

    res = client.put(_review_url(sample_court.id, review['id']), json={'rating': 1},
                     headers=user_headers)
    assert res.status_code == 404


def test_review_survives_storage_failure(client, user_headers, sample_court):
    review = json.loads(_post_review(
        client, user_headers, sample_court.id,
        photos=['https://elsewhere.example.com/photo.jpg'],
    ).data)['review']
    res = client.delete(_review_url(sample_court.id, review['id']), headers=user_headers)
    assert res.status_code == 200


def test_cannot_attach_another_users_photo(client, user_headers, other_headers,
                                          sample_court, storage):
    photo = storage.store(b'img', 'tennis-courts', 'image/png')
    res = client.post(_photo_url(sample_court.id), json={'photo_url': photo}, headers=other_headers)
    assert res.status_code == 201

    res = _post_review(client, user_headers, sample_court.id, photos=[photo])
    assert res.status_code == 403
    res = client.post(_photo_url(sample_court.id), json={'photo_url': photo}, headers=user_headers)
    assert res.status_code == 403

    review = json.loads(_post_review(client, user_headers, sample_court.id).data)['review']
    res = client.put(_review_url(sample_court.id, review['id']), json={'photos': [photo]},
                     headers=user_headers)
    assert res.status_code == 403
    res = client.delete(_review_url(sample_court.id, review['id']), headers=user_headers)
    assert res.status_code == 200
    assert os.path.exists(_stored_path(storage, photo))


def test_deleting_shared_photo_keeps_file_until_last_use(client, user_headers,
                                                        sample_court, storage):
    photo = storage.store(b'img', 'tennis-courts', 'image/jpeg')
    court_photo = json.loads(client.post(_photo_url(sample_court.id), json={
        'photo_url': photo,
    }, headers=user_headers).data)['photo']
    review = json.loads(_post_review(
        client, user_headers, sample_court.id, photos=[photo]).data)['review']

    assert client.delete(_review_url(sample_court.id, review['id']),
                         headers=user_headers).status_code == 200
    assert os.path.exists(_stored_path(storage, photo))

    assert client.delete(_photo_url(sample_court.id, court_photo['id']),
                         headers=user_headers).status_code == 200
    assert not os.path.exists(_stored_path(storage, photo))


def test_review_changes_refresh_cached_court(client, user_headers, sample_court):
    assert json.loads(client.get(f'/api/courts/{sample_court.id}').data)['court']['review_count'] == 0
    _post_review(client, user_headers, sample_court.id, rating=5)
    court = json.loads(client.get(f'/api/courts/{sample_court.id}').data)['court']
    assert court['review_count'] == 1
    assert court['average_rating'] == 5.0


# ── Court photos ─────────────────────────────────────────────────────────

def test_add_and_list_court_photos(client, user_headers, sample_court):
    res = client.post(_photo_url(sample_court.id), json={
        'photoUrl': '/uploads/tennis-courts/p.jpg', 'caption': 'North courts',
    }, headers=user_headers)
    assert res.status_code == 201
    photo = json.loads(res.data)['photo']
    assert photo['uploaded_by_user_name'] == 'Alice'
    assert photo['caption'] == 'North courts'

    photos = json.loads(client.get(_photo_url(sample_court.id)).data)['photos']
    assert [p['id'] for p in photos] == [photo['id']]

    res = client.post(_photo_url(sample_court.id), json={'caption': 'No url'}, headers=user_headers)
    assert res.status_code == 400


def test_court_photo_caption_and_delete_permissions(client, user_headers, other_headers,
                                                    admin_headers, sample_court):
    photo = json.loads(client.post(_photo_url(sample_court.id), json={
        'photo_url': '/uploads/tennis-courts/p.jpg',
    }, headers=user_headers).data)['photo']
    url = _photo_url(sample_court.id, photo['id'])

    assert client.put(url, json={'caption': 'Mine now'}, headers=other_headers).status_code == 403
    res = client.put(url, json={'caption': 'Sunset'}, headers=user_headers)
    assert json.loads(res.data)['photo']['caption'] == 'Sunset'
    res = client.put(url, json={'caption': 'Moderated'}, headers=admin_headers)
    assert res.status_code == 200

    assert client.delete(url, headers=other_headers).status_code == 403
    assert client.delete(url, headers=admin_headers).status_code == 200
    assert client.delete(url, headers=user_headers).status_code == 404
    assert json.loads(client.get(_photo_url(sample_court.id)).data)['photos'] == []


# ── Uploads ──────────────────────────────────────────────────────────────

def test_upload_images(client, user_headers, storage):
    res = _upload(client, user_headers,
                  (b'\xff\xd8\xff', 'court.jpg', 'image/jpeg'),
                  (b'\x89PNG', 'net.png', 'image/png'))
    assert res.status_code == 201
    urls = json.loads(res.data)['urls']
    assert len(urls) == 2
    assert urls[0].startswith('/uploads/tennis-courts/')
    assert urls[0].endswith('.jpg')
    assert urls[1].endswith('.png')
    for url in urls:
        assert os.path.exists(_stored_path(storage, url))


def test_upload_rejects_bad_files(client, app, user_headers):
    res = client.post('/api/uploads', data={}, headers=user_headers,
                      content_type='multipart/form-data')
    assert res.status_code == 400

    res = _upload(client, user_headers, (b'hello', 'notes.txt', 'text/plain'))
    assert res.status_code == 400
    assert 'not an image' in json.loads(res.data)['error']

    app.config['UPLOAD_MAX_BYTES'] = 4
    res = _upload(client, user_headers, (b'\xff\xd8\xff\xe0\x00', 'big.jpg', 'image/jpeg'))
    assert res.status_code == 400

    app.config['UPLOAD_MAX_FILES'] = 1
    res = _upload(client, user_headers, (b'a', 'a.jpg', 'image/jpeg'), (b'b', 'b.jpg', 'image/jpeg'))
    assert res.status_code == 400


def test_upload_requires_login(client):
    res = client.post('/api/uploads', data={}, content_type='multipart/form-data')
    assert res.status_code == 401


class _FailingStorage:
    def __init__(self):
        self.deleted = []
        self.calls = 0

    def store(self, data, folder, content_type=None):
        self.calls += 1
        if self.calls > 1:
            raise StorageError('bucket unavailable')
        return f'/uploads/{folder}/{self.calls}.jpg'

    def delete(self, url):
        self.deleted.append(url)


def test_upload_storage_failure_rolls_back_stored_files(client, app, user_headers):
    failing = _FailingStorage()
    app.extensions['storage'] = failing
    res = _upload(client, user_headers, (b'a', 'a.jpg', 'image/jpeg'), (b'b', 'b.jpg', 'image/jpeg'))
    assert res.status_code == 500
    assert json.loads(res.data)['error'] == 'Internal server error'
    assert failing.deleted == ['/uploads/tennis-courts/1.jpg']
