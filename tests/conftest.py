import pytest
from backend.app import create_app, db
from backend.auth_utils import generate_token
from backend.services.geocoding import GeocodeResult
from backend.services.storage import LocalStorage


class FakeGeocoder:
    """Resolves every address to downtown Chicago unless told otherwise."""

    def __init__(self):
        self.calls = []
        self.unresolvable = set()
        self.result = GeocodeResult(41.8781, -87.6298, 'fake')

    def geocode(self, address, city='', state='', zip_code=''):
        self.calls.append((address, city, state, zip_code))
        if str(address or '').strip().lower() in self.unresolvable:
            return None
        return self.result


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.extensions['geocoder'] = FakeGeocoder()
    app.extensions['storage'] = LocalStorage(str(tmp_path / 'uploads'), public_url='/uploads')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def geocoder(app):
    return app.extensions['geocoder']


@pytest.fixture
def storage(app):
    return app.extensions['storage']


def make_headers(app, user_id, name='', email='', roles=()):
    with app.app_context():
        token = generate_token(user_id, name=name, email=email, roles=roles)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def user_headers(app):
    return make_headers(app, 'user-1', name='Alice', email='alice@example.com')


@pytest.fixture
def other_headers(app):
    return make_headers(app, 'user-2', name='Bob', email='bob@example.com')


@pytest.fixture
def admin_headers(app):
    # admin-1 is in the testing ADMIN_USER_IDS allow-list
    return make_headers(app, 'admin-1', name='Ada Admin', email='ada@example.com')


@pytest.fixture
def second_admin_headers(app):
    return make_headers(app, 'admin-2', name='Max Moderator', email='max@courtfinder-staff.org')


@pytest.fixture
def sample_court(app):
    """Create a sample court for testing."""
    from backend.models import Court
    from backend.services.court_payloads import address_key
    court = Court(
        name='Lincoln Park Courts', address='2045 N Lincoln Park W',
        city='Chicago', state='IL', zip='60614',
        address_key=address_key('2045 N Lincoln Park W', 'Chicago', 'IL', '60614'),
        latitude=41.9214, longitude=-87.6336,
        number_of_courts=6, surface='Hard', court_condition='Good',
        court_type='Public', lighted=True, hitting_wall=False,
        membership_required=False, parking=True,
    )
    db.session.add(court)
    db.session.commit()
    return court
