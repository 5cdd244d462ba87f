"""
SQLAlchemy storage adapter tests for Flask-Passkeys.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import OperationalError

from flask_passkeys import Passkeys
from flask_passkeys.errors import DuplicateUsername, InfrastructureError, NotFound
from flask_passkeys.storage import SQLAlchemyStorageAdapter


@pytest.fixture
def db_app():
    """Flask app with SQLAlchemy database."""
    app = Flask(__name__)
    app.config['SECRET_KEY'] = 'test-secret'
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['TESTING'] = True
    app.config['PASSKEYS_RP_ID'] = 'localhost'
    app.config['PASSKEYS_RP_NAME'] = 'Test App'

    db = SQLAlchemy(app)

    with app.app_context():
        storage = SQLAlchemyStorageAdapter(db.session)
        Passkeys(app, storage_adapter=storage)
        app.db = db

    yield app

    with app.app_context():
        db.session.remove()


@pytest.fixture
def db_storage(db_app):
    with db_app.app_context():
        yield db_app.extensions['passkeys'].storage


@pytest.mark.unit
class TestSQLAlchemyUserOperations:

    def test_create_and_get_user(self, db_storage):
        user = db_storage.create_user('testuser', 'Test User')

        assert user['id']
        assert user['username'] == 'testuser'

        fetched = db_storage.get_user_by_username('testuser')
        assert fetched == user

    def test_get_user_by_id(self, db_storage):
        user = db_storage.create_user('idtest', 'ID Test')

        fetched = db_storage.get_user_by_id(user['id'])

        assert fetched['username'] == 'idtest'
        assert fetched['display_name'] == 'ID Test'

    def test_get_user_not_found(self, db_storage):
        with pytest.raises(NotFound):
            db_storage.get_user_by_username('nonexistent')
        with pytest.raises(NotFound):
            db_storage.get_user_by_id(12345)

    def test_duplicate_username_fails(self, db_storage):
        db_storage.create_user('dupe', 'Dupe')

        with pytest.raises(DuplicateUsername):
            db_storage.create_user('dupe', 'Dupe 2')

        # Session is still usable after the rollback
        assert db_storage.get_user_by_username('dupe')['display_name'] == 'Dupe'

    def test_get_or_create_reuses_existing(self, db_storage):
        first = db_storage.get_or_create_user('alice')
        second = db_storage.get_or_create_user('alice')

        assert first['id'] == second['id']

    def test_get_or_create_recovers_from_lost_race(self, db_storage):
        winner = db_storage.create_user('racer', 'racer')

        # Simulate the lookup happening before the other request committed
        with patch.object(db_storage, 'get_user_by_username',
                          side_effect=[NotFound('racer'), winner]):
            user = db_storage.get_or_create_user('racer')

        assert user['id'] == winner['id']

    def test_ids_are_unique(self, db_storage):
        ids = {db_storage.create_user(f'user{i}', f'User {i}')['id'] for i in range(5)}

        assert len(ids) == 5


@pytest.mark.unit
class TestSQLAlchemyCredentialOperations:

    def test_add_and_list_credentials(self, db_storage):
        user = db_storage.create_user('alice', 'alice')
        laptop = {'id': 'bGFwdG9w', 'public_key': 'cGs', 'sign_count': 0, 'transports': ['internal']}
        phone = {'id': 'cGhvbmU', 'public_key': 'cGs', 'sign_count': 3, 'transports': ['hybrid']}

        db_storage.add_credential(user['id'], laptop)
        db_storage.add_credential(user['id'], phone)

        assert db_storage.list_credentials(user['id']) == [laptop, phone]

    def test_credentials_scoped_to_user(self, db_storage):
        alice = db_storage.create_user('alice', 'alice')
        bob = db_storage.create_user('bob', 'bob')
        db_storage.add_credential(alice['id'], {'id': 'a'})

        assert db_storage.list_credentials(bob['id']) == []

    def test_add_credential_requires_existing_user(self, db_storage):
        with pytest.raises(NotFound):
            db_storage.add_credential(999, {'id': 'orphan'})

    def test_unserialisable_credential_is_infrastructure_error(self, db_storage):
        user = db_storage.create_user('alice', 'alice')

        with pytest.raises(InfrastructureError):
            db_storage.add_credential(user['id'], {'id': object()})

        assert db_storage.list_credentials(user['id']) == []

    def test_corrupt_credential_row_is_infrastructure_error(self, db_storage):
        user = db_storage.create_user('alice', 'alice')
        db_storage.session.execute(
            db_storage.credentials_table.insert().values(
                user_id=user['id'], credential_json='{not json',
                created_at=datetime(2024, 1, 1),
            )
        )
        db_storage.session.commit()

        with pytest.raises(InfrastructureError):
            db_storage.list_credentials(user['id'])


@pytest.mark.unit
class TestSQLAlchemyFailures:

    @pytest.fixture
    def broken_session(self, db_storage):
        session = MagicMock()
        session.execute.side_effect = OperationalError('SELECT', {}, Exception('disk I/O error'))
        db_storage.session = session
        return session

    def test_read_failure_is_infrastructure_error(self, db_storage, broken_session):
        with pytest.raises(InfrastructureError):
            db_storage.get_user_by_username('alice')
        broken_session.rollback.assert_called_once()

    def test_write_failure_is_infrastructure_error(self, db_storage, broken_session):
        with pytest.raises(InfrastructureError):
            db_storage.create_user('alice', 'alice')

    def test_list_failure_is_infrastructure_error(self, db_storage, broken_session):
        with pytest.raises(InfrastructureError):
            db_storage.list_credentials(1)


@pytest.mark.integration
class TestSQLAlchemyRegistrationFlow:

    def test_register_begin_creates_user_in_database(self, db_app):
        client = db_app.test_client()

        response = client.post('/api/auth/register/begin?username=bob')

        assert response.status_code == 200
        with db_app.app_context():
            storage = db_app.extensions['passkeys'].storage
            assert storage.get_user_by_username('bob')['username'] == 'bob'

    def test_repeat_begin_does_not_duplicate_user(self, db_app):
        client = db_app.test_client()

        client.post('/api/auth/register/begin?username=bob')
        client.post('/api/auth/register/begin?username=bob')

        with db_app.app_context():
            storage = db_app.extensions['passkeys'].storage
            rows = storage.session.execute(storage.users_table.select()).fetchall()
            assert [r.username for r in rows] == ['bob']
