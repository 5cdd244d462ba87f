"""
Flask-Passkeys Storage Adapters
===============================
Durable home for users and their passkey credentials.

- Users are dicts: {'id', 'username', 'display_name'}.
- Credentials are opaque JSON-serialisable dicts owned by the ceremony
  engine; adapters persist them verbatim.
- Domain failures raise DuplicateUsername / NotFound, backend failures
  raise InfrastructureError.
"""

import copy
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from .errors import DuplicateUsername, InfrastructureError, NotFound


class StorageAdapter(ABC):
    """Base storage adapter interface"""

    @abstractmethod
    def create_user(self, username, display_name):
        """Create a user, raising DuplicateUsername if the name is taken"""
        pass

    @abstractmethod
    def get_user_by_username(self, username):
        """Retrieve user by username or raise NotFound"""
        pass

    @abstractmethod
    def get_user_by_id(self, user_id):
        """Retrieve user by ID or raise NotFound"""
        pass

    @abstractmethod
    def add_credential(self, user_id, credential):
        """Append a credential to the user's set"""
        pass

    @abstractmethod
    def list_credentials(self, user_id):
        """Return every credential registered to the user"""
        pass

    def get_or_create_user(self, username, display_name=None):
        """Get existing user or create new one.

        A concurrent create for the same name loses on the unique
        constraint; the loser reads back the winner's record.
        """
        try:
            return self.get_user_by_username(username)
        except NotFound:
            pass

        try:
            return self.create_user(username, display_name or username)
        except DuplicateUsername:
            return self.get_user_by_username(username)


class InMemoryStorageAdapter(StorageAdapter):
    """
    In-memory storage for development and tests.
    DO NOT USE IN PRODUCTION - data lost on restart.
    """

    def __init__(self):
        self.users = {}
        self.users_by_id = {}
        self.credentials = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create_user(self, username, display_name):
        with self._lock:
            if username in self.users:
                raise DuplicateUsername(f"Username already exists: {username}")
            user = {
                'id': self._next_id,
                'username': username,
                'display_name': display_name,
            }
            self._next_id += 1
            self.users[username] = user
            self.users_by_id[user['id']] = user
            self.credentials[user['id']] = []
        return dict(user)

    def get_user_by_username(self, username):
        with self._lock:
            user = self.users.get(username)
            if user is not None:
                return dict(user)
        raise NotFound(f"User not found: {username}")

    def get_user_by_id(self, user_id):
        with self._lock:
            user = self.users_by_id.get(user_id)
            if user is not None:
                return dict(user)
        raise NotFound(f"User not found: {user_id}")

    def add_credential(self, user_id, credential):
        with self._lock:
            if user_id not in self.credentials:
                raise NotFound(f"User not found: {user_id}")
            self.credentials[user_id].append(copy.deepcopy(credential))

    def list_credentials(self, user_id):
        with self._lock:
            return copy.deepcopy(self.credentials.get(user_id, []))


class SQLAlchemyStorageAdapter(StorageAdapter):
    """
    SQLAlchemy-based storage.

    Creates its own passkey_users / passkey_credentials tables on the
    session's bind. Username uniqueness is enforced by the database.
    """

    def __init__(self, session):
        self.session = session
        self._ensure_tables()

    def _ensure_tables(self):
        """Create users and credentials tables"""
        from sqlalchemy import Table, Column, Integer, String, Text, DateTime, MetaData, ForeignKey

        metadata = MetaData()
        self.users_table = Table(
            'passkey_users',
            metadata,
            Column('id', Integer, primary_key=True, autoincrement=True),
            Column('username', String(255), unique=True, nullable=False),
            Column('display_name', String(255)),
            extend_existing=True
        )
        self.credentials_table = Table(
            'passkey_credentials',
            metadata,
            Column('id', Integer, primary_key=True, autoincrement=True),
            Column('user_id', Integer, ForeignKey('passkey_users.id'), nullable=False, index=True),
            Column('credential_json', Text, nullable=False),
            Column('created_at', DateTime, nullable=False),
            extend_existing=True
        )

        # Create tables if they don't exist
        metadata.create_all(self.session.get_bind(), checkfirst=True)

    @staticmethod
    def _row_to_user(row):
        return {
            'id': row.id,
            'username': row.username,
            'display_name': row.display_name,
        }

    def create_user(self, username, display_name):
        from sqlalchemy.exc import IntegrityError, SQLAlchemyError

        try:
            result = self.session.execute(
                self.users_table.insert().values(
                    username=username,
                    display_name=display_name
                )
            )
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise DuplicateUsername(f"Username already exists: {username}")
        except SQLAlchemyError as e:
            self.session.rollback()
            raise InfrastructureError(f"Failed to create user: {e}") from e

        return {
            'id': result.inserted_primary_key[0],
            'username': username,
            'display_name': display_name,
        }

    def _fetch_user(self, clause, label):
        from sqlalchemy.exc import SQLAlchemyError

        try:
            row = self.session.execute(
                self.users_table.select().where(clause)
            ).fetchone()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise InfrastructureError(f"Failed to read user: {e}") from e

        if row is None:
            raise NotFound(f"User not found: {label}")
        return self._row_to_user(row)

    def get_user_by_username(self, username):
        return self._fetch_user(self.users_table.c.username == username, username)

    def get_user_by_id(self, user_id):
        return self._fetch_user(self.users_table.c.id == user_id, user_id)

    def add_credential(self, user_id, credential):
        from sqlalchemy.exc import SQLAlchemyError

        # SQLite does not enforce foreign keys unless asked to
        self.get_user_by_id(user_id)

        try:
            self.session.execute(
                self.credentials_table.insert().values(
                    user_id=user_id,
                    credential_json=json.dumps(credential),
                    created_at=datetime.now(timezone.utc)
                )
            )
            self.session.commit()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            self.session.rollback()
            raise InfrastructureError(f"Failed to save credential: {e}") from e

    def list_credentials(self, user_id):
        from sqlalchemy.exc import SQLAlchemyError

        try:
            rows = self.session.execute(
                self.credentials_table.select().where(
                    self.credentials_table.c.user_id == user_id
                ).order_by(self.credentials_table.c.id)
            ).fetchall()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise InfrastructureError(f"Failed to read credentials: {e}") from e

        credentials = []
        for row in rows:
            try:
                credentials.append(json.loads(row.credential_json))
            except ValueError as e:
                raise InfrastructureError(f"Corrupt credential record {row.id}") from e
        return credentials
