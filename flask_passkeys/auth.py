import json

from flask import Blueprint, request, current_app, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .ceremony import PasskeyCeremony, PER_REQUEST
from .engine import WebAuthnEngine
from .errors import PasskeyError
from .password import StubPasswordVerifier
from .sessions import SessionStateStore
from .storage import InMemoryStorageAdapter

SESSION_HEADER = 'X-Passkey-Session'


class Passkeys:
    """Passkey (WebAuthn) registration and discoverable login for Flask."""

    def __init__(self, app=None, storage_adapter=None, engine=None,
                 password_verifier=None, token_issuer=None):
        self.app = app
        self.blueprint = Blueprint('passkeys', __name__)

        self.storage = storage_adapter or InMemoryStorageAdapter()
        self.engine = engine
        self.password_verifier = password_verifier or StubPasswordVerifier()
        self.token_issuer = token_issuer

        self.sessions = None
        self.ceremony = None

        self._register_routes()

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize the extension with Flask app."""
        self.app = app
        app.config.setdefault('PASSKEYS_RP_ID', 'localhost')
        app.config.setdefault('PASSKEYS_RP_NAME', 'Passkey Demo')
        app.config.setdefault('PASSKEYS_ORIGIN', 'http://localhost:3000')
        app.config.setdefault('PASSKEYS_TIMEOUT', 60000)           # ms
        app.config.setdefault('PASSKEYS_SESSION_TTL', 300)         # seconds
        app.config.setdefault('PASSKEYS_LOGIN_CORRELATION', 'shared')
        app.config.setdefault('PASSKEYS_AUTH_TOKEN', 'mock-jwt-token')
        app.config.setdefault('PASSKEYS_URL_PREFIX', '/api')

        if self.engine is None:
            self.engine = WebAuthnEngine(
                rp_id=app.config['PASSKEYS_RP_ID'],
                rp_name=app.config['PASSKEYS_RP_NAME'],
                origin=app.config['PASSKEYS_ORIGIN'],
                timeout_ms=app.config['PASSKEYS_TIMEOUT'],
            )

        self.sessions = SessionStateStore(ttl_seconds=app.config['PASSKEYS_SESSION_TTL'])
        self.ceremony = PasskeyCeremony(
            self.storage,
            self.engine,
            self.sessions,
            login_correlation=app.config['PASSKEYS_LOGIN_CORRELATION'],
        )

        app.extensions['passkeys'] = self

        prefix = app.config['PASSKEYS_URL_PREFIX']
        app.register_blueprint(self.blueprint, url_prefix=prefix)
        self._register_error_handlers(app, prefix)

        CORS(
            app,
            resources={f"{prefix}/*": {'origins': [app.config['PASSKEYS_ORIGIN']]}},
            methods=['GET', 'POST', 'OPTIONS'],
            allow_headers=['Content-Type', SESSION_HEADER],
        )

    def issue_token(self, user):
        """Token returned on successful login. Real issuance plugs in via token_issuer."""
        if self.token_issuer is not None:
            return self.token_issuer(user)
        return current_app.config.get('PASSKEYS_AUTH_TOKEN', 'mock-jwt-token')

    def _register_error_handlers(self, app, prefix):
        """JSON bodies for errors the blueprint handler never sees under the prefix.

        Routing failures (404, 405) and unexpected exceptions from the engine or
        storage land here. Other paths keep the host app's own error pages.
        """

        def ours():
            return request.path == prefix or request.path.startswith(prefix.rstrip('/') + '/')

        @app.errorhandler(HTTPException)
        def handle_http_error(error):
            if not ours():
                return error
            if error.code is not None and error.code >= 500:
                current_app.logger.error(f"HTTP {error.code} on {request.method} {request.path}: {error!r}")
            response = error.get_response()
            response.data = json.dumps({'error': error.description})
            response.content_type = 'application/json'
            return response

        @app.errorhandler(Exception)
        def handle_unexpected_error(error):
            if not ours():
                raise error
            current_app.logger.error(f"Unhandled error on {request.method} {request.path}: {error!r}", exc_info=error)
            return jsonify({'error': 'Internal server error'}), 500

    def _register_routes(self):
        """Register routes and error handling on the blueprint."""

        @self.blueprint.errorhandler(PasskeyError)
        def handle_passkey_error(error):
            if error.status_code >= 500:
                cause = error.__cause__
                current_app.logger.error(f"{error.message}: {cause!r}" if cause else error.message)
            return jsonify({'error': error.message}), error.status_code

        @self.blueprint.route('/health', methods=['GET'])
        def health():
            return jsonify({'status': 'ok'})

        # ==================== Passkey Registration ====================

        @self.blueprint.route('/auth/register/begin', methods=['POST'])
        def register_begin():
            """Issue a creation challenge for ?username=, creating the user if new."""
            username = request.args.get('username', '')
            options = self.ceremony.register_begin(username)
            return jsonify(options)

        @self.blueprint.route('/auth/register/finish', methods=['POST'])
        def register_finish():
            """Verify the attestation and store the new passkey."""
            username = request.args.get('username', '')
            data = request.get_json(silent=True)

            try:
                self.ceremony.register_finish(username, data)
            except PasskeyError as e:
                if e.status_code < 500:
                    current_app.logger.warning(f"Passkey registration failed for {username!r}: {e.message}")
                raise

            current_app.logger.info(f"Passkey registered for {username!r}")
            return jsonify({'status': 'ok'})

        # ==================== Discoverable Login ====================

        @self.blueprint.route('/auth/login/begin', methods=['POST'])
        def login_begin():
            """Issue a discoverable-login challenge; no username needed."""
            options, key = self.ceremony.login_begin()

            body = dict(options)
            if self.ceremony.login_correlation == PER_REQUEST:
                body['session'] = key
            return jsonify(body)

        @self.blueprint.route('/auth/login/finish', methods=['POST'])
        def login_finish():
            """Verify the assertion, resolving the user from its user handle."""
            data = request.get_json(silent=True)
            key = request.headers.get(SESSION_HEADER)

            try:
                user, _credential = self.ceremony.login_finish(data, key)
            except PasskeyError as e:
                if e.status_code < 500:
                    current_app.logger.warning(f"Passkey login failed: {e.message}")
                raise

            current_app.logger.info(f"Passkey login for user {user.get('id')}")
            return jsonify({
                'status': 'ok',
                'message': 'Passkey login successful!',
                'token': self.issue_token(user),
            })

        # ==================== Password Fallback ====================

        @self.blueprint.route('/login', methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE'])
        def password_login():
            """Degraded password login. Verification is delegated to password_verifier."""
            if request.method != 'POST':
                return jsonify({'error': 'Method not allowed'}), 405

            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                return jsonify({'error': 'Invalid request body'}), 400

            email = data.get('email')
            if not self.password_verifier.verify(email, data.get('password')):
                current_app.logger.warning(f"Password login rejected for {email!r}")
                return jsonify({'error': 'Invalid credentials'}), 401

            return jsonify({
                'token': 'mock-jwt-token-12345',
                'message': 'Login successful',
            })
