# ==============================================================================
# HTTP API - Local JSON interface over the record store and session manager
# ==============================================================================
# One operator per store: the auth state is shared by every request, the
# same way one browser profile shares it between tabs. Routes only
# orchestrate request → service → response; the rules live in services/.
#
# Error responses: {"ok": false, "error": "..."} with
#   400 validation, 401 not logged in, 403 role denied, 404 unknown table or
#   record, 405 append-only table.
# ==============================================================================

import atexit
import logging
from functools import wraps
from typing import Any, Dict, Iterable, Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from stockwise.app_container import AppContainer
from stockwise.config import Config, configure_logging
from stockwise.exceptions import ProtectedTable, UnknownTable, ValidationError
from stockwise.models.entities import UserPatch, UserRole
from stockwise.services.session_service import LOGIN_VIEW
from stockwise.time_utils import from_epoch_ms, to_iso_z

logger = logging.getLogger(__name__)

ADMIN = (UserRole.ADMIN.value,)
EDITORS = (UserRole.ADMIN.value, UserRole.STAFF.value)

# Roles per table and operation; None means any logged-in user.
READ_ROLES = {'users': ADMIN, 'activity_logs': ADMIN}
WRITE_ROLES = {'users': ADMIN}
# Tables written only through dedicated endpoints
READ_ONLY_TABLES = {'stock_logs': '/api/stock/movements', 'activity_logs': None}

USER_FIELDS = ('full_name', 'username', 'email', 'password', 'role', 'status')


def json_error(message: str, status: int, **extra: Any):
    body = {'ok': False, 'error': message}
    body.update(extra)
    return jsonify(body), status


def public_record(table: str, record: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Record as sent to clients; password hashes never leave the server."""
    if record is None or table != 'users':
        return record
    data = dict(record)
    data.pop('password', None)
    return data


def create_app(container: Optional[AppContainer] = None) -> Flask:
    """
    Build the Flask application.

    Args:
        container: Wired dependencies; a container over the environment's
            Config is created (and closed at exit) when omitted
    """
    owns_container = container is None
    if container is None:
        container = AppContainer(Config())
    configure_logging(container.config.log_level)
    container.open()
    if owns_container:
        atexit.register(container.close)

    app = Flask(__name__)
    app.extensions['stockwise'] = container

    store = container.store
    sessions = container.sessions

    # ═══════════════════════════════════════════════════════════════════════
    # ACCESS CONTROL
    # ═══════════════════════════════════════════════════════════════════════

    def check_access(roles: Optional[Iterable[str]]):
        """None when allowed (g.user is set), else the error response."""
        check = sessions.require_auth(tuple(roles) if roles else None, current_view=request.path)
        if not check.granted:
            if check.redirect == LOGIN_VIEW:
                return json_error('Authentication required', 401, redirect=check.redirect)
            return json_error(check.notice, 403, redirect=check.redirect)
        g.user = check.user
        return None

    def auth_required(*roles: str):
        def deco(f):
            @wraps(f)
            def wrapper(*args, **kwargs):
                denied = check_access(roles)
                if denied is not None:
                    return denied
                return f(*args, **kwargs)
            return wrapper
        return deco

    def json_body() -> Dict[str, Any]:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        return data

    # ═══════════════════════════════════════════════════════════════════════
    # ERROR HANDLERS
    # ═══════════════════════════════════════════════════════════════════════

    @app.errorhandler(UnknownTable)
    def handle_unknown_table(exc):
        return json_error(str(exc), 404)

    @app.errorhandler(ProtectedTable)
    def handle_protected_table(exc):
        hint = READ_ONLY_TABLES.get(exc.table)
        if hint:
            return json_error(str(exc), 405, use=hint)
        return json_error(str(exc), 405)

    @app.errorhandler(ValidationError)
    def handle_validation(exc):
        if exc.field:
            return json_error(str(exc), 400, field=exc.field)
        return json_error(str(exc), 400)

    @app.errorhandler(HTTPException)
    def handle_http(exc):
        return json_error(exc.description or exc.name, exc.code or 500)

    # ═══════════════════════════════════════════════════════════════════════
    # AUTH
    # ═══════════════════════════════════════════════════════════════════════

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = json_body()
        user = container.user_service.authenticate(
            (data.get('username') or '').strip(),
            data.get('password') or '',
            remember=bool(data.get('remember')),
        )
        if user is None:
            return json_error('Invalid username or password', 401)
        return jsonify({
            'ok': True,
            'user': user.to_dict(),
            'redirect': sessions.consume_post_login_redirect(),
        })

    @app.route('/api/auth/logout', methods=['POST'])
    def logout():
        ended = sessions.clear_session()
        return jsonify({'ok': True, 'ended': ended, 'redirect': LOGIN_VIEW})

    @app.route('/api/auth/register', methods=['POST'])
    def register():
        data = json_body()
        user_id = container.user_service.register(
            full_name=data.get('full_name', ''),
            username=data.get('username', ''),
            email=data.get('email', ''),
            password=data.get('password', ''),
            confirm_password=data.get('confirm_password'),
            role=data.get('role') or UserRole.USER.value,
        )
        return jsonify({'ok': True, 'id': user_id}), 201

    @app.route('/api/auth/session', methods=['GET'])
    def session_state():
        state = sessions.get_auth_state()
        if state is None:
            return jsonify({'ok': True, 'authenticated': False})
        return jsonify({
            'ok': True,
            'authenticated': True,
            'user': state.user.to_dict(),
            'expires_at': to_iso_z(from_epoch_ms(state.expires_at)),
            'remember_me': state.remember_me,
        })

    @app.route('/api/auth/history', methods=['GET'])
    @auth_required(*ADMIN)
    def auth_history():
        return jsonify({'ok': True, 'entries': sessions.auth_history()})

    @app.route('/api/activity/recent', methods=['GET'])
    @auth_required(*ADMIN)
    def recent_activity():
        limit = request.args.get('limit', 50, type=int)
        entries = container.activity_repo.recent(limit)
        return jsonify({'ok': True, 'entries': [e.to_dict() for e in entries]})

    # ═══════════════════════════════════════════════════════════════════════
    # PROFILE
    # ═══════════════════════════════════════════════════════════════════════

    @app.route('/api/profile', methods=['PATCH'])
    @auth_required()
    def update_profile():
        data = json_body()
        container.user_service.update_profile(
            g.user.id, data.get('full_name', ''), data.get('email', ''))
        return jsonify({'ok': True, 'record': public_record('users', store.get_by_id('users', g.user.id))})

    @app.route('/api/profile/password', methods=['POST'])
    @auth_required()
    def change_password():
        data = json_body()
        changed = container.user_service.change_password(
            g.user.id,
            data.get('current_password', ''),
            data.get('new_password', ''),
            data.get('confirm_password'),
        )
        if not changed:
            return json_error('Record not found', 404)
        return jsonify({'ok': True})

    @app.route('/api/profile', methods=['DELETE'])
    @auth_required()
    def delete_profile():
        data = json_body()
        if not container.user_service.delete_own_account(g.user.id, data.get('password', '')):
            return json_error('Record not found', 404)
        return jsonify({'ok': True, 'redirect': LOGIN_VIEW})

    # ═══════════════════════════════════════════════════════════════════════
    # STOCK AND STATISTICS
    # ═══════════════════════════════════════════════════════════════════════

    @app.route('/api/stock/movements', methods=['POST'])
    @auth_required(*EDITORS)
    def stock_movement():
        data = json_body()
        entry = container.inventory_service.record_movement(
            data.get('product_id', ''),
            data.get('transaction_type', ''),
            data.get('quantity'),
            reason=data.get('reason', ''),
            reference=data.get('reference'),
            supplier_id=data.get('supplier_id'),
            notes=data.get('notes', ''),
            user_id=g.user.id,
        )
        product = store.get_by_id('products', entry.product_id)
        return jsonify({'ok': True, 'entry': entry.to_dict(), 'product': product}), 201

    @app.route('/api/stock/history/<product_id>', methods=['GET'])
    @auth_required()
    def stock_history(product_id):
        entries = container.inventory_service.history(product_id)
        return jsonify({'ok': True, 'entries': [e.to_dict() for e in entries]})

    @app.route('/api/stats/inventory', methods=['GET'])
    @auth_required()
    def inventory_stats():
        inventory = container.inventory_service
        return jsonify({
            'ok': True,
            'stats': inventory.inventory_stats(),
            'low_stock': [p.to_dict() for p in inventory.low_stock_products()],
        })

    # ═══════════════════════════════════════════════════════════════════════
    # BACKUP
    # ═══════════════════════════════════════════════════════════════════════

    @app.route('/api/export', methods=['GET'])
    @auth_required(*ADMIN)
    def export_data():
        return jsonify(store.export_data())

    @app.route('/api/import', methods=['POST'])
    @auth_required(*ADMIN)
    def import_data():
        imported = store.import_data(json_body())
        logger.info("Imported tables: %s", ', '.join(imported) or 'none')
        return jsonify({'ok': True, 'imported': imported})

    # ═══════════════════════════════════════════════════════════════════════
    # GENERIC TABLES
    # ═══════════════════════════════════════════════════════════════════════

    @app.route('/api/<table>', methods=['GET'])
    def list_records(table):
        store.key_for(table)
        denied = check_access(READ_ROLES.get(table))
        if denied is not None:
            return denied
        records = store.find(table, request.args.to_dict())
        return jsonify({'ok': True, 'records': [public_record(table, r) for r in records]})

    @app.route('/api/<table>/<record_id>', methods=['GET'])
    def get_record(table, record_id):
        store.key_for(table)
        denied = check_access(READ_ROLES.get(table))
        if denied is not None:
            return denied
        record = store.get_by_id(table, record_id)
        if record is None:
            return json_error('Record not found', 404)
        return jsonify({'ok': True, 'record': public_record(table, record)})

    @app.route('/api/<table>', methods=['POST'])
    def create_record(table):
        store.key_for(table)
        denied = check_access(WRITE_ROLES.get(table, EDITORS))
        if denied is not None:
            return denied
        if table in READ_ONLY_TABLES:
            raise ProtectedTable(table, 'insert')
        data = json_body()
        if table == 'users':
            record_id = container.user_service.create_user(
                full_name=data.get('full_name', ''),
                username=data.get('username', ''),
                email=data.get('email', ''),
                password=data.get('password', ''),
                role=data.get('role') or UserRole.USER.value,
                status=data.get('status') or 'active',
            )
        else:
            record_id = store.insert(table, data)
        if record_id is None:
            return json_error('Storage unavailable', 503)
        return jsonify({'ok': True, 'id': record_id,
                        'record': public_record(table, store.get_by_id(table, record_id))}), 201

    @app.route('/api/<table>/<record_id>', methods=['PATCH'])
    def update_record(table, record_id):
        store.key_for(table)
        denied = check_access(WRITE_ROLES.get(table, EDITORS))
        if denied is not None:
            return denied
        data = json_body()
        if table == 'users':
            patch = UserPatch(**{k: data[k] for k in USER_FIELDS if k in data})
            updated = container.user_service.update_user(record_id, patch)
        else:
            updated = store.update(table, record_id, data)
        if not updated:
            return json_error('Record not found', 404)
        return jsonify({'ok': True, 'record': public_record(table, store.get_by_id(table, record_id))})

    @app.route('/api/<table>/<record_id>', methods=['DELETE'])
    @auth_required(*ADMIN)
    def delete_record(table, record_id):
        store.key_for(table)
        unassigned = None
        if table == 'suppliers':
            deleted, unassigned = container.supplier_service.delete_supplier(record_id)
        elif table == 'users':
            deleted = container.user_service.delete_user(record_id, g.user.id)
        else:
            deleted = store.delete(table, record_id)
        if not deleted:
            return json_error('Record not found', 404)
        body = {'ok': True}
        if unassigned is not None:
            body['unassigned_products'] = unassigned
        return jsonify(body)

    return app
