# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


def require_auth(f):
    """
    Resolve the calling user and store it on Flask g.

    The identity collaborator in front of this service authenticates the
    caller and forwards its user id in the X-User-Id header.

    Sets:
    - g.current_user: the active User making the request

    Returns 401 if:
    - No X-User-Id header, or one that is not an integer
    - Unknown user
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user_id = request.headers.get("X-User-Id", "").strip()
        if not raw_user_id:
            return jsonify({"error": "Authentication required", "code": "unauthenticated"}), 401

        try:
            user_id = int(raw_user_id)
        except ValueError:
            return jsonify({"error": "Invalid X-User-Id header", "code": "unauthenticated"}), 401

        user = db.session.get(User, user_id)
        if not user or not user.is_active:
            return jsonify({"error": "Unknown or inactive user", "code": "unauthenticated"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function

