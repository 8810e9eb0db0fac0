# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Require an upstream-authenticated actor.

    Authentication happens at the gateway in front of this service; it
    forwards the user id in the X-User-Id header. Sets:
    - g.current_user_id: opaque user id string

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not user_id:
            return jsonify({"error": "Authentication required"}), 401
        if len(user_id) > 64:
            return jsonify({"error": "Invalid user id"}), 401

        g.current_user_id = user_id
        return f(*args, **kwargs)

    return decorated_function
