# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .extensions import db
from .models import User


USER_HEADER = "X-User-Id"


def resolve_user(f):
    """
    Attribute the request to a user.

    Sets g.current_user (User or None) and g.user_id (int or None).

    - No X-User-Id header: anonymous call, actions are attributed to None
    - Header with an unknown, inactive or malformed id: 401
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = None
        g.user_id = None

        raw = request.headers.get(USER_HEADER)
        if raw:
            try:
                user_id = int(raw.strip())
            except ValueError:
                return jsonify({"error": "Utilisateur invalide"}), 401

            user = db.session.get(User, user_id)
            if user is None or not user.is_active:
                return jsonify({"error": "Utilisateur inconnu ou désactivé"}), 401

            g.current_user = user
            g.user_id = user.id

        return f(*args, **kwargs)

    return decorated_function
