# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Registration with password strength validation
- Login issues a bearer session token
- Logout revokes it
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services.auth_service import PasswordValidationError, UserExistsError
from ..decorators import bearer_token, require_auth
from ..validation import require_fields, ValidationError
from agrisupply.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(session) -> dict:
    return {
        "expires_at": to_utc_z(session.expires_at),
        "created_at": to_utc_z(session.created_at),
    }


@auth_bp.post("/register")
def register_route():
    """Create an account and log it in."""
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "username", "email", "password")
        user = auth_service.create_user(
            username=str(data["username"]),
            email=str(data["email"]),
            password=str(data["password"]),
            business_name=data.get("business_name"),
        )
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": _session_payload(session),
            "message": "User registered successfully",
        }), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except PasswordValidationError as e:
        return jsonify({"error": str(e), "errors": [{"field": "password", "message": str(e)}]}), 400
    except UserExistsError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %s from %s", username, request.remote_addr)
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": _session_payload(session),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """Revoke session token. Expects Authorization header: Bearer <token>"""
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
