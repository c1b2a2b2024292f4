"""
Identity resolution for requests.

Sign-up and login live with the hosted identity provider; this app only turns
an access token (bearer header or cookie) into an ``AuthUser``.
"""
from dataclasses import dataclass
from typing import Optional

from flask import current_app, jsonify, redirect, request
from flask_login import UserMixin
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..extensions import login_manager


@dataclass(frozen=True)
class AuthUser(UserMixin):
    id: str
    email: Optional[str] = None

    def get_id(self):
        return self.id


class SessionAccessor:
    def resolve(self, token: str) -> Optional[AuthUser]:
        raise NotImplementedError


class SignedTokenSessionAccessor(SessionAccessor):
    """Tokens signed with SECRET_KEY; used in development, tests and the CLI."""

    def __init__(self, secret_key: str, salt: str = "session-token-v1", max_age: int = 3600):
        self._serializer = URLSafeTimedSerializer(secret_key=secret_key, salt=salt)
        self.max_age = max_age

    def issue(self, user_id: str, email: Optional[str] = None) -> str:
        return self._serializer.dumps({"sub": str(user_id), "email": email})

    def resolve(self, token: str) -> Optional[AuthUser]:
        try:
            data = self._serializer.loads(token, max_age=self.max_age)
        except (BadSignature, SignatureExpired):
            return None
        if not isinstance(data, dict) or not data.get("sub"):
            return None
        return AuthUser(id=str(data["sub"]), email=data.get("email"))


class SupabaseSessionAccessor(SessionAccessor):
    def __init__(self, url: str, key: str):
        self.url = url
        self.key = key
        self._client = None

    def _get_client(self):
        if self._client is None:
            from supabase import create_client
            self._client = create_client(self.url, self.key)
        return self._client

    def resolve(self, token: str) -> Optional[AuthUser]:
        try:
            response = self._get_client().auth.get_user(token)
        except Exception as exc:
            # Expired/forged tokens surface as API errors; treat as anonymous
            current_app.logger.info("auth.session.token_rejected", extra={"error": type(exc).__name__})
            return None
        user = getattr(response, "user", None)
        if user is None or not getattr(user, "id", None):
            return None
        return AuthUser(id=str(user.id), email=getattr(user, "email", None))


def build_session_accessor(app) -> SessionAccessor:
    backend = (app.config.get("AUTH_BACKEND") or "signed").lower()
    if backend == "supabase":
        url = app.config.get("SUPABASE_URL")
        key = app.config.get("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for AUTH_BACKEND=supabase")
        return SupabaseSessionAccessor(url, key)
    if backend == "signed":
        return SignedTokenSessionAccessor(
            app.config["SECRET_KEY"],
            salt=app.config.get("AUTH_TOKEN_SALT", "session-token-v1"),
            max_age=int(app.config.get("AUTH_TOKEN_MAX_AGE", 3600)),
        )
    raise RuntimeError(f"Unknown AUTH_BACKEND: {backend}")


def get_session_accessor() -> SessionAccessor:
    return current_app.extensions["session_accessor"]


def extract_token(req=None) -> Optional[str]:
    req = req or request
    header = req.headers.get("Authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    cookie = req.cookies.get(current_app.config.get("AUTH_COOKIE_NAME", "sb-access-token"))
    return cookie or None


def resolve_request_user(req=None) -> Optional[AuthUser]:
    token = extract_token(req)
    if not token:
        return None
    return get_session_accessor().resolve(token)


def _wants_json() -> bool:
    return (
        "application/json" in (request.headers.get("Accept") or "").lower()
        or request.is_json
        or request.path.startswith(("/api/", "/billing/"))
    )


@login_manager.request_loader
def _load_user_from_request(req):
    return resolve_request_user(req)


@login_manager.unauthorized_handler
def _unauthorized():
    if _wants_json():
        return jsonify({"error": "Unauthorized"}), 401
    return redirect(current_app.config.get("LOGIN_URL", "/auth/login"))


def init_session_accessor(app):
    # Tests may preinstall an accessor
    if "session_accessor" not in app.extensions:
        app.extensions["session_accessor"] = build_session_accessor(app)
