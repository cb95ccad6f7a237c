from flask import Blueprint, request, g

from security.authentication import normalize_email
from security.context import AuthContext
from security.errors import ValidationFailed
from security.middleware import enforce_api_limits, throttle_auth_attempts
from utils.auth_context import auth_context, client_ip, load_current_account, login_required, services, user_agent
from utils.responses import auth_error_response, success_response

# Same views, two realms. The blueprint pins the AuthContext explicitly;
# nothing is inferred from headers or token shape.
central_auth_bp = Blueprint("central_auth", __name__, url_prefix="/central/auth")
tenant_auth_bp = Blueprint("tenant_auth", __name__, url_prefix="/tenants/<tenant_id>/auth")


@central_auth_bp.before_request
def _central_context():
    g.auth_context = AuthContext.central()


@tenant_auth_bp.url_value_preprocessor
def _tenant_context(endpoint, values):
    g.auth_context = AuthContext.tenant(values.pop("tenant_id"))


def _prepare():
    load_current_account()
    return enforce_api_limits()


central_auth_bp.before_request(_prepare)
tenant_auth_bp.before_request(_prepare)


def _account_json(account) -> dict:
    return {
        "id": account.id,
        "email": account.email,
        "role": account.role,
        "status": account.status.value,
        "realm": account.realm,
        "last_login_at": account.last_login_at.isoformat() if account.last_login_at else None,
    }


def _token_json(issued) -> dict:
    record = issued.record
    return {
        "token": issued.plain_text,
        "token_type": "Bearer",
        "abilities": record.abilities,
        "expires_at": record.expires_at.isoformat() if record.expires_at else None,
    }


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@throttle_auth_attempts
def login():
    data = _json_body()
    email = normalize_email(data.get("email"))
    password = data.get("password")

    # login never reports password rules, only that input is missing
    if not email or not isinstance(password, str) or not password:
        g.login_error = ValidationFailed("Email and password are required")
        return auth_error_response(g.login_error)

    result = services().auth.authenticate(email, password, auth_context(), client_ip(), user_agent())
    if not result.success:
        g.login_error = result.error
        return auth_error_response(result.error)

    return success_response(
        "Logged in successfully",
        data={"account": _account_json(result.account), **_token_json(result.token)},
    )


def register():
    data = _json_body()
    email = normalize_email(data.get("email"))
    password = data.get("password")

    result = services().auth.register(email, password, auth_context(), role="member",
                                      ip=client_ip(), user_agent=user_agent())
    if not result.success:
        return auth_error_response(result.error)

    return success_response(
        "Registered successfully",
        data={"account": _account_json(result.account), **_token_json(result.token)},
        status=201,
    )


@login_required
def me():
    return success_response("Authenticated account", data={
        "account": _account_json(g.account),
        "abilities": g.token.abilities,
    })


@login_required
def change_password():
    data = _json_body()
    result = services().auth.change_password(
        g.account.id,
        data.get("current_password") or "",
        data.get("new_password"),
        auth_context(),
        current_token_id=g.token.id,
        ip=client_ip(),
        user_agent=user_agent(),
    )
    if not result.success:
        return auth_error_response(result.error)
    return success_response("Password updated")


@login_required
def logout():
    services().auth.logout(g.token, ip=client_ip(), user_agent=user_agent())
    return success_response("Logged out")


@login_required
def logout_all():
    count = services().auth.logout_all(g.token, ip=client_ip(), user_agent=user_agent())
    return success_response("Logged out everywhere", data={"revoked_tokens": count})


def _add_routes(bp: Blueprint, allow_registration: bool):
    bp.add_url_rule("/login", view_func=login, methods=["POST"])
    bp.add_url_rule("/me", view_func=me, methods=["GET"])
    bp.add_url_rule("/change-password", view_func=change_password, methods=["POST"])
    bp.add_url_rule("/logout", view_func=logout, methods=["POST"])
    bp.add_url_rule("/logout-all", view_func=logout_all, methods=["POST"])
    if allow_registration:
        bp.add_url_rule("/register", view_func=register, methods=["POST"])


# central admins are provisioned through the CLI, not self-registration
_add_routes(central_auth_bp, allow_registration=False)
_add_routes(tenant_auth_bp, allow_registration=True)
