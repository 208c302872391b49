import httpx
import pytest

from memberbridge.core.exceptions import UpstreamUnavailableError
from memberbridge.services.identity_gateway import WordPressIdentityGateway

# /users/me?context=edit; the default view context has only id, name and slug
WP_ME_EDIT = {"id": 12, "username": "carol", "email": "carol@example.com", "name": "Carol", "slug": "carol"}
WP_ME_VIEW = {"id": 12, "name": "Carol", "slug": "carol"}
WP_TOKEN = {
    "token": "wp-jwt",
    "user_email": "carol@example.com",
    "user_nicename": "carol",
    "user_display_name": "Carol",
}


def _gateway(handler, **kwargs):
    kwargs.setdefault("backoff_seconds", 0)
    return WordPressIdentityGateway(
        base_url="https://wp.example.com/",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_authenticate_success_returns_identity():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path))
        if request.url.path == "/wp-json/jwt-auth/v1/token":
            return httpx.Response(200, json={"token": "wp-jwt"})
        if request.url.path == "/wp-json/wp/v2/users/me":
            assert request.headers["Authorization"] == "Bearer wp-jwt"
            assert request.url.params["context"] == "edit"
            return httpx.Response(200, json=WP_ME_EDIT)
        return httpx.Response(404)

    user = _gateway(handler).authenticate("carol", "secret")

    assert user.id == 12
    assert user.username == "carol"
    assert user.email == "carol@example.com"
    assert user.display_name == "Carol"
    assert seen == [("POST", "/wp-json/jwt-auth/v1/token"), ("GET", "/wp-json/wp/v2/users/me")]


def test_view_context_profile_is_completed_from_token_response():
    def handler(request):
        if request.url.path == "/wp-json/jwt-auth/v1/token":
            return httpx.Response(200, json=WP_TOKEN)
        if "context" in request.url.params:
            return httpx.Response(403, json={"code": "rest_forbidden_context"})
        return httpx.Response(200, json=WP_ME_VIEW)

    user = _gateway(handler).authenticate("carol", "secret")

    assert user.id == 12
    assert user.email == "carol@example.com"
    assert user.username == "carol"
    assert user.display_name == "Carol"


def test_profile_without_email_anywhere_yields_empty_email():
    def handler(request):
        if request.url.path == "/wp-json/jwt-auth/v1/token":
            return httpx.Response(200, json={"token": "wp-jwt"})
        return httpx.Response(200, json=WP_ME_VIEW)

    user = _gateway(handler).authenticate("carol", "secret")
    assert user.email == ""
    assert user.username == "carol"


def test_authenticate_falls_back_to_form_encoding():
    content_types = []

    def handler(request):
        if request.url.path == "/wp-json/jwt-auth/v1/token":
            content_types.append(request.headers.get("content-type", ""))
            if "json" in content_types[-1]:
                return httpx.Response(415)
            return httpx.Response(200, json={"token": "wp-jwt"})
        return httpx.Response(200, json=WP_ME_EDIT)

    user = _gateway(handler).authenticate("carol", "secret")

    assert user is not None
    assert "application/json" in content_types[0]
    assert "application/x-www-form-urlencoded" in content_types[1]


def test_rejected_credentials_return_none():
    def handler(request):
        return httpx.Response(403, json={"code": "[jwt_auth] incorrect_password"})

    assert _gateway(handler).authenticate("carol", "wrong") is None


def test_timeouts_surface_as_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailableError):
        _gateway(handler).authenticate("carol", "secret")


def test_reads_are_retried_then_give_up():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(502)

    with pytest.raises(UpstreamUnavailableError):
        _gateway(handler, max_retries=2).get_member_info(12)
    assert calls["count"] == 3


def test_read_recovers_after_transient_failure():
    responses = iter([httpx.Response(503), httpx.Response(200, json={"status": "active"})])

    def handler(request):
        return next(responses)

    assert _gateway(handler, max_retries=2).has_active_membership(12) is True


@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (200, {"status": "active"}, True),
        (200, {"status": "expired"}, False),
        (404, {"code": "not_found"}, False),
    ],
)
def test_membership_status(status_code, body, expected):
    def handler(request):
        assert request.url.path == "/wp-json/pmpro/v1/members/12"
        assert request.headers["Authorization"] == "Bearer site-key"
        return httpx.Response(status_code, json=body)

    assert _gateway(handler, api_key="site-key").has_active_membership(12) is expected
