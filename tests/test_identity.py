from starlette.requests import Request

from conftest import BROWSER_UA, PUBLIC_IP, make_settings
from riskgate.auth.identity import (
    identity_from_request,
    read_account_cookie,
    resolve_identity,
    server_fingerprint,
)


def _request(headers=None, client=(PUBLIC_IP, 443)) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {"type": "http", "method": "POST", "path": "/", "headers": raw, "client": client, "query_string": b""}
    return Request(scope)


def test_same_inputs_same_identity():
    s = make_settings()
    a = resolve_identity(PUBLIC_IP, BROWSER_UA, "fp-1", settings=s)
    b = resolve_identity(PUBLIC_IP, BROWSER_UA, "fp-1", settings=s)
    assert a == b
    assert a.key == PUBLIC_IP
    assert len(a.server_fingerprint) == 32
    assert a.ip_hash != PUBLIC_IP


def test_empty_inputs_do_not_raise():
    ident = resolve_identity(None, None, None, settings=make_settings())
    assert ident.address == "unknown"
    assert ident.user_agent == ""
    assert ident.has_fingerprint is False


def test_composite_key_depends_on_fingerprint():
    s = make_settings(identity_key_mode="composite")
    a = resolve_identity(PUBLIC_IP, BROWSER_UA, "fp-1", settings=s)
    b = resolve_identity(PUBLIC_IP, BROWSER_UA, "fp-2", settings=s)
    assert a.key != b.key
    assert PUBLIC_IP not in a.key


def test_salt_changes_ip_hash():
    a = resolve_identity(PUBLIC_IP, settings=make_settings(identity_hash_salt="one"))
    b = resolve_identity(PUBLIC_IP, settings=make_settings(identity_hash_salt="two"))
    assert a.ip_hash != b.ip_hash


def test_server_fingerprint_uses_headers():
    plain = server_fingerprint(PUBLIC_IP, BROWSER_UA, {})
    with_lang = server_fingerprint(PUBLIC_IP, BROWSER_UA, {"accept-language": "nl-NL"})
    assert plain != with_lang


def test_country_hint_only_two_letters():
    s = make_settings()
    assert resolve_identity(PUBLIC_IP, country_hint="nl", settings=s).country_hint == "NL"
    assert resolve_identity(PUBLIC_IP, country_hint="XX1", settings=s).country_hint is None


def test_forwarded_for_trusted_only_behind_private_proxy():
    s = make_settings()
    spoofed = _request({"x-forwarded-for": "198.51.100.7"}, client=(PUBLIC_IP, 443))
    assert identity_from_request(spoofed, s).address == PUBLIC_IP

    proxied = _request({"x-forwarded-for": "198.51.100.7, 10.0.0.2"}, client=("10.0.0.2", 443))
    assert identity_from_request(proxied, s).address == "198.51.100.7"


def test_identity_from_request_reads_headers():
    s = make_settings(trust_country_header=True)
    req = _request({"user-agent": BROWSER_UA, "x-browser-fingerprint": "abc123", "cf-ipcountry": "de"})
    ident = identity_from_request(req, s)
    assert ident.user_agent == BROWSER_UA
    assert ident.fingerprint == "abc123"
    assert ident.country_hint == "DE"


def test_country_header_ignored_unless_trusted():
    req = _request({"cf-ipcountry": "de"})
    assert identity_from_request(req, make_settings()).country_hint is None


def test_account_cookie_must_be_uuid():
    good = _request({"cookie": "anon_id=7b0c3d4e-2f1a-4b5c-8d9e-0a1b2c3d4e5f"})
    bad = _request({"cookie": "anon_id=not-a-uuid"})
    assert read_account_cookie(good) == "7b0c3d4e-2f1a-4b5c-8d9e-0a1b2c3d4e5f"
    assert read_account_cookie(bad) is None


def test_mode_argument_overrides_settings():
    s = make_settings()
    ident = resolve_identity(PUBLIC_IP, BROWSER_UA, "fp-1", mode="composite", settings=s)
    assert ident.key != PUBLIC_IP
    assert len(ident.key) == 40
