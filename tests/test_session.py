import base64

from nest_sync.session import (
    CredentialStore, Session, SessionState, mask_secret, parse_provisioning,
)


def b64(text):
    return base64.b64encode(text.encode()).decode()


def test_parse_provisioning_decodes_three_fields():
    blob = f"{b64('product-1')}|{b64('s3cret')}|{b64('PIN42')}"
    assert parse_provisioning(blob) == ('product-1', 's3cret', 'PIN42')


def test_parse_provisioning_rejects_malformed_input():
    assert parse_provisioning("") == ('', '', '')
    assert parse_provisioning(f"{b64('a')}|{b64('b')}") == ('', '', '')
    assert parse_provisioning(f"{b64('a')}|not base64!|{b64('c')}") == ('', '', '')


def test_mask_secret_only_shows_last_four():
    assert mask_secret("c.abcdefgh1234") == "****1234"
    assert mask_secret("abc") == "****"
    assert mask_secret(None) == "<empty>"


def test_session_needs_login_unless_valid():
    session = Session()
    assert session.state == SessionState.NO_TOKEN
    assert session.needs_login

    session = Session(access_token="tok")
    assert session.state == SessionState.NEEDS_VALIDATION
    assert session.needs_login

    session.mark_valid()
    assert not session.needs_login

    session.invalidate()
    assert session.state == SessionState.INVALID
    assert session.needs_login


def test_set_token_discards_secrets():
    session = Session(product_id="id", product_secret="secret", pin_code="pin")
    assert session.has_secrets

    session.set_token("abc123")

    assert session.access_token == "abc123"
    assert session.state == SessionState.NEEDS_VALIDATION
    assert not session.has_secrets


def test_store_prefers_stored_token_over_configured_secrets(db_path):
    store = CredentialStore(db_path)
    store.save_token("stored-token")

    session = store.load_session(product_id="id", product_secret="secret", pin_code="pin")

    assert session.access_token == "stored-token"
    assert not session.has_secrets


def test_store_explicit_token_replaces_stored_one(db_path):
    store = CredentialStore(db_path)
    store.save_token("old-token")

    session = store.load_session(access_token="new-token")

    assert session.access_token == "new-token"
    assert store.load()['access_token'] == "new-token"


def test_store_keeps_provisioning_until_token_saved(db_path):
    store = CredentialStore(db_path)
    store.load_session(product_id="id", product_secret="secret", pin_code="pin")

    # Second start without configuration falls back to the stored secrets
    session = CredentialStore(db_path).load_session()
    assert session.access_token is None
    assert (session.product_id, session.product_secret, session.pin_code) == ("id", "secret", "pin")

    store.save_token("abc123")
    stored = store.load()
    assert stored['access_token'] == "abc123"
    assert stored['product_id'] == ""
    assert stored['pin_code'] == ""


def test_store_provisioning_is_write_once(db_path):
    store = CredentialStore(db_path)
    assert store.save_provisioning("id", "secret", "pin") is True
    assert store.save_provisioning("other", "other", "other") is False
    assert store.load()['product_id'] == "id"


def test_empty_store_gives_empty_session(db_path):
    session = CredentialStore(db_path).load_session()
    assert session.state == SessionState.NO_TOKEN
    assert not session.has_secrets
