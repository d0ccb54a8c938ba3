from datetime import timedelta

import pytest
import requests
from sqlalchemy.exc import IntegrityError

import notifier
import users
from conftest import NOW
from errors import (
    AuthenticationError, AuthorizationError, ConflictError, DeliveryError, NotFoundError, ValidationError,
)


def _signup(**overrides):
    data = {"name": "Mia", "email": "Mia@Example.com", "password": "hunter22"}
    data.update(overrides)
    return data


def test_create_and_authenticate(s):
    u = users.create_user(s, _signup())
    assert u.email == "mia@example.com"
    assert u.role == "customer"
    assert "password_hash" not in u.to_dict()
    assert users.authenticate(s, "MIA@example.com", "hunter22").id == u.id


@pytest.mark.parametrize("password", ["", "short", None])
def test_bad_passwords(s, password):
    with pytest.raises(ValidationError):
        users.create_user(s, _signup(password=password))


def test_unknown_role_rejected(s):
    with pytest.raises(ValidationError):
        users.create_user(s, _signup(role="owner"))


def test_duplicate_email(s):
    users.create_user(s, _signup())
    with pytest.raises(ConflictError):
        users.create_user(s, _signup(name="Other"))


@pytest.mark.parametrize("email, password", [("mia@example.com", "wrong-pass"), ("nobody@example.com", "hunter22")])
def test_invalid_login(s, email, password):
    users.create_user(s, _signup())
    with pytest.raises(AuthenticationError):
        users.authenticate(s, email, password)


def test_update_and_delete(s, make_user):
    u = make_user("waiter")
    other = make_user("chef")
    users.update_user(s, u.id, {"role": "chef", "name": "Renamed"})
    assert (u.role, u.name) == ("chef", "Renamed")
    with pytest.raises(ConflictError):
        users.update_user(s, u.id, {"email": other.email})

    users.delete_user(s, u.id)
    with pytest.raises(NotFoundError):
        users.get_user(s, u.id)


def test_change_password(s, make_user):
    u = make_user("waiter")
    with pytest.raises(AuthorizationError):
        users.change_password(s, u.id, "not-it", "newsecret")
    users.change_password(s, u.id, "secret123", "newsecret")
    assert users.authenticate(s, u.email, "newsecret").id == u.id


def test_password_reset_flow(s, make_user):
    u = make_user("customer")
    token = users.issue_reset_token(s, u.email, minutes=10, now=NOW)
    assert token and u.reset_token_hash != token

    users.reset_password(s, token, "brand-new", now=NOW + timedelta(minutes=9))
    assert users.authenticate(s, u.email, "brand-new").id == u.id
    assert u.reset_token_hash is None

    with pytest.raises(ValidationError):
        users.reset_password(s, token, "again-new", now=NOW + timedelta(minutes=9))


def test_expired_reset_token(s, make_user):
    u = make_user("customer")
    token = users.issue_reset_token(s, u.email, minutes=10, now=NOW)
    with pytest.raises(ValidationError):
        users.reset_password(s, token, "brand-new", now=NOW + timedelta(minutes=11))


def test_reset_token_for_unknown_email(s):
    assert users.issue_reset_token(s, "ghost@example.com", now=NOW) is None


def test_delete_user_still_referenced(s, make_user, monkeypatch):
    u = make_user("waiter")

    def refused():
        raise IntegrityError("DELETE FROM users", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(s, "commit", refused)
    with pytest.raises(ConflictError):
        users.delete_user(s, u.id)
    monkeypatch.undo()

    assert users.get_user(s, u.id).email == u.email


# -----------------------
# Reset email delivery
# -----------------------
class MailResponse:
    def __init__(self, status=200):
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class Outbox(list):
    response = None


@pytest.fixture()
def mail(monkeypatch):
    outbox = Outbox()

    def fake_post(url, **kwargs):
        outbox.append((url, kwargs))
        return outbox.response

    outbox.response = MailResponse()
    monkeypatch.setattr(notifier, "get_secret", {"EMAIL_FUNCTION_URL": "https://mail.example.com/send"}.get)
    monkeypatch.setattr(notifier.requests, "post", fake_post)
    return outbox


def test_reset_link_is_emailed(s, make_user, mail):
    u = make_user("customer")
    token = users.request_password_reset(s, u.email, "https://app.example.com/reset-password", minutes=10, now=NOW)

    assert token
    url, kwargs = mail[0]
    assert url == "https://mail.example.com/send"
    assert kwargs["json"]["email"] == u.email
    assert kwargs["json"]["subject"] == users.RESET_SUBJECT
    assert f"https://app.example.com/reset-password?token={token}" in kwargs["json"]["message"]
    assert "10 minutes" in kwargs["json"]["message"]

    users.reset_password(s, token, "brand-new", now=NOW + timedelta(minutes=5))
    assert users.authenticate(s, u.email, "brand-new").id == u.id


def test_reset_token_withdrawn_when_email_fails(s, make_user, mail):
    u = make_user("customer")
    mail.response = MailResponse(status=500)

    with pytest.raises(DeliveryError):
        users.request_password_reset(s, u.email, "https://app.example.com/reset-password", now=NOW)
    assert u.reset_token_hash is None
    assert u.reset_token_expires_at is None


def test_reset_token_withdrawn_without_mail_function(s, make_user, mail, monkeypatch):
    u = make_user("customer")
    monkeypatch.setattr(notifier, "get_secret", lambda name: None)

    with pytest.raises(DeliveryError):
        users.request_password_reset(s, u.email, "https://app.example.com/reset-password", now=NOW)
    assert u.reset_token_hash is None
    assert mail == []


def test_reset_request_for_unknown_email_sends_nothing(s, mail):
    assert users.request_password_reset(s, "ghost@example.com", "https://app.example.com/reset-password", now=NOW) is None
    assert mail == []
