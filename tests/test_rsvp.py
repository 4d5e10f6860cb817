from confreg.database import SessionLocal
from confreg.models import Credential, Registration

from conftest import login, new_client, register

CSV = (
    "Email,Name,Role\r\n"
    "grace@example.com,Grace Hopper,P\r\n"
    'alan@example.com,"Turing, Alan",OP\r\n'
    "edsger@example.com,Edsger,\r\n"
)


def _upload(client, csrf, content, content_type="text/csv"):
    return client.post(
        "/api/rsvp/upload",
        files={"file": ("rsvp.csv", content.encode("utf-8"), content_type)},
        headers={"X-CSRF-Token": csrf},
    )


def _invitees():
    db = SessionLocal()
    try:
        return {
            row.email: row
            for row in db.query(Registration).filter(Registration.question1 == "RSVP pending").all()
        }
    finally:
        db.close()


def test_upload_creates_pending_invitations(client, organizer_csrf):
    resp = _upload(client, organizer_csrf, CSV)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["processed"] == 3
    assert body["email"] == {"attempted": 3, "sent": 0, "logged": 3, "failures": []}

    invitees = _invitees()
    assert set(invitees) == {"grace@example.com", "alan@example.com", "edsger@example.com"}
    grace = invitees["grace@example.com"]
    assert grace.first_name == "Grace"
    assert grace.last_name == ""
    assert grace.is_presenter and not grace.is_organizer and grace.is_attendee
    assert invitees["alan@example.com"].is_organizer and invitees["alan@example.com"].is_presenter
    assert not invitees["edsger@example.com"].is_presenter

    db = SessionLocal()
    try:
        pins = [c.login_pin for c in db.query(Credential).filter(Credential.registration_id.in_([r.id for r in invitees.values()]))]
    finally:
        db.close()
    assert len(pins) == 3 and all(len(pin) == 8 for pin in pins)


def test_one_bad_row_rejects_the_whole_file(client, organizer_csrf):
    register(new_client(), "existing@example.com")
    content = (
        "ok@example.com,Ok Person,P\n"
        "bad-email,Someone,\n"
        "ok2@example.com,Other,X\n"
        "existing@example.com,Existing,\n"
        "ok@example.com,Ok Again,\n"
        "ok3@example.com,,,extra\n"
    )
    resp = _upload(client, organizer_csrf, content)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "RSVP upload rejected"
    problems = {item["row"]: item["problems"] for item in body["issues"]}
    assert problems[2] == ["Invalid email address"]
    assert problems[3] == ['Invalid role designation "X"']
    assert problems[4] == ["Email is already registered"]
    assert problems[5] == ["Duplicate email in upload"]
    assert problems[6] == ["Missing name", "Unexpected extra column data"]
    assert 1 not in problems
    assert _invitees() == {}


def test_upload_rejects_bad_files(client, organizer_csrf, monkeypatch):
    assert _upload(client, organizer_csrf, "a@b.co,\"Ada\n").json()["error"] == "CSV appears to have mismatched quotes"
    assert _upload(client, organizer_csrf, "x", content_type="image/png").status_code == 400
    assert _upload(client, organizer_csrf, "Email,Name\n").json()["error"] == "CSV file does not contain any RSVP rows"
    assert _upload(client, organizer_csrf, "").status_code == 400

    monkeypatch.setattr("confreg.services.rsvp.MAX_UPLOAD_BYTES", 16)
    too_big = _upload(client, organizer_csrf, CSV)
    assert too_big.status_code == 413
    assert too_big.json() == {"error": "CSV file is too large", "maxBytes": 16}


def test_upload_fails_fast_without_rsvp_url(client, organizer_csrf, monkeypatch):
    monkeypatch.setattr("confreg.config.RSVP_URL", "")
    resp = _upload(client, organizer_csrf, CSV)
    assert resp.status_code == 500
    assert _invitees() == {}


def test_upload_requires_organizer(client):
    assert client.post("/api/rsvp/upload", files={"file": ("r.csv", CSV.encode("utf-8"), "text/csv")}).status_code == 401

    created = register(client, "attendee@example.com")
    csrf = login(client, "attendee@example.com", created["loginPin"])
    assert _upload(client, csrf, CSV).status_code == 403


def test_delivery_failures_are_reported_not_raised(client, organizer_csrf, monkeypatch):
    sent = []

    def fake_send(to, subject, text, smtp_server=None):
        if to == "alan@example.com":
            raise OSError("mailbox unavailable")
        sent.append((to, subject, text))

    monkeypatch.setattr("confreg.config.SEND_EMAIL", True)
    monkeypatch.setattr("confreg.config.SMTP_SERVER", "smtp.example.com:2525")
    monkeypatch.setattr("confreg.services.email.send_email", fake_send)

    resp = _upload(client, organizer_csrf, CSV)
    assert resp.status_code == 201
    stats = resp.json()["email"]
    assert stats["attempted"] == 3
    assert stats["sent"] == 2
    assert stats["failures"] == [{"email": "alan@example.com", "error": "mailbox unavailable"}]
    assert len(_invitees()) == 3

    to, subject, text = sent[0]
    assert to == "grace@example.com"
    assert subject == "Conference RSVP"
    assert "Dear Grace Hopper" in text
    assert "https://ui.conference.test/rsvp" in text
    assert "{#LOGIN_PIN}" not in text


def test_remind_targets_only_pending_invitations(client, organizer_csrf, monkeypatch):
    _upload(client, organizer_csrf, CSV)
    invitees = _invitees()

    db = SessionLocal()
    try:
        db.query(Registration).filter(Registration.id == invitees["grace@example.com"].id).update({"last_name": "Hopper"})
        db.commit()
    finally:
        db.close()

    subjects = []
    monkeypatch.setattr("confreg.config.SEND_EMAIL", True)
    monkeypatch.setattr("confreg.config.SMTP_SERVER", "smtp.example.com")
    monkeypatch.setattr(
        "confreg.services.email.send_email",
        lambda to, subject, text, smtp_server=None: subjects.append((to, subject)),
    )

    resp = client.post("/api/rsvp/remind", headers={"X-CSRF-Token": organizer_csrf})
    assert resp.status_code == 200
    assert resp.json()["processed"] == 2
    assert sorted(to for to, _ in subjects) == ["alan@example.com", "edsger@example.com"]
    assert {subject for _, subject in subjects} == {"Conference RSVP Reminder"}


def test_remind_with_nothing_pending(client, organizer_csrf):
    resp = client.post("/api/rsvp/remind", headers={"X-CSRF-Token": organizer_csrf})
    assert resp.status_code == 200
    assert resp.json() == {"processed": 0, "email": {"attempted": 0, "sent": 0, "logged": 0, "failures": []}}
