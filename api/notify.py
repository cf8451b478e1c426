"""
Applicant notifications: confirmation on submit, notice on status change.
Sent through Resend when RESEND_API_KEY is set, otherwise only logged.
"""
import json
import logging
import urllib.error
import urllib.request
from html import escape

logger = logging.getLogger(__name__)

STATUS_SUBJECTS = {
    "accepted": "Your membership application has been accepted",
    "rejected": "Your membership application was not accepted",
    "pending": "Your membership application is under review",
}


def send_email(api_key, from_addr, to_email, subject, html_body):
    payload = json.dumps({
        "from": from_addr,
        "to": [to_email],
        "subject": subject,
        "html": html_body,
    }).encode("utf-8")
    req = urllib.request.Request(
        "https://api.resend.com/emails",
        data=payload,
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
    )
    try:
        resp = urllib.request.urlopen(req, timeout=10)
        return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"Resend {e.code}: {body}")


class Notifier:
    def __init__(self, api_key: str = "", from_addr: str = "", sender=send_email):
        self.api_key = api_key
        self.from_addr = from_addr
        self.sender = sender

    def _deliver(self, to_email: str, subject: str, html_body: str) -> bool:
        if not self.api_key:
            logger.info("Email not sent (no RESEND_API_KEY): %s -> %s", subject, to_email)
            return False
        try:
            self.sender(self.api_key, self.from_addr, to_email, subject, html_body)
            logger.info("Email sent: %s -> %s", subject, to_email)
            return True
        except Exception as e:
            logger.warning("Email to %s failed: %s", to_email, e, exc_info=True)
            return False

    def submission_received(self, record: dict) -> bool:
        html = (
            f"<p>Hello {escape(record.get('first_name', ''))},</p>"
            f"<p>We received your membership application (reference {record['id']}). "
            "We will get back to you once it has been reviewed.</p>"
        )
        return self._deliver(record["email"], "We received your membership application", html)

    def status_changed(self, record: dict, status: str, comment: str = "") -> bool:
        subject = STATUS_SUBJECTS.get(status, "Your membership application was updated")
        html = f"<p>Hello {escape(record.get('first_name', ''))},</p><p>{subject}.</p>"
        if comment:
            html += f"<p>{escape(comment)}</p>"
        return self._deliver(record["email"], subject, html)
