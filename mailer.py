# mailer.py
# Password-reset delivery through the Resend HTTP API.
import json
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from markupsafe import escape

RESEND_URL = "https://api.resend.com/emails"
SANDBOX_SENDER = "onboarding@resend.dev"


class ResetMailer:
    def __init__(self, api_key: Optional[str], from_email: str, app_url: str, timeout: float = 10.0):
        self.api_key = api_key or ""
        self.from_email = from_email or SANDBOX_SENDER
        self.app_url = (app_url or "").rstrip("/")
        self.timeout = timeout

    @property
    def sandbox(self) -> bool:
        return not self.api_key or self.from_email == SANDBOX_SENDER

    def reset_link(self, token: str) -> str:
        return f"{self.app_url}/reset-password?token={token}"

    def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        data = json.dumps(body).encode("utf-8")
        req = urllib.request.Request(RESEND_URL, data=data, method="POST")
        req.add_header("Authorization", f"Bearer {self.api_key}")
        req.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8")
                return json.loads(raw) if raw else {}
        except urllib.error.HTTPError as e:
            try:
                err_json = json.loads(e.read().decode("utf-8"))
            except ValueError:
                err_json = {"message": e.reason, "statusCode": e.code}
            raise RuntimeError(f"Resend call failed: {err_json}") from None

    def send_password_reset(self, to_email: str, token: str, full_name: str) -> bool:
        """True when the mail was handed to Resend, False when only logged."""
        link = self.reset_link(token)
        if self.sandbox:
            print(f"[mail] sandbox mode, reset link for {to_email}: {link}")
            return False
        name = escape(full_name or "")
        html = (
            f'<div dir="rtl"><p>مرحبا {name}،</p>'
            f"<p>لقد طلبت إعادة تعيين كلمة المرور. الرابط صالح لمدة ساعة واحدة.</p>"
            f'<p><a href="{escape(link)}">إعادة تعيين كلمة المرور</a></p></div>'
            f"<hr><div><p>Hello {name},</p>"
            f"<p>You asked to reset your password. The link is valid for one hour.</p>"
            f'<p><a href="{escape(link)}">Reset password</a></p></div>'
        )
        resp = self._post({
            "from": self.from_email,
            "to": [to_email],
            "subject": "إعادة تعيين كلمة المرور / Password reset",
            "html": html,
        })
        print(f"[mail] reset mail queued id={resp.get('id')}")
        return True
