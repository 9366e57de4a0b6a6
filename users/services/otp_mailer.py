# users/services/otp_mailer.py
"""
Login code delivery by email.

Providers: console, django (EMAIL_BACKEND), resend, brevo.
"""
import logging
import re
import smtplib
from dataclasses import dataclass
from typing import Optional, Tuple

import requests
from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.utils.html import escape

from users.validators import normalize_email, redact_email

logger = logging.getLogger("users.security")

RESEND_API_URL = "https://api.resend.com/emails"
BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

REASON_PROVIDER_UNAVAILABLE = "provider_unavailable"
REASON_SEND_FAILED = "send_failed"

SIGNATURE = "Infiuba Housing Hub"

_FROM_WITH_NAME = re.compile(r"^(.*)<([^<>]+)>$")
_SIMPLE_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class MailResult:
    ok: bool
    reason: Optional[str] = None


# ============================================================
# COPY
# ============================================================

EMAIL_COPY = {
    "es": {
        "subject": "Tu código de acceso de Infiuba Housing",
        "heading": "Usá este link para iniciar sesión con un clic:",
        "cta": "Entrar ahora",
        "link_hint": "Este link es válido una sola vez.",
        "code_label": "Si el link no funciona, usá este código:",
        "expires": "Este código vence en {minutes} minutos.",
        "ignore": "Si no solicitaste este código, podés ignorar este email.",
    },
    "en": {
        "subject": "Your Infiuba Housing access code",
        "heading": "Use this link to sign in with one click:",
        "cta": "Sign in now",
        "link_hint": "This link can only be used once.",
        "code_label": "If the link does not work, use this code:",
        "expires": "This code expires in {minutes} minutes.",
        "ignore": "If you did not request this code, you can safely ignore this email.",
    },
    "fr": {
        "subject": "Votre code d'accès Infiuba Housing",
        "heading": "Utilisez ce lien pour vous connecter en un clic :",
        "cta": "Se connecter",
        "link_hint": "Ce lien est valable une seule fois.",
        "code_label": "Si le lien ne fonctionne pas, utilisez ce code :",
        "expires": "Ce code expire dans {minutes} minutes.",
        "ignore": "Si vous n'avez pas demandé ce code, vous pouvez ignorer cet e-mail.",
    },
    "de": {
        "subject": "Dein Infiuba Housing Zugangscode",
        "heading": "Verwende diesen Link für die Anmeldung mit einem Klick:",
        "cta": "Jetzt anmelden",
        "link_hint": "Dieser Link ist nur einmal gültig.",
        "code_label": "Wenn der Link nicht funktioniert, nutze diesen Code:",
        "expires": "Dieser Code läuft in {minutes} Minuten ab.",
        "ignore": "Wenn du diesen Code nicht angefordert hast, kannst du diese E-Mail ignorieren.",
    },
    "pt": {
        "subject": "Seu código de acesso do Infiuba Housing",
        "heading": "Use este link para entrar com um clique:",
        "cta": "Entrar agora",
        "link_hint": "Este link é válido apenas uma vez.",
        "code_label": "Se o link não funcionar, use este código:",
        "expires": "Este código expira em {minutes} minutos.",
        "ignore": "Se você não solicitou este código, pode ignorar este e-mail.",
    },
    "it": {
        "subject": "Il tuo codice di accesso Infiuba Housing",
        "heading": "Usa questo link per accedere con un clic:",
        "cta": "Accedi ora",
        "link_hint": "Questo link è valido una sola volta.",
        "code_label": "Se il link non funziona, usa questo codice:",
        "expires": "Questo codice scade tra {minutes} minuti.",
        "ignore": "Se non hai richiesto questo codice, puoi ignorare questa email.",
    },
    "no": {
        "subject": "Din tilgangskode for Infiuba Housing",
        "heading": "Bruk denne lenken for å logge inn med ett klikk:",
        "cta": "Logg inn nå",
        "link_hint": "Denne lenken kan bare brukes én gang.",
        "code_label": "Hvis lenken ikke fungerer, bruk denne koden:",
        "expires": "Denne koden utløper om {minutes} minutter.",
        "ignore": "Hvis du ikke ba om denne koden, kan du ignorere denne e-posten.",
    },
}


@dataclass(frozen=True)
class OtpEmailContent:
    subject: str
    text: str
    html: str


def build_email_content(code: str, expires_minutes: int, magic_link_url=None, lang=None, logo_url=None) -> OtpEmailContent:
    copy = EMAIL_COPY.get(lang or "", EMAIL_COPY[settings.DEFAULT_LANGUAGE])
    expires_text = copy["expires"].format(minutes=expires_minutes)

    text_lines = []
    if magic_link_url:
        text_lines += [copy["heading"], magic_link_url, copy["link_hint"]]
    text_lines += [f"{copy['code_label']} {code}", expires_text, "", copy["ignore"], "", SIGNATURE]

    html_lines = [
        '<div style="font-family:Arial,sans-serif;line-height:1.6;color:#0f172a;max-width:560px;margin:0 auto;padding:20px 18px;">',
    ]
    if logo_url:
        html_lines.append(f'  <img src="{escape(logo_url)}" alt="{SIGNATURE}" width="220" style="display:block;max-width:220px;height:auto;border:0;" />')
    else:
        html_lines.append(f'  <p style="margin:0 0 16px;font-size:18px;font-weight:700;">{SIGNATURE}</p>')
    if magic_link_url:
        html_lines += [
            f'  <p style="margin:0 0 10px;">{escape(copy["heading"])}</p>',
            f'  <p style="margin:0 0 10px;"><a href="{escape(magic_link_url)}" style="display:inline-block;padding:10px 16px;background:#0f172a;color:#ffffff;text-decoration:none;border-radius:10px;">{escape(copy["cta"])}</a></p>',
            f'  <p style="margin:0 0 16px;color:#475569;font-size:13px;">{escape(copy["link_hint"])}</p>',
        ]
    html_lines += [
        f'  <p style="margin:0 0 4px;">{escape(copy["code_label"])}</p>',
        f'  <p style="font-size:28px;font-weight:700;letter-spacing:0.24em;margin:8px 0 12px;">{escape(code)}</p>',
        f'  <p style="margin:0 0 12px;">{escape(expires_text)}</p>',
        f'  <p style="margin:0 0 6px;color:#64748b;font-size:13px;">{escape(copy["ignore"])}</p>',
        "</div>",
    ]

    return OtpEmailContent(
        subject=f"{copy['subject']}: {code}",
        text="\n".join(text_lines),
        html="\n".join(html_lines),
    )


def parse_from_identity(raw_value) -> Optional[Tuple[Optional[str], str]]:
    """'Name <addr>' or 'addr' -> (name, addr); None when unusable."""
    value = (raw_value or "").strip()
    if not value:
        return None

    match = _FROM_WITH_NAME.match(value)
    if match:
        name = match.group(1).strip().strip('"').strip() or None
        email = match.group(2).strip().lower()
    else:
        name, email = None, value.lower()

    if not _SIMPLE_EMAIL.match(email):
        return None
    return name, email


def _format_identity(identity) -> str:
    name, email = identity
    return f"{name} <{email}>" if name else email


# ============================================================
# MAILER
# ============================================================

class OtpMailer:
    """Sends login codes; never raises into the caller."""

    def __init__(self, session=None):
        self.session = session or requests.Session()

    @property
    def timeout(self) -> float:
        return float(getattr(settings, "OTP_EMAIL_TIMEOUT_SECONDS", 8))

    def resolve_provider(self) -> str:
        configured = (getattr(settings, "OTP_EMAIL_PROVIDER", "") or "").strip().lower()
        if configured:
            return configured
        return "console" if settings.DEBUG else ""

    def _forces_console(self, email: str) -> bool:
        console_only = normalize_email(getattr(settings, "OTP_CONSOLE_ONLY_EMAIL", ""))
        return bool(console_only) and normalize_email(email) == console_only

    def send(self, email: str, code: str, expires_minutes: int, magic_link_url=None, lang=None) -> MailResult:
        if self._forces_console(email):
            return self._send_console(email, code, expires_minutes)

        provider = self.resolve_provider()
        content = build_email_content(
            code,
            expires_minutes,
            magic_link_url=magic_link_url,
            lang=lang,
            logo_url=getattr(settings, "OTP_EMAIL_LOGO_URL", "") or None,
        )

        if provider == "console":
            return self._send_console(email, code, expires_minutes)
        if provider == "django":
            return self._send_django(email, content)
        if provider == "resend":
            return self._send_resend(email, content)
        if provider == "brevo":
            return self._send_brevo(email, content)

        logger.warning(f"No OTP email provider configured (provider={provider or 'unset'})")
        return MailResult(ok=False, reason=REASON_PROVIDER_UNAVAILABLE)

    def _send_console(self, email, code, expires_minutes) -> MailResult:
        logger.info(f"[OTP console delivery] email={email} code={code} expiresInMinutes={expires_minutes}")
        return MailResult(ok=True)

    def _send_django(self, email, content: OtpEmailContent) -> MailResult:
        identity = parse_from_identity(getattr(settings, "OTP_FROM_EMAIL", "") or settings.DEFAULT_FROM_EMAIL)
        if identity is None:
            logger.warning("Django email provider unavailable: invalid from address")
            return MailResult(ok=False, reason=REASON_PROVIDER_UNAVAILABLE)

        message = EmailMultiAlternatives(
            subject=content.subject,
            body=content.text,
            from_email=_format_identity(identity),
            to=[email],
            connection=get_connection(timeout=self.timeout),
        )
        message.attach_alternative(content.html, "text/html")
        try:
            message.send(fail_silently=False)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"Django email send failed to {redact_email(email)}: {e}")
            return MailResult(ok=False, reason=REASON_SEND_FAILED)
        return MailResult(ok=True)

    def _http_credentials(self, provider: str, api_key_setting: str, from_setting: str):
        api_key = (getattr(settings, api_key_setting, "") or "").strip()
        identity = parse_from_identity(
            (getattr(settings, from_setting, "") or "").strip() or getattr(settings, "OTP_FROM_EMAIL", "")
        )
        if not api_key or identity is None:
            logger.warning(
                f"{provider} provider unavailable "
                f"(has_api_key={bool(api_key)}, has_from={identity is not None})"
            )
            return None
        return api_key, identity

    def _post(self, provider: str, email: str, url: str, headers: dict, payload: dict) -> MailResult:
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"{provider} send failed to {redact_email(email)}: {e}")
            return MailResult(ok=False, reason=REASON_SEND_FAILED)

        if not response.ok:
            logger.warning(
                f"{provider} send failed to {redact_email(email)}: "
                f"status={response.status_code} body={response.text[:500]}"
            )
            return MailResult(ok=False, reason=REASON_SEND_FAILED)
        return MailResult(ok=True)

    def _send_resend(self, email, content: OtpEmailContent) -> MailResult:
        credentials = self._http_credentials("Resend", "RESEND_API_KEY", "RESEND_FROM_EMAIL")
        if credentials is None:
            return MailResult(ok=False, reason=REASON_PROVIDER_UNAVAILABLE)
        api_key, identity = credentials

        return self._post(
            "Resend",
            email,
            RESEND_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            payload={
                "from": _format_identity(identity),
                "to": [email],
                "subject": content.subject,
                "text": content.text,
                "html": content.html,
            },
        )

    def _send_brevo(self, email, content: OtpEmailContent) -> MailResult:
        credentials = self._http_credentials("Brevo", "BREVO_API_KEY", "BREVO_FROM_EMAIL")
        if credentials is None:
            return MailResult(ok=False, reason=REASON_PROVIDER_UNAVAILABLE)
        api_key, (name, from_email) = credentials

        sender = {"email": from_email}
        if name:
            sender["name"] = name

        return self._post(
            "Brevo",
            email,
            BREVO_API_URL,
            headers={"api-key": api_key},
            payload={
                "sender": sender,
                "to": [{"email": email}],
                "subject": content.subject,
                "textContent": content.text,
                "htmlContent": content.html,
            },
        )


# Global instance
otp_mailer = OtpMailer()
