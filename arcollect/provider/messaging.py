"""
Outbound collections communications.

- compose_dunning_email / compose_teams_message: text drafted from AR aging data
- DemoOutbox: keeps sent messages in memory (no credentials needed)
- GraphOutbox: Microsoft Graph ``sendMail`` and Teams chat messages over HTTP

A failed send raises; the tool handler turns it into a tool error so the
model (and the user) learn that nothing went out.
"""

import logging
import re
from typing import Protocol

import requests

from ..models import MessagingConfig

logger = logging.getLogger(__name__)

GRAPH_API = "https://graph.microsoft.com/v1.0"
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Outbox(Protocol):
    """Channels the communication tools send through."""

    def send_email(self, to: str, subject: str, body: str) -> None: ...

    def send_teams_message(self, recipient: str, message: str) -> None: ...


def require_address(address: str) -> str:
    if not EMAIL_PATTERN.match(address or ""):
        raise ValueError(f"Invalid recipient address: '{address}'")
    return address


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def _most_overdue_days(aging: dict) -> int:
    return max((inv.get("daysOverdue", 0) for inv in aging.get("invoices", [])), default=0)


def compose_dunning_email(aging: dict) -> tuple[str, str]:
    """Subject and plain-text body for a dunning email, firmer as invoices age."""
    name = aging.get("customerName") or aging["customerId"]
    total = aging["totalOutstanding"]
    overdue = total - aging["current"]
    days = _most_overdue_days(aging)

    if days >= 90:
        prefix = "Final notice"
        ask = "Please arrange payment immediately or contact us today to avoid further action."
    elif days >= 30:
        prefix = "Second reminder"
        ask = "Please arrange payment this week or contact us to discuss a payment arrangement."
    else:
        prefix = "Payment reminder"
        ask = "Please arrange payment at your earliest convenience."

    subject = f"{prefix}: outstanding balance of {_money(total)} for {name}"
    overdue_invoices = [inv for inv in aging.get("invoices", []) if inv.get("daysOverdue", 0) > 0]
    lines = [
        f"Dear {name} accounts payable team,",
        "",
        f"Our records show an outstanding balance of {_money(total)}, "
        f"of which {_money(overdue)} is past due.",
        "",
        "Aging breakdown:",
        f"- Current: {_money(aging['current'])}",
        f"- 30 days overdue: {_money(aging['days30'])}",
        f"- 60 days overdue: {_money(aging['days60'])}",
        f"- 90 days overdue: {_money(aging['days90'])}",
        f"- 120+ days overdue: {_money(aging['days120Plus'])}",
        "",
        f"Overdue invoices: {len(overdue_invoices)}",
    ]
    lines += [
        f"- {inv['invoiceId']}: {_money(inv['amountOutstanding'])}, {inv['daysOverdue']} days overdue"
        for inv in overdue_invoices
    ]
    lines += [
        "",
        ask,
        "",
        "If you have any questions about these invoices, reply to this email.",
        "",
        "Kind regards,",
        "Accounts Receivable",
    ]
    return subject, "\n".join(lines)


def compose_teams_message(aging: dict) -> str:
    """A short internal alert about an account that needs attention."""
    name = aging.get("customerName") or aging["customerId"]
    return (
        f"Heads up: {name} ({aging['customerId']}) has {_money(aging['totalOutstanding'])} "
        f"outstanding, and the oldest invoice is {_most_overdue_days(aging)} days overdue. "
        "Could you follow up with them this week?"
    )


class DemoOutbox:
    """Records messages instead of sending them."""

    def __init__(self):
        self.sent: list[dict] = []

    def send_email(self, to: str, subject: str, body: str) -> None:
        require_address(to)
        self.sent.append({"channel": "email", "to": to, "subject": subject, "body": body})
        logger.info(f"Email to {to} recorded (demo mode): {subject}")

    def send_teams_message(self, recipient: str, message: str) -> None:
        require_address(recipient)
        self.sent.append({"channel": "teams", "to": recipient, "body": message})
        logger.info(f"Teams message to {recipient} recorded (demo mode)")


class GraphOutbox:
    """Microsoft Graph client for mail and Teams chat."""

    def __init__(self, access_token: str, sender: str = "", timeout: int = 30):
        if not access_token:
            raise ValueError("Graph access token is not configured")
        self.sender = sender
        self.timeout = timeout
        self._http = requests.Session()
        self._http.headers.update(
            {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
        )

    def _post(self, path: str, payload: dict) -> requests.Response:
        response = self._http.post(f"{GRAPH_API}/{path}", json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response

    def send_email(self, to: str, subject: str, body: str) -> None:
        require_address(to)
        path = f"users/{self.sender}/sendMail" if self.sender else "me/sendMail"
        message = {
            "subject": subject,
            "body": {"contentType": "Text", "content": body},
            "toRecipients": [{"emailAddress": {"address": to}}],
        }
        try:
            self._post(path, {"message": message, "saveToSentItems": True})
        except requests.RequestException as e:
            raise RuntimeError(f"Email send failed: {e}") from e
        logger.info(f"Email sent to {to} via Graph")

    def send_teams_message(self, recipient: str, message: str) -> None:
        require_address(recipient)
        try:
            user = self._http.get(f"{GRAPH_API}/users/{recipient}", timeout=self.timeout)
            user.raise_for_status()
            chat = self._post(
                "chats",
                {
                    "chatType": "oneOnOne",
                    "members": [
                        {
                            "@odata.type": "#microsoft.graph.aadUserConversationMember",
                            "roles": ["owner"],
                            "user@odata.bind": f"{GRAPH_API}/users('{user.json()['id']}')",
                        }
                    ],
                },
            )
            self._post(f"chats/{chat.json()['id']}/messages", {"body": {"content": message}})
        except requests.RequestException as e:
            raise RuntimeError(f"Teams message failed: {e}") from e
        logger.info(f"Teams message sent to {recipient} via Graph")


def create_outbox(messaging_config: MessagingConfig) -> Outbox:
    """Pick the delivery channel from configuration (demo unless told otherwise)."""
    if messaging_config.demo_mode:
        logger.info("Outbox: demo (messages are recorded, not sent)")
        return DemoOutbox()
    logger.info("Outbox: Microsoft Graph")
    return GraphOutbox(
        access_token=messaging_config.access_token,
        sender=messaging_config.sender,
        timeout=messaging_config.timeout,
    )
