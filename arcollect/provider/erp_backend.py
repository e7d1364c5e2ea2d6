"""
ERP data sources behind the provider's tools.

- DemoErpBackend: in-memory sample accounts (no credentials needed)
- DynamicsErpBackend: Dynamics 365 Web API (OData v4) over HTTP

Both expose the same operations and return plain JSON-serializable
dicts/lists.  Token acquisition is not handled here; the Dynamics backend
expects a ready bearer token.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import requests

from ..models import ErpConfig

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)


class ErpBackend(Protocol):
    """Operations the ERP tools need."""

    def get_ar_aging_data(self, customer_id: str) -> dict: ...

    def get_payment_history(self, customer_id: str) -> dict: ...

    def get_customers_with_outstanding_balance(self) -> list[str]: ...

    def update_customer_notes(self, customer_id: str, note: str) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def _parse_date(value: Optional[str], default: datetime) -> datetime:
    if not value:
        return default
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def dedupe(ids: list[str]) -> list[str]:
    """Drop duplicates and empties, keeping first-seen order."""
    return [i for i in dict.fromkeys(ids) if i]


def bucket_invoices(
    customer_id: str,
    customer_name: str,
    invoices: list[dict],
    today: Optional[datetime] = None,
) -> dict:
    """
    Build AR aging data from open invoices.

    Each invoice dict needs ``invoiceId``, ``amount``, ``dueDate`` and
    optionally ``invoiceDate``.  Buckets are by days past due date:
    <30 current, <60 days30, <90 days60, <120 days90, else days120Plus.
    """
    today = today or _now()
    aging = {
        "customerId": customer_id,
        "customerName": customer_name,
        "totalOutstanding": 0.0,
        "current": 0.0,
        "days30": 0.0,
        "days60": 0.0,
        "days90": 0.0,
        "days120Plus": 0.0,
        "invoices": [],
    }

    for inv in invoices:
        due = _parse_date(inv.get("dueDate"), today)
        issued = _parse_date(inv.get("invoiceDate"), today)
        amount = float(inv.get("amount") or 0)
        days_overdue = (today - due) // DAY

        if days_overdue < 30:
            aging["current"] += amount
        elif days_overdue < 60:
            aging["days30"] += amount
        elif days_overdue < 90:
            aging["days60"] += amount
        elif days_overdue < 120:
            aging["days90"] += amount
        else:
            aging["days120Plus"] += amount

        aging["totalOutstanding"] += amount
        aging["invoices"].append(
            {
                "invoiceId": inv["invoiceId"],
                "invoiceDate": _iso(issued),
                "dueDate": _iso(due),
                "amount": amount,
                "amountPaid": 0.0,
                "amountOutstanding": amount,
                "daysOverdue": max(0, days_overdue),
            }
        )

    return aging


class DemoErpBackend:
    """Sample accounts for local runs and tests."""

    def __init__(self):
        now = _now()
        self._accounts = {
            "CUST-001": "Contoso Ltd",
            "CUST-002": "Fabrikam Inc",
            "CUST-003": "Adventure Works",
        }
        # Several invoices per customer: the outstanding-balance listing
        # sees each customer more than once.
        self._invoices = [
            {"invoiceId": "INV-001", "customerId": "CUST-001", "amount": 50000,
             "invoiceDate": _iso(now - 30 * DAY), "dueDate": _iso(now)},
            {"invoiceId": "INV-002", "customerId": "CUST-001", "amount": 30000,
             "invoiceDate": _iso(now - 75 * DAY), "dueDate": _iso(now - 45 * DAY)},
            {"invoiceId": "INV-003", "customerId": "CUST-002", "amount": 60000,
             "invoiceDate": _iso(now - 20 * DAY), "dueDate": _iso(now + 10 * DAY)},
            {"invoiceId": "INV-004", "customerId": "CUST-001", "amount": 45000,
             "invoiceDate": _iso(now - 160 * DAY), "dueDate": _iso(now - 130 * DAY)},
            {"invoiceId": "INV-005", "customerId": "CUST-003", "amount": 80000,
             "invoiceDate": _iso(now - 25 * DAY), "dueDate": _iso(now + 5 * DAY)},
            {"invoiceId": "INV-006", "customerId": "CUST-002", "amount": 25000,
             "invoiceDate": _iso(now - 95 * DAY), "dueDate": _iso(now - 65 * DAY)},
            {"invoiceId": "INV-007", "customerId": "CUST-003", "amount": 120000,
             "invoiceDate": _iso(now - 130 * DAY), "dueDate": _iso(now - 100 * DAY)},
        ]
        self.notes: dict[str, list[str]] = {}

    def _require(self, customer_id: str) -> str:
        name = self._accounts.get(customer_id)
        if name is None:
            raise LookupError(f"Customer not found: {customer_id}")
        return name

    def get_ar_aging_data(self, customer_id: str) -> dict:
        name = self._require(customer_id)
        invoices = [i for i in self._invoices if i["customerId"] == customer_id]
        return bucket_invoices(customer_id, name, invoices)

    def get_payment_history(self, customer_id: str) -> dict:
        self._require(customer_id)
        now = _now()
        return {
            "customerId": customer_id,
            "averagePaymentDays": 35,
            "onTimePaymentRate": 0.67,
            "totalTransactions": 12,
            "lastPaymentDate": _iso(now - 30 * DAY),
            "promiseToPayHistory": [
                {
                    "date": _iso(now - 60 * DAY),
                    "promisedAmount": 25000,
                    "promisedDate": _iso(now - 30 * DAY),
                    "fulfilled": True,
                    "actualPaymentDate": _iso(now - 30 * DAY),
                },
                {
                    "date": _iso(now - 90 * DAY),
                    "promisedAmount": 35000,
                    "promisedDate": _iso(now - 75 * DAY),
                    "fulfilled": False,
                },
            ],
        }

    def get_customers_with_outstanding_balance(self) -> list[str]:
        return dedupe([i["customerId"] for i in self._invoices])

    def update_customer_notes(self, customer_id: str, note: str) -> None:
        self._require(customer_id)
        self.notes.setdefault(customer_id, []).append(note)
        logger.info(f"Updated notes for customer {customer_id} (demo mode)")


class DynamicsErpBackend:
    """Dynamics 365 Web API client (OData v4)."""

    def __init__(self, api_endpoint: str, access_token: str, timeout: int = 30):
        if not api_endpoint:
            raise ValueError("ERP API endpoint is not configured")
        if not access_token:
            raise ValueError("ERP access token is not configured")
        self.api_endpoint = api_endpoint.rstrip("/")
        self.timeout = timeout
        self._http = requests.Session()
        self._http.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "OData-MaxVersion": "4.0",
                "OData-Version": "4.0",
            }
        )

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        response = self._http.get(
            f"{self.api_endpoint}/{path}", params=params, timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def get_ar_aging_data(self, customer_id: str) -> dict:
        logger.info(f"Querying Dynamics 365 for customer: {customer_id}")
        account = self._get(f"accounts({customer_id})")
        rows = self._get(
            "invoices",
            {
                "$filter": f"_customerid_value eq {customer_id} and statecode eq 0",
                "$select": "invoiceid,totalamount,totallineitemamount,datedelivered,duedate",
                "$orderby": "createdon desc",
            },
        ).get("value", [])
        logger.info(f"Found {len(rows)} open invoices")

        invoices = [
            {
                "invoiceId": row["invoiceid"],
                "amount": row.get("totalamount") or row.get("totallineitemamount") or 0,
                "dueDate": row.get("duedate"),
                "invoiceDate": row.get("datedelivered"),
            }
            for row in rows
        ]
        return bucket_invoices(
            account.get("accountid", customer_id),
            account.get("name") or "Unknown Customer",
            invoices,
        )

    def get_payment_history(self, customer_id: str) -> dict:
        regarding = f"_regardingobjectid_value eq {customer_id}"
        tasks = self._get(
            "tasks",
            {"$filter": regarding, "$select": "subject,actualend", "$top": "50"},
        ).get("value", [])
        appointments = self._get(
            "appointments",
            {"$filter": regarding, "$select": "subject,scheduledend", "$top": "50"},
        ).get("value", [])

        on_time = 0
        days_late = 0
        for task in tasks:
            subject = task.get("subject") or ""
            if "On Time" in subject:
                on_time += 1
            match = re.search(r"(\d+) days late", subject)
            if match:
                days_late += int(match.group(1))

        now = _iso(_now())
        total = len(tasks)
        return {
            "customerId": customer_id,
            "totalTransactions": total,
            "onTimePaymentRate": on_time / total if total else 1.0,
            "averagePaymentDays": 30 + days_late / total if total else 30,
            "promiseToPayHistory": [
                {
                    "date": appt.get("scheduledend") or now,
                    "promisedDate": appt.get("scheduledend") or now,
                    "fulfilled": "Fulfilled" in (appt.get("subject") or ""),
                }
                for appt in appointments
            ],
            "lastPaymentDate": tasks[0].get("actualend") if tasks else now,
        }

    def get_customers_with_outstanding_balance(self) -> list[str]:
        rows = self._get(
            "invoices",
            {"$filter": "statecode eq 0", "$select": "_customerid_value", "$top": "100"},
        ).get("value", [])
        return dedupe([row.get("_customerid_value") for row in rows])

    def update_customer_notes(self, customer_id: str, note: str) -> None:
        stamped = f"{note}\n[Updated: {_iso(_now())}]"
        response = self._http.patch(
            f"{self.api_endpoint}/accounts({customer_id})",
            json={"description": stamped},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info(f"Updated notes for customer {customer_id} in Dynamics 365")


def create_backend(erp_config: ErpConfig) -> ErpBackend:
    """Pick the data source from configuration (demo unless told otherwise)."""
    if erp_config.demo_mode:
        logger.info("ERP backend: demo data")
        return DemoErpBackend()
    logger.info(f"ERP backend: Dynamics 365 at {erp_config.api_endpoint}")
    return DynamicsErpBackend(
        api_endpoint=erp_config.api_endpoint,
        access_token=erp_config.access_token,
        timeout=erp_config.timeout,
    )
