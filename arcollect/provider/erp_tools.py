"""
AR collections tools exposed by the provider.

Tools:
  - get_ar_aging_data                      : AR aging buckets + invoices for a customer
  - get_payment_history                    : payment history and promise-to-pay records
  - get_customers_with_outstanding_balance : all customer ids with an open balance
  - update_customer_notes                  : write a collections note to the ERP (side effect)
  - send_dunning_email                     : email a payment reminder (side effect)
  - send_teams_notification                : alert a collections colleague in Teams (side effect)
  - record_promise_to_pay                  : record a customer's payment promise (side effect)
"""

import logging
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .erp_backend import ErpBackend
from .messaging import DemoOutbox, Outbox, compose_dunning_email, compose_teams_message
from .registry import NoArguments, ToolRegistry

logger = logging.getLogger(__name__)


class CustomerArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_id: str = Field(
        ..., alias="customerId", min_length=1, description="Customer ID in the ERP system"
    )


class CustomerNoteArgs(CustomerArgs):
    note: str = Field(..., min_length=1, description="Note content to record")


class RecipientArgs(CustomerArgs):
    recipient_email: str = Field(
        ..., alias="recipientEmail", min_length=3, description="Email address to send to"
    )


class PromiseToPayArgs(CustomerArgs):
    amount: float = Field(..., gt=0, description="Promised payment amount")
    promised_date: date = Field(
        ..., alias="date", description="Promised payment date in YYYY-MM-DD format"
    )
    notes: Optional[str] = Field(default=None, description="Optional context for the promise")


def build_registry(backend: ErpBackend, outbox: Optional[Outbox] = None) -> ToolRegistry:
    """Register the collections tools against a backend and an outbox."""
    registry = ToolRegistry()
    outbox = outbox or DemoOutbox()

    registry.register(
        name="get_ar_aging_data",
        description=(
            "Fetch AR aging data for a customer from the ERP system. Returns aging "
            "buckets (current, 30, 60, 90, 120+ days) and individual invoices."
        ),
        args_model=CustomerArgs,
        handler=lambda args: backend.get_ar_aging_data(args.customer_id),
    )

    registry.register(
        name="get_payment_history",
        description=(
            "Fetch payment history for a customer, including on-time rate, "
            "average payment days, and promise-to-pay records."
        ),
        args_model=CustomerArgs,
        handler=lambda args: backend.get_payment_history(args.customer_id),
    )

    registry.register(
        name="get_customers_with_outstanding_balance",
        description="Return all customer IDs that have outstanding balances in the ERP system.",
        args_model=NoArguments,
        handler=lambda args: backend.get_customers_with_outstanding_balance(),
    )

    def update_notes(args: CustomerNoteArgs) -> dict:
        backend.update_customer_notes(args.customer_id, args.note)
        return {"success": True}

    registry.register(
        name="update_customer_notes",
        description="Append a collections note to the customer record in the ERP system.",
        args_model=CustomerNoteArgs,
        handler=update_notes,
        side_effecting=True,
    )

    def send_dunning_email(args: RecipientArgs) -> dict:
        aging = backend.get_ar_aging_data(args.customer_id)
        subject, body = compose_dunning_email(aging)
        outbox.send_email(args.recipient_email, subject, body)
        backend.update_customer_notes(args.customer_id, f"Dunning email sent: {subject}")
        return {"success": True, "sentTo": args.recipient_email, "subject": subject}

    registry.register(
        name="send_dunning_email",
        description=(
            "Draft a dunning email from the customer's AR aging data and send it to the "
            "given address. To review before it reaches the customer, send it to the "
            "user's own email."
        ),
        args_model=RecipientArgs,
        handler=send_dunning_email,
        side_effecting=True,
    )

    def send_teams_notification(args: RecipientArgs) -> dict:
        aging = backend.get_ar_aging_data(args.customer_id)
        outbox.send_teams_message(args.recipient_email, compose_teams_message(aging))
        backend.update_customer_notes(
            args.customer_id, f"Teams message sent to {args.recipient_email}"
        )
        return {"success": True, "sentTo": args.recipient_email}

    registry.register(
        name="send_teams_notification",
        description=(
            "Send a Teams message to a collections team member about a customer account "
            "that needs attention."
        ),
        args_model=RecipientArgs,
        handler=send_teams_notification,
        side_effecting=True,
    )

    def record_promise_to_pay(args: PromiseToPayArgs) -> dict:
        note = (
            f"Customer promised to pay ${args.amount:,.2f} by "
            f"{args.promised_date.isoformat()}. {args.notes or ''}"
        ).strip()
        backend.update_customer_notes(args.customer_id, note)
        logger.info(f"Promise to pay recorded for customer {args.customer_id}")
        return {"success": True, "note": note}

    registry.register(
        name="record_promise_to_pay",
        description=(
            "Record a customer's payment promise in the ERP system. Use when a customer "
            "has committed to pay an amount by a specific date."
        ),
        args_model=PromiseToPayArgs,
        handler=record_promise_to_pay,
        side_effecting=True,
    )

    return registry
