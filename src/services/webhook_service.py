"""Webhook reconciler: applies verified Stripe payment events to orders exactly once."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import stripe
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.api.middleware.error_handler import (
    CorrelationError,
    InventoryConflictError,
    MalformedEventError,
    OrderNotYetAvailableError,
    PaymentMismatchError,
    PaymentProviderUnavailableError,
    WebhookSignatureError,
)
from src.core.config import Settings, get_settings
from src.core.stripe import to_minor_units
from src.core.supabase import get_supabase_client
from src.models.order import Order
from src.services.email_service import EmailService
from src.services.inventory_service import InventoryService
from src.services.invoice_service import InvoiceService
from src.services.order_service import OrderService

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
        "payment_intent.succeeded",
    }
)
FAILURE_EVENTS = frozenset(
    {
        "checkout.session.expired",
        "checkout.session.async_payment_failed",
        "payment_intent.payment_failed",
    }
)

# PostgreSQL invalid_text_representation, raised for a malformed uuid
INVALID_TEXT_REPRESENTATION = "22P02"

INVENTORY_MARKER = "inventory_adjusted_at"
INVENTORY_CLAIM = "inventory_claimed_at"
INVOICE_MARKER = "invoice_generated_at"
CONFIRMATION_MARKER = "confirmation_sent_at"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _age_seconds(timestamp: str | datetime) -> float:
    if isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (datetime.now(timezone.utc) - timestamp).total_seconds()


def _metadata_value(metadata: dict[str, Any], snake: str, camel: str) -> str | None:
    value = metadata.get(snake) or metadata.get(camel)
    return str(value).strip() if value else None


@dataclass(frozen=True)
class PaymentEvent:
    """Provider event reduced to what reconciliation needs."""

    event_id: str | None
    event_type: str
    object_id: str | None
    amount: int | None
    currency: str | None
    order_id: str | None = None
    order_number: str | None = None
    product_id: str | None = None
    product_slug: str | None = None
    checkout_session_id: str | None = None
    payment_intent_id: str | None = None


@dataclass
class ReconcileResult:
    """Outcome of handling one webhook delivery."""

    status: str
    event_type: str
    event_id: str | None = None
    order_number: str | None = None
    effects: dict[str, str] = field(default_factory=dict)


def correlate(event: dict[str, Any]) -> PaymentEvent:
    """Extract correlation data and the reported amount from a payment event.

    The order is identified by ``order_id`` or, failing that, by the triple
    ``order_number`` + ``product_slug`` + ``product_id``. Nothing is guessed.

    Raises:
        CorrelationError: If the metadata cannot identify an order.
    """
    event_type = event["type"]
    obj = event["data"]["object"]
    metadata = obj.get("metadata") or {}

    if event_type.startswith("checkout.session."):
        amount = obj.get("amount_total")
        checkout_session_id = obj.get("id")
        payment_intent_id = obj.get("payment_intent")
    else:
        amount = obj.get("amount_received", obj.get("amount"))
        checkout_session_id = None
        payment_intent_id = obj.get("id")

    payment_event = PaymentEvent(
        event_id=event.get("id"),
        event_type=event_type,
        object_id=obj.get("id"),
        amount=amount,
        currency=obj.get("currency"),
        order_id=_metadata_value(metadata, "order_id", "orderId"),
        order_number=_metadata_value(metadata, "order_number", "orderNumber"),
        product_id=_metadata_value(metadata, "product_id", "productId"),
        product_slug=_metadata_value(metadata, "product_slug", "productSlug"),
        checkout_session_id=checkout_session_id,
        payment_intent_id=payment_intent_id if isinstance(payment_intent_id, str) else None,
    )

    has_fallback = all(
        (payment_event.order_number, payment_event.product_slug, payment_event.product_id)
    )
    if not payment_event.order_id and not has_fallback:
        logger.warning(
            "Payment event %s (%s) carries no order correlation metadata",
            payment_event.event_id,
            event_type,
        )
        raise CorrelationError()

    return payment_event


class WebhookService:
    """Service for verifying and reconciling Stripe payment webhooks."""

    def __init__(
        self,
        supabase_client: Client | None = None,
        order_service: OrderService | None = None,
        inventory_service: InventoryService | None = None,
        invoice_service: InvoiceService | None = None,
        email_service: EmailService | None = None,
        settings: Settings | None = None,
    ):
        """Initialize webhook service.

        Args:
            supabase_client: Optional Supabase client for testing.
            order_service: Optional order service for testing.
            inventory_service: Optional inventory service for testing.
            invoice_service: Optional invoice service for testing.
            email_service: Optional email service for testing.
            settings: Optional settings for testing.
        """
        self._supabase_client = supabase_client
        self._order_service = order_service
        self._inventory_service = inventory_service
        self._invoice_service = invoice_service
        self._email_service = email_service
        self.settings = settings or get_settings()

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    @property
    def order_service(self) -> OrderService:
        """Get order service."""
        if self._order_service is None:
            self._order_service = OrderService(supabase_client=self.supabase, settings=self.settings)
        return self._order_service

    @property
    def inventory_service(self) -> InventoryService:
        """Get inventory service."""
        if self._inventory_service is None:
            self._inventory_service = InventoryService(supabase_client=self.supabase, settings=self.settings)
        return self._inventory_service

    @property
    def invoice_service(self) -> InvoiceService:
        """Get invoice service."""
        if self._invoice_service is None:
            self._invoice_service = InvoiceService(supabase_client=self.supabase, settings=self.settings)
        return self._invoice_service

    @property
    def email_service(self) -> EmailService:
        """Get email service."""
        if self._email_service is None:
            self._email_service = EmailService(settings=self.settings)
        return self._email_service

    def verify_event(self, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        """Verify the Stripe signature and parse the event.

        Args:
            payload: Raw request body, exactly as received.
            sig_header: Stripe-Signature header value.

        Returns:
            dict: Parsed Stripe event.

        Raises:
            PaymentProviderUnavailableError: If the webhook secret is not configured.
            WebhookSignatureError: If the signature is missing, stale or wrong.
            MalformedEventError: If the verified payload is not a Stripe event.
        """
        secret = self.settings.stripe_webhook_secret
        if not secret:
            logger.error("Stripe webhook secret is not configured, rejecting webhook")
            raise PaymentProviderUnavailableError("Stripe webhook secret is not configured.")

        if not sig_header:
            logger.warning("Webhook received without Stripe-Signature header")
            raise WebhookSignatureError("Missing signature")

        try:
            payload_text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEventError() from e

        try:
            stripe.WebhookSignature.verify_header(
                payload_text,
                sig_header,
                secret,
                tolerance=self.settings.stripe_webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise WebhookSignatureError() from e

        try:
            event = json.loads(payload_text)
        except json.JSONDecodeError as e:
            raise MalformedEventError() from e

        if (
            not isinstance(event, dict)
            or not isinstance(event.get("type"), str)
            or not isinstance((event.get("data") or {}).get("object"), dict)
        ):
            raise MalformedEventError()

        return event

    async def handle_provider_event(self, payload: bytes, sig_header: str | None) -> ReconcileResult:
        """Verify, correlate and apply one webhook delivery.

        Safe under duplicate and concurrent delivery: the paid transition
        happens at most once and each downstream effect runs at most once.

        Args:
            payload: Raw request body.
            sig_header: Stripe-Signature header value.

        Returns:
            ReconcileResult: What the delivery did.
        """
        event = self.verify_event(payload, sig_header)
        event_type = event["type"]
        event_id = event.get("id")
        obj = event["data"]["object"]

        logger.info("Received Stripe webhook: %s (%s)", event_type, event_id)

        if event_type in FAILURE_EVENTS:
            metadata = obj.get("metadata") or {}
            logger.info(
                "Payment did not complete for order %s (%s); order stays pending",
                _metadata_value(metadata, "order_number", "orderNumber"),
                event_type,
            )
            return ReconcileResult(
                status="acknowledged",
                event_type=event_type,
                event_id=event_id,
                order_number=_metadata_value(metadata, "order_number", "orderNumber"),
            )

        if event_type not in SUCCESS_EVENTS:
            logger.info("Unhandled webhook event type: %s", event_type)
            return ReconcileResult(status="ignored", event_type=event_type, event_id=event_id)

        if event_type == "checkout.session.completed" and obj.get("payment_status") != "paid":
            logger.info("Checkout session %s completed but payment is still %s", obj.get("id"), obj.get("payment_status"))
            return ReconcileResult(status="acknowledged", event_type=event_type, event_id=event_id)

        payment_event = correlate(event)
        order, transitioned = await self.apply_payment(payment_event)

        effects: dict[str, str] = {}
        if order.get("payment_status") == "paid":
            effects = await self.run_downstream_effects(order)

        if transitioned:
            status = "processed"
        elif order.get("payment_status") == "paid":
            status = "already_processed"
        else:
            status = "skipped"

        return ReconcileResult(
            status=status,
            event_type=event_type,
            event_id=event_id,
            order_number=order.get("order_number"),
            effects=effects,
        )

    async def apply_payment(self, payment_event: PaymentEvent) -> tuple[Order, bool]:
        """Move the correlated order from pending/unpaid to paid.

        Args:
            payment_event: Correlated success event.

        Returns:
            tuple: The order as it now stands and whether this call made the
                transition.

        Raises:
            OrderNotYetAvailableError: If the order is not visible yet.
            CorrelationError: If the metadata points at the wrong order.
            PaymentMismatchError: If amount or currency disagree with the order.
        """
        order = await self._find_order(payment_event)
        self._check_amount(order, payment_event)

        if order["payment_status"] == "paid":
            logger.info(
                "Order %s already paid, treating %s as a replay",
                order["order_number"],
                payment_event.event_id,
            )
            return order, False

        if order["payment_status"] != "unpaid" or order["status"] != "pending":
            logger.error(
                "Payment received for order %s in state %s/%s; needs manual follow-up",
                order["order_number"],
                order["status"],
                order["payment_status"],
            )
            return order, False

        metadata = dict(order.get("metadata") or {})
        if payment_event.checkout_session_id:
            metadata["stripe_checkout_session_id"] = payment_event.checkout_session_id
        if payment_event.payment_intent_id:
            metadata["stripe_payment_intent_id"] = payment_event.payment_intent_id
        metadata["last_payment_event_id"] = payment_event.event_id

        response = (
            self.supabase.table("orders")
            .update(
                {
                    "status": "paid",
                    "payment_status": "paid",
                    "paid_at": _utcnow_iso(),
                    "metadata": metadata,
                }
            )
            .eq("id", str(order["id"]))
            .eq("payment_status", "unpaid")
            .eq("status", "pending")
            .execute()
        )

        if response.data:
            logger.info("Order %s marked as paid (%s)", order["order_number"], payment_event.event_id)
            return response.data[0], True

        # Another delivery won the race
        current = await self.order_service.get_order(str(order["id"]))
        logger.info("Order %s was transitioned by a concurrent delivery", order["order_number"])
        return current or order, False

    async def run_downstream_effects(self, order: Order) -> dict[str, str]:
        """Run the inventory decrement, invoice and confirmation email at most once each.

        Inventory is claimed with an in-progress token and only marked done
        once every line item is decremented. A failed decrement releases the
        claim and re-raises so the provider redelivers; a claim that could not
        be released is taken over once it is older than
        ``effect_claim_timeout_seconds``. Invoice and email are claimed by
        their marker column and are best-effort: failures are only logged.

        Args:
            order: A paid order.

        Returns:
            dict: Effect name to ``done``, ``already_done`` or ``failed``.

        Raises:
            InventoryConflictError: If another delivery holds a fresh
                inventory claim or stock kept changing.
        """
        effects: dict[str, str] = {}

        effects["inventory"] = await self._adjust_inventory(order)

        if self._claim_effect(order, INVOICE_MARKER):
            invoice = await self.invoice_service.generate_invoice(order)
            if invoice.get("success"):
                order = {**order, "invoice_id": invoice["invoice_id"], "invoice_url": invoice["invoice_url"]}
                effects["invoice"] = "done"
            else:
                effects["invoice"] = "failed"
        else:
            effects["invoice"] = "already_done"

        if self._claim_effect(order, CONFIRMATION_MARKER):
            result = await self.email_service.send_order_confirmation(order)
            effects["confirmation_email"] = "done" if result.get("success") else "failed"
        else:
            effects["confirmation_email"] = "already_done"

        return effects

    async def _adjust_inventory(self, order: Order) -> str:
        claim = self._claim_inventory(order)
        if claim is None:
            return "already_done"

        try:
            for item in order.get("line_items") or []:
                await self.inventory_service.decrement_inventory(item["product_id"], item["quantity"])
        except Exception as e:
            logger.error("Inventory adjustment failed for order %s: %s", order["order_number"], e)
            try:
                self._release_inventory_claim(order, claim)
            except Exception as release_error:
                logger.error(
                    "Could not release inventory claim for order %s (%s); a redelivery takes it over after %ds",
                    order["order_number"],
                    release_error,
                    self.settings.effect_claim_timeout_seconds,
                )
            raise

        response = (
            self.supabase.table("orders")
            .update({INVENTORY_MARKER: _utcnow_iso(), INVENTORY_CLAIM: None})
            .eq("id", str(order["id"]))
            .eq(INVENTORY_CLAIM, claim)
            .execute()
        )
        if not response.data:
            logger.warning(
                "Inventory claim for order %s was taken over before it completed",
                order["order_number"],
            )
        return "done"

    def _claim_inventory(self, order: Order) -> str | None:
        """Take the inventory claim, returning its token or None if already done."""
        token = _utcnow_iso()
        response = (
            self.supabase.table("orders")
            .update({INVENTORY_CLAIM: token})
            .eq("id", str(order["id"]))
            .is_(INVENTORY_MARKER, "null")
            .is_(INVENTORY_CLAIM, "null")
            .execute()
        )
        if response.data:
            return token

        result = (
            self.supabase.table("orders")
            .select(f"id, {INVENTORY_MARKER}, {INVENTORY_CLAIM}")
            .eq("id", str(order["id"]))
            .maybe_single()
            .execute()
        )
        current = result.data if result and result.data else None
        if not current or current.get(INVENTORY_MARKER):
            return None

        held_since = current.get(INVENTORY_CLAIM)
        if held_since is None or _age_seconds(held_since) < self.settings.effect_claim_timeout_seconds:
            raise InventoryConflictError(f"Inventory for order {order['order_number']} is being adjusted")

        response = (
            self.supabase.table("orders")
            .update({INVENTORY_CLAIM: token})
            .eq("id", str(order["id"]))
            .is_(INVENTORY_MARKER, "null")
            .eq(INVENTORY_CLAIM, held_since)
            .execute()
        )
        if not response.data:
            raise InventoryConflictError(f"Inventory for order {order['order_number']} is being adjusted")

        logger.warning(
            "Took over stale inventory claim for order %s held since %s",
            order["order_number"],
            held_since,
        )
        return token

    def _release_inventory_claim(self, order: Order, claim: str) -> None:
        (
            self.supabase.table("orders")
            .update({INVENTORY_CLAIM: None})
            .eq("id", str(order["id"]))
            .eq(INVENTORY_CLAIM, claim)
            .execute()
        )

    def _claim_effect(self, order: Order, marker: str) -> bool:
        response = (
            self.supabase.table("orders")
            .update({marker: _utcnow_iso()})
            .eq("id", str(order["id"]))
            .is_(marker, "null")
            .execute()
        )
        return bool(response.data)

    async def _find_order(self, payment_event: PaymentEvent) -> Order:
        try:
            if payment_event.order_id:
                order = await self.order_service.get_order(payment_event.order_id)
            else:
                order = await self.order_service.get_order_by_number(payment_event.order_number)
        except PostgrestAPIError as e:
            if e.code == INVALID_TEXT_REPRESENTATION:
                logger.warning("Payment event %s has an invalid order id", payment_event.event_id)
                raise CorrelationError("Payment event has an invalid order id") from e
            raise

        if not order:
            logger.warning(
                "Order %s not found for payment event %s; asking for redelivery",
                payment_event.order_id or payment_event.order_number,
                payment_event.event_id,
            )
            raise OrderNotYetAvailableError()

        if payment_event.order_number and order["order_number"] != payment_event.order_number:
            logger.error(
                "Payment event %s names order %s but id %s belongs to %s",
                payment_event.event_id,
                payment_event.order_number,
                order["id"],
                order["order_number"],
            )
            raise CorrelationError("Payment event metadata is inconsistent")

        if not payment_event.order_id:
            matches = any(
                str(item.get("product_id")) == payment_event.product_id
                and item.get("product_slug") == payment_event.product_slug
                for item in order.get("line_items") or []
            )
            if not matches:
                logger.error(
                    "Payment event %s product %s/%s is not on order %s",
                    payment_event.event_id,
                    payment_event.product_slug,
                    payment_event.product_id,
                    order["order_number"],
                )
                raise CorrelationError("Payment event product does not match the order")

        return order

    def _check_amount(self, order: Order, payment_event: PaymentEvent) -> None:
        expected = to_minor_units(order["total"])
        if payment_event.amount is None or int(payment_event.amount) != expected:
            logger.error(
                "Payment amount mismatch for order %s: expected %s, got %s (%s)",
                order["order_number"],
                expected,
                payment_event.amount,
                payment_event.event_id,
            )
            raise PaymentMismatchError()

        if payment_event.currency and payment_event.currency.lower() != str(order["currency"]).lower():
            logger.error(
                "Payment currency mismatch for order %s: expected %s, got %s (%s)",
                order["order_number"],
                order["currency"],
                payment_event.currency,
                payment_event.event_id,
            )
            raise PaymentMismatchError("Payment currency does not match order")


def get_webhook_service() -> WebhookService:
    """Get webhook service instance.

    Returns:
        WebhookService: Webhook service instance.
    """
    return WebhookService()
