"""Purchase tokens, checkout intents and webhook reconciliation."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from recordaudit.analysis import AnalysisService
from recordaudit.entitlements import is_truthy
from recordaudit.errors import InputError
from recordaudit.models import Principal, PurchaseToken, Tier
from recordaudit.payments.gateway import StripeGateway
from recordaudit.store.storage import SQLiteStore, to_timestamp

LOGGER = logging.getLogger(__name__)

TOKEN_PREFIX = "tok_"
PRODUCTS = {"audit_basic": Tier.BASIC, "audit_pro": Tier.PRO}
SUPPORTED_EVENTS = frozenset(
    {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
)


def product_for(tier: Tier) -> str:
    return "audit_pro" if tier is Tier.PRO else "audit_basic"


def new_token() -> str:
    return TOKEN_PREFIX + secrets.token_urlsafe(24)


@dataclass(slots=True)
class CheckoutIntent:
    redirect_url: str
    session_id: str
    token: str


@dataclass(slots=True)
class WebhookAck:
    handled: bool
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    analysis_id: Optional[str] = None
    applied: bool = False
    duplicate: bool = False
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ok": True,
            "handled": self.handled,
            "eventId": self.event_id,
            "type": self.event_type,
        }
        if self.analysis_id:
            data["analysisId"] = self.analysis_id
        if self.handled:
            data["applied"] = self.applied
            data["duplicate"] = self.duplicate
        if self.warning:
            data["warning"] = self.warning
        return data


class PaymentService:
    def __init__(
        self,
        store: SQLiteStore,
        analyses: AnalysisService,
        gateway: StripeGateway,
        *,
        token_ttl: int = 3600,
        site_url: str = "http://localhost:8000",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.analyses = analyses
        self.gateway = gateway
        self.token_ttl = token_ttl
        self.site_url = site_url.rstrip("/")
        self.clock = clock

    def issue_token(
        self, analysis_id: str, principal: Principal, product: str = "audit_basic"
    ) -> PurchaseToken:
        if product not in PRODUCTS:
            raise InputError(f"Unknown product '{product}'; expected one of {sorted(PRODUCTS)}")
        self.analyses.get(analysis_id, principal)
        token = PurchaseToken(
            token=new_token(),
            analysis_id=analysis_id,
            product=product,
            expires_at=to_timestamp(self.clock() + timedelta(seconds=self.token_ttl)),
        )
        self.store.insert_purchase_token(token)
        LOGGER.info("Issued %s token for analysis %s", product, analysis_id)
        return token

    def create_checkout(
        self, analysis_id: str, principal: Principal, tier: Tier = Tier.BASIC
    ) -> CheckoutIntent:
        run = self.analyses.get(analysis_id, principal)
        if is_truthy(run.meta.get("paid")):
            paid_tier = Tier.normalize(run.meta.get("tier"))
            if paid_tier is Tier.PRO or tier is Tier.BASIC:
                raise InputError(
                    f"Analysis {analysis_id} is already paid ({paid_tier.value})", code="already_paid"
                )

        price_id = self.gateway.price_for(tier.value)
        self.analyses.request_tier(analysis_id, tier)
        token = self.issue_token(analysis_id, principal, product_for(tier))

        target = f"{self.site_url}/audit?analysisId={quote(analysis_id)}"
        session = self.gateway.create_checkout_session(
            price_id=price_id,
            success_url=f"{target}&paid=1",
            cancel_url=f"{target}&canceled=1",
            client_reference_id=token.token,
            metadata={
                "analysis_id": analysis_id,
                "user_id": principal.user_id,
                "tier": tier.value,
                "caller_mode": principal.mode.value,
            },
        )
        return CheckoutIntent(redirect_url=session.url, session_id=session.id, token=token.token)

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookAck:
        """Reconcile a provider event.

        Signature failures raise before anything is written. Business problems
        are acknowledged with a warning so the provider stops retrying;
        unexpected errors roll the whole event back and propagate.
        """
        event = self.gateway.verify_webhook(payload, signature)
        event_id = str(event.get("id") or "").strip() or None
        event_type = str(event.get("type") or "")

        if event_type not in SUPPORTED_EVENTS:
            LOGGER.info("Ignoring webhook event %s of type %s", event_id, event_type)
            return WebhookAck(handled=False, event_id=event_id, event_type=event_type)
        if event_id is None:
            LOGGER.warning("Webhook event of type %s has no id", event_type)
            return WebhookAck(handled=True, event_type=event_type, warning="Missing event id")

        session = (event.get("data") or {}).get("object") or {}
        reference = str(session.get("client_reference_id") or "").strip()
        metadata = session.get("metadata") or {}
        hinted_id = str(metadata.get("analysis_id") or "").strip() or None
        ack = WebhookAck(handled=True, event_id=event_id, event_type=event_type)

        with self.store.transaction(immediate=True):
            if not self.store.record_payment_event(event_id, event_type, hinted_id):
                LOGGER.info("Webhook event %s already processed", event_id)
                ack.duplicate = True
                return ack

            if reference.startswith(TOKEN_PREFIX):
                analysis_id, tier, problem = self._claim_token(reference, session)
            elif hinted_id:
                analysis_id, tier, problem = hinted_id, Tier.normalize(metadata.get("tier")), None
            else:
                analysis_id, tier, problem = None, Tier.BASIC, "Missing client_reference_id (token)"

            if problem is None and self.store.get_analysis(analysis_id) is None:
                problem = f"Analysis not found: {analysis_id}"
            ack.analysis_id = analysis_id
            if problem is not None:
                LOGGER.warning("Webhook event %s not applied: %s", event_id, problem)
                ack.warning = problem
                return ack

            outcome = self.analyses.apply_payment(
                analysis_id,
                tier,
                reference={
                    "provider": "stripe",
                    "event_id": event_id,
                    "event_type": event_type,
                    "checkout_session_id": session.get("id"),
                    "payment_intent": _as_str(session.get("payment_intent")),
                    "amount_total": session.get("amount_total"),
                    "currency": session.get("currency"),
                },
            )
            ack.applied = outcome.applied

        LOGGER.info(
            "Webhook event %s reconciled for analysis %s (applied=%s)",
            event_id,
            ack.analysis_id,
            ack.applied,
        )
        return ack

    def _claim_token(
        self, token: str, session: Dict[str, Any]
    ) -> tuple[Optional[str], Tier, Optional[str]]:
        row = self.store.get_purchase_token(token)
        if row is None:
            return None, Tier.BASIC, "Token not found"
        claimed = self.store.claim_purchase_token(
            token,
            now=to_timestamp(self.clock()),
            session_id=_as_str(session.get("id")),
            payment_intent=_as_str(session.get("payment_intent")),
        )
        if not claimed:
            reason = "Token already used" if row.used_at else "Token expired"
            return row.analysis_id, row.tier, reason
        return row.analysis_id, row.tier, None


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None
