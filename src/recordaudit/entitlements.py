"""Decide whether a caller may execute and export an analysis, and at which tier."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from recordaudit.models import CallerMode, Profile, Tier

PAYMENT_REQUIRED = "PAYMENT_REQUIRED"


def is_truthy(value: Any) -> bool:
    return value is True or value in ("true", "True", 1, "1")


@dataclass(slots=True)
class EntitlementRequest:
    caller_mode: CallerMode
    caller_id: Optional[str] = None
    profile: Optional[Profile] = None
    analysis_meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Entitlement:
    allowed: bool
    tier: Optional[Tier] = None
    export_allowed: bool = False
    is_admin: bool = False
    reason: Optional[str] = None

    @property
    def payment_required(self) -> bool:
        return not self.allowed and self.reason == PAYMENT_REQUIRED


def _granted(tier: Tier, *, is_admin: bool = False) -> Entitlement:
    return Entitlement(
        allowed=True, tier=tier, export_allowed=tier is Tier.PRO, is_admin=is_admin
    )


def resolve_entitlement(
    request: EntitlementRequest, admin_user_ids: Iterable[str] = ()
) -> Entitlement:
    """First matching rule wins: system, admin, free grant, then paid flag.

    A denial is a normal outcome (``reason == PAYMENT_REQUIRED``), not an error.
    """
    meta = request.analysis_meta or {}

    if request.caller_mode is CallerMode.SYSTEM:
        return _granted(Tier.normalize(meta.get("tier")), is_admin=True)

    profile = request.profile
    on_allow_list = bool(request.caller_id) and request.caller_id in set(admin_user_ids)
    if on_allow_list or (profile is not None and profile.is_admin):
        return _granted(Tier.PRO, is_admin=True)

    if profile is not None and profile.free_access:
        return _granted(profile.free_tier or Tier.BASIC)

    if not is_truthy(meta.get("paid")):
        return Entitlement(allowed=False, reason=PAYMENT_REQUIRED)
    return _granted(Tier.normalize(meta.get("tier")))
