"""
Promo code validation and Stripe coupon minting.

``evaluate_promo_code`` is the only place promo rules live. Minting derives the
coupon id from the code alone, so every checkout that applies the same code
reuses one coupon instead of creating a new one per attempt.
"""
import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from membership_api.core.errors import BillingError, InvalidPromoError
from membership_api.db.models.promo_code import PromoCode
from membership_api.services.membership_service import as_utc, utcnow
from membership_api.services.stripe_gateway import StripeGateway, stripe_field

logger = logging.getLogger(__name__)

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED_AMOUNT = "fixed_amount"
COUPON_CURRENCY = "usd"


@dataclass(frozen=True)
class PromoVerdict:
    valid: bool
    error: Optional[str] = None
    promo_id: Optional[int] = None
    code: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None


@dataclass(frozen=True)
class DiscountRef:
    coupon_id: str
    promo_id: int
    code: str
    discount_type: str
    discount_value: float
    created: bool


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def evaluate_promo_code(
    db: Session,
    code: str,
    product_id: Optional[str],
    now: Optional[datetime] = None,
) -> PromoVerdict:
    """
    Authoritative promo check: existence, active flag, validity window,
    usage cap and product applicability. Never raises for a bad code.
    """
    now = now or utcnow()
    normalized = normalize_code(code)
    if not normalized:
        return PromoVerdict(valid=False, error="Promo code is required")

    promo = db.query(PromoCode).filter(func.upper(PromoCode.code) == normalized).first()
    if promo is None:
        return PromoVerdict(valid=False, error="Promo code not found")
    if not promo.is_active:
        return PromoVerdict(valid=False, error="Promo code is no longer active")

    valid_from = as_utc(promo.valid_from)
    if valid_from is not None and now < valid_from:
        return PromoVerdict(valid=False, error="Promo code is not active yet")
    valid_until = as_utc(promo.valid_until)
    if valid_until is not None and now > valid_until:
        return PromoVerdict(valid=False, error="Promo code has expired")

    if promo.max_uses is not None and (promo.times_used or 0) >= promo.max_uses:
        return PromoVerdict(valid=False, error="Promo code usage limit reached")

    applicable = promo.applicable_products or []
    if applicable and product_id not in applicable:
        return PromoVerdict(valid=False, error="Promo code does not apply to this plan")

    if promo.discount_type not in (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED_AMOUNT):
        logger.error(f"Promo code {promo.id} has unknown discount_type={promo.discount_type!r}")
        return PromoVerdict(valid=False, error="Promo code is misconfigured")
    if promo.discount_value is None or promo.discount_value <= 0:
        logger.error(f"Promo code {promo.id} has non-positive discount_value={promo.discount_value!r}")
        return PromoVerdict(valid=False, error="Promo code is misconfigured")
    if promo.discount_type == DISCOUNT_PERCENTAGE and promo.discount_value > 100:
        logger.error(f"Promo code {promo.id} has percentage above 100: {promo.discount_value}")
        return PromoVerdict(valid=False, error="Promo code is misconfigured")

    return PromoVerdict(
        valid=True,
        promo_id=promo.id,
        code=normalize_code(promo.code),
        discount_type=promo.discount_type,
        discount_value=float(promo.discount_value),
    )


def discount_id_for(code: str) -> str:
    """
    Deterministic Stripe coupon id for a promo code.

    The readable slug keeps ids recognisable in the Stripe dashboard; the hash
    suffix keeps codes that slug identically ("SPRING 25" / "SPRING_25") apart.
    """
    normalized = normalize_code(code)
    slug = re.sub(r"[^A-Z0-9]+", "_", normalized).strip("_")[:40] or "CODE"
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:8]
    return f"promo_{slug}_{digest}"


def _coupon_params(coupon_id: str, verdict: PromoVerdict) -> dict:
    params: dict = {
        "id": coupon_id,
        "duration": "once",
        "name": verdict.code,
        "metadata": {"promo_code_id": str(verdict.promo_id), "promo_code": verdict.code},
    }
    if verdict.discount_type == DISCOUNT_PERCENTAGE:
        params["percent_off"] = verdict.discount_value
    else:
        params["amount_off"] = int(round(verdict.discount_value * 100))
        params["currency"] = COUPON_CURRENCY
    return params


def validate_and_mint(
    db: Session,
    gateway: StripeGateway,
    code: str,
    product_id: Optional[str],
) -> DiscountRef:
    """
    Validate a promo code for a product and return the Stripe coupon to apply.

    Raises:
        InvalidPromoError: if the code fails validation
        BillingError: if Stripe fails for any reason other than "coupon not found"
    """
    verdict = evaluate_promo_code(db, code, product_id)
    if not verdict.valid:
        logger.info(f"Promo code rejected: code={normalize_code(code)!r}, product_id={product_id}, reason={verdict.error}")
        raise InvalidPromoError(verdict.error or "Invalid promo code", public_message=verdict.error)

    coupon_id = discount_id_for(verdict.code)
    created = False

    coupon: Any = gateway.retrieve_coupon(coupon_id)
    if coupon is None:
        coupon = gateway.create_coupon(**_coupon_params(coupon_id, verdict))
        if coupon is None:
            # Another checkout created it between our retrieve and create.
            logger.info(f"Coupon {coupon_id} created concurrently, reusing")
            coupon = gateway.retrieve_coupon(coupon_id)
            if coupon is None:
                raise BillingError(f"Coupon {coupon_id} reported as existing but could not be retrieved")
        else:
            created = True
            logger.info(f"Created Stripe coupon: coupon_id={coupon_id}, promo_id={verdict.promo_id}")
    else:
        logger.info(f"Reusing Stripe coupon: coupon_id={coupon_id}, promo_id={verdict.promo_id}")

    return DiscountRef(
        coupon_id=str(stripe_field(coupon, "id", default=coupon_id)),
        promo_id=verdict.promo_id,
        code=verdict.code,
        discount_type=verdict.discount_type,
        discount_value=verdict.discount_value,
        created=created,
    )
