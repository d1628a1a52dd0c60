from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.clients.fulfillment_client import FulfillmentClient, FulfillmentError
from app.clients.gift_recommender import GiftRecommender, RecommendationError
from app.clients.types import ProductCandidate, parse_price
from app.constants import CANDIDATE_LIMIT, DEFAULT_MAX_ITEMS, DEFAULT_MIN_PRICE
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.auto_gift_rule import AutoGiftRule
from app.models.auto_gifting_settings import AutoGiftingSettings
from app.models.enums import ExecutionStatus
from app.models.occasion import Occasion
from app.models.wishlist_item import WishlistItem
from app.services import notification_service
from app.services.approval_service import mint_token, send_approval_request
from app.services.execution_service import RELEASED, StageRunStats, claim, transition
from app.services.notification_service import Notifier, notify
from app.timeutil import utcnow


logger = logging.getLogger(__name__)


SOURCE_WISHLIST = "wishlist"
SOURCE_AI = "ai"
SOURCE_CATALOG = "catalog"


class NoEligibleProducts(Exception):
    pass


# ============================================================
# CANDIDATE SOURCES
# ============================================================

def build_search_query(criteria: Mapping[str, Any], occasion_type: str | None) -> str:
    event = (occasion_type or "").lower()
    if "birthday" in event:
        query = "birthday gift"
    elif "anniversary" in event:
        query = "anniversary gift"
    elif "wedding" in event:
        query = "wedding gift"
    elif "graduation" in event:
        query = "graduation gift"
    else:
        query = "gift"

    categories = criteria.get("categories") or []
    if categories:
        query = f"{' '.join(categories)} {query}"
    return query


def build_fallback_query(occasion_type: str | None) -> str:
    event = (occasion_type or "").lower()
    if "birthday" in event:
        return "birthday gift popular"
    if "anniversary" in event:
        return "anniversary gift ideas"
    if "wedding" in event:
        return "wedding gift popular"
    if "graduation" in event:
        return "graduation gift ideas"
    return "popular gift ideas"


def wishlist_candidates(db: Session, recipient_id: str | None) -> list[ProductCandidate]:
    if not recipient_id:
        return []

    items = (
        db.query(WishlistItem)
        .filter(WishlistItem.user_id == recipient_id)
        .order_by(WishlistItem.priority.desc(), WishlistItem.created_at.asc())
        .all()
    )
    return [
        ProductCandidate(
            product_id=item.product_id,
            title=item.title,
            price=parse_price(item.price),
            category=item.category,
            retailer=item.retailer,
            image_url=item.image_url,
            rating=item.rating,
            review_count=item.review_count,
            sources={SOURCE_WISHLIST},
        )
        for item in items
    ]


def merge_candidates(*groups: list[ProductCandidate]) -> list[ProductCandidate]:
    """De-duplicate by product id, keeping first-seen details and the union of sources."""
    merged: dict[str, ProductCandidate] = {}
    for group in groups:
        for candidate in group:
            existing = merged.get(candidate.product_id)
            if existing is None:
                merged[candidate.product_id] = candidate
                continue
            existing.sources |= candidate.sources
            if candidate.confidence is not None:
                existing.confidence = max(existing.confidence or 0.0, candidate.confidence)
            if existing.price is None:
                existing.price = candidate.price
    return list(merged.values())


# ============================================================
# FILTER / RANK / PICK
# ============================================================

def filter_candidates(candidates: list[ProductCandidate], criteria: Mapping[str, Any], budget: Decimal) -> list[ProductCandidate]:
    min_price = parse_price(criteria.get("min_price"))
    if min_price is None:
        min_price = DEFAULT_MIN_PRICE
    max_price = parse_price(criteria.get("max_price"))
    ceiling = budget if max_price is None else min(max_price, budget)

    categories = {str(c).lower() for c in criteria.get("categories") or []}
    excluded_ids = {str(p) for p in criteria.get("exclude_product_ids") or []}
    excluded_words = [str(w).lower() for w in criteria.get("exclude_keywords") or [] if str(w).strip()]

    kept = []
    for c in candidates:
        if c.price is None or c.price <= 0:
            continue
        if c.price < min_price or c.price > ceiling:
            continue
        if c.product_id in excluded_ids:
            continue
        title = (c.title or "").lower()
        if any(word in title for word in excluded_words):
            continue
        # AI and catalog results often carry no category; only a known mismatch excludes
        if categories and c.category and c.category.lower() not in categories:
            continue
        kept.append(c)
    return kept


def _rank_key(c: ProductCandidate):
    if len(c.sources) > 1:
        source_rank = 0
    elif SOURCE_WISHLIST in c.sources:
        source_rank = 1
    else:
        source_rank = 2
    return (source_rank, -(c.confidence or 0.0), -(c.rating or 0.0), -(c.review_count or 0))


def rank_candidates(candidates: list[ProductCandidate]) -> list[ProductCandidate]:
    return sorted(candidates, key=_rank_key)


def pick_within_budget(ranked: list[ProductCandidate], budget: Decimal, max_items: int) -> list[ProductCandidate]:
    picked = []
    total = Decimal("0")
    for c in ranked:
        if len(picked) >= max_items:
            break
        if total + c.price > budget:
            continue
        picked.append(c)
        total += c.price
    return picked


def discovery_method(picked: list[ProductCandidate]) -> str:
    sources = set()
    for c in picked:
        sources |= c.sources
    if SOURCE_WISHLIST in sources and (SOURCE_AI in sources or SOURCE_CATALOG in sources):
        return "hybrid"
    if SOURCE_WISHLIST in sources:
        return "wishlist"
    if SOURCE_AI in sources:
        return "ai_recommendation"
    return "catalog_search"


# ============================================================
# STAGE
# ============================================================

def _gather(
    db: Session,
    rule: AutoGiftRule,
    occasion: Occasion | None,
    *,
    recommender: GiftRecommender | None,
    catalog: FulfillmentClient | None,
) -> list[ProductCandidate]:
    criteria = rule.gift_selection_criteria or {}
    source = (criteria.get("source") or "both").lower()
    budget = Decimal(rule.budget_limit)

    wishlist = wishlist_candidates(db, rule.recipient_id) if source in ("wishlist", "both") else []

    suggested: list[ProductCandidate] = []
    if source in ("ai", "both"):
        if recommender is not None:
            recipient = {
                "recipient_id": rule.recipient_id,
                "email": rule.pending_recipient_email,
                "name": occasion.recipient_name if occasion else None,
            }
            suggested = recommender.recommend(
                recipient=recipient,
                occasion_type=rule.date_type,
                criteria=criteria,
                budget=budget,
                limit=CANDIDATE_LIMIT,
            )
        if not suggested and catalog is not None:
            min_price = parse_price(criteria.get("min_price"))
            for query in (build_search_query(criteria, rule.date_type), build_fallback_query(rule.date_type)):
                suggested = catalog.search_products(query, min_price=min_price, max_price=budget, limit=CANDIDATE_LIMIT)
                if suggested:
                    break

    return merge_candidates(wishlist, suggested)


def choose_products(
    db: Session,
    rule: AutoGiftRule,
    occasion: Occasion | None,
    *,
    recommender: GiftRecommender | None,
    catalog: FulfillmentClient | None,
) -> list[ProductCandidate]:
    criteria = rule.gift_selection_criteria or {}
    budget = Decimal(rule.budget_limit)
    max_items = int(criteria.get("max_items") or DEFAULT_MAX_ITEMS)

    candidates = _gather(db, rule, occasion, recommender=recommender, catalog=catalog)
    eligible = filter_candidates(candidates, criteria, budget)
    picked = pick_within_budget(rank_candidates(eligible), budget, max_items)
    if not picked:
        raise NoEligibleProducts(
            f"No products matched the rule criteria ({len(candidates)} candidates, {len(eligible)} within price bounds)"
        )
    return picked


def requires_approval(db: Session, rule: AutoGiftRule) -> bool:
    if rule.require_approval is not None:
        return bool(rule.require_approval)
    settings = db.get(AutoGiftingSettings, rule.user_id)
    return not (settings is not None and settings.auto_approve_gifts)


def _pending(db: Session, now: datetime, limit: int) -> list[AutoGiftExecution]:
    return (
        db.query(AutoGiftExecution)
        .filter(AutoGiftExecution.status == ExecutionStatus.PENDING_SELECTION)
        .order_by(AutoGiftExecution.occasion_date.asc(), AutoGiftExecution.created_at.asc())
        .limit(limit)
        .all()
    )


def select_products(
    db: Session,
    *,
    now: datetime | None = None,
    recommender: GiftRecommender | None = None,
    catalog: FulfillmentClient | None = None,
    notifier: Notifier | None = None,
    worker_id: str | None = None,
    limit: int = 50,
) -> StageRunStats:
    if now is None:
        now = utcnow()

    stats = StageRunStats()

    for execution in _pending(db, now, limit):
        if not claim(db, execution, expected=ExecutionStatus.PENDING_SELECTION, now=now, worker_id=worker_id):
            stats.skipped += 1
            continue
        db.commit()
        stats.processed += 1

        rule = db.get(AutoGiftRule, execution.rule_id)
        occasion = db.get(Occasion, execution.occasion_id) if execution.occasion_id else None

        try:
            picked = choose_products(db, rule, occasion, recommender=recommender, catalog=catalog)
        except (RecommendationError, FulfillmentError) as e:
            # read-only lookups: leave it for the next run
            transition(db, execution, expected=ExecutionStatus.PENDING_SELECTION, new=ExecutionStatus.PENDING_SELECTION, **RELEASED)
            db.commit()
            stats.failed += 1
            logger.warning("product sources unavailable", extra={"execution_id": str(execution.id), "error": str(e)})
            continue
        except NoEligibleProducts as e:
            transition(
                db,
                execution,
                expected=ExecutionStatus.PENDING_SELECTION,
                new=ExecutionStatus.SELECTION_FAILED,
                error_message=str(e),
                **RELEASED,
            )
            db.commit()
            stats.failed += 1
            logger.info("auto-gift selection failed", extra={"execution_id": str(execution.id), "reason": str(e)})
            notify(
                notifier,
                notification_service.SELECTION_FAILED,
                user_id=execution.user_id,
                execution_id=execution.id,
                occasion_date=execution.occasion_date.isoformat(),
                reason=str(e),
            )
            continue

        snapshot = [{**c.to_snapshot(), "quantity": 1} for c in picked]
        total = sum((c.price for c in picked), Decimal("0")).quantize(Decimal("0.01"))
        ai_picked = [c for c in picked if SOURCE_AI in c.sources]
        confidences = [c.confidence for c in ai_picked if c.confidence is not None]

        needs_approval = requires_approval(db, rule)
        moved = transition(
            db,
            execution,
            expected=ExecutionStatus.PENDING_SELECTION,
            new=ExecutionStatus.PENDING_APPROVAL if needs_approval else ExecutionStatus.APPROVED,
            selected_products=snapshot,
            total_amount=total,
            ai_agent=(recommender.agent_name if recommender is not None and ai_picked else None),
            confidence_score=(max(confidences) if confidences else None),
            discovery_method=discovery_method(picked),
            **RELEASED,
        )
        if not moved:
            # cancelled while we were selecting
            db.rollback()
            stats.skipped += 1
            continue

        token = None
        if needs_approval:
            token = mint_token(db, execution, now=now)
        db.commit()

        if token is not None:
            send_approval_request(db, execution, token, now=now, notifier=notifier)
            db.commit()

        stats.succeeded += 1
        logger.info(
            "auto-gift products selected",
            extra={
                "execution_id": str(execution.id),
                "products": len(snapshot),
                "total_amount": str(total),
                "discovery_method": execution.discovery_method,
                "needs_approval": needs_approval,
            },
        )

    return stats
