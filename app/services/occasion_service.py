from datetime import date

from sqlalchemy.orm import Session

from app.models.auto_gift_rule import AutoGiftRule
from app.models.occasion import Occasion


def _on_year(d: date, year: int) -> date:
    try:
        return d.replace(year=year)
    except ValueError:
        # 29 February outside a leap year
        return date(year, 2, 28)


def next_occurrence(occasion: Occasion, today: date) -> date | None:
    if (occasion.recurring or "yearly") == "none":
        return occasion.date if occasion.date >= today else None

    candidate = _on_year(occasion.date, today.year)
    if candidate < today:
        candidate = _on_year(occasion.date, today.year + 1)
    return candidate


def occasions_for_rule(db: Session, rule: AutoGiftRule) -> list[Occasion]:
    if rule.occasion_id is not None:
        occasion = db.get(Occasion, rule.occasion_id)
        return [occasion] if occasion is not None else []

    q = (
        db.query(Occasion)
        .filter(Occasion.user_id == rule.user_id)
        .filter(Occasion.date_type == rule.date_type)
    )
    if rule.recipient_id:
        q = q.filter(Occasion.recipient_id == rule.recipient_id)
    elif rule.pending_recipient_email:
        q = q.filter(Occasion.recipient_email == rule.pending_recipient_email)
    else:
        return []
    return q.all()
