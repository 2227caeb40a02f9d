import re
from typing import Optional

from .models import AutoPurchaseConfig, FilmRule


def normalize(value: str | None) -> str:
    return re.sub(r"\s+", " ", value or "").strip().lower()


def resolve_rule(
    title: str,
    screening_time: str | None,
    config: Optional[AutoPurchaseConfig],
) -> Optional[FilmRule]:
    """Find the purchase rule for one screening.

    A rule pinned to a screening time only matches that screening. A rule
    without a time is a title-wide fallback, used when no pinned rule matches.
    """
    if config is None or not config.films:
        return None

    wanted_title = normalize(title)
    wanted_time = normalize(screening_time)

    for rule in config.films:
        if normalize(rule.title) == wanted_title and normalize(rule.screening_time) == wanted_time:
            return rule

    for rule in config.films:
        if not normalize(rule.screening_time) and normalize(rule.title) == wanted_title:
            return rule

    return None


def should_auto_purchase(
    title: str,
    screening_time: str | None,
    config: Optional[AutoPurchaseConfig],
) -> bool:
    rule = resolve_rule(title, screening_time, config)
    return rule is not None and rule.auto_purchase is True
