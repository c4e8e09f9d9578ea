"""
Subject attributes to evaluation context.

The decision tree never reads a subject directly: callers describe the
subject with a ``SubjectProfile`` and this module turns it into the
``EvaluationContext`` the engine consumes, as of a reference date.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import FrozenSet, Optional, Union

from .decision_tree.models import EvaluationContext

DAYS_PER_YEAR = 365.25

DateLike = Union[date, datetime]


@dataclass
class SubjectProfile:
    """Raw attributes of the person a fee is computed for."""
    birth_date: Optional[date] = None
    quotient_familial: Optional[Decimal] = None
    residence_id: Optional[str] = None
    community_ids: FrozenSet[str] = field(default_factory=frozenset)
    social_status: Optional[str] = None
    first_membership_date: Optional[date] = None
    household_registrants: int = 0


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def age_on(birth_date: Optional[DateLike], reference: DateLike) -> Optional[int]:
    """Age in whole years on ``reference``, or None when unknown."""
    if birth_date is None:
        return None

    birth_date = _as_date(birth_date)
    reference = _as_date(reference)
    age = reference.year - birth_date.year
    if (reference.month, reference.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def membership_years(first_membership_date: Optional[DateLike], reference: DateLike) -> int:
    """Completed years of membership on ``reference`` (0 when never a member)."""
    if first_membership_date is None:
        return 0

    days = (_as_date(reference) - _as_date(first_membership_date)).days
    return max(0, math.floor(days / DAYS_PER_YEAR))


def build_context(profile: SubjectProfile, reference_date: DateLike) -> EvaluationContext:
    """Evaluation context of ``profile`` as of ``reference_date``."""
    return EvaluationContext(
        age=age_on(profile.birth_date, reference_date),
        quotient_familial=profile.quotient_familial,
        residence_id=profile.residence_id,
        community_ids=frozenset(profile.community_ids or ()),
        social_status=profile.social_status,
        membership_years=membership_years(profile.first_membership_date, reference_date),
        household_registrants=profile.household_registrants,
    )
