"""
Follow-up ordering.

Leads in the follow-up view are bucketed by the calendar day of their
scheduled callback relative to today:

    1  today
    2  tomorrow
    3  later
    4  no callback, or the callback day has already passed

Days are compared at midnight in `now`'s timezone, so 23:59 today and
00:01 tomorrow land in different buckets.
"""

from datetime import datetime
from typing import Iterable, NamedTuple, Optional

from leadsync.models import Lead

BUCKET_TODAY = 1
BUCKET_TOMORROW = 2
BUCKET_LATER = 3
BUCKET_NONE = 4


class CallbackPriority(NamedTuple):
    bucket: int
    tiebreak: Optional[datetime]


def _local(value: datetime, now: datetime) -> datetime:
    if now.tzinfo is None or value.tzinfo is None:
        return value
    return value.astimezone(now.tzinfo)


def priority(lead: Lead, now: datetime) -> CallbackPriority:
    info = lead.callback_info
    if info is None:
        return CallbackPriority(BUCKET_NONE, None)

    scheduled = _local(info.scheduled_at, now)
    days_ahead = (scheduled.date() - now.date()).days
    if days_ahead == 0:
        bucket = BUCKET_TODAY
    elif days_ahead == 1:
        bucket = BUCKET_TOMORROW
    elif days_ahead >= 2:
        bucket = BUCKET_LATER
    else:
        bucket = BUCKET_NONE
    return CallbackPriority(bucket, scheduled)


def sort_key(lead: Lead, now: datetime) -> tuple:
    """
    Composite ordering key: bucket, then soonest callback first.

    Leads without a callback sort after overdue ones in bucket 4; Python's
    stable sort keeps their incoming order.
    """
    bucket, tiebreak = priority(lead, now)
    if tiebreak is None:
        return (bucket, 1, 0.0)
    return (bucket, 0, tiebreak.timestamp())


def sort_by_callback_priority(leads: Iterable[Lead], now: datetime) -> list:
    return sorted(leads, key=lambda lead: sort_key(lead, now))
