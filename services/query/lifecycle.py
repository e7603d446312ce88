"""
services/query/lifecycle.py
Support ticket rules.

pending ⇄ resolved via admin responses; resolved → closed only when the
owner rates the answer. Rating is the single path to `closed`.
"""

from datetime import datetime, timezone
from typing import Optional

from shared.models.models import Query, QueryRating, QueryStatus, User
from shared.utils.exceptions import InvalidTransitionError, ValidationError

RESPONSE_TARGETS = {QueryStatus.RESOLVED, QueryStatus.PENDING}


def is_owner(query: Query, user: User) -> bool:
    """Linked tickets belong to their account; unlinked ones match on email."""
    if query.user_id is not None:
        return query.user_id == user.id
    return query.email.lower() == user.email.lower()


def respond(
    query: Query,
    response: str,
    admin: User,
    status: QueryStatus = QueryStatus.RESOLVED,
) -> Query:
    if not response or not response.strip():
        raise ValidationError("Response is required")
    target = QueryStatus(status)
    if target not in RESPONSE_TARGETS:
        raise InvalidTransitionError("A response can only mark a query as resolved or pending")
    if QueryStatus(query.status) == QueryStatus.CLOSED:
        raise InvalidTransitionError("Cannot respond to a closed query")

    query.response = response.strip()
    query.status = target
    query.responded_at = datetime.now(timezone.utc)
    query.responded_by_id = admin.id
    return query


def rate(query: Query, rating: QueryRating, feedback: Optional[str] = None) -> Query:
    """Record the owner's rating; a resolved ticket becomes closed."""
    if QueryStatus(query.status) != QueryStatus.RESOLVED:
        raise InvalidTransitionError("Can only rate resolved queries")

    query.rating = QueryRating(rating)
    query.rated_at = datetime.now(timezone.utc)
    query.feedback = feedback.strip() if feedback else None
    query.status = QueryStatus.CLOSED
    return query
