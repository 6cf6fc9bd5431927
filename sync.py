"""Keeps a dashboard's lists in step with the store.

The policy is deliberately blunt: any change event on a watched table means
"re-run every query for this role and replace the lists". Bursts of events that
pile up while a refetch is running collapse into a single further refetch, so
intermediate states may be skipped but the last snapshot always reflects the
latest committed state.
"""

import logging
from collections.abc import AsyncIterator
from typing import Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

import lifecycle
import moderation
from gate import GateDecision, decide
from identity import SessionContext, load_context
from models import DonationStatus, Role
from realtime import ChangeFeed
from schemas import ContactMessageRead, DonationRead, UserRow

logger = logging.getLogger(__name__)

WATCHED_TABLES = {
    Role.donor: ("donations", "profiles"),
    Role.ngo: ("donations", "profiles"),
    Role.volunteer: ("donations", "profiles"),
    Role.admin: ("donations", "profiles", "contact_messages"),
}


class DashboardLists(BaseModel):
    role: Role
    lists: Dict[str, List[DonationRead]] = {}
    stats: Dict[str, int] = {}
    users: List[UserRow] = []
    messages: List[ContactMessageRead] = []
    is_active: bool = True


def _count(donations: List[DonationRead], *statuses: DonationStatus) -> int:
    return sum(1 for d in donations if d.status in statuses)


def load_dashboard(session: Session, context: SessionContext) -> DashboardLists:
    """Run the full query set for the context's role."""
    role = context.role
    user_id = context.user_id

    if role is Role.donor:
        history = lifecycle.donor_history(session, user_id)
        return DashboardLists(
            role=role,
            lists={"history": history},
            stats={
                "total": len(history),
                "active": _count(
                    history,
                    DonationStatus.pending,
                    DonationStatus.accepted,
                    DonationStatus.picked_up,
                ),
                "delivered": _count(history, DonationStatus.delivered),
                "servings": sum(d.quantity for d in history if d.status is DonationStatus.delivered),
            },
        )

    if role is Role.ngo:
        available = lifecycle.ngo_available(session)
        accepted = lifecycle.ngo_accepted(session, user_id)
        return DashboardLists(
            role=role,
            lists={"available": available, "accepted": accepted},
            stats={
                "available": len(available),
                "accepted": _count(accepted, DonationStatus.accepted),
                "in_transit": _count(accepted, DonationStatus.picked_up),
                "received": _count(accepted, DonationStatus.delivered),
            },
        )

    if role is Role.volunteer:
        # Re-read the flag: the volunteer may have toggled it since the stream opened
        profile = moderation.get_profile(session, user_id)
        is_active = bool(profile and profile.is_active)
        available = lifecycle.volunteer_available(session) if is_active else []
        claimed = lifecycle.volunteer_claimed(session, user_id)
        active = [d for d in claimed if d.status is DonationStatus.picked_up]
        delivered = [d for d in claimed if d.status is DonationStatus.delivered]
        return DashboardLists(
            role=role,
            lists={"available": available, "active": active, "delivered": delivered},
            stats={
                "available": len(available),
                "active": len(active),
                "delivered": len(delivered),
            },
            is_active=is_active,
        )

    if role is Role.admin:
        return DashboardLists(
            role=role,
            lists={"donations": lifecycle.all_donations(session)},
            stats={
                **lifecycle.donation_counts(session),
                **{f"users_{k}": v for k, v in moderation.user_counts(session).items()},
            },
            users=moderation.list_users(session),
            messages=moderation.list_messages(session),
        )

    raise ValueError(f"No dashboard for role {role!r}")


class DashboardSynchronizer:
    def __init__(self, context: SessionContext, feed: ChangeFeed, engine: Engine):
        if context.role is None:
            raise ValueError("A dashboard needs a resolved role")
        self.context = context
        self.feed = feed
        self.engine = engine

    def refetch(self) -> Optional[DashboardLists]:
        """Fresh lists, or None once the gate would no longer let this user in.

        The session is re-resolved on every call, so a block or role change
        made after the stream opened ends it instead of leaking new lists.
        """
        with Session(self.engine) as session:
            current = load_context(session, self.context.user_id)
            if decide(current, self.context.role) is not GateDecision.render:
                return None
            return load_dashboard(session, current)

    async def snapshots(self) -> AsyncIterator[DashboardLists]:
        """Yield the current lists, then fresh lists after every change.

        Subscribing happens before the first fetch so no write can slip in
        between the two unnoticed. Iteration ends as soon as a refetch finds
        the user blocked, signed out of their role, or gone.
        """
        subscription = self.feed.subscribe(*WATCHED_TABLES[self.context.role])
        logger.info(
            "live dashboard opened for %s %s", self.context.role.value, self.context.user_id
        )
        try:
            lists = await run_in_threadpool(self.refetch)
            if lists is not None:
                yield lists
                async for event in subscription:
                    skipped = subscription.drain()
                    logger.debug("refetching after %s (+%d queued)", event, skipped)
                    lists = await run_in_threadpool(self.refetch)
                    if lists is None:
                        break
                    yield lists
            if lists is None:
                logger.info("access revoked for user %s", self.context.user_id)
        finally:
            subscription.close()
            logger.info(
                "live dashboard closed for %s %s", self.context.role.value, self.context.user_id
            )
