"""Selects the messages one import run has to look at."""

from __future__ import annotations

import structlog

from .mailbox import MailboxSession
from .models import MailAccount

logger = structlog.get_logger()


class IncrementalFetcher:
    """Computes the candidate UIDs of a run from the account's cursor.

    Restartability across runs comes from the persisted ``last_uid``, not
    from this sequence: a crashed run simply searches again.
    """

    async def candidates(self, session: MailboxSession, account: MailAccount) -> list[str]:
        if session.cursor_capable:
            start_uid = account.last_uid + 1
            found = await session.search_from_uid(start_uid)
            # "n:*" always includes the newest message, even below n
            uids = sorted((uid for uid in found if int(uid) >= start_uid), key=int)
            logger.info(
                "candidates_selected",
                account_id=account.id,
                start_uid=start_uid,
                found=len(found),
                selected=len(uids),
            )
            return uids

        uids = await session.search_unseen()
        logger.info("candidates_selected", account_id=account.id, selected=len(uids))
        return uids
