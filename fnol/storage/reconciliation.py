"""
Reconciliation sweep for claims stuck in ``submitted``.

A follow-up submission can upload its photos and store its answers and then
fail at finalization. The claim stays ``submitted`` with the new files
attached. Finalization is idempotent on the claim id, so the sweep simply
re-runs it for claims whose questions are all answered and reports the rest.
"""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..models.claim import FileStage, utcnow
from ..utils.errors import ClaimsProcessingError
from .record_store import ClaimRecordStore

if TYPE_CHECKING:
    from ..intake import IntakeService

logger = logging.getLogger(__name__)


class ReconciliationSweep:
    """Re-finalizes stale submitted claims and reports what it could not."""

    def __init__(self, service: "IntakeService", store: ClaimRecordStore, stale_after_minutes: int = 60):
        self.service = service
        self.store = store
        self.stale_after = timedelta(minutes=stale_after_minutes)

    async def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Sweep once.

        Per-claim failures are recorded in the report and do not stop the
        sweep.

        Returns:
            Dict with ``refinalized``, ``awaiting_answers`` and ``failed`` lists
        """
        cutoff = (now or utcnow()) - self.stale_after
        report: Dict[str, Any] = {
            "checked": 0,
            "refinalized": [],
            "awaiting_answers": [],
            "failed": [],
        }

        for claim in self.store.list_submitted_before(cutoff):
            report["checked"] += 1
            questions = self.store.list_questions(claim.id)
            follow_up_files = sum(
                1 for f in self.store.list_files(claim.id) if f.stage is FileStage.FOLLOW_UP_PHOTO
            )
            unanswered = [q.id for q in questions if not q.is_answered]

            if unanswered:
                report["awaiting_answers"].append({
                    "claim_id": claim.id,
                    "claim_number": claim.claim_number,
                    "unanswered": len(unanswered),
                    "follow_up_files": follow_up_files,
                })
                continue

            try:
                await self.service.finalize_claim(claim.id)
            except ClaimsProcessingError as e:
                logger.warning(f"Reconciliation could not finalize {claim.claim_number}: {e}")
                report["failed"].append({
                    "claim_id": claim.id,
                    "claim_number": claim.claim_number,
                    "follow_up_files": follow_up_files,
                    "error": e.to_dict(),
                })
                continue

            logger.info(f"Reconciliation finalized {claim.claim_number} ({follow_up_files} follow-up files)")
            report["refinalized"].append({
                "claim_id": claim.id,
                "claim_number": claim.claim_number,
                "follow_up_files": follow_up_files,
            })

        logger.info(
            f"Reconciliation checked {report['checked']} claims: "
            f"{len(report['refinalized'])} finalized, {len(report['failed'])} failed"
        )
        return report
