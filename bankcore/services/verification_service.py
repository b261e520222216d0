"""
Identity-verification service.

The external verification provider reports step events; this module stores
them on the user's VerificationCase and derives the overall status. The
banking core only *reads* that status, to pick the per-movement limit the
Transfer Engine enforces.

Overall status:
  - completed:   every required step is completed
  - in_progress: some step has left "pending" but the case is not complete
  - not_started: every step is still pending
"""

import logging
import uuid
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.config import settings
from bankcore.exceptions import NotFoundError, ValidationError
from bankcore.models.user import User
from bankcore.models.verification import (
    StepStatus,
    VerificationCase,
    VerificationStatus,
    VerificationStep,
)

logger = logging.getLogger(__name__)


# (step_id, title, required) in display order
DEFAULT_STEPS: tuple[tuple[str, str, bool], ...] = (
    ("identity", "Government-issued ID", True),
    ("address", "Proof of address", True),
    ("phone", "Phone number", True),
    ("income", "Source of income", False),
)


def overall_status(steps: Iterable[VerificationStep]) -> VerificationStatus:
    steps = list(steps)
    required = [step for step in steps if step.required]
    if required and all(step.status == StepStatus.COMPLETED for step in required):
        return VerificationStatus.COMPLETED
    if any(step.status != StepStatus.PENDING for step in steps):
        return VerificationStatus.IN_PROGRESS
    return VerificationStatus.NOT_STARTED


async def _load_case(db: AsyncSession, user_id: uuid.UUID) -> VerificationCase | None:
    result = await db.execute(
        select(VerificationCase).where(VerificationCase.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_case(db: AsyncSession, user_id: uuid.UUID) -> VerificationCase:
    """
    Return the user's verification case, creating it with the default steps
    if it does not exist yet. Signup creates the case, so this normally
    only reads.
    """
    case = await _load_case(db, user_id)
    if case is not None:
        return case

    case = VerificationCase(
        user_id=user_id,
        steps=[
            VerificationStep(step_id=step_id, title=title, required=required, position=position)
            for position, (step_id, title, required) in enumerate(DEFAULT_STEPS)
        ],
    )
    db.add(case)
    await db.flush()
    return case


async def record_step_event(
    db: AsyncSession,
    user_id: uuid.UUID,
    step_id: str,
    status: StepStatus,
) -> VerificationCase:
    """
    Apply a provider event to one step of the user's case.

    Raises:
        NotFoundError: Unknown user.
        ValidationError("unknown_step"): The case has no such step.
    """
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")

    case = await get_or_create_case(db, user_id)
    step = next((s for s in case.steps if s.step_id == step_id), None)
    if step is None:
        raise ValidationError("unknown_step", f"Unknown verification step {step_id!r}")

    before = overall_status(case.steps)
    step.status = status
    await db.flush()
    after = overall_status(case.steps)

    logger.info(
        "verification.step_updated",
        extra={
            "user_id": str(user_id),
            "step_id": step_id,
            "step_status": status.value,
            "overall_status": after.value,
        },
    )
    if after != before and after == VerificationStatus.COMPLETED:
        logger.info("verification.completed", extra={"user_id": str(user_id)})

    return case


async def get_status(db: AsyncSession, user_id: uuid.UUID) -> VerificationStatus:
    case = await _load_case(db, user_id)
    if case is None:
        return VerificationStatus.NOT_STARTED
    return overall_status(case.steps)


async def movement_limit_for(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Per-movement ceiling in minor units for this user's verification status."""
    if await get_status(db, user_id) == VerificationStatus.COMPLETED:
        return settings.VERIFIED_MOVEMENT_LIMIT_CENTS
    return settings.UNVERIFIED_MOVEMENT_LIMIT_CENTS
