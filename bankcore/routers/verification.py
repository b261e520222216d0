"""
Verification router — identity-verification status and provider events.

Endpoints:
  GET  /verification         — The caller's case, status and movement limit
  POST /verification/events  — Step event from the verification provider

The events endpoint is called by the provider, not by customers. It is
authenticated with the shared secret in the `X-Verification-Secret` header.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.context import CallerContext
from bankcore.database import get_db
from bankcore.dependencies import require_member, verify_provider_secret
from bankcore.schemas.verification import (
    VerificationCaseResponse,
    VerificationEventRequest,
    VerificationStepResponse,
)
from bankcore.services import verification_service

router = APIRouter()


async def _case_response(db: AsyncSession, case) -> VerificationCaseResponse:
    return VerificationCaseResponse(
        user_id=case.user_id,
        status=verification_service.overall_status(case.steps),
        movement_limit_cents=await verification_service.movement_limit_for(db, case.user_id),
        steps=[VerificationStepResponse.model_validate(step) for step in case.steps],
    )


@router.get(
    "",
    response_model=VerificationCaseResponse,
    summary="Get your verification status",
)
async def get_verification(
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Until every required step is completed, each movement is capped at
    UNVERIFIED_MOVEMENT_LIMIT_CENTS.
    """
    case = await verification_service.get_or_create_case(db, ctx.user_id)
    return await _case_response(db, case)


@router.post(
    "/events",
    response_model=VerificationCaseResponse,
    summary="Report a verification step event",
    dependencies=[Depends(verify_provider_secret)],
)
async def record_event(
    request: VerificationEventRequest,
    db: AsyncSession = Depends(get_db),
):
    case = await verification_service.record_step_event(
        db, request.user_id, request.step_id, request.status
    )
    return await _case_response(db, case)
