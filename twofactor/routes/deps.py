"""FastAPI dependencies that assemble the second-factor services per request."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.database import get_db
from twofactor.services.activity_auditor import ActivityAuditor
from twofactor.services.enrollment import EnrollmentOrchestrator
from twofactor.services.identity import IdentityProvider, get_identity_provider
from twofactor.services.login_challenge import LoginChallengeOrchestrator
from twofactor.services.management import TwoFactorManagementService
from twofactor.services.notifier import Notifier, get_notifier
from twofactor.utils.clock import Clock, system_clock


def get_clock() -> Clock:
    return system_clock


def get_auditor(clock: Clock = Depends(get_clock)) -> ActivityAuditor:
    return ActivityAuditor(clock=clock)


def get_enrollment_orchestrator(
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: Notifier = Depends(get_notifier),
    auditor: ActivityAuditor = Depends(get_auditor),
    clock: Clock = Depends(get_clock),
) -> EnrollmentOrchestrator:
    return EnrollmentOrchestrator(db, identity, notifier, auditor=auditor, clock=clock)


def get_challenge_orchestrator(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    auditor: ActivityAuditor = Depends(get_auditor),
    clock: Clock = Depends(get_clock),
) -> LoginChallengeOrchestrator:
    return LoginChallengeOrchestrator(db, notifier, auditor=auditor, clock=clock)


def get_management_service(
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: Notifier = Depends(get_notifier),
    auditor: ActivityAuditor = Depends(get_auditor),
    clock: Clock = Depends(get_clock),
) -> TwoFactorManagementService:
    return TwoFactorManagementService(db, identity, notifier, auditor=auditor, clock=clock)
