"""Tests for the onboarding and approval workflow service."""

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.integrations.btw import BTWClient
from src.integrations.kvk import KvKClient
from src.models import (
    ApprovalStatus,
    Client,
    ClientApproval,
    EmailLog,
    EmailType,
    OnboardingStatus,
    OnboardingStep,
    User,
    ValidationStatus,
)
from src.models.base import utcnow
from src.orchestration import TransitionNotAllowed
from src.services.audit import AuditContext, verify_chain
from src.services.workflow import (
    ClientNotFoundError,
    WorkflowService,
    get_admin_dashboard_stats,
    get_workflow_state,
)
from tests.helpers import VALID_KVK, VALID_VAT, FakeRedis, RegistryStub


@pytest_asyncio.fixture
async def owner(db_session: AsyncSession) -> User:
    user = User(email="jan@bakkerij-jansen.nl", password_hash="x")
    db_session.add(user)
    await db_session.flush()
    return user


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, owner: User) -> Client:
    record = Client(
        user_id=owner.id,
        name="Anna de Vries",
        email="anna@devries-advies.nl",
        phone="+31612345678",
        company="De Vries Advies B.V.",
        kvk_number=VALID_KVK,
        vat_number=VALID_VAT,
        address="Dorpsstraat 1",
        postal_code="1234 AB",
        city="Utrecht",
        iban="NL91 ABNA 0417 1643 00",
        bank_name="ABN AMRO",
    )
    db_session.add(record)
    await db_session.flush()
    return record


@pytest.fixture
def service(db_session: AsyncSession, owner: User) -> WorkflowService:
    return WorkflowService(db_session, AuditContext(user_id=owner.id))


async def _emails(db: AsyncSession, email_type: EmailType) -> list[EmailLog]:
    result = await db.execute(select(EmailLog).where(EmailLog.email_type == email_type))
    return list(result.scalars().all())


async def _to_review(service: WorkflowService, client: Client) -> None:
    await service.process_onboarding_step(client, OnboardingStep.VERIFICATION)
    assert await service.confirm_email(client.email_confirmation_token) is client
    await service.process_onboarding_step(client, OnboardingStep.COMPLETED)


@pytest.mark.asyncio
async def test_state_of_new_client(client: Client) -> None:
    now = utcnow()
    state = get_workflow_state(client, now=now)

    assert state.onboarding_status == OnboardingStatus.PENDING_VALIDATION
    assert state.completed_steps == [
        OnboardingStep.BASIC_INFO,
        OnboardingStep.BUSINESS_DETAILS,
        OnboardingStep.BANKING_INFO,
    ]
    assert state.blockers == [
        "KVK validation required",
        "BTW validation required",
        "IBAN validation required",
        "Email confirmation required",
    ]
    assert state.next_action == "Complete current onboarding step"
    assert state.estimated_completion == now + timedelta(hours=48 + 4 * 24)
    assert state.to_dict()["current_step"] == "BASIC_INFO"


@pytest.mark.asyncio
async def test_business_details_step_records_validation(
    service: WorkflowService, client: Client
) -> None:
    state = await service.process_onboarding_step(
        client,
        OnboardingStep.BUSINESS_DETAILS,
        {"kvk": {"is_valid": True}, "btw": {"is_valid": False}},
    )

    assert client.kvk_validated
    assert not client.btw_validated
    assert client.onboarding_step == OnboardingStep.BUSINESS_DETAILS
    assert state.validation_results["kvk"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("key", "source"),
    [("btw", "FALLBACK"), ("kvk", "fallback")],
)
async def test_business_details_step_ignores_fallback_results(
    service: WorkflowService, client: Client, key: str, source: str
) -> None:
    await service.process_onboarding_step(
        client,
        OnboardingStep.BUSINESS_DETAILS,
        {key: {"is_valid": True, "source": source}},
    )

    assert not client.btw_validated
    assert not client.kvk_validated
    assert client.btw_validated_at is None


@pytest.mark.asyncio
async def test_business_details_step_accepts_registry_results(
    service: WorkflowService, client: Client
) -> None:
    await service.process_onboarding_step(
        client,
        OnboardingStep.BUSINESS_DETAILS,
        {"kvk": {"is_valid": True, "source": "openkvk"}, "btw": {"is_valid": True, "source": "CACHE"}},
    )

    assert client.kvk_validated
    assert client.btw_validated


@pytest.mark.asyncio
async def test_verification_step_sends_confirmation(
    service: WorkflowService, client: Client, db_session: AsyncSession
) -> None:
    state = await service.process_onboarding_step(client, OnboardingStep.VERIFICATION)

    assert client.onboarding_status == OnboardingStatus.EMAIL_SENT
    assert len(client.email_confirmation_token) == 64
    assert client.email_confirmation_expires_at > utcnow()
    assert state.next_action == "Await email confirmation"

    (email,) = await _emails(db_session, EmailType.CLIENT_CONFIRMATION)
    assert email.recipient == "anna@devries-advies.nl"
    assert email.confirmation_token == client.email_confirmation_token
    assert client.email_confirmation_token in email.body


@pytest.mark.asyncio
async def test_confirm_email_rejects_bad_tokens(
    service: WorkflowService, client: Client
) -> None:
    await service.send_confirmation_email(client)
    token = client.email_confirmation_token

    assert await service.confirm_email("") is None
    assert await service.confirm_email("not-a-token") is None

    client.email_confirmation_expires_at = utcnow() - timedelta(minutes=1)
    assert await service.confirm_email(token) is None
    assert client.onboarding_status == OnboardingStatus.EMAIL_SENT


@pytest.mark.asyncio
async def test_confirm_email_requires_email_sent(
    service: WorkflowService, client: Client
) -> None:
    client.email_confirmation_token = "stale-token"
    await service.db.flush()

    assert await service.confirm_email("stale-token") is None
    assert client.onboarding_status == OnboardingStatus.PENDING_VALIDATION


@pytest.mark.asyncio
async def test_completion_moves_client_to_review(
    service: WorkflowService, client: Client, db_session: AsyncSession
) -> None:
    await _to_review(service, client)

    assert client.onboarding_status == OnboardingStatus.ADMIN_REVIEW
    assert client.approval_status == ApprovalStatus.PENDING_APPROVAL
    assert client.email_confirmed
    assert client.email_confirmation_token is None

    approvals = (await db_session.execute(select(ClientApproval))).scalars().all()
    assert len(approvals) == 1
    assert approvals[0].validation_checks["email_confirmed"] is True
    assert len(await _emails(db_session, EmailType.ADMIN_NOTIFICATION)) == 1


@pytest.mark.asyncio
async def test_completion_before_confirmation_is_refused(
    service: WorkflowService, client: Client
) -> None:
    with pytest.raises(TransitionNotAllowed):
        await service.process_onboarding_step(client, OnboardingStep.COMPLETED)


@pytest.mark.asyncio
async def test_approve_client(
    service: WorkflowService, client: Client, db_session: AsyncSession
) -> None:
    await _to_review(service, client)

    await service.approve_client(client, notes="Gegevens gecontroleerd")

    assert client.onboarding_status == OnboardingStatus.APPROVED
    assert client.can_create_invoices
    approval = (await db_session.execute(select(ClientApproval))).scalar_one()
    assert approval.status == ApprovalStatus.APPROVED
    assert approval.approval_notes == "Gegevens gecontroleerd"
    assert len(await _emails(db_session, EmailType.APPROVAL_NOTIFICATION)) == 1


@pytest.mark.asyncio
async def test_reject_then_resubmit(
    service: WorkflowService, client: Client, db_session: AsyncSession
) -> None:
    await _to_review(service, client)

    with pytest.raises(ValueError, match="Rejection reason is required"):
        await service.reject_client(client, "  ")

    await service.reject_client(client, " Bankgegevens onjuist ")
    assert client.onboarding_status == OnboardingStatus.REJECTED
    assert client.rejection_reason == "Bankgegevens onjuist"
    assert len(await _emails(db_session, EmailType.REJECTION_NOTIFICATION)) == 1

    state = await service.resubmit(client)
    assert state.onboarding_status == OnboardingStatus.PENDING_VALIDATION
    assert client.onboarding_step == OnboardingStep.BASIC_INFO


@pytest.mark.asyncio
async def test_bulk_decisions_report_per_client(
    service: WorkflowService, client: Client, owner: User, db_session: AsyncSession
) -> None:
    await _to_review(service, client)
    waiting = Client(user_id=owner.id, name="Kees Smit", email="kees@smit-bouw.nl")
    db_session.add(waiting)
    await db_session.flush()

    results = await service.bulk_decide([client.id, waiting.id, 9999], "approve")

    assert [(r.client_id, r.status) for r in results] == [
        (client.id, "approved"),
        (waiting.id, "error"),
        (9999, "error"),
    ]
    assert results[2].error == "Client not found"
    assert waiting.onboarding_status == OnboardingStatus.PENDING_VALIDATION

    rejected = await service.bulk_decide([waiting.id], "reject")
    assert rejected[0].error == "Rejection reason required"


@pytest.mark.asyncio
async def test_get_client_unknown(service: WorkflowService) -> None:
    with pytest.raises(ClientNotFoundError):
        await service.get_client(404)


@pytest.mark.asyncio
async def test_validate_client_against_registries(
    service: WorkflowService,
    client: Client,
    fake_redis: FakeRedis,
    http_client: httpx.AsyncClient,
) -> None:
    validation = await service.validate_client(
        client, KvKClient(fake_redis, http_client), BTWClient(fake_redis, http_client)
    )

    assert validation.status == ValidationStatus.PASSED
    assert validation.overall_score == 1.0
    assert validation.kvk_check["passed"]
    assert validation.btw_check["source"] == "API"
    assert client.kvk_validated
    assert client.btw_validated
    assert client.iban_validated


@pytest.mark.asyncio
async def test_btw_fallback_is_not_a_confirmation(
    service: WorkflowService,
    client: Client,
    fake_redis: FakeRedis,
    http_client: httpx.AsyncClient,
    registry: RegistryStub,
) -> None:
    registry.btw_status = 503
    client.kvk_number = "87654321"

    validation = await service.validate_client(
        client, KvKClient(fake_redis, http_client), BTWClient(fake_redis, http_client)
    )

    assert validation.status == ValidationStatus.FAILED
    assert not client.btw_validated
    assert not client.kvk_validated
    # registry checks fail, the four local checks pass
    assert validation.overall_score == round(4 / 6, 4)
    assert "KvK: Bedrijf niet gevonden in KvK register" in validation.findings
    assert any("alleen het formaat" in finding for finding in validation.findings)


@pytest.mark.asyncio
async def test_workflow_is_audited_and_counted(
    service: WorkflowService, client: Client, db_session: AsyncSession
) -> None:
    await _to_review(service, client)
    await service.approve_client(client)
    await db_session.commit()

    assert (await verify_chain(db_session)).valid

    stats = await get_admin_dashboard_stats(db_session)
    assert stats["pending_approvals"] == 0
    assert stats["new_clients_this_week"] == 1
    assert stats["completed_onboardings_this_week"] == 1
    assert stats["clients_by_status"] == {"APPROVED": 1}
    assert stats["emails_sent_today"] == 3
