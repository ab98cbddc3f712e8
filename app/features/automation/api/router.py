"""
Automation routes.

Job triggers (called by cron/scheduler webhooks), ledger inspection, rule
configuration and the synchronous lead acknowledgement. Every route
requires the service role.

Job triggers answer with the job result as-is: 200 for success or skip,
500 with ``{ok: false, error}`` when the run failed.
"""

from collections.abc import Callable

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from app.auth.verify import require_service_role
from app.features.automation.context import AutomationContext, build_automation_context
from app.features.automation.domain import AUTOMATION_JOBS, normalize_rule_config
from app.features.automation.errors import AutomationConfigError, LeadNotFoundError
from app.features.automation.jobs.base import AutomationJob
from app.features.automation.jobs.clinic_reminder_job import ClinicReminderJob
from app.features.automation.jobs.pg_monthly_dues_job import PgMonthlyDuesJob
from app.features.automation.services.lead_dispatcher import LeadInstantMessageDispatcher
from app.infrastructure.observability.logging import get_logger, log_job_result

from .schemas import AutomationRuleUpdate, LeadInstantMessageRequest

logger = get_logger(__name__)

router = APIRouter(
    prefix="/automations",
    tags=["automations"],
    dependencies=[Depends(require_service_role)],
)

ContextProvider = Callable[[], AutomationContext]


def get_context_provider() -> ContextProvider:
    """Context factory; overridden in tests with in-memory stores."""
    return build_automation_context


def _error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


def _require_known_job(job: str) -> None:
    if job not in AUTOMATION_JOBS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job '{job}'")


async def _run_job(
    job_class: type[AutomationJob], provider: ContextProvider, force: bool, dry: bool
):
    try:
        ctx = provider()
    except AutomationConfigError as e:
        logger.error("Automation context unavailable", job=job_class.job_name, error=str(e))
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

    result = await job_class(ctx).run_once(force=force, dry=dry)
    log_job_result(job_class.job_name, result)

    if not result.get("ok"):
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=result)
    return result


@router.post("/jobs/pg-monthly-dues")
async def run_pg_monthly_dues(
    force: bool = Query(False, description="Re-run a finished period"),
    dry: bool = Query(False, description="Compute counts and a preview without writing"),
    provider: ContextProvider = Depends(get_context_provider),
):
    return await _run_job(PgMonthlyDuesJob, provider, force, dry)


@router.post("/jobs/clinic-appointment-reminders")
async def run_clinic_appointment_reminders(
    force: bool = Query(False, description="Re-run a finished hour bucket"),
    dry: bool = Query(False, description="Compute counts and a preview without writing"),
    provider: ContextProvider = Depends(get_context_provider),
):
    return await _run_job(ClinicReminderJob, provider, force, dry)


@router.get("/jobs/{job}/runs")
async def list_job_runs(
    job: str,
    limit: int = Query(20, ge=1, le=100),
    provider: ContextProvider = Depends(get_context_provider),
):
    _require_known_job(job)
    try:
        ctx = provider()
    except AutomationConfigError as e:
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

    runs = await ctx.runs.list_recent(job, limit)
    return {"job": job, "runs": [run.to_dict() for run in runs]}


@router.put("/tenants/{tenant_id}/rules/{job}")
async def upsert_automation_rule(
    tenant_id: str,
    job: str,
    body: AutomationRuleUpdate,
    provider: ContextProvider = Depends(get_context_provider),
):
    _require_known_job(job)
    try:
        ctx = provider()
    except AutomationConfigError as e:
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

    config = normalize_rule_config(job, body.config)
    rule = await ctx.rules.upsert(tenant_id, job, body.is_enabled, config)
    return {"ok": True, "rule": rule.to_dict()}


@router.post("/leads/instant-message")
async def send_lead_instant_message(
    body: LeadInstantMessageRequest | None = None,
    provider: ContextProvider = Depends(get_context_provider),
):
    body = body or LeadInstantMessageRequest()
    lead_id = (body.lead_id or "").strip()
    if not lead_id:
        return _error_response(status.HTTP_400_BAD_REQUEST, "lead_id is required")

    try:
        ctx = provider()
        result = await LeadInstantMessageDispatcher(ctx).dispatch(lead_id, force=body.force)
    except LeadNotFoundError as e:
        return _error_response(status.HTTP_404_NOT_FOUND, str(e))
    except Exception as e:
        logger.error(
            "Lead instant message failed",
            lead_id=lead_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

    return result.to_response()
