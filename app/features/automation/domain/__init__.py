from .models import (
    AUTOMATION_JOBS,
    CLINIC_APPT_REMINDERS_JOB,
    PG_MONTHLY_DUES_JOB,
    Appointment,
    AutomationRule,
    Contact,
    DueCreationResult,
    DueDraft,
    JobRun,
    Lead,
    MessageTemplate,
    Occupancy,
    OutboxDraft,
    OutboxMessage,
    Tenant,
    utc_now,
)
from .rule_config import normalize_rule_config, read_int_config, resolve_job_config

__all__ = [
    "AUTOMATION_JOBS",
    "CLINIC_APPT_REMINDERS_JOB",
    "PG_MONTHLY_DUES_JOB",
    "Appointment",
    "AutomationRule",
    "Contact",
    "DueCreationResult",
    "DueDraft",
    "JobRun",
    "Lead",
    "MessageTemplate",
    "Occupancy",
    "OutboxDraft",
    "OutboxMessage",
    "Tenant",
    "normalize_rule_config",
    "read_int_config",
    "resolve_job_config",
    "utc_now",
]
