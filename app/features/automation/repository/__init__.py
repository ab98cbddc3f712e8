"""
Postgres-backed repositories for the automation engine.
"""

from .automation_rule_repository import AutomationRuleRepository, automation_rule_repository
from .clinic_repository import ClinicRepository, clinic_repository
from .job_run_repository import JobRunRepository, job_run_repository
from .lead_repository import LeadRepository, lead_repository
from .outbox_repository import OutboxRepository, outbox_repository
from .pg_repository import PgRepository, pg_repository
from .tenant_repository import TenantRepository, tenant_repository

__all__ = [
    "AutomationRuleRepository",
    "ClinicRepository",
    "JobRunRepository",
    "LeadRepository",
    "OutboxRepository",
    "PgRepository",
    "TenantRepository",
    "automation_rule_repository",
    "clinic_repository",
    "job_run_repository",
    "lead_repository",
    "outbox_repository",
    "pg_repository",
    "tenant_repository",
]
