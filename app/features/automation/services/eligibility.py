"""
Tenant eligibility for automation jobs.

An enabled rule only produces work when its tenant exists, is not deleted,
is active, and has the job's feature flag turned on.
"""

from dataclasses import dataclass

from app.features.automation.domain import AutomationRule, Tenant

TENANT_MISSING = "tenant_missing"
TENANT_DELETED = "tenant_deleted"
TENANT_INACTIVE = "tenant_inactive"
FEATURE_DISABLED = "feature_disabled"


@dataclass(slots=True)
class EligibilityResult:
    eligible: bool
    reason: str | None = None
    tenant: Tenant | None = None


class TenantEligibilityFilter:
    def __init__(self, tenants, feature_key: str):
        self.tenants = tenants
        self.feature_key = feature_key

    async def check(self, rule: AutomationRule) -> EligibilityResult:
        tenant = await self.tenants.get_tenant(rule.tenant_id)
        if tenant is None:
            return EligibilityResult(False, TENANT_MISSING)
        if tenant.is_deleted:
            return EligibilityResult(False, TENANT_DELETED, tenant)
        if not tenant.is_active:
            return EligibilityResult(False, TENANT_INACTIVE, tenant)

        if not await self.tenants.is_feature_enabled(tenant.id, self.feature_key):
            return EligibilityResult(False, FEATURE_DISABLED, tenant)

        return EligibilityResult(True, None, tenant)
