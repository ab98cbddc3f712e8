"""
Postgres repository for clinic appointments.
"""

from datetime import datetime

from app.db.helpers import fetch_all
from app.features.automation.domain import Appointment
from app.features.automation.repository.contacts import CONTACT_JOIN_COLUMNS, contact_from_row

REMINDABLE_STATUSES = ("scheduled", "confirmed")


class ClinicRepository:
    async def list_upcoming_appointments(
        self, tenant_id: str, window_start: datetime, window_end: datetime
    ) -> list[Appointment]:
        """Scheduled/confirmed appointments in [window_start, window_end], earliest first."""
        query = f"""
            SELECT
                a.id,
                a.tenant_id,
                a.contact_id,
                a.scheduled_at,
                a.status,
                {CONTACT_JOIN_COLUMNS}
            FROM clinic_appointments a
            LEFT JOIN contacts c ON c.id = a.contact_id
            WHERE a.tenant_id = %s
              AND a.status = ANY(%s)
              AND a.deleted_at IS NULL
              AND a.scheduled_at >= %s
              AND a.scheduled_at <= %s
            ORDER BY a.scheduled_at ASC
        """
        rows = await fetch_all(
            query, (tenant_id, list(REMINDABLE_STATUSES), window_start, window_end)
        )
        return [
            Appointment(
                id=str(row["id"]),
                tenant_id=str(row["tenant_id"]),
                contact_id=str(row["contact_id"]) if row.get("contact_id") else None,
                scheduled_at=row["scheduled_at"],
                status=row["status"],
                contact=contact_from_row(row),
            )
            for row in rows
        ]


clinic_repository = ClinicRepository()
