"""Accessible-scope resolution for portal subjects.

Every content fetch is keyed by container ids returned from ``resolve``.
"""

import logging
from typing import Optional

from sqlalchemy import text

from copilot_gateway.infra.database import SessionScope, get_db_session
from copilot_gateway.models.context import AccessGrant, AccessibleScope
from copilot_gateway.models.principal import PortalPrincipal

logger = logging.getLogger("copilot_gateway.services.scope_resolver")


class ScopeResolver:
    """Resolves which client-visible projects a subject may read."""

    def __init__(self, session_scope: SessionScope = get_db_session):
        self.session_scope = session_scope

    def has_portal_access(self, principal: PortalPrincipal) -> bool:
        """True when the subject exists as a contact of the credential's tenant."""
        with self.session_scope() as session:
            row = session.execute(
                text("""
                    SELECT id
                    FROM contacts
                    WHERE id = :subject_id AND organization_id = :tenant_id
                """),
                {"subject_id": principal.subject_id, "tenant_id": principal.tenant_id}
            ).fetchone()
        return row is not None

    def resolve(self, subject_id: str, container_id: Optional[str] = None) -> AccessibleScope:
        """
        Resolve the accessible scope for a subject.

        Args:
            subject_id: Contact id from the verified principal
            container_id: Optional single project to narrow to

        Returns:
            AccessibleScope; empty when ``container_id`` is unknown or not
            granted, so callers cannot tell the two apart.
        """
        query = """
            SELECT pc.project_id, pc.role,
                   pc.can_view_tasks, pc.can_view_files, pc.can_send_messages
            FROM project_contacts pc
            JOIN projects p ON p.id = pc.project_id
            WHERE pc.contact_id = :subject_id
              AND p.is_client_visible = TRUE
        """
        params = {"subject_id": subject_id}
        if container_id is not None:
            query += " AND pc.project_id = :container_id"
            params["container_id"] = container_id

        with self.session_scope() as session:
            rows = session.execute(text(query), params).fetchall()

        grants = {}
        for row in rows:
            project_id = str(row.project_id)
            grants[project_id] = AccessGrant(
                container_id=project_id,
                role=row.role or "viewer",
                can_view_tasks=bool(row.can_view_tasks),
                can_view_files=bool(row.can_view_files),
                can_send_messages=bool(row.can_send_messages),
            )

        logger.debug(
            "Resolved accessible scope",
            extra={"subject_id": subject_id, "narrowed": container_id is not None, "containers": len(grants)},
        )
        return AccessibleScope(subject_id=subject_id, grants=grants)
