"""Content-source fetchers for copilot context.

Each fetcher takes the container ids from an ``AccessibleScope`` and re-checks
the grant and visibility predicates in SQL, so a fetch never returns an item
whose own visibility flag fails even inside an accessible project.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from copilot_gateway.models.context import AccessibleScope, ContextDocument, ContextKind

# Base weights per source
CONTAINER_WEIGHT = 0.9
TASK_WEIGHT = 0.8
MESSAGE_WEIGHT = 0.7
FILE_WEIGHT = 0.6

# Most-recent caps per source
TASK_LIMIT = 50
MESSAGE_LIMIT = 30
FILE_LIMIT = 20

MAX_DOCUMENT_CHARS = 1500


def _as_datetime(value) -> Optional[datetime]:
    """Normalise a driver timestamp (datetime or ISO string) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clip(value: str, limit: int = MAX_DOCUMENT_CHARS) -> str:
    if len(value) <= limit:
        return value
    return value[:limit].rstrip() + "..."


def _join_lines(*parts) -> str:
    return _clip("\n".join(str(p).strip() for p in parts if p and str(p).strip()))


def fetch_container_documents(session: Session, subject_id: str, scope: AccessibleScope) -> List[ContextDocument]:
    """Project names and descriptions for every container in scope."""
    container_ids = sorted(scope.container_ids)
    if not container_ids:
        return []

    rows = session.execute(
        text("""
            SELECT p.id, p.name, p.description, p.date_updated, p.date_created
            FROM projects p
            JOIN project_contacts pc ON pc.project_id = p.id
            WHERE p.id IN :container_ids
              AND pc.contact_id = :subject_id
              AND p.is_client_visible = TRUE
        """).bindparams(bindparam("container_ids", expanding=True)),
        {"container_ids": container_ids, "subject_id": subject_id}
    ).fetchall()

    return [
        ContextDocument(
            kind=ContextKind.CONTAINER,
            source=f"Container: {row.name}",
            text=_join_lines(row.name, row.description),
            base_weight=CONTAINER_WEIGHT,
            container_id=str(row.id),
            item_id=str(row.id),
            created_at=_as_datetime(row.date_updated or row.date_created),
        )
        for row in rows
    ]


def fetch_task_documents(session: Session, subject_id: str, scope: AccessibleScope) -> List[ContextDocument]:
    """Client-visible tasks in containers where the grant allows viewing tasks."""
    container_ids = scope.ids_where("can_view_tasks")
    if not container_ids:
        return []

    rows = session.execute(
        text("""
            SELECT t.id, t.project_id, t.title, t.description, t.status,
                   t.priority, t.due_date, t.date_created
            FROM todos t
            JOIN projects p ON p.id = t.project_id
            JOIN project_contacts pc ON pc.project_id = t.project_id
            WHERE t.project_id IN :container_ids
              AND pc.contact_id = :subject_id
              AND pc.can_view_tasks = TRUE
              AND p.is_client_visible = TRUE
              AND t.is_visible_to_client = TRUE
            ORDER BY t.date_created DESC
            LIMIT :limit
        """).bindparams(bindparam("container_ids", expanding=True)),
        {"container_ids": container_ids, "subject_id": subject_id, "limit": TASK_LIMIT}
    ).fetchall()

    documents = []
    for row in rows:
        details = []
        if row.status:
            details.append(f"Status: {row.status}")
        if row.priority:
            details.append(f"Priority: {row.priority}")
        if row.due_date:
            details.append(f"Due: {row.due_date}")
        documents.append(ContextDocument(
            kind=ContextKind.TASK,
            source=f"Task: {row.title}",
            text=_join_lines(row.title, row.description, ", ".join(details)),
            base_weight=TASK_WEIGHT,
            container_id=str(row.project_id),
            item_id=str(row.id),
            created_at=_as_datetime(row.date_created),
        ))
    return documents


def fetch_message_documents(session: Session, subject_id: str, scope: AccessibleScope) -> List[ContextDocument]:
    """Non-internal messages from project conversations the subject participates in."""
    container_ids = sorted(scope.container_ids)
    if not container_ids:
        return []

    rows = session.execute(
        text("""
            SELECT m.id, m.text, m.sender_name, m.date_created,
                   c.item AS project_id, c.title AS conversation_title
            FROM messages m
            JOIN conversations c ON c.id = m.conversation_id
            JOIN conversation_participants cp
              ON cp.conversation_id = c.id AND cp.contact_id = :subject_id
            JOIN projects p ON CAST(p.id AS VARCHAR) = c.item
            WHERE c.collection = 'projects'
              AND c.item IN :container_ids
              AND p.is_client_visible = TRUE
              AND m.is_internal_note = FALSE
            ORDER BY m.date_created DESC
            LIMIT :limit
        """).bindparams(bindparam("container_ids", expanding=True)),
        {"container_ids": container_ids, "subject_id": subject_id, "limit": MESSAGE_LIMIT}
    ).fetchall()

    documents = []
    for row in rows:
        sender = row.sender_name or "Team member"
        title = row.conversation_title or "Conversation"
        documents.append(ContextDocument(
            kind=ContextKind.MESSAGE,
            source=f"Message: {sender} in {title}",
            text=_join_lines(f"{sender}: {row.text or ''}"),
            base_weight=MESSAGE_WEIGHT,
            container_id=str(row.project_id),
            item_id=str(row.id),
            created_at=_as_datetime(row.date_created),
        ))
    return documents


def fetch_file_documents(session: Session, subject_id: str, scope: AccessibleScope) -> List[ContextDocument]:
    """Metadata of shared files in containers where the grant allows viewing files."""
    container_ids = scope.ids_where("can_view_files")
    if not container_ids:
        return []

    rows = session.execute(
        text("""
            SELECT pf.id, pf.project_id, f.filename_download, f.title,
                   f.description, f.type, f.filesize, f.uploaded_on
            FROM project_files pf
            JOIN directus_files f ON f.id = pf.file_id
            JOIN projects p ON p.id = pf.project_id
            JOIN project_contacts pc ON pc.project_id = pf.project_id
            WHERE pf.project_id IN :container_ids
              AND pc.contact_id = :subject_id
              AND pc.can_view_files = TRUE
              AND p.is_client_visible = TRUE
              AND pf.is_client_visible = TRUE
            ORDER BY f.uploaded_on DESC
            LIMIT :limit
        """).bindparams(bindparam("container_ids", expanding=True)),
        {"container_ids": container_ids, "subject_id": subject_id, "limit": FILE_LIMIT}
    ).fetchall()

    documents = []
    for row in rows:
        name = row.title or row.filename_download or "Untitled file"
        meta = ", ".join(str(v) for v in (row.type, f"{row.filesize} bytes" if row.filesize else None) if v)
        documents.append(ContextDocument(
            kind=ContextKind.FILE,
            source=f"File: {name}",
            text=_join_lines(name, row.filename_download if row.filename_download != name else None,
                             row.description, meta),
            base_weight=FILE_WEIGHT,
            container_id=str(row.project_id),
            item_id=str(row.id),
            created_at=_as_datetime(row.uploaded_on),
        ))
    return documents


ALL_FETCHERS = (
    (ContextKind.CONTAINER, fetch_container_documents),
    (ContextKind.TASK, fetch_task_documents),
    (ContextKind.MESSAGE, fetch_message_documents),
    (ContextKind.FILE, fetch_file_documents),
)
