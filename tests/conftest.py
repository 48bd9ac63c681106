"""Pytest configuration and fixtures."""

import os
import time

import jwt
import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

# Load test environment variables
load_dotenv()

# Set test environment
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("PORTAL_JWT_SECRET", "test-portal-secret-0123456789abcdef")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ["REDIS_URL"] = ""

from copilot_gateway.infra.database import make_session_scope  # noqa: E402

TEST_JWT_SECRET = os.environ["PORTAL_JWT_SECRET"]

# Fixed ids for the seeded portal data
ORG_ACME = "0a000000-0000-0000-0000-000000000001"
ORG_GLOBEX = "0a000000-0000-0000-0000-000000000002"

ALICE = "0c000000-0000-0000-0000-000000000001"  # Acme, several grants
BOB = "0c000000-0000-0000-0000-000000000002"  # Acme, no grants
CAROL = "0c000000-0000-0000-0000-000000000003"  # Globex

P_WEBSITE = "0b000000-0000-0000-0000-000000000001"  # visible, full grant for Alice
P_MOBILE = "0b000000-0000-0000-0000-000000000002"  # visible, Alice cannot view tasks or files
P_INTERNAL = "0b000000-0000-0000-0000-000000000003"  # not client-visible, Alice has a grant
P_GLOBEX = "0b000000-0000-0000-0000-000000000004"  # visible, Carol only

PORTAL_SCHEMA = [
    """CREATE TABLE organizations (
        id TEXT PRIMARY KEY, name TEXT, copilot_tier TEXT, copilot_model TEXT
    )""",
    """CREATE TABLE contacts (
        id TEXT PRIMARY KEY, organization_id TEXT, email TEXT
    )""",
    """CREATE TABLE projects (
        id TEXT PRIMARY KEY, name TEXT, description TEXT, status TEXT,
        is_client_visible BOOLEAN, date_created TEXT, date_updated TEXT
    )""",
    """CREATE TABLE project_contacts (
        id INTEGER PRIMARY KEY AUTOINCREMENT, project_id TEXT, contact_id TEXT, role TEXT,
        can_view_tasks BOOLEAN, can_view_files BOOLEAN, can_send_messages BOOLEAN
    )""",
    """CREATE TABLE todos (
        id TEXT PRIMARY KEY, project_id TEXT, title TEXT, description TEXT, status TEXT,
        priority TEXT, due_date TEXT, is_visible_to_client BOOLEAN, date_created TEXT
    )""",
    """CREATE TABLE conversations (
        id TEXT PRIMARY KEY, collection TEXT, item TEXT, title TEXT
    )""",
    """CREATE TABLE conversation_participants (
        id INTEGER PRIMARY KEY AUTOINCREMENT, conversation_id TEXT, contact_id TEXT
    )""",
    """CREATE TABLE messages (
        id TEXT PRIMARY KEY, conversation_id TEXT, text TEXT, sender_name TEXT,
        is_internal_note BOOLEAN, date_created TEXT
    )""",
    """CREATE TABLE directus_files (
        id TEXT PRIMARY KEY, filename_download TEXT, title TEXT, description TEXT,
        type TEXT, filesize INTEGER, uploaded_on TEXT
    )""",
    """CREATE TABLE project_files (
        id TEXT PRIMARY KEY, project_id TEXT, file_id TEXT, is_client_visible BOOLEAN
    )""",
]


def _seed(session):
    def insert(sql, rows):
        for row in rows:
            session.execute(text(sql), row)

    insert(
        "INSERT INTO organizations (id, name, copilot_tier, copilot_model) VALUES (:id, :name, :tier, NULL)",
        [
            {"id": ORG_ACME, "name": "Acme", "tier": "free"},
            {"id": ORG_GLOBEX, "name": "Globex", "tier": "premium"},
        ],
    )
    insert(
        "INSERT INTO contacts (id, organization_id, email) VALUES (:id, :org, :email)",
        [
            {"id": ALICE, "org": ORG_ACME, "email": "alice@acme.test"},
            {"id": BOB, "org": ORG_ACME, "email": "bob@acme.test"},
            {"id": CAROL, "org": ORG_GLOBEX, "email": "carol@globex.test"},
        ],
    )
    insert(
        """INSERT INTO projects (id, name, description, status, is_client_visible, date_created, date_updated)
           VALUES (:id, :name, :description, 'active', :visible, :created, :created)""",
        [
            {"id": P_WEBSITE, "name": "Website Redesign", "description": "New marketing site with a refreshed brand.",
             "visible": True, "created": "2026-01-01T09:00:00"},
            {"id": P_MOBILE, "name": "Mobile App", "description": "Native iOS and Android apps.",
             "visible": True, "created": "2026-01-02T09:00:00"},
            {"id": P_INTERNAL, "name": "Internal Migration", "description": "Server migration, staff only.",
             "visible": False, "created": "2026-01-03T09:00:00"},
            {"id": P_GLOBEX, "name": "Globex Website", "description": "Website redesign for Globex.",
             "visible": True, "created": "2026-01-04T09:00:00"},
        ],
    )
    insert(
        """INSERT INTO project_contacts (project_id, contact_id, role, can_view_tasks, can_view_files, can_send_messages)
           VALUES (:project, :contact, 'viewer', :tasks, :files, TRUE)""",
        [
            {"project": P_WEBSITE, "contact": ALICE, "tasks": True, "files": True},
            {"project": P_MOBILE, "contact": ALICE, "tasks": False, "files": False},
            {"project": P_INTERNAL, "contact": ALICE, "tasks": True, "files": True},
            {"project": P_GLOBEX, "contact": CAROL, "tasks": True, "files": True},
        ],
    )
    insert(
        """INSERT INTO todos (id, project_id, title, description, status, priority, due_date,
                              is_visible_to_client, date_created)
           VALUES (:id, :project, :title, :description, 'in_progress', 'high', NULL, :visible, :created)""",
        [
            {"id": "t-web-1", "project": P_WEBSITE, "title": "Finalize homepage copy",
             "description": "Website redesign homepage text", "visible": True, "created": "2026-01-05T10:00:00"},
            {"id": "t-web-2", "project": P_WEBSITE, "title": "Internal budget review",
             "description": "Website redesign margin check", "visible": False, "created": "2026-01-05T11:00:00"},
            {"id": "t-mob-1", "project": P_MOBILE, "title": "App store submission",
             "description": "Submit the build", "visible": True, "created": "2026-01-05T12:00:00"},
            {"id": "t-int-1", "project": P_INTERNAL, "title": "Migrate database",
             "description": "Website redesign servers", "visible": True, "created": "2026-01-05T13:00:00"},
            {"id": "t-glx-1", "project": P_GLOBEX, "title": "Globex homepage",
             "description": "Website redesign for Globex", "visible": True, "created": "2026-01-05T14:00:00"},
        ],
    )
    insert(
        "INSERT INTO conversations (id, collection, item, title) VALUES (:id, 'projects', :item, :title)",
        [
            {"id": "c-web-1", "item": P_WEBSITE, "title": "Website kickoff"},
            {"id": "c-web-2", "item": P_WEBSITE, "title": "Design team thread"},
            {"id": "c-glx-1", "item": P_GLOBEX, "title": "Globex kickoff"},
        ],
    )
    insert(
        "INSERT INTO conversation_participants (conversation_id, contact_id) VALUES (:conversation, :contact)",
        [
            {"conversation": "c-web-1", "contact": ALICE},
            {"conversation": "c-glx-1", "contact": CAROL},
        ],
    )
    insert(
        """INSERT INTO messages (id, conversation_id, text, sender_name, is_internal_note, date_created)
           VALUES (:id, :conversation, :text, :sender, :internal, :created)""",
        [
            {"id": "m-web-1", "conversation": "c-web-1", "text": "The website redesign draft is ready for review.",
             "sender": "Dana", "internal": False, "created": "2026-01-06T09:00:00"},
            {"id": "m-web-2", "conversation": "c-web-1", "text": "Website redesign client is late on payment.",
             "sender": "Dana", "internal": True, "created": "2026-01-06T10:00:00"},
            {"id": "m-web-3", "conversation": "c-web-2", "text": "Website redesign design review notes.",
             "sender": "Eve", "internal": False, "created": "2026-01-06T11:00:00"},
            {"id": "m-glx-1", "conversation": "c-glx-1", "text": "Globex website redesign timeline.",
             "sender": "Dana", "internal": False, "created": "2026-01-06T12:00:00"},
        ],
    )
    insert(
        """INSERT INTO directus_files (id, filename_download, title, description, type, filesize, uploaded_on)
           VALUES (:id, :filename, :title, :description, 'application/pdf', 2048, :uploaded)""",
        [
            {"id": "f-1", "filename": "brand-guidelines.pdf", "title": "Brand guidelines",
             "description": "Website redesign brand rules", "uploaded": "2026-01-04T08:00:00"},
            {"id": "f-2", "filename": "contract-draft.pdf", "title": "Contract draft",
             "description": "Website redesign pricing", "uploaded": "2026-01-04T09:00:00"},
            {"id": "f-3", "filename": "globex-brief.pdf", "title": "Globex brief",
             "description": "Website redesign brief", "uploaded": "2026-01-04T10:00:00"},
        ],
    )
    insert(
        "INSERT INTO project_files (id, project_id, file_id, is_client_visible) VALUES (:id, :project, :file, :visible)",
        [
            {"id": "pf-1", "project": P_WEBSITE, "file": "f-1", "visible": True},
            {"id": "pf-2", "project": P_WEBSITE, "file": "f-2", "visible": False},
            {"id": "pf-3", "project": P_GLOBEX, "file": "f-3", "visible": True},
        ],
    )


@pytest.fixture
def portal_db(tmp_path):
    """Session scope over a seeded SQLite copy of the portal tables."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'portal.db'}",
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        for statement in PORTAL_SCHEMA:
            conn.execute(text(statement))
    session_scope = make_session_scope(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    with session_scope() as session:
        _seed(session)
    yield session_scope
    engine.dispose()


def make_token(
    subject_id=ALICE,
    tenant_id=ORG_ACME,
    secret=TEST_JWT_SECRET,
    expires_in=3600,
    **claims,
):
    """Signed portal credential for tests."""
    payload = {"contact_id": subject_id, "organization_id": tenant_id, "exp": int(time.time()) + expires_in}
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, secret, algorithm="HS256")
