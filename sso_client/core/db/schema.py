"""Versioned schema for the SSO client database.

Each migration is ``(version, name, sql)``. Versions are applied in order and
recorded in ``schema_migrations`` together with a checksum of their SQL.
"""

from typing import List, Tuple

Migration = Tuple[int, str, str]

INITIAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    console_user_id INTEGER UNIQUE,
    email TEXT NOT NULL,
    name TEXT NOT NULL,
    console_access_token TEXT,
    console_refresh_token TEXT,
    console_token_expires_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);

CREATE TABLE IF NOT EXISTS roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL UNIQUE,
    display_name TEXT NOT NULL,
    level INTEGER NOT NULL DEFAULT 0 CHECK (level BETWEEN 0 AND 100),
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS permissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL UNIQUE,
    display_name TEXT NOT NULL,
    "group" TEXT,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_permissions_group ON permissions("group");

CREATE TABLE IF NOT EXISTS role_permissions (
    role_id INTEGER NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
    permission_id INTEGER NOT NULL REFERENCES permissions(id) ON DELETE CASCADE,
    PRIMARY KEY (role_id, permission_id)
);

CREATE TABLE IF NOT EXISTS team_permissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    console_team_id INTEGER NOT NULL,
    console_org_id INTEGER NOT NULL,
    permission_id INTEGER NOT NULL REFERENCES permissions(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    UNIQUE (console_team_id, console_org_id, permission_id)
);

CREATE INDEX IF NOT EXISTS idx_team_permissions_team ON team_permissions(console_team_id);
CREATE INDEX IF NOT EXISTS idx_team_permissions_org ON team_permissions(console_org_id);
CREATE INDEX IF NOT EXISTS idx_team_permissions_deleted ON team_permissions(deleted_at);
"""

TOKENS_AND_SESSIONS = """
CREATE TABLE IF NOT EXISTS personal_access_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    token_hash TEXT NOT NULL UNIQUE,
    last_used_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_personal_access_tokens_user ON personal_access_tokens(user_id);

CREATE TABLE IF NOT EXISTS revoked_sessions (
    jti TEXT PRIMARY KEY,
    user_id INTEGER,
    expires_at TEXT,
    revoked_at TEXT NOT NULL
);
"""

MIGRATIONS: List[Migration] = [
    (1, "initial_schema", INITIAL_SCHEMA),
    (2, "tokens_and_sessions", TOKENS_AND_SESSIONS),
]
