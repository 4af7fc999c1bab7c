"""migrate_legacy_roles

Revision ID: 8b2e4d6f0a31
Revises: 3f1c9a2b7d10
Create Date: 2026-03-09 14:02:17.530912

"""
import json
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b2e4d6f0a31'
down_revision: Union[str, Sequence[str], None] = '3f1c9a2b7d10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Two-role scheme -> five-role scheme
LEGACY_ROLES = {
    'tenant_admin': 'admin',
    'user': 'member',
}


def _load(value):
    if value is None or isinstance(value, dict):
        return value
    return json.loads(value)


def upgrade() -> None:
    """
    One-time rewrite of legacy role values.

    Data Migration:
    - users.role and invitations.role: tenant_admin -> admin, user -> member
    - identities.custom_claims['role'] rewritten the same way
    """
    connection = op.get_bind()

    for table in ('users', 'invitations'):
        for legacy, canonical in LEGACY_ROLES.items():
            connection.execute(
                sa.text(f"UPDATE {table} SET role = :canonical WHERE role = :legacy"),
                {"canonical": canonical, "legacy": legacy},
            )

    identities = connection.execute(
        sa.text("SELECT uid, custom_claims FROM identities WHERE custom_claims IS NOT NULL")
    ).fetchall()

    for uid, raw_claims in identities:
        claims = _load(raw_claims) or {}
        role = claims.get('role')
        if role not in LEGACY_ROLES:
            continue
        claims['role'] = LEGACY_ROLES[role]
        connection.execute(
            sa.text("UPDATE identities SET custom_claims = :claims WHERE uid = :uid"),
            {"claims": json.dumps(claims), "uid": uid},
        )


def downgrade() -> None:
    """
    Nothing to undo: the legacy vocabulary is not restored.

    admin/member rows created after the upgrade cannot be told apart from
    migrated ones.
    """
    pass
