"""add_one_pending_grant_constraint

Enforce at most one pending grant request per session/item pair.

Revision ID: 8f2d4b6c1a57
Revises: 3c1e7a9b2d40
Create Date: 2026-09-03 16:41:08.552190

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f2d4b6c1a57'
down_revision: Union[str, None] = '3c1e7a9b2d40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add a partial unique index on pending (session_id, item_id) rows.

    Approved and denied rows are excluded, so history never blocks a new
    request once the previous one was decided.
    """
    conn = op.get_bind()
    result = conn.execute(
        sa.text('''
            SELECT session_id, item_id, COUNT(*) AS pending_count
            FROM grant_requests
            WHERE status = 'pending'
            GROUP BY session_id, item_id
            HAVING COUNT(*) > 1
        ''')
    )
    duplicates = result.mappings().all()
    if duplicates:
        msg_lines = [
            '\nMigration aborted: duplicate pending grant requests detected!\n',
        ]
        for row in duplicates:
            msg_lines.append(
                f"  session_id={row['session_id']}, item_id={row['item_id']}, pending={row['pending_count']}"
            )
        msg_lines.append('\nDeny or delete the extra requests before re-running the migration.')
        raise Exception('\n'.join(msg_lines))

    op.execute(
        """
        CREATE UNIQUE INDEX uq_grant_requests_one_pending
        ON grant_requests(session_id, item_id)
        WHERE status = 'pending';
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_grant_requests_one_pending;")
