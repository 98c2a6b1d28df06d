"""baseline schema: zones, locations, plans + audit log

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op

from cfs_warehouse.db import Base
from cfs_warehouse import models  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLES = ("zones", "locations", "plans", "plan_containers", "operation_logs")


def upgrade() -> None:
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    for table in reversed(TABLES):
        op.drop_table(table)
