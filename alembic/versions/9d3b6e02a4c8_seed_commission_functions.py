"""seed commission functions

Revision ID: 9d3b6e02a4c8
Revises: 4f2a9c1e7b30
Create Date: 2026-10-19 09:40:17.553920

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "9d3b6e02a4c8"
down_revision: Union[str, Sequence[str], None] = "4f2a9c1e7b30"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

FUNCTIONS = ["Président", "Vice-président", "Rapporteur", "Membre"]


def upgrade() -> None:
    """Insert the standard commission functions."""
    fonctions = sa.table(
        "fonctions_commission",
        sa.column("libelle", sa.String),
    )
    op.bulk_insert(fonctions, [{"libelle": libelle} for libelle in FUNCTIONS])


def downgrade() -> None:
    """Remove the standard commission functions."""
    op.execute(
        sa.text("DELETE FROM fonctions_commission WHERE libelle = ANY(:libelles)").bindparams(
            libelles=FUNCTIONS
        )
    )
