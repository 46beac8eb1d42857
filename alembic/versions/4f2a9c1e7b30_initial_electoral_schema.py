"""initial electoral schema

Revision ID: 4f2a9c1e7b30
Revises:
Create Date: 2026-10-19 09:12:44.208311

"""
from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4f2a9c1e7b30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
-- Territorial reference data (codes are unique across every level)
CREATE TABLE IF NOT EXISTS territorial_nodes (
    code INTEGER PRIMARY KEY,
    kind VARCHAR(20) NOT NULL
        CHECK (kind IN ('region', 'department', 'arrondissement', 'polling_station')),
    libelle VARCHAR(255) NOT NULL,
    abbreviation VARCHAR(20),
    parent_code INTEGER REFERENCES territorial_nodes(code),
    CHECK ((kind = 'region') = (parent_code IS NULL))
);

CREATE INDEX IF NOT EXISTS idx_territorial_nodes_parent ON territorial_nodes(parent_code);
CREATE INDEX IF NOT EXISTS idx_territorial_nodes_kind ON territorial_nodes(kind);

-- Roles of users known to this service (the caller's role comes from the token)
CREATE TABLE IF NOT EXISTS user_roles (
    user_id UUID PRIMARY KEY,
    role VARCHAR(50) NOT NULL
);

-- Territorial access grants (soft-deactivated, never deleted)
CREATE TABLE IF NOT EXISTS access_grants (
    id SERIAL PRIMARY KEY,
    user_id UUID NOT NULL,
    node_code INTEGER NOT NULL REFERENCES territorial_nodes(code),
    level VARCHAR(10) NOT NULL CHECK (level IN ('read', 'edit')),
    active BOOLEAN NOT NULL DEFAULT TRUE,
    granted_by UUID NOT NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    deactivated_at TIMESTAMP WITH TIME ZONE,
    deactivated_by UUID
);

CREATE INDEX IF NOT EXISTS idx_access_grants_user_active ON access_grants(user_id) WHERE active;

-- Political parties
CREATE TABLE IF NOT EXISTS partis_politiques (
    code INTEGER PRIMARY KEY,
    libelle VARCHAR(255) NOT NULL,
    abbreviation VARCHAR(20)
);

-- Department participation
CREATE TABLE IF NOT EXISTS participation_departement (
    id SERIAL PRIMARY KEY,
    code_departement INTEGER NOT NULL UNIQUE REFERENCES territorial_nodes(code),
    nombre_bureau_vote INTEGER CHECK (nombre_bureau_vote >= 0),
    nombre_inscrit INTEGER CHECK (nombre_inscrit >= 0),
    nombre_votant INTEGER CHECK (nombre_votant >= 0),
    bulletin_nul INTEGER CHECK (bulletin_nul >= 0),
    nombre_enveloppe_urnes INTEGER CHECK (nombre_enveloppe_urnes >= 0),
    nombre_enveloppe_bulletins_differents INTEGER,
    nombre_bulletin_electeur_identifiable INTEGER,
    nombre_bulletin_enveloppes_signes INTEGER,
    nombre_enveloppe_non_elecam INTEGER,
    nombre_bulletin_non_elecam INTEGER,
    nombre_bulletin_sans_enveloppe INTEGER,
    nombre_enveloppe_vide INTEGER,
    nombre_suffrages_valable INTEGER,
    suffrage_exprime INTEGER,
    taux_participation NUMERIC(5, 2),
    submitted_by UUID,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

-- Arrondissement participation with its review status
CREATE TABLE IF NOT EXISTS participation_arrondissement (
    id SERIAL PRIMARY KEY,
    code_arrondissement INTEGER NOT NULL UNIQUE REFERENCES territorial_nodes(code),
    nombre_bureaux INTEGER CHECK (nombre_bureaux >= 0),
    nombre_inscrit INTEGER CHECK (nombre_inscrit >= 0),
    nombre_votant INTEGER CHECK (nombre_votant >= 0),
    bulletin_nul INTEGER CHECK (bulletin_nul >= 0),
    suffrage_valable INTEGER CHECK (suffrage_valable >= 0),
    taux_participation NUMERIC(5, 2),
    taux_abstention NUMERIC(5, 2),
    status VARCHAR(20) NOT NULL DEFAULT 'submitted'
        CHECK (status IN ('submitted', 'approved', 'rejected', 'validated')),
    status_reason TEXT,
    status_changed_by UUID,
    status_changed_at TIMESTAMP WITH TIME ZONE,
    submitted_by UUID,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

-- Polling-station participation snapshots
CREATE TABLE IF NOT EXISTS participation_bureau (
    id SERIAL PRIMARY KEY,
    code_bureau_vote INTEGER NOT NULL UNIQUE REFERENCES territorial_nodes(code),
    nombre_inscrit INTEGER CHECK (nombre_inscrit >= 0),
    nombre_votant INTEGER CHECK (nombre_votant >= 0),
    bulletin_nul INTEGER CHECK (bulletin_nul >= 0),
    submitted_by UUID,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

-- Results per department and party
CREATE TABLE IF NOT EXISTS resultat_departement (
    id SERIAL PRIMARY KEY,
    code_departement INTEGER NOT NULL REFERENCES territorial_nodes(code),
    code_parti INTEGER NOT NULL REFERENCES partis_politiques(code),
    nombre_vote INTEGER NOT NULL CHECK (nombre_vote >= 0),
    pourcentage NUMERIC(5, 2),
    validation_status INTEGER NOT NULL DEFAULT 0,
    submitted_by UUID,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(code_departement, code_parti)
);

CREATE INDEX IF NOT EXISTS idx_resultat_departement_status ON resultat_departement(validation_status);

-- Results per polling station and party
CREATE TABLE IF NOT EXISTS resultat_bureau (
    id SERIAL PRIMARY KEY,
    code_bureau_vote INTEGER NOT NULL REFERENCES territorial_nodes(code),
    code_parti INTEGER NOT NULL REFERENCES partis_politiques(code),
    nombre_vote INTEGER NOT NULL CHECK (nombre_vote >= 0),
    submitted_by UUID,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(code_bureau_vote, code_parti)
);

-- Correction ledger (append-only; only the review columns change)
CREATE TABLE IF NOT EXISTS redressements (
    id SERIAL PRIMARY KEY,
    target_kind VARCHAR(10) NOT NULL CHECK (target_kind IN ('bureau', 'candidat')),
    code_bureau_vote INTEGER NOT NULL REFERENCES territorial_nodes(code),
    code_parti INTEGER REFERENCES partis_politiques(code),
    initial_values JSONB NOT NULL,
    corrected_values JSONB NOT NULL,
    raison TEXT NOT NULL,
    created_by UUID NOT NULL,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT clock_timestamp(),
    status VARCHAR(20) NOT NULL DEFAULT 'submitted'
        CHECK (status IN ('submitted', 'approved', 'rejected', 'validated')),
    status_reason TEXT,
    status_changed_by UUID,
    status_changed_at TIMESTAMP WITH TIME ZONE,
    CHECK ((target_kind = 'candidat') = (code_parti IS NOT NULL))
);

CREATE INDEX IF NOT EXISTS idx_redressements_target
    ON redressements(target_kind, code_bureau_vote, code_parti, created_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_redressements_status ON redressements(status);

-- Departmental commissions
CREATE TABLE IF NOT EXISTS commissions_departementales (
    code SERIAL PRIMARY KEY,
    code_departement INTEGER NOT NULL REFERENCES territorial_nodes(code),
    libelle VARCHAR(255) NOT NULL,
    description TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS fonctions_commission (
    code SERIAL PRIMARY KEY,
    libelle VARCHAR(255) NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS membres_commission (
    code SERIAL PRIMARY KEY,
    noms_prenoms VARCHAR(255) NOT NULL,
    contact VARCHAR(50),
    email VARCHAR(255),
    code_commission INTEGER NOT NULL
        REFERENCES commissions_departementales(code) ON DELETE CASCADE,
    code_fonction INTEGER NOT NULL REFERENCES fonctions_commission(code),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_membres_commission_commission ON membres_commission(code_commission);

-- Uploaded PVs and supporting documents
CREATE TABLE IF NOT EXISTS documents (
    id SERIAL PRIMARY KEY,
    node_code INTEGER NOT NULL REFERENCES territorial_nodes(code),
    document_type VARCHAR(50) NOT NULL,
    libelle VARCHAR(255),
    file_name VARCHAR(255) NOT NULL,
    file_path TEXT NOT NULL,
    content_hash CHAR(64) NOT NULL,
    uploaded_by UUID NOT NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_documents_node ON documents(node_code);
""")


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
DROP TABLE IF EXISTS documents CASCADE;
DROP TABLE IF EXISTS membres_commission CASCADE;
DROP TABLE IF EXISTS fonctions_commission CASCADE;
DROP TABLE IF EXISTS commissions_departementales CASCADE;
DROP TABLE IF EXISTS redressements CASCADE;
DROP TABLE IF EXISTS resultat_bureau CASCADE;
DROP TABLE IF EXISTS resultat_departement CASCADE;
DROP TABLE IF EXISTS participation_bureau CASCADE;
DROP TABLE IF EXISTS participation_arrondissement CASCADE;
DROP TABLE IF EXISTS participation_departement CASCADE;
DROP TABLE IF EXISTS partis_politiques CASCADE;
DROP TABLE IF EXISTS access_grants CASCADE;
DROP TABLE IF EXISTS user_roles CASCADE;
DROP TABLE IF EXISTS territorial_nodes CASCADE;
""")
