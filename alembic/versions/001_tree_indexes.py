"""tree indexes and munasib trigger

Revision ID: 001_tree
Revises:
Create Date: 2026-10-19

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_tree"
down_revision = None
branch_labels = None
depends_on = None

MUNASIB_FUNCTION = r"""
CREATE OR REPLACE FUNCTION check_marriage_munasib() RETURNS trigger AS $$
DECLARE
    husband_hid text;
    wife_hid text;
    husband_origin text;
    wife_origin text;
    expected text;
BEGIN
    SELECT hid, family_origin INTO husband_hid, husband_origin FROM profiles WHERE id = NEW.husband_id;
    SELECT hid, family_origin INTO wife_hid, wife_origin FROM profiles WHERE id = NEW.wife_id;

    IF husband_hid IS NOT NULL AND wife_hid IS NOT NULL THEN
        IF NEW.munasib IS NOT NULL THEN
            RAISE EXCEPTION 'munasib must be empty when both spouses belong to the family tree'
                USING ERRCODE = '23514';
        END IF;
        RETURN NEW;
    END IF;

    IF husband_hid IS NULL AND wife_hid IS NULL THEN
        RAISE EXCEPTION 'At least one spouse must belong to the family tree' USING ERRCODE = '23514';
    END IF;

    expected := CASE WHEN husband_hid IS NULL THEN husband_origin ELSE wife_origin END;
    IF lower(regexp_replace(btrim(coalesce(NEW.munasib, '')), '\s+', ' ', 'g'))
       <> lower(regexp_replace(btrim(coalesce(expected, '')), '\s+', ' ', 'g')) THEN
        RAISE EXCEPTION 'munasib must equal the external spouse''s family origin' USING ERRCODE = '23514';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

MUNASIB_TRIGGER = """
CREATE TRIGGER marriages_munasib_check
    BEFORE INSERT OR UPDATE OF husband_id, wife_id, munasib ON marriages
    FOR EACH ROW EXECUTE FUNCTION check_marriage_munasib();
"""


def upgrade() -> None:
    # Tree traversal
    op.create_index("idx_profiles_hid_active", "profiles", ["hid", "deleted_at"])
    op.create_index("idx_profiles_generation", "profiles", ["generation"])

    # Spouse lookups
    op.create_index("idx_marriages_husband_active", "marriages", ["husband_id", "deleted_at"])
    op.create_index("idx_marriages_wife_active", "marriages", ["wife_id", "deleted_at"])

    # Audit and undo
    op.create_index("idx_audit_log_record_created", "audit_log", ["record_id", "created_at"])
    op.create_index("idx_audit_log_batch_action", "audit_log", ["batch_id", "action_type"])
    op.create_index("idx_audit_log_actor", "audit_log", ["actor_id"])

    # Suggestion rate limits
    op.create_index(
        "idx_suggestions_submitter_created", "profile_edit_suggestions", ["submitter_id", "created_at"]
    )
    op.create_index(
        "idx_suggestions_reviewer_status", "profile_edit_suggestions", ["reviewed_by", "status"]
    )

    # Flags indexes
    op.create_index("idx_flags_entity", "flags", ["entity_type", "entity_id"])
    op.create_index("idx_flags_resolved", "flags", ["is_resolved"])

    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text(MUNASIB_FUNCTION))
        op.execute(sa.text(MUNASIB_TRIGGER))


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text("DROP TRIGGER IF EXISTS marriages_munasib_check ON marriages"))
        op.execute(sa.text("DROP FUNCTION IF EXISTS check_marriage_munasib()"))

    op.drop_index("idx_profiles_hid_active", "profiles")
    op.drop_index("idx_profiles_generation", "profiles")
    op.drop_index("idx_marriages_husband_active", "marriages")
    op.drop_index("idx_marriages_wife_active", "marriages")
    op.drop_index("idx_audit_log_record_created", "audit_log")
    op.drop_index("idx_audit_log_batch_action", "audit_log")
    op.drop_index("idx_audit_log_actor", "audit_log")
    op.drop_index("idx_suggestions_submitter_created", "profile_edit_suggestions")
    op.drop_index("idx_suggestions_reviewer_status", "profile_edit_suggestions")
    op.drop_index("idx_flags_entity", "flags")
    op.drop_index("idx_flags_resolved", "flags")
