"""initial_schema

Create the CDE dashboard schema: identity and membership, CDE activity
data, monitoring and evidence, objectives, uptake, decision-support
overrides, compliance runs (issues, snapshots, remediation actions,
issue notes) and the audit trail.

Revision ID: c4d1e5a7b902
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "c4d1e5a7b902"
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.Integer(), nullable=False)


def _project_fk():
    return sa.Column("project_id", sa.Integer(), nullable=False)


def _created_at(nullable=True):
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=nullable)


def _indexes(table, *columns):
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column])


def upgrade():
    # create_all() at app start-up may already have built the schema
    if "projects" in sa_inspect(op.get_bind()).get_table_names():
        return

    # ── Identity & projects ────────────────────────────────────────────────
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "projects",
        _id(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("acronym", sa.String(length=50), nullable=True),
        sa.Column("programme_profile", sa.String(length=50), nullable=False),
        sa.Column("settings_json", sa.JSON(), nullable=False),
        _created_at(nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "project_members",
        _id(),
        _project_fk(),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )
    _indexes("project_members", "project_id", "user_id")

    # ── CDE reference data ─────────────────────────────────────────────────
    op.create_table(
        "channels",
        _id(),
        _project_fk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "stakeholder_groups",
        _id(),
        _project_fk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "result_assets",
        _id(),
        _project_fk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "objectives",
        _id(),
        _project_fk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("domain", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("kpis_linked_count", sa.Integer(), nullable=False),
        sa.Column("activities_linked_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("warnings_json", sa.Text(), nullable=False),
        sa.Column("status_evaluated_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    for table in ("channels", "stakeholder_groups", "result_assets", "objectives"):
        _indexes(table, "project_id")

    # ── Activities ─────────────────────────────────────────────────────────
    op.create_table(
        "activities",
        _id(),
        _project_fk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("domain", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("effort_hours", sa.Float(), nullable=True),
        sa.Column("budget_estimate", sa.Float(), nullable=True),
        sa.Column("channel_id", sa.Integer(), nullable=True),
        sa.Column("objective_id", sa.Integer(), nullable=True),
        sa.Column("asset_id", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["objective_id"], ["objectives.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["asset_id"], ["result_assets.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("activities", "project_id", "channel_id", "objective_id", "asset_id")
    op.create_index("idx_activity_project_domain", "activities", ["project_id", "domain"])

    op.create_table(
        "activity_stakeholder_groups",
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("stakeholder_group_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["stakeholder_group_id"], ["stakeholder_groups.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("activity_id", "stakeholder_group_id"),
    )
    op.create_table(
        "survey_responses",
        _id(),
        _project_fk(),
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("stakeholder_group_id", sa.Integer(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["stakeholder_group_id"], ["stakeholder_groups.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "qualitative_outcomes",
        _id(),
        _project_fk(),
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("stakeholder_group_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["stakeholder_group_id"], ["stakeholder_groups.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    for table in ("survey_responses", "qualitative_outcomes"):
        _indexes(table, "project_id", "activity_id")

    # ── Monitoring & evidence ──────────────────────────────────────────────
    op.create_table(
        "indicators",
        _id(),
        _project_fk(),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("category", sa.String(length=30), nullable=False),
        sa.Column("domain", sa.String(length=20), nullable=True),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column("baseline", sa.Float(), nullable=True),
        sa.Column("target", sa.Float(), nullable=True),
        sa.Column("locked", sa.Boolean(), nullable=False),
        sa.Column("channel_id", sa.Integer(), nullable=True),
        sa.Column("objective_id", sa.Integer(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["objective_id"], ["objectives.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("indicators", "project_id", "channel_id", "objective_id")

    op.create_table(
        "indicator_values",
        _id(),
        _project_fk(),
        sa.Column("indicator_id", sa.Integer(), nullable=False),
        sa.Column("period", sa.String(length=20), nullable=True),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["indicator_id"], ["indicators.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("indicator_values", "project_id", "indicator_id")
    op.create_index("idx_indicator_value_recorded", "indicator_values", ["project_id", "recorded_at"])

    op.create_table(
        "evidence_items",
        _id(),
        _project_fk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("evidence_date", sa.Date(), nullable=True),
        sa.Column("source_url", sa.String(length=500), nullable=True),
        sa.Column("context", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("evidence_items", "project_id")

    op.create_table(
        "evidence_links",
        _id(),
        sa.Column("evidence_id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(length=20), nullable=False),
        sa.Column("entity_id", sa.String(length=50), nullable=False),
        sa.ForeignKeyConstraint(["evidence_id"], ["evidence_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("evidence_links", "evidence_id")
    op.create_index("idx_evidence_link_entity", "evidence_links", ["entity_type", "entity_id"])

    # ── Uptake ─────────────────────────────────────────────────────────────
    op.create_table(
        "uptake_opportunities",
        _id(),
        _project_fk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("stage", sa.String(length=20), nullable=False),
        sa.Column("target_sector", sa.String(length=100), nullable=True),
        sa.Column("asset_id", sa.Integer(), nullable=True),
        sa.Column("activity_id", sa.Integer(), nullable=True),
        _created_at(nullable=False),
        sa.Column("stage_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["asset_id"], ["result_assets.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "agreements",
        _id(),
        _project_fk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("opportunity_id", sa.Integer(), nullable=True),
        sa.Column("asset_id", sa.Integer(), nullable=True),
        sa.Column("activity_id", sa.Integer(), nullable=True),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["uptake_opportunities.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["asset_id"], ["result_assets.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    for table in ("uptake_opportunities", "agreements"):
        _indexes(table, "project_id", "asset_id", "activity_id")

    # ── Decision support ───────────────────────────────────────────────────
    op.create_table(
        "flag_overrides",
        _id(),
        _project_fk(),
        sa.Column("flag_code", sa.String(length=50), nullable=False),
        sa.Column("entity_type", sa.String(length=30), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("period", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _created_at(nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("flag_overrides", "project_id")
    op.create_index(
        "idx_flag_override_key", "flag_overrides",
        ["project_id", "flag_code", "entity_type", "entity_id"],
    )

    # ── Compliance ─────────────────────────────────────────────────────────
    op.create_table(
        "compliance_rules",
        _id(),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(length=10), nullable=False),
        sa.Column("scope", sa.String(length=50), nullable=True),
        sa.Column("applies_to", sa.String(length=50), nullable=True),
        sa.Column("programme_profile", sa.String(length=50), nullable=False),
        sa.Column("logic_json", sa.Text(), nullable=True),
        sa.Column("remediation", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_table(
        "compliance_checks",
        _id(),
        _project_fk(),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("run_by", sa.Integer(), nullable=True),
        sa.Column("issues_count", sa.Integer(), nullable=False),
        sa.Column("reporting_period", sa.String(length=20), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["run_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("compliance_checks", "project_id")
    op.create_index("idx_compliance_check_project_run", "compliance_checks", ["project_id", "run_at"])

    op.create_table(
        "compliance_issues",
        _id(),
        sa.Column("check_id", sa.Integer(), nullable=False),
        _project_fk(),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("issue_key", sa.String(length=16), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=True),
        sa.Column("rule_code", sa.String(length=50), nullable=False),
        sa.Column("severity", sa.String(length=10), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("affected_entities_json", sa.Text(), nullable=True),
        sa.Column("remediation", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("status_changed_by", sa.Integer(), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_rationale", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["check_id"], ["compliance_checks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rule_id"], ["compliance_rules.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["status_changed_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("compliance_issues", "check_id", "project_id", "issue_key")

    op.create_table(
        "compliance_snapshots",
        _id(),
        _project_fk(),
        sa.Column("check_id", sa.Integer(), nullable=False),
        sa.Column("taken_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("issue_ids_json", sa.Text(), nullable=False),
        sa.Column("severities_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("issues_count", sa.Integer(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["check_id"], ["compliance_checks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("compliance_snapshots", "project_id", "check_id")
    op.create_index("idx_compliance_snapshot_current", "compliance_snapshots", ["project_id", "is_current"])

    op.create_table(
        "remediation_actions",
        _id(),
        _project_fk(),
        sa.Column("check_id", sa.Integer(), nullable=False),
        sa.Column("issue_id", sa.Integer(), nullable=False),
        sa.Column("rule_code", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("suggestion", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("assigned_to", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("status_changed_by", sa.Integer(), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["check_id"], ["compliance_checks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["issue_id"], ["compliance_issues.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["status_changed_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("remediation_actions", "project_id", "check_id", "issue_id")
    op.create_index("idx_remediation_project_status", "remediation_actions", ["project_id", "status"])

    op.create_table(
        "issue_notes",
        _id(),
        _project_fk(),
        sa.Column("issue_id", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _created_at(nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["issue_id"], ["compliance_issues.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("issue_notes", "project_id", "issue_id")

    # ── Audit ──────────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        _id(),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("entity_type", sa.String(length=30), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=60), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    _indexes("audit_logs", "project_id", "actor_user_id")
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_project", "audit_logs", ["project_id"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    existing_tables = set(sa_inspect(op.get_bind()).get_table_names())

    # Indexes go with their tables
    for table in (
        "audit_logs",
        "issue_notes",
        "remediation_actions",
        "compliance_snapshots",
        "compliance_issues",
        "compliance_checks",
        "compliance_rules",
        "flag_overrides",
        "agreements",
        "uptake_opportunities",
        "evidence_links",
        "evidence_items",
        "indicator_values",
        "indicators",
        "qualitative_outcomes",
        "survey_responses",
        "activity_stakeholder_groups",
        "activities",
        "objectives",
        "result_assets",
        "stakeholder_groups",
        "channels",
        "project_members",
        "projects",
        "users",
    ):
        if table in existing_tables:
            op.drop_table(table)
