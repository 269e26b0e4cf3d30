"""create versioned item tables

Revision ID: 5e1f0a9c2d7b
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5e1f0a9c2d7b'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create items, versions, edges, audit log, waves, baselines and setup elements."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "setup_elements" not in existing_tables:
        op.create_table(
            "setup_elements",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("kind", sa.String(64), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("parent_id", sa.Integer(), sa.ForeignKey("setup_elements.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_by", sa.String(128), nullable=False),
        )
        op.create_index("idx_setup_elements_kind", "setup_elements", ["kind"])

    if "waves" not in existing_tables:
        op.create_table(
            "waves",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("quarter", sa.Integer(), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("name", sa.String(16), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_by", sa.String(128), nullable=False),
            sa.UniqueConstraint("year", "quarter", name="uq_wave_year_quarter"),
        )

    if "items" not in existing_tables:
        # latest_version_id FK is added once item_versions exists
        op.create_table(
            "items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("item_type", sa.String(64), nullable=False),
            sa.Column("latest_version_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_by", sa.String(128), nullable=False),
            sqlite_autoincrement=True,
        )
        op.create_index("idx_items_type", "items", ["item_type"])

    if "item_versions" not in existing_tables:
        op.create_table(
            "item_versions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("previous_version_id", sa.Integer(), sa.ForeignKey("item_versions.id", ondelete="SET NULL"), nullable=True),
            sa.Column("content", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_by", sa.String(128), nullable=False),
            sa.UniqueConstraint("item_id", "version", name="uq_item_version"),
            sqlite_autoincrement=True,
        )
        with op.batch_alter_table("items") as batch_op:
            batch_op.create_foreign_key(
                "fk_items_latest_version_id",
                "item_versions",
                ["latest_version_id"],
                ["id"],
                ondelete="SET NULL",
            )

    if "item_relationships" not in existing_tables:
        op.create_table(
            "item_relationships",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("from_version_id", sa.Integer(), sa.ForeignKey("item_versions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("relation_type", sa.String(32), nullable=False),
            sa.Column("target_type", sa.String(64), nullable=False),
            sa.Column("target_id", sa.Integer(), nullable=False),
            sa.Column("note", sa.Text(), nullable=True),
            sa.UniqueConstraint(
                "from_version_id", "relation_type", "target_type", "target_id", name="uq_item_relationship"
            ),
        )
        op.create_index("idx_item_relationships_target", "item_relationships", ["target_type", "target_id"])

    if "relationship_audit_log" not in existing_tables:
        op.create_table(
            "relationship_audit_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("timestamp", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("user_id", sa.String(128), nullable=False),
            sa.Column("action", sa.String(16), nullable=False),
            sa.Column("relationship_type", sa.String(32), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("source_version_id", sa.Integer(), nullable=False),
            sa.Column("target_type", sa.String(64), nullable=False),
            sa.Column("target_id", sa.Integer(), nullable=False),
        )
        op.create_index("idx_relationship_audit_item", "relationship_audit_log", ["item_id", "timestamp"])
        op.create_index("idx_relationship_audit_source", "relationship_audit_log", ["source_version_id"])

    if "baselines" not in existing_tables:
        op.create_table(
            "baselines",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("starts_from_wave_id", sa.Integer(), sa.ForeignKey("waves.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_by", sa.String(128), nullable=False),
        )

    if "baseline_items" not in existing_tables:
        op.create_table(
            "baseline_items",
            sa.Column("baseline_id", sa.Integer(), sa.ForeignKey("baselines.id"), primary_key=True),
            sa.Column("item_id", sa.Integer(), primary_key=True),
            sa.Column("item_type", sa.String(64), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
        )


def downgrade() -> None:
    op.drop_table("baseline_items")
    op.drop_table("baselines")
    op.drop_index("idx_relationship_audit_source", table_name="relationship_audit_log")
    op.drop_index("idx_relationship_audit_item", table_name="relationship_audit_log")
    op.drop_table("relationship_audit_log")
    op.drop_index("idx_item_relationships_target", table_name="item_relationships")
    op.drop_table("item_relationships")
    with op.batch_alter_table("items") as batch_op:
        batch_op.drop_constraint("fk_items_latest_version_id", type_="foreignkey")
    op.drop_table("item_versions")
    op.drop_index("idx_items_type", table_name="items")
    op.drop_table("items")
    op.drop_table("waves")
    op.drop_index("idx_setup_elements_kind", table_name="setup_elements")
    op.drop_table("setup_elements")
