"""Create tender market tables: tenders, tender_bids, tender_notifications

Один активный бид на (tender, professional) обеспечивается частичным
уникальным индексом, одно уведомление на (tender, professional) -
уникальным constraint.

Revision ID: 20261018_tender_market
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


revision = '20261018_tender_market'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'tenders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('client_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('category', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('location', sa.Text(), nullable=False),
        sa.Column('city', sa.String(255), nullable=True),
        sa.Column('district', sa.String(255), nullable=True),
        sa.Column('gps_coordinates', sa.String(64), nullable=True),
        sa.Column('urgency', sa.String(20), nullable=False),
        sa.Column('photos', sa.JSON(), nullable=True),
        sa.Column('max_budget', sa.Integer(), nullable=True),
        sa.Column('preferred_schedule', sa.Text(), nullable=True),
        sa.Column('special_constraints', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('selected_bid_id', sa.String(36), nullable=True),
        sa.Column('selected_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_tenders_client_id', 'tenders', ['client_id'])
    op.create_index('ix_tenders_status_created', 'tenders', ['status', 'created_at'])
    op.create_index('ix_tenders_category_status', 'tenders', ['category', 'status'])

    op.create_table(
        'tender_bids',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tender_id', sa.String(36), sa.ForeignKey('tenders.id'), nullable=False),
        sa.Column('professional_id', sa.String(64), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('estimated_duration', sa.String(100), nullable=False),
        sa.Column('guarantee_period', sa.String(100), nullable=True),
        sa.Column('availability', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('photos', sa.JSON(), nullable=True),
        sa.Column('has_guarantee', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('can_start_today', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('professional_rating', sa.Float(), nullable=True),
        sa.Column('professional_distance', sa.Float(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tender_bids_tender_id', 'tender_bids', ['tender_id'])
    op.create_index('ix_tender_bids_professional_id', 'tender_bids', ['professional_id'])
    op.create_index('ix_tender_bids_tender_status', 'tender_bids', ['tender_id', 'status'])
    op.create_index(
        'uq_tender_bids_active_professional',
        'tender_bids',
        ['tender_id', 'professional_id'],
        unique=True,
        postgresql_where=sa.text("status != 'withdrawn'"),
        sqlite_where=sa.text("status != 'withdrawn'"),
    )

    op.create_table(
        'tender_notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tender_id', sa.String(36), sa.ForeignKey('tenders.id'), nullable=False),
        sa.Column('professional_id', sa.String(64), nullable=False),
        sa.Column('notification_type', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='sent'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('matching_score', sa.Integer(), nullable=True),
        sa.Column('matching_reasons', sa.JSON(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=False),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tender_id', 'professional_id', name='uq_notification_tender_professional'),
    )
    op.create_index('ix_tender_notifications_tender_id', 'tender_notifications', ['tender_id'])
    op.create_index('ix_tender_notifications_professional_id', 'tender_notifications', ['professional_id'])
    op.create_index(
        'ix_tender_notifications_professional_sent',
        'tender_notifications',
        ['professional_id', 'sent_at']
    )


def downgrade() -> None:
    op.drop_table('tender_notifications')
    op.drop_index('uq_tender_bids_active_professional', table_name='tender_bids')
    op.drop_table('tender_bids')
    op.drop_table('tenders')
