"""Initial schema: admins, catalog, customers, purchases, audit trail, jobs

Revision ID: 20250727_initial
Revises:
Create Date: 2025-07-27

Creates:
1. admins, admin_sessions
2. categories, products, product_images, product_categories
3. customers, purchases (report indexes on purchased_at)
4. audit_logs (indexed by subject, action, created_at)
5. jobs (background job queue)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20250727_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, updated=True):
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def upgrade():
    # ==========================================================================
    # 1. ADMINS
    # ==========================================================================
    op.create_table('admins',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_admins_email'),
        sqlite_autoincrement=True,
    )

    op.create_table('admin_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['admin_id'], ['admins.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash', name='uq_admin_sessions_token_hash'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_admin_sessions_admin_id', 'admin_sessions', ['admin_id'])

    # ==========================================================================
    # 2. CATALOG
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['admin_id'], ['admins.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_categories_admin_id', 'categories', ['admin_id'])
    op.create_index('uq_categories_name_lower', 'categories', [sa.text('lower(name)')], unique=True)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('admin_id', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.CheckConstraint('price > 0', name='ck_products_price_positive'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['admin_id'], ['admins.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_admin_id', 'products', ['admin_id'])
    op.create_index('ix_products_admin_name', 'products', ['admin_id', 'name'])

    op.create_table('product_images',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('image_url', sa.String(length=2048), nullable=False),
        sa.Column('caption', sa.String(length=200), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_images_product_id', 'product_images', ['product_id'])

    op.create_table('product_categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'category_id', name='uq_product_categories_pair'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_categories_product_id', 'product_categories', ['product_id'])
    op.create_index('ix_product_categories_category', 'product_categories', ['category_id'])

    # ==========================================================================
    # 3. CUSTOMERS AND PURCHASES
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=16), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_customers_email'),
        sqlite_autoincrement=True,
    )

    op.create_table('purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('purchased_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(updated=False),
        sa.CheckConstraint('quantity > 0', name='ck_purchases_quantity_positive'),
        sa.CheckConstraint('total_price > 0', name='ck_purchases_total_positive'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_purchases_customer_id', 'purchases', ['customer_id'])
    op.create_index('ix_purchases_product_id', 'purchases', ['product_id'])
    op.create_index('ix_purchases_purchased_at', 'purchases', ['purchased_at'])
    op.create_index('ix_purchases_product_purchased_at', 'purchases', ['product_id', 'purchased_at'])
    op.create_index('ix_purchases_customer_purchased_at', 'purchases', ['customer_id', 'purchased_at'])

    # ==========================================================================
    # 4. AUDIT TRAIL
    # ==========================================================================
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=False),
        sa.Column('auditable_type', sa.String(length=32), nullable=False),
        sa.Column('auditable_id', sa.Integer(), nullable=False),
        sa.Column('changes_data', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "action IN ('created', 'updated', 'deleted', 'category_associated', 'category_disassociated')",
            name='ck_audit_logs_action',
        ),
        sa.ForeignKeyConstraint(['admin_id'], ['admins.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_audit_logs_auditable', 'audit_logs', ['auditable_type', 'auditable_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_admin_id', 'audit_logs', ['admin_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    # ==========================================================================
    # 5. JOBS
    # ==========================================================================
    op.create_table('jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('queue', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('args', sa.JSON(), nullable=False),
        sa.Column('unique_key', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('run_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('unique_key', name='uq_jobs_unique_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_jobs_queue', 'jobs', ['queue'])
    op.create_index('ix_jobs_name', 'jobs', ['name'])
    op.create_index('ix_jobs_claim', 'jobs', ['status', 'run_at'])


def downgrade():
    op.drop_table('jobs')
    op.drop_table('audit_logs')
    op.drop_table('purchases')
    op.drop_table('customers')
    op.drop_table('product_categories')
    op.drop_table('product_images')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('admin_sessions')
    op.drop_table('admins')
