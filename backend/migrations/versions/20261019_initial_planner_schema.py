"""Initial planner schema: users, projects, stages, tasks, timesheets

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Users (projection of the identity collaborator) and project membership
2. Projects and their ordered stages (unique stage order per project)
3. Tasks with self-referencing parent_task_id (subtasks, cascading delete)
4. Timesheet entries (unique per user, task and day) and month locks
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. USERS AND PROJECTS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=255), nullable=True),
        sa.Column('last_name', sa.String(length=255), nullable=True),
        sa.Column('user_type', sa.String(length=32), nullable=False, server_default='actor'),
        sa.Column('daily_work_hours', sa.Numeric(precision=4, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint("user_type IN ('administrator', 'project_manager', 'actor')", name='ck_users_user_type'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_user_type', ['user_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_is_active'), ['is_active'], unique=False)

    op.create_table('projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('project_manager_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='created'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('budget', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint("status IN ('created', 'in_progress', 'frozen', 'closed')", name='ck_projects_status'),
        sa.ForeignKeyConstraint(['project_manager_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('projects', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_projects_project_manager_id'), ['project_manager_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_projects_status'), ['status'], unique=False)

    op.create_table('project_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=100), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_project_users_project_user'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('project_users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_project_users_project_id'), ['project_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_project_users_user_id'), ['user_id'], unique=False)

    # ==========================================================================
    # 2. STAGES
    # ==========================================================================
    op.create_table('stages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('stage_name', sa.String(length=255), nullable=False),
        sa.Column('stage_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'stage_order', name='uq_stages_project_order'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stages', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stages_project_id'), ['project_id'], unique=False)
        batch_op.create_index('ix_stages_project_order', ['project_id', 'stage_order'], unique=False)

    # ==========================================================================
    # 3. TASKS (self-referencing for subtasks)
    # ==========================================================================
    op.create_table('tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('stage_id', sa.Integer(), nullable=True),
        sa.Column('parent_task_id', sa.Integer(), nullable=True),
        sa.Column('task_name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sold_days', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        sa.Column('responsible_id', sa.Integer(), nullable=True),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='todo'),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('remaining_hours', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('last_remaining_update_total', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('sold_days >= 0', name='ck_tasks_sold_days'),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name='ck_tasks_priority'),
        sa.CheckConstraint("status IN ('todo', 'in_progress', 'review', 'done', 'blocked')", name='ck_tasks_status'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.ForeignKeyConstraint(['stage_id'], ['stages.id'], ),
        sa.ForeignKeyConstraint(['parent_task_id'], ['tasks.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['responsible_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('tasks', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_tasks_project_id'), ['project_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_tasks_stage_id'), ['stage_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_tasks_parent_task_id'), ['parent_task_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_tasks_responsible_id'), ['responsible_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_tasks_status'), ['status'], unique=False)
        batch_op.create_index(
            'ix_tasks_sibling_group',
            ['project_id', 'stage_id', 'parent_task_id', 'display_order'],
            unique=False,
        )

    # ==========================================================================
    # 4. TIMESHEET ENTRIES AND LOCKS
    # ==========================================================================
    op.create_table('timesheet_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('hours', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('entered_by', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('hours > 0 AND hours <= 24', name='ck_timesheet_entries_hours'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['task_id'], ['tasks.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['entered_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'task_id', 'date', name='uq_timesheet_entries_user_task_date'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('timesheet_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_timesheet_entries_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_timesheet_entries_task_id'), ['task_id'], unique=False)
        batch_op.create_index('ix_timesheet_entries_user_date', ['user_id', 'date'], unique=False)

    op.create_table('timesheet_locks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('locked_by', sa.Integer(), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('month >= 1 AND month <= 12', name='ck_timesheet_locks_month'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.ForeignKeyConstraint(['locked_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'year', 'month', name='uq_timesheet_locks_project_year_month'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('timesheet_locks', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_timesheet_locks_project_id'), ['project_id'], unique=False)
        batch_op.create_index('ix_timesheet_locks_year_month', ['year', 'month'], unique=False)
        batch_op.create_index(
            'uq_timesheet_locks_global_year_month',
            ['year', 'month'],
            unique=True,
            sqlite_where=sa.text('project_id IS NULL'),
            postgresql_where=sa.text('project_id IS NULL'),
        )


def downgrade():
    with op.batch_alter_table('timesheet_locks', schema=None) as batch_op:
        batch_op.drop_index('uq_timesheet_locks_global_year_month')
        batch_op.drop_index('ix_timesheet_locks_year_month')
        batch_op.drop_index(batch_op.f('ix_timesheet_locks_project_id'))
    op.drop_table('timesheet_locks')

    with op.batch_alter_table('timesheet_entries', schema=None) as batch_op:
        batch_op.drop_index('ix_timesheet_entries_user_date')
        batch_op.drop_index(batch_op.f('ix_timesheet_entries_task_id'))
        batch_op.drop_index(batch_op.f('ix_timesheet_entries_user_id'))
    op.drop_table('timesheet_entries')

    with op.batch_alter_table('tasks', schema=None) as batch_op:
        batch_op.drop_index('ix_tasks_sibling_group')
        batch_op.drop_index(batch_op.f('ix_tasks_status'))
        batch_op.drop_index(batch_op.f('ix_tasks_responsible_id'))
        batch_op.drop_index(batch_op.f('ix_tasks_parent_task_id'))
        batch_op.drop_index(batch_op.f('ix_tasks_stage_id'))
        batch_op.drop_index(batch_op.f('ix_tasks_project_id'))
    op.drop_table('tasks')

    with op.batch_alter_table('stages', schema=None) as batch_op:
        batch_op.drop_index('ix_stages_project_order')
        batch_op.drop_index(batch_op.f('ix_stages_project_id'))
    op.drop_table('stages')

    with op.batch_alter_table('project_users', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_project_users_user_id'))
        batch_op.drop_index(batch_op.f('ix_project_users_project_id'))
    op.drop_table('project_users')

    with op.batch_alter_table('projects', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_projects_status'))
        batch_op.drop_index(batch_op.f('ix_projects_project_manager_id'))
    op.drop_table('projects')

    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_users_is_active'))
        batch_op.drop_index('ix_users_user_type')
    op.drop_table('users')
