"""Initial schema for HighHelp.

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes."""

    # Users: portal identity, optional manual-login password, badges and points
    op.execute('''CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    student_id TEXT UNIQUE,
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    email TEXT NOT NULL DEFAULT '',
                    password_hash TEXT,
                    role TEXT NOT NULL DEFAULT 'student',
                    permission_level INTEGER NOT NULL DEFAULT 0,
                    tags TEXT,
                    points INTEGER NOT NULL DEFAULT 0 CHECK (points >= 0),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('CREATE INDEX IF NOT EXISTS idx_users_email ON users (LOWER(email))')

    op.execute('''CREATE TABLE IF NOT EXISTS resources (
                    id SERIAL PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    file_key TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    uploader_id INTEGER NOT NULL REFERENCES users(id),
                    type TEXT NOT NULL DEFAULT 'resource',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('CREATE INDEX IF NOT EXISTS idx_resources_subject_time ON resources (subject, created_at)')

    op.execute('''CREATE TABLE IF NOT EXISTS announcements (
                    id SERIAL PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    subject TEXT NOT NULL DEFAULT 'All',
                    author_id INTEGER REFERENCES users(id),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Past papers: topics per subject, question/answer images per topic
    op.execute('''CREATE TABLE IF NOT EXISTS topics (
                    id SERIAL PRIMARY KEY,
                    subject TEXT NOT NULL,
                    name TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(subject, name)
                )''')
    op.execute('''CREATE TABLE IF NOT EXISTS questions (
                    id SERIAL PRIMARY KEY,
                    topic_id INTEGER NOT NULL REFERENCES topics(id),
                    question_image_key TEXT,
                    answer_image_key TEXT,
                    uploader_id INTEGER NOT NULL REFERENCES users(id),
                    paper_tag TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('CREATE INDEX IF NOT EXISTS idx_questions_topic ON questions (topic_id, created_at)')

    # Q&A forum
    op.execute('''CREATE TABLE IF NOT EXISTS posts (
                    id SERIAL PRIMARY KEY,
                    subject TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    author_id INTEGER NOT NULL REFERENCES users(id),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('''CREATE TABLE IF NOT EXISTS comments (
                    id SERIAL PRIMARY KEY,
                    post_id INTEGER NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
                    author_id INTEGER NOT NULL REFERENCES users(id),
                    content TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Essay feedback exchange
    op.execute('''CREATE TABLE IF NOT EXISTS essays (
                    id SERIAL PRIMARY KEY,
                    subject TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    author_id INTEGER NOT NULL REFERENCES users(id),
                    status TEXT NOT NULL DEFAULT 'open',
                    reviewer_id INTEGER REFERENCES users(id),
                    feedback TEXT,
                    reviewed_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('CREATE INDEX IF NOT EXISTS idx_essays_subject_status ON essays (subject, status)')

    # Manual login lockout per (email, ip)
    op.execute('''CREATE TABLE IF NOT EXISTS login_attempts (
                    id SERIAL PRIMARY KEY,
                    email TEXT NOT NULL,
                    ip_address TEXT NOT NULL,
                    failures INTEGER NOT NULL DEFAULT 0,
                    first_failed_at TIMESTAMP,
                    last_failed_at TIMESTAMP,
                    locked_until TIMESTAMP,
                    UNIQUE(email, ip_address)
                )''')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS login_attempts CASCADE')
    op.execute('DROP TABLE IF EXISTS essays CASCADE')
    op.execute('DROP TABLE IF EXISTS comments CASCADE')
    op.execute('DROP TABLE IF EXISTS posts CASCADE')
    op.execute('DROP TABLE IF EXISTS questions CASCADE')
    op.execute('DROP TABLE IF EXISTS topics CASCADE')
    op.execute('DROP TABLE IF EXISTS announcements CASCADE')
    op.execute('DROP TABLE IF EXISTS resources CASCADE')
    op.execute('DROP TABLE IF EXISTS users CASCADE')
