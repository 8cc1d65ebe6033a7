from dotenv import load_dotenv
import logging
import os
import psycopg2

SCHEMA_STATEMENTS = (
    # Users: portal identity, optional manual-login password, badges and points
    '''
    CREATE TABLE IF NOT EXISTS users (
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
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_users_email ON users (LOWER(email))',
    '''
    CREATE TABLE IF NOT EXISTS resources (
        id SERIAL PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        file_key TEXT NOT NULL,
        subject TEXT NOT NULL,
        uploader_id INTEGER NOT NULL REFERENCES users(id),
        type TEXT NOT NULL DEFAULT 'resource',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_resources_subject_time ON resources (subject, created_at)',
    '''
    CREATE TABLE IF NOT EXISTS announcements (
        id SERIAL PRIMARY KEY,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        subject TEXT NOT NULL DEFAULT 'All',
        author_id INTEGER REFERENCES users(id),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS topics (
        id SERIAL PRIMARY KEY,
        subject TEXT NOT NULL,
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(subject, name)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS questions (
        id SERIAL PRIMARY KEY,
        topic_id INTEGER NOT NULL REFERENCES topics(id),
        question_image_key TEXT,
        answer_image_key TEXT,
        uploader_id INTEGER NOT NULL REFERENCES users(id),
        paper_tag TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_questions_topic ON questions (topic_id, created_at)',
    '''
    CREATE TABLE IF NOT EXISTS posts (
        id SERIAL PRIMARY KEY,
        subject TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        author_id INTEGER NOT NULL REFERENCES users(id),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS comments (
        id SERIAL PRIMARY KEY,
        post_id INTEGER NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
        author_id INTEGER NOT NULL REFERENCES users(id),
        content TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS essays (
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
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_essays_subject_status ON essays (subject, status)',
    '''
    CREATE TABLE IF NOT EXISTS login_attempts (
        id SERIAL PRIMARY KEY,
        email TEXT NOT NULL,
        ip_address TEXT NOT NULL,
        failures INTEGER NOT NULL DEFAULT 0,
        first_failed_at TIMESTAMP,
        last_failed_at TIMESTAMP,
        locked_until TIMESTAMP,
        UNIQUE(email, ip_address)
    )
    ''',
)


def db_execute(cursor, query):
    """
    Executes a SQL query safely using the provided cursor.
    Rolls back if there is an error.
    """
    try:
        cursor.execute(query)
    except Exception as e:
        cursor.connection.rollback()
        logging.error("SQL ERROR: %s", e)
        raise


def init_db(database_url):
    """
    Creates all required tables in PostgreSQL if they don't exist.
    """
    with psycopg2.connect(database_url) as conn:
        with conn.cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                db_execute(cursor, statement)
            conn.commit()
    logging.info("Database schema initialized.")


def count_users(database_url):
    with psycopg2.connect(database_url) as conn:
        with conn.cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM users;")
            return cursor.fetchone()[0]


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    init_db(url)
    print(f"Users: {count_users(url)}")
