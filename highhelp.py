"""
HighHelp - Community Web Application for High-School Students

Subject-organized resource sharing, announcements, a past-papers question
bank, a Q&A forum and an essay-feedback exchange. Students sign in through
the school student portal (OAuth) and may set a password for manual login.
"""

from flask import Flask, render_template, request, redirect, url_for, session, flash, send_file, Response, abort, g
from flask_migrate import Migrate
from flask_wtf import FlaskForm
from flask_wtf.csrf import CSRFProtect, CSRFError
from wtforms import PasswordField, validators
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.security import generate_password_hash, check_password_hash
import os
import time
from contextlib import contextmanager
from datetime import datetime, timedelta

import logging
import psycopg2
from psycopg2.extras import DictCursor
from dotenv import load_dotenv

import db as schema
from blob_store import BlobStore, InvalidBlobKey, question_key, resource_key
from models import Announcement, Comment, Essay, Post, Question, Resource, Topic, User
from portal_auth import PortalAuthError, PortalClient
from subjects import (
    ALL_SUBJECTS_LABEL,
    ANNOUNCEMENT_SUBJECTS,
    Domain,
    get_sorted_subjects,
    is_known_subject,
)
from tags import apply_toggles, decode_tags, encode_tags, is_active_flag, render_tags, tag_form_key

load_dotenv()


def env_flag(name, default=''):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes')


def env_int(name, default):
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.")


BASE_DIR = os.path.dirname(os.path.abspath(__file__))

app = Flask(__name__, template_folder='frontend/templates', static_folder='static')
ALLOW_INSECURE_DEFAULTS = env_flag('ALLOW_INSECURE_DEFAULTS')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        # Explicitly opt-in fallback for local/dev only.
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key

MAX_UPLOAD_MB = env_int('MAX_UPLOAD_MB', 25)
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024

app.config.update(
    WTF_CSRF_TIME_LIMIT=None,
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE='Lax',
    SESSION_COOKIE_SECURE=env_flag('SESSION_COOKIE_SECURE', '0' if ALLOW_INSECURE_DEFAULTS else '1'),
    PERMANENT_SESSION_LIFETIME=timedelta(days=7),
    # Question uploads carry two images; the per-file limit is checked separately.
    MAX_CONTENT_LENGTH=2 * MAX_UPLOAD_BYTES + 1024 * 1024,
)

# Initialize CSRF Protection
csrf = CSRFProtect(app)

# Alembic migrations (see migrate.py); schema is raw SQL, so no model metadata.
migrate = Migrate()
migrate.init_app(app, directory=os.path.join(BASE_DIR, 'migrations'))

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")

UPLOAD_DIR = os.environ.get('UPLOAD_DIR', '').strip() or os.path.join(BASE_DIR, 'uploads')
PAST_PAPER_UPLOAD_LEVEL = env_int('PAST_PAPER_UPLOAD_LEVEL', 3)
ESSAY_SUBMIT_COST = env_int('ESSAY_SUBMIT_COST', 1)
ESSAY_FEEDBACK_REWARD = env_int('ESSAY_FEEDBACK_REWARD', 1)
if ESSAY_SUBMIT_COST < 0 or ESSAY_FEEDBACK_REWARD < 0:
    raise RuntimeError("ESSAY_SUBMIT_COST and ESSAY_FEEDBACK_REWARD must not be negative.")

HALF_YEARLY_DATE = os.environ.get('HALF_YEARLY_DATE', '2026-05-25T09:00:00').strip()
HSC_DATE = os.environ.get('HSC_DATE', '2027-10-12T09:00:00').strip()
for _name, _value in (('HALF_YEARLY_DATE', HALF_YEARLY_DATE), ('HSC_DATE', HSC_DATE)):
    try:
        datetime.fromisoformat(_value)
    except ValueError:
        raise RuntimeError(f"{_name} must be an ISO date/time, got {_value!r}.")

LOGIN_MAX_ATTEMPTS = 4
LOGIN_LOCK_MINUTES = 15
OAUTH_STATE_MAX_AGE = 300
RECENT_LIMIT = 5
PERMISSION_LABELS = ["Apple", "Banana", "Oranges", "Watermelon", "Cherry", "Avocado"]

blob_store = BlobStore(UPLOAD_DIR)
portal = PortalClient(
    base_url=os.environ.get('PORTAL_BASE_URL', 'https://student.sbhs.net.au').strip(),
    client_id=os.environ.get('PORTAL_API_CLIENT_ID', '').strip(),
    client_secret=os.environ.get('PORTAL_API_CLIENT_SECRET', '').strip(),
    redirect_uri=os.environ.get('APP_REDIRECT_URI', '').strip(),
    timeout=env_int('PORTAL_TIMEOUT_SECONDS', 10),
)

# Set up logging
logging.basicConfig(filename=os.environ.get('LOG_FILE', 'app.log'), level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")
if not portal.client_id:
    logging.warning("PORTAL_API_CLIENT_ID is not set. Student portal login is disabled.")


def _adapt_query(query):
    return query.replace('?', '%s')

def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)

def get_db():
    """Create a PostgreSQL DB connection."""
    return psycopg2.connect(DATABASE_URL, cursor_factory=DictCursor, connect_timeout=10)

@contextmanager
def db_connection(commit=False):
    """Context manager for PostgreSQL connections with optional commit."""
    conn = get_db()
    try:
        yield conn
        if commit:
            conn.commit()
    finally:
        conn.close()

def fetch_all(query, params=None):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, query, params)
        return c.fetchall()

def fetch_one(query, params=None):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, query, params)
        return c.fetchone()

# Initialize database (can be disabled when schema is managed by migrations).
RUN_STARTUP_DDL = env_flag('RUN_STARTUP_DDL', '1')
if RUN_STARTUP_DDL:
    schema.init_db(DATABASE_URL)
else:
    logging.warning("RUN_STARTUP_DDL is disabled. Ensure schema is already migrated before startup.")

# ==================== HELPERS ====================

def text_response(message, status):
    return Response(message, status=status, mimetype='text/plain')

def format_timestamp(ts):
    if not ts:
        return ''
    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts)
        except ValueError:
            return ts
    return ts.strftime('%d/%m/%Y')

def permission_label(level):
    """Display name for a permission level."""
    try:
        level = int(level)
    except (TypeError, ValueError):
        return "No fruit for you :<"
    if 0 <= level < len(PERMISSION_LABELS):
        return PERMISSION_LABELS[level]
    return "No fruit for you :<"

def censor_email(email):
    """Keep the first three characters of the local part, e.g. 'abc******@x.com'."""
    if not email:
        return ''
    local, _, domain = email.partition('@')
    if not local or not domain:
        return email
    return f"{local[:3]}******@{domain}"

def can_upload_past_papers(user):
    return user is not None and user.permission_level >= PAST_PAPER_UPLOAD_LEVEL

def can_afford_essay(user, cost=None):
    cost = ESSAY_SUBMIT_COST if cost is None else cost
    return user is not None and user.points >= cost

def _upload_size(file_storage):
    stream = file_storage.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(pos)
    return size

def _has_file(file_storage):
    return bool(file_storage and file_storage.filename)

def _discard_blob(key):
    try:
        blob_store.delete(key)
    except (OSError, InvalidBlobKey) as e:
        logging.warning("Could not remove orphaned blob %s: %s", key, e)

def get_client_ip():
    """Best-effort client IP extraction."""
    trust_proxy = env_flag('TRUST_PROXY_HEADERS')
    xff = (request.headers.get('X-Forwarded-For') or '').strip()
    if trust_proxy and xff:
        # Use the left-most client IP when running behind a trusted reverse proxy.
        for part in xff.split(','):
            ip = (part or '').strip()
            if ip:
                return ip
    return (request.remote_addr or '').strip() or 'unknown'

app.add_template_filter(render_tags, 'render_tags')
app.add_template_filter(format_timestamp, 'date')
app.add_template_filter(censor_email, 'censor_email')
app.add_template_filter(permission_label, 'permission_label')

# ==================== USERS ====================

def get_user_by_id(user_id):
    row = fetch_one('SELECT * FROM users WHERE id = ?', (user_id,))
    return User.from_row(row) if row else None

def get_user_by_email(email):
    row = fetch_one('SELECT * FROM users WHERE LOWER(email) = LOWER(?) ORDER BY id LIMIT 1', ((email or '').strip(),))
    return User.from_row(row) if row else None

def upsert_portal_user(info):
    """Find a user by portal student id, creating the account on first login."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT * FROM users WHERE student_id = ?', (info['student_id'],))
        row = c.fetchone()
        if row:
            return User.from_row(row)
        db_execute(
            c,
            '''INSERT INTO users (student_id, first_name, last_name, email, role, permission_level, points)
               VALUES (?, ?, ?, ?, 'student', 0, 0)
               RETURNING *''',
            (info['student_id'], info['first_name'], info['last_name'], info['email']),
        )
        row = c.fetchone()
    if row:
        logging.info("Created user %s for portal student %s", row['id'], info['student_id'])
    return User.from_row(row) if row else None

def update_user_tags(user_id, tags_blob):
    """Overwrite the whole tag blob; concurrent writers: last one wins."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'UPDATE users SET tags = ? WHERE id = ?', (tags_blob, user_id))

def set_user_password(user_id, password_hash):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'UPDATE users SET password_hash = ? WHERE id = ?', (password_hash, user_id))

def is_login_blocked(email, ip_address):
    """Return (blocked, wait_minutes)."""
    purge_old_login_attempts()
    email = (email or '').strip().lower()
    now = datetime.now()
    row = fetch_one(
        '''SELECT failures, locked_until
           FROM login_attempts
           WHERE email = ? AND ip_address = ?
           LIMIT 1''',
        (email, ip_address),
    )
    if not row:
        return False, 0
    locked_until = row[1]
    if locked_until and locked_until > now:
        remaining = (locked_until - now).total_seconds()
        wait_minutes = max(1, int(remaining // 60) + (1 if remaining % 60 else 0))
        return True, wait_minutes
    return False, 0

def register_failed_login(email, ip_address):
    """Track a failed login and lock after max attempts."""
    purge_old_login_attempts()
    email = (email or '').strip().lower()
    now = datetime.now()
    window_start = now - timedelta(minutes=LOGIN_LOCK_MINUTES)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT failures, first_failed_at
               FROM login_attempts
               WHERE email = ? AND ip_address = ?
               LIMIT 1''',
            (email, ip_address),
        )
        row = c.fetchone()
        if not row:
            db_execute(
                c,
                '''INSERT INTO login_attempts (email, ip_address, failures, first_failed_at, last_failed_at, locked_until)
                   VALUES (?, ?, ?, ?, ?, ?)''',
                (email, ip_address, 1, now, now, None),
            )
            return
        failures = int(row[0] or 0)
        first_failed_at = row[1]
        if not first_failed_at or first_failed_at < window_start:
            failures, first_failed_at = 0, now
        failures += 1
        locked_until = now + timedelta(minutes=LOGIN_LOCK_MINUTES) if failures >= LOGIN_MAX_ATTEMPTS else None
        db_execute(
            c,
            '''UPDATE login_attempts
               SET failures = ?, first_failed_at = ?, last_failed_at = ?, locked_until = ?
               WHERE email = ? AND ip_address = ?''',
            (failures, first_failed_at, now, locked_until, email, ip_address),
        )
    if locked_until:
        logging.warning("Manual login locked for %s from %s", email, ip_address)

def clear_failed_login(email, ip_address):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM login_attempts WHERE email = ? AND ip_address = ?',
                   ((email or '').strip().lower(), ip_address))

def purge_old_login_attempts():
    cutoff = datetime.now() - timedelta(days=1)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, '''DELETE FROM login_attempts
                         WHERE last_failed_at < ? AND (locked_until IS NULL OR locked_until < ?)''',
                   (cutoff, datetime.now()))

# ==================== CONTENT ====================

ANNOUNCEMENT_SELECT = '''SELECT a.*, u.first_name, u.last_name, u.tags
                         FROM announcements a
                         LEFT JOIN users u ON a.author_id = u.id'''
RESOURCE_SELECT = '''SELECT r.*, u.first_name, u.last_name, u.tags
                     FROM resources r
                     LEFT JOIN users u ON r.uploader_id = u.id'''
POST_SELECT = '''SELECT p.*, u.first_name, u.last_name, u.tags,
                        (SELECT COUNT(*) FROM comments cm WHERE cm.post_id = p.id) AS comment_count
                 FROM posts p
                 LEFT JOIN users u ON p.author_id = u.id'''
ESSAY_SELECT = '''SELECT e.*, u.first_name, u.last_name, u.tags,
                         rv.first_name AS reviewer_first_name, rv.last_name AS reviewer_last_name,
                         rv.tags AS reviewer_tags
                  FROM essays e
                  LEFT JOIN users u ON e.author_id = u.id
                  LEFT JOIN users rv ON e.reviewer_id = rv.id'''

def load_announcements(subject=None, limit=None):
    query, params = ANNOUNCEMENT_SELECT, []
    if subject:
        query += ' WHERE a.subject = ?'
        params.append(subject)
    query += ' ORDER BY a.created_at DESC'
    if limit:
        query += ' LIMIT ?'
        params.append(limit)
    return [Announcement.from_row(row) for row in fetch_all(query, tuple(params))]

def create_announcement(title, content, subject, author_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'INSERT INTO announcements (title, content, subject, author_id) VALUES (?, ?, ?, ?)',
                   (title, content, subject, author_id))

def load_recent_resources(limit=RECENT_LIMIT):
    rows = fetch_all(RESOURCE_SELECT + ' ORDER BY r.created_at DESC LIMIT ?', (limit,))
    return [Resource.from_row(row) for row in rows]

def load_resources_for_subject(subject):
    rows = fetch_all(RESOURCE_SELECT + ' WHERE r.subject = ? ORDER BY r.created_at DESC', (subject,))
    return [Resource.from_row(row) for row in rows]

def create_resource(title, description, file_key, subject, uploader_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, '''INSERT INTO resources (title, description, file_key, subject, uploader_id, type)
                         VALUES (?, ?, ?, ?, ?, ?)''',
                   (title, description, file_key, subject, uploader_id, 'resource'))

def load_topics_for_subject(subject):
    rows = fetch_all('SELECT * FROM topics WHERE subject = ? ORDER BY name ASC', (subject,))
    return [Topic.from_row(row) for row in rows]

def get_topic(topic_id):
    row = fetch_one('SELECT * FROM topics WHERE id = ?', (topic_id,))
    return Topic.from_row(row) if row else None

def create_topic(subject, name):
    """Insert a topic; returns False when it already exists for the subject."""
    try:
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'INSERT INTO topics (subject, name) VALUES (?, ?)', (subject, name))
    except psycopg2.IntegrityError:
        logging.warning("Topic %r already exists for %s", name, subject)
        return False
    return True

def load_recent_questions(limit=RECENT_LIMIT):
    rows = fetch_all(
        '''SELECT q.*, t.name AS topic_name, t.subject, u.first_name, u.last_name, u.tags
           FROM questions q
           LEFT JOIN topics t ON q.topic_id = t.id
           LEFT JOIN users u ON q.uploader_id = u.id
           ORDER BY q.created_at DESC
           LIMIT ?''',
        (limit,),
    )
    return [Question.from_row(row) for row in rows]

def load_questions_for_topic(topic_id):
    rows = fetch_all(
        '''SELECT q.*, u.first_name, u.last_name, u.tags
           FROM questions q
           LEFT JOIN users u ON q.uploader_id = u.id
           WHERE q.topic_id = ?
           ORDER BY q.created_at DESC''',
        (topic_id,),
    )
    return [Question.from_row(row) for row in rows]

def create_question(topic_id, question_image_key, answer_image_key, uploader_id, paper_tag):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, '''INSERT INTO questions (topic_id, question_image_key, answer_image_key, uploader_id, paper_tag)
                         VALUES (?, ?, ?, ?, ?)''',
                   (topic_id, question_image_key, answer_image_key, uploader_id, paper_tag))

def load_recent_posts(limit=10):
    rows = fetch_all(POST_SELECT + ' ORDER BY p.created_at DESC LIMIT ?', (limit,))
    return [Post.from_row(row) for row in rows]

def load_posts_for_subject(subject):
    rows = fetch_all(POST_SELECT + ' WHERE p.subject = ? ORDER BY p.created_at DESC', (subject,))
    return [Post.from_row(row) for row in rows]

def get_post(post_id):
    row = fetch_one(POST_SELECT + ' WHERE p.id = ?', (post_id,))
    return Post.from_row(row) if row else None

def create_post(subject, title, content, author_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'INSERT INTO posts (subject, title, content, author_id) VALUES (?, ?, ?, ?) RETURNING id',
                   (subject, title, content, author_id))
        return c.fetchone()[0]

def load_comments_for_post(post_id):
    rows = fetch_all(
        '''SELECT cm.*, u.first_name, u.last_name, u.tags
           FROM comments cm
           LEFT JOIN users u ON cm.author_id = u.id
           WHERE cm.post_id = ?
           ORDER BY cm.created_at ASC''',
        (post_id,),
    )
    return [Comment.from_row(row) for row in rows]

def create_comment(post_id, author_id, content):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'INSERT INTO comments (post_id, author_id, content) VALUES (?, ?, ?)',
                   (post_id, author_id, content))

def load_open_essays(limit=10):
    rows = fetch_all(ESSAY_SELECT + " WHERE e.status = 'open' ORDER BY e.created_at DESC LIMIT ?", (limit,))
    return [Essay.from_row(row) for row in rows]

def load_essays_for_subject(subject):
    rows = fetch_all(ESSAY_SELECT + ' WHERE e.subject = ? ORDER BY e.created_at DESC', (subject,))
    return [Essay.from_row(row) for row in rows]

def get_essay(essay_id):
    row = fetch_one(ESSAY_SELECT + ' WHERE e.id = ?', (essay_id,))
    return Essay.from_row(row) if row else None

def submit_essay(author_id, subject, title, content, cost=None):
    """Charge the submission cost and store the essay in one transaction.

    The conditional UPDATE is the point-balance gate: when the author cannot
    cover ``cost`` nothing is written and None is returned. Otherwise the new
    essay id is returned.
    """
    cost = ESSAY_SUBMIT_COST if cost is None else cost
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'UPDATE users SET points = points - ? WHERE id = ? AND points >= ?',
                   (cost, author_id, cost))
        if c.rowcount != 1:
            conn.rollback()
            return None
        db_execute(c, '''INSERT INTO essays (subject, title, content, author_id)
                         VALUES (?, ?, ?, ?) RETURNING id''',
                   (subject, title, content, author_id))
        return c.fetchone()[0]

def give_essay_feedback(essay_id, reviewer_id, feedback, reward=None):
    """Record feedback on an open essay and pay the reviewer. Returns True on success."""
    reward = ESSAY_FEEDBACK_REWARD if reward is None else reward
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, '''UPDATE essays
                         SET status = 'reviewed', reviewer_id = ?, feedback = ?, reviewed_at = ?
                         WHERE id = ? AND status = 'open' AND author_id <> ?''',
                   (reviewer_id, feedback, datetime.now(), essay_id, reviewer_id))
        if c.rowcount != 1:
            conn.rollback()
            return False
        db_execute(c, 'UPDATE users SET points = points + ? WHERE id = ?', (reward, reviewer_id))
        return True

def load_contributions(user_id):
    """Everything a user has posted, newest first, keyed by section."""
    return {
        'resources': [Resource.from_row(row) for row in fetch_all(
            RESOURCE_SELECT + ' WHERE r.uploader_id = ? ORDER BY r.created_at DESC', (user_id,))],
        'announcements': [Announcement.from_row(row) for row in fetch_all(
            ANNOUNCEMENT_SELECT + ' WHERE a.author_id = ? ORDER BY a.created_at DESC', (user_id,))],
        'posts': [Post.from_row(row) for row in fetch_all(
            POST_SELECT + ' WHERE p.author_id = ? ORDER BY p.created_at DESC', (user_id,))],
        'essays': [Essay.from_row(row) for row in fetch_all(
            ESSAY_SELECT + ' WHERE e.author_id = ? ORDER BY e.created_at DESC', (user_id,))],
    }

# ==================== FORMS ====================

class ChangePasswordForm(FlaskForm):
    new_password = PasswordField('New Password', [
        validators.DataRequired(),
        validators.Length(min=6, max=128, message='Password must be at least 6 characters.'),
    ])
    confirm_password = PasswordField('Confirm Password', [
        validators.EqualTo('new_password', message='Passwords must match.'),
    ])

# ==================== REQUEST HOOKS ====================

@app.before_request
def load_current_user():
    """Resolve the signed-in user for this request."""
    g.user = None
    if request.endpoint == 'static':
        return None
    user_id = session.get('user_id')
    if user_id is None:
        return None
    g.user = get_user_by_id(user_id)
    if g.user is None:
        # Account no longer exists; drop the stale cookie.
        session.pop('user_id', None)
    return None

@app.context_processor
def inject_template_helpers():
    return {
        'current_user': g.get('user'),
        'tag_form_key': tag_form_key,
        'is_active_flag': is_active_flag,
    }

def _start_session(user):
    session.clear()
    session.permanent = True
    session['user_id'] = user.id

@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    flash('Form token expired/invalid. Please retry your last action.', 'error')
    return redirect(request.referrer or url_for('home'))

@app.errorhandler(RequestEntityTooLarge)
def upload_too_large(error):
    flash(f'File too large. Maximum size is {MAX_UPLOAD_MB}MB.', 'error')
    return redirect(request.referrer or url_for('home'))

# ==================== ROUTES ====================

@app.route('/')
def home():
    return render_template(
        'home.html',
        announcements=load_announcements(limit=3),
        half_yearly_date=HALF_YEARLY_DATE,
        hsc_date=HSC_DATE,
    )

# ==================== AUTH ROUTES ====================

@app.route('/login', methods=['GET', 'POST'])
def login():
    """Manual email/password login; portal login is linked from the same page."""
    if request.method == 'POST':
        email = request.form.get('email', '').strip().lower()
        password = request.form.get('password', '')
        if not email or not password:
            flash('Please enter email and password.', 'error')
            return render_template('login.html', email=email)

        client_ip = get_client_ip()
        blocked, wait_minutes = is_login_blocked(email, client_ip)
        if blocked:
            flash(f'Too many failed login attempts. Try again in about {wait_minutes} minute(s).', 'error')
            return render_template('login.html', email=email)

        user = get_user_by_email(email)
        if user and user.has_password and check_password_hash(user.password_hash, password):
            clear_failed_login(email, client_ip)
            _start_session(user)
            logging.info("Manual login for user %s", user.id)
            return redirect(url_for('home'))

        register_failed_login(email, client_ip)
        logging.info("Failed manual login for %s from %s", email, client_ip)
        flash('Invalid email or password.', 'error')
        return render_template('login.html', email=email)

    return render_template('login.html')

@app.route('/api/auth/login')
def portal_login():
    state = portal.new_state()
    try:
        target = portal.authorize_url(state)
    except PortalAuthError as e:
        return text_response(e.message, e.status_code)
    session['oauth_state'] = state
    session['oauth_state_at'] = int(time.time())
    return redirect(target)

@app.route('/api/auth/callback')
def portal_callback():
    error = request.args.get('error')
    if error:
        return text_response(f'Auth Error: {error}', 400)

    code = request.args.get('code')
    state = request.args.get('state')
    saved_state = session.pop('oauth_state', None)
    issued_at = session.pop('oauth_state_at', 0)
    state_expired = time.time() - int(issued_at or 0) > OAUTH_STATE_MAX_AGE
    if not code or not state or state != saved_state or state_expired:
        return text_response('Invalid State or Missing Code. Please try logging in again.', 400)

    try:
        access_token = portal.exchange_code(code)
        info = portal.fetch_userinfo(access_token)
    except PortalAuthError as e:
        return text_response(e.message, e.status_code)

    user = upsert_portal_user(info)
    if not user:
        return text_response('Database Error: Failed to create user', 500)
    _start_session(user)
    logging.info("Portal login for user %s", user.id)
    return redirect(url_for('home'))

@app.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('home'))

# ==================== PROFILE ROUTES ====================

@app.route('/profile', methods=['GET', 'POST'])
def profile():
    user = g.user
    if user is None:
        return redirect(url_for('login'))

    password_form = ChangePasswordForm()
    if request.method == 'POST':
        action = request.form.get('action', '')
        if action == 'update_tags':
            new_tags = apply_toggles(decode_tags(user.tags), request.form)
            update_user_tags(user.id, encode_tags(new_tags))
            flash('Tags updated.', 'success')
            return redirect(url_for('profile'))
        if action == 'change_password':
            if password_form.validate_on_submit():
                set_user_password(user.id, generate_password_hash(password_form.new_password.data))
                logging.info("Password set for user %s", user.id)
                flash('Password updated. You can now log in manually with your email.', 'success')
            else:
                for errors in password_form.errors.values():
                    for message in errors:
                        flash(message, 'error')
            return redirect(url_for('profile'))
        return redirect(url_for('profile'))

    return render_template('profile.html', user=user, user_tags=user.tag_state, password_form=password_form)

@app.route('/profile/contributions')
def contributions():
    if g.user is None:
        return redirect(url_for('login'))
    return render_template('contributions.html', **load_contributions(g.user.id))

# ==================== RESOURCE ROUTES ====================

@app.route('/resources')
def resources():
    subject = request.args.get('subject', '')
    if not subject:
        return render_template(
            'resources/index.html',
            recent_resources=load_recent_resources(),
            picker=get_sorted_subjects(Domain.STANDARD),
        )
    return render_template(
        'resources/subject.html',
        subject=subject,
        resources=load_resources_for_subject(subject),
        max_upload_mb=MAX_UPLOAD_MB,
    )

@app.route('/resources', methods=['POST'])
def upload_resource():
    user = g.user
    if user is None:
        return redirect(url_for('login'))

    title = request.form.get('title', '').strip()
    description = request.form.get('description', '').strip()
    subject = request.form.get('subject', '')
    upload = request.files.get('file')

    if not is_known_subject(subject):
        flash('Please choose a subject from the list.', 'error')
        return redirect(url_for('resources'))
    if not title or not _has_file(upload):
        flash('Title and file are required.', 'error')
        return redirect(url_for('resources', subject=subject))
    if _upload_size(upload) > MAX_UPLOAD_BYTES:
        flash(f'File too large. Maximum size is {MAX_UPLOAD_MB}MB.', 'error')
        return redirect(url_for('resources', subject=subject))

    file_key = resource_key(upload.filename)
    try:
        blob_store.put(file_key, upload.stream)
        create_resource(title, description or None, file_key, subject, user.id)
    except Exception:
        logging.exception("Resource upload failed for user %s", user.id)
        _discard_blob(file_key)
        flash('Upload failed. Please try again.', 'error')
    else:
        logging.info("User %s uploaded resource %s", user.id, file_key)
        flash('Resource uploaded.', 'success')
    return redirect(url_for('resources', subject=subject))

@app.route('/download/<path:key>')
def download(key):
    try:
        found = blob_store.open(key)
    except InvalidBlobKey:
        return text_response('Invalid path', 400)
    if not found:
        return text_response('File not found', 404)
    path, content_type = found
    return send_file(path, mimetype=content_type, conditional=True)

# ==================== ANNOUNCEMENT ROUTES ====================

@app.route('/announcements')
def announcements():
    subject_filter = request.args.get('subject', '')
    return render_template(
        'announcements.html',
        announcements=load_announcements(subject=subject_filter or None),
        subject_filter=subject_filter,
        announcement_subjects=ANNOUNCEMENT_SUBJECTS,
    )

@app.route('/announcements', methods=['POST'])
def post_announcement():
    user = g.user
    if user is None:
        return redirect(url_for('login'))
    title = request.form.get('title', '').strip()
    content = request.form.get('content', '').strip()
    subject = request.form.get('subject', '') or ALL_SUBJECTS_LABEL
    if not is_known_subject(subject, ANNOUNCEMENT_SUBJECTS):
        flash('Please choose a subject from the list.', 'error')
        return redirect(url_for('announcements'))
    if not title or not content:
        flash('Title and content are required.', 'error')
        return redirect(url_for('announcements'))
    create_announcement(title, content, subject, user.id)
    logging.info("User %s posted an announcement for %s", user.id, subject)
    return redirect(url_for('announcements'))

# ==================== PAST PAPER ROUTES ====================

@app.route('/past-papers')
def past_papers():
    subject = request.args.get('subject', '')
    topic_id_str = request.args.get('topic_id', '')

    if not subject:
        return render_template(
            'past_papers/index.html',
            recent_questions=load_recent_questions(),
            picker=get_sorted_subjects(Domain.STANDARD),
        )

    if not topic_id_str:
        return render_template(
            'past_papers/subject.html',
            subject=subject,
            topics=load_topics_for_subject(subject),
            can_upload=can_upload_past_papers(g.user),
        )

    try:
        topic_id = int(topic_id_str)
    except ValueError:
        topic_id = 0
    topic = get_topic(topic_id)
    if not topic or topic.subject != subject:
        return text_response('Topic not found', 404)
    return render_template(
        'past_papers/topic.html',
        subject=subject,
        topic=topic,
        questions=load_questions_for_topic(topic.id),
    )

@app.route('/past-papers/topics', methods=['POST'])
def create_past_paper_topic():
    user = g.user
    if not can_upload_past_papers(user):
        return text_response('Unauthorized', 401)
    subject = request.form.get('subject', '')
    name = request.form.get('name', '').strip()
    if not is_known_subject(subject):
        flash('Please choose a subject from the list.', 'error')
        return redirect(url_for('past_papers'))
    if name:
        if create_topic(subject, name):
            logging.info("User %s created topic %r for %s", user.id, name, subject)
        else:
            flash(f'Topic "{name}" already exists.', 'error')
    return redirect(url_for('past_papers', subject=subject))

@app.route('/past-papers/questions', methods=['POST'])
def upload_past_paper_question():
    user = g.user
    if not can_upload_past_papers(user):
        return text_response('Unauthorized', 401)

    subject = request.form.get('subject', '')
    topic_id_str = request.form.get('topic_id', '').strip()
    paper_tag = request.form.get('paper_tag', '').strip() or None
    question_image = request.files.get('question_image')
    answer_image = request.files.get('answer_image')

    if not _has_file(question_image) or not subject or not topic_id_str:
        return text_response('Missing required fields', 400)
    try:
        topic_id = int(topic_id_str)
    except ValueError:
        return text_response('Missing required fields', 400)
    topic = get_topic(topic_id)
    if not topic or topic.subject != subject:
        return text_response('Topic not found', 404)

    images = [('q', question_image)]
    if _has_file(answer_image):
        images.append(('a', answer_image))
    for _, image in images:
        if _upload_size(image) > MAX_UPLOAD_BYTES:
            flash(f'File too large. Maximum size is {MAX_UPLOAD_MB}MB.', 'error')
            return redirect(url_for('past_papers', subject=subject))

    stored = {}
    try:
        for kind, image in images:
            key = question_key(kind, image.filename)
            blob_store.put(key, image.stream)
            stored[kind] = key
        create_question(topic.id, stored['q'], stored.get('a'), user.id, paper_tag)
    except Exception:
        logging.exception("Question upload failed for user %s", user.id)
        for key in stored.values():
            _discard_blob(key)
        flash('Upload failed. Please try again.', 'error')
    else:
        logging.info("User %s added a question to topic %s", user.id, topic.id)
        flash('Question added.', 'success')
    return redirect(url_for('past_papers', subject=subject))

# ==================== FORUM ROUTES ====================

@app.route('/forum')
def forum():
    subject = request.args.get('subject', '')
    if not subject:
        return render_template(
            'forum/index.html',
            recent_posts=load_recent_posts(),
            picker=get_sorted_subjects(Domain.STANDARD),
        )
    return render_template('forum/subject.html', subject=subject, posts=load_posts_for_subject(subject))

@app.route('/forum/posts', methods=['POST'])
def create_forum_post():
    user = g.user
    if user is None:
        return redirect(url_for('login'))
    subject = request.form.get('subject', '')
    title = request.form.get('title', '').strip()
    content = request.form.get('content', '').strip()
    if not is_known_subject(subject):
        flash('Please choose a subject from the list.', 'error')
        return redirect(url_for('forum'))
    if not title or not content:
        flash('Title and question are required.', 'error')
        return redirect(url_for('forum', subject=subject))
    post_id = create_post(subject, title, content, user.id)
    logging.info("User %s asked question %s in %s", user.id, post_id, subject)
    return redirect(url_for('forum_post', post_id=post_id))

@app.route('/forum/posts/<int:post_id>')
def forum_post(post_id):
    post = get_post(post_id)
    if not post:
        abort(404)
    return render_template('forum/post.html', post=post, comments=load_comments_for_post(post_id))

@app.route('/forum/posts/<int:post_id>/comments', methods=['POST'])
def add_forum_comment(post_id):
    user = g.user
    if user is None:
        return redirect(url_for('login'))
    if not get_post(post_id):
        abort(404)
    content = request.form.get('content', '').strip()
    if content:
        create_comment(post_id, user.id, content)
    else:
        flash('Answer cannot be empty.', 'error')
    return redirect(url_for('forum_post', post_id=post_id))

# ==================== ESSAY ROUTES ====================

@app.route('/essays')
def essays():
    subject = request.args.get('subject', '')
    if not subject:
        return render_template(
            'essays/index.html',
            open_essays=load_open_essays(),
            picker=get_sorted_subjects(Domain.ESSAY),
            submit_cost=ESSAY_SUBMIT_COST,
            feedback_reward=ESSAY_FEEDBACK_REWARD,
        )
    return render_template(
        'essays/subject.html',
        subject=subject,
        essays=load_essays_for_subject(subject),
        submit_cost=ESSAY_SUBMIT_COST,
        can_submit=can_afford_essay(g.user),
    )

@app.route('/essays', methods=['POST'])
def submit_essay_route():
    user = g.user
    if user is None:
        return redirect(url_for('login'))
    subject = request.form.get('subject', '')
    title = request.form.get('title', '').strip()
    content = request.form.get('content', '').strip()
    if not is_known_subject(subject):
        flash('Please choose a subject from the list.', 'error')
        return redirect(url_for('essays'))
    if not title or not content:
        flash('Title and essay text are required.', 'error')
        return redirect(url_for('essays', subject=subject))

    not_enough = (f'You need at least {ESSAY_SUBMIT_COST} point(s) to submit an essay. '
                  'Earn points by giving feedback on other essays.')
    if not can_afford_essay(user):
        flash(not_enough, 'error')
        return redirect(url_for('essays', subject=subject))
    essay_id = submit_essay(user.id, subject, title, content)
    if essay_id is None:
        # Balance changed between the page load and the write.
        flash(not_enough, 'error')
        return redirect(url_for('essays', subject=subject))
    logging.info("User %s submitted essay %s (%s)", user.id, essay_id, subject)
    flash('Essay submitted for feedback.', 'success')
    return redirect(url_for('essay_detail', essay_id=essay_id))

@app.route('/essays/<int:essay_id>')
def essay_detail(essay_id):
    essay = get_essay(essay_id)
    if not essay:
        abort(404)
    user = g.user
    can_review = user is not None and essay.is_open and essay.author_id != user.id
    return render_template('essays/essay.html', essay=essay, can_review=can_review,
                           feedback_reward=ESSAY_FEEDBACK_REWARD)

@app.route('/essays/<int:essay_id>/feedback', methods=['POST'])
def essay_feedback(essay_id):
    user = g.user
    if user is None:
        return redirect(url_for('login'))
    essay = get_essay(essay_id)
    if not essay:
        abort(404)
    feedback = request.form.get('feedback', '').strip()
    if essay.author_id == user.id:
        flash('You cannot give feedback on your own essay.', 'error')
    elif not essay.is_open:
        flash('This essay has already been reviewed.', 'error')
    elif not feedback:
        flash('Feedback cannot be empty.', 'error')
    elif give_essay_feedback(essay_id, user.id, feedback):
        logging.info("User %s reviewed essay %s", user.id, essay_id)
        flash(f'Thanks! You earned {ESSAY_FEEDBACK_REWARD} point(s).', 'success')
    else:
        flash('This essay has already been reviewed.', 'error')
    return redirect(url_for('essay_detail', essay_id=essay_id))

# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = env_flag('FLASK_DEBUG', '0')
    app.run(host='0.0.0.0', port=port, debug=debug)
