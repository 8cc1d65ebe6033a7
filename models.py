"""Record types for rows read from the database.

Rows come back from psycopg2's DictCursor (or plain dicts in tests). Each
``from_row`` reads required columns strictly so a malformed row fails at the
boundary instead of deep inside a template.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from tags import active_labels, decode_tags


def _get(row, key, default=None):
    try:
        value = row[key]
    except (KeyError, IndexError):
        return default
    return default if value is None else value


def _required(row, key):
    value = row[key]
    if value is None:
        raise ValueError(f"Column {key!r} must not be NULL")
    return value


def _opt_int(row, key):
    value = _get(row, key)
    return int(value) if value is not None else None


@dataclass
class Author:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    tags: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            first_name=_get(row, 'first_name'),
            last_name=_get(row, 'last_name'),
            tags=_get(row, 'tags'),
        )

    @property
    def display_name(self):
        if not self.first_name:
            return 'Unknown'
        return f"{self.first_name} {self.last_name or ''}".strip()

    @property
    def active_tags(self):
        return active_labels(self.tags)


@dataclass
class User:
    id: int
    email: str
    first_name: str = ''
    last_name: str = ''
    student_id: Optional[str] = None
    role: str = 'student'
    permission_level: int = 0
    points: int = 0
    tags: Optional[str] = None
    password_hash: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            email=_get(row, 'email', ''),
            first_name=_get(row, 'first_name', ''),
            last_name=_get(row, 'last_name', ''),
            student_id=_get(row, 'student_id'),
            role=_get(row, 'role', 'student'),
            permission_level=int(_get(row, 'permission_level', 0)),
            points=int(_get(row, 'points', 0)),
            tags=_get(row, 'tags'),
            password_hash=_get(row, 'password_hash'),
            created_at=_get(row, 'created_at'),
        )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def tag_state(self):
        return decode_tags(self.tags)

    @property
    def has_password(self):
        return bool(self.password_hash)


@dataclass
class Resource:
    id: int
    title: str
    file_key: str
    subject: str
    uploader_id: int
    description: Optional[str] = None
    type: str = 'resource'
    created_at: Optional[datetime] = None
    author: Author = field(default_factory=Author)

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            title=_required(row, 'title'),
            file_key=_required(row, 'file_key'),
            subject=_required(row, 'subject'),
            uploader_id=int(_required(row, 'uploader_id')),
            description=_get(row, 'description'),
            type=_get(row, 'type', 'resource'),
            created_at=_get(row, 'created_at'),
            author=Author.from_row(row),
        )


@dataclass
class Announcement:
    id: int
    title: str
    content: str
    subject: str
    author_id: Optional[int] = None
    created_at: Optional[datetime] = None
    author: Author = field(default_factory=Author)

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            title=_required(row, 'title'),
            content=_required(row, 'content'),
            subject=_required(row, 'subject'),
            author_id=_opt_int(row, 'author_id'),
            created_at=_get(row, 'created_at'),
            author=Author.from_row(row),
        )


@dataclass
class Topic:
    id: int
    subject: str
    name: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            subject=_required(row, 'subject'),
            name=_required(row, 'name'),
            created_at=_get(row, 'created_at'),
        )


@dataclass
class Question:
    id: int
    topic_id: int
    uploader_id: int
    question_image_key: Optional[str] = None
    answer_image_key: Optional[str] = None
    paper_tag: Optional[str] = None
    created_at: Optional[datetime] = None
    topic_name: Optional[str] = None
    subject: Optional[str] = None
    author: Author = field(default_factory=Author)

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            topic_id=int(_required(row, 'topic_id')),
            uploader_id=int(_required(row, 'uploader_id')),
            question_image_key=_get(row, 'question_image_key'),
            answer_image_key=_get(row, 'answer_image_key'),
            paper_tag=_get(row, 'paper_tag'),
            created_at=_get(row, 'created_at'),
            topic_name=_get(row, 'topic_name'),
            subject=_get(row, 'subject'),
            author=Author.from_row(row),
        )


@dataclass
class Post:
    id: int
    subject: str
    title: str
    content: str
    author_id: int
    created_at: Optional[datetime] = None
    comment_count: int = 0
    author: Author = field(default_factory=Author)

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            subject=_required(row, 'subject'),
            title=_required(row, 'title'),
            content=_required(row, 'content'),
            author_id=int(_required(row, 'author_id')),
            created_at=_get(row, 'created_at'),
            comment_count=int(_get(row, 'comment_count', 0)),
            author=Author.from_row(row),
        )


@dataclass
class Comment:
    id: int
    post_id: int
    author_id: int
    content: str
    created_at: Optional[datetime] = None
    author: Author = field(default_factory=Author)

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            post_id=int(_required(row, 'post_id')),
            author_id=int(_required(row, 'author_id')),
            content=_required(row, 'content'),
            created_at=_get(row, 'created_at'),
            author=Author.from_row(row),
        )


ESSAY_OPEN = 'open'
ESSAY_REVIEWED = 'reviewed'


@dataclass
class Essay:
    id: int
    subject: str
    title: str
    content: str
    author_id: int
    status: str = ESSAY_OPEN
    reviewer_id: Optional[int] = None
    feedback: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    author: Author = field(default_factory=Author)
    reviewer: Author = field(default_factory=Author)

    @classmethod
    def from_row(cls, row):
        return cls(
            id=int(_required(row, 'id')),
            subject=_required(row, 'subject'),
            title=_required(row, 'title'),
            content=_required(row, 'content'),
            author_id=int(_required(row, 'author_id')),
            status=_get(row, 'status', ESSAY_OPEN),
            reviewer_id=_opt_int(row, 'reviewer_id'),
            feedback=_get(row, 'feedback'),
            reviewed_at=_get(row, 'reviewed_at'),
            created_at=_get(row, 'created_at'),
            author=Author.from_row(row),
            reviewer=Author(
                first_name=_get(row, 'reviewer_first_name'),
                last_name=_get(row, 'reviewer_last_name'),
                tags=_get(row, 'reviewer_tags'),
            ),
        )

    @property
    def is_open(self):
        return self.status == ESSAY_OPEN
