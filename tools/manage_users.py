"""
Administrative user changes that have no page in the web app.

Usage (from the repository root):
  python -m tools.manage_users grant-tag --email someone@example.com "Moderator"
  python -m tools.manage_users revoke-tag --student-id 441234567 "Moderator"
  python -m tools.manage_users set-permission --email someone@example.com 3
  python -m tools.manage_users add-points --email someone@example.com 5

Granted tags start visible; the user can hide or show them from their
profile but cannot create new ones.
"""

import argparse
import os
import sys

import psycopg2
from dotenv import load_dotenv
from psycopg2.extras import DictCursor

from tags import decode_tags, encode_tags


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage HighHelp users.")
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL", ""), help="PostgreSQL URL")
    who = parser.add_mutually_exclusive_group(required=True)
    who.add_argument("--email", help="User email (case-insensitive)")
    who.add_argument("--student-id", help="Portal student id")

    sub = parser.add_subparsers(dest="command", required=True)
    grant = sub.add_parser("grant-tag", help="Give the user a tag (visible)")
    grant.add_argument("label")
    revoke = sub.add_parser("revoke-tag", help="Remove a tag from the user")
    revoke.add_argument("label")
    perm = sub.add_parser("set-permission", help="Set the user's permission level")
    perm.add_argument("level", type=int)
    points = sub.add_parser("add-points", help="Add (or, if negative, remove) points")
    points.add_argument("amount", type=int)
    return parser.parse_args(argv)


def find_user(cur, email=None, student_id=None):
    if email:
        cur.execute("SELECT id, tags, points FROM users WHERE LOWER(email) = %s", (email.strip().lower(),))
    else:
        cur.execute("SELECT id, tags, points FROM users WHERE student_id = %s", (student_id.strip(),))
    return cur.fetchone()


def grant_tag(cur, user, label: str) -> str:
    state = decode_tags(user["tags"])
    state[label] = 1
    cur.execute("UPDATE users SET tags = %s WHERE id = %s", (encode_tags(state), user["id"]))
    return f"Granted tag {label!r}."


def revoke_tag(cur, user, label: str) -> str:
    state = decode_tags(user["tags"])
    if label not in state:
        return f"User has no tag {label!r}."
    del state[label]
    cur.execute("UPDATE users SET tags = %s WHERE id = %s", (encode_tags(state), user["id"]))
    return f"Revoked tag {label!r}."


def set_permission(cur, user, level: int) -> str:
    if level < 0:
        raise ValueError("Permission level cannot be negative.")
    cur.execute("UPDATE users SET permission_level = %s WHERE id = %s", (level, user["id"]))
    return f"Permission level set to {level}."


def add_points(cur, user, amount: int) -> str:
    cur.execute(
        "UPDATE users SET points = points + %s WHERE id = %s AND points + %s >= 0 RETURNING points",
        (amount, user["id"], amount),
    )
    row = cur.fetchone()
    if row is None:
        raise ValueError(f"User has {user['points']} point(s); cannot remove {-amount}.")
    return f"Points now {row[0]}."


COMMANDS = {
    "grant-tag": lambda cur, user, args: grant_tag(cur, user, args.label),
    "revoke-tag": lambda cur, user, args: revoke_tag(cur, user, args.label),
    "set-permission": lambda cur, user, args: set_permission(cur, user, args.level),
    "add-points": lambda cur, user, args: add_points(cur, user, args.amount),
}


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    database_url = (args.database_url or os.environ.get("DATABASE_URL", "")).strip()
    if not database_url:
        print("Error: DATABASE_URL is required (or pass --database-url).", file=sys.stderr)
        return 1

    with psycopg2.connect(database_url) as conn:
        with conn.cursor(cursor_factory=DictCursor) as cur:
            user = find_user(cur, email=args.email, student_id=args.student_id)
            if user is None:
                print("Error: no matching user.", file=sys.stderr)
                return 1
            try:
                message = COMMANDS[args.command](cur, user, args)
            except ValueError as e:
                conn.rollback()
                print(f"Error: {e}", file=sys.stderr)
                return 1
        conn.commit()
    print(message)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
