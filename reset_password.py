"""Set a manual-login password for a user, looked up by email.

Usage:
  RESET_EMAIL=someone@student.sbhs.nsw.edu.au RESET_PASSWORD=... python reset_password.py
"""

import os

import psycopg2
from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

MIN_PASSWORD_LENGTH = 6


def main():
    load_dotenv()
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    email = (os.getenv("RESET_EMAIL") or "").strip().lower()
    raw_password = os.getenv("RESET_PASSWORD") or ""

    if not database_url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    if not email:
        raise RuntimeError("RESET_EMAIL is required.")
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise RuntimeError(f"RESET_PASSWORD must be at least {MIN_PASSWORD_LENGTH} characters.")

    password_hash = generate_password_hash(raw_password)

    with psycopg2.connect(database_url) as conn:
        with conn.cursor() as c:
            c.execute(
                "UPDATE users SET password_hash = %s WHERE LOWER(email) = %s",
                (password_hash, email),
            )
            updated = int(c.rowcount or 0)
        conn.commit()

    if updated:
        print(f"Password reset successfully for {email}.")
    else:
        print(f"No user found for {email}.")


if __name__ == "__main__":
    main()
