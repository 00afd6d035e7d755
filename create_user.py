"""
Create an account for the results service, or reset an existing one's password.

Usage:
  USER_PASSWORD=... python create_user.py jdoe --role teacher --school SCH001 --name "Jane Doe"

Without USER_PASSWORD the password is prompted for.
"""

import argparse
import getpass
import os
import sys

import psycopg2
from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

ROLES = ('admin', 'teacher', 'student')
MIN_PASSWORD_LENGTH = 8


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user or reset a user's password.")
    parser.add_argument("username", help="Login name (admission number for students)")
    parser.add_argument("--role", choices=ROLES, default="student", help="Account role")
    parser.add_argument("--school", default="", help="School ID the account belongs to")
    parser.add_argument("--name", default="", help="Full name shown on the result sheet")
    parser.add_argument("--class-name", default="", help="Class for student accounts")
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL", ""), help="PostgreSQL URL")
    return parser.parse_args(argv)


def read_password():
    raw_password = os.getenv("USER_PASSWORD") or ""
    if not raw_password:
        raw_password = getpass.getpass("Password: ")
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise RuntimeError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return raw_password


def upsert_user(conn, args, password_hash):
    """Insert the user, or refresh the password and profile if the username exists. Returns True when created."""
    with conn.cursor() as c:
        c.execute(
            "UPDATE users SET password_hash = %s, role = %s, "
            "school_id = COALESCE(NULLIF(%s, ''), school_id), "
            "full_name = COALESCE(NULLIF(%s, ''), full_name), "
            "class_name = COALESCE(NULLIF(%s, ''), class_name) "
            "WHERE LOWER(username) = LOWER(%s)",
            (password_hash, args.role, args.school, args.name, args.class_name, args.username),
        )
        if int(c.rowcount or 0):
            return False
        c.execute(
            "INSERT INTO users (username, password_hash, role, school_id, full_name, admission_number, class_name) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s)",
            (
                args.username,
                password_hash,
                args.role,
                args.school or None,
                args.name or args.username,
                args.username if args.role == "student" else None,
                args.class_name or None,
            ),
        )
    return True


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)
    args.username = (args.username or "").strip()
    database_url = (args.database_url or os.getenv("DATABASE_URL") or "").strip()

    if not database_url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env or pass --database-url.")
    if not args.username:
        raise RuntimeError("A username is required.")
    if args.role != "admin" and not args.school:
        raise RuntimeError("--school is required for teacher and student accounts.")

    password_hash = generate_password_hash(read_password())

    with psycopg2.connect(database_url) as conn:
        created = upsert_user(conn, args, password_hash)
        conn.commit()

    if created:
        print(f"Created {args.role} account {args.username}.")
    else:
        print(f"Updated account {args.username}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
