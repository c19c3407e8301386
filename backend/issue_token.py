"""Print a bearer token for an existing user to stdout.

Usage:
    python -m backend.issue_token user@example.com [--minutes 120]
"""
import argparse
import sys

from backend.auth.jwt_handler import create_access_token
from backend.database import SessionLocal
from backend.models.user import User


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Issue an access token for a clinic user.")
    parser.add_argument("email")
    parser.add_argument("--minutes", type=int, default=None, help="Token lifetime in minutes.")
    args = parser.parse_args(argv)

    email = args.email.strip().lower()
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
    finally:
        db.close()

    if user is None:
        print(f"No user found for {email}", file=sys.stderr)
        sys.exit(1)

    print(create_access_token(subject=user.email, role=user.role, expires_minutes=args.minutes))


if __name__ == "__main__":
    main()
