"""CLI script to create storefront accounts, e.g. the first moderator.

Usage: python scripts/create_user.py USERNAME PASSWORD [--role Moderator]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `storefront` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from storefront.database import engine, create_db_and_tables
from storefront import models, services
from storefront.repositories import UnitOfWork


def main(username: str, password: str, role: str = models.ROLE_MODERATOR) -> int:
    """Create an account with `role` and print the outcome.

    Returns a process exit code: 0 on success, 1 when the account could
    not be created (taken username, unknown role, failed commit).
    """
    create_db_and_tables()
    with Session(engine) as session:
        auth = services.AuthService(UnitOfWork(session))
        try:
            user = auth.register(username, password, role=role)
        except ValueError as e:
            print(f'Could not create {username}: {e}')
            return 1
        print(f'Created {user.role} account {user.username} (id {user.id})')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('username')
    parser.add_argument('password')
    parser.add_argument('--role', default=models.ROLE_MODERATOR, choices=models.ROLES, help='Account role')
    args = parser.parse_args()
    sys.exit(main(args.username, args.password, role=args.role))
