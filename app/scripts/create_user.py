"""
Create an account with its profile (e.g. a manager or viewer, since self-registration
always yields admin). Run from project root:
  python -m app.scripts.create_user EMAIL PASSWORD [role] [--unconfirmed]
Example:
  python -m app.scripts.create_user owner@example.com your-secure-password manager
"""
import argparse
import logging
import sys

from sqlalchemy.exc import IntegrityError

from app.core.database import SessionLocal
from app.core.security import PASSWORD_MAX_LEN, PASSWORD_MIN_LEN, generate_opaque_token, hash_password
from app.models import PROFILE_ROLES
from app.services import account_store
from app.services.accounts import EMAIL_PATTERN

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a Business Inventory account.")
    parser.add_argument("email", help="Email address (stored lowercase)")
    parser.add_argument("password", help=f"Password ({PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument("role", nargs="?", default="user", choices=PROFILE_ROLES)
    parser.add_argument("--full-name", default="", help="Full name")
    parser.add_argument("--business-name", default="", help="Business name")
    parser.add_argument(
        "--unconfirmed",
        action="store_true",
        help="Leave the email unconfirmed (a confirmation token is generated and logged)",
    )
    args = parser.parse_args(argv)

    email = account_store.normalize_email(args.email)
    if not EMAIL_PATTERN.match(email):
        print("Invalid email address.", file=sys.stderr)
        return 1
    if not (PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN):
        print(
            f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.",
            file=sys.stderr,
        )
        return 1

    confirmation_token = generate_opaque_token() if args.unconfirmed else None
    db = SessionLocal()
    try:
        if account_store.find_by_email(db, email) is not None:
            print(f"Account '{email}' already exists.", file=sys.stderr)
            return 1
        try:
            account = account_store.insert_account_and_profile(
                db,
                email=email,
                password_hash=hash_password(args.password),
                confirmation_token=confirmation_token,
                full_name=args.full_name,
                business_name=args.business_name,
                role=args.role,
                confirmed=not args.unconfirmed,
            )
        except IntegrityError:
            print(f"Account '{email}' already exists.", file=sys.stderr)
            return 1
        if confirmation_token:
            logger.info("Confirmation token for %s: %s", email, confirmation_token)
        print(f"Created account '{account.email}' with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
