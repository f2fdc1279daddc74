import argparse
import getpass
from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/create_super_admin.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from cohort_admin.db import Base, SessionLocal, engine
from cohort_admin.services.auth_service import bootstrap_super_admin


def main() -> int:
    parser = argparse.ArgumentParser(description='Create the first super admin account.')
    parser.add_argument('email')
    parser.add_argument('--first-name', default='')
    parser.add_argument('--last-name', default='')
    args = parser.parse_args()

    password = getpass.getpass('Password: ')
    if password != getpass.getpass('Repeat password: '):
        print('Passwords do not match.')
        return 1

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        profile = bootstrap_super_admin(
            db,
            email=args.email,
            password=password,
            first_name=args.first_name,
            last_name=args.last_name,
        )
    except ValueError as exc:
        print(f'Could not create super admin: {exc}')
        return 1
    finally:
        db.close()

    print(f'Super admin created: {profile.email} (id={profile.id})')
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
