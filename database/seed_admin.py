import argparse
import sqlite3
import sys

from database.db import create_admin_user, create_tables


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create an additional admin account.")
    parser.add_argument("username")
    parser.add_argument("password")
    args = parser.parse_args(argv)

    create_tables()
    try:
        admin_id = create_admin_user(args.username, args.password)
    except ValueError as e:
        print(f"[seed] {e}")
        return 1
    except sqlite3.IntegrityError:
        print(f"[seed] Admin {args.username!r} already exists.")
        return 1

    print(f"[seed] Admin {args.username!r} created (id={admin_id}).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
