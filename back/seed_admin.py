"""
Create the first (and only) admin account.

Usage: python seed_admin.py --email admin@example.com --username admin --password yourpassword [--json]
"""
import argparse
import sys

import storage
from logger import log
from security import hash_password


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create the storefront's admin account.")
    parser.add_argument("--email", default="admin@wbnt.com")
    parser.add_argument("--username", default="admin")
    parser.add_argument("--password", default="admin123")
    parser.add_argument("--json", action="store_true", help="write to the JSON file store instead of SQLite")
    return parser.parse_args(argv)


def seed_admin(store, email, username, password):
    pwd_hash, salt = hash_password(password)
    return store.create_user(email.strip().lower(), username.strip(), pwd_hash, salt, "admin")


def main(argv=None, store=None):
    args = parse_args(argv)
    store = store or storage.open_store(use_json=True if args.json else None)
    try:
        user = seed_admin(store, args.email, args.username, args.password)
    except storage.AdminConstraintError:
        log("An admin account already exists. Only one admin is allowed.", "ERROR")
        return 1
    except storage.DuplicateError:
        log("Email or username already exists.", "ERROR")
        return 1
    log(f"Admin account created: {user['email']} / {user['username']} (id={user['id']})", "SUCCESS")
    return 0


if __name__ == '__main__':
    sys.exit(main())
