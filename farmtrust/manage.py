"""
Maintenance commands.

    python -m farmtrust.manage create-admin --username admin --email admin@farmtrust.local --password ...
    python -m farmtrust.manage auto-release      # run from cron, e.g. hourly
"""
import argparse
import sys
from werkzeug.security import generate_password_hash
from farmtrust.app import create_app
from farmtrust.db import db
from farmtrust.models import Role, User
from farmtrust.services.escrow_service import process_auto_release


def create_admin(username="admin", email="admin@farmtrust.local", password="admin123"):
    existing = User.query.filter(
        (User.username == username) | (User.email == email)
    ).first()

    if existing:
        print(f"User '{username}' already exists (ID: {existing.id})")
        if existing.role != Role.ADMIN:
            existing.role = Role.ADMIN
            existing.locked = False
            db.session.commit()
            print("Promoted to admin")
        return existing

    admin = User(
        username=username,
        email=email,
        password=generate_password_hash(password),
        role=Role.ADMIN,
        locked=False,
    )
    db.session.add(admin)
    db.session.commit()
    print(f"Admin created: {username} <{email}> (ID: {admin.id})")
    return admin


def auto_release():
    results = process_auto_release()
    released = sum(1 for r in results if r["success"])
    for r in results:
        mark = "ok" if r["success"] else "FAILED"
        print(f"[{mark}] escrow {r['escrow_id']} / order {r['order_id']}: {r['message']}")
    print(f"Processed {len(results)} escrows, released {released}")
    return results


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="farmtrust.manage", description="FarmTrust maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    p_admin = sub.add_parser("create-admin", help="create or promote an admin user")
    p_admin.add_argument("--username", default="admin")
    p_admin.add_argument("--email", default="admin@farmtrust.local")
    p_admin.add_argument("--password", default="admin123")

    sub.add_parser("auto-release", help="release escrows whose confirmation window has lapsed")

    args = parser.parse_args(argv)
    app = create_app()
    with app.app_context():
        if args.command == "create-admin":
            create_admin(args.username, args.email, args.password)
            return 0
        results = auto_release()
        return 0 if all(r["success"] for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())
