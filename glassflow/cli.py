"""CLI for GlassFlow: database setup, shop and user registration, offer sweeps."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys


async def cmd_init_db(args):
    from glassflow.db.engine import create_all

    await create_all()
    print("Database tables created")


async def cmd_create_shop(args):
    from pydantic import ValidationError

    from glassflow.db import crud
    from glassflow.db.engine import async_session_factory, create_all
    from glassflow.schemas import ShopCreate

    try:
        data = ShopCreate(
            name=args.name.strip(),
            email=args.email,
            phone=args.phone,
            address=args.address,
            city=args.city,
            postal_code=args.postal_code,
            mobile_service=args.mobile,
            adas_calibration_capability=args.adas,
            service_capability=args.capability,
        )
    except ValidationError as exc:
        err = exc.errors()[0]
        print(f"Invalid {err['loc'][0]}: {err['msg']}")
        sys.exit(1)

    await create_all()
    async with async_session_factory() as db:
        shop = await crud.create_shop(db, **data.model_dump())
    print(f"Shop created: {shop.name} (id={shop.id})")


async def cmd_create_user(args):
    from glassflow.db import crud
    from glassflow.db.engine import async_session_factory, create_all
    from glassflow.services.auth import hash_password

    if args.role == "shop" and not args.shop_id:
        print("Shop users need --shop-id")
        sys.exit(1)

    password = args.password
    if not password:
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match")
            sys.exit(1)

    if len(password) < 8:
        print("Password must be at least 8 characters")
        sys.exit(1)

    await create_all()
    async with async_session_factory() as db:
        if args.shop_id and await crud.get_shop(db, args.shop_id) is None:
            print(f"Shop not found: {args.shop_id}")
            sys.exit(1)
        user = await crud.create_user(
            db,
            email=args.email,
            password_hash=hash_password(password),
            role=args.role,
            display_name=args.display_name,
            shop_id=args.shop_id or None,
            insurer_name=args.insurer_name,
        )
    print(f"User created: {user.email} (id={user.id}, role={user.role})")


async def cmd_sweep_offers(args):
    from glassflow.db.engine import async_session_factory
    from glassflow.services.workflow import WorkflowEngine

    async with async_session_factory() as db:
        expired = await WorkflowEngine(db).sweep_expired_offers()
    print(f"Expired {expired} job offer(s)")


def main():
    parser = argparse.ArgumentParser(description="GlassFlow CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create database tables")

    # create-shop
    cs = subparsers.add_parser("create-shop", help="Register a repair shop")
    cs.add_argument("--name", required=True)
    cs.add_argument("--email", default="")
    cs.add_argument("--phone", default="")
    cs.add_argument("--address", default="")
    cs.add_argument("--city", default="")
    cs.add_argument("--postal-code", default="")
    cs.add_argument("--mobile", action="store_true", help="Offers mobile service")
    cs.add_argument("--adas", action="store_true", help="Can calibrate ADAS cameras")
    cs.add_argument("--capability", default="both", choices=["repair_only", "replacement_only", "both"])

    # create-user
    cu = subparsers.add_parser("create-user", help="Create a dashboard user")
    cu.add_argument("--email", required=True)
    cu.add_argument("--role", required=True, choices=["insurer", "shop", "admin"])
    cu.add_argument("--password", default="", help="Password (prompted if not given)")
    cu.add_argument("--display-name", default="")
    cu.add_argument("--shop-id", default="", help="Shop the user works for (role=shop)")
    cu.add_argument("--insurer-name", default="", help="Insurer the user works for (role=insurer)")

    subparsers.add_parser("sweep-offers", help="Expire job offers past their deadline")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init-db":
        asyncio.run(cmd_init_db(args))
    elif args.command == "create-shop":
        asyncio.run(cmd_create_shop(args))
    elif args.command == "create-user":
        asyncio.run(cmd_create_user(args))
    elif args.command == "sweep-offers":
        asyncio.run(cmd_sweep_offers(args))


if __name__ == "__main__":
    main()
