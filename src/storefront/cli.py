"""Command-line interface for storefront."""

import argparse
import getpass
import logging
import sys

from pymongo.errors import PyMongoError

from . import __version__
from .catalog import ProductCatalog
from .config import get_settings
from .database import PRODUCTS, ensure_indexes, get_database, ping
from .errors import StorefrontError
from .users import UserAccounts

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    {
        "name": "Slim Silicone Phone Case",
        "description": "Soft-touch silicone case with raised camera edges.",
        "category": "phone-case",
        "price": 19.99,
        "stock": 50,
        "brand": "Shelly",
        "material": "silicone",
        "color": "black",
        "compatible_models": [{"brand": "Apple", "model_name": "iPhone 15", "release_year": 2023}],
        "tags": ["slim", "silicone"],
    },
    {
        "name": "Rugged Armor Phone Case",
        "description": "Dual-layer drop protection with a textured grip.",
        "category": "phone-case",
        "price": 29.5,
        "stock": 30,
        "brand": "Shelly",
        "material": "polycarbonate",
        "color": "gray",
        "compatible_models": [
            {"brand": "Samsung", "model_name": "Galaxy S24", "release_year": 2024}
        ],
        "tags": ["rugged", "drop-protection"],
    },
    {
        "name": "Felt Laptop Sleeve 14\"",
        "description": "Wool felt sleeve with a magnetic flap for 14 inch laptops.",
        "category": "laptop-case",
        "price": 45.0,
        "stock": 20,
        "material": "felt",
        "color": "charcoal",
        "tags": ["sleeve"],
    },
    {
        "name": "Folio Tablet Cover",
        "description": "Trifold stand cover with auto sleep and wake.",
        "category": "tablet-case",
        "price": 34.0,
        "stock": 25,
        "compatible_models": [{"brand": "Apple", "model_name": "iPad Air", "release_year": 2022}],
        "tags": ["folio", "stand"],
    },
    {
        "name": "Watch Bumper Case",
        "description": "Clear bumper that guards the watch bezel against knocks.",
        "category": "watch-case",
        "price": 12.0,
        "stock": 80,
        "tags": ["clear"],
    },
    {
        "name": "Braided USB-C Cable",
        "description": "Two metre braided USB-C to USB-C charging cable.",
        "category": "accessory",
        "price": 9.99,
        "stock": 100,
        "tags": ["cable", "usb-c"],
    },
]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        db = get_database()
        try:
            ping(db)
        except PyMongoError as e:
            print(f"Error: cannot reach MongoDB at {get_settings().mongodb_uri}: {e}", file=sys.stderr)
            return 1
        ensure_indexes(db)

        print("Starting storefront API server...")
        print(f"Database: {db.name}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "storefront.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(app_target, host=args.host, port=args.port, reload=args.reload)
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_create_admin(args: argparse.Namespace) -> int:
    """Create an admin account."""
    try:
        password = args.password or getpass.getpass("Password: ")
        db = get_database()
        ensure_indexes(db)
        user = UserAccounts(db, get_settings()).create_admin(args.name, args.email, password)
        print(f"Created admin {user.email} ({user.id})")
        return 0

    except (StorefrontError, PyMongoError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_seed(args: argparse.Namespace) -> int:
    """Insert sample products into an empty catalog."""
    try:
        db = get_database()
        ensure_indexes(db)
        existing = db[PRODUCTS].count_documents({})
        if existing and not args.force:
            print(f"Catalog already has {existing} products; use --force to add samples anyway.")
            return 0

        catalog = ProductCatalog(db)
        for fields in SAMPLE_PRODUCTS:
            product = catalog.create_product(fields)
            print(f"  {product.id}  {product.name}")
        print(f"Seeded {len(SAMPLE_PRODUCTS)} products")
        return 0

    except (StorefrontError, PyMongoError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Online store API for device cases and accessories.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--log-level", default=None, help="Logging level (default: STOREFRONT_LOG_LEVEL or INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # create-admin
    admin_parser = subparsers.add_parser("create-admin", help="Create an admin account")
    admin_parser.add_argument("--name", required=True, help="Display name")
    admin_parser.add_argument("--email", required=True, help="Login email")
    admin_parser.add_argument(
        "--password", help="Password (prompted for when omitted)"
    )

    # seed
    seed_parser = subparsers.add_parser("seed", help="Insert sample products")
    seed_parser.add_argument(
        "--force", "-f", action="store_true", help="Seed even if products already exist"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(args.log_level or get_settings().log_level)

    commands = {
        "serve": cmd_serve,
        "create-admin": cmd_create_admin,
        "seed": cmd_seed,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
