"""Command line entry point for operators.

Examples:
    python -m iap_billing show-config
    python -m iap_billing validate coins_500 5YmPcDx0r3AP2Nuc
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Optional

from iap_billing.config import Config
from iap_billing.errors import ConfigurationError, ProductNotFoundError, ValidationApiError
from iap_billing.logging_config import bind_context, clear_context, configure_logging, get_logger
from iap_billing.models import Purchase
from iap_billing.repositories import ProductCatalog
from iap_billing.services.validation_client import ValidationClient

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iap_billing",
        description="In-app billing orchestrator - configuration and validation tools",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/store.yaml"),
        help="Path to store.yaml configuration file (default: config/store.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "WARNING"),
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "console"),
        help="Log output format (default: console)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("show-config", help="Print the product catalog and settings")

    validate = commands.add_parser(
        "validate", help="Check a purchase's status with the validation API"
    )
    validate.add_argument("product_id", help="Product ID of the purchase (must be in the catalog)")
    validate.add_argument("order_id", help="Order ID of the purchase")
    validate.add_argument(
        "--application-id",
        default=None,
        help="Package name (default: application_id from configuration)",
    )
    return parser


def show_config(config: Config) -> int:
    store = config.store
    summary = {
        "config_path": str(config.config_path),
        "products": [p.model_dump(mode="json") for p in store.products],
        "payload": store.payload,
        "application_id": store.application_id,
        "dummy_response_in_unsupported_environment": store.dummy_response_in_unsupported_environment,
        "validation_enabled": config.validation_enabled,
        "timeouts": store.timeouts.model_dump(),
    }
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


async def validate_purchase(config: Config, product_id: str, order_id: str, application_id: Optional[str]) -> int:
    store = config.store
    app_id = application_id or store.application_id
    if not app_id:
        print("No application id: pass --application-id or set application_id", file=sys.stderr)
        return 1

    try:
        ProductCatalog(config=config).get_by_id(product_id)
    except ProductNotFoundError as e:
        print(f"Unknown product: {e}", file=sys.stderr)
        return 1

    bind_context(product_id=product_id, order_id=order_id, application_id=app_id)
    client = ValidationClient(store.validation, timeout_seconds=store.timeouts.http_seconds)
    try:
        purchase = Purchase(product_id=product_id, order_id=order_id, package_name=app_id)
        result = await client.validate(purchase, app_id)
    except ValidationApiError as e:
        print(f"Validation API unreachable: {e}", file=sys.stderr)
        return 1
    finally:
        await client.close()

    print(json.dumps(result.model_dump(), indent=2, ensure_ascii=False))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the billing CLI."""
    args = build_parser().parse_args(argv)

    os.environ["LOG_LEVEL"] = args.log_level
    configure_logging(log_level=args.log_level, json_format=args.log_format == "json")
    clear_context()
    bind_context(command=args.command)

    try:
        config = Config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.command == "show-config":
        return show_config(config)
    return asyncio.run(
        validate_purchase(config, args.product_id, args.order_id, args.application_id)
    )


if __name__ == "__main__":
    sys.exit(main())
