"""CLI for manual service review: duplicate reports, merges and service info."""

import argparse
import json
import logging
from typing import Any, Dict, Optional

from rekky.bootstrap import build_context
from rekky.services.identity import ServiceIdentityResolver, ServiceNotFoundError

logger = logging.getLogger(__name__)


def run_command(resolver: ServiceIdentityResolver, args: argparse.Namespace) -> Dict[str, Any]:
    if args.command == "duplicates":
        if not args.name and not args.phone:
            raise ValueError("duplicates needs --name and/or --phone")
        report = resolver.find_potential_duplicates({"name": args.name, "phone_number": args.phone})
        return report.to_dict()

    if args.command == "merge":
        result = resolver.merge_services(args.primary_id, args.secondary_id)
        return {"success": result.success, "merged_service_id": result.merged_service_id, "message": result.message}

    if args.command == "info":
        return resolver.get_service_info(args.service_id).to_dict()

    raise ValueError(f"Unknown command {args.command!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and merge service entities")
    subparsers = parser.add_subparsers(dest="command", required=True)

    duplicates = subparsers.add_parser("duplicates", help="List services that may duplicate a submission")
    duplicates.add_argument("--name", dest="name", help="Submitted service name")
    duplicates.add_argument("--phone", dest="phone", help="Submitted phone number")

    merge = subparsers.add_parser("merge", help="Merge SECONDARY into PRIMARY and delete SECONDARY")
    merge.add_argument("primary_id", type=int)
    merge.add_argument("secondary_id", type=int)

    info = subparsers.add_parser("info", help="Show a service with its name variants")
    info.add_argument("service_id", type=int)
    return parser


def main(argv: Optional[list] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    context = build_context()
    try:
        output = run_command(context.resolver, args)
    except (ServiceNotFoundError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        context.close(wait=False)

    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
