"""CLI entrypoint for asset_geo."""

from __future__ import annotations

import argparse
import asyncio
import json

from asset_geo.logging_config import setup_logging


def main() -> None:
    setup_logging()

    parser = argparse.ArgumentParser(prog="asset-geo")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate")
    sub.add_parser("reconcile")
    sub.add_parser("sweep")
    sub.add_parser("serve")
    sub.add_parser("dictionary")

    resolve_parser = sub.add_parser("resolve")
    resolve_parser.add_argument("unit_name")
    resolve_parser.add_argument("--province")
    resolve_parser.add_argument("--city")
    resolve_parser.add_argument("--rederive", action="store_true")

    args = parser.parse_args()

    if args.command == "migrate":
        asyncio.run(_migrate())
    elif args.command == "reconcile":
        asyncio.run(_reconcile())
    elif args.command == "sweep":
        asyncio.run(_sweep())
    elif args.command == "serve":
        asyncio.run(_serve())
    elif args.command == "dictionary":
        _dictionary_stats()
    elif args.command == "resolve":
        _resolve_once(args.unit_name, args.province, args.city, args.rederive)


async def _migrate() -> None:
    from asset_geo.db import close_pool, get_pool, run_migrations

    await get_pool()
    await run_migrations()
    await close_pool()
    print("Migrations applied successfully.")


async def _reconcile() -> None:
    from asset_geo.service import create_service

    service = create_service()
    try:
        report = await service.synchronizer.reconcile_all()
    finally:
        await service.backend.close()
    print(json.dumps(report.model_dump(), ensure_ascii=False, indent=2))


async def _sweep() -> None:
    from asset_geo.service import create_service

    service = create_service()
    try:
        removed = await service.synchronizer.sweep()
    finally:
        await service.backend.close()
    print(f"Removed {removed} orphaned unit rows.")


async def _serve() -> None:
    from asset_geo.scheduler import start_scheduler, stop_scheduler
    from asset_geo.service import create_service

    service = create_service()
    if not start_scheduler(service.synchronizer):
        await service.backend.close()
        return
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()
        await service.backend.close()


def _dictionary_stats() -> None:
    from asset_geo.service import build_dictionary

    print(json.dumps(build_dictionary().stats(), ensure_ascii=False, indent=2))


def _resolve_once(unit_name: str, province: str | None, city: str | None, rederive: bool) -> None:
    from asset_geo.resolver import Resolver
    from asset_geo.service import build_dictionary

    resolver = Resolver(build_dictionary())
    resolution = resolver.resolve(unit_name, province, city, rederive=rederive)
    out = resolution.model_dump(mode="json")
    out["resolved"] = resolution.resolved
    print(json.dumps(out, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
