"""
Auction CLI Commands.

Territory seeding, auction creation, bidding and resolution against the
SQLite document store. Every command opens the store, loads the engine (which
also resolves overdue auctions and reconciles drift), runs, and closes.
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from ..core.errors import AuctionError
from ..core.formatters import format_datetime, get_utc_timestamp
from ..services.auctions import AuctionEngine, AuctionOptions, load_seed_file
from ..services.document_store import SQLiteDocumentStore


EngineAction = Callable[[AuctionEngine], Awaitable[dict[str, Any]]]


async def _run_with_engine(args: argparse.Namespace, action: EngineAction) -> dict[str, Any]:
    store = SQLiteDocumentStore(getattr(args, "db", None))
    await store.initialize()
    try:
        engine = AuctionEngine(store)
        await engine.load()
        result = await action(engine)
        await engine.shutdown()
        return result
    finally:
        await store.close()


def _execute(args: argparse.Namespace, action: EngineAction) -> dict[str, Any]:
    query_ts = get_utc_timestamp()
    try:
        result = asyncio.run(_run_with_engine(args, action))
    except AuctionError as e:
        result = e.to_dict()
    result["query_timestamp"] = query_ts
    return result


# =============================================================================
# Commands
# =============================================================================


def cmd_seed(args: argparse.Namespace) -> dict:
    """Create territories from a YAML seed file (existing ones are kept)."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        territories = load_seed_file(args.file)
        created = await engine.seed_territories(territories)
        return {"status": "ok", "in_file": len(territories), "created": created}

    return _execute(args, action)


def cmd_territories(args: argparse.Namespace) -> dict:
    """List territories with their sovereignty and price."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        country = args.country.upper() if args.country else None
        rows = []
        for territory in sorted(engine.territories, key=lambda t: t.territory_id):
            if country and territory.country_code != country:
                continue
            rows.append(
                {
                    "territory_id": territory.territory_id,
                    "name": territory.name,
                    "country_code": territory.country_code,
                    "sovereignty": territory.sovereignty.value,
                    "ruler_id": territory.ruler_id,
                    "current_auction_id": territory.current_auction_id,
                    "instant_price": engine.pricing.instant_price(territory),
                    "starting_bid_floor": engine.pricing.starting_bid_floor(territory),
                }
            )
        return {"count": len(rows), "territories": rows}

    return _execute(args, action)


def cmd_list(args: argparse.Namespace) -> dict:
    """List ACTIVE auctions, soonest ending first."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        auctions = engine.list_active_auctions()
        return {"count": len(auctions), "auctions": [a.to_summary() for a in auctions]}

    return _execute(args, action)


def cmd_create(args: argparse.Namespace) -> dict:
    """Open an auction for a territory."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        end_time = None
        if args.hours is not None:
            end_time = engine.clock.now() + timedelta(hours=args.hours)
        options = AuctionOptions(
            starting_bid=args.starting_bid,
            end_time=end_time,
            creator_name=args.name,
        )
        auction = await engine.create_auction(args.territory, created_by=args.user, options=options)
        return {"status": "created", "auction": auction.to_summary()}

    return _execute(args, action)


def cmd_bid(args: argparse.Namespace) -> dict:
    """Place a bid."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        auction = await engine.place_bid(args.auction_id, args.user, args.name, args.amount)
        return {"status": "accepted", "auction": auction.to_summary()}

    return _execute(args, action)


def cmd_end(args: argparse.Namespace) -> dict:
    """Resolve an auction now."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        auction = await engine.end_auction(args.auction_id)
        territory = engine.get_territory(auction.territory_id)
        return {
            "status": "ended",
            "auction": auction.to_summary(),
            "territory": {
                "territory_id": auction.territory_id,
                "sovereignty": territory.sovereignty.value if territory else None,
                "ruler_id": territory.ruler_id if territory else None,
            },
        }

    return _execute(args, action)


def cmd_buy(args: argparse.Namespace) -> dict:
    """Conquer an available territory at its instant price."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        territory = await engine.instant_conquest(args.territory, args.user, args.name)
        return {
            "status": "conquered",
            "territory_id": territory.territory_id,
            "ruler_id": territory.ruler_id,
            "tribute": territory.last_winning_amount,
            "protection_ends_at": (
                format_datetime(territory.protection_ends_at)
                if territory.protection_ends_at
                else None
            ),
        }

    return _execute(args, action)


def cmd_actions(args: argparse.Namespace) -> dict:
    """Show what a user may do with a territory."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        allowed = engine.allowed_actions(args.territory, args.user)
        return {"territory_id": args.territory, **allowed.to_dict()}

    return _execute(args, action)


def cmd_history(args: argparse.Namespace) -> dict:
    """A user's bids on ACTIVE auctions."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        history = engine.get_user_bid_history(args.user)
        return {"user_id": args.user, "count": len(history), "auctions": history}

    return _execute(args, action)


def cmd_sweep(args: argparse.Namespace) -> dict:
    """Run one expiry sweep."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        stats = await engine.sweeper.run_once()
        return {
            "status": "ok",
            "candidates": stats.candidates,
            "ended": stats.ended,
            "skipped": stats.skipped,
            "failed": stats.failed,
        }

    return _execute(args, action)


def cmd_serve(args: argparse.Namespace) -> dict:
    """Run the expiry sweeper until interrupted."""

    async def action(engine: AuctionEngine) -> dict[str, Any]:
        if args.interval is not None:
            engine.sweeper.interval_seconds = args.interval
        task = engine.sweeper.start()
        try:
            await task
        finally:
            await engine.stop_sweeper()
        return {"status": "stopped"}

    return _execute(args, action)


# =============================================================================
# Parser Registration
# =============================================================================


def register_parsers(subparsers: argparse._SubParsersAction) -> None:
    """Register auction command parsers."""

    seed_parser = subparsers.add_parser("seed", help="Seed territories from a YAML file")
    seed_parser.add_argument("file", help="Path to the territory seed YAML")
    seed_parser.set_defaults(func=cmd_seed)

    territories_parser = subparsers.add_parser("territories", help="List territories")
    territories_parser.add_argument("--country", help="Filter by ISO alpha-3 country code")
    territories_parser.set_defaults(func=cmd_territories)

    list_parser = subparsers.add_parser("list", help="List active auctions")
    list_parser.set_defaults(func=cmd_list)

    create_parser = subparsers.add_parser("create", help="Create an auction for a territory")
    create_parser.add_argument("territory", help="Territory id (texas or USA::texas)")
    create_parser.add_argument("--user", required=True, help="Creator user id")
    create_parser.add_argument("--name", help="Creator display name")
    create_parser.add_argument("--starting-bid", type=int, help="Explicit starting bid")
    create_parser.add_argument(
        "--hours",
        type=float,
        help="Duration for an unowned, unprotected territory (default: 24); owned or protected territories reject it",
    )
    create_parser.set_defaults(func=cmd_create)

    bid_parser = subparsers.add_parser("bid", help="Place a bid")
    bid_parser.add_argument("auction_id", help="Auction id")
    bid_parser.add_argument("amount", type=int, help="Bid amount")
    bid_parser.add_argument("--user", required=True, help="Bidder user id")
    bid_parser.add_argument("--name", help="Bidder display name")
    bid_parser.set_defaults(func=cmd_bid)

    end_parser = subparsers.add_parser("end", help="End an auction now")
    end_parser.add_argument("auction_id", help="Auction id")
    end_parser.set_defaults(func=cmd_end)

    buy_parser = subparsers.add_parser("buy", help="Conquer a territory at its instant price")
    buy_parser.add_argument("territory", help="Territory id")
    buy_parser.add_argument("--user", required=True, help="Buyer user id")
    buy_parser.add_argument("--name", help="Buyer display name")
    buy_parser.set_defaults(func=cmd_buy)

    actions_parser = subparsers.add_parser("actions", help="Show allowed actions for a user")
    actions_parser.add_argument("territory", help="Territory id")
    actions_parser.add_argument("--user", help="User id")
    actions_parser.set_defaults(func=cmd_actions)

    history_parser = subparsers.add_parser("history", help="Show a user's active bids")
    history_parser.add_argument("--user", required=True, help="User id")
    history_parser.set_defaults(func=cmd_history)

    sweep_parser = subparsers.add_parser("sweep", help="Run one expiry sweep")
    sweep_parser.set_defaults(func=cmd_sweep)

    serve_parser = subparsers.add_parser("serve", help="Run the expiry sweeper until interrupted")
    serve_parser.add_argument("--interval", type=float, help="Seconds between sweeps")
    serve_parser.set_defaults(func=cmd_serve)
