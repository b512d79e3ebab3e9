"""
Tests for the territory-auction command line.

Commands run end to end against a SQLite database in tmp_path.
"""

import argparse
import json
from pathlib import Path

import pytest

EXAMPLE_SEED = Path(__file__).resolve().parents[2] / "examples" / "territories.yaml"


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "auctions.db")


@pytest.fixture
def cli(db, capsys):
    """Run the CLI and return (exit_code, parsed JSON output)."""
    from territory_auction.__main__ import main

    def _run(*argv):
        code = main(["--db", db, *argv])
        out = capsys.readouterr().out
        return code, json.loads(out) if out.strip() else None

    return _run


@pytest.fixture
def seeded(cli):
    code, result = cli("seed", str(EXAMPLE_SEED))
    assert code == 0
    return result


class TestCommandImports:
    """Tests that the command module exposes its commands."""

    def test_import_auctions(self):
        from territory_auction.commands import auctions

        assert hasattr(auctions, "cmd_create")
        assert hasattr(auctions, "cmd_bid")
        assert hasattr(auctions, "cmd_end")
        assert hasattr(auctions, "register_parsers")


class TestParser:
    """Tests for argument parsing."""

    def test_version(self, capsys):
        """Test that --version prints and exits."""
        from territory_auction.__main__ import main

        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "territory-auction" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        """Test that running without a command shows usage."""
        from territory_auction.__main__ import main

        assert main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_bid_requires_user(self):
        """Test that bid refuses to run without --user."""
        from territory_auction.__main__ import build_parser

        with pytest.raises(SystemExit):
            build_parser().parse_args(["bid", "auction_texas_1", "100"])

    def test_create_arguments(self):
        """Test that create parses its options."""
        from territory_auction.__main__ import build_parser

        args = build_parser().parse_args(
            ["create", "USA::texas", "--user", "u1", "--starting-bid", "800", "--hours", "2"]
        )

        assert args.territory == "USA::texas"
        assert args.starting_bid == 800
        assert args.hours == 2.0
        assert callable(args.func)


class TestAuctionFlow:
    """Tests for a full auction through the CLI."""

    def test_seed(self, seeded, cli):
        """Test that seeding creates territories once."""
        assert seeded["status"] == "ok"
        assert seeded["created"] == seeded["in_file"]

        code, again = cli("seed", str(EXAMPLE_SEED))
        assert code == 0
        assert again["created"] == 0

    def test_territories(self, seeded, cli):
        """Test that territories list prices and filter by country."""
        code, result = cli("territories", "--country", "usa")

        assert code == 0
        texas = next(t for t in result["territories"] if t["territory_id"] == "texas")
        assert texas["instant_price"] == 1250
        assert texas["starting_bid_floor"] == 750
        assert texas["sovereignty"] == "unconquered"
        assert all(t["country_code"] == "USA" for t in result["territories"])

    def test_create_bid_end(self, seeded, cli):
        """Test creating, bidding on and ending an auction."""
        code, created = cli("create", "texas", "--user", "u0")
        assert code == 0
        auction_id = created["auction"]["auction_id"]
        assert created["auction"]["starting_bid"] == 750

        code, low = cli("bid", auction_id, "750", "--user", "u1")
        assert code == 1
        assert low["error"] == "validation_failed"
        assert low["minimum_bid"] == 751

        code, bid = cli("bid", auction_id, "751", "--user", "u1", "--name", "Alice")
        assert code == 0
        assert bid["status"] == "accepted"
        assert bid["auction"]["highest_bidder_id"] == "u1"

        code, listed = cli("list")
        assert listed["count"] == 1

        code, history = cli("history", "--user", "u1")
        assert history["count"] == 1
        assert history["auctions"][0]["is_highest_bidder"] is True

        code, ended = cli("end", auction_id)
        assert code == 0
        assert ended["status"] == "ended"
        assert ended["territory"]["ruler_id"] == "u1"
        assert ended["territory"]["sovereignty"] == "ruled"

        code, listed = cli("list")
        assert listed["count"] == 0

    def test_buy_and_actions(self, seeded, cli):
        """Test instant conquest and the resulting action policy."""
        code, bought = cli("buy", "oklahoma", "--user", "u1")
        assert code == 0
        assert bought["status"] == "conquered"
        assert bought["ruler_id"] == "u1"
        assert bought["protection_ends_at"] is not None

        code, actions = cli("actions", "oklahoma", "--user", "u2")
        assert code == 0
        assert actions["can_buy_now"] is False
        assert actions["can_start_auction"] is True

        code, again = cli("buy", "oklahoma", "--user", "u2")
        assert code == 1
        assert again["error"] == "invalid_state"

    def test_sweep(self, seeded, cli):
        """Test that a sweep with nothing overdue ends nothing."""
        cli("create", "texas", "--user", "u0")

        code, result = cli("sweep")

        assert code == 0
        assert result["ended"] == 0


class TestErrors:
    """Tests for error output."""

    def test_unknown_auction(self, seeded, cli):
        """Test that bidding on an unknown auction is a not_found error."""
        code, result = cli("bid", "auction_texas_1", "100", "--user", "u1")

        assert code == 1
        assert result["error"] == "not_found"
        assert "query_timestamp" in result

    def test_unknown_territory(self, seeded, cli):
        """Test that creating an auction for an unknown territory fails cleanly."""
        code, result = cli("create", "atlantis", "--user", "u1")

        assert code == 1
        assert result["error"] == "not_found"

    def test_duplicate_auction(self, seeded, cli):
        """Test that a second auction for a territory is refused."""
        cli("create", "texas", "--user", "u0")

        code, result = cli("create", "texas", "--user", "u1")

        assert code == 1
        assert result["territory_id"] == "texas"
        assert "auction_id" in result

    def test_hours_rejected_for_owned_territory(self, seeded, cli):
        """Test that --hours is refused once the territory has a ruler."""
        cli("buy", "oklahoma", "--user", "u1")

        code, result = cli("create", "oklahoma", "--user", "u2", "--hours", "2")

        assert code == 1
        assert result["error"] == "validation_failed"

        code, listed = cli("list")
        assert listed["count"] == 0

    def test_missing_seed_file(self, cli, tmp_path):
        """Test that a missing seed file is reported as an error."""
        code, result = cli("seed", str(tmp_path / "missing.yaml"))

        assert code == 1
        assert result["error"] == "not_found"

    def test_direct_call_returns_dict(self, seeded, db):
        """Test that command functions can be called without the parser."""
        from territory_auction.commands.auctions import cmd_list

        result = cmd_list(argparse.Namespace(db=db))

        assert result["count"] == 0
        assert "query_timestamp" in result
