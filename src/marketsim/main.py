"""
Main entrypoint for marketsim.

What it does:
- Loads settings from `config/config.yaml` and `MARKETSIM_*` environment variables.
- Restores the saved marketplace from `data_dir` (or starts empty when there is none).
- Runs one of the sub-commands:
    shell    interactive operator menus (default)
    seed     add the demo seller/buyer/items and save
    report   write ledger/orders/items CSV exports
    dormant  list accounts without recent activity
    events   follow the Redis event stream (needs MARKETSIM_REDIS_URL)

Where it is used:
- Installed as the `marketsim` console script; also `python -m marketsim.main`.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config.loader import Settings, load_settings
from .events import bus
from .ledger.bank import Bank
from .metrics.market import start_server_safe
from .persistence import load_state, save_state
from .reports.export import write_reports
from .shell import Shell, seed_demo
from .store.ids import OrderIdGenerator
from .store.market import Marketplace


def open_market(settings: Settings) -> Optional[Marketplace]:
    """Load saved state from `settings.data_dir`, or build an empty marketplace."""
    if not os.path.isdir(settings.data_dir):
        logging.info(f"No saved data at {settings.data_dir}; starting empty")
        return Marketplace(Bank(), OrderIdGenerator(settings.order_id_prefix),
                           journal_path=settings.journal_path)
    res = load_state(settings.data_dir, journal_path=settings.journal_path,
                     order_id_prefix=settings.order_id_prefix)
    if not res:
        logging.error(f"Failed to load {settings.data_dir}: {res.detail}")
        return None
    market, _bank = res.value
    logging.info(f"Loaded {len(market.buyers)} buyers, {len(market.sellers)} sellers, "
                 f"{len(market.items)} items, {len(market.orders)} orders")
    return market


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="marketsim", description="Marketplace ledger simulation")
    p.add_argument("--config", default="config/config.yaml", help="settings YAML path")
    p.add_argument("--data-dir", default=None, help="override data_dir from settings")
    sub = p.add_subparsers(dest="command")
    sub.add_parser("shell", help="interactive operator menus")
    sub.add_parser("seed", help="seed demo data and save")
    rep = sub.add_parser("report", help="write CSV exports")
    rep.add_argument("--out", default="reports", help="output directory")
    dor = sub.add_parser("dormant", help="list accounts without recent activity")
    dor.add_argument("--days", type=int, default=None, help="threshold in days")
    ev = sub.add_parser("events", help="follow the event stream")
    ev.add_argument("--group", default="marketsim-cli")
    ev.add_argument("--consumer", default="cli")
    return p


def _redis_url_env() -> str:
    return os.getenv("MARKETSIM_REDIS_URL", "")


def _follow_events(group: str, consumer: str) -> int:
    if not _redis_url_env():
        logging.error("MARKETSIM_REDIS_URL is not set; events are only in the log")
        return 1
    for msg in bus.consume(group, consumer):
        if msg is not None:
            print(msg[1])
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    settings = load_settings(args.config)
    if args.data_dir:
        settings = settings.model_copy(update={"data_dir": args.data_dir})
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(message)s")
    if settings.redis_url and not _redis_url_env():
        os.environ["MARKETSIM_REDIS_URL"] = settings.redis_url
    if settings.prometheus_port:
        start_server_safe(settings.prometheus_port)

    command = args.command or "shell"
    if command == "events":
        return _follow_events(args.group, args.consumer)

    market = open_market(settings)
    if market is None:
        return 1

    if command == "shell":
        print("=== Online Store Simulation ===")
        Shell(market, settings).run()
        return 0
    if command == "seed":
        seed_demo(market)
        res = save_state(market, market.bank, settings.data_dir)
        if not res:
            logging.error(res.detail)
            return 1
        print(f"Demo data saved to {settings.data_dir}")
        return 0
    if command == "report":
        for name, path in write_reports(market, args.out).items():
            print(f"{name}: {path}")
        return 0
    if command == "dormant":
        days = args.days if args.days is not None else settings.dormancy_days
        for label in market.bank.accounts_without_recent_activity(days):
            print(label)
        return 0
    return 2


if __name__ == "__main__":
    sys.exit(main())
