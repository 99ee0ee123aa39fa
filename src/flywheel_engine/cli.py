from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Dict

from solders.keypair import Keypair

from .airdrop import AirdropDistributor
from .config import Settings
from .flywheel import FlywheelController
from .holder_scanner import run_holder_cycle
from .loyalty import sync_top_holders
from .points import recompute
from .rpc import RpcClient
from .scheduler import IntervalScheduler
from .state import AccountingContext, EngineDeps
from .store import Store
from .swap import JupiterSwapper

HOLDER_FIRST_RUN_DELAY_S = 5.0
FLYWHEEL_FIRST_RUN_DELAY_S = 30.0


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_deps(args: argparse.Namespace) -> EngineDeps:
    settings = Settings.from_env(rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    if not settings.dev_wallet_private_key:
        raise SystemExit("Missing DEV_WALLET_PRIVATE_KEY. Put it in .env or export it.")
    try:
        signer = Keypair.from_base58_string(settings.dev_wallet_private_key)
    except ValueError:
        raise SystemExit("Invalid DEV_WALLET_PRIVATE_KEY format (expected base58).")

    store = Store(settings.db_path)
    store.init_schema()
    return EngineDeps(
        rpc=RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s),
        store=store,
        signer=signer,
        context=AccountingContext(),
        settings=settings,
    )


def _refresh_context(deps: EngineDeps) -> None:
    # One-shot commands start from an empty context.
    sync_top_holders(deps)
    recompute(deps)


def cmd_run(args: argparse.Namespace) -> int:
    deps = build_deps(args)
    log = logging.getLogger("run")
    swapper = JupiterSwapper(deps.rpc, api_url=deps.settings.jupiter_api_url)
    controller = FlywheelController(deps, swapper)
    s = deps.settings

    scheduler = IntervalScheduler()
    scheduler.add("loyalty-sync", lambda: sync_top_holders(deps), s.loyalty_sync_interval_s)
    scheduler.add(
        "holder-scanner", lambda: run_holder_cycle(deps), s.holder_update_interval_s, HOLDER_FIRST_RUN_DELAY_S
    )
    scheduler.add("flywheel", controller.run_cycle, s.flywheel_interval_s, FLYWHEEL_FIRST_RUN_DELAY_S)

    log.info("Treasury wallet : %s", deps.treasury)
    scheduler.start()
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        log.info("Shutting down...")
    finally:
        scheduler.stop()
        swapper.close()
        deps.rpc.close()
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    deps = build_deps(args)
    try:
        sync_top_holders(deps)
        run_holder_cycle(deps)
    finally:
        deps.rpc.close()
    snap = deps.context.points
    print(f"Total points   : {snap.total_points}")
    print(f"Participants   : {len(snap.points)}")
    print(f"Community pot  : {snap.pots.community:.2f}")
    print(f"Bonus pot      : {snap.pots.bonus:.2f} -> {snap.bonus_creator or 'None'}")
    return 0


def cmd_sync_loyalty(args: argparse.Namespace) -> int:
    deps = build_deps(args)
    try:
        members = sync_top_holders(deps)
    finally:
        deps.rpc.close()
    print(f"Loyalty holders tracked: {len(members or ())}")
    return 0


def cmd_flywheel(args: argparse.Namespace) -> int:
    deps = build_deps(args)
    swapper = JupiterSwapper(deps.rpc, api_url=deps.settings.jupiter_api_url)
    try:
        _refresh_context(deps)
        report = FlywheelController(deps, swapper).run_cycle()
    finally:
        swapper.close()
        deps.rpc.close()
    print(f"Status : {report.status}")
    print(f"Reason : {report.reason}")
    return 0


def cmd_airdrop(args: argparse.Namespace) -> int:
    deps = build_deps(args)
    try:
        _refresh_context(deps)
        result = AirdropDistributor(deps).distribute()
    finally:
        deps.rpc.close()
    if result is None:
        print("Airdrop skipped (conditions not met).")
        return 0
    print(f"Batches ok/failed : {result.successful_batches}/{result.failed_batches}")
    print(f"Recipients        : {result.recipient_count}")
    return 0 if result.failed_batches == 0 else 1


def cmd_status(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    store = Store(settings.db_path)
    store.init_schema()
    out: Dict[str, Any] = {
        "stats": store.get_stats(),
        "recentCycles": store.recent_cycle_logs(args.limit),
        "recentAirdrops": store.recent_airdrop_logs(args.limit),
    }
    if args.mint:
        out["holders"] = [
            {"address": addr, "rank": rank} for addr, rank in store.holders_for_mint(args.mint)
        ]
    print(json.dumps(out, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="flywheel-engine",
        description="Holder accounting, fee flywheel and airdrop distribution engine.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run", help="Run all cycles on their intervals until interrupted.")
    r.set_defaults(func=cmd_run)

    s = sub.add_parser("scan", help="Scan leaderboard holders once and recompute points.")
    s.set_defaults(func=cmd_scan)

    ly = sub.add_parser("sync-loyalty", help="Refresh the loyalty top-holder set once.")
    ly.set_defaults(func=cmd_sync_loyalty)

    f = sub.add_parser("flywheel", help="Run a single flywheel cycle.")
    f.set_defaults(func=cmd_flywheel)

    a = sub.add_parser("airdrop", help="Attempt a distribution now (all safety checks apply).")
    a.set_defaults(func=cmd_airdrop)

    st = sub.add_parser("status", help="Print stats and recent logs as JSON.")
    st.add_argument("--limit", type=int, default=5, help="Log entries to show.")
    st.add_argument("--mint", help="Also list the ranked holders stored for this mint.")
    st.set_defaults(func=cmd_status)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
