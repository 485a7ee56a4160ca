"""
simple-ctv command line

    simple-ctv address --payout bcrt1p...      derive a covenant address offline
    simple-ctv run                             fund -> confirm -> parent -> child

RPC credentials come from BITCOIN_RPC_USER / BITCOIN_RPC_PASS.
"""

import argparse
import logging
import sys

from bitcoinutils.setup import setup

from simple_ctv.addresses import script_for_address
from simple_ctv.config import CovenantConfig, DEFAULT_CHILD_DATA, NETWORK_DEFAULTS, parse_variant
from simple_ctv.errors import CovenantError
from simple_ctv.orchestrator import CovenantOrchestrator
from simple_ctv.script import ctv_script, ScriptVariant
from simple_ctv.taproot import create_ctv_address
from simple_ctv.template import calc_ctv_hash, Output, SequencePolicy


def build_parser():
    parser = argparse.ArgumentParser(prog="simple-ctv", description="CTV covenant with CPFP fee bumping")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--network", choices=sorted(NETWORK_DEFAULTS), default=None)
    common.add_argument("--variant", choices=[v.value for v in ScriptVariant], default=None,
                        help="commitment script variant (default: minimal)")

    sub = parser.add_subparsers(dest="command", required=True)

    address = sub.add_parser("address", parents=[common], help="derive a covenant address (offline)")
    address.add_argument("--payout", required=True, help="address receiving the payout output")
    address.add_argument("--payout-amount", type=int, default=None)
    address.add_argument("--anchor-amount", type=int, default=None)
    address.add_argument("--timeout", type=int, default=None,
                         help="commit to a relative timeout nSequence instead of no timelock")

    run = sub.add_parser("run", parents=[common], help="fund and spend a covenant against bitcoind")
    run.add_argument("--wallet", default=None)
    run.add_argument("--rpc-url", default=None)
    run.add_argument("--payout", default=None, help="payout address (default: new wallet address)")
    run.add_argument("--feerate", type=int, default=None, help="package fee rate in sat/vB")
    run.add_argument("--data", default=DEFAULT_CHILD_DATA.decode(), help="OP_RETURN text in the child")
    return parser


def cmd_address(args):
    overrides = {"payout_amount": args.payout_amount, "anchor_amount": args.anchor_amount}
    if args.variant:
        overrides["script_variant"] = args.variant
    config = CovenantConfig.for_network(
        args.network or "regtest", **{k: v for k, v in overrides.items() if v is not None}
    )
    setup(config.chain)

    if args.timeout is None:
        sequence = SequencePolicy.no_timelock()
    else:
        sequence = SequencePolicy.relative_timeout(args.timeout)

    outputs = [
        Output.from_address(config.payout_amount, args.payout),
        Output(config.anchor_amount, script_for_address(config.fee_anchor_address)),
    ]
    ctv_hash = calc_ctv_hash(outputs, sequence)
    script = ctv_script(ctv_hash, config.script_variant)
    spend_info, address = create_ctv_address(script, config.network)
    control_block = spend_info.control_block(script)

    print("=== CTV Commitment ===")
    print(f"Network: {config.network}")
    print(f"Output 0: {config.payout_amount} sats -> {args.payout}")
    print(f"Output 1: {config.anchor_amount} sats -> {config.fee_anchor_address} (anchor)")
    print(f"nSequence: {hex(sequence.value)}")
    print(f"CTV hash: {ctv_hash.hex()}")
    print(f"\n=== Commitment Script ({config.script_variant.value}) ===")
    print(f"Script: {' '.join(script.ops())}")
    print(f"Script hex: {script.to_hex()}")
    print(f"\n=== Taproot ===")
    print(f"Unspendable internal key: {spend_info.internal_key.to_x_only_hex()}")
    print(f"Control block: {control_block.to_hex()}")
    print(f"CTV address: {address.to_string()}")
    print(f"Fund with: {config.covenant_amount} sats")
    return 0


def cmd_run(args):
    config = CovenantConfig.from_env(
        network=args.network,
        wallet_name=args.wallet,
        rpc_endpoint=args.rpc_url,
        script_variant=parse_variant(args.variant) if args.variant else None,
        child_feerate=args.feerate,
    )
    orchestrator = CovenantOrchestrator(config)
    result = orchestrator.run(payout_address=args.payout, data=args.data.encode("utf-8"))

    print("\n" + "=" * 60)
    print("CTV covenant spent")
    print("=" * 60)
    print(f"CTV address: {result.covenant.address.to_string()}")
    print(f"Funding outpoint: {result.funding.txid}:{result.funding.vout}")
    print(f"Fee reserve outpoint: {result.fee_reserve.txid}:{result.fee_reserve.vout}")
    print(f"Parent txid: {result.parent_txid}")
    print(f"Child txid: {result.child_txid}")
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    commands = {"address": cmd_address, "run": cmd_run}
    try:
        return commands[args.command](args)
    except CovenantError as e:
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
