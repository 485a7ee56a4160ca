"""
Funding & Fee-Bump Orchestrator

Drives one covenant instance through its lifecycle against a bitcoind wallet:

    CREATED -> FUNDED_PENDING -> FUNDED_CONFIRMED -> PARENT_BROADCAST -> CHILD_BROADCAST

The parent spends the covenant output into the committed output set
(payout + pay-to-anchor) with zero fee. The child spends the anchor together
with a separately funded fee reserve and pays the fee for both (CPFP).

Any failure is raised to the caller; funds already sent stay sent.
"""

import logging
import math
import secrets
import struct
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from bitcoinutils.script import Script
from bitcoinutils.setup import setup
from bitcoinutils.transactions import Transaction, TxInput, TxOutput

from simple_ctv.addresses import script_for_address
from simple_ctv.config import DEFAULT_CHILD_DATA
from simple_ctv.errors import (
    ConfirmationTimeout,
    EncodingError,
    NetworkError,
    StageError,
    WaitCancelled,
)
from simple_ctv.rpc import btc_amount, RPCClient, sats_amount
from simple_ctv.script import CommitmentScript, ctv_script
from simple_ctv.spend import build_ctv_spend, spend_ctv
from simple_ctv.taproot import create_ctv_address, TaprootSpendInfo, verify_script_path
from simple_ctv.template import calc_ctv_hash, Output, SequencePolicy, TEMPLATE_VERSION

log = logging.getLogger(__name__)

MAX_OP_RETURN_DATA = 80
# P2TR outputs below this are dust
CHANGE_DUST_LIMIT = 330
# marker+flag (2 WU), empty anchor witness (1 WU), P2TR key-path
# reserve witness (1 + 1 + 64 WU): 69 WU, rounded up to vbytes
RESERVE_WITNESS_VBYTES = 18


class Stage(Enum):
    CREATED = 1
    FUNDED_PENDING = 2
    FUNDED_CONFIRMED = 3
    PARENT_BROADCAST = 4
    CHILD_BROADCAST = 5


@dataclass(frozen=True)
class Outpoint:
    txid: str
    vout: int
    value: int
    script: bytes


@dataclass
class Covenant:
    """One covenant instance: the commitment and where to fund it."""

    outputs: Tuple[Output, ...]
    sequence: SequencePolicy
    ctv_hash: bytes
    script: CommitmentScript
    spend_info: TaprootSpendInfo
    anchor_index: int

    @property
    def address(self):
        return self.spend_info.address

    @property
    def amount(self):
        """Value to lock: the parent pays no fee, the child pays for both."""
        return sum(output.value for output in self.outputs)


@dataclass
class RunResult:
    covenant: Covenant
    funding: Outpoint
    fee_reserve: Outpoint
    parent_txid: str
    child_txid: str


def wait_for_confirmation(rpc, txid, timeout, interval, cancel=None, min_confirmations=1,
                          clock=time.monotonic):
    """
    Poll ``txid`` until it has ``min_confirmations``.

    Args:
        rpc: RPCClient (or anything with ``get_confirmations``)
        timeout: seconds before ConfirmationTimeout
        interval: seconds between polls
        cancel: threading.Event; setting it aborts the wait with WaitCancelled

    Returns:
        int: confirmations seen
    """
    cancel = cancel or threading.Event()
    started = clock()
    deadline = started + timeout

    while True:
        confirmations = rpc.get_confirmations(txid)
        log.info("Current confirmations: %d for transaction %s", confirmations, txid)
        if confirmations >= min_confirmations:
            return confirmations

        remaining = deadline - clock()
        if remaining <= 0:
            raise ConfirmationTimeout(txid, clock() - started)
        if cancel.wait(min(interval, remaining)):
            raise WaitCancelled(f"Wait for transaction {txid} cancelled")


def locate_output(rpc, txid, value, script):
    """
    Find the vout of ``txid`` paying ``value`` sats to ``script``.

    Matching on both value and scriptPubKey; more than one match is
    ambiguous and raises rather than guessing.
    """
    decoded = rpc.gettransaction(txid)["decoded"]
    matches = [
        vout["n"] for vout in decoded["vout"]
        if sats_amount(vout["value"]) == value
        and bytes.fromhex(vout["scriptPubKey"]["hex"]) == bytes(script)
    ]
    if not matches:
        raise NetworkError(f"No output of {value} sats to {script.hex()} in {txid}")
    if len(matches) > 1:
        raise NetworkError(f"Ambiguous outputs {matches} of {value} sats in {txid}")
    return Outpoint(txid, matches[0], value, bytes(script))


def child_fee_for_package(parent_vsize, child_vsize, feerate, parent_fee=0):
    """
    Fee the child must pay so parent + child reach ``feerate`` sat/vB.

    Returns:
        int: child fee in satoshis (never negative)
    """
    required_total_fee = math.ceil(feerate * (parent_vsize + child_vsize))
    return max(required_total_fee - parent_fee, 0)


def op_return_script(data):
    if len(data) > MAX_OP_RETURN_DATA:
        raise EncodingError(f"OP_RETURN data is {len(data)} bytes (max {MAX_OP_RETURN_DATA})")
    return Script(["OP_RETURN", data.hex()])


class CovenantOrchestrator:
    """
    Sequences the covenant stages against a wallet RPC.

    Usage:
        orchestrator = CovenantOrchestrator(CovenantConfig.from_env())
        result = orchestrator.run()

    or step by step: create(), fund(), wait_for_funding(),
    broadcast_parent(), broadcast_child().
    """

    def __init__(self, config, rpc=None, randomness=secrets.token_bytes):
        self.config = config
        self.rpc = rpc or RPCClient(config.rpc_endpoint, config.rpc_user, config.rpc_password)
        self.randomness = randomness
        self.stage: Optional[Stage] = None

        self.covenant: Optional[Covenant] = None
        self.funding_txid = None
        self.reserve_txid = None
        self.reserve_address = None
        self.funding: Optional[Outpoint] = None
        self.fee_reserve: Optional[Outpoint] = None
        self.parent_tx = None
        self.parent_txid = None
        self.child_txid = None

        setup(config.chain)

    def _require(self, stage, step):
        if self.stage is not stage:
            current = self.stage.name if self.stage else "NOT_CREATED"
            raise StageError(f"{step} requires stage {stage.name}, current stage is {current}")

    def _advance(self, stage):
        log.info("Stage %s -> %s", self.stage.name if self.stage else "NOT_CREATED", stage.name)
        self.stage = stage

    def create(self, payout_address=None, sequence=None):
        """
        Commit to [payout, anchor] and derive the covenant address.

        Returns:
            Covenant
        """
        if self.stage is not None:
            raise StageError(f"Covenant already created (stage {self.stage.name})")

        if payout_address is None:
            payout_address = self.rpc.getnewaddress("", "bech32m")
        sequence = sequence or SequencePolicy.no_timelock()

        outputs = (
            Output.from_address(self.config.payout_amount, payout_address),
            Output(self.config.anchor_amount, script_for_address(self.config.fee_anchor_address)),
        )
        ctv_hash = calc_ctv_hash(outputs, sequence)
        script = ctv_script(ctv_hash, self.config.script_variant)
        spend_info, address = create_ctv_address(script, self.config.network, self.randomness)

        self.covenant = Covenant(outputs, sequence, ctv_hash, script, spend_info, anchor_index=1)
        log.info("CTV spend address: %s", payout_address)
        log.info("CTV hash: %s", ctv_hash.hex())
        log.info("CTV address: %s", address.to_string())
        self._advance(Stage.CREATED)
        return self.covenant

    def fund(self):
        """Send the covenant amount and the fee reserve from the wallet."""
        self._require(Stage.CREATED, "fund")
        covenant = self.covenant
        needed = covenant.amount + self.config.fee_reserve_amount

        balance = self.rpc.getbalance()
        if balance < needed:
            raise NetworkError(f"Insufficient balance: {balance} sats, need at least {needed} sats")

        self.funding_txid = self.rpc.sendtoaddress(covenant.address.to_string(), covenant.amount)
        log.info("Funding transaction sent: %s", self.funding_txid)

        self.reserve_address = self.rpc.getnewaddress("", "bech32m")
        self.reserve_txid = self.rpc.sendtoaddress(self.reserve_address, self.config.fee_reserve_amount)
        log.info("Fee reserve transaction sent: %s (%s)", self.reserve_txid, self.reserve_address)

        if self.config.auto_mine and self.config.network == "regtest":
            self.rpc.generatetoaddress(1, self.reserve_address)

        self._advance(Stage.FUNDED_PENDING)
        return self.funding_txid, self.reserve_txid

    def wait_for_funding(self, cancel=None):
        """Block until both funding transactions confirm (bounded, cancellable)."""
        self._require(Stage.FUNDED_PENDING, "wait_for_funding")
        for txid in (self.funding_txid, self.reserve_txid):
            wait_for_confirmation(
                self.rpc,
                txid,
                timeout=self.config.confirmation_timeout,
                interval=self.config.poll_interval,
                cancel=cancel,
                min_confirmations=self.config.min_confirmations,
            )
        log.info("Funding confirmed, the CTV transaction can now be spent")
        self._advance(Stage.FUNDED_CONFIRMED)

    def build_parent(self):
        """Locate the covenant output and build the witnessed parent."""
        self._require(Stage.FUNDED_CONFIRMED, "build_parent")
        covenant = self.covenant

        self.funding = locate_output(
            self.rpc, self.funding_txid, covenant.amount, covenant.spend_info.script_pubkey()
        )
        unsigned = build_ctv_spend(self.funding.txid, self.funding.vout, covenant.outputs, covenant.sequence)
        parent = spend_ctv(unsigned, covenant.spend_info, covenant.ctv_hash, covenant.script.variant)

        verify_script_path(parent, 0, self.funding.script)
        return parent

    def broadcast_parent(self):
        """
        Broadcast the zero-fee parent on its own with sendrawtransaction.

        A node without package relay for zero-fee v3 parents rejects this
        with "min relay fee not met" (raised as NetworkError) before the
        child exists.
        """
        parent = self.build_parent()
        parent_hex = parent.serialize()
        log.info("CTV parent tx: %s", parent_hex)

        self.parent_txid = self.rpc.broadcast(parent_hex, parent.get_txid())
        self.parent_tx = parent
        log.info("CTV parent txid: %s", self.parent_txid)
        self._advance(Stage.PARENT_BROADCAST)
        return self.parent_txid

    def build_child(self, data=DEFAULT_CHILD_DATA):
        """
        Build the unsigned CPFP child spending anchor + fee reserve.

        Returns:
            tuple: (unsigned Transaction, child fee in sats)
        """
        self._require(Stage.PARENT_BROADCAST, "build_child")
        covenant = self.covenant
        anchor = covenant.outputs[covenant.anchor_index]

        self.fee_reserve = locate_output(
            self.rpc, self.reserve_txid, self.config.fee_reserve_amount,
            script_for_address(self.reserve_address),
        )

        inputs = [
            TxInput(self.parent_txid, covenant.anchor_index),
            TxInput(self.fee_reserve.txid, self.fee_reserve.vout),
        ]
        data_output = TxOutput(0, op_return_script(data))
        change_address = self.rpc.getnewaddress("", "bech32m")
        change_script = script_for_address(change_address)
        total_in = anchor.value + self.fee_reserve.value

        def assemble(outputs):
            return Transaction(inputs, outputs, version=struct.pack("<i", TEMPLATE_VERSION))

        draft = assemble([data_output, Output(total_in, change_script).to_tx_output()])
        child_vsize = draft.get_vsize() + RESERVE_WITNESS_VBYTES
        parent_fee = self.funding.value - covenant.amount
        fee = child_fee_for_package(
            self.parent_tx.get_vsize(), child_vsize, self.config.child_feerate, parent_fee
        )
        if fee > total_in:
            raise NetworkError(f"Fee reserve too small: child needs {fee} sats, inputs hold {total_in} sats")

        change = total_in - fee
        if change < CHANGE_DUST_LIMIT:
            log.warning("Change too small (%d sats); absorbed into fee", change)
            fee, change = total_in, 0
            child = assemble([data_output])
        else:
            child = assemble([data_output, Output(change, change_script).to_tx_output()])

        log.info("Child fee %d sats for package of %d vB at %s sat/vB",
                 fee, self.parent_tx.get_vsize() + child_vsize, self.config.child_feerate)
        return child, fee

    def broadcast_child(self, data=DEFAULT_CHILD_DATA):
        """Sign the fee reserve input with the wallet and broadcast the child."""
        child, _fee = self.build_child(data)
        covenant = self.covenant
        anchor = covenant.outputs[covenant.anchor_index]

        prevtxs = [{
            "txid": self.parent_txid,
            "vout": covenant.anchor_index,
            "scriptPubKey": anchor.script.hex(),
            "amount": btc_amount(anchor.value),
        }]
        signed = self.rpc.signrawtransactionwithwallet(child.serialize(), prevtxs)
        if not signed.get("complete"):
            raise NetworkError(f"Wallet could not sign the child transaction: {signed.get('errors')}")

        log.info("Child tx: %s", signed["hex"])
        # the reserve input is segwit, so signing does not change the txid
        self.child_txid = self.rpc.broadcast(signed["hex"], child.get_txid())
        log.info("Child txid: %s", self.child_txid)
        self._advance(Stage.CHILD_BROADCAST)
        return self.child_txid

    def run(self, payout_address=None, data=DEFAULT_CHILD_DATA, cancel=None):
        """Run every stage in order."""
        self.rpc.ensure_wallet(self.config.wallet_name)
        self.create(payout_address)
        self.fund()
        self.wait_for_funding(cancel)
        self.broadcast_parent()
        self.broadcast_child(data)
        return RunResult(self.covenant, self.funding, self.fee_reserve, self.parent_txid, self.child_txid)
