"""
Taproot Commitment Address Deriver

Embeds a commitment script as the only leaf of a Taproot tree whose
internal key is freshly sampled and immediately forgotten, so the key path
is unusable and the covenant leaf is the only way to spend the output.

Also provides the inverse check: given a spending transaction, verify the
control block against the prevout's output key and run the CTV leaf.

Output key:  Q = P + H_TapTweak(P || merkle_root) * G
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass

from bitcoinutils.keys import P2trAddress, PrivateKey, PublicKey
from bitcoinutils.script import Script
from bitcoinutils.setup import setup
from bitcoinutils.utils import (
    ControlBlock,
    Secp256k1Params,
    tapbranch_tagged_hash,
    tapleaf_tagged_hash,
    tweak_taproot_pubkey,
)

from simple_ctv.config import CHAIN_SETUP, check_network
from simple_ctv.errors import DerivationError, VerificationError
from simple_ctv.script import parse_ctv_script, RawScript, ScriptVariant
from simple_ctv.template import template_hash_of

log = logging.getLogger(__name__)

LEAF_VERSION_TAPSCRIPT = 0xC0
MAX_LEAF_SCRIPT_SIZE = 10_000
MAX_CONTROL_BLOCK_DEPTH = 128
ANNEX_TAG = 0x50

SECP256K1_ORDER = Secp256k1Params._order
SECP256K1_FIELD = Secp256k1Params._field


def tagged_hash(tag, data):
    """BIP340 Tagged Hash function"""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def derive_unspendable_key(randomness=secrets.token_bytes):
    """
    Sample an internal key nobody can sign for.

    The private scalar exists only inside this function; the caller gets
    the public key alone.

    Args:
        randomness: callable returning ``n`` random bytes

    Returns:
        PublicKey
    """
    while True:
        secret = int.from_bytes(randomness(32), "big")
        if 0 < secret < SECP256K1_ORDER:
            return PrivateKey(secret_exponent=secret).get_public_key()


@dataclass
class TaprootSpendInfo:
    """Everything needed to spend the single CTV leaf of a commitment output."""

    internal_key: PublicKey
    leaf_script: Script
    address: P2trAddress
    leaf_version: int = LEAF_VERSION_TAPSCRIPT

    @property
    def output_key(self):
        """32-byte x-only output key."""
        return self.script_pubkey()[2:]

    @property
    def is_odd(self):
        return self.address.is_odd()

    @property
    def merkle_root(self):
        # single leaf: TapLeaf hash = Merkle root
        return tapleaf_tagged_hash(self.leaf_script)

    def script_pubkey(self):
        return self.address.to_script_pub_key().to_bytes()

    def control_block(self, script):
        """
        Control block proving ``script`` is the committed leaf.

        Raises:
            DerivationError: if ``script`` is not the leaf of this tree
        """
        if script.to_bytes() != self.leaf_script.to_bytes():
            raise DerivationError(
                f"Script {script.to_hex()} is not a leaf of this tree "
                f"(leaf {self.leaf_script.to_hex()}); check the script variant"
            )
        return ControlBlock(
            self.internal_key,
            [[self.leaf_script]],  # script tree: single leaf
            0,                     # script index in tree
            is_odd=self.is_odd,
        )


def create_ctv_address(script, network="regtest", randomness=secrets.token_bytes):
    """
    Derive the Taproot output committing to ``script``.

    Args:
        script: commitment leaf (bitcoinutils Script)
        network: mainnet, signet or regtest
        randomness: source for the unspendable internal key

    Returns:
        tuple: (TaprootSpendInfo, P2trAddress)
    """
    script_size = len(script.to_bytes())
    if script_size > MAX_LEAF_SCRIPT_SIZE:
        raise DerivationError(f"Leaf script is {script_size} bytes (max {MAX_LEAF_SCRIPT_SIZE})")

    setup(CHAIN_SETUP[check_network(network)])

    internal_key = derive_unspendable_key(randomness)
    try:
        address = internal_key.get_taproot_address([[script]])
    except (ValueError, TypeError) as e:
        raise DerivationError(f"Taproot tree construction failed: {e}") from e

    log.info("CTV address %s (leaf %s)", address.to_string(), script.to_hex())
    log.debug("Unspendable internal key %s", internal_key.to_x_only_hex())
    return TaprootSpendInfo(internal_key, script, address), address


def parse_control_block(control_block):
    """Split a control block into (leaf_version, parity, internal_key, merkle_path)."""
    control_block = bytes(control_block)
    path_len = len(control_block) - 33
    if path_len < 0 or path_len % 32 or path_len // 32 > MAX_CONTROL_BLOCK_DEPTH:
        raise VerificationError(f"Invalid control block size: {len(control_block)} bytes")
    leaf_version = control_block[0] & 0xFE
    parity = control_block[0] & 0x01
    internal_key = control_block[1:33]
    merkle_path = [control_block[i:i + 32] for i in range(33, len(control_block), 32)]
    return leaf_version, parity, internal_key, merkle_path


def _internal_key_bytes(x_only):
    """Even-y public key bytes (x || y) for an x-only internal key."""
    if int.from_bytes(x_only, "big") >= SECP256K1_FIELD:
        raise VerificationError("Internal key is not a field element")
    try:
        return PublicKey("02" + x_only.hex()).to_bytes()
    except (AssertionError, IndexError, ValueError, TypeError) as e:
        raise VerificationError(f"Internal key {x_only.hex()} is not on the curve") from e


def verify_commitment(control_block, script_bytes, output_key):
    """
    Check that ``script_bytes`` and ``control_block`` open to ``output_key``.

    Raises:
        VerificationError: on any mismatch
    """
    leaf_version, parity, internal_key, merkle_path = parse_control_block(control_block)
    if leaf_version != LEAF_VERSION_TAPSCRIPT:
        raise VerificationError(f"Unsupported leaf version {hex(leaf_version)}")

    node = tapleaf_tagged_hash(RawScript(script_bytes))
    for sibling in merkle_path:
        node = tapbranch_tagged_hash(node, sibling)

    tweak = int.from_bytes(tagged_hash("TapTweak", internal_key + node), "big")
    if tweak >= SECP256K1_ORDER:
        raise VerificationError("Tweak exceeds curve order")

    try:
        # Q = P + tG
        tweaked, is_odd = tweak_taproot_pubkey(_internal_key_bytes(internal_key), tweak)
    except TypeError as e:
        raise VerificationError("Tweaked key is the point at infinity") from e
    if tweaked[:32] != bytes(output_key):
        raise VerificationError("Control block does not commit to the output key")
    if int(is_odd) != parity:
        raise VerificationError("Control block parity bit does not match the output key")


def _cast_to_bool(item):
    for i, byte in enumerate(item):
        if byte:
            # negative zero
            return not (i == len(item) - 1 and byte == 0x80)
    return False


def verify_script_path(tx, input_index, prevout_script):
    """
    Verify a CTV script-path spend of ``tx.inputs[input_index]``.

    Checks the control block against the P2TR prevout and executes the
    commitment leaf: the template hash of ``tx`` must equal the pushed hash
    and the leaf must leave exactly one true element on the stack.

    Returns:
        bytes: the verified commitment hash
    """
    prevout_script = bytes(prevout_script)
    if len(prevout_script) != 34 or prevout_script[:2] != b"\x51\x20":
        raise VerificationError("Prevout is not a P2TR output")
    if input_index >= len(tx.witnesses):
        raise VerificationError(f"Input {input_index} has no witness")

    stack = [bytes.fromhex(item) for item in tx.witnesses[input_index].stack]
    if len(stack) >= 2 and stack[-1][:1] == bytes([ANNEX_TAG]):
        stack.pop()
    if len(stack) < 2:
        raise VerificationError("Script-path witness needs a script and a control block")

    control_block, leaf = stack[-1], stack[-2]
    verify_commitment(control_block, leaf, prevout_script[2:])

    parsed = parse_ctv_script(leaf)
    if parsed is None:
        raise VerificationError(f"Leaf {leaf.hex()} is not a CTV commitment script")
    ctv_hash, variant = parsed

    # <H> OP_CHECKTEMPLATEVERIFY [OP_DROP]
    exec_stack = stack[:-2] + [ctv_hash]
    if template_hash_of(tx, input_index) != ctv_hash:
        raise VerificationError("Spending transaction does not match the committed template")
    if variant is ScriptVariant.WITH_DROP:
        exec_stack.pop()

    if len(exec_stack) != 1 or not _cast_to_bool(exec_stack[0]):
        raise VerificationError(f"Leaf left {len(exec_stack)} stack items; expected one true item")
    return ctv_hash
