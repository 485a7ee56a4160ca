"""
Template Hasher

Computes the BIP-119 standard template hash that a CTV leaf commits to.

The committed template is always a version 3, locktime 0 transaction with a
single input spent at index 0, so only the output set and the input's
nSequence vary between commitments:

    sha256( version | locktime | n_inputs | sha256(sequences)
            | n_outputs | sha256(outputs) | input_index )
"""

import hashlib
import struct
from dataclasses import dataclass

from bitcoinutils.transactions import TxOutput
from bitcoinutils.utils import prepend_compact_size

from simple_ctv.addresses import script_for_address
from simple_ctv.errors import EncodingError
from simple_ctv.script import RawScript

TEMPLATE_VERSION = 3
TEMPLATE_LOCKTIME = 0
TEMPLATE_INPUT_INDEX = 0

# nSequence signalling RBF with no relative timelock
ENABLE_RBF_NO_LOCKTIME = 0xFFFFFFFD

MAX_MONEY = 21_000_000 * 100_000_000
MAX_SCRIPT_SIZE = 10_000


def sha256(data):
    return hashlib.sha256(data).digest()


@dataclass(frozen=True)
class Output:
    """One committed output: value in satoshis and raw scriptPubKey bytes."""

    value: int
    script: bytes

    def to_tx_output(self):
        return TxOutput(self.value, RawScript(self.script))

    def serialize(self):
        """Consensus encoding: 8-byte LE value + CompactSize length + script."""
        return self.to_tx_output().to_bytes()

    @classmethod
    def from_address(cls, value, address):
        return cls(value, script_for_address(address))


@dataclass(frozen=True)
class SequencePolicy:
    """
    nSequence committed for the single template input.

    Use ``no_timelock()`` for "enabled, no timelock" or
    ``relative_timeout(n)`` for an explicit relative wait value.
    """

    value: int

    def __post_init__(self):
        if not 0 <= self.value <= 0xFFFFFFFF:
            raise EncodingError(f"Sequence value out of range: {self.value}")

    @classmethod
    def no_timelock(cls):
        return cls(ENABLE_RBF_NO_LOCKTIME)

    @classmethod
    def relative_timeout(cls, value):
        return cls(value)

    def to_bytes(self):
        return struct.pack("<I", self.value)


def validate_outputs(outputs):
    """Reject outputs that cannot be consensus-encoded."""
    for index, output in enumerate(outputs):
        if not isinstance(output.value, int) or isinstance(output.value, bool):
            raise EncodingError(f"Output {index}: value must be an integer number of satoshis")
        if not 0 <= output.value <= MAX_MONEY:
            raise EncodingError(f"Output {index}: value {output.value} out of range")
        if not isinstance(output.script, (bytes, bytearray)):
            raise EncodingError(f"Output {index}: script must be bytes")
        if len(output.script) > MAX_SCRIPT_SIZE:
            raise EncodingError(
                f"Output {index}: script is {len(output.script)} bytes (max {MAX_SCRIPT_SIZE})"
            )


def calc_ctv_hash(outputs, sequence=None):
    """
    Hash a committed output set and sequence policy into a CTV commitment.

    Args:
        outputs: ordered sequence of Output; order is part of the commitment
        sequence: SequencePolicy, defaults to no timelock

    Returns:
        bytes: 32-byte commitment hash
    """
    outputs = list(outputs)
    validate_outputs(outputs)
    if sequence is None:
        sequence = SequencePolicy.no_timelock()

    buffer = struct.pack("<i", TEMPLATE_VERSION)
    buffer += struct.pack("<I", TEMPLATE_LOCKTIME)
    buffer += struct.pack("<I", 1)  # inputs len
    buffer += sha256(sequence.to_bytes())
    buffer += struct.pack("<I", len(outputs))
    buffer += sha256(b"".join(o.serialize() for o in outputs))
    buffer += struct.pack("<I", TEMPLATE_INPUT_INDEX)
    return sha256(buffer)


def _le32(value, signed=False):
    if isinstance(value, int):
        return struct.pack("<i" if signed else "<I", value)
    return bytes(value)


def template_hash_of(tx, input_index=0):
    """
    DefaultCheckTemplateVerifyHash of an arbitrary bitcoinutils Transaction.

    Matches ``calc_ctv_hash`` for a version 3, locktime 0, single-input
    transaction with an empty scriptSig.
    """
    if not 0 <= input_index < len(tx.inputs):
        raise EncodingError(f"Input index {input_index} out of range")

    buffer = _le32(tx.version, signed=True)
    buffer += _le32(tx.locktime)
    script_sigs = [txin.script_sig.to_bytes() if txin.script_sig else b"" for txin in tx.inputs]
    if any(script_sigs):
        buffer += sha256(b"".join(prepend_compact_size(s) for s in script_sigs))
    buffer += struct.pack("<I", len(tx.inputs))
    buffer += sha256(b"".join(_le32(txin.sequence) for txin in tx.inputs))
    buffer += struct.pack("<I", len(tx.outputs))
    buffer += sha256(b"".join(txout.to_bytes() for txout in tx.outputs))
    buffer += struct.pack("<I", input_index)
    return sha256(buffer)
