"""
Commitment Script Builder

Builds the single tapscript leaf that carries a CTV commitment:

    <32-byte template hash> OP_CHECKTEMPLATEVERIFY [OP_DROP]

Both the address derivation and the spend assembly rebuild the leaf through
``ctv_script`` so the two sides can never disagree on the bytes.
"""

from enum import Enum

from bitcoinutils.script import Script

from simple_ctv.errors import EncodingError

# OP_CHECKTEMPLATEVERIFY redefines OP_NOP4
OP_CHECKTEMPLATEVERIFY = 0xB3
OP_DROP = 0x75
OP_PUSHBYTES_32 = 0x20

CTV_HASH_SIZE = 32


class ScriptVariant(Enum):
    """
    Protocol variant of the commitment leaf.

    MINIMAL:   <H> OP_CTV            witness [script, control_block]
    WITH_DROP: <H> OP_CTV OP_DROP    witness [H, script, control_block]

    The variant changes the leaf hash and therefore the address, so it is
    chosen once per deployment and read by both creation and spend.
    """

    MINIMAL = "minimal"
    WITH_DROP = "with_drop"


class RawScript(Script):
    """A bitcoinutils Script that serializes to exactly the given bytes."""

    def __init__(self, raw):
        self.raw = bytes(raw)
        super().__init__([self.raw.hex()])

    def to_bytes(self, segwit=False):
        return self.raw

    def to_hex(self):
        return self.raw.hex()

    def __eq__(self, other):
        return isinstance(other, Script) and self.to_bytes() == other.to_bytes()

    def __hash__(self):
        return hash(self.raw)

    def __repr__(self):
        return f"{type(self).__name__}({self.raw.hex()})"


class CommitmentScript(RawScript):
    """The CTV leaf script for one commitment hash and variant."""

    def __init__(self, ctv_hash, variant=ScriptVariant.MINIMAL):
        ctv_hash = bytes(ctv_hash)
        if len(ctv_hash) != CTV_HASH_SIZE:
            raise EncodingError(f"CTV hash must be {CTV_HASH_SIZE} bytes, got {len(ctv_hash)}")
        raw = bytes([OP_PUSHBYTES_32]) + ctv_hash + bytes([OP_CHECKTEMPLATEVERIFY])
        if variant is ScriptVariant.WITH_DROP:
            raw += bytes([OP_DROP])
        super().__init__(raw)
        self.ctv_hash = ctv_hash
        self.variant = variant

    def witness_prefix(self):
        """Witness items (hex) that precede the script when spending this leaf."""
        if self.variant is ScriptVariant.WITH_DROP:
            return [self.ctv_hash.hex()]
        return []

    def ops(self):
        """Human readable opcode listing."""
        ops = [self.ctv_hash.hex(), "OP_CHECKTEMPLATEVERIFY"]
        if self.variant is ScriptVariant.WITH_DROP:
            ops.append("OP_DROP")
        return ops


def ctv_script(ctv_hash, variant=ScriptVariant.MINIMAL):
    """Build Commitment Script - push the template hash, verify it with OP_CTV"""
    return CommitmentScript(ctv_hash, variant)


def parse_ctv_script(raw):
    """
    Recover (ctv_hash, variant) from raw leaf bytes.

    Returns:
        tuple | None: None if ``raw`` is not a commitment leaf.
    """
    raw = bytes(raw)
    if len(raw) not in (34, 35) or raw[0] != OP_PUSHBYTES_32 or raw[33] != OP_CHECKTEMPLATEVERIFY:
        return None
    if len(raw) == 34:
        return raw[1:33], ScriptVariant.MINIMAL
    if raw[34] == OP_DROP:
        return raw[1:33], ScriptVariant.WITH_DROP
    return None
