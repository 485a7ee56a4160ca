"""
Script-Path Spend Assembler

Builds the transaction that spends a CTV commitment output and attaches the
script-path witness. No signature is involved; the witness only discloses
the leaf and proves it is in the tree.

Witness structure:
    MINIMAL:    [script, control_block]
    WITH_DROP:  [ctv_hash, script, control_block]
"""

import logging
import struct

from bitcoinutils.transactions import Transaction, TxInput, TxWitnessInput

from simple_ctv.script import ctv_script, ScriptVariant
from simple_ctv.template import SequencePolicy, TEMPLATE_VERSION

log = logging.getLogger(__name__)


def build_ctv_spend(txid, vout, outputs, sequence=None):
    """
    Build the unsigned transaction matching a committed template.

    Args:
        txid: funding transaction id
        vout: index of the commitment output in the funding transaction
        outputs: the committed Output set, in committed order
        sequence: the committed SequencePolicy

    Returns:
        Transaction: version 3, locktime 0, one input, no witness yet
    """
    if sequence is None:
        sequence = SequencePolicy.no_timelock()

    txin = TxInput(txid, vout)
    txin.sequence = sequence.to_bytes()
    return Transaction(
        [txin],
        [output.to_tx_output() for output in outputs],
        version=struct.pack("<i", TEMPLATE_VERSION),
        has_segwit=True,
    )


def spend_ctv(unsigned_tx, spend_info, ctv_hash, variant=ScriptVariant.MINIMAL, input_indexes=None):
    """
    Attach CTV script-path witnesses to ``unsigned_tx``.

    Args:
        unsigned_tx: Transaction whose inputs spend commitment outputs
        spend_info: TaprootSpendInfo from ``create_ctv_address``
        ctv_hash: commitment hash the leaf was built from
        variant: ScriptVariant used at creation
        input_indexes: inputs spending the commitment (default: all)

    Returns:
        Transaction: the same transaction, witnesses populated

    Raises:
        DerivationError: the rebuilt leaf is not in ``spend_info``'s tree
    """
    script = ctv_script(ctv_hash, variant)
    control_block = spend_info.control_block(script)

    if input_indexes is None:
        input_indexes = range(len(unsigned_tx.inputs))
    covenant_inputs = set(input_indexes)

    witnesses = []
    for index in range(len(unsigned_tx.inputs)):
        if index in covenant_inputs:
            witnesses.append(TxWitnessInput(
                script.witness_prefix() + [script.to_hex(), control_block.to_hex()]
            ))
        else:
            witnesses.append(TxWitnessInput([]))

    unsigned_tx.witnesses = witnesses
    unsigned_tx.has_segwit = True

    log.debug("Control block %s for leaf %s", control_block.to_hex(), script.to_hex())
    return unsigned_tx
