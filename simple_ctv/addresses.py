"""
Address helpers

Maps the address literals used by the workflow (pay-to-anchor, wallet
P2TR / P2WPKH / P2WSH addresses) to raw scriptPubKey bytes.
"""

from bitcoinutils.keys import P2trAddress, P2wpkhAddress, P2wshAddress

from simple_ctv.config import NETWORK_DEFAULTS
from simple_ctv.errors import EncodingError

# OP_1 <0x4e73>
PAY_TO_ANCHOR_SCRIPT = bytes.fromhex("51024e73")

PAY_TO_ANCHOR_ADDRESSES = {
    defaults["fee_anchor_address"] for defaults in NETWORK_DEFAULTS.values()
}

# data part length (witness version + program + checksum) per segwit output type
_P2WPKH_DATA_LEN = 39
_P2WSH_DATA_LEN = 59


def is_pay_to_anchor(script):
    return bytes(script) == PAY_TO_ANCHOR_SCRIPT


def script_for_address(address):
    """
    Return the scriptPubKey bytes for ``address``.

    bitcoinutils validates the human readable part against the network
    selected with ``setup()``, so call this after the network is set.
    """
    address = address.strip()
    if address.lower() in PAY_TO_ANCHOR_ADDRESSES:
        return PAY_TO_ANCHOR_SCRIPT

    try:
        _, data = address.lower().rsplit("1", 1)
    except ValueError:
        raise EncodingError(f"Not a segwit address: {address}") from None

    try:
        if data.startswith("p"):
            script = P2trAddress(address).to_script_pub_key()
        elif data.startswith("q") and len(data) == _P2WPKH_DATA_LEN:
            script = P2wpkhAddress(address).to_script_pub_key()
        elif data.startswith("q") and len(data) == _P2WSH_DATA_LEN:
            script = P2wshAddress(address).to_script_pub_key()
        else:
            raise EncodingError(f"Unsupported address type: {address}")
    except EncodingError:
        raise
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Invalid address {address}: {e}") from e

    return script.to_bytes()
