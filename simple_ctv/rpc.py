"""
Bitcoin Core RPC Client

JSON-RPC client for the wallet and broadcast calls the covenant workflow
needs. Amounts are sent as 8-decimal BTC strings and parsed back as Decimal
so satoshi values survive the round trip exactly.
"""

import logging
from decimal import Decimal
from itertools import count

import requests
from bitcoinutils.utils import to_satoshis

from simple_ctv.errors import NetworkError, RPCError

log = logging.getLogger(__name__)

SATOSHIS_PER_BITCOIN = Decimal(100_000_000)

# bitcoind error codes
RPC_VERIFY_ALREADY_IN_CHAIN = -27
RPC_WALLET_ALREADY_LOADED = -35
RPC_WALLET_ALREADY_EXISTS = -4

ALREADY_BROADCAST_REASONS = ("txn-already-in-mempool", "txn-already-known", "already in block chain")


def btc_amount(sats):
    """Satoshis -> BTC string accepted by bitcoind (no float rounding)."""
    return f"{Decimal(sats) / SATOSHIS_PER_BITCOIN:.8f}"


def sats_amount(btc):
    """BTC (Decimal or str from an RPC reply) -> satoshis."""
    return to_satoshis(Decimal(btc))


def is_already_broadcast(error):
    """True if a sendrawtransaction rejection means the node already has the tx."""
    if error.code == RPC_VERIFY_ALREADY_IN_CHAIN:
        return True
    message = error.message.lower()
    return any(reason in message for reason in ALREADY_BROADCAST_REASONS)


class RPCClient:
    """
    JSON-RPC client for bitcoind.

    Usage:
        rpc = RPCClient("http://localhost:18443/wallet/simple_ctv", "user", "pass")
        txid = rpc.sendtoaddress(address, 1577)
        rpc.gettransaction(txid)["confirmations"]
    """

    def __init__(self, url, user="", password="", timeout=30, read_retries=3, session=None):
        self.url = url
        self.auth = (user, password) if user or password else None
        self.timeout = timeout
        self.read_retries = read_retries
        self.session = session or requests.Session()
        self._ids = count(1)

    def _call(self, method, params=None, retry=False):
        """
        Make RPC call.

        Connection failures of idempotent reads (``retry=True``) are retried
        up to ``read_retries`` times; writes are never retried.
        """
        payload = {
            "jsonrpc": "1.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        attempts = 1 + (self.read_retries if retry else 0)

        for attempt in range(1, attempts + 1):
            try:
                response = self.session.post(
                    self.url,
                    json=payload,
                    auth=self.auth,
                    timeout=self.timeout,
                )
                break
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                if attempt == attempts:
                    raise NetworkError(f"{method}: connection failed: {e}") from e
                log.warning("%s: connection failed (attempt %d/%d): %s", method, attempt, attempts, e)
            except requests.exceptions.RequestException as e:
                raise NetworkError(f"{method}: request failed: {e}") from e

        if response.status_code == 401:
            raise RPCError(-1, "Unauthorized: check BITCOIN_RPC_USER / BITCOIN_RPC_PASS")

        # bitcoind answers RPC errors with HTTP 500 and a JSON body
        try:
            result = response.json(parse_float=Decimal)
        except ValueError:
            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as e:
                raise NetworkError(f"{method}: {e}") from e
            raise NetworkError(f"{method}: invalid JSON response")

        if result.get("error"):
            raise RPCError(result["error"]["code"], result["error"]["message"])

        log.debug("%s %s -> %s", method, payload["params"], result.get("result"))
        return result.get("result")

    # Wallet lifecycle

    def createwallet(self, name):
        return self._call("createwallet", [name])

    def loadwallet(self, name):
        return self._call("loadwallet", [name])

    def ensure_wallet(self, name):
        """Create the wallet, or load it if it already exists."""
        try:
            self.createwallet(name)
            log.info("Wallet %s created", name)
            return
        except RPCError as e:
            if e.code != RPC_WALLET_ALREADY_EXISTS:
                raise
        try:
            self.loadwallet(name)
            log.info("Wallet %s loaded", name)
        except RPCError as e:
            if e.code != RPC_WALLET_ALREADY_LOADED:
                raise
            log.info("Wallet %s already loaded", name)

    def getnewaddress(self, label="", address_type=None):
        params = [label, address_type] if address_type else [label]
        return self._call("getnewaddress", params)

    def getbalance(self):
        """Wallet balance in satoshis."""
        return sats_amount(self._call("getbalance", retry=True))

    # Funding and confirmation

    def sendtoaddress(self, address, sats):
        """Send ``sats`` to ``address`` from the wallet; returns the txid."""
        return self._call("sendtoaddress", [address, btc_amount(sats)])

    def gettransaction(self, txid, verbose=True):
        """Wallet transaction; with ``verbose`` the reply carries ``decoded``."""
        return self._call("gettransaction", [txid, True, verbose], retry=True)

    def get_confirmations(self, txid):
        return int(self.gettransaction(txid, verbose=False).get("confirmations", 0))

    def generatetoaddress(self, blocks, address):
        return self._call("generatetoaddress", [blocks, address])

    # Raw transactions

    def signrawtransactionwithwallet(self, tx_hex, prevtxs=None):
        params = [tx_hex, prevtxs] if prevtxs else [tx_hex]
        return self._call("signrawtransactionwithwallet", params)

    def sendrawtransaction(self, tx_hex):
        return self._call("sendrawtransaction", [tx_hex])

    def broadcast(self, tx_hex, txid=None):
        """
        Broadcast a raw transaction.

        A rejection saying the node already has the transaction is reported
        as success with the known ``txid``; any other rejection is raised.
        """
        try:
            return self.sendrawtransaction(tx_hex)
        except RPCError as e:
            if txid and is_already_broadcast(e):
                log.info("Transaction %s already broadcast (%s)", txid, e.message)
                return txid
            raise
