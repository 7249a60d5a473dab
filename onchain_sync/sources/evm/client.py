from web3 import Web3, HTTPProvider
import backoff
import logging
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

# one client per (RPC URL, timeout)
_web3_clients: Dict[Tuple[str, int], Web3] = {}


@backoff.on_exception(backoff.expo, ConnectionError, max_tries=5, jitter=None)
def _connect(rpc_url: str, timeout: int) -> Web3:
    w3 = Web3(HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    if not w3.is_connected():
        raise ConnectionError("RPC endpoint unreachable")

    logger.info(f"Connected to RPC (chain id {w3.eth.chain_id}) ✅")
    return w3


def get_web3_client(rpc_url: str, timeout: int = 10) -> Web3:
    """Cached Web3 client; connection attempts back off exponentially."""
    key = (rpc_url, timeout)
    if key not in _web3_clients:
        _web3_clients[key] = _connect(rpc_url, timeout)
    return _web3_clients[key]
