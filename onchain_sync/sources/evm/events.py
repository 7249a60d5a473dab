from typing import List, Optional
from web3 import Web3
from web3.types import LogReceipt
import backoff
import logging

log = logging.getLogger(__name__)


@backoff.on_exception(backoff.expo, Exception, max_tries=3)
def fetch_logs(
    w3: Web3,
    from_block: int,
    to_block: int,
    topics: Optional[list] = None,
    addresses: Optional[List[str]] = None,
) -> List[LogReceipt]:
    """eth_getLogs over an inclusive block range. Raises after the retries are spent."""
    params = {"fromBlock": from_block, "toBlock": to_block}
    if topics:
        params["topics"] = topics
    if addresses:
        params["address"] = [Web3.to_checksum_address(a) for a in addresses]
    return w3.eth.get_logs(params)


class Web3LogProvider:
    """The RPC collaborator the backfill talks to: ``get_logs`` and ``get_latest_block``."""

    def __init__(self, w3: Web3):
        self.w3 = w3

    def get_logs(self, from_block: int, to_block: int, topics=None, addresses=None) -> List[LogReceipt]:
        return fetch_logs(self.w3, from_block, to_block, topics=topics, addresses=addresses)

    def get_latest_block(self) -> int:
        return self.w3.eth.block_number
