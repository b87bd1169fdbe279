# PATH: execution/discovery.py
"""
Vault rediscovery from VaultBuilt events.

VaultBuilt(bytes12 indexed vaultId, address indexed owner,
           bytes6 indexed seriesId, bytes6 ilkId)

owner and series are filtered by topic; ilk lives in data and is
matched client-side. The most recent matching log wins.
"""

from typing import Optional

from chains.abi import VAULT_BUILT_TOPIC, decode_words, encode_topic
from chains.block import fetch_block_state, lookback_start
from chains.ledger import LedgerClient, LogEntry, LogFilter, Receipt, sort_logs
from core.constants import VAULT_DISCOVERY_LOOKBACK_BLOCKS
from core.exceptions import AbiEncodingError
from core.logging import get_logger
from core.validators import same_address

logger = get_logger(__name__)


def vault_built_filter(cauldron: str, owner: str, series_id: str, to_height: Optional[int] = None) -> LogFilter:
    return LogFilter(
        address=cauldron,
        topics=(
            VAULT_BUILT_TOPIC,
            None,
            encode_topic("address", owner),
            encode_topic("bytes6", series_id),
        ),
        to_height=to_height,
    )


def vault_id_from_log(log: LogEntry) -> Optional[str]:
    """bytes12 vault id from topic 1."""
    if len(log.topics) < 2:
        return None
    return "0x" + log.topics[1][2:26].lower()


def built_vault_id(receipt: Receipt, cauldron: str) -> Optional[str]:
    """
    Vault id from the VaultBuilt log of a confirmed build().

    The id depends on the mined block; the value returned by the
    pre-broadcast simulation can differ.
    """
    for log in receipt.logs:
        if (
            log.topics
            and str(log.topics[0]).lower() == VAULT_BUILT_TOPIC
            and same_address(log.address, cauldron)
        ):
            return vault_id_from_log(log)
    return None


def ilk_from_log(log: LogEntry) -> Optional[str]:
    try:
        (ilk_id,) = decode_words(("bytes6",), log.data)
    except AbiEncodingError:
        return None
    return ilk_id


async def discover_position_id(
    ledger: LedgerClient,
    cauldron: str,
    owner: str,
    series_id: str,
    ilk_id: str,
    lookback_blocks: int = VAULT_DISCOVERY_LOOKBACK_BLOCKS,
) -> Optional[str]:
    """
    Most recent vault built by owner for (series, ilk), or None.

    Raises:
        BorrowError: the height or log query failed
    """
    current = (await fetch_block_state(ledger)).block_number
    from_height = lookback_start(current, lookback_blocks)
    logs = await ledger.event_logs_since(
        from_height,
        vault_built_filter(cauldron, owner, series_id, to_height=current),
    )

    wanted = ilk_id.lower()
    for log in reversed(sort_logs(logs)):
        if (ilk_from_log(log) or "").lower() == wanted:
            vault_id = vault_id_from_log(log)
            logger.info(
                "Rediscovered vault",
                extra={"context": {"owner": owner, "series_id": series_id, "vault_id": vault_id}},
            )
            return vault_id

    logger.debug(
        "No vault found",
        extra={"context": {"owner": owner, "series_id": series_id, "logs_scanned": len(logs)}},
    )
    return None
