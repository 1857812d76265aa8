from .bundles import BundleSource, PeersDBSource
from .ledger import DecodedTx, LedgerClient, OtherMessage, TxDecoder, ValueTransfer

__all__ = [
    "BundleSource",
    "PeersDBSource",
    "LedgerClient",
    "TxDecoder",
    "DecodedTx",
    "ValueTransfer",
    "OtherMessage",
]
