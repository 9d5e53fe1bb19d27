class ChainClientError(Exception):
    pass


class LedgerRpcError(ChainClientError):
    pass


class IndexerApiError(ChainClientError):
    pass


class IndexerNotConfiguredError(IndexerApiError):
    pass
