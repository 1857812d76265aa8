class TaxFillerError(Exception):
    pass


class ConfigError(TaxFillerError):
    pass


class BundleSourceError(TaxFillerError):
    pass


class StoreUnavailable(TaxFillerError):
    pass


class DeserializationError(TaxFillerError):
    def __init__(self, record: str, reason: str):
        super().__init__(f"Cannot decode stored record ({reason}): {record!r}")
        self.record = record
        self.reason = reason


class WriteError(TaxFillerError):
    pass
