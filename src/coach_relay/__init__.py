__all__ = [
    "settings",
    "ledger",
    "service",
]
