from dsoul.config.settings import (
    DEFAULT_IPFS_GATEWAYS,
    DEFAULT_PROVIDER,
    DsoulSettings,
    SettingsManager,
    load_settings,
    save_settings,
)

__all__ = [
    "DEFAULT_IPFS_GATEWAYS",
    "DEFAULT_PROVIDER",
    "DsoulSettings",
    "SettingsManager",
    "load_settings",
    "save_settings",
]
