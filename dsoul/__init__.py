"""dsoul - verified skill downloader for IPFS-hosted skills."""

__version__ = "0.4.0"
