"""Storage layout, address encoding and JSON-RPC service for a token virtual machine."""

__version__ = "0.0.1"
__all__ = ["jsonrpc", "storage", "utils", "version"]