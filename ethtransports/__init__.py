"""Asynchronous Ethereum JSON-RPC transports: HTTP, Unix socket IPC and batching."""

__version__ = "0.1.0"

__all__ = ["batch", "http_support", "http_transport", "ipc", "rpc"]