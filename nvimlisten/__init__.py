"""
nvimlisten - Neovim and development-environment control over MCP

A Python MCP server that drives running Neovim instances, plugins,
sessions and environment scripts through the nvim command line.
"""

__version__ = "0.1.0"


# Lazy imports so `python -m nvimlisten.mcp_server` does not import twice
def __getattr__(name):
    if name == "NeovimClient":
        from .nvim_client import NeovimClient

        return NeovimClient
    if name == "NvimListenServer":
        from .mcp_server import NvimListenServer

        return NvimListenServer
    if name == "Settings":
        from .settings import Settings

        return Settings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["NeovimClient", "NvimListenServer", "Settings", "__version__"]
