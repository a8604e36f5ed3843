"""
tsserver Language Server

A Language Server Protocol bridge to the TypeScript tsserver process,
providing hover, completions, navigation, formatting and diagnostics.
"""

__version__ = "0.1.0"

# Import on demand to avoid import errors
def get_server():
    from tsserver_lsp.server import TypeScriptLanguageServer
    return TypeScriptLanguageServer

__all__ = ["get_server", "__version__"]
