"""
SafeCap Server - campaigns and agent orchestration over HTTP.

Run with:
    safecap-server               # CLI entry point
    python -m safecap.server     # Module entry point

Or programmatically:
    from safecap.server import SafeCapServer
    server = SafeCapServer(port=8000)
    server.run()
"""

from .app import SafeCapServer, create_app
from .campaigns import Campaign, CampaignStore
from .config import ServerConfig

__all__ = [
    "create_app",
    "SafeCapServer",
    "ServerConfig",
    "Campaign",
    "CampaignStore",
]
