"""vSphere session layer.

Public API:
    ManagementClient: Contract every management session implements
    ManagementConnectionPool: Pool leasing validated sessions
    get_connection_pool / set_connection_pool / reset_connection_pool
"""

from .client import ManagementClient
from .connection_pool import (
    ManagementConnectionPool,
    get_connection_pool,
    reset_connection_pool,
    set_connection_pool,
)

__all__ = [
    "ManagementClient",
    "ManagementConnectionPool",
    "get_connection_pool",
    "reset_connection_pool",
    "set_connection_pool",
]
