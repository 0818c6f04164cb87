"""
Health checks for readiness/liveness probes.

Checks:
- Ledger store readability
- Token cache state (informational, never fails the probe)
"""
from typing import Any, Dict, Optional

import structlog

from stk_gateway.core.exceptions import PersistenceError
from stk_gateway.core.ledger import TransactionLedger
from stk_gateway.integrations.token_manager import TokenManager

logger = structlog.get_logger(__name__)


class HealthCheck:
    """Reports the state of the ledger store and the token cache."""

    def __init__(
        self,
        ledger: TransactionLedger,
        token_manager: Optional[TokenManager] = None,
    ):
        self.ledger = ledger
        self.token_manager = token_manager

    async def check_ledger(self) -> Dict[str, Any]:
        """Ledger store health status."""
        try:
            records = await self.ledger.list()
        except PersistenceError as e:
            logger.error("ledger_health_check_failed", error=e.message)
            return {"status": "unhealthy", "service": "ledger", "message": e.message}
        return {"status": "healthy", "service": "ledger", "records": len(records)}

    def check_token_cache(self) -> Dict[str, Any]:
        """Token cache state. A cold cache is healthy."""
        if self.token_manager is None:
            return {"status": "unconfigured", "service": "token_cache"}
        return {
            "status": "healthy",
            "service": "token_cache",
            "token_cached": self.token_manager.is_valid(),
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Overall health.

        Returns:
            Dict[str, Any]: {"status": "healthy"|"unhealthy", "checks": {...}}
        """
        checks = {
            "ledger": await self.check_ledger(),
            "token_cache": self.check_token_cache(),
        }
        healthy = checks["ledger"]["status"] == "healthy"
        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}
