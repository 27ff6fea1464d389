"""
Shared API dependencies.
"""
from typing import Optional

from finsight.services.portfolio_service import PortfolioService, create_portfolio_service

_service: Optional[PortfolioService] = None


def get_portfolio_service() -> PortfolioService:
    """Process-wide PortfolioService wired from settings (override in tests)."""
    global _service
    if _service is None:
        _service = create_portfolio_service()
    return _service
