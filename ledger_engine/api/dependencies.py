"""
FastAPI dependencies.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from ledger_engine.services.engine import LedgerEngine


def get_engine(request: Request) -> LedgerEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger engine not initialized"
        )
    return engine


def get_actor_id(x_actor_id: Optional[str] = Header(default=None, max_length=64)) -> Optional[str]:
    """Caller identity recorded for audit on manual operations."""
    return x_actor_id
