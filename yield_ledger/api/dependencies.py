"""
Request dependencies: the ledger system and the calling actor
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from ..identity import Actor, Role
from ..system import LedgerSystem


def get_system(request: Request) -> LedgerSystem:
    return request.app.state.system


def get_actor(
    x_account_id: Optional[str] = Header(None),
    x_account_role: Optional[str] = Header(None),
    x_account_email: Optional[str] = Header(None)
) -> Actor:
    """
    Identity as forwarded by the authenticating gateway

    The gateway has already verified the caller; these headers are trusted.
    """
    if not x_account_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing account identity")
    try:
        role = Role((x_account_role or Role.USER.value).lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role: {x_account_role}")
    return Actor(account_id=x_account_id, role=role, email=x_account_email)
