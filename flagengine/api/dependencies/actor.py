"""
Actor dependency.

Authentication happens upstream of this service; the authenticated
operator identity arrives in the X-Actor header and is recorded on
audit events.
"""

from typing import Annotated

from fastapi import Depends, Header

from flagengine.utils.context import DEFAULT_ACTOR, get_request_context


async def get_actor(x_actor: str | None = Header(default=None)) -> str:
    """Get the operator identity for the current request."""
    if x_actor:
        return x_actor
    ctx = get_request_context()
    return ctx.actor if ctx else DEFAULT_ACTOR


Actor = Annotated[str, Depends(get_actor)]
