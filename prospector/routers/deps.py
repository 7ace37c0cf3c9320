from fastapi import Header, HTTPException


async def get_tenant_id(x_tenant_id: str | None = Header(None)) -> str:
    if not x_tenant_id:
        raise HTTPException(400, "Missing tenant")
    return x_tenant_id


async def get_actor_id(x_user_id: str | None = Header(None)) -> str | None:
    return x_user_id
