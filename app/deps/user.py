from fastapi import Header, HTTPException, Query


def get_current_user_id(
    user_query: str | None = Query(default=None, alias="user_id"),
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    active = x_user_id or user_query
    if not active:
        raise HTTPException(
            status_code=401,
            detail="Missing user context. Provide X-User-Id header or user_id query param.",
        )
    return active


def get_operator_id(
    x_operator_id: str | None = Header(default=None, alias="X-Operator-Id"),
) -> str:
    if not x_operator_id:
        raise HTTPException(status_code=403, detail="Operator access required (X-Operator-Id header).")
    return x_operator_id
