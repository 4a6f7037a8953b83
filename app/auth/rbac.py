from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser


async def require_hod_and_above(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """HOD, principal or admin. Used for class assignment writes and audit reads."""
    if not current_user.is_hod_or_above:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only HOD and above can perform this action",
        )
    return current_user


async def require_faculty_and_above(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if current_user.role == "student":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return current_user


def ensure_department_scope(current_user: CurrentUser, department: str) -> None:
    """HOD and faculty act only inside their own department; admin/principal act anywhere."""
    if current_user.is_admin:
        return
    if current_user.department != department:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only manage classes in your own department",
        )


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Admin or principal. Repair tooling only."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can run repair tasks",
        )
    return current_user
