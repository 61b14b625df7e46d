import os
from typing import Dict

import requests
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

load_dotenv()

# Tokens are issued and checked by the user service; this service only asks it who the caller is.
USER_SERVICE_URL = os.getenv("USER_SERVICE_URL", "http://user-service:8000")
USER_PROFILE_ENDPOINT = os.getenv("USER_PROFILE_ENDPOINT", "/users/me")

security = HTTPBearer()


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict:
    token = credentials.credentials

    try:
        response = requests.get(
            f"{USER_SERVICE_URL}{USER_PROFILE_ENDPOINT}",
            headers={"Authorization": f"Bearer {token}"},
            timeout=5,
        )
    except requests.exceptions.RequestException as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"User service is unavailable: {str(e)}",
            headers={"Retry-After": "5"},
        )

    if response.status_code == 200:
        user_data = response.json()
        return {
            "id": str(user_data["id"]),
            "email": user_data.get("email"),
            "role": user_data.get("role", "client"),
        }
    if response.status_code == 401:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Failed to get user from user service: {response.text}",
    )


ROLE_LEVELS = {"client": 0, "employee": 1, "admin": 2}


def has_role(user: Dict, required: str) -> bool:
    return ROLE_LEVELS.get(user.get("role"), 0) >= ROLE_LEVELS[required]


def get_current_staff(current_user: Dict = Depends(get_current_user)) -> Dict:
    """Employees and admins: the back-office for products, stock and orders."""
    if not has_role(current_user, "employee"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Staff access required.",
        )
    return current_user
