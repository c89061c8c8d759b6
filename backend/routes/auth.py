"""
Back-office - Routes Auth
Login / Logout / Session. La session est portée par un cookie (l'export ZIP
est demandé avec credentials) ou par un header Bearer.
"""

from fastapi import APIRouter, HTTPException, Depends, Request, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timezone, timedelta
from typing import Optional

from models.auth import UserLogin, ADMIN_ROLES
from config import db, hash_password, generate_token, now_iso, SESSION_COOKIE_NAME

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)

SESSION_DAYS = 7


# ==================== HELPERS ====================

def _session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    """Récupère l'utilisateur connecté depuis le token (header ou cookie)."""
    token = _session_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    session = await db.sessions.find_one({
        "token": token,
        "expires_at": {"$gt": now_iso()}
    })

    if not session:
        raise HTTPException(status_code=401, detail="Session expirée")

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="Utilisateur non trouvé")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    return user


async def require_admin(user: dict = Depends(get_current_user)):
    """Admin or super_admin access."""
    if user.get("role") not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Accès admin requis")
    return user


# ==================== LOGIN / LOGOUT ====================

@router.post("/login")
async def login(data: UserLogin, response: Response):
    """Connexion utilisateur."""
    user = await db.users.find_one(
        {"email": data.email.lower().strip()},
        {"_id": 0}
    )

    if not user or user.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    token = generate_token()
    expires_at = (datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS)).isoformat()

    await db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "created_at": now_iso(),
        "expires_at": expires_at
    })

    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=SESSION_DAYS * 24 * 3600,
        httponly=True,
        samesite="lax",
    )

    return {
        "token": token,
        "user": {
            "id": user["id"],
            "email": user["email"],
            "nom": user.get("nom", ""),
            "role": user.get("role", "admin"),
        }
    }


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    token = _session_token(request, credentials)
    if token:
        await db.sessions.delete_one({"token": token})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"success": True}
