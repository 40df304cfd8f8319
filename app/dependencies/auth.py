from fastapi import Header, HTTPException, status, Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import jwt  # PyJWT
import logging
import os
from typing import Optional
from app.db.session import get_db
from app.models.user import User

logger = logging.getLogger(__name__)

UNAUTHORIZED = "Non autorisé"

# PyJWKClient caches fetched keys itself; keep one per JWKS URL
_JWKS_CLIENTS = {}


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)


def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    client = _JWKS_CLIENTS.get(jwks_url)
    if client is None:
        client = jwt.PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
        _JWKS_CLIENTS[jwks_url] = client
    return client


def verify_token(authorization: Optional[str] = Header(None)) -> dict:
    """
    Verifies the bearer JWT and returns its claims.
    Supports HS256 (shared secret) and ES256/RS256 (keys from AUTH_JWKS_URL).
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise _unauthorized()

    token = authorization[len("Bearer "):].strip()
    # Frontends sometimes send the literal string of an unset variable
    if not token or token.lower() in ["null", "undefined", "none"]:
        logger.info("[AUTH] Rejected empty or placeholder token")
        raise _unauthorized()
    if len(token.split(".")) != 3:
        logger.info("[AUTH] Malformed token: expected header.payload.signature")
        raise _unauthorized()

    try:
        algo = jwt.get_unverified_header(token).get("alg")
    except jwt.DecodeError as e:
        logger.info("[AUTH] Failed to decode token header: %s", e)
        raise _unauthorized()

    audience = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")

    if algo == "HS256":
        secret = os.getenv("AUTH_JWT_SECRET")
        if not secret:
            logger.error("[AUTH] AUTH_JWT_SECRET is not set, cannot verify HS256 tokens")
            raise _unauthorized()
        key = secret
    elif algo in ("ES256", "RS256"):
        jwks_url = os.getenv("AUTH_JWKS_URL")
        if not jwks_url:
            logger.error("[AUTH] AUTH_JWKS_URL is not set, cannot verify %s tokens", algo)
            raise _unauthorized()
        try:
            key = _jwks_client(jwks_url).get_signing_key_from_jwt(token).key
        except jwt.PyJWTError as e:
            logger.warning("[AUTH] Could not resolve signing key: %s", e)
            raise _unauthorized()
    else:
        logger.info("[AUTH] Unsupported algorithm: %s", algo)
        raise _unauthorized()

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[algo],
            audience=audience,
            options={"verify_aud": True},
        )
    except jwt.PyJWTError as e:
        logger.info("[AUTH] %s verification failed: %s", algo, e)
        raise _unauthorized()

    return payload


def _find_user(db: Session, subject: Optional[str], email: Optional[str]) -> Optional[User]:
    user = None
    if subject:
        user = db.query(User).filter(User.auth_subject == subject).first()
    if not user and email:
        user = db.query(User).filter(User.email.ilike(email)).first()
        # Heal: rows created before the subject was known are found by email once, then by sub
        if user and subject and not user.auth_subject:
            user.auth_subject = subject
            db.commit()
            db.refresh(user)
            logger.info("[AUTH] Set auth_subject on user %s after email lookup", user.id)
    return user


def get_current_user_id(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> int:
    """
    FastAPI dependency returning the local user id for the bearer token.
    Creates the user on first sight so a fresh sign-up can use the API at once.
    """
    payload = verify_token(authorization)

    email = payload.get("email")
    subject = payload.get("sub")
    if not email and not subject:
        raise _unauthorized()

    try:
        user = _find_user(db, subject, email)
        if user:
            return user.id

        if not email:
            logger.info("[AUTH] Unknown subject %s without email claim", subject)
            raise _unauthorized()

        new_user = User(email=email.lower(), auth_subject=subject)
        db.add(new_user)
        try:
            db.commit()
        except IntegrityError:
            # Another request created the same user first
            db.rollback()
            user = _find_user(db, subject, email)
            if not user:
                raise _unauthorized()
            return user.id
        db.refresh(new_user)
        logger.info("[AUTH] Auto-created user %s for %s (lazy sync)", new_user.id, email)
        return new_user.id
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("[AUTH] Database error while resolving user: %s", e)
        raise _unauthorized()
