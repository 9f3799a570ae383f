"""
Authentication routes: JWT signup/login and Pi Network account linking
"""
from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from travelpi.core.exceptions import AuthenticationError, ConflictError
from travelpi.core.logging_config import logger
from travelpi.core.security import create_access_token, decode_access_token, get_password_hash, verify_password
from travelpi.db.models import User, UserTier
from travelpi.db.session import get_db
from travelpi.routes.dependencies import get_pi_client
from travelpi.schemas.user import LoginRequest, PiLinkRequest, Token, UserCreate, UserResponse
from travelpi.services.audit_service import audit_service
from travelpi.services.pi_network_service import PiNetworkClient, PiNetworkError

router = APIRouter(
    prefix="/api/auth",
    tags=["auth"]
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def issue_token(user: User) -> str:
    return create_access_token(data={"sub": user.username, "tier": user.tier.value})


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        raise AuthenticationError("Could not validate credentials")

    user = db.query(User).filter(User.username == payload["sub"]).first()
    if user is None or not user.is_active:
        raise AuthenticationError("User not found")

    return user


# ── Auth ──────────────────────────────────────────────────────────────────────

@router.post("/signup", response_model=Token, status_code=status.HTTP_201_CREATED)
async def signup(request: UserCreate, db: Session = Depends(get_db)):
    """Register a new user. Returns JWT token."""
    existing_user = db.query(User).filter(
        (User.username == request.username) | (User.email == request.email)
    ).first()
    if existing_user:
        raise ConflictError("Username or email already exists")

    new_user = User(
        username=request.username,
        email=request.email,
        firstname=request.firstname,
        lastname=request.lastname,
        hashed_password=get_password_hash(request.password),
        is_active=True,
        tier=UserTier.FREE,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.info(f"User signed up: {new_user.username}")
    return {"access_token": issue_token(new_user), "token_type": "bearer"}


@router.post("/login", response_model=Token)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """Login with username + password. Returns JWT token."""
    user = db.query(User).filter(User.username == request.username).first()
    if not user or not verify_password(request.password, user.hashed_password):
        audit_service.log_security_event(
            db,
            "login",
            success=False,
            user_id=user.id if user else None,
            failure_reason="Invalid credentials",
        )
        db.commit()
        raise AuthenticationError("Incorrect username or password")

    if not user.is_active:
        raise AuthenticationError("Account is disabled")

    return {"access_token": issue_token(user), "token_type": "bearer"}


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/pi/link", response_model=UserResponse)
def link_pi_account(
    request: PiLinkRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    pi_client: PiNetworkClient = Depends(get_pi_client)
):
    """
    Link the caller's Pi Network identity

    The access token comes from Pi.authenticate() in the browser and is
    resolved server-side through /v2/me, so the uid cannot be forged.
    """
    try:
        pi_user = pi_client.get_me(request.access_token)
    except PiNetworkError:
        raise AuthenticationError("Invalid Pi access token")

    pi_uid = pi_user.get("uid")
    if not pi_uid:
        raise AuthenticationError("Invalid Pi access token")

    owner = db.query(User).filter(User.pi_uid == pi_uid, User.id != current_user.id).first()
    if owner:
        audit_service.log_security_event(
            db,
            "pi_link_conflict",
            success=False,
            user_id=current_user.id,
            failure_reason="Pi account linked to another user",
            metadata={"piUid": pi_uid},
        )
        db.commit()
        raise ConflictError("Pi account already linked to another user")

    current_user.pi_uid = pi_uid
    current_user.pi_username = pi_user.get("username")
    audit_service.log_action(
        db,
        "pi_account_linked",
        user_id=current_user.id,
        entity_type="user",
        entity_id=current_user.id,
        changes={"piUsername": current_user.pi_username},
    )
    db.commit()
    db.refresh(current_user)

    logger.info(f"User {current_user.id} linked Pi account {current_user.pi_username}")
    return current_user
