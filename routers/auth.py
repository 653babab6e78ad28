from typing import Annotated, Callable, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadData, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from config import get_settings
from db import SessionDep, store_errors
from errors import AuthError, DuplicateError
from models import Account, Role
from schemas import AccountCreate, AccountProfile, AccountRead, LoginData, LoginResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

serializer = URLSafeTimedSerializer(get_settings().secret_key)
bearer_scheme = HTTPBearer(auto_error=False)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def create_session_token(user_id: int, role: Role) -> str:
    """
    Store user_id + role in the signed token.
    Example data:
        {"user_id": 3, "role": "donor"}
    """
    return serializer.dumps({"user_id": user_id, "role": role.value})


def verify_session_token(token: str) -> Optional[dict]:
    """
    Returns dict {'user_id': ..., 'role': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=get_settings().token_max_age_seconds)
    except BadData:
        return None


def get_current_account(
    session: SessionDep,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Account:
    """
    Reads the bearer token, verifies it and loads the account.
    Raises 401 if missing, invalid or expired.
    """
    if credentials is None:
        raise AuthError("Not logged in")

    data = verify_session_token(credentials.credentials)
    if not data:
        raise AuthError("Invalid or expired token")

    account = session.get(Account, data["user_id"])
    if account is None:
        raise AuthError("User not found for this token")
    return account


CurrentAccountDep = Annotated[Account, Depends(get_current_account)]


def require_role(*roles: Role) -> Callable[[Account], Account]:
    """Dependency that lets through only accounts holding one of `roles`."""
    allowed = frozenset(roles)

    def checker(account: CurrentAccountDep) -> Account:
        if account.role not in allowed:
            names = ", ".join(sorted(role.value for role in allowed))
            raise HTTPException(status_code=403, detail=f"Only {names} accounts can do this")
        return account

    return checker


DonorDep = Annotated[Account, Depends(require_role(Role.DONOR))]
ReceiverDep = Annotated[Account, Depends(require_role(Role.RECEIVER))]
CourierDep = Annotated[Account, Depends(require_role(Role.COURIER))]


@router.post("/register", response_model=AccountRead, status_code=201)
def register(account_in: AccountCreate, session: SessionDep):
    """
    Register a new account with a hashed password.
    Emails are unique regardless of case.
    """
    email = normalize_email(account_in.email)
    with store_errors(session):
        existing = session.exec(select(Account).where(Account.email == email)).first()
        if existing:
            raise DuplicateError("Email already registered")

        account = Account(
            email=email,
            name=account_in.name,
            role=account_in.role,
            phone=account_in.phone,
            address=account_in.address,
            password_hash=hash_password(account_in.password),
        )
        session.add(account)
        try:
            session.commit()
        except IntegrityError as exc:
            raise DuplicateError("Email already registered") from exc
        session.refresh(account)

    logger.info("registered %s account %s", account.role.value, account.id)
    return account


def authenticate(session: SessionDep, email: str, password: str) -> Account:
    account = session.exec(
        select(Account).where(Account.email == normalize_email(email))
    ).first()
    if account is None or not verify_password(password, account.password_hash):
        raise AuthError("Invalid email or password")
    return account


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginData, session: SessionDep):
    """Log in with email + password and receive a bearer token."""
    with store_errors(session):
        account = authenticate(session, payload.email, payload.password)

    token = create_session_token(account.id, account.role)
    return LoginResponse(
        id=account.id,
        name=account.name,
        role=account.role,
        address=account.address,
        token=token,
    )


@router.get("/me", response_model=AccountProfile)
def read_me(current: CurrentAccountDep):
    """
    Get info about the currently logged-in account.
    """
    return current
