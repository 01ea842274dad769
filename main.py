from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from pydantic import BaseModel, ConfigDict
from passlib.context import CryptContext
from jose import jwt
from datetime import datetime, timedelta, timezone
import logging
from typing import Optional
from contextlib import asynccontextmanager

from audit import LoggingRoundObserver, RoundObservers
from casino import router as casino_router
from database import engine, AsyncSessionLocal, get_db
from dependencies import get_current_user
from errors import CasinoError, InvalidInput, Unauthenticated
from game_config import ensure_default_configs, router as game_config_router
from ledger import router as ledger_router
from locks import KeyedLock
from models import Base, User
from seeds import router as seeds_router
from settings import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, CORS_ORIGINS, SECRET_KEY

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# Pydantic Models
class UserCreate(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: int
    username: str
    is_admin: bool

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str


# Authentication functions
def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def init_state(app: FastAPI) -> None:
    """Shared per-process collaborators: per-user locks and round observers."""
    app.state.locks = KeyedLock()
    app.state.observers = RoundObservers([LoggingRoundObserver()])


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        await ensure_default_configs(session)
    init_state(app)
    logger.info("Database initialized")
    yield
    # Shutdown
    await engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title="Provably Fair Casino API",
    description="Provably fair round resolution with RTP calibration and an atomic balance ledger",
    version="1.0.0",
    lifespan=lifespan,
)

if CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# Error rendering: {"error": message, "kind": machine-readable kind}
@app.exception_handler(CasinoError)
async def casino_error_handler(request: Request, exc: CasinoError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body') or 'body'}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content=InvalidInput(message).to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal error", "kind": "internal"})


# Routes
@app.get("/")
async def root():
    return {"message": "Provably Fair Casino API"}


@app.post("/auth/register", response_model=UserOut, status_code=201)
async def register(user: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a new user"""
    if not user.username or len(user.username.strip()) < 3:
        raise InvalidInput("Username must be at least 3 characters long")

    if not user.password or len(user.password) < 6:
        raise InvalidInput("Password must be at least 6 characters long")

    username = user.username.strip().lower()

    result = await db.execute(select(User).where(User.username == username))
    if result.scalar_one_or_none():
        raise InvalidInput("Username already registered")

    db_user = User(
        username=username,
        hashed_password=get_password_hash(user.password),
        is_admin=False,
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)

    logger.info(f"New user registered: {username}")
    return db_user


@app.post("/auth/login", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)):
    """Login user and return access token"""
    result = await db.execute(select(User).where(User.username == form_data.username.strip().lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(form_data.password, user.hashed_password):
        raise Unauthenticated("Incorrect username or password")

    access_token = create_access_token(data={"sub": user.username})

    logger.info(f"User logged in: {user.username}")
    return {"access_token": access_token, "token_type": "bearer"}


@app.get("/user", response_model=UserOut)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user


app.include_router(casino_router)
app.include_router(seeds_router)
app.include_router(ledger_router)
app.include_router(game_config_router)
