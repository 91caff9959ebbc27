import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import database
from auth import Token, create_access_token, get_current_active_user, get_password_hash, get_user_by_email, verify_password
from config import CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, PORT
from database import Repository, ensure_indexes, get_db, serialize
from errors import ConflictError, register_exception_handlers
from schemas import Location, User as UserSchema
import orders
import products
import repair_services
import reviews
import service_requests
import users
import vehicles

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
        logger.info("Connected to database %s", database.db.name)
    else:
        logger.warning("DATABASE_URL is not set; data endpoints will answer 503")
    yield


# App setup
app = FastAPI(title="ShopMeco API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

for module in (users, vehicles, products, repair_services, orders, service_requests, reviews):
    app.include_router(module.router)


class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=2, max_length=80)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone_number: Optional[str] = None
    # admins are never self-registered
    role: Literal['vehicle-owner', 'repairer', 'seller'] = 'vehicle-owner'
    location: Optional[Location] = None


# Public endpoints
@app.get("/", tags=["meta"])
def read_root():
    return {"message": "ShopMeco API running"}

@app.get("/health", tags=["meta"])
def health():
    response = {
        "backend": "running",
        "database": "not configured",
        "collections": [],
    }
    if database.db is None:
        return response
    try:
        response["collections"] = database.db.list_collection_names()
        response["database"] = "connected"
    except Exception as e:
        logger.warning("Health check could not reach the database: %s", e)
        response["database"] = f"error: {str(e)[:80]}"
    return response


# Authentication
@app.post("/auth/register", response_model=Token, status_code=status.HTTP_201_CREATED, tags=["auth"])
def register(payload: RegisterPayload, db: Database = Depends(get_db)):
    if get_user_by_email(db, payload.email):
        raise ConflictError("Email already registered")
    user_doc = UserSchema(
        name=payload.name,
        email=payload.email,
        hashed_password=get_password_hash(payload.password),
        phone_number=payload.phone_number,
        role=payload.role,
        location=payload.location,
    )
    Repository(db, "user").create(user_doc)
    logger.info("Registered %s as %s", payload.email, payload.role)
    access_token = create_access_token(data={"sub": payload.email})
    return Token(access_token=access_token)

@app.post("/auth/login", response_model=Token, tags=["auth"])
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Database = Depends(get_db)):
    user = get_user_by_email(db, form_data.username)
    if not user or not verify_password(form_data.password, user.get("hashed_password", "")):
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    access_token = create_access_token(data={"sub": user["email"]})
    return Token(access_token=access_token)

@app.get("/me", tags=["auth"])
def me(current_user: dict = Depends(get_current_active_user)):
    return serialize(current_user)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
