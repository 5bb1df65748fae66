from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.booking import BookingStatus
from app.models.user import UserRole
from app.services.password_service import validate_password_strength


# Базова схема для автоматичної конвертації в camelCase
class BaseSchema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(BaseSchema):
    message: str
    feedback: List[str] = []


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str


class UserCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., max_length=100)

    @field_validator("password")
    @classmethod
    def validate_password(cls, password: str):
        strength = validate_password_strength(password)
        if not strength.is_valid:
            raise ValueError("; ".join(strength.feedback))
        return password


class UserSummary(BaseSchema):
    id: int
    name: str
    email: str


class UserResponse(UserSummary):
    role: UserRole
    is_verified: bool


class RegisterResponse(BaseSchema):
    message: str
    user: UserResponse
    verify_token: Optional[str] = None


class Token(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class ForgotPasswordRequest(BaseSchema):
    email: EmailStr


class ForgotPasswordResponse(BaseSchema):
    message: str
    reset_token: Optional[str] = None


class ResetPasswordRequest(BaseSchema):
    token: str = Field(..., min_length=10, max_length=128)
    new_password: str = Field(..., max_length=100)


class ChangePasswordRequest(BaseSchema):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., max_length=100)


class ValidatePasswordRequest(BaseSchema):
    password: str


class PasswordStrengthResponse(BaseSchema):
    is_valid: bool
    score: int
    feedback: List[str]


class BookBase(BaseSchema):
    title: str = Field(..., min_length=1, max_length=255)
    author: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    thumbnail_url: Optional[str] = Field(None, max_length=500)
    rating: Optional[int] = Field(None, ge=1, le=5)


class BookCreate(BookBase):
    pass


class BookSummary(BaseSchema):
    id: int
    title: str
    author: str
    thumbnail_url: Optional[str] = None


class BookResponse(BookBase):
    id: int
    uploaded_by: Optional[int] = None
    is_available: bool
    created_at: datetime
    updated_at: datetime


class BookPage(BaseSchema):
    items: List[BookResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class BookingCreate(BaseSchema):
    book_id: int
    borrow_date: datetime
    return_date: datetime


class BookingReturn(BaseSchema):
    actual_return_date: Optional[datetime] = None


class BookingResponse(BaseSchema):
    id: int
    user_id: int
    book_id: int
    status: BookingStatus
    borrow_date: datetime
    return_date: datetime
    actual_return_date: Optional[datetime] = None
    overdue_fee: float
    created_at: datetime
    updated_at: datetime
    user: Optional[UserSummary] = None
    book: Optional[BookSummary] = None


class BookingPage(BaseSchema):
    items: List[BookingResponse]
    total: int
    page: int
    limit: int
    total_pages: int
