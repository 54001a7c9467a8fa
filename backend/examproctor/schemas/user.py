from datetime import datetime
from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, List, Optional


class UserBase(BaseModel):
    full_name: str
    email: EmailStr


class UserCreate(UserBase):
    password: str
    role: str = "student"
    student_code: Optional[str] = None
    faculty_code: Optional[str] = None
    department: Optional[str] = None


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[str] = None
    student_code: Optional[str] = None
    faculty_code: Optional[str] = None
    department: Optional[str] = None


class BulkUserCreate(BaseModel):
    # entries are validated one by one so a bad row does not reject the batch
    users: List[Dict[str, Any]] = Field(min_length=1)


class User(UserBase):
    id: int
    role: str
    is_active: bool
    student_code: Optional[str] = None
    faculty_code: Optional[str] = None
    department: Optional[str] = None
    has_face_descriptor: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
