from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel


class LoginRequest(BaseModel):
    email: str
    password: str


class StudentIn(BaseModel):
    name: Optional[str] = None
    gender: Optional[str] = None
    class_id: Optional[Union[int, str]] = None
    member_number: Optional[str] = None
    ic_number: Optional[str] = None
    savings: Optional[Union[float, str]] = None


class ClassIn(BaseModel):
    name: Optional[str] = None


class ThemeUpdate(BaseModel):
    theme: Optional[str] = None
    toggle: bool = False
