from pydantic import BaseModel, field_validator
from typing import List, Optional


class Token(BaseModel):
    access_token: str
    token_type: str
    refresh_token: Optional[str] = None


class FaceDescriptorUpdate(BaseModel):
    descriptor: List[float]

    @field_validator("descriptor")
    @classmethod
    def check_length(cls, value: List[float]) -> List[float]:
        if len(value) != 128:
            raise ValueError("Face descriptor must contain 128 values")
        return value
