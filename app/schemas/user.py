from typing import Optional
from pydantic import BaseModel


class User(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    is_premium: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
