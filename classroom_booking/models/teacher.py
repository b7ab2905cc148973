"""Identity of the acting teacher, as handed over by the auth provider."""

from typing import Optional

from pydantic import BaseModel


class Teacher(BaseModel):
    """Opaque (id, email, display name) tuple. No authentication happens here."""

    id: str
    email: str
    display_name: Optional[str] = None

    @property
    def name(self) -> str:
        if self.display_name:
            return self.display_name
        return self.email.split("@")[0]
