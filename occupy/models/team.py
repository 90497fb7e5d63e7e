"""Team and repository documents."""

from pydantic import BaseModel, Field


class Team(BaseModel):
    """Contest team; the name is also the document id."""

    name: str = Field(..., description="Team name and primary key")
    points: int = Field(default=0, ge=0, description="Score, never negative")
    active: bool = Field(default=False, description="A session is currently logged in")


class Repository(BaseModel):
    """Repository issues are taken from."""

    id: str | None = Field(default=None, description="Document id, assigned by the store")
    name: str = Field(..., description="Short repository name")
    url: str = Field(default="", description="Repository URL")
