"""Change feed snapshot delivered to subscribers."""

from typing import Any, List

from pydantic import BaseModel, Field

ISSUES = "issues"
TEAMS = "teams"
REPOSITORIES = "repositories"


class FeedSnapshot(BaseModel):
    """Full contents of one collection after a change.

    from_cache marks local echoes of writes the server has not confirmed yet.
    """

    collection: str
    items: List[Any] = Field(default_factory=list)
    from_cache: bool = False
