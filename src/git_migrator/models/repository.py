"""Repository reference models."""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, validator


class RepositoryInfo(BaseModel):
    """Source repository submitted for migration."""

    id: Optional[str] = Field(default=None, description='Provider repository ID')
    name: str = Field(..., description='Repository name')
    full_name: Optional[str] = Field(
        default=None, description='Owner-qualified repository name'
    )
    description: Optional[str] = Field(default=None, description='Description')

    # Clone URLs
    clone_url: Optional[str] = Field(default=None, description='HTTP clone URL')
    ssh_url: Optional[str] = Field(default=None, description='SSH clone URL')
    html_url: Optional[str] = Field(default=None, description='Web URL')

    default_branch: Optional[str] = Field(
        default=None, description='Default branch name'
    )
    language: Optional[str] = Field(default=None, description='Primary language')
    languages: List[str] = Field(
        default_factory=list, description='All detected languages'
    )
    size: Optional[int] = Field(default=None, description='Repository size in KB')
    last_commit_date: Optional[datetime] = Field(
        default=None, description='Last commit timestamp'
    )

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}

    @validator('name')
    def validate_name(cls, v):
        """Validate repository name is not blank."""
        if not v or not v.strip():
            raise ValueError('Repository name must not be empty')
        return v.strip()

    @property
    def url(self) -> Optional[str]:
        """Web URL, falling back to the clone URL."""
        return self.html_url or self.clone_url

    @property
    def identifier(self) -> str:
        """Stable identity of this repository across providers."""
        return self.id or self.full_name or self.clone_url or self.name

    @classmethod
    def from_url(cls, url: str) -> 'RepositoryInfo':
        """Create a repository reference from a clone URL."""
        trimmed = url.rstrip('/')
        if trimmed.endswith('.git'):
            trimmed = trimmed[:-4]
        parts = [p for p in trimmed.replace(':', '/').split('/') if p]
        name = parts[-1] if parts else 'unknown'
        full_name = '/'.join(parts[-2:]) if len(parts) >= 2 else name
        return cls(name=name, full_name=full_name, clone_url=url)
