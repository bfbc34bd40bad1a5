from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

SECRET_MODE = 0o400


@dataclass(frozen=True)
class StagedSecret:
    """Private, owner-read-only copy of an application's secrets file."""
    user: str
    location: str
    source_checksum: str
    mode: int = SECRET_MODE
    changed: bool = field(default=True, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "location": self.location,
            "source_checksum": self.source_checksum,
            "mode": oct(self.mode),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagedSecret":
        return cls(
            user=data["user"],
            location=data["location"],
            source_checksum=data["source_checksum"],
            mode=int(data.get("mode", oct(SECRET_MODE)), 8),
            changed=False,
        )


@dataclass
class PreparedSecret:
    """A staged copy written to a temporary file but not yet moved into place."""
    secret: StagedSecret
    user_dir: Path
    tmp: Optional[str] = None
