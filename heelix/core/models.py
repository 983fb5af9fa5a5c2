"""
Data models for Heelix
Defines the records held by the relational store
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


UNASSIGNED_PROJECT_NAME = "Unassigned"
BLANK_DOCUMENT_NAME = "New Document"
BLANK_DOCUMENT_TEXT = "Start editing"


class RecordKind(str, Enum):
    """Entity families sharing the vector index"""
    ACTIVITY = "activity"
    DOCUMENT = "document"


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse datetime string from database"""
    if dt_str:
        try:
            return datetime.fromisoformat(dt_str)
        except (ValueError, TypeError):
            return None
    return None


@dataclass
class ActivityRecord:
    """Captured on-screen activity"""
    id: Optional[int] = None
    user_id: str = ""
    full_text: str = ""
    window_title: Optional[str] = None
    interval_length: int = 20
    vectorized: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActivityRecord':
        """Create ActivityRecord from database row dictionary"""
        return cls(
            id=data.get('id'),
            user_id=data.get('user_id', ''),
            full_text=data.get('full_text') or '',
            window_title=data.get('window_title'),
            interval_length=data.get('interval_length', 20),
            vectorized=bool(data.get('is_vectorized', 0)),
            created_at=_parse_datetime(data.get('created_at'))
        )

    @property
    def display_name(self) -> str:
        return self.window_title or f"Activity {self.id}"


@dataclass
class DocumentRecord:
    """Editable project document"""
    id: Optional[int] = None
    project_id: Optional[int] = None
    name: str = ""
    full_text: str = ""
    vectorized: bool = False
    activity_id: Optional[int] = None
    # Set on copies made by tagging a document with another project
    source_document_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentRecord':
        """Create DocumentRecord from database row dictionary"""
        return cls(
            id=data.get('id'),
            project_id=data.get('project_id'),
            name=data.get('document_name', ''),
            full_text=data.get('full_text') or '',
            vectorized=bool(data.get('is_vectorized', 0)),
            activity_id=data.get('activity_id'),
            source_document_id=data.get('source_document_id'),
            created_at=_parse_datetime(data.get('created_at')),
            updated_at=_parse_datetime(data.get('updated_at'))
        )


@dataclass
class Project:
    """Project data model; document_ids are ordered by document id"""
    id: Optional[int] = None
    name: str = ""
    created_at: Optional[datetime] = None
    document_ids: List[int] = field(default_factory=list)
    document_names: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Project':
        """Create Project from database row dictionary"""
        return cls(
            id=data.get('id'),
            name=data.get('name', ''),
            created_at=_parse_datetime(data.get('created_at'))
        )

    @property
    def is_unassigned(self) -> bool:
        return self.name == UNASSIGNED_PROJECT_NAME
