"""
Core module for Heelix
Contains configuration, database, record models and the record store
"""

from .config import Config
from .database import SQLiteDatabase
from .models import ActivityRecord, DocumentRecord, Project, RecordKind, UNASSIGNED_PROJECT_NAME
from .schema import initialize_database
from .store import RecordStore

__all__ = [
    'Config',
    'SQLiteDatabase',
    'initialize_database',
    'RecordStore',
    'ActivityRecord',
    'DocumentRecord',
    'Project',
    'RecordKind',
    'UNASSIGNED_PROJECT_NAME',
]
