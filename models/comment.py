from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

class CommentActionType(str, Enum):
    APPROVAL = "approval"
    REJECTION = "rejection"
    CHECK = "check"
    GENERAL = "general"

class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)

class Comment(BaseModel):
    id: str
    content: str
    user_id: str
    project_id: str
    action_type: CommentActionType
    created_at: datetime
