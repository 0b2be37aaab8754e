"""
Entity snapshot models published by the platform.

These are the shapes the platform serializes when an entity changes. The
notification side never imports them: it reads payloads by field path, so
the two sides only share field names, not classes.

Design decisions:
- Using Pydantic for validation and serialization
- Task embeds the customer and (optional) freelancer as nested users, so a
  task payload usually carries everything a notification needs
- Proposal only carries ids, like the platform's read/update DTO
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


# =============================================================================
# Enums
# =============================================================================

class Role(str, Enum):
    """Platform roles."""
    ADMIN = "ADMIN"
    USER = "USER"
    GUEST = "GUEST"


class TaskStatus(str, Enum):
    """
    Task lifecycle states.
    """
    UNASSIGNED = "UNASSIGNED"     # Posted, waiting for a freelancer
    ASSIGNED = "ASSIGNED"         # A freelancer is working on it
    SUBMITTED = "SUBMITTED"       # Solution sent to the customer for review
    ACCEPTED = "ACCEPTED"         # Customer accepted the solution


class TaskType(str, Enum):
    """Task categories."""
    ENGINEERING = "ENGINEERING"
    DESIGN = "DESIGN"
    WRITING = "WRITING"
    OTHER = "OTHER"


# =============================================================================
# Snapshots
# =============================================================================

class User(BaseModel):
    """
    A platform user. Customers and freelancers are both users.
    """
    id: int = Field(..., description="Unique user identifier")
    username: str = Field(..., description="Login name, unique")
    first_name: str = Field(default="")
    last_name: str = Field(default="")
    email: Optional[str] = Field(default=None, description="Contact address")
    rating: int = Field(default=0, ge=0)
    role: Role = Field(default=Role.USER)

    model_config = ConfigDict(use_enum_values=True)


class Task(BaseModel):
    """
    A task posted by a customer.

    `freelancer` is None until someone is assigned, and serializes as JSON null.
    """
    id: int
    customer: User
    freelancer: Optional[User] = None
    title: str
    problem: str = Field(default="")
    deadline: Optional[datetime] = None
    status: TaskStatus = Field(default=TaskStatus.UNASSIGNED)
    type: TaskType = Field(default=TaskType.OTHER)
    payment: float = Field(default=0.0, ge=0)
    assigned_date: Optional[datetime] = None
    submitted_date: Optional[datetime] = None
    posted_date: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(use_enum_values=True)


class Proposal(BaseModel):
    """A freelancer's proposal to work on a task."""
    id: int
    freelancer_id: int
    task_id: int
