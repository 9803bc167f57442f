"""
Pydantic models for networks.
"""

from pydantic import BaseModel
from typing import Optional
from enum import Enum


class NetworkState(str, Enum):
    AVAILABLE = "available"
    PENDING = "pending"


class NetworkType(str, Enum):
    STANDARD = "standard"
    DISTRIBUTED = "dvs"


class NetworkInfo(BaseModel):
    """A standard port group, or a distributed switch standing for all of its port groups."""
    id: str
    name: str
    description: Optional[str] = None
    region_id: str
    state: NetworkState = NetworkState.AVAILABLE
    network_type: NetworkType = NetworkType.STANDARD
