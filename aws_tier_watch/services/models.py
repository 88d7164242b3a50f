"""
Data models for EC2 instance operations.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class OperationResult:
    """Result of an instance operation (start, stop, reboot)."""
    success: bool
    instance_id: str
    operation: str             # 'start', 'stop', 'reboot'
    message: str               # Success/error message
    timestamp: datetime
    duration: Optional[float] = None  # Operation duration in seconds
    previous_state: Optional[str] = None
