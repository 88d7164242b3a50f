"""AWS instance providers."""

from .base import InstanceProvider, BaseAWSProvider
from .models import OperationResult
from .ec2 import EC2InstanceProvider

__all__ = [
    'InstanceProvider',
    'BaseAWSProvider',
    'OperationResult',
    'EC2InstanceProvider',
]
