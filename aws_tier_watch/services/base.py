"""
Instance provider interface consumed by the refresh scheduler.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import boto3

from ..auth.credentials import SessionFactory
from ..core.exceptions import ProviderError

logger = logging.getLogger(__name__)


class InstanceProvider(ABC):
    """Anything that can list raw instance descriptions."""

    @abstractmethod
    def fetch_instances(self) -> List[Dict[str, Any]]:
        """Fetch the current instance descriptions.
        
        Returns:
            Raw instance dicts in describe_instances format
            
        Raises:
            ProviderError: On network or authentication failure
        """
        pass


class BaseAWSProvider(InstanceProvider):
    """Provider backed by a boto3 service client."""
    
    def __init__(
        self,
        session: boto3.Session,
        region: str,
        session_factory: Optional[SessionFactory] = None,
    ):
        """Initialize the provider with AWS session and region.
        
        Args:
            session: Authenticated boto3 session
            region: AWS region to operate in
            session_factory: Factory that issued ``session``; when given,
                temporary credentials are renewed before they expire
        """
        self.session = session
        self.region = region
        self.session_factory = session_factory
        self._client = None
    
    @property
    def client(self):
        """Lazy-loaded AWS service client, rebuilt when its credentials expire.

        Raises:
            AuthenticationError: If expired credentials cannot be renewed
        """
        self._refresh_session_if_expired()
        if self._client is None:
            self._client = self.session.client(self.service_name, region_name=self.region)
        return self._client

    def _refresh_session_if_expired(self) -> None:
        factory = self.session_factory
        if factory is None or not factory.uses_temporary_credentials:
            return
        if factory.has_valid_cached_credentials():
            return

        logger.info(f"Temporary AWS credentials expiring, renewing {self.service_name} session")
        self.session = factory.get_session(self.region)
        self._client = None
    
    @property
    @abstractmethod
    def service_name(self) -> str:
        """AWS service name (e.g., 'ec2')."""
        pass
    
    def _handle_aws_error(self, error: Exception, operation: str, resource_id: str = None) -> None:
        """Handle AWS API errors and convert to ProviderError.
        
        Args:
            error: The original AWS error
            operation: Operation that failed
            resource_id: ID of resource being operated on (if applicable)
            
        Raises:
            ProviderError: Wrapped error with context
        """
        resource_context = f" for resource {resource_id}" if resource_id else ""
        error_message = f"AWS {self.service_name} {operation} failed{resource_context}: {str(error)}"
        raise ProviderError(error_message, details=str(error)) from error
