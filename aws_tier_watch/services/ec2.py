"""
EC2 provider for listing and controlling instances.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from botocore.exceptions import BotoCoreError, ClientError

from .base import BaseAWSProvider
from .models import OperationResult

logger = logging.getLogger(__name__)


class EC2InstanceProvider(BaseAWSProvider):
    """Instance provider backed by the EC2 API."""

    @property
    def service_name(self) -> str:
        return 'ec2'

    def fetch_instances(self) -> List[Dict[str, Any]]:
        """List every instance in the region.

        Returns:
            Raw instance dicts, flattened out of their reservations

        Raises:
            ProviderError: If the describe call fails
        """
        try:
            instances = []
            paginator = self.client.get_paginator('describe_instances')
            for page in paginator.paginate():
                for reservation in page.get('Reservations', []):
                    instances.extend(reservation.get('Instances', []))

            logger.debug(f"Fetched {len(instances)} EC2 instances in {self.region}")
            return instances

        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'describe_instances')

    def get_instance_state(self, instance_id: str) -> Optional[str]:
        """Current state name of one instance, or None if it cannot be read."""
        try:
            response = self.client.describe_instances(InstanceIds=[instance_id])
            return response['Reservations'][0]['Instances'][0]['State']['Name']
        except (ClientError, BotoCoreError, IndexError, KeyError) as e:
            logger.warning(f"Could not read state of {instance_id}: {e}")
            return None

    def start_instance(self, instance_id: str) -> OperationResult:
        """Start a stopped instance.

        Args:
            instance_id: EC2 instance ID

        Returns:
            Result of the start operation
        """
        return self._run_operation(
            instance_id,
            operation='start',
            allowed_states=('stopped',),
            call=lambda: self.client.start_instances(InstanceIds=[instance_id]),
            verb='started',
        )

    def stop_instance(self, instance_id: str) -> OperationResult:
        """Stop a running instance.

        Args:
            instance_id: EC2 instance ID

        Returns:
            Result of the stop operation
        """
        return self._run_operation(
            instance_id,
            operation='stop',
            allowed_states=('running',),
            call=lambda: self.client.stop_instances(InstanceIds=[instance_id]),
            verb='stopped',
        )

    def reboot_instance(self, instance_id: str) -> OperationResult:
        """Reboot a running instance.

        Args:
            instance_id: EC2 instance ID

        Returns:
            Result of the reboot operation
        """
        return self._run_operation(
            instance_id,
            operation='reboot',
            allowed_states=('running',),
            call=lambda: self.client.reboot_instances(InstanceIds=[instance_id]),
            verb='rebooted',
        )

    def _run_operation(self, instance_id, operation, allowed_states, call, verb) -> OperationResult:
        start_time = datetime.now()
        current_state = self.get_instance_state(instance_id)

        if current_state is None:
            return OperationResult(
                success=False,
                instance_id=instance_id,
                operation=operation,
                message=f"Instance {instance_id} not found in {self.region}",
                timestamp=start_time,
                duration=0.0,
            )

        if current_state not in allowed_states:
            return OperationResult(
                success=False,
                instance_id=instance_id,
                operation=operation,
                message=f"Cannot {operation} instance {instance_id} (current state: {current_state})",
                timestamp=start_time,
                duration=0.0,
                previous_state=current_state,
            )

        try:
            call()
        except (ClientError, BotoCoreError) as e:
            duration = (datetime.now() - start_time).total_seconds()
            logger.error(f"Failed to {operation} {instance_id}: {e}")
            return OperationResult(
                success=False,
                instance_id=instance_id,
                operation=operation,
                message=f"Failed to {operation} EC2 instance {instance_id}: {str(e)}",
                timestamp=start_time,
                duration=duration,
                previous_state=current_state,
            )

        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"Successfully {verb} EC2 instance {instance_id}")
        return OperationResult(
            success=True,
            instance_id=instance_id,
            operation=operation,
            message=f"Successfully {verb} EC2 instance {instance_id}",
            timestamp=start_time,
            duration=duration,
            previous_state=current_state,
        )
