"""AWS session construction: profile, static keys, MFA and role assumption."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from aws_tier_watch.core.config import Config
from aws_tier_watch.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

ROLE_SESSION_NAME = 'aws-tier-watch-session'
CREDENTIAL_DURATION_SECONDS = 3600
EXPIRY_BUFFER = timedelta(minutes=5)


class SessionFactory:
    """Builds authenticated boto3 sessions from the saved configuration."""

    def __init__(self, config: Config):
        """Initialize the session factory.

        Args:
            config: Loaded configuration with the auth mode and its settings.
        """
        self.config = config
        self._cached_credentials: Optional[Dict[str, Any]] = None
        self._credentials_expiry: Optional[datetime] = None

    @property
    def requires_mfa(self) -> bool:
        return self.config.mfa_serial is not None

    @property
    def uses_temporary_credentials(self) -> bool:
        """True when sessions carry STS credentials that expire."""
        return self.config.auth_mode == "role" or self.requires_mfa

    def has_valid_cached_credentials(self) -> bool:
        if not self._cached_credentials or not self._credentials_expiry:
            return False
        return datetime.now(timezone.utc) < self._credentials_expiry - EXPIRY_BUFFER

    def get_session(self, region: Optional[str] = None, mfa_code: Optional[str] = None) -> boto3.Session:
        """Get an authenticated AWS session.

        Args:
            region: Optional AWS region. If None, uses default from config.
            mfa_code: Current MFA token code, needed when an MFA serial is
                configured and no cached credentials are left.

        Returns:
            Authenticated boto3 Session object.

        Raises:
            AuthenticationError: If credentials cannot be obtained.
        """
        session_region = region or self.config.default_region

        if not self.uses_temporary_credentials:
            return self._base_session(session_region)

        credentials = self._get_temporary_credentials(mfa_code)
        return boto3.Session(
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
            region_name=session_region,
        )

    def validate_credentials(self, session: Optional[boto3.Session] = None) -> Dict[str, Any]:
        """Check credentials by calling STS GetCallerIdentity.

        Returns:
            Dictionary containing caller identity information.

        Raises:
            AuthenticationError: If the identity call fails.
        """
        session = session or self.get_session()
        try:
            identity = session.client('sts').get_caller_identity()
            logger.info(f"Authenticated as {identity.get('Arn')}")
            return identity
        except (ClientError, BotoCoreError) as e:
            raise AuthenticationError(f"Failed to get caller identity: {e}") from e

    def _base_session(self, region: str) -> boto3.Session:
        """Session holding the long-lived credentials."""
        if self.config.auth_mode == "static":
            return boto3.Session(
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key.get_secret_value(),
                region_name=region,
            )
        try:
            return boto3.Session(profile_name=self.config.profile_name, region_name=region)
        except BotoCoreError as e:
            raise AuthenticationError(f"AWS profile error: {e}") from e

    def _get_temporary_credentials(self, mfa_code: Optional[str]) -> Dict[str, Any]:
        """Get temporary credentials via AssumeRole or GetSessionToken.

        Raises:
            AuthenticationError: If the STS call fails or an MFA code is missing.
        """
        if self.has_valid_cached_credentials():
            logger.debug("Using cached AWS credentials")
            return self._cached_credentials

        if self.requires_mfa and not mfa_code:
            raise AuthenticationError(
                f"An MFA code is required for {self.config.mfa_serial}"
            )

        mfa_args: Dict[str, Any] = {}
        if self.requires_mfa:
            mfa_args = {'SerialNumber': self.config.mfa_serial, 'TokenCode': mfa_code}

        try:
            sts_client = self._base_session(self.config.default_region).client('sts')

            if self.config.auth_mode == "role":
                logger.info(f"Assuming IAM role: {self.config.iam_role_arn}")
                response = sts_client.assume_role(
                    RoleArn=self.config.iam_role_arn,
                    RoleSessionName=ROLE_SESSION_NAME,
                    DurationSeconds=CREDENTIAL_DURATION_SECONDS,
                    **mfa_args,
                )
            else:
                logger.info("Requesting MFA session token")
                response = sts_client.get_session_token(
                    DurationSeconds=CREDENTIAL_DURATION_SECONDS,
                    **mfa_args,
                )

        except ClientError as e:
            raise self._translate_client_error(e) from e

        except NoCredentialsError as e:
            raise AuthenticationError(
                "No AWS credentials found. Please configure your AWS credentials using:\n"
                "1. AWS CLI: aws configure\n"
                "2. Environment variables: AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY\n"
                "3. aws-tier-watch configure --auth-mode static"
            ) from e

        except BotoCoreError as e:
            raise AuthenticationError(f"AWS configuration error: {e}") from e

        credentials = response['Credentials']
        expiration = credentials['Expiration']
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)

        self._cached_credentials = credentials
        self._credentials_expiry = expiration
        logger.info("Obtained temporary AWS credentials")
        return credentials

    def _translate_client_error(self, error: ClientError) -> AuthenticationError:
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))

        if error_code == 'AccessDenied':
            if self.requires_mfa:
                return AuthenticationError(
                    "Access denied. Check that the MFA code is current and that "
                    f"{self.config.mfa_serial} belongs to your user."
                )
            return AuthenticationError(
                f"Access denied when assuming role {self.config.iam_role_arn}. "
                "Please check that:\n"
                "1. The role exists and is correctly configured\n"
                "2. Your current AWS credentials have permission to assume this role\n"
                "3. The role's trust policy allows your account/user to assume it"
            )
        if error_code in ('InvalidClientTokenId', 'SignatureDoesNotMatch'):
            return AuthenticationError(
                "The configured access key is invalid. Run 'aws-tier-watch configure' to update it."
            )
        return AuthenticationError(f"STS request failed: {error_code} - {error_message}")
