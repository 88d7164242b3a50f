"""
AWS Tier Watch - Free-tier usage tracking for EC2.

Watches the EC2 instances in an account, projects month-end free-tier hours
and overage cost, and warns before the 750-hour allowance runs out.
"""

__version__ = "1.0.0"
__author__ = "AWS Tier Watch Team"

from aws_tier_watch.core.exceptions import TierWatchError

__all__ = ["TierWatchError"]
