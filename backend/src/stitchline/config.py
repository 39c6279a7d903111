"""
Configuration module for Lambda handlers.
Loads all environment variables needed by the piecework backend.
"""
import os
from decimal import Decimal


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Store backend: 'dynamodb' in deployed stacks, 'memory' for local runs
    STORE_BACKEND = os.environ.get('STORE_BACKEND', 'dynamodb')

    # DynamoDB Tables
    WORK_UNITS_TABLE = os.environ.get('WORK_UNITS_TABLE', 'WorkUnits')
    OPERATOR_STATUS_TABLE = os.environ.get('OPERATOR_STATUS_TABLE', 'OperatorStatus')
    CLAIM_QUEUE_TABLE = os.environ.get('CLAIM_QUEUE_TABLE', 'ClaimQueue')
    DAMAGE_REPORTS_TABLE = os.environ.get('DAMAGE_REPORTS_TABLE', 'DamageReports')
    WALLETS_TABLE = os.environ.get('WALLETS_TABLE', 'OperatorWallets')
    WAGE_RECORDS_TABLE = os.environ.get('WAGE_RECORDS_TABLE', 'WageRecords')
    NOTIFICATIONS_TABLE = os.environ.get('NOTIFICATIONS_TABLE', 'Notifications')

    # SQS Queues
    NOTIFICATION_QUEUE_URL = os.environ.get('NOTIFICATION_QUEUE_URL', '')

    # Store behaviour
    CAS_MAX_ATTEMPTS = int(os.environ.get('CAS_MAX_ATTEMPTS', '25'))
    STORE_MAX_RETRIES = int(os.environ.get('STORE_MAX_RETRIES', '5'))

    # Damage reporting policy
    MAX_PIECES_PER_REPORT = int(os.environ.get('MAX_PIECES_PER_REPORT', '3'))
    PIECE_WARNING_THRESHOLD = int(os.environ.get('PIECE_WARNING_THRESHOLD', '5'))
    REWORK_DUE_DAYS = int(os.environ.get('REWORK_DUE_DAYS', '2'))
    SUPERVISOR_RATE_PER_MINUTE = Decimal(os.environ.get('SUPERVISOR_RATE_PER_MINUTE', '0.5'))

    # Escalation SLAs (hours) per urgency level
    SLA_HOURS_URGENT = float(os.environ.get('SLA_HOURS_URGENT', '1'))
    SLA_HOURS_HIGH = float(os.environ.get('SLA_HOURS_HIGH', '4'))
    SLA_HOURS_NORMAL = float(os.environ.get('SLA_HOURS_NORMAL', '24'))
    SLA_HOURS_LOW = float(os.environ.get('SLA_HOURS_LOW', '72'))

    # Claim queue: queues whose entries are all older than this are purged
    CLAIM_QUEUE_MAX_AGE_SECONDS = int(os.environ.get('CLAIM_QUEUE_MAX_AGE_SECONDS', '300'))

    # In-app notifications expire after this many days
    NOTIFICATION_TTL_DAYS = int(os.environ.get('NOTIFICATION_TTL_DAYS', '7'))

    @property
    def key_schema(self) -> dict:
        """Primary key attributes per table."""
        return {
            self.WORK_UNITS_TABLE: ('workId',),
            self.OPERATOR_STATUS_TABLE: ('operatorId',),
            self.CLAIM_QUEUE_TABLE: ('workId', 'queueId'),
            self.DAMAGE_REPORTS_TABLE: ('reportId',),
            self.WALLETS_TABLE: ('operatorId',),
            self.WAGE_RECORDS_TABLE: ('recordId',),
            self.NOTIFICATIONS_TABLE: ('notificationId',),
        }

    @property
    def sla_hours(self) -> dict:
        return {
            'urgent': self.SLA_HOURS_URGENT,
            'high': self.SLA_HOURS_HIGH,
            'normal': self.SLA_HOURS_NORMAL,
            'low': self.SLA_HOURS_LOW,
        }


config = Config()
