from .branches import Branch
from .auth import User, SessionToken
from .security import SecurityEvent
from .merchants import Merchant, KYCRequest
from .qr import QRCode, AllocationRecord, IssuanceRecord, ReturnRecord
from .requests import AllocationRequest, MerchantRequest, ThresholdRequest
from .campaigns import Campaign
from .audit import AuditLog, AuditItem, AuditChecklist, AuditScorecardSnapshot, audit_checklist_items

__all__ = [
    'Branch',
    'User', 'SessionToken', 'SecurityEvent',
    'Merchant', 'KYCRequest',
    'QRCode', 'AllocationRecord', 'IssuanceRecord', 'ReturnRecord',
    'AllocationRequest', 'MerchantRequest', 'ThresholdRequest',
    'Campaign',
    'AuditLog', 'AuditItem', 'AuditChecklist', 'AuditScorecardSnapshot', 'audit_checklist_items',
]
