"""Services package."""

from call_orchestrator.services.api_key_service import ApiKeyService, Principal, get_api_key_service
from call_orchestrator.services.batch_service import BatchDispatcher, get_batch_dispatcher
from call_orchestrator.services.calls_service import CallsService, get_calls_service
from call_orchestrator.services.dispatcher_service import CallDispatcher, get_call_dispatcher
from call_orchestrator.services.quota_service import QuotaService, get_quota_service
from call_orchestrator.services.reconciler_service import WebhookReconciler, get_webhook_reconciler
from call_orchestrator.services.telephony_service import TelephonyProvider, get_telephony_provider

__all__ = [
    "ApiKeyService",
    "BatchDispatcher",
    "CallDispatcher",
    "CallsService",
    "Principal",
    "QuotaService",
    "TelephonyProvider",
    "WebhookReconciler",
    "get_api_key_service",
    "get_batch_dispatcher",
    "get_call_dispatcher",
    "get_calls_service",
    "get_quota_service",
    "get_telephony_provider",
    "get_webhook_reconciler",
]
