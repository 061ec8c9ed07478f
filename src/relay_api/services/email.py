"""
Email capability: POST /api/resend/send.

Accepts user tokens and the static key (server-to-server senders). Never
cached: every accepted request sends exactly one email. After a send, an
``email_sent`` event row is written to the log store on a best-effort
basis.
"""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from relay_api.api.schemas import EmailRequest
from relay_api.pipeline.auth import AuthContext
from relay_api.pipeline.call_log import CallLogger
from relay_api.pipeline.handler import ANY_AUTH, Capability, PipelineRequest
from relay_api.providers.resend import EmailAdapter, missing_fields, non_string_fields
from relay_api.utils.timeit import iso_now

CACHE_CONTROL = "no-cache, no-store, must-revalidate"


def email_missing_fields(payload: EmailRequest) -> List[Tuple[str, str]]:
    kind = payload.email_type.value
    problems = [
        (f"data.{name}", f"{name} is required for {kind}")
        for name in missing_fields(payload.email_type, payload.data)
    ]
    problems.extend(
        (f"data.{name}", f"{name} must be a string")
        for name in non_string_fields(payload.email_type, payload.data)
    )
    return problems


class EmailService:
    def __init__(self, adapter: EmailAdapter, call_logger: CallLogger):
        self.adapter = adapter
        self.call_logger = call_logger

    def send(self, payload: EmailRequest, auth: AuthContext, request: PipelineRequest) -> Dict[str, str]:
        result = self.adapter.send(payload.email_type, payload.to, payload.data)
        self.call_logger.record_event(
            "system",
            "email_sent",
            None if auth.is_system else auth.identity,
            {
                **payload.data,
                "template": payload.email_type.value,
                "resend_id": result["id"],
                "recipient": payload.to,
            },
        )
        return result

    @staticmethod
    def respond(result: Any, payload: EmailRequest) -> Dict[str, Any]:
        return {
            "success": True,
            "data": result,
            "message": "Email sent successfully",
            "timestamp": iso_now(),
        }

    @staticmethod
    def summarize(payload: EmailRequest) -> Dict[str, Any]:
        return {"emailType": payload.email_type.value, "to": payload.to}

    def capability(self) -> Capability:
        return Capability(
            name="email-send",
            service_name="resend",
            schema=EmailRequest,
            invoke=self.send,
            auth_methods=ANY_AUTH,
            required_fields=email_missing_fields,
            summarize=self.summarize,
            respond=self.respond,
            cache_control=CACHE_CONTROL,
        )
