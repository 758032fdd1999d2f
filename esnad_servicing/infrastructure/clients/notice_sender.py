"""Client for handing queued notices to the external channel sender"""

from typing import Any, Dict, Optional

import httpx

from esnad_servicing.config import settings
from esnad_servicing.domain.exceptions import NoticeDeliveryError
from esnad_servicing.domain.models import Notice
from esnad_servicing.infrastructure.observability.metrics import notice_delivery_histogram


def notice_payload(notice: Notice) -> Dict[str, Any]:
    return {
        "noticeId": notice.notice_id,
        "channel": notice.channel.value,
        "templateKey": notice.template_key,
        "title": notice.title,
        "variables": [{"key": v.key, "value": v.value} for v in notice.variables],
        "triggerReason": notice.trigger_reason.value,
        "relatedDealAid": notice.related_deal_aid,
        "relatedFinanceFaid": notice.related_finance_faid,
        "retryCount": notice.retry_count,
    }


class NoticeSenderClient:
    """
    POSTs one notice per request.

    Retries are not done here: a failed handoff is recorded on the notice and
    the next relay run picks it up again until max retries is reached.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = base_url or settings.notice_sender_url
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.transport = transport

    def send(self, notice: Notice) -> None:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                with notice_delivery_histogram.time():
                    response = client.post(self.url, json=notice_payload(notice))
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NoticeDeliveryError(
                f"Channel sender rejected notice {notice.notice_id}: HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise NoticeDeliveryError(f"Channel sender unreachable for notice {notice.notice_id}: {e}") from e
