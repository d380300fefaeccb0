"""
REST collaborator for the Tenrx backend.

Only the chat subsystem's needs are covered: a generic send() returning an
ApiResult and the question-list call the questionnaire bot loads its script
from. Failures never raise; they come back as an ApiResult with `error` set.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from tenrx_chat.config import API_BASE_URL, API_TIMEOUT, BUSINESS_TOKEN

logger = logging.getLogger(__name__)


@dataclass
class ApiResult:
    status: int = 0
    content: Any = None
    error: Any = None


class TenrxApi:
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        business_token: str = BUSINESS_TOKEN,
        timeout: float = API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"businessToken": business_token} if business_token else {}
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "TenrxApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, method: str, url: str, body: Optional[dict] = None) -> ApiResult:
        logger.debug(f"Executing {method} {url}")
        result = ApiResult()
        try:
            response = await self._client.request(method, url, json=body)
        except httpx.HTTPError as exc:
            logger.error(f"{method} {url} failed: {type(exc).__name__}: {exc}")
            result.status = 500
            result.error = exc
            return result

        result.status = response.status_code
        try:
            result.content = response.json() if response.content else None
        except ValueError:
            result.content = response.text
        if response.is_error:
            result.error = f"HTTP {response.status_code}"
            logger.warning(f"{method} {url} returned {response.status_code}")
        return result

    async def get_question_list(
        self,
        visit_type_ids: list[dict[str, int]],
        questionnaire_category_id: int = 0,
        template_id: int = 0,
    ) -> ApiResult:
        logger.debug("Getting question list from API")
        return await self.send("POST", "/Login/GetQuestionList", {
            "id": 0,
            "visitTypeId": visit_type_ids,
            "questionnaireCategoryID": questionnaire_category_id,
            "templateId": template_id,
        })
