"""
Amazon Ads MCP Client — remote mutations used by the rule engine.
Connects to the official Amazon Ads MCP Server via Streamable HTTP transport.

Every mutation targets one entity and raises MCPError on rejection, so rule
executors can tolerate per-entity failures.
"""

import json
import logging
from datetime import timedelta
from typing import Any, Optional
from mcp.client.streamable_http import streamablehttp_client
from mcp import ClientSession

from rule_engine.config import get_settings

logger = logging.getLogger(__name__)

# ── Region URL Mapping ────────────────────────────────────────────────
REGION_URLS = {
    "na": "https://advertising-ai.amazon.com/mcp",
    "eu": "https://advertising-ai-eu.amazon.com/mcp",
    "fe": "https://advertising-ai-fe.amazon.com/mcp",
}

TOOL_UPDATE_TARGET_BID = "campaign_management-update_target_bid"
TOOL_UPDATE_TARGET = "campaign_management-update_target"
TOOL_UPDATE_CAMPAIGN_BUDGET = "campaign_management-update_campaign_budget"
TOOL_CREATE_TARGET = "campaign_management-create_target"


class MCPError(Exception):
    """Custom exception for MCP-related errors."""
    pass


class AmazonAdsMCP:
    """
    Per-connection wrapper around the Amazon Ads MCP Server.
    The access token is assumed valid; refresh is owned by the identity store.
    """

    def __init__(
        self,
        client_id: str,
        access_token: str,
        region: str = "na",
        profile_id: Optional[str] = None,
        account_id: Optional[str] = None,
        timeout: float = 60,
    ):
        self.client_id = client_id
        self.access_token = access_token
        self.region = (region or "na").lower()
        self.profile_id = profile_id
        self.account_id = account_id
        self.timeout = timeout

    @property
    def url(self) -> str:
        url = REGION_URLS.get(self.region)
        if not url:
            raise ValueError(f"Unsupported region: {self.region}. Use na, eu, or fe.")
        return url

    @property
    def headers(self) -> dict[str, str]:
        h = {
            "Amazon-Ads-ClientId": self.client_id,
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json, text/event-stream",
        }
        if self.profile_id:
            h["Amazon-Advertising-API-Scope"] = self.profile_id
        if self.account_id:
            h["Amazon-Ads-AccountID"] = self.account_id
        if self.profile_id or self.account_id:
            h["Amazon-Ads-AI-Account-Selection-Mode"] = "FIXED"
        return h

    async def call_tool(self, tool_name: str, arguments: dict[str, Any] = None) -> dict:
        """Call a single MCP tool and return the parsed result."""
        arguments = arguments or {}
        logger.info(f"MCP call: {tool_name} with args keys: {list(arguments.keys())}")

        try:
            async with streamablehttp_client(
                url=self.url,
                headers=self.headers,
                timeout=timedelta(seconds=self.timeout),
            ) as (read_stream, write_stream, _):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    result = await session.call_tool(tool_name, arguments)
        except Exception as e:
            logger.error(f"MCP tool call failed: {tool_name} - {str(e)}")
            raise MCPError(f"Failed to call {tool_name}: {str(e)}") from e

        if getattr(result, "isError", False):
            raise MCPError(f"{tool_name} rejected: {self._result_text(result)[:500]}")
        return self._raise_for_entity_errors(tool_name, self._parse_result(result))

    # ── Rule engine mutations ─────────────────────────────────────────

    async def update_keyword_bid(self, keyword_id: str, bid: float) -> dict:
        return await self.call_tool(TOOL_UPDATE_TARGET_BID, {
            "body": {"targets": [{"targetId": keyword_id, "bid": bid}]}
        })

    async def update_keyword_state(self, keyword_id: str, state: str) -> dict:
        return await self.call_tool(TOOL_UPDATE_TARGET, {
            "body": {"targets": [{"targetId": keyword_id, "state": state}]}
        })

    async def update_campaign_budget(self, campaign_id: str, budget: float) -> dict:
        return await self.call_tool(TOOL_UPDATE_CAMPAIGN_BUDGET, {
            "body": {"campaigns": [{"campaignId": campaign_id, "dailyBudget": budget}]}
        })

    async def add_negative_keyword(
        self,
        campaign_id: str,
        ad_group_id: Optional[str],
        keyword_text: str,
        match_type: str = "NEGATIVE_PHRASE",
    ) -> dict:
        target = {
            "campaignId": campaign_id,
            "keyword": keyword_text,
            "matchType": match_type,
            "state": "ENABLED",
            "adProduct": "SPONSORED_PRODUCTS",
        }
        if ad_group_id:
            target["adGroupId"] = ad_group_id
        return await self.call_tool(TOOL_CREATE_TARGET, {"body": {"targets": [target]}})

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _result_text(result) -> str:
        parts = [part.text for part in getattr(result, "content", []) if hasattr(part, "text")]
        return " ".join(parts) or str(result)

    @classmethod
    def _parse_result(cls, result) -> dict:
        """Parse MCP tool result into a clean dict."""
        if not hasattr(result, "content"):
            return {"result": str(result)}
        text = cls._result_text(result)
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"MCP response not valid JSON: {text[:500]}")
            if "Validation failed" in text or "Validation error" in text:
                raise MCPError(f"MCP validation error: {text[:500]}")
            return {"result": text}
        return parsed if isinstance(parsed, dict) else {"result": parsed}

    @staticmethod
    def _raise_for_entity_errors(tool_name: str, parsed: dict) -> dict:
        """Bulk endpoints report per-item failures in an `error` list."""
        errors = parsed.get("error") or parsed.get("errors")
        if isinstance(errors, list) and errors:
            raise MCPError(f"{tool_name} rejected: {json.dumps(errors)[:500]}")
        return parsed


def create_mcp_client(
    client_id: str,
    access_token: str,
    region: str = "na",
    profile_id: str = None,
    account_id: str = None,
) -> AmazonAdsMCP:
    """Factory function to create an MCP client instance."""
    return AmazonAdsMCP(
        client_id=client_id,
        access_token=access_token,
        region=region,
        profile_id=profile_id,
        account_id=account_id,
        timeout=get_settings().mcp_timeout_seconds,
    )


def create_client_for_connection(connection) -> AmazonAdsMCP:
    """Build a client scoped to an AmazonConnection row."""
    return create_mcp_client(
        client_id=connection.client_id,
        access_token=connection.access_token,
        region=connection.region or "na",
        profile_id=connection.profile_id,
        account_id=connection.account_id,
    )
