"""
USD to INR Conversion Workflow.

The sample workflow demonstrating the engine, including a parallel fan-out:

    START → fetch_rate → convert_amount → summarize ─┬─→ send_slack ─┬─→ END
                                                     └─→ send_email ─┘

External calls (exchange rate service, Gemini) are best effort: each node
catches its own failures and returns a documented fallback value, so the
graph's control flow never depends on those services being up.
"""

from typing import Any, Dict, Mapping, Optional
import logging

import httpx

from dagflow.config import Settings, settings as default_settings
from dagflow.engine.diagram import save_diagram
from dagflow.engine.graph import CompiledGraph, StateGraph
from dagflow.engine.node import END, START, Node
from dagflow.engine.schema import StateSchema, number, string


logger = logging.getLogger(__name__)

CURRENCY_GRAPH_ID = "currency-demo"

CURRENCY_SCHEMA = StateSchema(
    {
        "amount_usd": number(required=True),
        "rate": number(),
        "total_inr": number(),
        "ai_summary": string(),
        "slack_status": string(),
        "email_status": string(),
    },
    name="CurrencyState",
)


class _HttpNode(Node):
    """Base for nodes calling an external HTTP service."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or default_settings
        self.client = client

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self.client is not None:
            return await self.client.request(method, url, timeout=self.settings.HTTP_TIMEOUT, **kwargs)
        async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT) as client:
            return await client.request(method, url, **kwargs)


class FetchRateNode(_HttpNode):
    """Fetch the live USD→INR rate, falling back to a fixed rate."""

    name = "fetch_rate"
    output_fields = frozenset({"rate"})
    description = "Fetch the USD to INR exchange rate"

    async def execute(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            rate = await self._fetch_rate()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Exchange rate fetch failed: {e}")
            return {"rate": self.settings.FALLBACK_RATE}

        logger.info(f"Fetched USD/INR rate: {rate}")
        return {"rate": rate}

    async def _fetch_rate(self) -> float:
        if not self.settings.API_KEY:
            raise ValueError("API_KEY is not configured")

        response = await self._request(
            "GET",
            self.settings.EXCHANGE_RATE_URL,
            params={"access_key": self.settings.API_KEY},
        )
        response.raise_for_status()
        payload = response.json()

        quotes = payload.get("quotes") if isinstance(payload, dict) else None
        rate = quotes.get("USDINR") if isinstance(quotes, dict) else None
        if isinstance(rate, (int, float)) and not isinstance(rate, bool):
            return rate
        raise ValueError("Invalid rate from API")


class ConvertAmountNode(Node):
    """Multiply the USD amount by the rate."""

    name = "convert_amount"
    output_fields = frozenset({"total_inr"})
    description = "Convert the USD amount to INR"

    async def execute(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        return {"total_inr": state["amount_usd"] * state["rate"]}


class SummarizeNode(_HttpNode):
    """
    Summarize the conversion in one sentence with Gemini.

    Without a key, or when the call fails, a plain-text summary built from
    the state is used instead.
    """

    name = "summarize"
    output_fields = frozenset({"ai_summary"})
    description = "Summarize the conversion"

    DEFAULT_SUMMARY = "Conversion completed."

    async def execute(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            summary = await self._generate(build_summary_prompt(state))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Gemini API failed: {e}")
            return {"ai_summary": fallback_summary(state)}

        return {"ai_summary": summary or self.DEFAULT_SUMMARY}

    async def _generate(self, prompt: str) -> str:
        if not self.settings.GEMINI_API_KEY:
            raise ValueError("GEMINI_API_KEY is not configured")

        response = await self._request(
            "POST",
            f"{self.settings.GEMINI_BASE_URL}/models/{self.settings.GEMINI_MODEL}:generateContent",
            params={"key": self.settings.GEMINI_API_KEY},
            json={"contents": [{"role": "user", "parts": [{"text": prompt}]}]},
        )
        response.raise_for_status()
        return extract_gemini_text(response.json())


def extract_gemini_text(result: Any) -> str:
    """
    Pull the first candidate's text out of a generateContent response.

    Returns an empty string when the response carries no candidates.

    Raises:
        ValueError: the response does not have the documented shape
    """
    if not isinstance(result, dict):
        raise ValueError("Unexpected Gemini response")

    candidates = result.get("candidates") or []
    if not isinstance(candidates, list):
        raise ValueError("Unexpected Gemini candidates")
    if not candidates:
        return ""

    candidate = candidates[0]
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        raise ValueError("Unexpected Gemini content")

    text = parts[0].get("text", "")
    return text.strip() if isinstance(text, str) else ""


class DeliveryNode(Node):
    """Simulated delivery of the summary to a messaging channel."""

    def __init__(self, name: str, channel: str, status_field: str):
        self.name = name
        self.channel = channel
        self.status_field = status_field
        self.output_fields = frozenset({status_field})
        self.description = f"Send the summary via {channel}"

    async def execute(self, state: Mapping[str, Any]) -> Dict[str, Any]:
        logger.info(f"{self.channel}: {state.get('ai_summary')}")
        return {self.status_field: "sent"}


def build_summary_prompt(state: Mapping[str, Any]) -> str:
    return (
        "Summarize this currency conversion in one short sentence:\n"
        f"USD {state.get('amount_usd')} at rate {state.get('rate')} "
        f"equals INR {state.get('total_inr')}."
    )


def fallback_summary(state: Mapping[str, Any]) -> str:
    return (
        f"USD {state.get('amount_usd')} at rate {state.get('rate')} "
        f"= INR {state.get('total_inr')}."
    )


def create_currency_workflow(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> StateGraph:
    """
    Create the currency conversion workflow graph (uncompiled).

    Args:
        settings: Settings holding the service keys (defaults to the global ones)
        client: Optional shared HTTP client for the external calls

    Returns:
        Configured StateGraph instance
    """
    graph = StateGraph(
        CURRENCY_SCHEMA,
        name="Currency Conversion Workflow",
        description=(
            "Fetches the USD/INR rate, converts the amount, summarizes it "
            "and delivers the summary to Slack and email in parallel."
        ),
    )

    graph.add_node(FetchRateNode(settings, client))
    graph.add_node(ConvertAmountNode())
    graph.add_node(SummarizeNode(settings, client))
    graph.add_node(DeliveryNode("send_slack", "Slack", "slack_status"))
    graph.add_node(DeliveryNode("send_email", "Email", "email_status"))

    graph.add_edge(START, "fetch_rate")
    graph.add_edge("fetch_rate", "convert_amount")
    graph.add_edge("convert_amount", "summarize")
    graph.add_edge("summarize", "send_slack")
    graph.add_edge("summarize", "send_email")
    graph.add_edge("send_slack", END)
    graph.add_edge("send_email", END)

    return graph


def build_currency_workflow(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> CompiledGraph:
    """Create and compile the currency conversion workflow."""
    return create_currency_workflow(settings, client).compile()


async def register_currency_workflow(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> CompiledGraph:
    """
    Register the compiled currency workflow in storage.

    This makes the workflow available immediately via the API under
    ``currency-demo``.
    """
    from dagflow.storage.memory import graph_storage

    workflow = build_currency_workflow(settings, client)
    await graph_storage.save(
        graph_id=CURRENCY_GRAPH_ID,
        name="Currency Conversion Demo",
        graph=workflow,
    )

    logger.info(f"Registered currency workflow with ID: {CURRENCY_GRAPH_ID}")
    return workflow


# ============================================================
# Example Usage
# ============================================================

async def run_currency_demo(amount_usd: float = 100, diagram_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Run the workflow once, print the final state and save the diagram.

    Usage:
        import asyncio
        from dagflow.workflows.currency import run_currency_demo
        asyncio.run(run_currency_demo())
    """
    workflow = build_currency_workflow()
    final_state = await workflow.invoke({"amount_usd": amount_usd})
    print(f"\nFinal State: {final_state}")

    path = save_diagram(
        ((e.source, e.target) for e in workflow.edges),
        diagram_path or default_settings.DIAGRAM_PATH,
    )
    print(f"\nMermaid diagram saved to {path} (paste into https://mermaid.live)")
    return final_state


if __name__ == "__main__":
    import asyncio

    logging.basicConfig(level=getattr(logging, default_settings.LOG_LEVEL))
    asyncio.run(run_currency_demo())
