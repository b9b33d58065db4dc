"""Language-model fallback for messages the fast lane could not resolve.

The model must answer with one JSON object naming one action from a fixed
vocabulary. It may first ask for read-only tools (``CALL_TOOL``); tool results
are fed back and the model is asked again, up to ``max_tool_rounds`` times.
Anything that is not a well-formed decision is reported as ``ai_unavailable``.
"""

import json
import time
from typing import Iterable, Optional, Sequence

import httpx
from pydantic import ValidationError

from app.config import settings
from app.logging_config import get_logger
from app.schemas.context import ConversationContext, PendingImage
from app.schemas.decision import ClarifyDecision, Decision, DecisionAction, DecisionSource, parse_decision
from app.schemas.workspace import WorkspaceSettings
from app.services import replies
from app.services.agent_tools import AgentToolbox
from app.services.alert_service import alert_error
from app.services.interfaces import OrderLookup, ProductCatalog, UsageMeter
from app.services.llm.base import LLMError, LLMProvider, LLMResponse
from app.services.result import Result
from app.services.state_machine import allowed_targets, describe

logger = get_logger("ai_director")

AI_UNAVAILABLE = "ai_unavailable"
USAGE_KIND = "ai_director"
CALL_TOOL = "CALL_TOOL"

INPUT_COST_PER_MILLION = 0.15
OUTPUT_COST_PER_MILLION = 0.60

# Output without a confidence score must not clear the validator gate.
UNSTATED_CONFIDENCE = 0.5

UPDATE_FIELDS = ("customer_name", "customer_phone", "customer_address", "shown_products", "pending_product", "scratch")

TEMPERATURE = 0.7
MAX_TOKENS = 1000

SYSTEM_PROMPT = """You are the sales assistant of {business}, an online shop in Bangladesh.
You reply to customers on Messenger in the language they use (English, Bangla or Banglish).

Answer with ONE JSON object and nothing else:
{{
  "action": one of {actions} or "CALL_TOOL",
  "target_state": the conversation state after this reply,
  "reply": the message to send to the customer,
  "confidence": number between 0 and 1,
  ... action payload ...
}}

Actions and payload:
- REPLY: answer a question, no payload.
- ADD_TO_CART: "items": [{{"product_id": "...", "variant": null, "quantity": 1}}].
- UPDATE_CONTEXT: "updates": {{"customer_name", "customer_phone", "customer_address", "shown_products", "pending_product"}} (only the fields you change).
- CREATE_ORDER: optional "customer_name", "customer_phone", "customer_address". Only when the customer confirmed the order.
- ESCALATE_TO_HUMAN: "reason". Use for complaints or questions you cannot answer.
- CLARIFY: ask the customer to rephrase.
- CALL_TOOL: "tool_name" and "tool_args". Tools: {tools}.
  check_stock {{"query"}}, track_order {{"phone"}}, calculate_delivery {{"address"}}.

Rules:
- Current state is {state}. target_state must be one of: {allowed}.
- Never invent products. Only use product ids from the context or a check_stock result.
- Prices and stock come from tools or the context, never from memory.
- If unsure, lower your confidence instead of guessing.
"""


def calculate_cost(prompt_tokens: int, completion_tokens: int) -> float:
    return (
        prompt_tokens / 1_000_000 * INPUT_COST_PER_MILLION
        + completion_tokens / 1_000_000 * OUTPUT_COST_PER_MILLION
    )


def build_system_prompt(context: ConversationContext, workspace: WorkspaceSettings, tool_names: Iterable[str]) -> str:
    actions = ", ".join(f'"{action.value}"' for action in DecisionAction)
    return SYSTEM_PROMPT.format(
        business=workspace.business_name,
        actions=actions,
        tools=", ".join(tool_names),
        state=context.state.value,
        allowed=describe(allowed_targets(context.state)),
    )


def build_user_prompt(
    text: str,
    context: ConversationContext,
    workspace: WorkspaceSettings,
    history: Sequence[dict] = (),
    images: Sequence[PendingImage] = (),
) -> str:
    lines = [f"STATE: {context.state.value}"]

    if context.cart:
        lines.append("CART:")
        for item in context.cart:
            variant = f" [{item.variant}]" if item.variant else ""
            lines.append(f"- {item.product_name}{variant} (id {item.product_id}) x{item.quantity} @ {item.unit_price:g}")
        lines.append(f"CART TOTAL: {workspace.money(context.cart_total)}")
    else:
        lines.append("CART: empty")

    lines.append(
        "CHECKOUT: "
        f"name={context.customer_name or '-'}, phone={context.customer_phone or '-'}, "
        f"address={context.customer_address or '-'}"
    )
    if context.pending_product:
        product = context.pending_product
        lines.append(f"PRODUCT UNDER DISCUSSION: {product.name} (id {product.product_id}), price {product.price:g}, stock {product.stock}")
    if context.shown_products:
        lines.append("PRODUCTS ON SCREEN:")
        for index, product in enumerate(context.shown_products, start=1):
            lines.append(f"{index}. {product.name} (id {product.product_id}), price {product.price:g}, stock {product.stock}")
    if images:
        lines.append("IMAGES SENT BY CUSTOMER:")
        for image in images:
            lines.append(f"- {image.recognition or 'unrecognized image'} ({image.url})")
    if history:
        lines.append("RECENT MESSAGES:")
        for message in history:
            lines.append(f"{message.get('sender', 'customer')}: {message.get('text', '')}")

    lines.append("")
    lines.append(f"CUSTOMER MESSAGE: {text}")
    return "\n".join(lines)


def parse_model_output(content: str) -> dict:
    """Extract the JSON object from a completion. Raises ValueError when there is none."""
    cleaned = (content or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in model output")
    payload = json.loads(cleaned[start : end + 1])
    if not isinstance(payload, dict):
        raise ValueError("model output is not an object")
    return payload


def normalize_payload(payload: dict, context: ConversationContext) -> dict:
    """Map loose model output onto the decision schema."""
    normalized = dict(payload.get("payload") or {})
    normalized.update({key: value for key, value in payload.items() if key != "payload"})

    if "target_state" not in normalized:
        normalized["target_state"] = normalized.pop("new_state", None) or normalized.pop("newState", None) or context.state
    if "reply" not in normalized and "response" in normalized:
        normalized["reply"] = normalized.pop("response")

    if normalized.get("action") == DecisionAction.UPDATE_CONTEXT.value and "updates" not in normalized:
        normalized["updates"] = {key: normalized[key] for key in UPDATE_FIELDS if key in normalized}

    confidence = normalized.get("confidence")
    if confidence is None:
        normalized["confidence"] = UNSTATED_CONFIDENCE
    elif isinstance(confidence, (int, float)) and confidence > 1:
        normalized["confidence"] = confidence / 100.0

    normalized["source"] = DecisionSource.AI_DIRECTOR
    return normalized


class AIDirector:
    def __init__(
        self,
        provider: LLMProvider,
        catalog: ProductCatalog,
        order_lookup: OrderLookup,
        usage_meter: UsageMeter,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_tool_rounds: Optional[int] = None,
    ):
        self.provider = provider
        self.catalog = catalog
        self.order_lookup = order_lookup
        self.usage_meter = usage_meter
        self.model = model or settings.ai_director_model
        self.timeout_seconds = timeout_seconds or settings.ai_director_timeout_seconds
        self.max_tool_rounds = settings.ai_director_max_tool_rounds if max_tool_rounds is None else max_tool_rounds

    def _record_usage(self, response: LLMResponse, log_context: dict, round_index: int) -> None:
        cost = calculate_cost(response.prompt_tokens, response.completion_tokens)
        try:
            self.usage_meter.record_usage(
                USAGE_KIND,
                cost,
                {
                    **log_context,
                    "model": response.model,
                    "prompt_tokens": response.prompt_tokens,
                    "completion_tokens": response.completion_tokens,
                    "round": round_index,
                },
            )
        except Exception as exc:
            logger.warning(f"Usage recording failed: {exc}", extra={"context": log_context})

    def _call_model(self, messages: list[dict], log_context: dict, round_index: int) -> LLMResponse:
        started = time.monotonic()
        try:
            response = self.provider.generate(
                messages,
                model=self.model,
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
                timeout_seconds=self.timeout_seconds,
                json_mode=True,
            )
        finally:
            logger.info(
                "ai_director_llm_ms",
                extra={
                    "context": {
                        **log_context,
                        "duration_ms": round((time.monotonic() - started) * 1000, 1),
                        "model_name": self.model,
                        "round": round_index,
                        "messages": len(messages),
                    }
                },
            )
        self._record_usage(response, log_context, round_index)
        return response

    def decide(
        self,
        text: str,
        context: ConversationContext,
        workspace: WorkspaceSettings,
        history: Sequence[dict] = (),
        images: Sequence[PendingImage] = (),
        conversation_id: Optional[str] = None,
    ) -> Result[Decision]:
        toolbox = AgentToolbox(self.catalog, self.order_lookup, workspace)
        messages = [
            {"role": "system", "content": build_system_prompt(context, workspace, toolbox.names)},
            {"role": "user", "content": build_user_prompt(text, context, workspace, history, images)},
        ]
        log_context = {
            "conversation_id": conversation_id,
            "workspace_id": workspace.workspace_id,
            "state": context.state.value,
        }

        for round_index in range(self.max_tool_rounds + 1):
            try:
                response = self._call_model(messages, log_context, round_index)
            except httpx.TimeoutException as exc:
                logger.warning(f"AI director timeout after {self.timeout_seconds}s: {exc}", extra={"context": log_context})
                return Result.failure(f"timeout: {exc}", AI_UNAVAILABLE)
            except (httpx.HTTPError, LLMError) as exc:
                logger.error(f"AI director transport error: {exc}", extra={"context": log_context})
                alert_error("AI director unavailable", {**log_context, "error": str(exc)})
                return Result.failure(f"transport: {exc}", AI_UNAVAILABLE)

            try:
                payload = parse_model_output(response.content)
            except ValueError as exc:
                logger.warning(f"AI director returned malformed output: {exc}", extra={"context": log_context})
                return Result.failure(f"malformed: {exc}", AI_UNAVAILABLE)

            if payload.get("action") == CALL_TOOL:
                if round_index >= self.max_tool_rounds:
                    logger.info("Tool round ceiling reached", extra={"context": {**log_context, "rounds": round_index}})
                    break
                tool_name = payload.get("tool_name") or ""
                tool_args = payload.get("tool_args")
                result = toolbox.run(tool_name, tool_args if isinstance(tool_args, dict) else {})
                logger.info(
                    "AI director tool call",
                    extra={"context": {**log_context, "tool": tool_name, "success": result.success}},
                )
                messages.append({"role": "assistant", "content": response.content})
                messages.append({"role": "user", "content": result.as_history_line()})
                continue

            try:
                decision = parse_decision(normalize_payload(payload, context))
            except (ValidationError, ValueError) as exc:
                logger.warning(
                    "AI director output failed schema validation",
                    extra={"context": {**log_context, "error": str(exc)[:500]}},
                )
                return Result.failure(f"schema: {exc}", AI_UNAVAILABLE)

            logger.info(
                "AI director decision",
                extra={
                    "context": {
                        **log_context,
                        "action": decision.action,
                        "target_state": decision.target_state.value,
                        "confidence": decision.confidence,
                    }
                },
            )
            return Result.success(decision)

        return Result.success(
            ClarifyDecision(
                target_state=context.state,
                reply=replies.clarification_for(context.state),
                source=DecisionSource.AI_DIRECTOR,
            )
        )
