"""
Branching and stateful logic nodes: if-else, decision tree, router, state machine.

Conditions are plain substring tests against the node's input text unless
the node opts into LLM evaluation. LLM answers follow an exact TRUE/FALSE
contract; anything else counts as FALSE.
"""

import json
import logging
import re
from typing import Any

from agentflow.errors import LLMError
from agentflow.graph.context import extract_text
from agentflow.graph.safe_eval import safe_eval
from agentflow.llm.parsing import parse_true_false
from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput, typed_output

logger = logging.getLogger(__name__)


def rule_text(data: dict[str, Any]) -> str:
    """Natural-language rule from ``rules.nl``, or empty."""
    rules = data.get("rules")
    if isinstance(rules, dict) and isinstance(rules.get("nl"), str):
        return rules["nl"]
    return ""


async def ask_true_false(ctx: NodeContext, node: BaseNode, condition: str, context: str) -> bool:
    """Ask the LLM whether ``condition`` holds for ``context``."""
    prompt = (
        f"Condition: {condition}\n\n"
        f"Context:\n{context}\n\n"
        "Does the condition hold for the context? Answer with exactly TRUE or FALSE."
    )
    result = await ctx.llm.call(prompt, node.llm_options(ctx, temperature=0.0))
    return parse_true_false(result.text)


class IfElseNode(BaseNode):
    """Binary branch. Output is the string ``"true"`` or ``"false"``."""

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        condition = str(self.data.get("condition") or "") or rule_text(self.data)
        if not condition:
            return {"error": "No condition specified"}

        values = self.input_texts(ctx)
        haystack = values[0] if len(values) == 1 else json.dumps(values)

        if self.data.get("useLLM"):
            try:
                truthy = await ask_true_false(ctx, self, condition, haystack)
            except LLMError as e:
                return {"error": str(e)}
        else:
            truthy = condition in haystack

        return {"output": "true" if truthy else "false"}


class DecisionTreeNode(BaseNode):
    """
    Multi-way branch over ordered rules.

    Config:
        rules: ``[{condition, outputPath, priority?}]``
        defaultPath: returned when nothing matches (default ``"default"``)
        evaluationMode: ``sequential`` | ``priority`` | ``llm``
        useLLM: evaluate each condition with a TRUE/FALSE LLM question

    The output is the winning ``outputPath`` string, which the engine uses
    as the output port to forward on.
    """

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        rules = self.data.get("rules") or []
        default_path = self.data.get("defaultPath") or "default"
        mode = self.data.get("evaluationMode") or "sequential"
        context = self.format_input_context(ctx)

        if not isinstance(rules, list) or not rules:
            return {"error": "No decision rules defined"}

        if mode == "priority":
            rules = sorted(rules, key=lambda r: r.get("priority") or 0, reverse=True)

        try:
            if mode == "llm":
                return await self._pick_with_llm(ctx, rules, context) or default_path

            for rule in rules:
                if await self._matches(ctx, rule.get("condition") or "", context):
                    return rule.get("outputPath") or default_path
        except LLMError as e:
            return {"error": str(e)}

        return default_path

    async def _matches(self, ctx: NodeContext, condition: str, context: str) -> bool:
        if not condition:
            return False
        if self.data.get("useLLM"):
            return await ask_true_false(ctx, self, condition, context)
        return condition in context

    async def _pick_with_llm(
        self, ctx: NodeContext, rules: list[dict[str, Any]], context: str
    ) -> str | None:
        listing = "\n".join(f"{i + 1}. {r.get('condition', '')}" for i, r in enumerate(rules))
        prompt = (
            f"Context:\n{context}\n\n"
            f"Rules:\n{listing}\n\n"
            "Reply with the number of the first rule that applies, or 0 if none apply."
        )
        result = await ctx.llm.call(prompt, self.llm_options(ctx, temperature=0.0))
        match = re.search(r"\d+", result.text or "")
        index = int(match.group()) if match else 0
        if 1 <= index <= len(rules):
            return rules[index - 1].get("outputPath")
        return None


class RouterNode(BaseNode):
    """
    Boolean router.

    ``expression`` mode evaluates a sandboxed expression over ``inputs``
    (a list of upstream outputs) and ``inputs_obj``/``inputsObj`` (the port
    map). ``llm`` mode asks ``llmRule`` as a TRUE/FALSE question.
    Evaluation failures resolve to ``decision=False`` with the error in meta.
    """

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        mode = self.data.get("mode") or "expression"
        inputs = ctx.inputs or self._inputs_from_connections(ctx)
        meta: dict[str, Any] = {"node_type": "router", "mode": mode}
        decision = False

        try:
            if mode == "llm":
                rule = self.data.get("llmRule") or rule_text(self.data)
                context = "\n\n".join(f"{k}: {extract_text(v)}" for k, v in inputs.items())
                decision = await ask_true_false(ctx, self, rule, context or "No inputs provided")
            else:
                expression = self.data.get("expression") or "false"
                logger.debug(f"Router {self.node.id} evaluating {expression!r}")
                decision = bool(
                    safe_eval(
                        expression,
                        {"inputs": list(inputs.values()), "inputs_obj": inputs, "inputsObj": inputs},
                    )
                )
            meta["evaluation_result"] = decision
        except (LLMError, SyntaxError, ValueError, TypeError, NameError, KeyError, IndexError) as e:
            logger.warning(f"⚠ Router {self.node.id} evaluation failed: {e}")
            decision = False
            meta["error"] = str(e)

        return typed_output("json", {"decision": decision}, meta)

    def _inputs_from_connections(self, ctx: NodeContext) -> dict[str, Any]:
        inputs: dict[str, Any] = {}
        for conn in ctx.graph.incoming(self.node.id):
            output = ctx.node_outputs.get(conn.source)
            if output:
                inputs[conn.target_input] = output
        return inputs


class StateMachineNode(BaseNode):
    """
    Transition-table state machine.

    The event is the first input value. Current state is read from the
    shared ``StateStore`` unless ``persistState`` is false, so consecutive
    runs with the same stores continue where the last one stopped.
    """

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        states = self.data.get("states") or []
        initial = self.data.get("initialState") or (states[0] if states else "initial")
        transitions = self.data.get("transitions") or []
        persist = self.data.get("persistState", True) is not False

        configured = self.data.get("currentState")
        if persist:
            current = ctx.stores.states.get(self.node.id) or configured or initial
        else:
            current = configured or initial

        values = self.get_input_values(ctx)
        event = values[0] if values else ""

        transition = next(
            (t for t in transitions if t.get("from") == current and t.get("event") == event),
            None,
        )
        if transition is None:
            return {
                "currentState": current,
                "event": event,
                "message": f'No transition found for event "{event}" in state "{current}"',
            }

        new_state = transition.get("to")
        if persist:
            ctx.stores.states.set(self.node.id, new_state)
        logger.info(f"🔄 {self.node.id}: {current} -> {new_state} on {event!r}")

        return {
            "previousState": current,
            "currentState": new_state,
            "event": event,
            "transition": f"{current} -> {new_state}",
            "output": new_state,
        }
