"""Thought Server MCP.

FastMCP implementation providing reasoning-state tracking tools.
The calling LLM does all reasoning; these tools record, validate and
organize the steps.

Tools:
1. sequentialThought - Sequential thought chain with revisions and branches
2. chainOfDraft - Draft / critique / revision cycle
3. integratedThinking - One step applied to both chains atomically
4. setFeature - Toggle runtime features
5. chainStatus - Structural snapshot of a session's chains

Run with: thought-server
Or: python -m thought_server.server
"""

# Note: We intentionally do NOT use `from __future__ import annotations` here
# because it causes issues with Pydantic/FastMCP type resolution at decorator time.

import asyncio
import time
from datetime import timedelta
from typing import Any, Literal

import orjson
from dotenv import load_dotenv
from fastmcp import Context, FastMCP
from loguru import logger

from thought_server.config import get_config
from thought_server.tools.chain_types import (
    DraftNode,
    IntegratedStepRequest,
    ThoughtNode,
    parse_step,
)
from thought_server.tools.engine_base import ChainEngine
from thought_server.utils.errors import (
    ChainError,
    SessionNotFoundError,
    StructuralError,
    ToolExecutionError,
)
from thought_server.utils.features import RuntimeFeatures
from thought_server.utils.logging import configure_logging, log_context
from thought_server.utils.session import ChainRegistry

# Load environment variables from .env file (for local development)
load_dotenv()

CONFIG = get_config()

features = RuntimeFeatures(CONFIG.features)
registry = ChainRegistry(CONFIG.chain)

FeatureName = Literal["errorCapture", "metricTracking", "performanceMonitoring", "mcpDebug"]
ChainName = Literal["sequential", "draft", "integrated", "all"]


def _json(data: dict[str, Any] | None, *, indent: bool = True) -> str:
    """Serialize data to JSON string with proper typing.

    Type-safe wrapper around orjson.dumps that returns str.
    """
    if data is None:
        data = {}
    opts = orjson.OPT_INDENT_2 if indent else 0
    result: bytes = orjson.dumps(data, option=opts, default=str)
    return result.decode("utf-8")


# =============================================================================
# Automatic Session Cleanup
# =============================================================================

_cleanup_task: asyncio.Task[None] | None = None


async def _cleanup_stale_sessions() -> None:
    """Background task to clean up idle sessions."""
    max_age = timedelta(minutes=CONFIG.session.max_age_minutes)
    interval = CONFIG.session.cleanup_interval_seconds
    logger.info(
        f"Session cleanup task started (max_age={CONFIG.session.max_age_minutes}m, "
        f"interval={interval}s)"
    )

    while True:
        try:
            await asyncio.sleep(interval)
            removed = registry.cleanup_stale(max_age)
            if removed:
                logger.info(f"Cleaned up {len(removed)} stale sessions: {removed}")
        except asyncio.CancelledError:
            logger.info("Session cleanup task cancelled")
            break
        except Exception as e:
            logger.error(f"Error in cleanup task: {e}")


def _start_cleanup_task() -> None:
    """Start the background cleanup task if not already running."""
    global _cleanup_task
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No event loop available, cleanup task will start with the first call")
        return
    if _cleanup_task is None or _cleanup_task.done():
        _cleanup_task = loop.create_task(_cleanup_stale_sessions())
        logger.debug("Cleanup task scheduled")


def _stop_cleanup_task() -> None:
    """Stop the background cleanup task."""
    global _cleanup_task
    if _cleanup_task is not None and not _cleanup_task.done():
        _cleanup_task.cancel()
        logger.debug("Cleanup task stopped")
    _cleanup_task = None


# =============================================================================
# Initialize FastMCP Server
# =============================================================================

mcp = FastMCP(
    name=CONFIG.server.name,
    instructions="""Reasoning-state tracker. You do the thinking; these tools record it.

sequentialThought: submit numbered thoughts. Revise with isRevision + revisesThought,
fork with branchFromThought (+ optional branchId). nextThoughtNeeded=false completes the
chain. A confidence drop larger than the configured tolerance is accepted but flagged.

chainOfDraft: submit drafts, critiques (isCritique) and revisions (isRevision +
revisesDraft). nextStepNeeded=false completes the cycle.

integratedThinking: one step applied to both chains; rejected as a whole if either
side rejects it.

setFeature: toggle errorCapture, metricTracking, performanceMonitoring, mcpDebug.
chainStatus: inspect a session's chains.""",
)


# =============================================================================
# Helpers
# =============================================================================


def _validate_input_sizes(
    content: str | None = None,
    context: dict[str, Any] | None = None,
    reasoning_chain: list[str] | None = None,
) -> dict[str, Any] | None:
    """Validate input sizes to prevent resource exhaustion.

    Returns:
        None if valid, or dict with error details if invalid.

    """
    limits = CONFIG.input_limits
    if content and len(content) > limits.max_content_size:
        return {
            "error": "input_too_large",
            "field": "content",
            "max_size": limits.max_content_size,
            "actual_size": len(content),
            "message": f"Content exceeds maximum size ({limits.max_content_size:,} chars)",
            "status": "failed",
        }
    if context:
        for key in ("assumptions", "constraints"):
            items = context.get(key)
            if isinstance(items, list) and len(items) > limits.max_context_items:
                return {
                    "error": "input_too_large",
                    "field": f"context.{key}",
                    "max_items": limits.max_context_items,
                    "actual_count": len(items),
                    "message": f"Too many {key} ({len(items)} > {limits.max_context_items})",
                    "status": "failed",
                }
    if reasoning_chain and len(reasoning_chain) > limits.max_reasoning_chain:
        return {
            "error": "input_too_large",
            "field": "reasoningChain",
            "max_items": limits.max_reasoning_chain,
            "actual_count": len(reasoning_chain),
            "message": (
                f"Reasoning chain too long ({len(reasoning_chain)} > "
                f"{limits.max_reasoning_chain})"
            ),
            "status": "failed",
        }
    return None


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _chain_failure(error: ChainError) -> str:
    return _json({**error.to_dict(), "status": "failed"}, indent=False)


def _internal_failure(tool_name: str, error: Exception) -> str:
    """Log an unexpected failure and return a generic error payload."""
    if features.error_capture:
        logger.opt(exception=error).error(f"{tool_name} failed unexpectedly")
    else:
        logger.error(f"{tool_name} failed unexpectedly: {type(error).__name__}")
    failure = ToolExecutionError(tool_name, "Internal error while processing the request")
    return _json(failure.to_dict(), indent=False)


def _log_timing(tool_name: str, started: float) -> None:
    if features.performance_monitoring:
        logger.debug(f"{tool_name} processed in {(time.perf_counter() - started) * 1000:.2f} ms")


def _step_response(
    session_id: str,
    engine: ChainEngine[Any],
    node: ThoughtNode | DraftNode,
    advisories: tuple[ChainError, ...],
    metrics: Any,
) -> dict[str, Any]:
    response: dict[str, Any] = {
        "status": "accepted",
        "sessionId": session_id,
        "state": engine.state.value,
        "historyLength": engine.node_count,
        "category": node.category.model_dump() if node.category else None,
        "confidence": node.confidence,
        "flags": node.flags,
        "advisories": [advisory.to_dict() for advisory in advisories],
        "progress": engine.progress(),
    }
    if engine.is_closed:
        response["summary"] = engine.summary()
    if features.metric_tracking:
        response["metrics"] = metrics.to_dict()
    if features.mcp_debug:
        response["debug"] = {
            "node": node.to_dict(),
            "dependencies": node.dependencies,
            "snapshot": engine.snapshot(),
        }
    return response


# =============================================================================
# TOOL 1: SEQUENTIAL THOUGHT
# =============================================================================


@mcp.tool(name="sequentialThought")
async def sequential_thought(
    content: str,
    thoughtNumber: int,  # noqa: N803
    totalThoughts: int,  # noqa: N803
    nextThoughtNeeded: bool,  # noqa: N803
    isRevision: bool = False,  # noqa: N803
    revisesThought: int | None = None,  # noqa: N803
    branchFromThought: int | None = None,  # noqa: N803
    branchId: str | None = None,  # noqa: N803
    needsMoreThoughts: bool = False,  # noqa: N803
    category: dict[str, Any] | None = None,
    confidence: float | None = None,
    context: dict[str, Any] | None = None,
    sessionId: str = "default",  # noqa: N803
    ctx: Context | None = None,
) -> str:
    """Record one step of a sequential thought chain.

    Args:
        content: The thought itself
        thoughtNumber: Position of this thought (1-based)
        totalThoughts: Current estimate of the chain length
        nextThoughtNeeded: False completes the chain
        isRevision: This thought revises an earlier one
        revisesThought: Thought number being revised (requires isRevision)
        branchFromThought: Thought number to fork from
        branchId: Branch identifier (generated when a fork omits it)
        needsMoreThoughts: Allow thoughtNumber to exceed totalThoughts
        category: {"type": analysis|hypothesis|verification|revision|solution, "confidence": 0-1}
        confidence: Your confidence in this thought (0-1)
        context: {"problemScope": str, "assumptions": [str], "constraints": [str]}
        sessionId: Chain identity (default "default")

    Returns:
        JSON with the accepted step's state, advisories and progress, or an error

    """
    started = time.perf_counter()
    _start_cleanup_task()
    with log_context(session_id=sessionId, tool_name="sequentialThought"):
        try:
            size_error = _validate_input_sizes(content=content, context=context)
            if size_error:
                return _json(size_error, indent=False)

            step = parse_step(
                ThoughtNode,
                _compact(
                    {
                        "content": content,
                        "thoughtNumber": thoughtNumber,
                        "totalThoughts": totalThoughts,
                        "nextThoughtNeeded": nextThoughtNeeded,
                        "isRevision": isRevision,
                        "revisesThought": revisesThought,
                        "branchFromThought": branchFromThought,
                        "branchId": branchId,
                        "needsMoreThoughts": needsMoreThoughts,
                        "category": category,
                        "confidence": confidence,
                        "context": context,
                    }
                ),
            )
            engine = registry.get_or_create(sessionId).thoughts
            node, metrics, advisories = engine.submit(step)

            if ctx:
                for advisory in advisories:
                    await ctx.warning(advisory.message)
                if engine.is_closed:
                    await ctx.info(f"Thought chain completed ({engine.node_count} thoughts)")

            response = _step_response(sessionId, engine, node, advisories, metrics)
            response.update(
                {
                    "thoughtNumber": node.thought_number,
                    "totalThoughts": node.total_thoughts,
                    "nextThoughtNeeded": node.next_needed,
                    "branchId": node.branch_id,
                    "branches": engine.branch_ids,
                }
            )
            return _json(response)

        except ChainError as e:
            return _chain_failure(e)
        except Exception as e:
            return _internal_failure("sequentialThought", e)
        finally:
            _log_timing("sequentialThought", started)


# =============================================================================
# TOOL 2: CHAIN OF DRAFT
# =============================================================================


@mcp.tool(name="chainOfDraft")
async def chain_of_draft(
    content: str,
    draftNumber: int,  # noqa: N803
    totalDrafts: int,  # noqa: N803
    nextStepNeeded: bool,  # noqa: N803
    needsRevision: bool = False,  # noqa: N803
    isRevision: bool = False,  # noqa: N803
    revisesDraft: int | None = None,  # noqa: N803
    isCritique: bool = False,  # noqa: N803
    critiqueFocus: str | None = None,  # noqa: N803
    reasoningChain: list[str] | None = None,  # noqa: N803
    category: dict[str, Any] | None = None,
    confidence: float | None = None,
    context: dict[str, Any] | None = None,
    sessionId: str = "default",  # noqa: N803
    ctx: Context | None = None,
) -> str:
    """Record one step of a chain-of-draft cycle.

    Args:
        content: Draft, critique or revision text
        draftNumber: Draft number (for critiques: the draft being critiqued)
        totalDrafts: Current estimate of the number of drafts
        nextStepNeeded: False completes the cycle
        needsRevision: This draft should be revised
        isRevision: This step revises an earlier draft
        revisesDraft: Draft number being revised or critiqued
        isCritique: This step critiques an existing draft
        critiqueFocus: What the critique examines
        reasoningChain: Reasoning links supporting this step
        category: {"type": initial|critique|revision|final, "confidence": 0-1}
        confidence: Your confidence in this step (0-1)
        context: {"problemScope": str, "assumptions": [str], "constraints": [str]}
        sessionId: Cycle identity (default "default")

    Returns:
        JSON with the accepted step's state, advisories and progress, or an error

    """
    started = time.perf_counter()
    _start_cleanup_task()
    with log_context(session_id=sessionId, tool_name="chainOfDraft"):
        try:
            size_error = _validate_input_sizes(
                content=content, context=context, reasoning_chain=reasoningChain
            )
            if size_error:
                return _json(size_error, indent=False)

            step = parse_step(
                DraftNode,
                _compact(
                    {
                        "content": content,
                        "draftNumber": draftNumber,
                        "totalDrafts": totalDrafts,
                        "nextStepNeeded": nextStepNeeded,
                        "needsRevision": needsRevision,
                        "isRevision": isRevision,
                        "revisesDraft": revisesDraft,
                        "isCritique": isCritique,
                        "critiqueFocus": critiqueFocus,
                        "reasoningChain": reasoningChain,
                        "category": category,
                        "confidence": confidence,
                        "context": context,
                    }
                ),
            )
            engine = registry.get_or_create(sessionId).drafts
            node, metrics, advisories = engine.submit(step)

            if ctx:
                for advisory in advisories:
                    await ctx.warning(advisory.message)
                if engine.is_closed:
                    await ctx.info(f"Draft cycle completed ({engine.node_count} steps)")

            response = _step_response(sessionId, engine, node, advisories, metrics)
            response.update(
                {
                    "draftNumber": node.draft_number,
                    "totalDrafts": node.total_drafts,
                    "nextStepNeeded": node.next_step_needed,
                    "needsRevision": node.needs_revision,
                    "revisesDraft": node.revises_draft,
                }
            )
            return _json(response)

        except ChainError as e:
            return _chain_failure(e)
        except Exception as e:
            return _internal_failure("chainOfDraft", e)
        finally:
            _log_timing("chainOfDraft", started)


# =============================================================================
# TOOL 3: INTEGRATED THINKING
# =============================================================================


@mcp.tool(name="integratedThinking")
async def integrated_thinking(
    content: str,
    thoughtNumber: int,  # noqa: N803
    totalThoughts: int,  # noqa: N803
    draftNumber: int | None = None,  # noqa: N803
    totalDrafts: int | None = None,  # noqa: N803
    needsRevision: bool | None = None,  # noqa: N803
    nextStepNeeded: bool | None = None,  # noqa: N803
    isRevision: bool = False,  # noqa: N803
    revisesDraft: int | None = None,  # noqa: N803
    isCritique: bool = False,  # noqa: N803
    critiqueFocus: str | None = None,  # noqa: N803
    reasoningChain: list[str] | None = None,  # noqa: N803
    category: dict[str, Any] | None = None,
    confidence: float | None = None,
    context: dict[str, Any] | None = None,
    mcpFeatures: dict[str, bool] | None = None,  # noqa: N803
    sessionId: str = "default",  # noqa: N803
    ctx: Context | None = None,
) -> str:
    """Apply one step to both a thought chain and a draft cycle, atomically.

    Draft fields default from the thought fields: draftNumber=thoughtNumber,
    totalDrafts=totalThoughts, needsRevision=false,
    nextStepNeeded=(thoughtNumber < totalThoughts).

    Args:
        content: Step text
        thoughtNumber: Position in the thought chain
        totalThoughts: Estimate of the thought chain length
        draftNumber: Position in the draft cycle
        totalDrafts: Estimate of the number of drafts
        needsRevision: This draft should be revised
        nextStepNeeded: False completes both chains
        isRevision: Revises an earlier step (revisesDraft names it on both sides)
        revisesDraft: Step number being revised or critiqued
        isCritique: Critique of an existing draft
        critiqueFocus: What the critique examines
        reasoningChain: Reasoning links supporting this step
        category: Draft category {"type": initial|critique|revision|final, "confidence": 0-1}
        confidence: Your confidence in this step (0-1)
        context: {"problemScope": str, "assumptions": [str], "constraints": [str]}
        mcpFeatures: {"sequentialThinking", "draftProcessing", "parallelProcessing",
            "monitoring"} booleans
        sessionId: Session identity (default "default")

    Returns:
        JSON with both accepted nodes, fused category, parallel eligibility and
        merged context, or an error naming the failing side

    """
    started = time.perf_counter()
    _start_cleanup_task()
    with log_context(session_id=sessionId, tool_name="integratedThinking"):
        try:
            size_error = _validate_input_sizes(
                content=content, context=context, reasoning_chain=reasoningChain
            )
            if size_error:
                return _json(size_error, indent=False)

            request = parse_step(
                IntegratedStepRequest,
                _compact(
                    {
                        "content": content,
                        "thoughtNumber": thoughtNumber,
                        "totalThoughts": totalThoughts,
                        "draftNumber": draftNumber,
                        "totalDrafts": totalDrafts,
                        "needsRevision": needsRevision,
                        "nextStepNeeded": nextStepNeeded,
                        "isRevision": isRevision,
                        "revisesDraft": revisesDraft,
                        "isCritique": isCritique,
                        "critiqueFocus": critiqueFocus,
                        "reasoningChain": reasoningChain,
                        "category": category,
                        "confidence": confidence,
                        "context": context,
                        "mcpFeatures": mcpFeatures,
                    }
                ),
            )
            coordinator = registry.get_or_create(sessionId).integrated
            result = coordinator.process(request)

            if ctx:
                for advisory in result.advisories:
                    await ctx.warning(advisory.message)
                if result.parallel_eligible:
                    await ctx.info(
                        f"Step is parallel-eligible (confidence {result.category.confidence:.2f})"
                    )

            response = {
                "status": "accepted",
                "sessionId": sessionId,
                **result.to_dict(include_metrics=features.metric_tracking),
            }
            if result.completed:
                response["summary"] = {
                    "sequential": coordinator.thoughts.summary(),
                    "draft": coordinator.drafts.summary(),
                }
            if features.mcp_debug:
                response["debug"] = coordinator.snapshot()
            return _json(response)

        except ChainError as e:
            return _chain_failure(e)
        except Exception as e:
            return _internal_failure("integratedThinking", e)
        finally:
            _log_timing("integratedThinking", started)


# =============================================================================
# TOOL 4: SET FEATURE
# =============================================================================


@mcp.tool(name="setFeature")
async def set_feature(
    feature: FeatureName,
    enabled: bool,
    ctx: Context | None = None,
) -> str:
    """Enable or disable a runtime feature.

    Args:
        feature: errorCapture | metricTracking | performanceMonitoring | mcpDebug
        enabled: New value

    Returns:
        JSON with the full feature flag set

    """
    with log_context(tool_name="setFeature"):
        try:
            flags = features.set(feature, enabled)
        except ValueError as e:
            error = StructuralError(str(e), fields=["feature"])
            return _chain_failure(error)
        except Exception as e:
            return _internal_failure("setFeature", e)

        if ctx:
            await ctx.info(f"Feature {feature} {'enabled' if enabled else 'disabled'}")
        return _json(
            {"status": "updated", "feature": feature, "enabled": enabled, "features": flags}
        )


# =============================================================================
# TOOL 5: CHAIN STATUS
# =============================================================================


@mcp.tool(name="chainStatus")
async def chain_status(
    sessionId: str = "default",  # noqa: N803
    chain: ChainName = "all",
) -> str:
    """Inspect the chains of one session.

    Args:
        sessionId: Session identity (default "default")
        chain: sequential | draft | integrated | all

    Returns:
        JSON with node counts, main line, branches, revisions and state

    """
    with log_context(session_id=sessionId, tool_name="chainStatus"):
        try:
            with registry.session(sessionId) as chains:
                snapshot = chains.snapshot(chain)
            snapshot["features"] = features.as_dict()
            snapshot["config"] = CONFIG.chain.to_dict()
            return _json(snapshot)
        except SessionNotFoundError as e:
            return _json(
                {
                    "error": "session_not_found",
                    "message": str(e),
                    "sessionId": e.session_id,
                    "status": "failed",
                },
                indent=False,
            )
        except Exception as e:
            return _internal_failure("chainStatus", e)


def main() -> None:
    """Run the Thought Server MCP server."""
    configure_logging()
    server = CONFIG.server
    logger.info(f"Starting {server.name} (transport: {server.transport})")

    try:
        if server.transport == "stdio":
            mcp.run(transport="stdio")
        elif server.transport == "http":
            mcp.run(transport="streamable-http", host=server.host, port=server.port)
        elif server.transport == "sse":
            mcp.run(transport="sse", host=server.host, port=server.port)
        else:
            logger.warning(f"Unknown transport '{server.transport}', falling back to stdio")
            mcp.run(transport="stdio")
    finally:
        _stop_cleanup_task()


if __name__ == "__main__":
    main()
