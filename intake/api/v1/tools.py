"""Tool usage REST API routes - V1."""

from typing import List

from fastapi import APIRouter, HTTPException, Depends

from ...models.tool import ToolDetail, ToolStats, ToolUsage, UserToolUsage
from ...services.tool_aggregator import ToolAggregator

router = APIRouter(prefix="/api/v1/tools", tags=["Tools"])

# Tool aggregator (set by main.py)
aggregator: ToolAggregator = None


def get_aggregator() -> ToolAggregator:
    """Dependency to get the tool aggregator."""
    if aggregator is None:
        raise HTTPException(status_code=500, detail="Tool aggregator not initialized")
    return aggregator


@router.get("", response_model=dict)
async def list_tools(agg: ToolAggregator = Depends(get_aggregator)):
    """
    List every tool mentioned across all conversations.

    Returns:
        Dictionary containing the tool table and its size
    """
    tools: List[ToolUsage] = await agg.get_all_tools()
    return {"tools": tools, "total": len(tools)}


@router.get("/stats", response_model=ToolStats)
async def tool_stats(agg: ToolAggregator = Depends(get_aggregator)):
    """Get totals, most used tools and the per-category breakdown."""
    return await agg.get_tools_stats()


@router.get("/by-category", response_model=dict)
async def tools_by_category(agg: ToolAggregator = Depends(get_aggregator)):
    """Group the tool table by category."""
    return {"categories": await agg.get_tools_by_category()}


@router.get("/by-user/{email}", response_model=dict)
async def tools_by_user(email: str, agg: ToolAggregator = Depends(get_aggregator)):
    """List the tools one user mentioned."""
    tools: List[UserToolUsage] = await agg.get_tools_by_user(email)
    return {"email": email, "tools": tools, "total": len(tools)}


@router.get("/detail/{tool_name}", response_model=ToolDetail)
async def tool_detail(tool_name: str, agg: ToolAggregator = Depends(get_aggregator)):
    """Get every user who mentioned a tool."""
    return await agg.get_tool_detail(tool_name)
