"""
graph.py
─────────────────────────────────────────────────────────────────────────────
LangGraph StateGraph for one orchestrator cycle.

Exactly one of explore / discover runs per cycle.  Re-entry (the next
cycle) happens outside the graph, in main.run_cycle(), based on the
status decide_continuation leaves in the state.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from langgraph.graph import StateGraph, END

from shared.config import Mode
from state_types import CycleState
from nodes import (
    load_state_node,
    select_mode_node,
    explore_node,
    discover_node,
    decide_continuation_node,
)


# ─────────────────────────────────────────────────────────────────────────────
# Routing Functions
# ─────────────────────────────────────────────────────────────────────────────

def route_after_select_mode(state: CycleState) -> str:
    """Route to the unit of work chosen by select_mode."""
    if state.get("mode") == Mode.EXPLORE:
        return "explore"
    return "discover"


# ─────────────────────────────────────────────────────────────────────────────
# Build the StateGraph
# ─────────────────────────────────────────────────────────────────────────────

def build_graph():
    """
    Build and compile the cycle state machine.

    Flow:
    [START] → [load_state] → [select_mode] → (explore)  → [explore]  → [decide_continuation] → [END]
                                           ↓ (discover)                ↑
                                          [discover] ──────────────────┘
    """
    graph = StateGraph(CycleState)

    # ── Add all nodes ─────────────────────────────────────────────────────
    graph.add_node("load_state", load_state_node)
    graph.add_node("select_mode", select_mode_node)
    graph.add_node("explore", explore_node)
    graph.add_node("discover", discover_node)
    graph.add_node("decide_continuation", decide_continuation_node)

    # ── Set entry point ───────────────────────────────────────────────────
    graph.set_entry_point("load_state")
    graph.add_edge("load_state", "select_mode")

    # ── Mode routing ──────────────────────────────────────────────────────
    graph.add_conditional_edges(
        "select_mode",
        route_after_select_mode,
        {
            "explore": "explore",
            "discover": "discover",
        }
    )

    # ── Terminal edges ────────────────────────────────────────────────────
    graph.add_edge("explore", "decide_continuation")
    graph.add_edge("discover", "decide_continuation")
    graph.add_edge("decide_continuation", END)

    return graph.compile()


__all__ = ["build_graph", "route_after_select_mode", "CycleState"]
