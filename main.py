"""
PodFlow - Command-line entry point.
PodFlow —— 命令行入口。

Runs a pipeline graph through the orchestration engine with a rich console
UI that shows every node transition and the final status table.
通过编排引擎运行流水线图，使用 Rich 控制台 UI 展示每次节点状态转移和最终状态表。

Usage / 用法:
    python main.py                          # default six-step pipeline
    python main.py --fast                   # scaled-down dwell times
    python main.py --fail=node-serving      # inject a failure at 50% progress
    python main.py --graph=pipeline.json    # editor payload {nodes, edges}
    python main.py --schedule=RECURRING     # record a schedule (not wired)
    python main.py -v                       # debug logging
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from catalog import build_default_pipeline
from dag.executor import ExecutionTimings, NodeFailure, StepHook
from dag.graph import PipelineGraph
from dag.orchestrator import Orchestrator, OrchestratorSettings
from jobs.schedule import parse_schedule
from jobs.submission import JobSubmitter, SubmissionReceipt
from schema import RunOutcome, RunResult

console = Console()

# Status -> Rich style mapping
# 节点状态 -> Rich 样式映射
_STATUS_STYLES = {
    "IDLE": "dim",
    "QUEUED": "yellow",
    "INITIALIZING": "bold yellow",
    "PROCESSING": "cyan",
    "COMPLETED": "green",
    "FAILED": "red",
    "CANCELLED": "magenta",
}

_OUTCOME_STYLES = {
    RunOutcome.SUCCEEDED: "green",
    RunOutcome.FAILED: "red",
    RunOutcome.DEADLOCKED: "red",
    RunOutcome.TIMED_OUT: "yellow",
    RunOutcome.CANCELLED: "magenta",
}


# ======================================================================
# Rendering
# 渲染
# ======================================================================

def _build_status_table(graph: PipelineGraph, result: RunResult) -> Table:
    """
    One row per node: type, resource tier, final status, progress.
    每个节点一行：类型、资源规格、最终状态、进度。
    """
    table = Table(title=f"{result.job_name} ({result.job_id})", border_style="cyan", show_lines=False)
    table.add_column("Node", style="cyan")
    table.add_column("Type", style="white")
    table.add_column("Tier", style="dim")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    for node in graph.all_nodes():
        state = result.statuses.get(node.id)
        if state is None:
            continue
        style = _STATUS_STYLES.get(state.status.value, "white")
        tier = node.resource.tier.value if node.resource else "-"
        table.add_row(
            node.id,
            node.node_type.value,
            tier,
            f"[{style}]{state.status.value}[/{style}]",
            f"{state.progress}%",
        )
    return table


def on_event(event: str, data: Any) -> None:
    """
    Handle events from the Orchestrator and display them.
    处理来自 Orchestrator 的事件并在控制台展示。
    """
    if event == "run_started":
        console.print()
        console.print(Panel(
            f"[bold]{data['job_name']}[/bold]  [dim]{len(data['nodes'])} nodes[/dim]",
            title=f"[bold blue]{data['job_id']}[/bold blue]",
            border_style="blue",
        ))

    elif event == "node_launched":
        console.print(f"  [yellow]>> {data['node_id']}[/yellow] launched (iteration {data['iteration']})")

    elif event == "node_transition":
        # 重置事件不展示
        if data["from"] is None or data["to"] == "IDLE":
            return
        style = _STATUS_STYLES.get(data["to"], "white")
        console.print(f"    [dim]{data['node_id']}:[/dim] {data['from']} -> [{style}]{data['to']}[/{style}]")

    elif event == "node_progress":
        pass  # Too chatty for the console; shown in the final table / 过于频繁，只在最终表格中体现

    elif event == "run_finished":
        result: RunResult = data["result"]
        style = _OUTCOME_STYLES.get(result.outcome, "white")
        lines = [f"Outcome: [{style}]{result.outcome.value}[/{style}]  |  "
                 f"{result.iterations} iterations  |  {result.duration:.1f}s"]
        if result.detail:
            lines.append(f"[dim]{result.detail}[/dim]")
        if result.failed_nodes:
            lines.append(f"Failed: [red]{', '.join(result.failed_nodes)}[/red]")
        if result.blocked_nodes:
            lines.append(f"Blocked: [yellow]{', '.join(result.blocked_nodes)}[/yellow]")
        console.print(Panel("\n".join(lines), title="[bold]Run Finished[/bold]", border_style=style))


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。
    verbose=True 时启用 DEBUG 级别，显示所有内部调试信息。
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


def _option(name: str) -> str | None:
    """Value of a ``--name=value`` argument, if present."""
    prefix = f"--{name}="
    for arg in sys.argv[1:]:
        if arg.startswith(prefix):
            return arg[len(prefix):]
    return None


def _load_graph(path: str | None) -> PipelineGraph:
    if path is None:
        return build_default_pipeline()
    with open(path, encoding="utf-8") as fh:
        return PipelineGraph.from_dict(json.load(fh))


def _failure_hook(target: str) -> StepHook:
    """
    Step hook that fails `target` once it reaches 50% progress.
    当 `target` 进度达到 50% 时使其失败的步骤钩子。
    """
    async def hook(node_id: str, progress: int) -> None:
        if node_id == target and progress >= 50:
            raise NodeFailure(f"injected failure at {progress}%")
    return hook


async def run_single(
    graph: PipelineGraph,
    fast: bool = False,
    fail_node: str | None = None,
    schedule: dict[str, Any] | None = None,
) -> SubmissionReceipt:
    """
    Submit one job for the given graph and render the outcome.
    为给定的图提交一个作业并渲染结果。
    """
    timings = ExecutionTimings.from_config()
    settings = OrchestratorSettings(timings=timings.scaled(0.1) if fast else timings)
    if fast:
        settings.poll_interval = min(settings.poll_interval, 0.05)

    orchestrator = Orchestrator(
        graph,
        settings=settings,
        on_event=on_event,
        step_hook=_failure_hook(fail_node) if fail_node else None,
    )
    submitter = JobSubmitter(orchestrator)
    receipt = await submitter.submit(parse_schedule(schedule))

    if not receipt.started:
        console.print(Panel(
            f"Job {receipt.job_id} scheduled {receipt.description}.\n"
            "[dim]No scheduler is wired; the job will not run automatically.[/dim]",
            title=f"[bold magenta]{receipt.schedule.mode.value}[/bold magenta]",
            border_style="magenta",
        ))
    elif receipt.result is not None:
        console.print(_build_status_table(graph, receipt.result))
    return receipt


def main() -> None:
    """
    程序入口：解析命令行参数并运行一次作业。
    - -v / --verbose：启用调试日志
    - --fast：缩短各阶段停留时间
    - --fail=<node_id>：在指定节点注入失败
    - --graph=<path>：从 JSON 加载编辑器负载
    - --schedule=<mode>：调度模式（IMMEDIATE / RECURRING / SPECIFIC_TIME）
    """
    verbose = "--verbose" in sys.argv or "-v" in sys.argv
    setup_logging(verbose)

    fast = "--fast" in sys.argv
    schedule = {"mode": _option("schedule") or "IMMEDIATE"}
    graph = _load_graph(_option("graph"))

    try:
        receipt = asyncio.run(run_single(graph, fast=fast, fail_node=_option("fail"), schedule=schedule))
    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted.[/yellow]")
        sys.exit(130)

    if receipt.result is not None and receipt.result.outcome != RunOutcome.SUCCEEDED:
        sys.exit(1)


if __name__ == "__main__":
    main()
