"""
CLI display components for reconstructed assistant output.

Displays are fed twice per event: ``on_event`` with the filtered stream
event, then ``on_update`` with the store snapshot the event produced.

- VerboseDisplay: Rich terminal UI with tool progress, reasoning and a final panel
- CompactDisplay: Minimal output showing only the assistant's text
- JsonDisplay: Raw JSON events for scripting and debugging
"""

from abc import ABC, abstractmethod
from dataclasses import asdict
import json
import re

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from .._types import Message, ReasoningPart, Role, ToolInvocationPart, ToolState
from ..events import StreamEvent
from ..store import AgentSnapshot


def _latest_assistant(snapshot: AgentSnapshot) -> Message | None:
    for message in reversed(snapshot.messages):
        if message.role is Role.ASSISTANT:
            return message
    return None


class StreamDisplay(ABC):
    """Base class for stream display renderers."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.message: Message | None = None

    def start(self) -> None:
        """Start the display (called before the prompt is sent)."""

    def on_event(self, event: StreamEvent) -> None:
        """Handle a raw stream event for this session."""

    def on_update(self, snapshot: AgentSnapshot) -> None:
        """Handle a new reconstructed state."""
        message = _latest_assistant(snapshot)
        if message is None:
            return
        if self.message is None or message.id != self.message.id:
            self.on_new_message(message)
        self.render_progress(message)
        self.message = message

    def on_new_message(self, message: Message) -> None:
        """Reset per-message progress when the server starts a new reply."""

    def render_progress(self, message: Message) -> None:
        """Render what changed in the live message."""

    @abstractmethod
    def render_message(self, message: Message) -> None:
        """Render a complete message (history, synchronous prompts)."""

    @abstractmethod
    def finish(self) -> None:
        """Finish the display (called once the session is idle or on error)."""

    def get_final_text(self) -> str:
        return self.message.content if self.message else ""


class CompactDisplay(StreamDisplay):
    """
    Compact display showing only the assistant's text as it streams.
    """

    def __init__(self, console: Console | None = None) -> None:
        super().__init__(console=console)
        self.printed = ""

    def on_new_message(self, message: Message) -> None:
        if self.printed:
            print()
        self.printed = ""

    def render_progress(self, message: Message) -> None:
        content = message.content
        if content.startswith(self.printed):
            print(content[len(self.printed) :], end="", flush=True)
        else:
            # Full-text replacement; start the line over.
            print("\n" + content, end="", flush=True)
        self.printed = content

    def render_message(self, message: Message) -> None:
        if message.content:
            print(f"{message.role.value}: {message.content}")

    def finish(self) -> None:
        if self.printed:
            print()


class VerboseDisplay(StreamDisplay):
    """
    Verbose display with rich terminal UI.

    Shows:
    - Real-time text streaming
    - Tool calls with their status and results
    - Reasoning in a distinct style
    - The final response rendered as markdown
    """

    def __init__(self, console: Console | None = None) -> None:
        super().__init__(console=console)
        self.printed = ""
        self.reasoning_printed = ""
        self.tool_states: dict[str, ToolState] = {}

    def on_new_message(self, message: Message) -> None:
        if self.printed or self.reasoning_printed:
            self.console.print()
        self.printed = ""
        self.reasoning_printed = ""
        self.tool_states = {}

    def render_progress(self, message: Message) -> None:
        for part in message.parts:
            if isinstance(part, ReasoningPart):
                self._render_reasoning(part.content)
            elif isinstance(part, ToolInvocationPart):
                self._render_tool(part)
        self._render_text(message.content)

    def _render_reasoning(self, content: str) -> None:
        if not content or content == self.reasoning_printed:
            return
        if not self.reasoning_printed:
            self.console.print("\n[dim cyan]🧠 Thinking...[/dim cyan]")
        if content.startswith(self.reasoning_printed):
            new_segment = content[len(self.reasoning_printed) :]
        else:
            new_segment = "\n" + content
        self.console.print(new_segment, end="", style="dim italic cyan", markup=False)
        self.reasoning_printed = content

    def _render_tool(self, part: ToolInvocationPart) -> None:
        previous = self.tool_states.get(part.invocation_id)
        if previous is part.state:
            return
        self.tool_states[part.invocation_id] = part.state
        name = part.tool_name or "Unknown tool"

        self.console.print()
        if part.state is ToolState.PENDING:
            self.console.print(f"[bold cyan]⚡ Calling tool:[/bold cyan] [yellow]{name}[/yellow]")
        elif part.state is ToolState.RESULT:
            self.console.print(f"[green]✅ Completed tool:[/green] [yellow]{name}[/yellow]")
            if part.result:
                self.console.print(
                    Panel(
                        _format_tool_result(part.result),
                        title=f"[green]✓[/green] Tool Result: {name}",
                        border_style="green",
                        expand=False,
                    )
                )
        else:
            self.console.print(
                Panel(
                    f"[red]{part.result or 'Tool failed'}[/red]",
                    title=f"[red]❌ {name}[/red]",
                    border_style="red",
                )
            )

    def _render_text(self, content: str) -> None:
        if content == self.printed:
            return
        if content.startswith(self.printed):
            new_segment = content[len(self.printed) :]
        else:
            new_segment = "\n" + content
        self.console.print(new_segment, end="", style="white", markup=False, highlight=False)
        self.printed = content

    def render_message(self, message: Message) -> None:
        title = "[cyan]Response[/cyan]" if message.role is Role.ASSISTANT else "[green]You[/green]"
        for part in message.parts:
            if isinstance(part, ToolInvocationPart):
                icon = {"result": "✅", "error": "❌"}.get(part.state.value, "⏳")
                self.console.print(f"{icon} [yellow]{part.tool_name}[/yellow]")
        self.console.print(_build_markdown_panel(message.content, title=title))

    def finish(self) -> None:
        if self.printed or self.reasoning_printed:
            self.console.print()
        final_text = self.get_final_text()
        if final_text.strip():
            self.console.print()
            self.console.print(_build_markdown_panel(final_text))


class JsonDisplay(StreamDisplay):
    """
    JSON display for raw event streaming.

    Outputs each event as a JSON line for scripting and debugging.
    """

    def on_event(self, event: StreamEvent) -> None:
        output = {"event": event.type.value, **event.raw}
        print(json.dumps(output, default=str), flush=True)

    def on_update(self, snapshot: AgentSnapshot) -> None:
        # Events already carry everything; keep track of the reply only.
        self.message = _latest_assistant(snapshot) or self.message

    def render_message(self, message: Message) -> None:
        print(json.dumps(asdict(message), default=str), flush=True)

    def finish(self) -> None:
        pass


def _format_tool_result(result: object) -> str:
    """Format tool result for display."""
    if isinstance(result, dict | list):
        json_str = json.dumps(result, indent=2, default=str)
        if len(json_str) > 500:
            json_str = json_str[:497] + "..."
        return json_str
    text = str(result)
    return text if len(text) <= 500 else text[:497] + "..."


_TASK_LIST_PATTERN = re.compile(r"^(\s*[-*]\s+)\[([ xX])\]\s+(.*)$", flags=re.MULTILINE)


def _normalize_markdown(text: str) -> str:
    """Apply small GitHub-flavored markdown tweaks Rich lacks natively."""

    def replace(match: re.Match[str]) -> str:
        prefix, state, content = match.groups()
        symbol = "☑" if state.lower() == "x" else "☐"
        return f"{prefix}{symbol} {content}"

    return _TASK_LIST_PATTERN.sub(replace, text)


def _build_markdown_panel(
    text: str,
    *,
    title: str = "[cyan]Response[/cyan]",
    empty_message: str = "[dim]No response generated.[/dim]",
) -> Panel:
    """Convert raw markdown text into a Rich panel with consistent styling."""
    normalized = _normalize_markdown(text)
    if normalized.strip():
        content: Markdown | str = Markdown(normalized, code_theme="monokai", justify="left")
        panel_title: str | None = title
    else:
        content = empty_message
        panel_title = None
    return Panel(content, title=panel_title, border_style="cyan", expand=True)


def create_display(format: str = "verbose", console: Console | None = None) -> StreamDisplay:
    """
    Factory function to create appropriate display.

    Args:
        format: Display format ("verbose", "compact", or "json")
    """
    if format == "compact":
        return CompactDisplay(console=console)
    elif format == "json":
        return JsonDisplay(console=console)
    else:  # "verbose" is default
        return VerboseDisplay(console=console)
