#!/usr/bin/env python3
"""Interactive chat CLI that streams turns from the tool-calling chat service."""

import json
import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt

STATUS_STYLES = {
    "pending": "dim",
    "executing": "yellow",
    "completed": "green",
    "failed": "red",
}


class ChatCLI:
    """Interactive chat interface for the tool-calling chat service."""

    def __init__(self, base_url: str = "http://localhost:8000", provider: str | None = None):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.provider = provider
        self.messages: list[dict] = []
        self.console = Console()
        self.client = httpx.Client(timeout=120.0)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Toolchat - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the assistant.\n"
                "Commands: /help, /tools, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/tools":
                    self._show_tools()
                    continue
                elif user_input.lower() == "/clear":
                    self.messages = []
                    self.console.print("[yellow]🔄 Conversation cleared[/yellow]")
                    continue
                elif user_input.strip() == "":
                    continue

                self._stream_turn(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _stream_turn(self, message: str) -> None:
        """Send one user message and render the turn's events as they arrive."""
        payload: dict = {"messages": self.messages, "message": message, "stream": True}
        if self.provider:
            payload["provider"] = self.provider

        try:
            with self.client.stream("POST", f"{self.base_url}/api/chat", json=payload) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
                    return

                streamed_text = False
                for line in response.iter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[len("data: ") :]
                    if data == "[DONE]":
                        break
                    streamed_text = self._handle_event(json.loads(data), streamed_text)

        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")

    def _handle_event(self, event: dict, streamed_text: bool) -> bool:
        """Render one event. Returns whether prose is currently being streamed."""
        event_type = event.get("type")

        if event_type == "content":
            self.console.print(event["content"], end="", markup=False, highlight=False)
            return True

        if streamed_text:
            self.console.print()

        if event_type == "assistant_message":
            for call in event["message"].get("tool_calls") or []:
                self._print_status(call["function"]["name"], call["status"], call["function"].get("arguments", ""))
        elif event_type == "tool_call_start":
            self._print_status(event["name"], event["status"])
        elif event_type == "tool_call_result":
            self._print_status(event["name"], event["status"], event["message"].get("content", ""))
        elif event_type == "final_response":
            self.messages = event["messages"]
            if not streamed_text:
                self._display_response(event["message"].get("content", ""))
        elif event_type == "error":
            # The failed turn is not kept, so the next request starts from the last complete history
            self.console.print(f"[red]❌ {event['error_type']}: {event['error']}[/red]")
        return False

    def _print_status(self, name: str, status: str, detail: str = "") -> None:
        style = STATUS_STYLES.get(status, "white")
        suffix = f" [dim]{detail[:200]}[/dim]" if detail else ""
        self.console.print(f"[{style}]🔧 {name}: {status}[/{style}]{suffix}")

    def _display_response(self, text: str) -> None:
        """Display assistant response with nice formatting."""
        self.console.print(
            Panel(
                Markdown(text or "No response"),
                title="[bold green]🤖 Assistant[/bold green]",
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_tools(self) -> None:
        """Show registered tools."""
        try:
            tools = self.client.get(f"{self.base_url}/api/tools").json()
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return

        tool_list = "\n".join(f"• [bold]{tool['name']}[/bold] ({tool['type']}): {tool['description']}" for tool in tools)
        self.console.print(
            Panel(tool_list or "No tools registered", title="[yellow]🧰 Tools[/yellow]", border_style="yellow")
        )

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /tools - List registered tools
• /clear - Clear the conversation and start over
• /quit or /exit - Exit the chat

[bold]Example Conversation:[/bold]
1. "What's 2+2?"
2. "How many rows are in bigquery-public-data.samples.shakespeare?"
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    provider = sys.argv[2] if len(sys.argv) > 2 else None

    chat = ChatCLI(base_url, provider)
    chat.start()


if __name__ == "__main__":
    main()
