"""Claude CLI model client."""

import asyncio
import json
import os
import shutil
from typing import Any, Dict, List, Optional

from .base import BaseModelClient
from ..errors import ExternalCallError
from ..prompts import title_prompt
from ..utils.logger import get_app_logger


def render_transcript(history: List[Dict[str, Any]]) -> str:
    """Flatten ``{role, content}`` turns into a plain-text transcript."""
    lines = []
    for turn in history:
        speaker = "User" if turn["role"] == "user" else "Assistant"
        pieces = []
        for part in turn["content"]:
            if part.get("type") == "text":
                pieces.append(part.get("text", ""))
            else:
                label = "Image" if part.get("type") == "image" else "Document"
                pieces.append(f"[{label} attachment: {part.get('name') or part.get('file')}]")
        lines.append(f"{speaker}: " + "\n".join(pieces))
    lines.append("")
    lines.append("Reply as the assistant to the last user message. Respond with the reply text only.")
    return "\n\n".join(lines)


class ClaudeCliClient(BaseModelClient):
    """Runs ``claude --print`` as a subprocess for each call."""

    def __init__(
        self,
        binary: str = "claude",
        model: Optional[str] = None,
        env_vars: Optional[Dict[str, str]] = None,
        command_params: Optional[List[str]] = None
    ):
        self.binary = binary
        self.model = model
        self.env_vars = env_vars or {}
        self.command_params = command_params or []
        self.logger = get_app_logger()

    def _build_command(self, system_prompt: Optional[str]) -> List[str]:
        cmd = [self.binary, "--print", "--output-format", "json"]
        if system_prompt:
            cmd.extend(["--system-prompt", system_prompt])
        if self.model:
            cmd.extend(["--model", self.model])
        cmd.extend(self.command_params)
        return cmd

    async def _run(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Run one print-mode invocation. The prompt is fed through stdin.

        Raises:
            ExternalCallError: If the binary is missing, exits non-zero, or
                returns an unusable payload
        """
        if shutil.which(self.binary) is None:
            raise ExternalCallError(f"{self.binary} command not found in PATH")

        cmd = self._build_command(system_prompt)
        self.logger.info(f"[Claude] running {self.binary} ({len(prompt)} chars of prompt)")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, **self.env_vars}
        )

        stdout, stderr = await process.communicate(prompt.encode("utf-8"))

        if process.returncode != 0:
            self.logger.error(f"[Claude] call failed: {stderr.decode(errors='replace')}")
            raise ExternalCallError(f"Claude failed: {stderr.decode(errors='replace')}")

        try:
            result = json.loads(stdout.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ExternalCallError(f"Unreadable Claude output: {e}") from e

        if not isinstance(result, dict) or result.get("is_error"):
            raise ExternalCallError(f"Claude returned an error: {result}")

        text = result.get("result")
        if not isinstance(text, str):
            raise ExternalCallError("No result text in Claude response")
        return text

    async def send_turn(self, history: List[Dict[str, Any]], system_context: str) -> str:
        self.logger.info(f"[Claude] sending {len(history)} messages")
        return (await self._run(render_transcript(history), system_context)).strip()

    async def derive_title(self, first_user_message: str) -> str:
        return (await self._run(title_prompt(first_user_message))).strip()
