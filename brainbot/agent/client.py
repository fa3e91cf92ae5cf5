"""Client for the external conversational agent (the `claude` CLI)."""

from __future__ import annotations

import asyncio
import json
import re
from contextlib import aclosing
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from loguru import logger

from brainbot.agent.events import (
    AgentEvent,
    Done,
    Failed,
    ImageAttachment,
    TextChunk,
    ToolResult,
    TurnResult,
)
from brainbot.brains.image_profiles import ImageProfileLoader
from brainbot.brains.schema import ImageGenSettings
from brainbot.providers.image import ImageGenerationError, ImageGenerator
from brainbot.providers.tts import SpeechSynthesizer, TTSError

Prompt = str | list[dict[str, Any]]
ProgressHook = Callable[[str], Awaitable[None]]
StepHook = Callable[[], Awaitable[None]]

IMAGE_PROMPT_MARKER = re.compile(r"\[\[IMAGE_PROMPT:\s*(.*?)\]\]", re.DOTALL)

# Large enough for tool results that echo base64 payloads.
_STREAM_LIMIT = 16 * 1024 * 1024


def extract_image_prompt(text: str) -> tuple[str | None, str]:
    """
    Find an `[[IMAGE_PROMPT: ...]]` marker.

    Returns the marker content (None when absent) and the text with every
    marker removed.
    """
    match = IMAGE_PROMPT_MARKER.search(text or "")
    if not match:
        return None, text
    cleaned = IMAGE_PROMPT_MARKER.sub("", text).strip()
    return match.group(1).strip() or None, cleaned


def is_image_tool(name: str) -> bool:
    return name == "mcp__image-gen__generate_image" or name.endswith("generate_image")


def _tool_result_payload(content: Any) -> dict[str, Any]:
    """Decode a tool_result content field into a dict when it holds JSON."""
    if isinstance(content, list):
        content = "".join(
            block.get("text", "") for block in content if isinstance(block, dict) and block.get("type") == "text"
        )
    if isinstance(content, dict):
        return content
    if not isinstance(content, str) or not content.strip():
        return {}
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return {"text": content}
    return data if isinstance(data, dict) else {"value": data}


class AgentClient:
    """
    Runs one agent process per exchange and parses its stream-json output.

    Session continuity is delegated to the agent: passing `session_id`
    resumes that conversation, and every exchange reports the session id
    the agent used.
    """

    def __init__(
        self,
        command: str = "claude",
        *,
        extra_args: Sequence[str] = (),
        cwd: Path | None = None,
        speech: SpeechSynthesizer | None = None,
        images: ImageGenerator | None = None,
        image_profiles: ImageProfileLoader | None = None,
    ):
        self.command = command
        self.extra_args = list(extra_args)
        self.cwd = cwd
        self.speech = speech
        self.images = images
        self.image_profiles = image_profiles or ImageProfileLoader()

    def build_args(self, prompt: Prompt, session_id: str | None = None) -> list[str]:
        args = [self.command, "-p"]
        if isinstance(prompt, str):
            args.append(prompt)
        else:
            args += ["--input-format", "stream-json"]
        args += ["--output-format", "stream-json", "--verbose"]
        if session_id:
            args += ["--resume", session_id]
        return args + self.extra_args

    @staticmethod
    def build_stdin(prompt: Prompt) -> bytes | None:
        if isinstance(prompt, str):
            return None
        line = {"type": "user", "message": {"role": "user", "content": prompt}}
        return (json.dumps(line) + "\n").encode("utf-8")

    async def stream(self, prompt: Prompt, session_id: str | None = None) -> AsyncIterator[AgentEvent]:
        """Run the agent and yield events; always ends with Done or Failed."""
        args = self.build_args(prompt, session_id)
        stdin_payload = self.build_stdin(prompt)

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE if stdin_payload is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd) if self.cwd else None,
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            logger.error(f"Failed to start agent '{self.command}': {e}")
            yield Failed(error=f"failed to start agent: {e}", session_id=session_id)
            return

        stderr_task = asyncio.create_task(proc.stderr.read())
        current_session = session_id
        tool_names: dict[str, str] = {}
        finished = False

        try:
            if stdin_payload is not None and proc.stdin is not None:
                try:
                    proc.stdin.write(stdin_payload)
                    await proc.stdin.drain()
                    proc.stdin.close()
                except (BrokenPipeError, ConnectionResetError) as e:
                    logger.warning(f"Agent closed stdin early: {e}")

            async for raw in proc.stdout:
                line = raw.decode("utf-8", errors="ignore").strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping non-JSON agent output: {line[:100]}")
                    continue
                if not isinstance(event, dict):
                    continue

                kind = event.get("type")
                if event.get("session_id"):
                    current_session = event["session_id"]

                if kind == "assistant":
                    for block in (event.get("message") or {}).get("content") or []:
                        if block.get("type") == "text" and block.get("text"):
                            yield TextChunk(text=block["text"])
                        elif block.get("type") == "tool_use":
                            tool_names[block.get("id", "")] = block.get("name", "")
                elif kind == "user":
                    for block in (event.get("message") or {}).get("content") or []:
                        if not isinstance(block, dict) or block.get("type") != "tool_result":
                            continue
                        yield ToolResult(
                            tool_name=tool_names.get(block.get("tool_use_id", ""), ""),
                            data=_tool_result_payload(block.get("content")),
                            is_error=bool(block.get("is_error")),
                        )
                elif kind == "result":
                    finished = True
                    if event.get("is_error"):
                        yield Failed(error=str(event.get("result") or "agent reported an error"), session_id=current_session)
                    else:
                        yield Done(session_id=current_session, text=str(event.get("result") or ""))

            returncode = await proc.wait()
            if not finished:
                stderr = (await stderr_task).decode("utf-8", errors="ignore").strip()
                logger.error(f"Agent exited with code {returncode} without a result: {stderr[:300]}")
                yield Failed(error=f"agent exited with code {returncode}", session_id=current_session)
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()

    async def exchange(
        self,
        prompt: Prompt,
        session_id: str | None = None,
        on_progress: ProgressHook | None = None,
    ) -> TurnResult:
        """
        Single exchange. Collects text and any images produced by
        `generate_image` tool calls.

        `on_progress` receives the accumulated text after every chunk.
        """
        chunks: list[str] = []
        images: list[ImageAttachment] = []

        async with aclosing(self.stream(prompt, session_id)) as events:
            async for event in events:
                if isinstance(event, TextChunk):
                    chunks.append(event.text)
                    if on_progress:
                        await on_progress("".join(chunks))
                elif isinstance(event, ToolResult):
                    if is_image_tool(event.tool_name) and event.data.get("success") and event.data.get("image_path"):
                        images.append(ImageAttachment(image_path=Path(event.data["image_path"])))
                elif isinstance(event, Failed):
                    return TurnResult.failure(event.error, session_id=event.session_id)
                elif isinstance(event, Done):
                    text = event.text or "".join(chunks)
                    return TurnResult(
                        success=True,
                        text=text.strip(),
                        generated_images=images,
                        session_id=event.session_id,
                    )

        return TurnResult.failure("agent stream ended without a result", session_id=session_id)

    async def exchange_with_speech(
        self,
        prompt: Prompt,
        session_id: str | None = None,
        *,
        voice: str = "nova",
        speed: float = 1.0,
        provider: str | None = None,
        on_step2: StepHook | None = None,
    ) -> TurnResult:
        """Text exchange, then speech synthesis of the reply."""
        result = await self.exchange(prompt, session_id)
        if not result.success or not result.text:
            return result
        if self.speech is None:
            logger.warning("Speech requested but no TTS service configured")
            return result

        if on_step2:
            await on_step2()

        try:
            speech = await self.speech.synthesize(result.text, voice=voice, speed=speed, provider=provider)
        except TTSError as e:
            logger.error(f"Speech synthesis failed: {e}")
            return result
        result.audio_path = speech.audio_path
        return result

    async def exchange_with_image(
        self,
        prompt: Prompt,
        session_id: str | None = None,
        *,
        settings: ImageGenSettings,
        user_text: str = "",
        on_step2: StepHook | None = None,
    ) -> TurnResult:
        """
        Text exchange, then image generation.

        With marker detection the image prompt comes from an
        `[[IMAGE_PROMPT: ...]]` marker in the reply and no image is made
        when it is absent; otherwise the user's own text is the prompt.
        """
        result = await self.exchange(prompt, session_id)
        if not result.success:
            return result

        if settings.use_marker_detection:
            image_prompt, result.text = extract_image_prompt(result.text)
            if not image_prompt:
                logger.debug("No image prompt marker in reply, skipping image generation")
                return result
        else:
            image_prompt = (user_text or "").strip() or result.text

        if not image_prompt:
            return result
        if self.images is None:
            logger.warning("Image requested but no image service configured")
            return result

        if on_step2:
            await on_step2()

        profile = self.image_profiles.resolve(settings)
        try:
            image = await self.images.generate(image_prompt, profile)
        except ImageGenerationError as e:
            logger.error(f"Image generation failed: {e}")
            return result
        result.image_path = image.image_path
        return result
