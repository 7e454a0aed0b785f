from typing import Dict, Any, Optional

import structlog

from actionflow.domain.models.action_state import ExecutionRequest, ExecutionResult
from actionflow.infrastructure.ai.text_generation import (
    GenerationRequest, TextGenerator, generate_with_timeout
)
from actionflow.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)

FALLBACK_REPLY = (
    "Thank you for your email. I have received your message and will get back to you shortly."
)


class BuiltinExecutors:
    """Handlers for the built-in action templates"""

    def __init__(self, generator: Optional[TextGenerator], settings: Settings):
        self.generator = generator
        self.settings = settings

    def handlers(self) -> Dict[str, Any]:
        return {
            "email.reply": self.reply_email,
            "email.forward": self.forward_email,
            "calendar.create": self.create_event,
            "task.create": self.create_task,
            "ai.summarize": self.summarize,
            "ai.translate": self.translate,
            "clipboard.copy": self.copy_to_clipboard,
            "chat.regenerate": self.regenerate,
        }

    async def reply_email(self, request: ExecutionRequest) -> ExecutionResult:
        params = request.params
        original = params.get("original_content", "")
        body = params.get("reply_body")
        if not body:
            body = await self._generate(
                f"Write a short, polite reply to this email:\n\n{original}",
                "You write professional email replies."
            ) or FALLBACK_REPLY

        subject = params.get("subject") or "your email"
        email = {
            "to": params.get("to_email"),
            "subject": subject if subject.lower().startswith("re:") else f"Re: {subject}",
            "body": body,
            "in_reply_to": original,
        }
        return ExecutionResult.ok(f"Reply drafted for {email['to']}.", {"email": email})

    async def forward_email(self, request: ExecutionRequest) -> ExecutionResult:
        params = request.params
        note = params.get("note", "")
        body = f"{note}\n\n---------- Forwarded message ----------\n{params.get('original_content', '')}"
        email = {
            "to": params.get("to_email"),
            "subject": "Fwd: " + (params.get("subject") or "Forwarded message"),
            "body": body.strip(),
        }
        return ExecutionResult.ok(f"Email forwarded to {email['to']}.", {"email": email})

    async def create_event(self, request: ExecutionRequest) -> ExecutionResult:
        params = request.params
        event = {
            "title": params.get("title"),
            "date": params.get("date"),
            "time": params.get("time"),
            "duration": int(params.get("duration") or 60),
            "location": params.get("location"),
            "attendees": params.get("attendees") or [],
            "description": params.get("description"),
        }
        return ExecutionResult.ok(
            f"Event '{event['title']}' scheduled for {event['date']} at {event['time']}.",
            {"event": event}
        )

    async def create_task(self, request: ExecutionRequest) -> ExecutionResult:
        params = request.params
        task = {
            "title": params.get("title"),
            "due_date": params.get("due_date"),
            "priority": params.get("priority") or "medium",
            "description": params.get("description"),
            "status": "open",
        }
        return ExecutionResult.ok(f"Task '{task['title']}' created.", {"task": task})

    async def summarize(self, request: ExecutionRequest) -> ExecutionResult:
        content = request.params.get("content", "")
        max_length = int(request.params.get("max_length") or 200)
        summary = await self._generate(
            f"Summarize the following in at most {max_length} words:\n\n{content}",
            "You write concise summaries."
        )
        if not summary:
            words = content.split()
            summary = " ".join(words[:max_length]) + ("..." if len(words) > max_length else "")
        return ExecutionResult.ok(summary, {"summary": summary})

    async def translate(self, request: ExecutionRequest) -> ExecutionResult:
        content = request.params.get("content", "")
        language = request.params.get("target_language")
        translation = await self._generate(
            f"Translate the following into {language}. Return only the translation.\n\n{content}",
            "You are a translator."
        )
        if not translation:
            return ExecutionResult.fail(
                "Translation failed",
                message=self.settings.fallback_error_message
            )
        return ExecutionResult.ok(translation, {"translation": translation, "target_language": language})

    async def copy_to_clipboard(self, request: ExecutionRequest) -> ExecutionResult:
        content = request.params.get("content", "")
        return ExecutionResult.ok("Copied to clipboard.", {"content": content, "copied": True})

    async def regenerate(self, request: ExecutionRequest) -> ExecutionResult:
        return ExecutionResult.ok("Regenerating the last response.", {"regenerate": True})

    async def _generate(self, prompt: str, system_prompt: str) -> Optional[str]:
        if self.generator is None:
            return None

        result = await generate_with_timeout(
            self.generator,
            GenerationRequest(prompt=prompt, system_prompt=system_prompt, purpose="executor"),
            self.settings.extract_timeout
        )
        if not result.success or not result.content.strip():
            logger.warning("Executor generation failed", error=result.error)
            return None
        return result.content.strip()
