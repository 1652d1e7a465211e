"""
Prompt builder for threat analysis requests.

Responsible for:
- Loading and rendering Jinja2 templates (fixed instructions + email fields)
- Combining instructions and email into one prompt, because the local models
  do not reliably separate system and user turns
- Exposing the fixed instruction text so the worker can reserve its tokens
  and keep it as the persistent session prefix
"""

from pathlib import Path

import structlog
from jinja2 import Environment, FileSystemLoader

from mailguard.models.email import EmailContent
from mailguard.models.enums import ThreatType


logger = structlog.get_logger(__name__)

PROMPT_SEPARATOR = "\n\n"


class PromptBuilder:
    """
    Build prompts from EmailContent.

    The rendered instructions are identical for every request; only the
    email suffix varies.
    """

    def __init__(self, templates_dir: Path):
        """
        Initialize prompt builder.

        Args:
            templates_dir: Directory containing system_prompt.txt and
                user_prompt_template.txt
        """
        self.templates_dir = Path(templates_dir)

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # We're generating prompts, not HTML
        )

        try:
            self.system_template = self.jinja_env.get_template("system_prompt.txt")
            self.user_template = self.jinja_env.get_template("user_prompt_template.txt")
            logger.info("Loaded prompt templates", templates_dir=str(self.templates_dir))
        except Exception as e:
            logger.error("Failed to load prompt templates", error=str(e))
            raise

        self._system_prompt = self.system_template.render(
            threat_labels=ThreatType.model_labels()
        ).strip()

    def build_system_prompt(self) -> str:
        """Fixed instructions shared by every request."""
        return self._system_prompt

    def build_user_prompt(self, email: EmailContent) -> str:
        """Render the per-email suffix."""
        return self.user_template.render(
            subject=email.subject,
            sender=email.sender,
            body=email.body,
            urls=email.urls,
        ).strip()

    def build_prompt(self, email: EmailContent) -> str:
        """Instructions followed by the email fields, as one prompt."""
        prompt = f"{self._system_prompt}{PROMPT_SEPARATOR}{self.build_user_prompt(email)}"
        logger.debug(
            "Prompt built",
            system_prompt_length=len(self._system_prompt),
            full_prompt_length=len(prompt),
        )
        return prompt
