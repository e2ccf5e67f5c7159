"""
Digest Pipeline — agenda excerpt → HTML mail.

One run:
  1. wait a settling delay so sync propagation can converge
  2. find the well-known agenda document in any project of the workspace
  3. cut it before the third level-2 heading (a summary of the first two sections)
  4. render the excerpt to minimal HTML
  5. splice it between the first and second ``<hr>`` of the mail template
  6. send it to the fixed recipient set

Delivery failures are logged and reported in the outcome, never retried; the
trigger message can simply be re-sent by a human.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence

import structlog

from ownly_headless.channels.formatting import markdown_to_html
from ownly_headless.errors import DeliveryError, DigestError, TemplateError
from ownly_headless.services import DocumentTree, MailTransport
from ownly_headless.types import DigestJob, DigestOutcome

if TYPE_CHECKING:
    from ownly_headless.workspace import WorkspaceSession

logger = structlog.get_logger(__name__)

# A level-2 heading starts a line with "## " ("### " does not match).
LEVEL2_HEADING_RE = re.compile(r"^## ", re.MULTILINE)

TEMPLATE_DELIMITER = "<hr>"


def extract_window(content: str, header_cut_count: int = 3) -> str:
    """Return *content* up to, not including, the Nth level-2 heading.

    With fewer than *header_cut_count* headings the whole document is returned.
    """
    cut = max(1, int(header_cut_count))
    for index, match in enumerate(LEVEL2_HEADING_RE.finditer(content), start=1):
        if index == cut:
            return content[: match.start()]
    return content


def splice_template(template: str, fragment: str) -> str:
    """Replace what lies strictly between the first and second ``<hr>``.

    Everything up to and including the first delimiter, and from the second
    delimiter on, is preserved byte for byte.
    """
    first = template.find(TEMPLATE_DELIMITER)
    if first < 0:
        raise TemplateError(f"mail template has no {TEMPLATE_DELIMITER} delimiter")
    start = first + len(TEMPLATE_DELIMITER)
    second = template.find(TEMPLATE_DELIMITER, start)
    if second < 0:
        raise TemplateError(f"mail template has only one {TEMPLATE_DELIMITER} delimiter")
    return template[:start] + fragment + template[second:]


def load_template(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise DigestError(f"cannot read mail template {path}: {e}") from e


async def locate_document(tree: DocumentTree, document_path: str) -> Optional[tuple[str, str]]:
    """Find *document_path* in any project; returns (project, path) or None."""
    wanted = document_path.strip().lstrip("/")
    for project in await tree.list_projects():
        for path in await tree.list_files(project):
            if path.strip().lstrip("/") == wanted:
                return project, path
    return None


class DigestPipeline:
    """Builds and sends one agenda digest per ``run()``."""

    def __init__(
        self,
        mail: MailTransport,
        *,
        template_path: Path,
        sender: str,
        recipients: Sequence[str],
        bcc: Sequence[str] = (),
        subject: str = "Agenda digest",
        job: DigestJob | None = None,
        settle_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._mail = mail
        self._template_path = template_path
        self._sender = sender
        self._recipients = list(recipients)
        self._bcc = list(bcc)
        self._subject = subject
        self._job = job or DigestJob()
        self._settle_seconds = max(0.0, float(settle_seconds))
        self._sleep = sleep

    @property
    def job(self) -> DigestJob:
        return self._job

    async def build_body(self, session: "WorkspaceSession") -> Optional[str]:
        """Return the spliced HTML body, or None when there is no agenda."""
        tree = session.document_tree
        try:
            located = await locate_document(tree, self._job.source_document_path)
        except Exception as e:
            raise DigestError(f"cannot list workspace documents: {e}") from e
        if located is None:
            logger.info(
                "digest.document_not_found",
                workspace=session.name,
                document=self._job.source_document_path,
            )
            return None

        project, path = located
        try:
            content = await tree.read_text(project, path)
        except Exception as e:
            raise DigestError(f"cannot read {project}:{path}: {e}") from e
        window = extract_window(content, self._job.header_cut_count)
        fragment = markdown_to_html(window)
        template = load_template(self._template_path)
        logger.debug(
            "digest.extracted",
            project=project,
            document=path,
            content_chars=len(content),
            window_chars=len(window),
        )
        return splice_template(template, fragment)

    async def run(
        self,
        session: "WorkspaceSession",
        *,
        is_live: Callable[[], bool] = lambda: True,
    ) -> DigestOutcome:
        """Run the pipeline once.

        *is_live* is checked right before the mail is sent; a cancelled agent
        sends nothing.  Raises DigestError (including TemplateError) when the
        run cannot produce a body.
        """
        if not self._recipients:
            raise DigestError("no digest recipients configured")

        # Pragmatic wait for sync convergence; not a correctness guarantee.
        if self._settle_seconds:
            await self._sleep(self._settle_seconds)

        body = await self.build_body(session)
        if body is None:
            return DigestOutcome.NOTHING_TO_SEND

        if not is_live():
            logger.info("digest.cancelled_before_send", workspace=session.name)
            return DigestOutcome.CANCELLED

        try:
            info = await self._mail.send(
                self._sender,
                self._recipients,
                self._bcc,
                self._subject,
                body,
            )
        except DeliveryError as e:
            logger.error(
                "digest.delivery_failed",
                workspace=session.name,
                recipients=len(self._recipients),
                error=str(e),
            )
            return DigestOutcome.DELIVERY_FAILED

        logger.info(
            "digest.sent",
            workspace=session.name,
            message_id=info.message_id,
            recipients=len(info.accepted),
        )
        return DigestOutcome.SENT
