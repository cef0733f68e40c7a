"""Per-message link rewrite: scan, check policy, stage, republish, clean up."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import discord

from .errors import RehostError, RepublishError
from .fetcher import Fetcher, StagedAsset, staging_token
from .link_scanner import CandidateLink, LinkState, host_matches, scan
from .policy_store import PolicyStore, TenantPolicy
from .republish import Republisher
from .staging import StagingArea

log = logging.getLogger(__name__)

MAX_ATTACHMENTS = 10
MAX_CONTENT_LENGTH = 2000


@dataclass
class PipelineRun:
    """State of one message's handling; discarded when the run ends."""

    message: Any
    candidates: list[CandidateLink] = field(default_factory=list)
    assets: list[StagedAsset] = field(default_factory=list)
    outcomes: list[LinkState] = field(default_factory=list)
    history: list[list[LinkState]] = field(default_factory=list)
    remaining_text: str = ""
    republished: bool = False

    @classmethod
    def start(
        cls, message: Any, candidates: list[CandidateLink], states: list[LinkState]
    ) -> PipelineRun:
        return cls(
            message=message,
            candidates=candidates,
            outcomes=list(states),
            history=[[LinkState.DETECTED, state] for state in states],
        )

    def advance(self, index: int, state: LinkState) -> None:
        self.outcomes[index] = state
        self.history[index].append(state)

    @property
    def included(self) -> list[CandidateLink]:
        return [
            link
            for link, state in zip(self.candidates, self.outcomes)
            if state is LinkState.INCLUDED
        ]


def link_span(text: str, link: CandidateLink) -> tuple[int, int]:
    """Span of ``link`` in ``text``, widened over a directly enclosing ``<...>``."""
    start, end = link.start, link.end
    if start > 0 and text[start - 1] == "<" and text[end : end + 1] == ">":
        return start - 1, end + 1
    return start, end


def strip_spans(text: str, spans: list[tuple[int, int]]) -> str:
    """Remove each ``(start, end)`` span, joining the neighbours with a single space."""
    for start, end in sorted(spans, reverse=True):
        left = text[:start].rstrip(" \t")
        right = text[end:].lstrip(" \t")
        if left and right and not left.endswith("\n") and not right.startswith("\n"):
            text = f"{left} {right}"
        else:
            text = left + right
    return text.strip()


class LinkRewritePipeline:
    """Replace allowed CDN links in a message with re-hosted attachments.

    With a ``store`` each link is checked against the guild's policy. Without
    one, a link is allowed only if its host is one of ``cdn_domains`` or a
    subdomain of one.
    """

    def __init__(
        self,
        *,
        pattern: re.Pattern[str],
        fetcher: Fetcher,
        republisher: Republisher,
        staging_dir: Path,
        store: PolicyStore | None = None,
        cdn_domains: Sequence[str] = (),
    ) -> None:
        self.pattern = pattern
        self.fetcher = fetcher
        self.republisher = republisher
        self.staging_dir = staging_dir
        self.store = store
        self.cdn_domains = [d.lower() for d in cdn_domains]

    @staticmethod
    def should_inspect(message: discord.Message) -> bool:
        if message.guild is None:
            return False
        if message.author.bot or message.webhook_id is not None:
            return False
        return bool(message.content)

    def _evaluate(self, guild_id: int, links: list[CandidateLink]) -> list[LinkState]:
        if self.store is None:
            return [
                LinkState.ALLOWED
                if host_matches(link.host, self.cdn_domains)
                else LinkState.REJECTED
                for link in links
            ]
        policy: TenantPolicy = self.store.policy_for(guild_id)
        return [
            LinkState.ALLOWED if policy.permits(link) else LinkState.REJECTED
            for link in links
        ]

    async def run(self, message: discord.Message) -> PipelineRun | None:
        """Handle one message. Returns the finished run, or None if nothing was eligible."""
        if not self.should_inspect(message):
            return None

        links = scan(message.content, self.pattern)
        if not links:
            return None

        guild = message.guild
        states = self._evaluate(guild.id, links)
        if LinkState.ALLOWED not in states:
            log.debug("Message %s: no allowed links among %d", message.id, len(links))
            return None

        run = PipelineRun.start(message, links, states)
        with StagingArea(self.staging_dir) as staging:
            await self._stage_all(run, staging, guild)
            run.remaining_text = strip_spans(
                message.content, [link_span(message.content, link) for link in run.included]
            )
            if not run.assets:
                return run
            if len(run.remaining_text) > MAX_CONTENT_LENGTH:
                log.warning(
                    "Message %s: remaining text too long to re-post (%d chars)",
                    message.id,
                    len(run.remaining_text),
                )
                return run
            try:
                run.republished = await self.republisher.republish(
                    message, run.assets, run.remaining_text
                )
            except RepublishError as e:
                log.error("Message %s: %s", message.id, e)
        return run

    async def _stage_all(self, run: PipelineRun, staging: StagingArea, guild: Any) -> None:
        limit = getattr(guild, "filesize_limit", None)
        by_url: dict[str, StagedAsset | None] = {}

        for index, link in enumerate(run.candidates):
            if run.outcomes[index] is not LinkState.ALLOWED:
                run.advance(index, LinkState.DISCARDED)
                continue

            if link.url in by_url:
                previous = by_url[link.url]
                run.advance(
                    index,
                    LinkState.INCLUDED if previous is not None else LinkState.DISCARDED,
                )
                continue

            if len(run.assets) >= MAX_ATTACHMENTS:
                log.info(
                    "Message %s: attachment limit reached, leaving %s",
                    run.message.id,
                    link.url,
                )
                run.advance(index, LinkState.DISCARDED)
                continue

            token = staging_token(guild.id, run.message.id, index)
            try:
                asset = await self.fetcher.stage(
                    link,
                    staging,
                    token,
                    limit=limit,
                    on_state=lambda state, i=index: run.advance(i, state),
                )
            except RehostError as e:
                log.warning("Message %s: skipping %s: %s", run.message.id, link.url, e)
                by_url[link.url] = None
                run.advance(index, LinkState.DISCARDED)
                continue

            by_url[link.url] = asset
            run.assets.append(asset)
            run.advance(index, LinkState.INCLUDED)
