"""
Duplicate story resolution.

The story generator sometimes produces several stories for the same event in
one tenant. Stories whose titles match after lower-casing and trimming form a
group; in each group the published story (or, failing that, the newest one)
is kept and every other member is archived. Nothing is ever deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from ..records import Story, StoryStatus
from ..storage.database import ContentStore
from .text_utils import canonical_title

logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """Group of stories sharing a canonical title."""
    title: str
    keep: Story
    duplicates: list[Story]


@dataclass
class ResolutionPlan:
    """Stories to keep and stories to archive."""
    keep: list[Story] = field(default_factory=list)
    archive: list[Story] = field(default_factory=list)
    groups: list[DuplicateGroup] = field(default_factory=list)


@dataclass
class ResolutionSummary:
    tenant_id: str
    stories_checked: int
    duplicate_groups: int
    archived: int
    dry_run: bool
    archived_ids: list[int] = field(default_factory=list)


def _sort_key(story: Story) -> tuple[bool, datetime]:
    return (story.is_published, story.created_at)


def resolve_duplicates(stories: list[Story]) -> ResolutionPlan:
    """Plan which duplicate stories to archive.

    Published stories win over unpublished ones; among equals the newest
    ``created_at`` wins. Already archived stories are ignored.
    """
    groups: dict[str, list[Story]] = {}
    for story in stories:
        if story.status == StoryStatus.ARCHIVED:
            continue
        groups.setdefault(canonical_title(story.title), []).append(story)

    plan = ResolutionPlan()
    for title, members in groups.items():
        members = sorted(members, key=_sort_key, reverse=True)
        plan.keep.append(members[0])
        if len(members) > 1:
            plan.archive.extend(members[1:])
            plan.groups.append(DuplicateGroup(title=title, keep=members[0], duplicates=members[1:]))

    return plan


class DuplicateStoryResolver:
    """Archives duplicate stories of one tenant."""

    def __init__(self, store: ContentStore):
        self.store = store

    async def run(self, tenant_id: str, dry_run: bool = False) -> ResolutionSummary:
        stories = await self.store.list_stories(tenant_id)
        plan = resolve_duplicates(stories)
        archive_ids = [story.id for story in plan.archive]

        for group in plan.groups:
            logger.info(
                f"Duplicate stories for '{group.title}': keeping {group.keep.id}, "
                f"archiving {[s.id for s in group.duplicates]}"
            )

        archived = 0
        if archive_ids and not dry_run:
            archived = await self.store.archive_stories(archive_ids)

        logger.info(
            f"Story deduplication for {tenant_id}: {len(stories)} stories, "
            f"{len(plan.groups)} duplicate groups, "
            f"{len(archive_ids) if dry_run else archived} {'to archive' if dry_run else 'archived'}"
        )

        return ResolutionSummary(
            tenant_id=tenant_id,
            stories_checked=len(stories),
            duplicate_groups=len(plan.groups),
            archived=archived,
            dry_run=dry_run,
            archived_ids=archive_ids,
        )


async def resolve_story_duplicates(
    store: ContentStore,
    tenant_id: str,
    dry_run: bool = False,
) -> ResolutionSummary:
    """Convenience function for story deduplication."""
    return await DuplicateStoryResolver(store).run(tenant_id, dry_run)
