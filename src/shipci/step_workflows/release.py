# step_workflows/release.py
from __future__ import annotations

from typing import Dict

from ..model import EnvValue, Step, StepContext
from ..release import GitHubReleases, Identity, ReleasePublisher, ReleaseTagger


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def tag_and_push(
    version: EnvValue,
    *,
    name: str = "Tag release",
    id: str | None = "tag",
    tag_prefix: str | None = None,
    push: bool = True,
    author_name: EnvValue = "shipci",
    author_email: EnvValue = "shipci@localhost",
) -> Step:
    """Create and push <prefix><version> at the checked-out commit. Output: tag."""
    return Step(
        name=name,
        kind="tag",
        id=id,
        data={
            "version": version,
            "tag_prefix": tag_prefix,
            "push": push,
            "author_name": author_name,
            "author_email": author_email,
        },
    )


def create_release(
    tag: EnvValue,
    *,
    repository: EnvValue,
    token: EnvValue,
    name: str = "Create release",
    id: str | None = "release",
    tag_prefix: str | None = None,
    api_url: str = "https://api.github.com",
    generate_notes: bool = True,
    verify_tag: bool = True,
    make_latest: bool = True,
) -> Step:
    """Publish the release record for `tag`. Outputs: title, url."""
    return Step(
        name=name,
        kind="release",
        id=id,
        data={
            "tag": tag,
            "repository": repository,
            "token": token,
            "tag_prefix": tag_prefix,
            "api_url": api_url,
            "generate_notes": generate_notes,
            "verify_tag": verify_tag,
            "make_latest": make_latest,
        },
    )


# ---------------------------------------------------------------------
# Step execution
# ---------------------------------------------------------------------

def run_tag_step(ctx: StepContext) -> Dict[str, str]:
    config = ctx.services.config
    tagger = ReleaseTagger(
        ctx.workspace,
        prefix=ctx.data.get("tag_prefix") or config.tag_prefix,
        remote=config.remote,
        identity=Identity(str(ctx.data["author_name"]), str(ctx.data["author_email"])),
    )
    tag = tagger.tag(
        str(ctx.data["version"]),
        push=bool(ctx.data.get("push", True)),
        timeout=ctx.time_left(),
    )
    ctx.log(f"created tag {tag}")
    return {"tag": tag}


def run_release_step(ctx: StepContext) -> Dict[str, str]:
    client = GitHubReleases(
        str(ctx.data["repository"]),
        str(ctx.data["token"]),
        api_url=ctx.data.get("api_url") or "https://api.github.com",
        timeout=ctx.bounded(30),
    )
    publisher = ReleasePublisher(
        ctx.workspace,
        client,
        prefix=ctx.data.get("tag_prefix") or ctx.services.config.tag_prefix,
    )
    record = publisher.create(
        str(ctx.data["tag"]),
        generate=bool(ctx.data.get("generate_notes", True)),
        verify_tag=bool(ctx.data.get("verify_tag", True)),
        mark_latest=bool(ctx.data.get("make_latest", True)),
    )
    ctx.log(f"released {record.title}" + (f" at {record.url}" if record.url else ""))
    return {"title": record.title, "url": record.url or ""}
