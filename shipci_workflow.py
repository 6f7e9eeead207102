# shipci_workflow.py
# Release pipeline for a NuGet library: test, gate on the project version,
# tag + release, pack, publish.
from __future__ import annotations

from shipci.dsl import (
    check_version,
    checkout,
    create_release,
    download_artifact,
    job,
    needs_output,
    pipeline,
    publish,
    secret,
    sh,
    step_output,
    tag_and_push,
    upload_artifact,
)

PROJECT = "src/Library/Library.csproj"
NUGET_SOURCE = "https://www.nuget.org/api/v2/package"


def workflow():
    return pipeline(
        "release",
        job(
            "test",
            checkout(),
            sh("Restore", "dotnet restore"),
            sh("Test", "dotnet test --no-restore --verbosity normal"),
            requires=["git", "dotnet"],
        ),
        job(
            "check_version",
            checkout(),
            check_version(PROJECT, id="version"),
            outputs={
                "is_valid": step_output("version", "is_valid"),
                "version": step_output("version", "version"),
            },
            requires=["git"],
        ),
        job(
            "tag_and_push",
            checkout(),
            tag_and_push(needs_output("check_version", "version"), id="tag"),
            create_release(
                step_output("tag", "tag"),
                repository="owner/library",
                token=secret("GITHUB_TOKEN"),
            ),
            needs=["test", "check_version"],
            if_="needs.check_version.outputs.is_valid == 'true'",
            outputs={"tag": step_output("tag", "tag")},
            requires=["git"],
        ),
        job(
            "create_nuget",
            checkout(),
            sh("Pack", "dotnet pack -c Release -o out"),
            upload_artifact("nuget", ["out/*.nupkg"]),
            needs=["tag_and_push"],
            requires=["git", "dotnet"],
        ),
        job(
            "deploy",
            download_artifact("nuget", path="packages"),
            publish(["packages/out/*.nupkg"], source=NUGET_SOURCE, api_key=secret("NUGET_API_KEY")),
            needs=["create_nuget"],
        ),
    )
