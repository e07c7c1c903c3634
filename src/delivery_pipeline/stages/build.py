"""Build stage: build, tag and push an image, then describe it."""

from __future__ import annotations

import logging
import re
import threading

from delivery_pipeline.core.artifact import ArtifactDescriptor, image_definitions_path_for, write_image_definitions
from delivery_pipeline.core.config.stages import BuildConfig, RegistryConfig
from delivery_pipeline.core.errors import (
    AuthError,
    BuildError,
    BuildTimeout,
    PipelineError,
    StageFailed,
    StageTimeout,
)
from delivery_pipeline.core.types import Stage
from delivery_pipeline.stages.credentials import CredentialProvider, RegistryCredential
from delivery_pipeline.stages.executor import Command, StageExecutor

logger = logging.getLogger(__name__)

_DIGEST_PATTERN = re.compile(r"(sha256:[0-9a-f]{64})")


def parse_push_digest(output: str, tag: str) -> str | None:
    """Extract the content digest from ``docker push`` output for *tag*.

    Docker reports ``<tag>: digest: sha256:<hex> size: <n>`` once the push
    completes.
    """
    for line in output.splitlines():
        if line.startswith(f"{tag}: digest: "):
            match = _DIGEST_PATTERN.search(line)
            if match:
                return match.group(1)
    return None


class BuildCoordinator:
    """Drives the build stage for one source revision.

    The image is pushed twice: under a content tag derived from the revision
    and under the registry's mutable alias, so the newest push always
    resolves by name.

    Args:
        registry: Registry the image is published to.
        build: Build tool settings.
        executor: Stage executor running the build tool.
        credentials: Registry credential provider; ``None`` skips login.
        container_name: Container named in the image definitions file.
            Defaults to the repository name.
    """

    def __init__(
        self,
        registry: RegistryConfig,
        build: BuildConfig,
        executor: StageExecutor | None = None,
        credentials: CredentialProvider | None = None,
        container_name: str | None = None,
    ) -> None:
        self._registry = registry
        self._build = build
        self._executor = executor or StageExecutor()
        self._credentials = credentials
        self._container_name = container_name or registry.repository

    def describe(self, source_revision: str) -> ArtifactDescriptor:
        """Return the descriptor a successful build of *source_revision* yields."""
        return ArtifactDescriptor.for_revision(
            self._registry.host,
            self._registry.repository,
            source_revision,
            alias=self._registry.alias,
        )

    def build_commands(
        self,
        artifact: ArtifactDescriptor,
        credential: RegistryCredential | None = None,
    ) -> list[Command]:
        """Return the login, build, tag and push commands for *artifact*."""
        docker = self._build.docker
        commands: list[Command] = []
        if credential is not None:
            commands.append(
                Command(
                    (docker, "login", "--username", credential.username, "--password-stdin", credential.registry),
                    name="login",
                    stdin=credential.password,
                )
            )

        build_argv = [docker, "build", "--file", self._build.dockerfile, "--tag", artifact.image_uri]
        for key, value in sorted(self._build.build_args.items()):
            build_argv += ["--build-arg", f"{key}={value}"]
        build_argv += ["--label", f"org.opencontainers.image.revision={artifact.source_revision}"]
        build_argv.append(self._build.context)

        commands += [
            Command(tuple(build_argv), name="build"),
            Command((docker, "tag", artifact.image_uri, artifact.alias_uri), name="tag"),
            Command((docker, "push", artifact.image_uri), name="push"),
            Command((docker, "push", artifact.alias_uri), name="push-alias"),
        ]
        return commands

    def build(
        self,
        source_revision: str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ArtifactDescriptor:
        """Build and publish *source_revision*.

        Args:
            source_revision: Revision to build.
            timeout: Stage budget in seconds; defaults to the configured one.
            cancel_event: Set to abort the running build.

        Returns:
            The published artifact. No descriptor is ever returned for a
            partial build.

        Raises:
            AuthError: The registry credential could not be obtained or was
                rejected at login.
            BuildError: A build, tag or push step failed.
            BuildTimeout: The stage exceeded its timeout.
            CollaboratorUnavailable: The build tool could not be launched.
            StageCancelled: *cancel_event* was set.
        """
        try:
            artifact = self.describe(source_revision)
        except ValueError as exc:
            raise BuildError(f"Cannot build revision {source_revision!r}: {exc}", stage=Stage.BUILD) from exc

        credential = None
        if self._credentials is not None:
            credential = self._credentials.get_credential(self._registry.host)

        logger.info("Building %s from revision %s", artifact.image_uri, source_revision)
        result = self._executor.run(
            self.build_commands(artifact, credential),
            timeout=timeout if timeout is not None else self._build.timeout_seconds,
            stage=Stage.BUILD,
            cancel_event=cancel_event,
        )
        if result.error is not None:
            raise self._translate(result.error)

        digest = parse_push_digest(result.output, artifact.tag)
        if digest is not None:
            artifact = ArtifactDescriptor(
                registry=artifact.registry,
                repository=artifact.repository,
                tag=artifact.tag,
                source_revision=artifact.source_revision,
                alias=artifact.alias,
                digest=digest,
            )

        if self._build.image_definitions_path:
            path = write_image_definitions(
                image_definitions_path_for(self._build.image_definitions_path, artifact.tag),
                artifact.image_definitions(self._container_name),
            )
            logger.debug("Wrote image definitions for %s to %s", artifact.tag, path)
        logger.info("Published %s (digest %s)", artifact.image_uri, artifact.digest or "unknown")
        return artifact

    @staticmethod
    def _translate(error: PipelineError) -> PipelineError:
        if isinstance(error, StageTimeout):
            return BuildTimeout(error.message, stage=Stage.BUILD, detail=error.detail, cause=error)
        if isinstance(error, StageFailed):
            if error.command == "login":
                return AuthError(
                    "Registry rejected the login credential",
                    stage=Stage.BUILD,
                    detail=error.detail,
                    cause=error,
                )
            return BuildError(
                f"Build step '{error.command}' failed with exit code {error.exit_code}",
                stage=Stage.BUILD,
                detail=error.detail,
                cause=error,
            )
        return error
