"""Example of loading the HOCON pipeline configuration using dataconf."""

from pathlib import Path

from delivery_pipeline.core.config import PipelineConfig, load_from_file


def main() -> None:
    """Load and print the pipeline configuration."""
    config_path = str(Path(__file__).parent / "pipeline.conf")
    config = load_from_file(config_path, PipelineConfig)

    print(f"Pipeline: {config.name} ({config.environment.value})")
    print(f"Registry: {config.registry.host}/{config.registry.repository} [{config.registry.credential_source.value}]")
    print(f"Build context: {config.build.context} (timeout {config.build.timeout_seconds:.0f}s)")
    print(f"Manifest: {config.deploy.manifest_path} -> namespace {config.deploy.namespace}")
    print(
        f"Rollout poll: every {config.deploy.poll.interval_seconds:.0f}s "
        f"for up to {config.deploy.poll.timeout_seconds:.0f}s"
    )
    if config.binding is not None:
        print(f"Binding: {config.binding.identity} -> {', '.join(config.binding.privileges)}")
    if config.trigger_retry is not None:
        print(f"Re-trigger: up to {config.trigger_retry.max_attempts} executions per revision")


if __name__ == "__main__":
    main()
