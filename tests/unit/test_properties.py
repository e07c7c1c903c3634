"""Property-based tests using Hypothesis.

Covers invariants for tag derivation, manifest rendering, binding
idempotence, retry backoff and secret reference parsing.
"""

from __future__ import annotations

import copy
import string

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from delivery_pipeline.core.artifact import ArtifactDescriptor, ImageDefinition, compute_tag, is_valid_tag
from delivery_pipeline.core.config.retry import RetryConfig
from delivery_pipeline.core.manifest import ManifestSet
from delivery_pipeline.core.resilience.retry import RetryExecutor
from delivery_pipeline.core.secrets.resolver import parse_secret_reference
from delivery_pipeline.stages.bootstrap import ClusterBinding, PermissionBootstrapper
from tests.factories import MANIFEST_YAML

# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

_revision = st.text(min_size=1, max_size=300).filter(lambda s: s.strip() != "")

_valid_retry = st.builds(
    RetryConfig,
    max_attempts=st.integers(min_value=1, max_value=100),
    initial_delay_seconds=st.floats(min_value=0.001, max_value=10.0),
    max_delay_seconds=st.floats(min_value=10.0, max_value=300.0),
    backoff_multiplier=st.floats(min_value=1.0, max_value=5.0),
)

_identifier = st.text(alphabet=string.ascii_lowercase + string.digits + "-", min_size=1, max_size=20)

_privileges = st.frozensets(_identifier, min_size=1, max_size=5)


class _MemoryStore:
    def __init__(self) -> None:
        self.bindings: dict[str, ClusterBinding] = {}
        self.writes = 0

    def list_bindings(self) -> list[ClusterBinding]:
        return list(self.bindings.values())

    def put_binding(self, binding: ClusterBinding) -> None:
        self.writes += 1
        self.bindings[binding.identity] = binding


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class TestComputeTagProperties:
    @given(revision=_revision)
    def test_always_valid(self, revision: str) -> None:
        assert is_valid_tag(compute_tag(revision))

    @given(revision=_revision)
    def test_deterministic(self, revision: str) -> None:
        assert compute_tag(revision) == compute_tag(revision)

    @given(revision=_revision)
    def test_descriptor_accepts_any_revision(self, revision: str) -> None:
        artifact = ArtifactDescriptor.for_revision("registry.example.com", "app", revision)

        assert artifact.image_uri.endswith(":" + artifact.tag)

    @given(tag=st.from_regex(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,60}", fullmatch=True))
    def test_valid_tags_unchanged(self, tag: str) -> None:
        assert compute_tag(tag) == tag

    @given(first=_revision, second=_revision)
    def test_distinct_revisions_get_distinct_tags(self, first: str, second: str) -> None:
        assume(first != second)

        assert compute_tag(first) != compute_tag(second)

    @given(stem=st.from_regex(r"[a-z]{1,20}", fullmatch=True), sep=st.sampled_from("/:@ ~"))
    def test_sanitised_revision_never_takes_a_literal_tag(self, stem: str, sep: str) -> None:
        assert compute_tag(f"{stem}{sep}x") != compute_tag(f"{stem}-x")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestRenderProperties:
    @given(revision=_revision)
    @settings(max_examples=50)
    def test_render_is_pure(self, revision: str) -> None:
        manifest_set = ManifestSet.from_string(MANIFEST_YAML)
        before = copy.deepcopy(manifest_set.documents)
        artifact = ArtifactDescriptor.for_revision("registry.example.com", "app", revision)

        first = manifest_set.render(artifact.image_definitions("app"))
        second = manifest_set.render(artifact.image_definitions("app"))

        assert first == second
        assert manifest_set.documents == before
        assert first[0]["spec"]["template"]["spec"]["containers"][0]["image"] == artifact.image_uri

    @given(image=st.text(alphabet=string.ascii_lowercase + ":/.", min_size=1, max_size=40))
    @settings(max_examples=50)
    def test_no_placeholder_left(self, image: str) -> None:
        rendered = ManifestSet.from_string(MANIFEST_YAML).render([ImageDefinition("app", image)])

        assert "${image:" not in repr(rendered)


# ---------------------------------------------------------------------------
# Bindings
# ---------------------------------------------------------------------------


class TestBindingProperties:
    @given(existing=st.one_of(st.none(), _privileges), required=_privileges)
    def test_ensure_binding_idempotent_superset(
        self, existing: frozenset[str] | None, required: frozenset[str]
    ) -> None:
        store = _MemoryStore()
        identity = "arn:aws:iam::1:role/dpo"
        if existing is not None:
            store.bindings[identity] = ClusterBinding(identity, "dpo", existing)
        bootstrapper = PermissionBootstrapper(store)

        first = bootstrapper.ensure_binding(identity, required)
        writes = store.writes
        second = bootstrapper.ensure_binding(identity, required)

        assert first == second
        assert store.writes == writes
        assert first.privileges >= required
        if existing is not None:
            assert first.privileges >= existing


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetryProperties:
    @given(config=_valid_retry, attempt=st.integers(min_value=0, max_value=50))
    def test_delay_bounds(self, config: RetryConfig, attempt: int) -> None:
        delay = RetryExecutor(config, jitter_factor=0.0).calculate_delay(attempt)

        assert config.initial_delay_seconds <= delay + 1e-9
        assert delay <= config.max_delay_seconds + 1e-9

    @given(config=_valid_retry, attempt=st.integers(min_value=0, max_value=20))
    def test_delay_monotonic(self, config: RetryConfig, attempt: int) -> None:
        executor = RetryExecutor(config, jitter_factor=0.0)

        assert executor.calculate_delay(attempt) <= executor.calculate_delay(attempt + 1) + 1e-9


# ---------------------------------------------------------------------------
# Secret references
# ---------------------------------------------------------------------------


class TestSecretReferenceProperties:
    @given(provider=_identifier, key=st.text(min_size=1, max_size=40).filter(lambda s: "\n" not in s))
    def test_round_trip(self, provider: str, key: str) -> None:
        reference = parse_secret_reference(f"secret://{provider}/{key}")

        assert reference is not None
        assert reference.provider == provider
        assert reference.key == key

    @given(value=st.text(max_size=40).filter(lambda s: not s.startswith("secret://")))
    def test_plain_values_are_not_references(self, value: str) -> None:
        assert parse_secret_reference(value) is None
